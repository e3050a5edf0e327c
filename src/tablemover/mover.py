"""Main mover orchestrator that coordinates all components."""

import asyncio
from collections.abc import Callable
from typing import Any, Optional

import structlog
from prometheus_client import CollectorRegistry

from tablemover.batch_cursor import BatchCursor
from tablemover.config import MoverConfig
from tablemover.control_server import ControlServer
from tablemover.coordinator import MoveCoordinator
from tablemover.database import DatabaseManager
from tablemover.exceptions import MoverError, SchemaError
from tablemover.job import ArchiveJob
from tablemover.key_resolver import KeyDescriptor, KeyResolver
from tablemover.metrics import MoverMetrics
from tablemover.statements import StatementFactory
from tablemover.watchdogs import (
    MemoryWatchdog,
    PauseGate,
    PeriodicWatchdog,
    ProgressReporter,
    RunDeadline,
)
from utils import qualified_table
from utils.logging import get_logger
from utils.output import print_summary


class TableMover:
    """Moves the rows of one source table into one target table, batch by batch."""

    def __init__(
        self,
        config: MoverConfig,
        dry_run: bool = False,
        logger: Optional[structlog.BoundLogger] = None,
        terminate: Optional[Callable[[int], None]] = None,
        source_db: Optional[DatabaseManager] = None,
        target_db: Optional[DatabaseManager] = None,
    ) -> None:
        """Initialize table mover.

        Args:
            config: Mover configuration
            dry_run: If True, resolve the key and build statements but move nothing
            logger: Optional logger instance
            terminate: Exit hook of the memory watchdog (defaults to os._exit)
            source_db: Optional source database manager
            target_db: Optional target database manager
        """
        self.config = config
        self.dry_run = dry_run
        self.logger = logger or get_logger("mover")
        self.terminate = terminate
        self.source_db = source_db or DatabaseManager(config.source, role="source", logger=self.logger)
        self.target_db = target_db or DatabaseManager(config.target, role="target", logger=self.logger)
        self.job = ArchiveJob(config=config)
        self.gate = PauseGate(logger=self.logger)
        self.key: Optional[KeyDescriptor] = None
        self.statements: Optional[StatementFactory] = None

        monitoring = config.monitoring
        self.metrics = (
            MoverMetrics(logger=self.logger, registry=CollectorRegistry())
            if monitoring.metrics_enabled
            else None
        )
        if self.metrics:
            try:
                self.metrics.start_metrics_server(port=monitoring.metrics_port)
            except Exception as e:
                self.logger.warning(
                    "Failed to start metrics server (non-critical)",
                    port=monitoring.metrics_port,
                    error=str(e),
                )

    @property
    def source_table(self) -> str:
        return qualified_table(self.config.source.schema_name, self.config.source.table)

    @property
    def target_table(self) -> str:
        return qualified_table(self.config.target.schema_name or "public", self.config.target.table or "")

    async def run(self) -> dict[str, Any]:
        """Run the move until the source holds no more matching rows.

        Returns:
            Job summary

        Raises:
            MoverError: On any failure; counters reached so far are logged first
        """
        source = self.config.source
        self.logger.info(
            "Starting move",
            source=f"{source.database}.{source.schema_name}.{source.table}",
            target=f"{self.config.target.database}.{self.config.target.schema_name}.{self.config.target.table}",
            where=source.where,
            batch_size=source.batch_size,
            dry_run=self.dry_run,
        )
        self.job.start()
        if self.metrics:
            self.metrics.set_state(1)

        try:
            await self.source_db.connect()
            await self.target_db.connect()

            columns = await self._load_columns()
            resolver = KeyResolver(
                self.source_db,
                source.schema_name,
                source.table,
                where=source.where,
                logger=self.logger,
            )
            self.key, self.job.estimated_rows = await resolver.resolve(columns)
            if self.metrics:
                self.metrics.set_rows_estimated(source.table, self.job.estimated_rows)

            self.statements = StatementFactory(
                self.source_table,
                self.target_table,
                columns,
                self.key,
                source.batch_size,
                where=source.where,
                logger=self.logger,
            )

            if self.dry_run:
                self._log_dry_run(self.statements)
            else:
                await self._move_all(self.statements)

        except MoverError as e:
            if self.metrics:
                self.metrics.record_error(type(e).__name__, source.table)
                self.metrics.record_run_status("failure")
            self.logger.error(
                "Move failed",
                error=str(e),
                error_type=type(e).__name__,
                batches=self.job.batches,
                **self.job.counters(),
            )
            raise
        finally:
            self.job.finish()
            await self.source_db.disconnect()
            await self.target_db.disconnect()
            if self.config.job.statistics:
                print_summary(self.job.summary(), title="Move Statistics")

        if self.metrics:
            self.metrics.record_run_status("success")
        summary = self.job.summary()
        self.logger.info(
            "Move completed",
            batches=self.job.batches,
            duration_seconds=round(self.job.duration_seconds, 3),
            **self.job.counters(),
        )
        return summary

    async def _load_columns(self) -> list[str]:
        """Source column set, checked against the target table."""
        source, target = self.config.source, self.config.target
        columns = await KeyResolver(
            self.source_db, source.schema_name, source.table, logger=self.logger
        ).load_columns()
        target_columns = await KeyResolver(
            self.target_db, target.schema_name or "public", target.table or "", logger=self.logger
        ).load_columns()

        missing = [c for c in columns if c not in set(target_columns)]
        if missing:
            raise SchemaError(
                "target table is missing source columns",
                context={"table": target.table, "missing": missing},
            )
        self.logger.debug("Column set loaded", columns=columns)
        return columns

    def _log_dry_run(self, statements: StatementFactory) -> None:
        self.logger.info(
            "DRY RUN - no rows moved",
            estimated_rows=self.job.estimated_rows,
            key=statements.key.name,
            key_kind=statements.key.kind.value,
            select=statements.select,
            insert=statements.build_insert(1),
            delete=statements.build_key_delete(1) or "built per batch from row values",
        )

    def _watchdogs(self) -> list[PeriodicWatchdog]:
        job_settings = self.config.job
        watchdogs: list[PeriodicWatchdog] = []
        if job_settings.progress_interval:
            watchdogs.append(
                ProgressReporter(self.job, interval=job_settings.progress_interval, logger=self.logger)
            )
        if job_settings.memory_limit_bytes:
            watchdogs.append(
                MemoryWatchdog(
                    job_settings.memory_limit_bytes,
                    terminate=self.terminate,
                    metrics=self.metrics,
                    logger=self.logger,
                )
            )
        return watchdogs

    async def _move_all(self, statements: StatementFactory) -> None:
        """Start the watchdogs and the control server, then run the batch loop."""
        watchdogs = self._watchdogs()
        control: Optional[ControlServer] = None
        if self.config.job.control_enabled:
            control = ControlServer(self.config.control_socket_path, self.gate, logger=self.logger)
            await control.start()

        for watchdog in watchdogs:
            watchdog.start()
        try:
            await self._batch_loop(statements)
        finally:
            for watchdog in watchdogs:
                await watchdog.stop()
            if control is not None:
                await control.stop()

    async def _batch_loop(self, statements: StatementFactory) -> None:
        job_settings = self.config.job
        limit = self.config.source.batch_size
        table = self.config.source.table

        cursor = BatchCursor(self.source_db, statements.select, statements.key, logger=self.logger)
        coordinator = MoveCoordinator(
            self.source_db,
            self.target_db,
            statements,
            self.job,
            statement_timeout_seconds=job_settings.statement_timeout_seconds,
            logger=self.logger,
        )
        deadline = RunDeadline(job_settings.run_time_seconds)
        deadline.start()

        while True:
            if deadline.expired():
                self.logger.info("Run time limit reached", run_time_seconds=job_settings.run_time_seconds)
                break

            batch = await cursor.fetch(limit)
            if batch.row_count == 0:
                break
            self.job.selected += batch.row_count
            if self.metrics:
                self.metrics.record_selected(table, batch.row_count)

            result = await coordinator.move_batch(batch)
            self.job.batches += 1
            if self.metrics:
                self.metrics.record_batch_moved(table, result.inserted, result.deleted, result.duration_seconds)

            if batch.is_final(limit):
                break

            if self.gate.paused:
                if self.metrics:
                    self.metrics.set_state(3)
                await self.gate.wait()
                if self.metrics:
                    self.metrics.set_state(1)

            if job_settings.sleep_seconds:
                await asyncio.sleep(job_settings.sleep_seconds)
