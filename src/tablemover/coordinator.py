"""Dual-transaction batch move with target-before-source commit ordering.

Each batch is inserted into the target and deleted from the source by two
concurrent workers, each on its own connection and transaction. They
exchange three one-shot signals:

    insert worker                         delete worker
    -------------                         -------------
    begin, INSERT                         begin, DELETE
    publish inserted_count  ───────────▶  await inserted_count
                                          counts_match = inserted >= deleted
    await counts_match      ◀───────────  publish counts_match
    COMMIT target
    publish target_committed ──────────▶  await target_committed
                                          COMMIT source

The source is therefore never committed before the target. A crash between
the two commits leaves a row in both tables (re-runnable), never in neither.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from tablemover.batch_cursor import Batch
from tablemover.database import DatabaseManager, affected_rows
from tablemover.exceptions import ConsistencyError, QueryError
from tablemover.job import ArchiveJob
from tablemover.statements import StatementFactory
from tablemover.transaction_manager import TransactionManager
from utils.logging import get_logger


class PeerAbortedError(QueryError):
    """The other worker of the batch failed first."""

    pass


class Handshake:
    """One-shot signals of a single batch. Never reused."""

    def __init__(self) -> None:
        loop = asyncio.get_running_loop()
        # None means the insert worker gave up before counting
        self.inserted_count: asyncio.Future[Optional[int]] = loop.create_future()
        self.counts_match: asyncio.Future[bool] = loop.create_future()
        self.target_committed: asyncio.Future[bool] = loop.create_future()

    @staticmethod
    def publish(signal: "asyncio.Future[Any]", value: Any) -> None:
        """Resolve a signal unless it has already been resolved."""
        if not signal.done():
            signal.set_result(value)


@dataclass
class MoveResult:
    """Affected-row counts reported by the database for one batch."""

    inserted: int
    deleted: int
    duration_seconds: float = 0.0


class MoveCoordinator:
    """Moves one batch at a time under the commit-ordering handshake."""

    def __init__(
        self,
        source_db: DatabaseManager,
        target_db: DatabaseManager,
        statements: StatementFactory,
        job: ArchiveJob,
        statement_timeout_seconds: int = 1800,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize move coordinator.

        Args:
            source_db: Source database manager (delete side)
            target_db: Target database manager (insert side)
            statements: Statement factory of the job
            job: Job whose inserted/deleted counters the workers advance
            statement_timeout_seconds: statement_timeout of both transactions
            logger: Optional logger instance
        """
        self.source_db = source_db
        self.target_db = target_db
        self.statements = statements
        self.job = job
        self.statement_timeout_seconds = statement_timeout_seconds
        self.logger = logger or get_logger("coordinator")

    async def move_batch(self, batch: Batch) -> MoveResult:
        """Insert ``batch`` into the target and delete it from the source.

        Returns:
            Inserted and deleted row counts

        Raises:
            ConsistencyError: If more rows were deleted than inserted
            QueryError: If any statement, begin or commit failed
        """
        started = time.monotonic()
        insert_sql, insert_params = self.statements.insert_statement(batch.rows)
        delete_sql, delete_params = self.statements.delete_statement(
            batch.rows, batch.key_values, batch.row_ids
        )

        handshake = Handshake()
        results = await asyncio.gather(
            self._insert_worker(handshake, insert_sql, insert_params),
            self._delete_worker(handshake, delete_sql, delete_params),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise self._primary_error(errors)

        inserted, deleted = results
        duration = time.monotonic() - started
        self.logger.debug(
            "Batch moved",
            rows=batch.row_count,
            inserted=inserted,
            deleted=deleted,
            duration_seconds=round(duration, 3),
        )
        return MoveResult(inserted=inserted, deleted=deleted, duration_seconds=duration)

    @staticmethod
    def _primary_error(errors: list[BaseException]) -> BaseException:
        for error in errors:
            if isinstance(error, ConsistencyError):
                return error
        for error in errors:
            if not isinstance(error, PeerAbortedError):
                return error
        return errors[0]

    async def _insert_worker(self, handshake: Handshake, sql: str, params: list[Any]) -> int:
        try:
            async with self.target_db.acquire_connection() as conn:
                tx = TransactionManager(
                    conn, "target", self.statement_timeout_seconds, logger=self.logger
                )
                try:
                    await tx.begin()
                    inserted = affected_rows(await tx.execute(sql, *params))
                    handshake.publish(handshake.inserted_count, inserted)

                    if not await handshake.counts_match:
                        raise PeerAbortedError(
                            "source side did not confirm the batch, target transaction not committed",
                            context={"inserted": inserted},
                        )

                    await tx.commit()
                    handshake.publish(handshake.target_committed, True)
                    self.job.inserted += inserted
                    return inserted
                finally:
                    await tx.rollback()
        finally:
            handshake.publish(handshake.inserted_count, None)
            handshake.publish(handshake.target_committed, False)

    async def _delete_worker(self, handshake: Handshake, sql: str, params: list[Any]) -> int:
        try:
            async with self.source_db.acquire_connection() as conn:
                tx = TransactionManager(
                    conn, "source", self.statement_timeout_seconds, logger=self.logger
                )
                try:
                    await tx.begin()
                    deleted = affected_rows(await tx.execute(sql, *params))

                    inserted = await handshake.inserted_count
                    if inserted is None:
                        raise PeerAbortedError(
                            "target side failed, source transaction not committed",
                            context={"deleted": deleted},
                        )
                    if inserted < deleted:
                        raise ConsistencyError(
                            f"rows deleted({deleted}) larger than inserted({inserted}), "
                            "rollback and exit",
                            context={"inserted": inserted, "deleted": deleted},
                        )
                    handshake.publish(handshake.counts_match, True)

                    if not await handshake.target_committed:
                        raise PeerAbortedError(
                            "target transaction was not committed, source transaction not committed",
                            context={"inserted": inserted, "deleted": deleted},
                        )

                    await tx.commit()
                    self.job.deleted += deleted
                    return deleted
                finally:
                    await tx.rollback()
        finally:
            handshake.publish(handshake.counts_match, False)
