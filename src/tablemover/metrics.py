"""Prometheus metrics for monitoring table moves."""

import time
from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from utils.logging import get_logger


class MoverMetrics:
    """Prometheus metrics for the table mover."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.rows_total = Counter(
            "tablemover_rows_total",
            "Total number of rows handled",
            ["table", "operation"],  # operation: selected, inserted, deleted
            registry=self.registry,
        )

        self.batches_total = Counter(
            "tablemover_batches_total",
            "Total number of batches moved",
            ["table"],
            registry=self.registry,
        )

        self.runs_total = Counter(
            "tablemover_runs_total",
            "Total number of runs",
            ["status"],  # success, failure
            registry=self.registry,
        )

        self.errors_total = Counter(
            "tablemover_errors_total",
            "Total number of errors",
            ["type", "table"],
            registry=self.registry,
        )

        self.batch_duration_seconds = Histogram(
            "tablemover_batch_duration_seconds",
            "Duration of one batch move (both transactions) in seconds",
            ["table"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        self.current_state = Gauge(
            "tablemover_current_state",
            "Current mover state (0=idle, 1=running, 2=failed, 3=paused)",
            registry=self.registry,
        )

        self.memory_usage_bytes = Gauge(
            "tablemover_memory_usage_bytes",
            "Resident memory of the mover process in bytes",
            registry=self.registry,
        )

        self.rows_estimated = Gauge(
            "tablemover_rows_estimated",
            "Planner estimate of the rows to move",
            ["table"],
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "tablemover_last_success_timestamp",
            "Unix timestamp of the last successful run",
            registry=self.registry,
        )

    def record_selected(self, table: str, count: int) -> None:
        """Record rows fetched from the source."""
        self.rows_total.labels(table=table, operation="selected").inc(count)

    def record_batch_moved(
        self,
        table: str,
        inserted: int,
        deleted: int,
        duration_seconds: float,
    ) -> None:
        """Record a committed batch.

        Args:
            table: Source table name
            inserted: Rows inserted into the target
            deleted: Rows deleted from the source
            duration_seconds: Time taken by both transactions
        """
        self.batches_total.labels(table=table).inc()
        self.rows_total.labels(table=table, operation="inserted").inc(inserted)
        self.rows_total.labels(table=table, operation="deleted").inc(deleted)
        self.batch_duration_seconds.labels(table=table).observe(duration_seconds)

    def record_error(self, error_type: str, table: Optional[str] = None) -> None:
        """Record an error.

        Args:
            error_type: Exception class name
            table: Table name (optional)
        """
        self.errors_total.labels(type=error_type, table=table or "unknown").inc()

    def record_run_status(self, status: str) -> None:
        """Record run status.

        Args:
            status: Run status (success, failure)
        """
        self.runs_total.labels(status=status).inc()
        if status == "success":
            self.last_success_timestamp.set(time.time())
            self.current_state.set(0)
        elif status == "failure":
            self.current_state.set(2)

    def set_state(self, state: int) -> None:
        """Set current mover state (0=idle, 1=running, 2=failed, 3=paused)."""
        self.current_state.set(state)

    def set_memory_usage(self, bytes_used: int) -> None:
        """Set current memory usage."""
        self.memory_usage_bytes.set(bytes_used)

    def set_rows_estimated(self, table: str, count: int) -> None:
        """Set the planner estimate of the run."""
        self.rows_estimated.labels(table=table).set(count)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest(self.registry)

    def start_metrics_server(self, port: int = 8000) -> None:
        """Start HTTP server for Prometheus metrics.

        Args:
            port: Port to listen on (default: 8000)
        """
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(
                "Prometheus metrics server started",
                port=port,
                endpoint=f"http://localhost:{port}/metrics",
            )
        except Exception as e:
            self.logger.error(
                "Failed to start metrics server",
                port=port,
                error=str(e),
            )
            raise
