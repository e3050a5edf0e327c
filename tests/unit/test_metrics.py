"""Unit tests for Prometheus metrics."""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from tablemover.metrics import MoverMetrics


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MoverMetrics:
    """Metrics bound to the isolated registry."""
    return MoverMetrics(registry=registry)


class TestMoverMetrics:
    """Tests for MoverMetrics class."""

    def test_record_batch_moved(self, metrics: MoverMetrics, registry: CollectorRegistry) -> None:
        """Test recording a committed batch."""
        metrics.record_selected("events", 4)
        metrics.record_batch_moved("events", inserted=4, deleted=4, duration_seconds=0.2)

        def rows(operation: str) -> float:
            return registry.get_sample_value(
                "tablemover_rows_total", {"table": "events", "operation": operation}
            )

        assert rows("selected") == 4
        assert rows("inserted") == 4
        assert rows("deleted") == 4
        assert registry.get_sample_value("tablemover_batches_total", {"table": "events"}) == 1
        assert (
            registry.get_sample_value("tablemover_batch_duration_seconds_count", {"table": "events"})
            == 1
        )

    def test_record_error(self, metrics: MoverMetrics, registry: CollectorRegistry) -> None:
        """Test recording errors by type."""
        metrics.record_error("ConsistencyError", "events")
        metrics.record_error("QueryError")

        assert (
            registry.get_sample_value(
                "tablemover_errors_total", {"type": "ConsistencyError", "table": "events"}
            )
            == 1
        )
        assert (
            registry.get_sample_value("tablemover_errors_total", {"type": "QueryError", "table": "unknown"})
            == 1
        )

    def test_record_run_status(self, metrics: MoverMetrics, registry: CollectorRegistry) -> None:
        """Test run status and state gauge."""
        metrics.set_state(1)
        assert registry.get_sample_value("tablemover_current_state") == 1

        metrics.record_run_status("success")
        assert registry.get_sample_value("tablemover_runs_total", {"status": "success"}) == 1
        assert registry.get_sample_value("tablemover_current_state") == 0
        assert registry.get_sample_value("tablemover_last_success_timestamp") > 0

        metrics.record_run_status("failure")
        assert registry.get_sample_value("tablemover_current_state") == 2

    def test_gauges(self, metrics: MoverMetrics, registry: CollectorRegistry) -> None:
        """Test memory and estimate gauges."""
        metrics.set_memory_usage(123456)
        metrics.set_rows_estimated("events", 1000)

        assert registry.get_sample_value("tablemover_memory_usage_bytes") == 123456
        assert registry.get_sample_value("tablemover_rows_estimated", {"table": "events"}) == 1000

    def test_get_metrics(self, metrics: MoverMetrics) -> None:
        """Test text exposition."""
        metrics.record_selected("events", 1)
        assert b"tablemover_rows_total" in metrics.get_metrics()

    @patch("tablemover.metrics.start_http_server")
    def test_start_metrics_server(self, mock_start_server, metrics: MoverMetrics, registry: CollectorRegistry) -> None:
        """Test starting the HTTP endpoint."""
        metrics.start_metrics_server(port=9000)
        mock_start_server.assert_called_once_with(9000, registry=registry)

    @patch("tablemover.metrics.start_http_server", side_effect=OSError("Address already in use"))
    def test_start_metrics_server_failure(self, mock_start_server, metrics: MoverMetrics) -> None:
        """Test that server start failures propagate."""
        with pytest.raises(OSError):
            metrics.start_metrics_server()
