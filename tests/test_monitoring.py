import logging

import pytest

torch = pytest.importorskip("torch")

from contrail_rf._logging import configure_logging
from contrail_rf.monitoring import ProgressMonitor


def test_progress_metrics_after_records() -> None:
    monitor = ProgressMonitor(total=4, num_photons=1000, log_interval=0)
    assert "direction_time_s" not in monitor.current_metrics()

    monitor.record()
    monitor.record()
    metrics = monitor.current_metrics()
    assert metrics["percent"] == pytest.approx(50.0)
    assert metrics["photons_per_s"] > 0
    assert metrics["eta_s"] == pytest.approx(2 * metrics["direction_time_s"])


def test_progress_logged_at_interval_and_end(caplog) -> None:
    monitor = ProgressMonitor(total=3, num_photons=10, log_interval=2)
    with caplog.at_level(logging.INFO, logger="contrail_rf.monitoring"):
        for _ in range(3):
            monitor.record()
    messages = [r.getMessage() for r in caplog.records if r.name == "contrail_rf.monitoring"]
    assert len(messages) == 2
    assert messages[-1].startswith("Completed 3/3 directions")


def test_configure_logging_returns_package_logger() -> None:
    logger = configure_logging(logging.DEBUG)
    assert logger.name == "contrail_rf"
    assert logger.level == logging.DEBUG
