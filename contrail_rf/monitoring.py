"""
Progress instrumentation for long Monte Carlo runs.

Direction tasks can take minutes each for large photon counts, so the driver
reports completion, throughput and an estimated remaining time at a fixed
interval instead of once per photon.
"""

from __future__ import annotations

import logging
import statistics
import time
from collections import deque

logger = logging.getLogger("contrail_rf.monitoring")


class ProgressMonitor:
    """
    Track completed directions of a run.

    Parameters
    ----------
    total:
        Number of directions in the run.
    num_photons:
        Photons traced per direction.
    log_interval:
        Emit a log entry every `log_interval` completed directions. Set to zero to disable.
    window:
        Number of samples used when computing moving averages.
    """

    def __init__(
        self,
        total: int,
        num_photons: int,
        *,
        log_interval: int = 10,
        window: int = 100,
    ) -> None:
        self.total = max(0, total)
        self.num_photons = num_photons
        self.log_interval = max(0, log_interval)
        self.window = max(1, window)

        self.intervals: deque[float] = deque(maxlen=self.window)
        self.completed = 0
        self._started = time.perf_counter()
        self._last = self._started

    def record(self) -> None:
        """Mark one direction as delivered; intervals are measured between deliveries."""
        now = time.perf_counter()
        self.intervals.append(now - self._last)
        self._last = now
        self.completed += 1
        self.maybe_log()

    def maybe_log(self) -> None:
        if self.log_interval == 0 or self.completed == 0:
            return
        if self.completed % self.log_interval != 0 and self.completed != self.total:
            return
        logger.info(
            "Completed %d/%d directions: %s", self.completed, self.total, self.current_metrics()
        )

    def current_metrics(self) -> dict[str, float]:
        metrics: dict[str, float] = {}
        if self.total:
            metrics["percent"] = 100.0 * self.completed / self.total
        if self.intervals:
            mean = max(statistics.mean(self.intervals), 1e-9)
            metrics["direction_time_s"] = mean
            metrics["photons_per_s"] = self.num_photons / mean
            metrics["eta_s"] = mean * max(self.total - self.completed, 0)
        metrics["elapsed_s"] = time.perf_counter() - self._started
        return metrics


__all__ = ["ProgressMonitor"]
