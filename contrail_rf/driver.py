"""
Parallel execution of DirectionTasks over an incident-direction grid.

Tasks run on a fixed-size thread pool with a bounded number of outstanding
results. Finished results are parked in index slots and released strictly in
grid order, so output rows always follow the direction grid no matter which
worker finishes first.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Iterator, Mapping, Protocol, Sequence

from .config import RandomMode, check_resolution
from .direction import DirectionResult, DirectionTask, direction_grid
from .exceptions import ContrailConfigError, ContrailError, WorkerError
from .monitoring import ProgressMonitor
from .random_source import RandomStrategy
from .tracer import PhotonTracer

logger = logging.getLogger("contrail_rf.driver")


class RowSink(Protocol):
    def write_row(self, result: DirectionResult) -> None:
        ...


def _round4(value: float) -> float:
    return float(Decimal(repr(value)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))


@dataclass
class RunMetrics:
    """Totals across all directions of one run."""

    num_photons: int
    directions: int = 0
    sum_transmitted: int = 0
    sum_absorbed: int = 0
    sum_scattered: int = 0

    def update(self, result: DirectionResult) -> None:
        self.directions += 1
        self.sum_transmitted += result.num_transmitted
        self.sum_absorbed += result.num_absorbed
        self.sum_scattered += result.num_scattered

    @property
    def sum_affected(self) -> int:
        return self.directions * self.num_photons - self.sum_transmitted

    def averages(self) -> dict[str, float]:
        if self.directions == 0:
            return {"avg_transmitted": 0.0, "avg_absorbed": 0.0, "avg_scattered": 0.0, "avg_affected": 0.0}
        n = self.directions
        return {
            "avg_transmitted": _round4(self.sum_transmitted / n),
            "avg_absorbed": _round4(self.sum_absorbed / n),
            "avg_scattered": _round4(self.sum_scattered / n),
            "avg_affected": _round4(self.sum_affected / n),
        }

    def summary(self) -> dict[str, float]:
        values: dict[str, float] = {
            "num_photons": self.num_photons,
            "directions": self.directions,
            "sum_transmitted": self.sum_transmitted,
            "sum_absorbed": self.sum_absorbed,
            "sum_scattered": self.sum_scattered,
            "sum_affected": self.sum_affected,
        }
        values.update(self.averages())
        return values

    @staticmethod
    def file_name(num_photons: int, bins_phi: int, bins_theta: int, when: datetime | None = None) -> str:
        when = datetime.now() if when is None else when
        return f"{num_photons}_{bins_phi}_{bins_theta}_{when:%Y%m%d%H%M%S}.txt"

    def write(self, path: str | Path) -> Path:
        return write_metrics({"": self}, path)


def write_metrics(runs: Mapping[str, RunMetrics], path: str | Path) -> Path:
    """Write the summaries of one or more runs; non-empty labels open a section."""
    path = Path(path)
    with path.open("w", encoding="utf-8") as handle:
        for label, metrics in runs.items():
            if label:
                handle.write(f"[{label}]\n")
            for key, value in metrics.summary().items():
                handle.write(f"{key} = {value}\n")
    logger.info("Wrote run metrics to %s", path)
    return path


class OrderedResultBuffer:
    """Index-addressed slots released in ascending index order."""

    def __init__(self, total: int) -> None:
        self.total = total
        self._slots: dict[int, DirectionResult] = {}
        self._next = 0

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def released(self) -> int:
        return self._next

    def put(self, index: int, result: DirectionResult) -> None:
        if not 0 <= index < self.total:
            raise IndexError(f"Result index {index} outside 0..{self.total - 1}.")
        if index < self._next or index in self._slots:
            raise ValueError(f"Result for index {index} delivered twice.")
        self._slots[index] = result

    def drain(self) -> Iterator[tuple[int, DirectionResult]]:
        while self._next in self._slots:
            index = self._next
            self._next += 1
            yield index, self._slots.pop(index)


class ParallelDriver:
    """
    Run a direction grid and stream its results.

    Parameters
    ----------
    tracer:
        Shared, read-only photon tracer.
    num_photons:
        Photons per direction.
    resolution_s:
        Exit-angle bin width in degrees; must divide 180.
    workers:
        Size of the worker pool.
    strategy:
        Random source strategy; ``shared`` forces a single worker.
    batch_size:
        Photons traced per vectorised batch inside a task.
    """

    def __init__(
        self,
        tracer: PhotonTracer,
        *,
        num_photons: int,
        resolution_s: int,
        workers: int = 1,
        strategy: RandomStrategy | None = None,
        batch_size: int = 100_000,
        log_interval: int = 10,
    ) -> None:
        check_resolution(resolution_s)
        if num_photons <= 0:
            raise ContrailConfigError("num_photons must be positive.")
        if workers <= 0:
            raise ContrailConfigError("workers must be positive.")
        self.tracer = tracer
        self.num_photons = num_photons
        self.resolution_s = resolution_s
        self.strategy = strategy if strategy is not None else RandomStrategy(RandomMode.THREAD_LOCAL)
        self.batch_size = batch_size
        self.log_interval = log_interval
        self.workers = workers
        if self.strategy.serial and workers > 1:
            logger.warning(
                "Shared random mode runs directions sequentially; ignoring %d workers.", workers
            )
            self.workers = 1

    def run_diffuse(self, bins_theta: int, bins_phi: int, sink: RowSink) -> RunMetrics:
        return self.run(direction_grid(bins_theta, bins_phi), sink)

    def run_direct(self, sza: float, phi0: float, sink: RowSink) -> RunMetrics:
        return self.run([(sza, phi0)], sink)

    def _task(self, index: int, theta: float, phi: float) -> DirectionResult:
        task = DirectionTask(
            self.tracer,
            theta,
            phi,
            self.num_photons,
            self.resolution_s,
            batch_size=self.batch_size,
            index=index,
        )
        return task.run(self.strategy.for_task(index))

    def run(self, directions: Sequence[tuple[float, float]], sink: RowSink) -> RunMetrics:
        metrics = RunMetrics(self.num_photons)
        buffer = OrderedResultBuffer(len(directions))
        monitor = ProgressMonitor(len(directions), self.num_photons, log_interval=self.log_interval)
        window = 2 * self.workers
        queue = iter(enumerate(directions))
        pending: dict[Future, int] = {}

        logger.info(
            "Tracing %d directions x %d photons on %d worker(s), random mode %s",
            len(directions),
            self.num_photons,
            self.workers,
            self.strategy.mode.value,
        )
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="direction") as pool:

            def refill() -> None:
                # Parked results count against the window so memory stays bounded.
                while len(pending) + len(buffer) < window:
                    try:
                        index, (theta, phi) = next(queue)
                    except StopIteration:
                        return
                    pending[pool.submit(self._task, index, theta, phi)] = index

            refill()
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    try:
                        result = future.result()
                    except ContrailError:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    except Exception as exc:
                        pool.shutdown(wait=False, cancel_futures=True)
                        theta, phi = directions[index]
                        raise WorkerError(
                            f"Direction {index} (theta={theta!r}, phi={phi!r}) failed: {exc!r}",
                            index=index,
                        ) from exc
                    buffer.put(index, result)
                for _, result in buffer.drain():
                    sink.write_row(result)
                    metrics.update(result)
                    monitor.record()
                refill()

        logger.info("Run finished: %s", metrics.summary())
        return metrics


__all__ = ["ParallelDriver", "RunMetrics", "OrderedResultBuffer", "RowSink", "write_metrics"]
