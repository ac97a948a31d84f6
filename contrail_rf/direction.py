"""
Per-direction aggregation of photon outcomes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import torch

from .config import check_resolution
from .exceptions import ContrailPhysicsError
from .random_source import RandomSource
from .tracer import PhotonBatch, PhotonFate, PhotonOutcome, PhotonTracer

logger = logging.getLogger("contrail_rf.direction")


def correction_factor(theta: float, phi: float, radius_incident: float, num_photons: int) -> float:
    """Projected width of the incident cylinder per photon, ``2 R sin(alpha) / N``."""
    alpha = math.acos(max(-1.0, min(1.0, math.sin(theta) * math.cos(phi))))
    return 2.0 * radius_incident * math.sin(alpha) / num_photons


def direction_grid(bins_theta: int, bins_phi: int) -> list[tuple[float, float]]:
    """Bin-centred incident directions, theta-major."""
    d_theta = math.pi / bins_theta
    d_phi = 2.0 * math.pi / bins_phi
    return [
        ((0.5 + i) * d_theta, (0.5 + j) * d_phi)
        for i in range(bins_theta)
        for j in range(bins_phi)
    ]


@dataclass
class DirectionResult:
    theta: float
    phi: float
    num_photons: int
    correction_factor: float
    num_absorbed: int = 0
    num_transmitted: int = 0
    num_scattered: int = 0
    num_scattered_up: int = 0
    num_scattered_down: int = 0
    average_scattered: float = 0.0
    bins: list[int] = field(default_factory=list)

    @property
    def num_affected(self) -> int:
        return self.num_photons - self.num_transmitted

    @property
    def intensities(self) -> list[float]:
        """Histogram counts converted to the directional ``S_`` quantities."""
        return [count * self.correction_factor for count in self.bins]

    def row(self, *, with_bins: bool = True) -> list[int | float]:
        values: list[int | float] = [
            self.theta,
            self.phi,
            self.num_absorbed,
            self.num_scattered,
            self.num_scattered_up,
            self.num_scattered_down,
            self.correction_factor,
            self.average_scattered,
            self.num_affected,
        ]
        if with_bins:
            values.extend(self.intensities)
        return values


class DirectionAccumulator:
    """
    Running counts and exit-angle histogram for one incident direction.

    Exit angles are binned as ``res * j < theta <= res * (j + 1)`` (degrees);
    the mean scattering count is kept as an online mean over binned photons.
    """

    def __init__(
        self, theta: float, phi: float, num_photons: int, resolution_s: int, radius_incident: float
    ) -> None:
        check_resolution(resolution_s)
        self.theta = theta
        self.phi = phi
        self.num_photons = num_photons
        self.n_bins = 180 // resolution_s
        self._edges = torch.tensor(
            [math.radians(resolution_s * j) for j in range(self.n_bins + 1)], dtype=torch.float64
        )
        self._bins = torch.zeros(self.n_bins, dtype=torch.int64)
        self._factor = correction_factor(theta, phi, radius_incident, num_photons)
        self.num_absorbed = 0
        self.num_transmitted = 0
        self.num_scattered = 0
        self.num_up = 0
        self.mean_scattered = 0.0

    def add(self, outcome: PhotonOutcome) -> None:
        self.add_batch(PhotonBatch.from_outcomes([outcome]))

    def add_batch(self, batch: PhotonBatch) -> None:
        fate = batch.fate.cpu()
        self.num_absorbed += int((fate == int(PhotonFate.ABSORBED)).sum())
        self.num_transmitted += int((fate == int(PhotonFate.TRANSMITTED)).sum())

        scattered = fate == int(PhotonFate.SCATTERED)
        theta = batch.theta.cpu()[scattered]
        if theta.numel() == 0:
            return
        if (theta > math.pi).any():
            raise ContrailPhysicsError(
                f"Scattered exit theta {float(theta.max())!r} exceeds pi for incident direction "
                f"theta={self.theta!r}, phi={self.phi!r}."
            )
        count = batch.count.cpu()[scattered]
        index = torch.searchsorted(self._edges, theta) - 1
        binned = index >= 0
        k = int(binned.sum())
        if k == 0:
            return
        self._bins += torch.bincount(index[binned], minlength=self.n_bins)
        self.num_up += int((theta[binned] <= 0.5 * math.pi).sum())
        self.num_scattered += k
        total = float(count[binned].sum())
        self.mean_scattered += (total - k * self.mean_scattered) / self.num_scattered

    def result(self) -> DirectionResult:
        return DirectionResult(
            theta=self.theta,
            phi=self.phi,
            num_photons=self.num_photons,
            correction_factor=self._factor,
            num_absorbed=self.num_absorbed,
            num_transmitted=self.num_transmitted,
            num_scattered=self.num_scattered,
            num_scattered_up=self.num_up,
            num_scattered_down=self.num_scattered - self.num_up,
            average_scattered=self.mean_scattered,
            bins=[int(v) for v in self._bins.tolist()],
        )


class DirectionTask:
    """Runs all photons of one incident direction in batches."""

    def __init__(
        self,
        tracer: PhotonTracer,
        theta: float,
        phi: float,
        num_photons: int,
        resolution_s: int,
        *,
        batch_size: int = 100_000,
        index: int = 0,
    ) -> None:
        self.tracer = tracer
        self.theta = theta
        self.phi = phi
        self.num_photons = num_photons
        self.resolution_s = resolution_s
        self.batch_size = batch_size
        self.index = index

    def run(self, source: RandomSource) -> DirectionResult:
        accumulator = DirectionAccumulator(
            self.theta,
            self.phi,
            self.num_photons,
            self.resolution_s,
            self.tracer.params.radius_incident,
        )
        remaining = self.num_photons
        while remaining > 0:
            n = min(self.batch_size, remaining)
            accumulator.add_batch(self.tracer.trace_batch(self.theta, self.phi, n, source))
            remaining -= n
        result = accumulator.result()
        logger.debug(
            "Direction %d (theta=%.4f, phi=%.4f): abs=%d sca=%d trans=%d",
            self.index,
            self.theta,
            self.phi,
            result.num_absorbed,
            result.num_scattered,
            result.num_transmitted,
        )
        return result


__all__ = [
    "DirectionResult",
    "DirectionAccumulator",
    "DirectionTask",
    "correction_factor",
    "direction_grid",
]
