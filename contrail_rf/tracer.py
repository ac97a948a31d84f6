"""
Photon random walks through a Gaussian contrail cross-section.

Coordinates follow the aircraft: x points along the flight track (contrail
axis), y across it and z upwards. A direction ``(theta, phi)`` is the unit
vector ``(sin theta cos phi, sin theta sin phi, cos theta)``. Incident
directions name where a photon comes from; exit directions name where it
travels to, so an exit ``theta <= pi / 2`` leaves upwards.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence, Union

import torch

from .config import PhysicalParameters
from .phase import PhaseFunctionTable, PhaseSampler
from .random_source import RandomSource

logger = logging.getLogger("contrail_rf.tracer")

TWO_PI = 2.0 * math.pi


class PhotonFate(IntEnum):
    TRANSMITTED = 0
    ABSORBED = 1
    SCATTERED = 2


@dataclass(frozen=True)
class Absorbed:
    pass


@dataclass(frozen=True)
class Transmitted:
    pass


@dataclass(frozen=True)
class Scattered:
    theta: float
    phi: float
    count: int


PhotonOutcome = Union[Absorbed, Transmitted, Scattered]


@dataclass
class PhotonBatch:
    """Outcomes of many photons; ``theta``/``phi`` are only meaningful when scattered."""

    fate: torch.Tensor
    theta: torch.Tensor
    phi: torch.Tensor
    count: torch.Tensor

    def __len__(self) -> int:
        return int(self.fate.numel())

    def outcome(self, index: int) -> PhotonOutcome:
        fate = PhotonFate(int(self.fate[index]))
        if fate is PhotonFate.ABSORBED:
            return Absorbed()
        if fate is PhotonFate.TRANSMITTED:
            return Transmitted()
        return Scattered(float(self.theta[index]), float(self.phi[index]), int(self.count[index]))

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[PhotonOutcome]) -> PhotonBatch:
        fate, theta, phi, count = [], [], [], []
        for outcome in outcomes:
            if isinstance(outcome, Scattered):
                fate.append(int(PhotonFate.SCATTERED))
                theta.append(outcome.theta)
                phi.append(outcome.phi)
                count.append(outcome.count)
                continue
            fate.append(int(PhotonFate.ABSORBED if isinstance(outcome, Absorbed) else PhotonFate.TRANSMITTED))
            theta.append(0.0)
            phi.append(0.0)
            count.append(0)
        return cls(
            fate=torch.tensor(fate, dtype=torch.int8),
            theta=torch.tensor(theta, dtype=torch.float64),
            phi=torch.tensor(phi, dtype=torch.float64),
            count=torch.tensor(count, dtype=torch.int64),
        )


def compose_direction(
    theta: torch.Tensor, phi: torch.Tensor, deflection: torch.Tensor, azimuth: torch.Tensor
) -> tuple[torch.Tensor, torch.Tensor]:
    """Rotate ``(theta, phi)`` by a deflection angle around an azimuth."""
    cos_t, sin_t = torch.cos(theta), torch.sin(theta)
    cos_d, sin_d = torch.cos(deflection), torch.sin(deflection)
    cos_new = (cos_t * cos_d + sin_t * sin_d * torch.cos(azimuth)).clamp(-1.0, 1.0)
    delta = torch.atan2(sin_d * torch.sin(azimuth) * sin_t, cos_d - cos_t * cos_new)
    # Along the pole the azimuth of the old direction is undefined.
    delta = torch.where(sin_t < 1e-12, azimuth, delta)
    return torch.acos(cos_new), torch.remainder(phi + delta, TWO_PI)


class PhotonTracer:
    """
    Monte Carlo transport of single photons through a contrail.

    Ice crystals follow a sheared bivariate Gaussian in the cross-section
    with covariance ``[[sigma_h^2, sigma_s], [sigma_s, sigma_v^2]]`` and
    ``num_ice / distance`` crystals per metre. The medium is bounded by the
    incident cylinder of radius ``radius_incident`` around the axis; travel
    along the axis is capped at the segment length ``distance``.

    Parameters
    ----------
    params:
        Physical description of the contrail.
    sampler:
        Scattering-angle sampler; defaults to a Henyey-Greenstein table
        built from ``params.g`` and ``params.num_sca``.
    bisection_steps:
        Iterations used to locate the interaction point along a path.
    """

    def __init__(
        self,
        params: PhysicalParameters,
        sampler: PhaseSampler | None = None,
        *,
        device: torch.device | None = None,
        bisection_steps: int = 60,
    ) -> None:
        self.params = params
        if sampler is None:
            sampler = PhaseSampler(PhaseFunctionTable.henyey_greenstein(params.g, params.num_sca))
        self.sampler = sampler
        self.device = torch.device("cpu") if device is None else device
        self.bisection_steps = bisection_steps

        var_h, var_v, cov = params.sigma_h**2, params.sigma_v**2, params.sigma_s
        det = var_h * var_v - cov**2
        self._precision = (var_v / det, -cov / det, var_h / det)
        # q_ext * pi r^2 * n_L / (2 pi sqrt(det))
        self._scale = params.q_ext * params.radius_droplet**2 * params.linear_density / (2.0 * math.sqrt(det))
        self._scatter_ratio = params.q_sca / params.q_ext if params.q_ext > 0 else 0.0

    # ---------------------------------------------------------------- geometry
    def _tensor(self, value) -> torch.Tensor:
        return torch.as_tensor(value, dtype=torch.float64, device=self.device)

    def extinction_integral(self, y0, z0, theta, phi, s) -> torch.Tensor:
        """
        Optical depth of the straight path of length ``s`` from ``(y0, z0)``.

        The Gaussian line integral is evaluated in closed form with erf/erfc;
        paths running parallel to the contrail axis use the constant-density
        limit. Arguments broadcast against each other.
        """

        y0, z0, theta, phi, s = torch.broadcast_tensors(
            *(self._tensor(v) for v in (y0, z0, theta, phi, s))
        )
        if self._scale == 0.0:
            return torch.zeros_like(s)

        p_yy, p_yz, p_zz = self._precision
        dy = torch.sin(theta) * torch.sin(phi)
        dz = torch.cos(theta)
        a = 0.5 * (p_yy * dy * dy + 2.0 * p_yz * dy * dz + p_zz * dz * dz)
        b = p_yy * y0 * dy + p_yz * (y0 * dz + z0 * dy) + p_zz * z0 * dz
        c = 0.5 * (p_yy * y0 * y0 + 2.0 * p_yz * y0 * z0 + p_zz * z0 * z0)

        linear = a * s * s < 1e-12
        safe_a = torch.where(linear, torch.ones_like(a), a)
        root = torch.sqrt(safe_a)
        shift = b / (2.0 * safe_a)
        lower = root * shift
        upper = root * (s + shift)
        # erf(upper) - erf(lower), taken from the tail that keeps precision
        diff = torch.where(
            lower > 0,
            torch.erfc(lower) - torch.erfc(upper),
            torch.where(upper < 0, torch.erfc(-upper) - torch.erfc(-lower), torch.erf(upper) - torch.erf(lower)),
        )
        exponent = (b * shift * 0.5 - c).clamp_max(0.0)
        gaussian = torch.exp(exponent) * torch.sqrt(math.pi / (4.0 * safe_a)) * diff
        depth = torch.where(linear, s * torch.exp(-c - 0.5 * b * s), gaussian)
        return self._scale * depth

    def path_length(self, y, z, theta, phi) -> torch.Tensor:
        """Distance from ``(y, z)`` to the cylinder wall, capped at the segment length."""
        y, z, theta, phi = torch.broadcast_tensors(*(self._tensor(v) for v in (y, z, theta, phi)))
        dy = torch.sin(theta) * torch.sin(phi)
        dz = torch.cos(theta)
        a = dy * dy + dz * dz
        half_b = y * dy + z * dz
        c = (y * y + z * z - self.params.radius_incident**2).clamp_max(0.0)
        disc = (half_b * half_b - a * c).clamp_min(0.0)
        along_axis = a < 1e-24
        t = (-half_b + torch.sqrt(disc)) / torch.where(along_axis, torch.ones_like(a), a)
        t = torch.where(along_axis, torch.full_like(t, math.inf), t.clamp_min(0.0))
        return t.clamp_max(self.params.distance)

    def entry_points(self, theta: torch.Tensor, phi: torch.Tensor, u: torch.Tensor):
        """Entry on the cylinder wall for impact parameters spread across its projected width."""
        radius = self.params.radius_incident
        dy = torch.sin(theta) * torch.sin(phi)
        dz = torch.cos(theta)
        norm = torch.sqrt(dy * dy + dz * dz)
        along_axis = norm < 1e-12
        safe = torch.where(along_axis, torch.ones_like(norm), norm)
        e_y = torch.where(along_axis, torch.zeros_like(dy), dy / safe)
        e_z = torch.where(along_axis, -torch.ones_like(dz), dz / safe)
        impact = radius * (2.0 * u - 1.0)
        half_chord = torch.sqrt((radius**2 - impact**2).clamp_min(0.0))
        y = -impact * e_z - half_chord * e_y
        z = impact * e_y - half_chord * e_z
        return y, z

    def _interaction_distance(self, y, z, theta, phi, s, target) -> torch.Tensor:
        lo = torch.zeros_like(s)
        hi = s.clone()
        for _ in range(self.bisection_steps):
            mid = 0.5 * (lo + hi)
            below = self.extinction_integral(y, z, theta, phi, mid) < target
            lo = torch.where(below, mid, lo)
            hi = torch.where(below, hi, mid)
        return 0.5 * (lo + hi)

    # ---------------------------------------------------------------- random walk
    def trace_batch(self, theta: float, phi: float, n: int, source: RandomSource) -> PhotonBatch:
        """
        Trace ``n`` photons arriving from ``(theta, phi)``.

        Draws are consumed in a fixed order per generation (entry, free path,
        branch, deflection, azimuth) so a seeded source reproduces the batch.
        """

        travel_theta = torch.full((n,), math.pi - theta, dtype=torch.float64, device=self.device)
        travel_phi = torch.full((n,), math.fmod(phi + math.pi, TWO_PI), dtype=torch.float64, device=self.device)
        y, z = self.entry_points(travel_theta, travel_phi, source.uniform(n).to(self.device))
        count = torch.zeros(n, dtype=torch.int64, device=self.device)
        fate = torch.full((n,), int(PhotonFate.TRANSMITTED), dtype=torch.int8, device=self.device)
        alive = torch.ones(n, dtype=torch.bool, device=self.device)

        while True:
            idx = torch.nonzero(alive, as_tuple=False).squeeze(-1)
            if idx.numel() == 0:
                break
            th, ph, yy, zz = travel_theta[idx], travel_phi[idx], y[idx], z[idx]
            s = self.path_length(yy, zz, th, ph)
            depth = self.extinction_integral(yy, zz, th, ph, s)
            target = -torch.log1p(-source.uniform(idx.numel()).to(self.device))

            exits = target >= depth
            out = idx[exits]
            if out.numel():
                alive[out] = False
                fate[out[count[out] > 0]] = int(PhotonFate.SCATTERED)

            hit = ~exits
            hit_idx = idx[hit]
            if hit_idx.numel() == 0:
                continue
            th, ph = th[hit], ph[hit]
            t = self._interaction_distance(yy[hit], zz[hit], th, ph, s[hit], target[hit])
            y[hit_idx] = yy[hit] + t * torch.sin(th) * torch.sin(ph)
            z[hit_idx] = zz[hit] + t * torch.cos(th)

            scatters = source.uniform(hit_idx.numel()).to(self.device) < self._scatter_ratio
            absorbed = hit_idx[~scatters]
            alive[absorbed] = False
            fate[absorbed] = int(PhotonFate.ABSORBED)

            sc_idx = hit_idx[scatters]
            m = sc_idx.numel()
            if m == 0:
                continue
            deflection = self.sampler.sample(source, m).to(self.device)
            azimuth = TWO_PI * source.uniform(m).to(self.device)
            new_theta, new_phi = compose_direction(travel_theta[sc_idx], travel_phi[sc_idx], deflection, azimuth)
            travel_theta[sc_idx] = new_theta
            travel_phi[sc_idx] = new_phi
            count[sc_idx] += 1

        return PhotonBatch(fate=fate, theta=travel_theta, phi=travel_phi, count=count)

    def trace(self, theta: float, phi: float, source: RandomSource) -> PhotonOutcome:
        """Run a single photon from ``(theta, phi)`` and report its fate."""
        return self.trace_batch(theta, phi, 1, source).outcome(0)


__all__ = [
    "PhotonTracer",
    "PhotonFate",
    "PhotonBatch",
    "PhotonOutcome",
    "Absorbed",
    "Transmitted",
    "Scattered",
    "compose_direction",
]
