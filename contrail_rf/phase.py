"""
Discretised phase functions and inverse-CDF sampling of scattering angles.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import torch

from .exceptions import ContrailConfigError, PhaseSamplingError
from .random_source import RandomSource


@dataclass(frozen=True)
class PhaseFunctionTable:
    """
    Discretised distribution over equally spaced bin centres.

    ``extended`` holds the centres padded by one bin on each side and
    ``cumulative`` the running mass with a leading zero and a repeated tail,
    so that ``cumulative[i]`` is the mass up to the upper edge of
    ``extended[i]``.
    """

    values: torch.Tensor
    probabilities: torch.Tensor
    bin_width: float
    extended: torch.Tensor
    cumulative: torch.Tensor
    total: float

    @classmethod
    def from_arrays(cls, values, probabilities) -> PhaseFunctionTable:
        values = torch.as_tensor(values, dtype=torch.float64).flatten()
        probabilities = torch.as_tensor(probabilities, dtype=torch.float64).flatten()
        if values.numel() < 2 or values.shape != probabilities.shape:
            raise ContrailConfigError(
                "Phase function needs at least two bins with one probability per bin."
            )
        width = float(values[1] - values[0])
        if width <= 0 or not torch.allclose(
            torch.diff(values), torch.full((values.numel() - 1,), width, dtype=torch.float64)
        ):
            raise ContrailConfigError("Phase function bins must be increasing and equally spaced.")
        if torch.any(probabilities < 0) or not torch.isfinite(probabilities).all():
            raise ContrailConfigError("Phase function probabilities must be finite and non-negative.")

        extended = torch.cat(
            [values[:1] - width, values, values[-1:] + width]
        )
        running = torch.cumsum(probabilities, dim=0)
        cumulative = torch.cat([running.new_zeros(1), running, running[-1:]])
        total = float(cumulative[-1])
        if total <= 0:
            raise ContrailConfigError("Phase function has zero total probability.")
        return cls(values, probabilities, width, extended, cumulative, total)

    @classmethod
    def henyey_greenstein(cls, g: float, num_sca: int) -> PhaseFunctionTable:
        """
        Henyey-Greenstein phase function over scattering angle in ``num_sca`` classes.

        The weight of each class is the angular density ``p(cos x) * sin x`` at
        its centre.
        """

        if num_sca < 2:
            raise ContrailConfigError("num_sca must be at least 2.")
        if not -1.0 < g < 1.0:
            raise ContrailConfigError("Henyey-Greenstein asymmetry g must lie within (-1, 1).")
        width = math.pi / num_sca
        angles = (torch.arange(num_sca, dtype=torch.float64) + 0.5) * width
        cos_angle = torch.cos(angles)
        density = (1.0 - g**2) / (2.0 * (1.0 + g**2 - 2.0 * g * cos_angle) ** 1.5)
        return cls.from_arrays(angles, density * torch.sin(angles))


class PhaseSampler:
    """Inverse-transform sampling with linear interpolation between bin edges."""

    def __init__(self, table: PhaseFunctionTable) -> None:
        self.table = table

    def inverse(self, mass: torch.Tensor | float) -> torch.Tensor:
        """Map cumulative mass in ``[0, total]`` to a sampled value."""
        table = self.table
        mass = torch.as_tensor(mass, dtype=torch.float64)
        if torch.isnan(mass).any() or (mass < 0).any() or (mass > table.total).any():
            raise PhaseSamplingError(
                f"Cumulative mass outside [0, {table.total!r}] in phase-function lookup."
            )
        cumulative = table.cumulative
        # First bin whose cumulative mass reaches the draw; bin 0 only carries the origin.
        index = torch.searchsorted(cumulative, mass).clamp_min(1)
        upper = cumulative[index]
        span = upper - cumulative[index - 1]
        slope = torch.where(span > 0, table.bin_width / span.clamp_min(1e-300), torch.zeros_like(span))
        return table.extended[index] + 0.5 * table.bin_width - slope * (upper - mass)

    def sample(self, source: RandomSource, n: int = 1) -> torch.Tensor:
        draws = source.uniform(n)
        return self.inverse(draws * self.table.total)


__all__ = ["PhaseFunctionTable", "PhaseSampler"]
