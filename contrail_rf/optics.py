"""
Optical-coefficient models for the solar and terrestrial spectrum.

The coefficients themselves come from an injected lookup (for example the
habit tables of Yang et al. 2000); this module only fixes the interface the
simulation relies on and the way resolved coefficients enter a parameter set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol, Sequence

import numpy as np

from .config import DiffuseParameters, RadiationPart
from .exceptions import ContrailConfigError

logger = logging.getLogger("contrail_rf.optics")


@dataclass(frozen=True)
class OpticalCoefficients:
    q_abs: float
    q_sca: float
    g: float

    @property
    def q_ext(self) -> float:
        return self.q_abs + self.q_sca


class OpticalLookup(Protocol):
    def wavelength(self, band: int) -> float:
        """Central wavelength of ``band`` in micrometres."""

    def coefficients(self, d_max: float, band: int, shape: int | None = None) -> OpticalCoefficients:
        """Coefficients for maximum dimension ``d_max`` [um]; ``shape=None`` mixes habits."""


class TabulatedOptics:
    """
    In-memory lookup interpolating tabulated coefficients over crystal size.

    Parameters
    ----------
    wavelengths:
        Central wavelength per band [um].
    d_max:
        Increasing grid of maximum crystal dimensions [um].
    q_abs, q_sca, g:
        Arrays of shape ``(n_shapes, n_bands, len(d_max))``.
    habit_weights:
        Mixing weight per shape class; uniform when omitted.
    """

    def __init__(
        self,
        wavelengths: Sequence[float],
        d_max: Sequence[float],
        q_abs: np.ndarray,
        q_sca: np.ndarray,
        g: np.ndarray,
        habit_weights: Sequence[float] | None = None,
    ) -> None:
        self.wavelengths = np.asarray(wavelengths, dtype=np.float64)
        self.d_max = np.asarray(d_max, dtype=np.float64)
        self.q_abs = np.asarray(q_abs, dtype=np.float64)
        self.q_sca = np.asarray(q_sca, dtype=np.float64)
        self.g = np.asarray(g, dtype=np.float64)

        expected = (self.q_abs.shape[0], self.wavelengths.size, self.d_max.size)
        for name in ("q_abs", "q_sca", "g"):
            if getattr(self, name).shape != expected:
                raise ContrailConfigError(
                    f"TabulatedOptics.{name} has shape {getattr(self, name).shape}, expected {expected}."
                )
        if self.d_max.size < 2 or np.any(np.diff(self.d_max) <= 0):
            raise ContrailConfigError("TabulatedOptics.d_max must be strictly increasing.")

        n_shapes = expected[0]
        weights = np.ones(n_shapes) if habit_weights is None else np.asarray(habit_weights, dtype=np.float64)
        if weights.shape != (n_shapes,) or np.any(weights < 0) or weights.sum() <= 0:
            raise ContrailConfigError("TabulatedOptics.habit_weights must be non-negative, one per shape.")
        self.habit_weights = weights / weights.sum()

    @classmethod
    def from_json(cls, path: str | Path) -> TabulatedOptics:
        path = Path(path)
        with path.open("r", encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ContrailConfigError(f"{path}: invalid JSON ({exc}).") from None
        try:
            return cls(
                wavelengths=data["wavelengths"],
                d_max=data["d_max"],
                q_abs=np.asarray(data["q_abs"]),
                q_sca=np.asarray(data["q_sca"]),
                g=np.asarray(data["g"]),
                habit_weights=data.get("habit_weights"),
            )
        except KeyError as exc:
            raise ContrailConfigError(f"{path}: missing optical table entry {exc}.") from None

    def _check_band(self, band: int) -> None:
        if not 0 <= band < self.wavelengths.size:
            raise ContrailConfigError(
                f"spectral_band_index {band} outside table range 0..{self.wavelengths.size - 1}."
            )

    def wavelength(self, band: int) -> float:
        self._check_band(band)
        return float(self.wavelengths[band])

    def _interp(self, table: np.ndarray, d_max: float, band: int, shape: int | None) -> float:
        values = np.array([np.interp(d_max, self.d_max, table[s, band]) for s in range(table.shape[0])])
        if shape is None:
            return float(np.dot(self.habit_weights, values))
        if not 0 <= shape < table.shape[0]:
            raise ContrailConfigError(f"Shape class {shape} outside table range.")
        return float(values[shape])

    def coefficients(self, d_max: float, band: int, shape: int | None = None) -> OpticalCoefficients:
        self._check_band(band)
        return OpticalCoefficients(
            q_abs=self._interp(self.q_abs, d_max, band, shape),
            q_sca=self._interp(self.q_sca, d_max, band, shape),
            g=self._interp(self.g, d_max, band, shape),
        )


class PhysicalParameterModel:
    """Optical coefficients of one radiation part backed by a lookup."""

    def __init__(self, part: RadiationPart, lookup: OpticalLookup) -> None:
        self.part = part
        self.lookup = lookup

    def get_lambda(self, band: int) -> float:
        return self.lookup.wavelength(band)

    def calc_q_ext(self, d_max: float, band: int, shape: int | None = None) -> float:
        return self.lookup.coefficients(d_max, band, shape).q_ext

    def calc_q_abs(self, d_max: float, band: int, shape: int | None = None) -> float:
        return self.lookup.coefficients(d_max, band, shape).q_abs

    def calc_q_sca(self, d_max: float, band: int, shape: int | None = None) -> float:
        return self.lookup.coefficients(d_max, band, shape).q_sca

    def calc_g(self, d_max: float, band: int, shape: int | None = None) -> float:
        return self.lookup.coefficients(d_max, band, shape).g

    def resolve(self, params: DiffuseParameters) -> DiffuseParameters:
        """Fill g and the efficiencies of ``params`` from its spectral band."""
        band = params.spectral_band_index
        if band is None:
            raise ContrailConfigError("resolve() requires spectral_band_index.")
        # Tables are indexed by maximum dimension in micrometres.
        d_max = 2.0 * params.radius_droplet * 1e6
        coefficients = self.lookup.coefficients(d_max, band)
        logger.info(
            "%s band %d: g=%.4f q_abs=%.4g q_sca=%.4g",
            self.part.value,
            band,
            coefficients.g,
            coefficients.q_abs,
            coefficients.q_sca,
        )
        return params.with_optics(
            g=coefficients.g,
            absorption_factor=coefficients.q_abs,
            scattering_factor=coefficients.q_sca,
            wavelength=self.get_lambda(band),
        )


def prepare_parameters(
    params: DiffuseParameters, part: RadiationPart, model: PhysicalParameterModel | None = None
) -> DiffuseParameters:
    """
    Resolve the optical coefficients of a diffuse parameter set.

    Coefficients given explicitly in the configuration take precedence; the
    model is only consulted for a spectral band index. Terrestrial radiation
    ignores the shear of the crystal cloud.
    """

    if params.spectral_band_index is not None and not params.has_optics:
        if model is None:
            raise ContrailConfigError(
                f"{part.value}: spectral_band_index {params.spectral_band_index} needs an optical "
                "model; supply one or set g, absorption_factor and scattering_factor."
            )
        if model.part is not part:
            raise ContrailConfigError(
                f"Optical model for {model.part.value} used for the {part.value} part."
            )
        params = model.resolve(params)
    if part is RadiationPart.TERRESTRIAL and params.sigma_s != 0.0:
        logger.info("Terrestrial part: sigma_s %.4g replaced by 0.", params.sigma_s)
        params = replace(params, sigma_s=0.0)
    return params


__all__ = [
    "OpticalCoefficients",
    "OpticalLookup",
    "TabulatedOptics",
    "PhysicalParameterModel",
    "prepare_parameters",
]
