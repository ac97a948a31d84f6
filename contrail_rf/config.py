"""
Configuration objects and enumerations for contrail Monte Carlo runs.

Parameter sets are grouped the way a run configuration file is: a ``common``
section shared by every part, diffuse sections for the solar and terrestrial
spectrum, a ``solar_direct`` section for the direct beam and an ``execution``
section controlling parallelism and random number generation.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .exceptions import ContrailConfigError

logger = logging.getLogger("contrail_rf.config")

# Keys whose configuration name is not a valid Python identifier.
_KEY_ALIASES = {"lambda": "wavelength"}


class RadiationPart(Enum):
    SOLAR = "solar"
    TERRESTRIAL = "terrestrial"


class RandomMode(Enum):
    """How DirectionTasks obtain their uniform draws."""

    SHARED = "shared"
    PER_TASK = "per_task"
    THREAD_LOCAL = "thread_local"


def _require_positive(owner: str, name: str, value: float) -> None:
    if value is None or not math.isfinite(value) or value <= 0:
        raise ContrailConfigError(f"{owner}.{name} must be positive and finite (got {value!r}).")


def check_resolution(resolution_s: int) -> None:
    """Reject angular resolutions that do not split 180 degrees evenly."""
    if not isinstance(resolution_s, int) or resolution_s <= 0 or 180 % resolution_s != 0:
        raise ContrailConfigError(
            f"resolution_s must be a positive divisor of 180 (got {resolution_s!r})."
        )


@dataclass(frozen=True)
class PhysicalParameters:
    """
    Immutable physical description of the contrail used by the photon tracer.

    Parameters
    ----------
    g:
        Asymmetry factor of the phase function.
    q_abs, q_sca:
        Absorption and scattering efficiencies.
    radius_incident:
        Radius of the cylinder photons enter through [m].
    radius_droplet:
        Effective ice-crystal radius [m].
    num_ice:
        Number of ice crystals in the contrail segment.
    distance:
        Length of the contrail segment [m].
    sigma_h, sigma_v:
        Horizontal and vertical standard deviations of the crystal cloud [m].
    sigma_s:
        Shear covariance of the crystal cloud [m^2].
    num_sca:
        Number of scattering-angle classes of the phase function.
    """

    g: float
    q_abs: float
    q_sca: float
    radius_incident: float
    radius_droplet: float
    num_ice: float
    distance: float
    sigma_h: float
    sigma_v: float
    sigma_s: float = 0.0
    num_sca: int = 180

    def __post_init__(self) -> None:
        owner = "PhysicalParameters"
        for name in ("radius_incident", "radius_droplet", "distance", "sigma_h", "sigma_v"):
            _require_positive(owner, name, getattr(self, name))
        if not -1.0 < self.g < 1.0:
            raise ContrailConfigError("PhysicalParameters.g must lie within (-1, 1).")
        if self.q_abs < 0.0 or self.q_sca < 0.0:
            raise ContrailConfigError("PhysicalParameters efficiencies must be non-negative.")
        if self.num_ice < 0:
            raise ContrailConfigError("PhysicalParameters.num_ice must be non-negative.")
        if self.num_sca < 2:
            raise ContrailConfigError("PhysicalParameters.num_sca must be at least 2.")
        if self.sigma_s**2 >= (self.sigma_h * self.sigma_v) ** 2:
            raise ContrailConfigError(
                "PhysicalParameters.sigma_s must satisfy sigma_s^2 < sigma_h^2 * sigma_v^2."
            )

    @property
    def q_ext(self) -> float:
        return self.q_abs + self.q_sca

    @property
    def linear_density(self) -> float:
        """Ice crystals per metre of contrail."""
        return self.num_ice / self.distance


@dataclass
class CommonParameters:
    num_photons: int
    out_file_prefix: str = "contrail"
    psi: float = 0.0  # aircraft heading, degrees

    def __post_init__(self) -> None:
        if self.num_photons <= 0:
            raise ContrailConfigError("CommonParameters.num_photons must be positive.")
        if not 0.0 <= self.psi <= 360.0:
            raise ContrailConfigError("CommonParameters.psi must be between 0 and 360 degrees.")

    def comments(self) -> dict[str, Any]:
        return {"num_photons": self.num_photons, "psi": self.psi}


@dataclass
class DiffuseParameters:
    """Simulation and physical parameters of one diffuse part."""

    bins_phi: int
    bins_theta: int
    resolution_s: int
    distance: float
    radius_incident: float
    radius_droplet: float
    num_sca: int
    sigma_h: float
    sigma_v: float
    num_ice: float
    sigma_s: float = 0.0
    spectral_band_index: int | None = None
    g: float | None = None
    absorption_factor: float | None = None
    scattering_factor: float | None = None
    wavelength: float | None = None  # micrometres, "lambda" in files

    def __post_init__(self) -> None:
        owner = "DiffuseParameters"
        if self.bins_phi <= 0 or self.bins_theta <= 0:
            raise ContrailConfigError(f"{owner}.bins_phi and bins_theta must be positive.")
        try:
            check_resolution(self.resolution_s)
        except ContrailConfigError as exc:
            raise ContrailConfigError(f"{owner}.{exc}") from None
        for name in ("distance", "radius_incident", "radius_droplet", "sigma_h", "sigma_v"):
            _require_positive(owner, name, getattr(self, name))
        if self.num_ice < 0:
            raise ContrailConfigError(f"{owner}.num_ice must be non-negative.")
        if self.num_sca < 2:
            raise ContrailConfigError(f"{owner}.num_sca must be at least 2.")
        if self.spectral_band_index is None:
            missing = [
                name
                for name in ("g", "absorption_factor", "scattering_factor")
                if getattr(self, name) is None
            ]
            if missing:
                raise ContrailConfigError(
                    f"{owner} requires {', '.join(missing)} when spectral_band_index is not supplied."
                )

    @property
    def has_optics(self) -> bool:
        return None not in (self.g, self.absorption_factor, self.scattering_factor)

    @property
    def bins_total(self) -> int:
        return self.bins_theta * self.bins_phi

    def with_optics(
        self, *, g: float, absorption_factor: float, scattering_factor: float, wavelength: float | None
    ) -> DiffuseParameters:
        return replace(
            self,
            g=g,
            absorption_factor=absorption_factor,
            scattering_factor=scattering_factor,
            wavelength=wavelength,
        )

    def physical(self) -> PhysicalParameters:
        if not self.has_optics:
            raise ContrailConfigError(
                "DiffuseParameters: g, absorption_factor and scattering_factor are unresolved; "
                "supply them or an optical model for spectral_band_index "
                f"{self.spectral_band_index}."
            )
        return PhysicalParameters(
            g=self.g,
            q_abs=self.absorption_factor,
            q_sca=self.scattering_factor,
            radius_incident=self.radius_incident,
            radius_droplet=self.radius_droplet,
            num_ice=self.num_ice,
            distance=self.distance,
            sigma_h=self.sigma_h,
            sigma_v=self.sigma_v,
            sigma_s=self.sigma_s,
            num_sca=self.num_sca,
        )

    def comments(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "bins_phi": self.bins_phi,
            "bins_theta": self.bins_theta,
            "resolution_s": self.resolution_s,
            "distance": self.distance,
            "spectral_band_index": self.spectral_band_index,
            "g": self.g,
            "absorption_factor": self.absorption_factor,
            "scattering_factor": self.scattering_factor,
            "lambda": self.wavelength,
            "radius_incident": self.radius_incident,
            "radius_droplet": self.radius_droplet,
            "num_sca": self.num_sca,
            "sigma_h": self.sigma_h,
            "sigma_v": self.sigma_v,
            "sigma_s": self.sigma_s,
            "num_ice": self.num_ice,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass
class DirectParameters:
    sza: float  # radians
    phi0: float  # radians

    def __post_init__(self) -> None:
        if not 0.0 <= self.sza <= math.pi:
            raise ContrailConfigError("DirectParameters.sza must lie within [0, pi] radians.")
        if not 0.0 <= self.phi0 <= 2 * math.pi:
            raise ContrailConfigError("DirectParameters.phi0 must lie within [0, 2 pi] radians.")

    def comments(self) -> dict[str, Any]:
        return {"sza": self.sza, "phi0": self.phi0}


@dataclass
class ExecutionSettings:
    workers: int = 1
    random_mode: RandomMode = RandomMode.THREAD_LOCAL
    seed: int | None = None
    batch_size: int = 100_000

    def __post_init__(self) -> None:
        if isinstance(self.random_mode, str):
            try:
                self.random_mode = RandomMode(self.random_mode)
            except ValueError:
                choices = ", ".join(mode.value for mode in RandomMode)
                raise ContrailConfigError(
                    f"ExecutionSettings.random_mode must be one of {choices}."
                ) from None
        if self.workers <= 0:
            raise ContrailConfigError("ExecutionSettings.workers must be positive.")
        if self.batch_size <= 0:
            raise ContrailConfigError("ExecutionSettings.batch_size must be positive.")
        if self.random_mode is not RandomMode.THREAD_LOCAL and self.seed is None:
            raise ContrailConfigError(
                f"ExecutionSettings.seed is required for random_mode '{self.random_mode.value}'."
            )
        if self.random_mode is RandomMode.THREAD_LOCAL and self.seed is not None:
            logger.warning("Seed %s ignored: thread_local random mode is not reproducible.", self.seed)


@dataclass
class SimulationConfig:
    common: CommonParameters
    solar_diffuse: DiffuseParameters | None = None
    solar_direct: DirectParameters | None = None
    terrestrial_diffuse: DiffuseParameters | None = None
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)

    def __post_init__(self) -> None:
        if self.solar_direct is not None and self.solar_diffuse is None:
            raise ContrailConfigError("solar_direct requires a solar_diffuse section.")
        if self.solar_diffuse is None and self.terrestrial_diffuse is None:
            raise ContrailConfigError(
                "SimulationConfig needs at least one of solar_diffuse or terrestrial_diffuse."
            )


_SECTIONS = {
    "common": CommonParameters,
    "solar_diffuse": DiffuseParameters,
    "solar_direct": DirectParameters,
    "terrestrial_diffuse": DiffuseParameters,
    "execution": ExecutionSettings,
}


def _build_section(section: str, data: Any) -> Any:
    cls = _SECTIONS[section]
    if not isinstance(data, Mapping):
        raise ContrailConfigError(f"Section '{section}' must be a mapping.")
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = _KEY_ALIASES.get(key, key)
        if name not in known:
            raise ContrailConfigError(f"Unknown parameter '{key}' in section '{section}'.")
        kwargs[name] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ContrailConfigError(f"Section '{section}': {exc}") from None


def config_from_mapping(data: Mapping[str, Any]) -> SimulationConfig:
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ContrailConfigError(f"Unknown configuration sections: {', '.join(unknown)}.")
    if "common" not in data:
        raise ContrailConfigError("Configuration is missing the 'common' section.")
    sections = {name: _build_section(name, value) for name, value in data.items()}
    return SimulationConfig(**sections)


def section_from_comments(section: str, comments: Mapping[str, Any]) -> Any:
    """Rebuild one parameter section from the comment header of an output table."""
    cls = _SECTIONS[section]
    known = {f.name for f in fields(cls)}
    subset = {key: value for key, value in comments.items() if _KEY_ALIASES.get(key, key) in known}
    return _build_section(section, subset)


def load_config(path: str | Path) -> SimulationConfig:
    """Read a JSON run configuration."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ContrailConfigError(f"{path}: invalid JSON ({exc}).") from None
    if not isinstance(data, Mapping):
        raise ContrailConfigError(f"{path}: top level must be a mapping of sections.")
    logger.info("Loaded configuration from %s", path)
    return config_from_mapping(data)


__all__ = [
    "RadiationPart",
    "RandomMode",
    "PhysicalParameters",
    "CommonParameters",
    "DiffuseParameters",
    "DirectParameters",
    "ExecutionSettings",
    "SimulationConfig",
    "check_resolution",
    "config_from_mapping",
    "section_from_comments",
    "load_config",
]
