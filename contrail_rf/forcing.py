"""
Radiative forcing from simulation tables and libRadtran radiance fields.

For every wavelength the photon statistics of the solar direct, solar
diffuse and terrestrial diffuse runs are turned into powers per incident
direction; forcing per part is ``sum(P_abs + P_down - P_up)``. Results of
all wavelengths are then summed elementwise into the integrated forcing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from .config import CommonParameters, DiffuseParameters, DirectParameters, section_from_comments
from .exceptions import ContrailConfigError, TableFormatError
from .libradtran import SpectralBlock, find_block, parse_twostream, parse_uvspec
from .tables import ParsedTable, format_value, read_table

logger = logging.getLogger("contrail_rf.forcing")

SUFFIX_SOLAR_DIFFUSE = "_solar_diffuse"
SUFFIX_SOLAR_DIRECT = "_solar_direct"
SUFFIX_TERRESTRIAL_DIFFUSE = "_terrestrial_diffuse"

CSV_NAME = "radiative_forcing.csv"
CSV_COLUMNS = ("lambda", "part", "p_up", "p_down", "p_abs", "rf_sol", "rf_terr", "rf_total")

# Table wavelengths are micrometres, libRadtran uses nanometres.
MICRONS_TO_NM = 1000.0


@dataclass(frozen=True)
class ForcingStepResult:
    """Upward, downward and absorbed power per incident direction."""

    p_up: np.ndarray
    p_down: np.ndarray
    p_abs: np.ndarray

    def __post_init__(self) -> None:
        if not self.p_up.shape == self.p_down.shape == self.p_abs.shape:
            raise ContrailConfigError(
                "ForcingStepResult components differ in shape: "
                f"{self.p_up.shape}, {self.p_down.shape}, {self.p_abs.shape}."
            )

    @property
    def shape(self) -> tuple[int, ...]:
        return self.p_up.shape

    def __add__(self, other: ForcingStepResult) -> ForcingStepResult:
        if not isinstance(other, ForcingStepResult):
            return NotImplemented
        if other.shape != self.shape:
            raise ContrailConfigError(
                f"Cannot integrate results on direction grids of shape {self.shape} and {other.shape}."
            )
        return ForcingStepResult(self.p_up + other.p_up, self.p_down + other.p_down, self.p_abs + other.p_abs)

    def totals(self) -> tuple[float, float, float]:
        return float(self.p_up.sum()), float(self.p_down.sum()), float(self.p_abs.sum())

    def radiative_forcing(self) -> float:
        return float((self.p_abs + self.p_down - self.p_up).sum())


@dataclass(frozen=True)
class ForcingValues:
    solar: float
    terrestrial: float

    @property
    def total(self) -> float:
        return self.solar + self.terrestrial

    @classmethod
    def from_results(cls, solar: ForcingStepResult, terrestrial: ForcingStepResult) -> ForcingValues:
        return cls(solar.radiative_forcing(), terrestrial.radiative_forcing())


@dataclass(frozen=True)
class WavelengthTables:
    solar_direct: ParsedTable
    solar_diffuse: ParsedTable
    terrestrial_diffuse: ParsedTable

    @classmethod
    def read(cls, solar_direct: Path, solar_diffuse: Path, terrestrial_diffuse: Path) -> WavelengthTables:
        return cls(read_table(solar_direct), read_table(solar_diffuse), read_table(terrestrial_diffuse))


@dataclass(frozen=True)
class WavelengthForcing:
    lambda_solar_direct: float
    lambda_solar_diffuse: float
    lambda_terrestrial: float
    solar_direct: ForcingStepResult
    solar_diffuse: ForcingStepResult
    terrestrial_diffuse: ForcingStepResult
    forcing: ForcingValues


@dataclass(frozen=True)
class IntegrationResult:
    steps: tuple[WavelengthForcing, ...]
    solar: ForcingStepResult
    terrestrial: ForcingStepResult
    forcing: ForcingValues


def _wavelength_nm(table: ParsedTable) -> float:
    return float(table.parameter("lambda")) * MICRONS_TO_NM


def _band(table: ParsedTable) -> object:
    """Spectral band index of a table, or its wavelength when coefficients were given directly."""
    band = table.parameters.get("spectral_band_index")
    return band if band is not None else f"lambda={table.parameter('lambda')}"


def _header_section(table: ParsedTable, section: str):
    try:
        return section_from_comments(section, table.parameters)
    except ContrailConfigError as exc:
        raise TableFormatError(f"{table.path}: invalid parameter comments ({exc})") from None


def _common_parameters(table: ParsedTable) -> CommonParameters:
    return _header_section(table, "common")


def _diffuse_parameters(table: ParsedTable) -> DiffuseParameters:
    """Grid parameters from the header, checked against the number of rows."""
    params = _header_section(table, "solar_diffuse")
    if len(table) != params.bins_total:
        raise TableFormatError(
            f"{table.path}: expected {params.bins_total} rows for a {params.bins_theta} x "
            f"{params.bins_phi} direction grid, found {len(table)}."
        )
    return params


def _direct_parameters(table: ParsedTable) -> DirectParameters:
    if len(table) != 1:
        raise TableFormatError(f"{table.path}: expected 1 direct beam row, found {len(table)}.")
    return _header_section(table, "solar_direct")


def _solid_angle(theta: np.ndarray, params: DiffuseParameters) -> np.ndarray:
    d_theta = math.pi / params.bins_theta
    d_phi = 2.0 * math.pi / params.bins_phi
    return np.sin(theta) * d_phi * d_theta


def _hemispheres(theta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    degrees = np.degrees(theta)
    upper = (degrees > 0.0) & (degrees <= 90.0)
    lower = (degrees > 90.0) & (degrees <= 180.0)
    return upper, lower


class SpectralIntegrator:
    """
    Combine simulation tables with libRadtran fields.

    Parameters
    ----------
    solar_blocks:
        uvspec blocks with angular radiance tables.
    terrestrial_blocks:
        twostream irradiance blocks.
    """

    def __init__(
        self, solar_blocks: Sequence[SpectralBlock], terrestrial_blocks: Sequence[SpectralBlock]
    ) -> None:
        self.solar_blocks = tuple(solar_blocks)
        self.terrestrial_blocks = tuple(terrestrial_blocks)

    @classmethod
    def from_files(cls, uvspec: str | Path, twostream: str | Path) -> SpectralIntegrator:
        return cls(parse_uvspec(uvspec), parse_twostream(twostream))

    # ---------------------------------------------------------------- per part
    def calc_solar_direct(self, direct: ParsedTable) -> ForcingStepResult:
        """Direct beam powers; the direct part has no downward component."""
        _direct_parameters(direct)
        block = find_block(self.solar_blocks, _wavelength_nm(direct), source=f"uvspec data for {direct.path}")
        factor = direct.column("correction_factor")
        p_up = direct.column("num_scattered_up") * block.edir * factor
        p_abs = direct.column("num_abs") * block.edir * factor
        return ForcingStepResult(p_up, np.zeros_like(p_up), p_abs)

    def calc_solar_diffuse(
        self, diffuse: ParsedTable, direct: ParsedTable, direct_result: ForcingStepResult
    ) -> ForcingStepResult:
        """
        Diffuse solar powers with the direct beam merged into the closest direction.
        """

        params = _diffuse_parameters(diffuse)
        beam = _direct_parameters(direct)
        block = find_block(
            self.solar_blocks, _wavelength_nm(diffuse), source=f"uvspec data for {diffuse.path}"
        )
        psi = _common_parameters(diffuse).psi
        theta = diffuse.column("theta")
        phi = diffuse.column("phi")
        factor = diffuse.column("correction_factor")
        s_up = diffuse.column("num_scattered_up")
        s_abs = diffuse.column("num_abs")

        omega = _solid_angle(theta, params)
        radiance = np.array([block.match_diffuse_radiance(t, p, psi) for t, p in zip(theta, phi)])
        upper, lower = _hemispheres(theta)
        weighted = s_up * factor * omega * radiance
        p_up = np.where(upper, weighted, 0.0)
        p_down = np.where(lower, weighted, 0.0)
        p_abs = s_abs * factor * radiance * omega

        nearest = int(np.argmin(np.abs(beam.sza - theta) + np.abs(beam.phi0 - phi)))
        p_up[nearest] += direct_result.p_up.sum()
        p_abs[nearest] += direct_result.p_abs.sum()
        return ForcingStepResult(p_up, p_down, p_abs)

    def calc_terrestrial_diffuse(self, diffuse: ParsedTable) -> ForcingStepResult:
        """Isotropic terrestrial powers from twostream fluxes."""
        params = _diffuse_parameters(diffuse)
        block = find_block(
            self.terrestrial_blocks, _wavelength_nm(diffuse), source=f"twostream data for {diffuse.path}"
        )
        theta = diffuse.column("theta")
        factor = diffuse.column("correction_factor")
        s_up = diffuse.column("num_scattered_up")
        s_abs = diffuse.column("num_abs")
        n_bins = params.bins_total

        omega = _solid_angle(theta, params)
        upper, lower = _hemispheres(theta)
        p_up = np.where(upper, s_up * factor * block.edn / n_bins * omega, 0.0)
        p_down = np.where(lower, s_up * factor * block.eup / n_bins * omega, 0.0)
        p_abs = s_abs * factor * block.edn / n_bins * omega
        return ForcingStepResult(p_up, p_down, p_abs)

    # ---------------------------------------------------------------- wavelength
    def compute(self, tables: WavelengthTables) -> WavelengthForcing:
        direct_band = _band(tables.solar_direct)
        diffuse_band = _band(tables.solar_diffuse)
        if direct_band != diffuse_band:
            raise ContrailConfigError(
                f"Solar direct ({tables.solar_direct.path}) and diffuse ({tables.solar_diffuse.path}) "
                f"tables have spectral_band_index {direct_band} and {diffuse_band}."
            )
        solar_direct = self.calc_solar_direct(tables.solar_direct)
        solar_diffuse = self.calc_solar_diffuse(tables.solar_diffuse, tables.solar_direct, solar_direct)
        terrestrial = self.calc_terrestrial_diffuse(tables.terrestrial_diffuse)
        forcing = ForcingValues.from_results(solar_diffuse, terrestrial)
        step = WavelengthForcing(
            lambda_solar_direct=_wavelength_nm(tables.solar_direct),
            lambda_solar_diffuse=_wavelength_nm(tables.solar_diffuse),
            lambda_terrestrial=_wavelength_nm(tables.terrestrial_diffuse),
            solar_direct=solar_direct,
            solar_diffuse=solar_diffuse,
            terrestrial_diffuse=terrestrial,
            forcing=forcing,
        )
        logger.info(
            "lambda_sol = %.2f nm, lambda_terr = %.2f nm: RF solar %g, terrestrial %g, total %g",
            step.lambda_solar_diffuse,
            step.lambda_terrestrial,
            forcing.solar,
            forcing.terrestrial,
            forcing.total,
        )
        return step

    def integrate(
        self,
        solar_direct: Sequence[Path],
        solar_diffuse: Sequence[Path],
        terrestrial_diffuse: Sequence[Path],
    ) -> IntegrationResult:
        """Compute every wavelength and sum the results elementwise."""
        if not len(solar_direct) == len(solar_diffuse) == len(terrestrial_diffuse):
            raise ContrailConfigError(
                f"Found {len(solar_direct)} solar direct, {len(solar_diffuse)} solar diffuse and "
                f"{len(terrestrial_diffuse)} terrestrial diffuse files; integration over lambda "
                "requires equal numbers."
            )
        if not solar_diffuse:
            raise ContrailConfigError("No simulation output files to integrate.")

        # Matching prefixes pair the parts of one wavelength.
        files = zip(
            sorted(map(Path, solar_direct), key=lambda p: p.name),
            sorted(map(Path, solar_diffuse), key=lambda p: p.name),
            sorted(map(Path, terrestrial_diffuse), key=lambda p: p.name),
        )
        seen_solar: dict[object, Path] = {}
        seen_terrestrial: dict[object, Path] = {}
        steps: list[WavelengthForcing] = []
        for position, (direct_path, diffuse_path, terrestrial_path) in enumerate(files, start=1):
            logger.info("Calculating RF results for the given wavelengths - %d / %d", position, len(solar_diffuse))
            tables = WavelengthTables.read(direct_path, diffuse_path, terrestrial_path)
            for seen, table in (
                (seen_solar, tables.solar_diffuse),
                (seen_terrestrial, tables.terrestrial_diffuse),
            ):
                band = _band(table)
                if band in seen:
                    raise ContrailConfigError(
                        f"Duplicate spectral band {band} in {table.path} (already in {seen[band]}); "
                        "integration requires unique wavelengths for each output file."
                    )
                seen[band] = table.path
            steps.append(self.compute(tables))

        solar = steps[0].solar_diffuse
        terrestrial = steps[0].terrestrial_diffuse
        for step in steps[1:]:
            solar = solar + step.solar_diffuse
            terrestrial = terrestrial + step.terrestrial_diffuse
        forcing = ForcingValues.from_results(solar, terrestrial)
        logger.info(
            "Integrated RF: solar %g, terrestrial %g, total %g", forcing.solar, forcing.terrestrial, forcing.total
        )
        return IntegrationResult(tuple(steps), solar, terrestrial, forcing)


def _csv_line(lam: float, part: str, step: ForcingStepResult | None, rf_sol: float, rf_terr: float, rf_total: float) -> str:
    p_up, p_down, p_abs = step.totals() if step is not None else (0.0, 0.0, 0.0)
    values = (lam, part, p_up, p_down, p_abs, rf_sol, rf_terr, rf_total)
    return ", ".join(format_value(float(v)) if not isinstance(v, str) else v for v in values) + "\n"


def write_forcing_csv(result: IntegrationResult, path: str | Path) -> Path:
    path = Path(path)
    with path.open("w", encoding="utf-8") as handle:
        handle.write(", ".join(CSV_COLUMNS) + "\n")
        for step in result.steps:
            rf = step.forcing
            handle.write(_csv_line(step.lambda_solar_direct, "sol_dir", step.solar_direct, 0.0, 0.0, 0.0))
            handle.write(_csv_line(step.lambda_solar_diffuse, "sol_diff", step.solar_diffuse, rf.solar, 0.0, rf.total))
            handle.write(
                _csv_line(step.lambda_terrestrial, "terr_diff", step.terrestrial_diffuse, 0.0, rf.terrestrial, rf.total)
            )
        rf = result.forcing
        handle.write(_csv_line(0.0, "total", None, rf.solar, rf.terrestrial, rf.total))
    logger.info("Wrote radiative forcing to %s", path)
    return path


def discover_outputs(directory: str | Path) -> tuple[list[Path], list[Path], list[Path]]:
    """Simulation tables in ``directory`` grouped by part."""
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"{directory} must be a valid directory.")

    def matching(suffix: str) -> list[Path]:
        return sorted(p for p in directory.glob(f"*{suffix}_*.csv") if p.is_file())

    return (
        matching(SUFFIX_SOLAR_DIRECT),
        matching(SUFFIX_SOLAR_DIFFUSE),
        matching(SUFFIX_TERRESTRIAL_DIFFUSE),
    )


__all__ = [
    "ForcingStepResult",
    "ForcingValues",
    "WavelengthTables",
    "WavelengthForcing",
    "IntegrationResult",
    "SpectralIntegrator",
    "write_forcing_csv",
    "discover_outputs",
    "SUFFIX_SOLAR_DIFFUSE",
    "SUFFIX_SOLAR_DIRECT",
    "SUFFIX_TERRESTRIAL_DIFFUSE",
    "CSV_NAME",
]
