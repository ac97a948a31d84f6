"""Test configuration for contrail_rf unit tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable when running the ``pytest`` console script.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# Crystal count giving an optical depth of about one through the cloud centre.
NUM_ICE_TAU_ONE = 1.2e14


@pytest.fixture()
def diffuse_section() -> dict:
    return {
        "bins_phi": 2,
        "bins_theta": 2,
        "resolution_s": 90,
        "distance": 1000.0,
        "radius_incident": 100.0,
        "radius_droplet": 1.0e-5,
        "num_sca": 180,
        "sigma_h": 30.0,
        "sigma_v": 30.0,
        "num_ice": NUM_ICE_TAU_ONE,
        "g": 0.75,
        "absorption_factor": 0.5,
        "scattering_factor": 1.5,
        "lambda": 0.5,
    }


@pytest.fixture()
def config_mapping(diffuse_section: dict) -> dict:
    return {
        "common": {"num_photons": 200, "out_file_prefix": "run", "psi": 0.0},
        "solar_diffuse": dict(diffuse_section),
        "solar_direct": {"sza": 0.7853981633974483, "phi0": 3.141592653589793},
        "terrestrial_diffuse": dict(diffuse_section),
        "execution": {"workers": 2, "random_mode": "per_task", "seed": 7, "batch_size": 100},
    }


# ---- libRadtran and simulation table fixtures
EDIR, EDN, EUP = 1000.0, 200.0, 100.0
UMU = (-1.0, 0.0, 1.0)
AZIMUTHS = (0.0, 180.0, 360.0)


def radiance(row: int, col: int) -> float:
    return 10.0 * (row + 1) + col


def write_uvspec(path: Path, wavelengths_nm) -> Path:
    lines = []
    for lam in wavelengths_nm:
        lines.append(f"  {lam:.3f} {EDIR} {EDN} {EUP} 1.0 2.0 3.0")
        lines.append("  " + " ".join(str(a) for a in AZIMUTHS))
        for i, umu in enumerate(UMU):
            values = [umu, 0.5] + [radiance(i, j) for j in range(len(AZIMUTHS))]
            lines.append(" ".join(str(v) for v in values))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_twostream(path: Path, wavelengths_nm) -> Path:
    lines = [f"{lam:.3f} 0.0 {EDN} {EUP} 0.5" for lam in wavelengths_nm]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


DIFFUSE_ROWS = (
    # theta, phi, num_abs, num_scattered, up, down, correction_factor, average, affected, S_90, S_180
    (0.7853981633974483, 3.141592653589793, 10, 30, 5, 25, 0.5, 1.0, 40, 2.5, 12.5),
    (2.356194490192345, 3.141592653589793, 20, 40, 7, 33, 0.25, 1.0, 60, 1.75, 8.25),
)
DIRECT_ROW = (0.7853981633974483, 3.141592653589793, 4, 10, 3, 7, 0.1, 1.0, 14)


def write_simulation_tables(directory: Path, prefix: str, wavelength_um: float, band: int | None) -> tuple:
    from contrail_rf.tables import DIFFUSE_COLUMNS, DIFFUSE_TABLE, DIRECT_COLUMNS, DIRECT_TABLE, TableWriter

    parameters = {
        "num_photons": 100,
        "psi": 0.0,
        "bins_phi": 1,
        "bins_theta": 2,
        "resolution_s": 90,
        "distance": 1000.0,
        "g": 0.75,
        "absorption_factor": 0.5,
        "scattering_factor": 1.5,
        "radius_incident": 100.0,
        "radius_droplet": 1.0e-5,
        "num_sca": 180,
        "sigma_h": 30.0,
        "sigma_v": 30.0,
        "sigma_s": 0.0,
        "num_ice": NUM_ICE_TAU_ONE,
    }
    if band is not None:
        parameters["spectral_band_index"] = band
    parameters["lambda"] = wavelength_um
    paths = []
    for suffix, name, columns, rows in (
        ("_solar_direct", DIRECT_TABLE, DIRECT_COLUMNS, [DIRECT_ROW]),
        ("_solar_diffuse", DIFFUSE_TABLE, list(DIFFUSE_COLUMNS) + ["S_90", "S_180"], DIFFUSE_ROWS),
        ("_terrestrial_diffuse", DIFFUSE_TABLE, list(DIFFUSE_COLUMNS) + ["S_90", "S_180"], DIFFUSE_ROWS),
    ):
        path = directory / f"{prefix}{suffix}_{wavelength_um:.2f}.csv"
        table_parameters = dict(parameters)
        if suffix == "_solar_direct":
            table_parameters.update(sza=DIRECT_ROW[0], phi0=DIRECT_ROW[1])
        with TableWriter(path, name, columns, table_parameters) as writer:
            for row in rows:
                writer.write_values(list(row))
        paths.append(path)
    return tuple(paths)
