"""
Readers for libRadtran output used as external radiance fields.

Two formats are supported:

* ``uvspec`` output with radiances: per wavelength a header line
  ``lambda edir edn eup uavgdir uavgdn uavgup``, an azimuth header line
  (degrees) and rows ``umu u0u uu(phi_1) ... uu(phi_n)``. Header lines of a
  new block are indented by two spaces, table rows are not.
* ``twostream`` output: one line ``lambda edir edn eup uavg`` per wavelength.

Wavelengths are in nanometres.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np

from .exceptions import SpectralDataError

logger = logging.getLogger("contrail_rf.libradtran")

WAVELENGTH_TOLERANCE = 0.01


def libradtran_to_simulation_azimuth(psi: float, phi_libradtran: float) -> float:
    """
    Convert a libRadtran azimuth (deviation from south) to the simulation's
    convention (deviation from the aircraft heading ``psi``). Degrees.
    """

    return phi_libradtran - 180.0 + psi


@dataclass
class SpectralBlock:
    wavelength: float
    edir: float
    edn: float
    eup: float
    uavgdir: float = 0.0
    uavgdn: float = 0.0
    uavgup: float = 0.0
    umu: np.ndarray = field(default_factory=lambda: np.empty(0))
    u0u: np.ndarray = field(default_factory=lambda: np.empty(0))
    azimuths: np.ndarray = field(default_factory=lambda: np.empty(0))
    radiance: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))

    @property
    def has_radiance(self) -> bool:
        return self.radiance.size > 0

    def match_diffuse_radiance(self, theta: float, phi: float, psi: float) -> float:
        """
        Radiance of the table cell closest to incident direction ``(theta, phi)``.

        Rows are matched on ``cos(theta)`` against ``umu``; columns on
        ``phi`` (radians) against the converted azimuth headers.
        """

        if not self.has_radiance:
            raise SpectralDataError(
                f"Spectral block at {self.wavelength!r} nm carries no radiance table."
            )
        row = int(np.argmin(np.abs(math.cos(theta) - self.umu)))
        converted = libradtran_to_simulation_azimuth(psi, self.azimuths)
        col = int(np.argmin(np.abs(math.degrees(phi) - converted)))
        return float(self.radiance[row, col])


def _numbers(path: Path, line_no: int, line: str) -> list[float]:
    try:
        return [float(v) for v in line.split()]
    except ValueError as exc:
        raise SpectralDataError(f"{path}:{line_no}: {exc}") from None


def _finish_block(path: Path, header: list[float], azimuths, rows) -> SpectralBlock:
    if azimuths is None or not rows:
        raise SpectralDataError(f"{path}: block at {header[0]!r} nm has no radiance table.")
    widths = {len(row) for row in rows}
    if widths != {len(azimuths) + 2}:
        raise SpectralDataError(
            f"{path}: block at {header[0]!r} nm has rows inconsistent with {len(azimuths)} azimuths."
        )
    table = np.asarray(rows, dtype=np.float64)
    return SpectralBlock(
        *header,
        umu=table[:, 0],
        u0u=table[:, 1],
        azimuths=np.asarray(azimuths, dtype=np.float64),
        radiance=table[:, 2:],
    )


def parse_uvspec(path: str | Path) -> list[SpectralBlock]:
    path = Path(path)
    blocks: list[SpectralBlock] = []
    header: list[float] | None = None
    azimuths: list[float] | None = None
    rows: list[list[float]] = []

    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("//"):
                continue
            nums = _numbers(path, line_no, stripped)
            if rows and line.startswith("  "):
                blocks.append(_finish_block(path, header, azimuths, rows))
                header, azimuths, rows = None, None, []
            if header is None:
                if len(nums) != 7:
                    raise SpectralDataError(
                        f"{path}:{line_no}: expected 7 header values, got {len(nums)}."
                    )
                header = nums
            elif azimuths is None:
                azimuths = nums
            else:
                rows.append(nums)
    if header is not None:
        blocks.append(_finish_block(path, header, azimuths, rows))
    logger.info("Parsed %d uvspec blocks from %s", len(blocks), path)
    return blocks


def parse_twostream(path: str | Path) -> list[SpectralBlock]:
    path = Path(path)
    blocks: list[SpectralBlock] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("//"):
                continue
            nums = _numbers(path, line_no, stripped)
            if len(nums) != 5:
                raise SpectralDataError(f"{path}:{line_no}: expected 5 values, got {len(nums)}.")
            wavelength, edir, edn, eup, uavg = nums
            blocks.append(SpectralBlock(wavelength, edir, edn, eup, uavgdir=uavg))
    logger.info("Parsed %d twostream blocks from %s", len(blocks), path)
    return blocks


def find_block(
    blocks: Sequence[SpectralBlock],
    wavelength: float,
    *,
    tolerance: float = WAVELENGTH_TOLERANCE,
    source: str = "libRadtran output",
) -> SpectralBlock:
    for block in blocks:
        if abs(block.wavelength - wavelength) <= tolerance:
            return block
    raise SpectralDataError(f"Lambda = {wavelength:.2f} nm not found in {source}.")


__all__ = [
    "SpectralBlock",
    "parse_uvspec",
    "parse_twostream",
    "find_block",
    "libradtran_to_simulation_azimuth",
    "WAVELENGTH_TOLERANCE",
]
