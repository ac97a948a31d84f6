"""
Text tables written by simulation runs and read back by the forcing stage.

Layout::

    // num_photons = 100000
    // psi = 0.0
    ...
    //DIFFUSE_SCATTERED_RADIATION
    theta phi num_abs ... S_2 S_4 ... S_180
    0.3926990816987241 0.39269908169872414 12 ...

Parameter comments precede a table-name comment, the first non-comment line
is the column header and values are space delimited.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Mapping, Sequence

import numpy as np

from .direction import DirectionResult
from .exceptions import TableFormatError

logger = logging.getLogger("contrail_rf.tables")

DIFFUSE_TABLE = "DIFFUSE_SCATTERED_RADIATION"
DIRECT_TABLE = "DIRECT_SCATTERED_RADIATION"

COUNT_COLUMNS = (
    "num_abs",
    "num_scattered",
    "num_scattered_up",
    "num_scattered_down",
    "correction_factor",
    "average_scattered",
    "num_affected",
)
DIFFUSE_COLUMNS = ("theta", "phi") + COUNT_COLUMNS
DIRECT_COLUMNS = ("sza", "phi0") + COUNT_COLUMNS


def bin_columns(resolution_s: int) -> list[str]:
    return [f"S_{resolution_s * (j + 1)}" for j in range(180 // resolution_s)]


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return repr(value)
    return str(value)


def parse_value(text: str) -> Any:
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            continue
    return text


class TableWriter:
    """
    Streams one table to disk, row by row.

    Rows go to a ``.part`` sibling of ``path``. The file is moved into place
    when the writer closes cleanly and removed when the block raises, so a
    failed run never leaves a truncated table behind.
    """

    def __init__(
        self,
        path: str | Path,
        name: str,
        columns: Sequence[str],
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        self.path = Path(path)
        self.name = name
        self.columns = list(columns)
        self.parameters = dict(parameters or {})
        self.rows_written = 0
        self._handle: IO[str] | None = None

    @property
    def partial_path(self) -> Path:
        return self.path.with_name(self.path.name + ".part")

    def __enter__(self) -> TableWriter:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.discard()

    def open(self) -> None:
        self.rows_written = 0
        self._handle = self.partial_path.open("w", encoding="utf-8")
        for key, value in self.parameters.items():
            self._handle.write(f"// {key} = {format_value(value)}\n")
        self._handle.write(f"//{self.name}\n")
        self._handle.write(" ".join(self.columns) + "\n")

    def write_values(self, values: Sequence[Any]) -> None:
        if self._handle is None:
            raise RuntimeError(f"Table writer for {self.path} is not open.")
        if len(values) != len(self.columns):
            raise TableFormatError(
                f"{self.path}: row has {len(values)} values for {len(self.columns)} columns."
            )
        self._handle.write(" ".join(format_value(v) for v in values) + "\n")
        self.rows_written += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            os.replace(self.partial_path, self.path)
            logger.info("Wrote %d rows to %s", self.rows_written, self.path)

    def discard(self) -> None:
        """Drop the partial table; an existing file at ``path`` is left untouched."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        if self.partial_path.exists():
            self.partial_path.unlink()
            logger.warning("Discarded partial table %s after %d rows", self.path, self.rows_written)


class DirectionTableWriter(TableWriter):
    """Writes DirectionResults as diffuse (with ``S_`` bins) or direct rows."""

    def __init__(
        self,
        path: str | Path,
        parameters: Mapping[str, Any],
        *,
        resolution_s: int,
        direct: bool = False,
    ) -> None:
        if direct:
            super().__init__(path, DIRECT_TABLE, DIRECT_COLUMNS, parameters)
        else:
            super().__init__(
                path, DIFFUSE_TABLE, list(DIFFUSE_COLUMNS) + bin_columns(resolution_s), parameters
            )
        self.direct = direct

    def write_row(self, result: DirectionResult) -> None:
        self.write_values(result.row(with_bins=not self.direct))


@dataclass
class ParsedTable:
    path: Path
    name: str | None
    columns: list[str]
    values: np.ndarray
    parameters: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def column(self, name: str) -> np.ndarray:
        try:
            return self.values[:, self.columns.index(name)]
        except ValueError:
            raise TableFormatError(f"{self.path}: missing column '{name}'.") from None

    def parameter(self, name: str) -> Any:
        try:
            return self.parameters[name]
        except KeyError:
            raise TableFormatError(f"{self.path}: missing parameter comment '{name}'.") from None


def read_table(path: str | Path) -> ParsedTable:
    path = Path(path)
    parameters: dict[str, Any] = {}
    name: str | None = None
    columns: list[str] | None = None
    rows: list[list[float]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("//"):
                body = stripped[2:]
                if "=" in body:
                    key, _, value = body.partition("=")
                    parameters[key.strip()] = parse_value(value.strip())
                else:
                    name = body.strip()
                continue
            fields_ = stripped.split()
            if columns is None:
                columns = fields_
                continue
            if len(fields_) != len(columns):
                raise TableFormatError(
                    f"{path}:{line_no}: expected {len(columns)} values, got {len(fields_)}."
                )
            try:
                rows.append([float(v) for v in fields_])
            except ValueError as exc:
                raise TableFormatError(f"{path}:{line_no}: {exc}") from None
    if columns is None:
        raise TableFormatError(f"{path}: no column header found.")
    values = np.asarray(rows, dtype=np.float64).reshape(len(rows), len(columns))
    return ParsedTable(path=path, name=name, columns=columns, values=values, parameters=parameters)


__all__ = [
    "DIFFUSE_TABLE",
    "DIRECT_TABLE",
    "DIFFUSE_COLUMNS",
    "DIRECT_COLUMNS",
    "TableWriter",
    "DirectionTableWriter",
    "ParsedTable",
    "read_table",
    "bin_columns",
    "format_value",
    "parse_value",
]
