"""Common exception hierarchy for the contrail radiative-forcing toolkit."""

from __future__ import annotations


class ContrailError(Exception):
    """Base class for all contrail_rf specific exceptions."""


class ContrailConfigError(ContrailError, ValueError):
    """Raised when configuration validation fails."""


class ContrailPhysicsError(ContrailError, RuntimeError):
    """Raised when physical constraints are violated during simulation."""


class PhaseSamplingError(ContrailPhysicsError):
    """Raised when a phase-function draw falls outside the cumulative table."""


class SpectralDataError(ContrailError, LookupError):
    """Raised when external radiance data is missing or malformed."""


class TableFormatError(ContrailError, ValueError):
    """Raised when a simulation output table cannot be parsed."""


class WorkerError(ContrailError, RuntimeError):
    """Raised when a worker task fails during a parallel run."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


__all__ = [
    "ContrailError",
    "ContrailConfigError",
    "ContrailPhysicsError",
    "PhaseSamplingError",
    "SpectralDataError",
    "TableFormatError",
    "WorkerError",
]
