"""
contrail_rf Monte Carlo radiative-forcing toolkit.

Photons are traced through a Gaussian ice-crystal cloud for a grid of
incident directions; the resulting tables are combined with libRadtran
radiance fields into the radiative forcing of a contrail.
"""

from .config import (
    CommonParameters,
    DiffuseParameters,
    DirectParameters,
    ExecutionSettings,
    PhysicalParameters,
    RadiationPart,
    RandomMode,
    SimulationConfig,
    load_config,
)
from .direction import DirectionResult, DirectionTask
from .driver import ParallelDriver, RunMetrics
from .exceptions import (
    ContrailConfigError,
    ContrailError,
    ContrailPhysicsError,
    PhaseSamplingError,
    SpectralDataError,
    TableFormatError,
    WorkerError,
)
from .forcing import ForcingStepResult, SpectralIntegrator
from .libradtran import SpectralBlock, parse_twostream, parse_uvspec
from .monitoring import ProgressMonitor
from .optics import PhysicalParameterModel, TabulatedOptics
from .phase import PhaseFunctionTable, PhaseSampler
from .random_source import RandomStrategy, TorchRandomSource
from .simulation import SimulationRunner
from .tables import DirectionTableWriter, read_table
from .tracer import PhotonTracer

__all__ = [
    "PhysicalParameters",
    "CommonParameters",
    "DiffuseParameters",
    "DirectParameters",
    "ExecutionSettings",
    "SimulationConfig",
    "RadiationPart",
    "RandomMode",
    "load_config",
    "PhaseFunctionTable",
    "PhaseSampler",
    "PhotonTracer",
    "DirectionTask",
    "DirectionResult",
    "ParallelDriver",
    "RunMetrics",
    "RandomStrategy",
    "TorchRandomSource",
    "DirectionTableWriter",
    "read_table",
    "SpectralBlock",
    "parse_uvspec",
    "parse_twostream",
    "SpectralIntegrator",
    "ForcingStepResult",
    "PhysicalParameterModel",
    "TabulatedOptics",
    "SimulationRunner",
    "ProgressMonitor",
    "ContrailError",
    "ContrailConfigError",
    "ContrailPhysicsError",
    "PhaseSamplingError",
    "SpectralDataError",
    "TableFormatError",
    "WorkerError",
]
