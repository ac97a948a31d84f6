"""
Run orchestration for the solar and terrestrial parts of a configuration.

A solar run traces the diffuse direction grid and, when configured, the
direct solar beam with the same tracer; a terrestrial run traces the
diffuse grid only. Each run streams one table into the output directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping

import torch

from .config import DiffuseParameters, RadiationPart, SimulationConfig
from .driver import ParallelDriver, RunMetrics, write_metrics
from .exceptions import ContrailConfigError
from .forcing import SUFFIX_SOLAR_DIFFUSE, SUFFIX_SOLAR_DIRECT, SUFFIX_TERRESTRIAL_DIFFUSE
from .optics import PhysicalParameterModel, prepare_parameters
from .random_source import RandomStrategy
from .tables import DirectionTableWriter
from .tracer import PhotonTracer

logger = logging.getLogger("contrail_rf.simulation")

PART_BOTH = "both"


def output_name(prefix: str, suffix: str, wavelength: float | None) -> str:
    if wavelength is None:
        return f"{prefix}{suffix}.csv"
    return f"{prefix}{suffix}_{wavelength:.2f}.csv"


def _parts(part: RadiationPart | str) -> tuple[RadiationPart, ...]:
    if isinstance(part, RadiationPart):
        return (part,)
    if part == PART_BOTH:
        return (RadiationPart.SOLAR, RadiationPart.TERRESTRIAL)
    try:
        return (RadiationPart(part),)
    except ValueError:
        raise ContrailConfigError(
            f"Unknown radiation part '{part}'; expected solar, terrestrial or {PART_BOTH}."
        ) from None


@dataclass
class PlannedRun:
    label: str
    params: DiffuseParameters
    path: Path
    direct: bool = False


class SimulationRunner:
    """
    Execute the parts of a ``SimulationConfig``.

    Parameters
    ----------
    config:
        Loaded run configuration.
    optics:
        Optical models per radiation part; only needed for sections that
        give a spectral band index instead of coefficients.
    output_dir:
        Directory receiving the tables and metrics files.
    overwrite:
        Replace existing tables instead of refusing to run.
    write_metrics:
        Write a metrics summary file after the run.
    """

    def __init__(
        self,
        config: SimulationConfig,
        *,
        optics: Mapping[RadiationPart, PhysicalParameterModel] | None = None,
        output_dir: str | Path = ".",
        overwrite: bool = False,
        write_metrics: bool = False,
        device: torch.device | None = None,
    ) -> None:
        self.config = config
        self.optics = dict(optics or {})
        self.output_dir = Path(output_dir)
        self.overwrite = overwrite
        self.write_metrics = write_metrics
        self.device = device

    def _section(self, part: RadiationPart) -> DiffuseParameters:
        section = (
            self.config.solar_diffuse if part is RadiationPart.SOLAR else self.config.terrestrial_diffuse
        )
        if section is None:
            raise ContrailConfigError(f"Configuration has no {part.value}_diffuse section.")
        return prepare_parameters(section, part, self.optics.get(part))

    def plan(self, part: RadiationPart | str = PART_BOTH) -> list[PlannedRun]:
        prefix = self.config.common.out_file_prefix
        runs: list[PlannedRun] = []
        for radiation in _parts(part):
            params = self._section(radiation)
            if radiation is RadiationPart.SOLAR:
                runs.append(
                    PlannedRun(
                        "solar_diffuse",
                        params,
                        self.output_dir / output_name(prefix, SUFFIX_SOLAR_DIFFUSE, params.wavelength),
                    )
                )
                if self.config.solar_direct is not None:
                    runs.append(
                        PlannedRun(
                            "solar_direct",
                            params,
                            self.output_dir / output_name(prefix, SUFFIX_SOLAR_DIRECT, params.wavelength),
                            direct=True,
                        )
                    )
            else:
                runs.append(
                    PlannedRun(
                        "terrestrial_diffuse",
                        params,
                        self.output_dir / output_name(prefix, SUFFIX_TERRESTRIAL_DIFFUSE, params.wavelength),
                    )
                )
        return runs

    def _check_outputs(self, runs: list[PlannedRun]) -> None:
        if self.overwrite:
            return
        existing = [str(run.path) for run in runs if run.path.exists()]
        if existing:
            raise FileExistsError(
                f"Output file(s) already exist: {', '.join(existing)}; use overwrite to replace them."
            )

    def run(self, part: RadiationPart | str = PART_BOTH) -> dict[str, RunMetrics]:
        runs = self.plan(part)
        self._check_outputs(runs)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        common = self.config.common
        execution = self.config.execution
        results: dict[str, RunMetrics] = {}
        tracers: dict[int, PhotonTracer] = {}
        for run in runs:
            # Diffuse and direct solar runs share one parameter set and tracer.
            tracer = tracers.get(id(run.params))
            if tracer is None:
                tracer = PhotonTracer(run.params.physical(), device=self.device)
                tracers[id(run.params)] = tracer
            strategy = RandomStrategy(execution.random_mode, execution.seed, self.device)
            driver = ParallelDriver(
                tracer,
                num_photons=common.num_photons,
                resolution_s=run.params.resolution_s,
                workers=execution.workers,
                strategy=strategy,
                batch_size=execution.batch_size,
            )
            comments = {**common.comments(), **run.params.comments()}
            if run.direct:
                direct = self.config.solar_direct
                comments.update(direct.comments())
            logger.info("Starting %s run -> %s", run.label, run.path)
            with DirectionTableWriter(
                run.path, comments, resolution_s=run.params.resolution_s, direct=run.direct
            ) as writer:
                if run.direct:
                    results[run.label] = driver.run_direct(direct.sza, direct.phi0, writer)
                else:
                    results[run.label] = driver.run_diffuse(
                        run.params.bins_theta, run.params.bins_phi, writer
                    )

        if self.write_metrics and runs:
            first = runs[0].params
            name = RunMetrics.file_name(common.num_photons, first.bins_phi, first.bins_theta, datetime.now())
            write_metrics(results, self.output_dir / name)
        return results


__all__ = ["SimulationRunner", "PlannedRun", "output_name", "PART_BOTH"]
