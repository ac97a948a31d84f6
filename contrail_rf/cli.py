"""Command line entry point: ``contrail-rf simulate`` and ``contrail-rf forcing``."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from ._logging import configure_logging
from .config import ExecutionSettings, RadiationPart, load_config
from .exceptions import ContrailConfigError, ContrailError, WorkerError
from .forcing import CSV_NAME, SpectralIntegrator, discover_outputs, write_forcing_csv
from .optics import PhysicalParameterModel, TabulatedOptics
from .simulation import PART_BOTH, SimulationRunner

logger = logging.getLogger("contrail_rf.cli")

EXIT_OK = 0
EXIT_IO = 1
EXIT_WORKER = 2
EXIT_CONFIG = 3
EXIT_PHYSICS = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contrail-rf",
        description="Monte Carlo radiative transfer through aircraft contrails.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    simulate = sub.add_parser("simulate", help="Trace photons for a configuration file.")
    simulate.add_argument("-c", "--config", required=True, type=Path, help="JSON run configuration.")
    simulate.add_argument(
        "-p", "--part", choices=("solar", "terrestrial", PART_BOTH), default=PART_BOTH,
        help="Radiation part to simulate.",
    )
    simulate.add_argument("-t", "--threads", type=int, help="Override the number of worker threads.")
    simulate.add_argument("-f", "--force", action="store_true", help="Overwrite existing output tables.")
    simulate.add_argument("-m", "--metrics", action="store_true", help="Write a run metrics file.")
    simulate.add_argument("-o", "--output-dir", type=Path, default=Path("."), help="Output directory.")
    simulate.add_argument("--seed", type=int, help="Override the random seed.")
    simulate.add_argument(
        "--random-mode", choices=("shared", "per_task", "thread_local"), help="Override the random mode."
    )
    simulate.add_argument("--solar-optics", type=Path, help="Optical table (JSON) for the solar part.")
    simulate.add_argument(
        "--terrestrial-optics", type=Path, help="Optical table (JSON) for the terrestrial part."
    )

    forcing = sub.add_parser("forcing", help="Integrate simulation tables with libRadtran output.")
    forcing.add_argument("-d", "--directory", required=True, type=Path, help="Directory of simulation tables.")
    forcing.add_argument("-u", "--uvspec", required=True, type=Path, help="uvspec output with radiances.")
    forcing.add_argument("-t", "--twostream", required=True, type=Path, help="twostream output.")
    forcing.add_argument("-o", "--output", type=Path, help=f"Output CSV (default <directory>/{CSV_NAME}).")
    return parser


def _simulate(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    execution = config.execution
    overrides = {}
    if args.threads is not None:
        overrides["workers"] = args.threads
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.random_mode is not None:
        overrides["random_mode"] = args.random_mode
    if overrides:
        config.execution = replace(execution, **overrides)

    optics = {}
    for part, path in ((RadiationPart.SOLAR, args.solar_optics), (RadiationPart.TERRESTRIAL, args.terrestrial_optics)):
        if path is not None:
            optics[part] = PhysicalParameterModel(part, TabulatedOptics.from_json(path))

    runner = SimulationRunner(
        config,
        optics=optics,
        output_dir=args.output_dir,
        overwrite=args.force,
        write_metrics=args.metrics,
    )
    runner.run(args.part)


def _forcing(args: argparse.Namespace) -> None:
    solar_direct, solar_diffuse, terrestrial = discover_outputs(args.directory)
    integrator = SpectralIntegrator.from_files(args.uvspec, args.twostream)
    result = integrator.integrate(solar_direct, solar_diffuse, terrestrial)
    output = args.output if args.output is not None else args.directory / CSV_NAME
    write_forcing_csv(result, output)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    command = _simulate if args.command == "simulate" else _forcing
    try:
        command(args)
    except WorkerError as exc:
        logger.error("Worker failure: %s", exc)
        return EXIT_WORKER
    except ContrailConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG
    except ContrailError as exc:
        logger.error("Simulation error: %s", exc)
        return EXIT_PHYSICS
    except OSError as exc:
        logger.error("I/O error: %s", exc)
        return EXIT_IO
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
