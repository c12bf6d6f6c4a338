"""CLI entry point for hydrocore column simulations.

Loads a YAML configuration (or the defaults: a closed Richards column),
applies command line overrides, builds the PK tree and runs it.
"""

import argparse
import logging
import sys

from hydrocore.config import init_taichi
from hydrocore.errors import ConfigurationError, HydroCoreError
from hydrocore.logging_config import setup_logging
from hydrocore.params import ValidationError, load_config_with_overrides, save_config
from hydrocore.simulation import build_simulation


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="hydrocore coupled flow/transport simulation")
    parser.add_argument("--config", type=str, help="Path to YAML configuration file")
    parser.add_argument("--t-end", type=float, help="End time [s]. Overrides config.")
    parser.add_argument("--n-cells", type=int, help="Column cells. Overrides config.")
    parser.add_argument(
        "--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE",
        help="Override any parameter, e.g. pks.flow.porosity=0.3 (repeatable)",
    )
    parser.add_argument("--backend", choices=["cpu", "cuda", "vulkan"], help="Taichi backend (default: auto)")
    parser.add_argument("--debug", action="store_true", help="Bounds-checked Taichi kernels")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", type=str, help="Also write logs to this file")
    parser.add_argument("--save-config", type=str, help="Write the resolved configuration here")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger = setup_logging(getattr(logging, args.log_level), args.log_file)

    overrides: dict = {}
    if args.t_end is not None:
        overrides["timestep"] = {"t_end": args.t_end}
    if args.n_cells is not None:
        overrides["mesh"] = {"n_cells": args.n_cells}

    try:
        config = load_config_with_overrides(args.config, overrides, args.assignments)
    except (FileNotFoundError, ValidationError) as err:
        logger.error("Invalid configuration: %s", err)
        return 2

    if args.save_config:
        save_config(config, args.save_config)
        logger.info("Resolved configuration written to %s", args.save_config)

    backend = init_taichi(args.backend, args.debug or None)
    logger.info("Taichi backend: %s", backend)

    try:
        sim = build_simulation(config)
    except ConfigurationError as err:
        logger.error("Invalid configuration: %s", err)
        return 2
    except HydroCoreError as err:
        logger.error("Simulation aborted: %s", err)
        return 1

    try:
        summary = sim.run()
    except HydroCoreError as err:
        logger.error("Simulation aborted: %s", err)
        return 1

    logger.info(
        "Done: %d cycles (%d failed attempts), final time %.6g s",
        summary.cycles, summary.failed_attempts, summary.final_time,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
