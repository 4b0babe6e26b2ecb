"""Command line entry point of the species mapping workflow."""
from __future__ import annotations

from typing import List

import argparse
import logging
import sys

import yaml

from .config import WorkflowConfig
from .configuration_error import ConfigurationError
from .geometry_mismatch_error import GeometryMismatchError
from .malformed_input_error import MalformedInputError
from .out_of_bounds_error import OutOfBoundsError
from .unknown_coordinate_system_error import UnknownCoordinateSystemError
from . import workflow

LOGGER = logging.getLogger(__name__)

WORKFLOW_ERRORS = (
    MalformedInputError,
    GeometryMismatchError,
    UnknownCoordinateSystemError,
    OutOfBoundsError,
    ConfigurationError,
    yaml.YAMLError,
    OSError
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ecogrid",
        description="Map species probability, species richness and distance to port onto a grid.")
    parser.add_argument("config", help="path to the workflow configuration YAML file")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="increase logging verbosity, repeat for debug messages")

    return parser


def main(user_args: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(user_args)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)-24s %(levelname)-8s %(message)s")

    try:
        config = WorkflowConfig.from_yaml(args.config)
        outputs = workflow.run(config)
    except WORKFLOW_ERRORS as error:
        LOGGER.error("workflow failed: %s", error)
        return 1

    for name, filename in outputs.items():
        print(f"{name}: {filename}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
