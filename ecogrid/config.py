from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from .configuration_error import ConfigurationError

LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("crs", "output_dir", "occurrences")
PATH_FIELDS = ("output_dir", "occurrences", "cells", "ports", "region")


def _default_cell_columns() -> Dict[str, str]:
    return {"x": "x", "y": "y", "id": "cell_id"}


def _default_occurrence_columns() -> Dict[str, str]:
    return {"cell": "cell_id", "species": "species_id", "probability": "probability"}


@dataclass
class WorkflowConfig:
    """
    Inputs and options of the species mapping workflow.

    The base grid is read from the `cells` table of cell-center coordinates and
    identifiers when given, otherwise it is built from `extent` and `cell_size`
    with identifiers numbered row-major from 1.
    """
    crs: str
    output_dir: Path
    occurrences: Path
    cells: Optional[Path] = None
    extent: Optional[Tuple[float, float, float, float]] = None
    cell_size: Optional[float] = None
    cell_columns: Dict[str, str] = field(default_factory=_default_cell_columns)
    occurrence_columns: Dict[str, str] = field(default_factory=_default_occurrence_columns)
    species: List[Union[str, int]] = field(default_factory=list)
    threshold: float = 0.5
    target_crs: Optional[str] = None
    target_cell_size: Optional[float] = None
    ports: Optional[Path] = None
    region: Optional[Path] = None
    plot: bool = False

    def __post_init__(self):
        for name in PATH_FIELDS:
            value = getattr(self, name)

            if value is not None:
                setattr(self, name, Path(value))

        if self.cells is None and (self.extent is None or self.cell_size is None):
            raise ConfigurationError("either cells or both extent and cell_size must be configured")

        if self.extent is not None:
            if len(self.extent) != 4:
                raise ConfigurationError(f"extent must be [xmin, ymin, xmax, ymax]: {self.extent}")

            self.extent = tuple(float(value) for value in self.extent)

        self.cell_columns = {**_default_cell_columns(), **self.cell_columns}
        self.occurrence_columns = {**_default_occurrence_columns(), **self.occurrence_columns}

        if not 0 <= self.threshold <= 1:
            raise ConfigurationError(f"threshold must be a probability: {self.threshold}")

        if self.target_cell_size is not None and self.target_crs is None:
            raise ConfigurationError("target_cell_size requires target_crs")

    @classmethod
    def from_dict(cls, settings: dict, base_dir: Union[str, Path] = None) -> WorkflowConfig:
        """
        Build a configuration from a dictionary, resolving relative paths against base_dir.

        Raises:
            ConfigurationError: On unknown or missing keys.
        """
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(settings) - known)

        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {unknown}")

        missing = sorted(set(REQUIRED_FIELDS) - set(settings))

        if missing:
            raise ConfigurationError(f"missing configuration keys: {missing}")

        settings = dict(settings)

        if base_dir is not None:
            for name in PATH_FIELDS:
                if settings.get(name) is not None:
                    settings[name] = Path(base_dir) / settings[name]

        return cls(**settings)

    @classmethod
    def from_yaml(cls, filename: Union[str, Path]) -> WorkflowConfig:
        """
        Read a configuration file; relative paths are relative to the file.
        """
        filename = Path(filename)

        with open(filename, "r") as file:
            settings = yaml.safe_load(file)

        if not isinstance(settings, dict):
            raise ConfigurationError(f"configuration file does not hold a mapping: {filename}")

        LOGGER.debug("loaded configuration from %s", filename)

        return cls.from_dict(settings, base_dir=filename.parent)
