"""
Species mapping workflow: builds a cell identifier grid, substitutes species
probabilities and richness into it, measures the distance to the nearest port
and writes the resulting layers.

Every stage takes its grids and tables as arguments and returns new rasters.
"""
from __future__ import annotations

from typing import Dict, Union

import logging
from collections import OrderedDict
from pathlib import Path

import pandas as pd

import geopandas as gpd

from .aggregation import count_distinct
from .bbox import BBox
from .config import WorkflowConfig
from .plotting import save_plot
from .raster import Raster
from .raster_grid import RasterGrid
from .raster_stack import RasterStack

LOGGER = logging.getLogger(__name__)


def load_cells(config: WorkflowConfig) -> Raster:
    """
    Build the cell identifier grid from the configured cell table or extent.
    """
    if config.cells is not None:
        columns = config.cell_columns
        table = pd.read_csv(config.cells)
        LOGGER.info("building cell grid from %d records in %s", len(table), config.cells)

        return Raster.from_table(
            table,
            crs=config.crs,
            x=columns["x"],
            y=columns["y"],
            value=columns["id"],
            cell_size=config.cell_size
        )

    geometry = RasterGrid.from_bbox(bbox=config.extent, cell_size=config.cell_size, crs=config.crs)
    LOGGER.info("building %d x %d cell grid over %s", geometry.rows, geometry.cols, config.extent)

    return geometry.cell_ids()


def species_probability(
        cells: Raster,
        occurrences: pd.DataFrame,
        species: Union[str, int],
        cell_column: str = "cell_id",
        species_column: str = "species_id",
        probability_column: str = "probability") -> Raster:
    """
    Probability of occurrence of one species in every cell.

    Args:
        cells (Raster): Cell identifier grid.
        occurrences (pd.DataFrame): Rows of (cell, species, probability).
        species (Union[str, int]): Species to map.
        cell_column (str, optional): Cell identifier column. Defaults to "cell_id".
        species_column (str, optional): Species identifier column. Defaults to "species_id".
        probability_column (str, optional): Probability column. Defaults to "probability".

    Returns:
        Raster: Probabilities, no data where the species is not recorded.
    """
    records = occurrences.loc[occurrences[species_column] == species, [cell_column, probability_column]]

    if records.empty:
        LOGGER.warning("no occurrences of species %s", species)

    return cells.substitute(records)


def species_richness(
        cells: Raster,
        occurrences: pd.DataFrame,
        threshold: float = 0.5,
        cell_column: str = "cell_id",
        species_column: str = "species_id",
        probability_column: str = "probability") -> Raster:
    """
    Number of species per cell whose probability of occurrence reaches the threshold.

    Cells without any such species are no data.
    """
    counts = count_distinct(
        occurrences,
        id_column=species_column,
        group_column=cell_column,
        value_column=probability_column,
        threshold=threshold
    )

    return cells.substitute(counts)


def distance_to_ports(ports: gpd.GeoDataFrame, geometry: RasterGrid) -> Raster:
    """
    Distance from every cell to the nearest cell holding a port, in units of the grid's CRS.
    """
    return geometry.rasterize(ports).distance()


def run(config: WorkflowConfig) -> Dict[str, Path]:
    """
    Run the workflow and write one GeoTIFF per layer plus a stack of all layers.

    Args:
        config (WorkflowConfig): Workflow configuration.

    Returns:
        Dict[str, Path]: Written files by layer name, with the stack under "layers".
    """
    columns = config.occurrence_columns
    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    cells = load_cells(config)
    occurrences = pd.read_csv(config.occurrences)
    LOGGER.info("read %d occurrence records from %s", len(occurrences), config.occurrences)

    if config.target_crs is not None:
        geometry = cells.geometry.to_crs(config.target_crs, cell_size=config.target_cell_size)
        LOGGER.info("reprojecting cell grid to %s", geometry)
        # identifiers are categorical
        cells = cells.resample(geometry, resampling="nearest")

    port_distance = None

    if config.ports is not None:
        # ports outside the region still count as the nearest port of cells inside it
        port_distance = distance_to_ports(gpd.read_file(config.ports), cells.geometry)

    region = None

    if config.region is not None:
        region = gpd.read_file(config.region)
        bbox = BBox(*region.total_bounds, crs=region.crs)
        cells = cells.crop(bbox.transform(cells.crs))
        LOGGER.info("cropped cell grid to region %s", config.region)

    layers = OrderedDict()

    for species in config.species:
        layers[f"probability_{species}"] = species_probability(
            cells,
            occurrences,
            species,
            cell_column=columns["cell"],
            species_column=columns["species"],
            probability_column=columns["probability"]
        )

    layers["richness"] = species_richness(
        cells,
        occurrences,
        threshold=config.threshold,
        cell_column=columns["cell"],
        species_column=columns["species"],
        probability_column=columns["probability"]
    )

    if port_distance is not None:
        layers["port_distance"] = port_distance.crop(cells.geometry)

    if region is not None:
        layers = OrderedDict((name, raster.mask(region)) for name, raster in layers.items())

    outputs = OrderedDict()

    for name, raster in layers.items():
        filename = output_dir / f"{name}.tif"
        raster.to_geotiff(str(filename))
        outputs[name] = filename

        if config.plot:
            save_plot(raster, str(output_dir / f"{name}.png"), boundary=region, title=name)

    stack_filename = output_dir / "layers.tif"
    RasterStack(layers).to_geotiff(str(stack_filename))
    outputs["layers"] = stack_filename

    return outputs
