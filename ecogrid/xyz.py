"""
Inference of a regular grid from tabular (x, y, value) records.
"""
from __future__ import annotations

from typing import Union, Tuple, TYPE_CHECKING

import logging

import numpy as np
import pandas as pd

from .malformed_input_error import MalformedInputError
from .raster_grid import RasterGrid

if TYPE_CHECKING:
    from .CRS import CRS

LOGGER = logging.getLogger(__name__)

# spacings are whole multiples of the cell size up to this fraction of a cell
SPACING_TOLERANCE = 1e-6


def _distinct(coordinates: np.ndarray) -> np.ndarray:
    unique = np.unique(coordinates)

    if unique.size < 2:
        return unique

    # collapse coordinates that differ only by floating point noise
    tolerance = 1e-9 * max(1.0, float(np.max(np.abs(unique))))
    keep = np.concatenate([[True], np.diff(unique) > tolerance])

    return unique[keep]


def infer_axis(coordinates: np.ndarray, cell_size: float = None, name: str = "x") -> Tuple[float, float, float]:
    """
    Infer the first and last cell-center coordinate and the cell size of one axis.

    The cell size is the smallest spacing between distinct coordinates, unless given.
    Every spacing has to be a whole multiple of the cell size.

    Args:
        coordinates (np.ndarray): Cell-center coordinates along the axis.
        cell_size (float, optional): Known cell size. Defaults to None.
        name (str, optional): Axis name used in error messages. Defaults to "x".

    Returns:
        Tuple[float, float, float]: (first, last, cell_size).

    Raises:
        MalformedInputError: If the coordinates do not lie on a single regular axis.
    """
    distinct = _distinct(coordinates)

    if distinct.size == 1:
        if cell_size is None:
            raise MalformedInputError(f"cannot infer the {name} resolution from a single distinct {name} coordinate")

        return float(distinct[0]), float(distinct[0]), float(cell_size)

    spacing = np.diff(distinct)

    if cell_size is None:
        cell_size = float(spacing.min())

    multiples = spacing / cell_size

    if not np.allclose(multiples, np.round(multiples), rtol=0, atol=SPACING_TOLERANCE) or np.any(np.round(multiples) < 1):
        raise MalformedInputError(
            f"{name} coordinates are not regularly spaced at {cell_size}: "
            f"spacings range from {spacing.min()} to {spacing.max()}")

    return float(distinct[0]), float(distinct[-1]), float(cell_size)


def grid_from_xyz(
        x: np.ndarray,
        y: np.ndarray,
        crs: Union[CRS, str],
        cell_size: Union[float, Tuple[float, float]] = None) -> Tuple[RasterGrid, np.ndarray, np.ndarray]:
    """
    Infer the grid on which tabular cell-center coordinates lie.

    Args:
        x (np.ndarray): Cell-center x-coordinates.
        y (np.ndarray): Cell-center y-coordinates.
        crs (Union[CRS, str]): Coordinate reference system of the coordinates.
        cell_size (Union[float, Tuple[float, float]], optional): Known cell size, or (width, height).

    Returns:
        Tuple[RasterGrid, np.ndarray, np.ndarray]: The grid and the row and column index of every record.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    if x.shape != y.shape or x.ndim != 1:
        raise MalformedInputError(f"x and y must be vectors of equal length: {x.shape} {y.shape}")

    if x.size == 0:
        raise MalformedInputError("no records to build a grid from")

    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise MalformedInputError("coordinates must be finite")

    if isinstance(cell_size, tuple):
        cell_width, cell_height = cell_size
    else:
        cell_width = cell_height = cell_size

    x_first, x_last, cell_width = infer_axis(x, cell_width, name="x")
    y_first, y_last, cell_height = infer_axis(y, None if cell_height is None else abs(cell_height), name="y")

    cols = int(round((x_last - x_first) / cell_width)) + 1
    rows = int(round((y_last - y_first) / cell_height)) + 1

    geometry = RasterGrid(
        x_origin=x_first - cell_width / 2.0,
        y_origin=y_last + cell_height / 2.0,
        cell_width=cell_width,
        cell_height=-cell_height,
        rows=rows,
        cols=cols,
        crs=crs
    )

    col_index = np.rint((x - x_first) / cell_width).astype(np.int64)
    row_index = np.rint((y_last - y) / cell_height).astype(np.int64)

    LOGGER.debug("inferred %s from %d records", geometry, x.size)

    return geometry, row_index, col_index


def populate(
        geometry: RasterGrid,
        row_index: np.ndarray,
        col_index: np.ndarray,
        values: np.ndarray,
        name: str = "value") -> np.ndarray:
    """
    Place record values into a float array of the grid's shape, no data elsewhere.

    Raises:
        MalformedInputError: If a cell is given conflicting values.
    """
    records = pd.DataFrame({
        "row": row_index,
        "col": col_index,
        "value": np.asarray(values, dtype=np.float64)
    }).drop_duplicates()

    conflicts = records.duplicated(subset=["row", "col"], keep=False)

    if conflicts.any():
        first = records[conflicts].iloc[0]
        raise MalformedInputError(
            f"conflicting {name} values for the cell at row {int(first.row)} col {int(first.col)}")

    array = np.full(geometry.shape, np.nan, dtype=np.float64)
    array[records.row.to_numpy(), records.col.to_numpy()] = records.value.to_numpy()

    return array
