from __future__ import annotations

from typing import Union, Tuple, Mapping, TYPE_CHECKING

import logging
import os

import numpy as np
import pandas as pd

import geopandas as gpd

import rasterio
from rasterio.enums import Resampling
from rasterio.warp import reproject, transform as warp_transform

from scipy.ndimage import distance_transform_edt, map_coordinates

from .out_of_bounds_error import OutOfBoundsError
from .geometry_mismatch_error import GeometryMismatchError

from .bbox import BBox
from .raster_grid import RasterGrid
from .xyz import grid_from_xyz, populate

if TYPE_CHECKING:
    from .CRS import CRS

LOGGER = logging.getLogger(__name__)

RESAMPLING_METHODS = {
    "nearest": Resampling.nearest,
    "bilinear": Resampling.bilinear
}

# how bilinear resampling treats a target cell when some of its source cells are no data
NODATA_POLICIES = ("renormalize", "propagate")

# bilinear weights at or below this are treated as zero
WEIGHT_TOLERANCE = 1e-6


def _lookup(mapping: Union[Mapping, pd.Series, pd.DataFrame]) -> pd.Series:
    if isinstance(mapping, pd.DataFrame):
        if mapping.shape[1] != 2:
            raise ValueError(f"a lookup table needs exactly two columns, key and value: {list(mapping.columns)}")

        key, value = mapping.columns
        mapping = mapping.set_index(key)[value]
    elif not isinstance(mapping, pd.Series):
        mapping = pd.Series(dict(mapping), dtype=np.float64)

    try:
        keys = mapping.index.astype(np.float64)
    except (TypeError, ValueError) as e:
        raise TypeError("lookup keys must be numeric") from e

    if not keys.is_unique:
        duplicates = keys[keys.duplicated()].unique().tolist()
        raise ValueError(f"lookup table has duplicate keys, deduplicate it first: {duplicates}")

    return pd.Series(mapping.to_numpy(dtype=np.float64), index=keys)


class Raster:
    """
    A single layer of gridded values bound to a RasterGrid.

    Float rasters mark no data with NaN; integer rasters may carry a sentinel value
    or none at all. Rasters are immutable: every operation returns a new Raster.
    """

    def __init__(self, array: np.ndarray, geometry: RasterGrid, nodata: Union[float, int] = None):
        array = np.array(array, copy=True)

        if array.ndim != 2:
            raise ValueError(f"raster arrays must be two-dimensional: {array.shape}")

        if not isinstance(geometry, RasterGrid):
            raise TypeError(f"geometry is not a RasterGrid: {type(geometry)}")

        if array.shape != geometry.shape:
            raise GeometryMismatchError(f"array shape {array.shape} does not match grid shape {geometry.shape}")

        if np.issubdtype(array.dtype, np.floating):
            if nodata is not None and not np.isnan(nodata):
                array[array == nodata] = np.nan

            nodata = np.nan

        array.flags.writeable = False
        self._array = array
        self._geometry = geometry
        self._nodata = nodata

    def __repr__(self) -> str:
        return f"Raster(shape={self.shape}, dtype={self.dtype}, nodata={self.nodata}, geometry={self.geometry!r})"

    def __getitem__(self, key: Tuple[slice, slice]) -> Raster:
        geometry = self.geometry[key]

        return Raster(self.array[key], geometry=geometry, nodata=self.nodata)

    def __eq__(self, other: Raster) -> bool:
        return (
            isinstance(other, Raster) and
            self.geometry == other.geometry and
            np.array_equal(self.missing, other.missing) and
            np.array_equal(self.array[~self.missing], other.array[~other.missing])
        )

    @classmethod
    def full(cls, geometry: RasterGrid, fill_value: float = np.nan) -> Raster:
        """
        Create a raster with every cell set to one value, no data by default.
        """
        return cls(np.full(geometry.shape, fill_value, dtype=np.float64), geometry=geometry)

    @classmethod
    def from_xyz(
            cls,
            x: np.ndarray,
            y: np.ndarray,
            value: np.ndarray,
            crs: Union[CRS, str],
            cell_size: Union[float, Tuple[float, float]] = None) -> Raster:
        """
        Build a raster from parallel arrays of cell-center coordinates and values.

        The resolution is the smallest spacing between distinct coordinates on each
        axis, the extent is the bounding box of the cells and cells without a
        record are no data.

        Args:
            x (np.ndarray): Cell-center x-coordinates.
            y (np.ndarray): Cell-center y-coordinates.
            value (np.ndarray): Cell values.
            crs (Union[CRS, str]): Coordinate reference system of the coordinates.
            cell_size (Union[float, Tuple[float, float]], optional): Known cell size, needed when
                an axis has a single distinct coordinate.

        Returns:
            Raster: Float raster.

        Raises:
            MalformedInputError: If the records do not lie on a single regular grid or conflict.
            UnknownCoordinateSystemError: If no CRS is given.
        """
        value = np.asarray(value, dtype=np.float64)

        if value.shape != np.shape(x):
            raise ValueError(f"value vector of shape {value.shape} does not match coordinates of shape {np.shape(x)}")

        geometry, row_index, col_index = grid_from_xyz(x, y, crs=crs, cell_size=cell_size)
        array = populate(geometry, row_index, col_index, value)

        return cls(array, geometry=geometry)

    @classmethod
    def from_table(
            cls,
            table: pd.DataFrame,
            crs: Union[CRS, str],
            x: str = "x",
            y: str = "y",
            value: str = "value",
            cell_size: Union[float, Tuple[float, float]] = None) -> Raster:
        """
        Build a raster from the named columns of a data frame.
        """
        return cls.from_xyz(
            table[x].to_numpy(),
            table[y].to_numpy(),
            table[value].to_numpy(),
            crs=crs,
            cell_size=cell_size
        )

    @classmethod
    def open(cls, filename: str, band: int = 1, crs: Union[CRS, str] = None) -> Raster:
        """
        Read one band of a raster file.

        Args:
            filename (str): Path to the raster file.
            band (int, optional): 1-based band number. Defaults to 1.
            crs (Union[CRS, str], optional): Coordinate reference system overriding the one in the file.

        Returns:
            Raster: The band as a raster.

        Raises:
            UnknownCoordinateSystemError: If the file has no CRS and none is given.
        """
        os.environ["CPL_ZIP_ENCODING"] = "UTF-8"

        with rasterio.open(filename, "r") as file:
            geometry = RasterGrid.from_rasterio(file, crs=crs)
            array = file.read(band)
            nodata = file.nodata

        LOGGER.debug("read band %d of %s", band, filename)

        return cls(array, geometry=geometry, nodata=nodata)

    @property
    def array(self) -> np.ndarray:
        """
        Read-only array of cell values, including no data sentinels.
        """
        return self._array

    @property
    def data(self) -> np.ndarray:
        """
        Copy of the cell values as floats with NaN for no data.
        """
        data = self.array.astype(np.float64)
        data[self.missing] = np.nan

        return data

    @property
    def geometry(self) -> RasterGrid:
        return self._geometry

    @property
    def nodata(self) -> Union[float, int, None]:
        return self._nodata

    @property
    def crs(self) -> CRS:
        return self.geometry.crs

    @property
    def shape(self) -> Tuple[int, int]:
        return self.array.shape

    @property
    def dtype(self) -> np.dtype:
        return self.array.dtype

    @property
    def missing(self) -> np.ndarray:
        """
        Boolean array flagging the no data cells.
        """
        if self.nodata is None:
            return np.zeros(self.shape, dtype=bool)

        if np.issubdtype(self.dtype, np.floating):
            return np.isnan(self.array)

        return self.array == self.nodata

    @property
    def values(self) -> np.ndarray:
        """
        Distinct values of the cells holding data.
        """
        return np.unique(self.array[~self.missing])

    def _with_missing(self, missing: np.ndarray) -> Raster:
        # force additional cells to no data, falling back to floats when there is no sentinel
        if not missing.any():
            return Raster(self.array, geometry=self.geometry, nodata=self.nodata)

        if self.nodata is None:
            array = self.array.astype(np.float64)
            array[missing] = np.nan

            return Raster(array, geometry=self.geometry)

        array = self.array.copy()
        array[missing] = self.nodata

        return Raster(array, geometry=self.geometry, nodata=self.nodata)

    def with_crs(self, crs: Union[CRS, str]) -> Raster:
        """
        Label the raster with a coordinate reference system without resampling.
        """
        return Raster(self.array, geometry=self.geometry.with_crs(crs), nodata=self.nodata)

    def substitute(
            self,
            mapping: Union[Mapping, pd.Series, pd.DataFrame],
            default: float = np.nan,
            geometry: RasterGrid = None) -> Raster:
        """
        Replace every cell value with the value it maps to.

        Args:
            mapping (Union[Mapping, pd.Series, pd.DataFrame]): Lookup from cell value to replacement,
                as a dict, a Series indexed by cell value or a two-column (key, value) DataFrame.
            default (float, optional): Value for unmatched and no data cells. Defaults to no data.
            geometry (RasterGrid, optional): Geometry the raster is expected to have.

        Returns:
            Raster: Float raster of replacement values.

        Raises:
            ValueError: If the lookup table has duplicate keys.
            GeometryMismatchError: If the raster does not have the expected geometry.
        """
        if geometry is not None and geometry != self.geometry:
            raise GeometryMismatchError(f"cannot substitute into {self.geometry}, expected {geometry}")

        lookup = _lookup(mapping)
        cells = self.array.astype(np.float64).ravel()
        positions = lookup.index.get_indexer(cells)
        matched = positions >= 0

        substituted = np.full(cells.size, default, dtype=np.float64)
        substituted[matched] = lookup.to_numpy()[positions[matched]]
        substituted[self.missing.ravel()] = default

        LOGGER.debug("substituted %d of %d cells", int(np.count_nonzero(matched)), cells.size)

        return Raster(substituted.reshape(self.shape), geometry=self.geometry)

    def _source_index(self, geometry: RasterGrid) -> Tuple[np.ndarray, np.ndarray]:
        """
        Fractional row and column of every target cell center in the source grid,
        where whole numbers fall on source cell centers.
        """
        x, y = geometry.xy

        if not geometry.crs.equivalent(self.crs):
            xs, ys = warp_transform(geometry.crs.rasterio, self.crs.rasterio, x.ravel(), y.ravel())
            x = np.reshape(np.asarray(xs, dtype=np.float64), geometry.shape)
            y = np.reshape(np.asarray(ys, dtype=np.float64), geometry.shape)

        row = (y - self.geometry.y_origin) / self.geometry.cell_height - 0.5
        col = (x - self.geometry.x_origin) / self.geometry.cell_width - 0.5

        return row, col

    def _interpolate_bilinear(self, geometry: RasterGrid, nodata_policy: str) -> np.ndarray:
        """
        Interpolate between the four source cell centers around each target cell center.

        The footprint stays four cells whatever the ratio of cell sizes. Target cells
        centered outside the source grid are no data; within half a cell of its edge
        the edge cells are extended.
        """
        row, col = self._source_index(geometry)
        rows, cols = self.shape

        inside = (
            np.isfinite(row) & np.isfinite(col) &
            (row >= -0.5) & (row <= rows - 0.5) &
            (col >= -0.5) & (col <= cols - 0.5)
        )

        coordinates = np.stack([
            np.clip(np.where(inside, row, 0.0), 0, rows - 1),
            np.clip(np.where(inside, col, 0.0), 0, cols - 1)
        ])

        missing = self.missing
        valid = (~missing).astype(np.float64)
        filled = np.where(missing, 0.0, self.data)

        # weight of the present contributors, the rest belongs to missing ones
        weight = map_coordinates(valid, coordinates, order=1, mode="nearest")
        total = map_coordinates(filled, coordinates, order=1, mode="nearest")

        present = inside & (weight > WEIGHT_TOLERANCE)

        if nodata_policy == "propagate":
            present &= (1.0 - weight) <= WEIGHT_TOLERANCE

        destination = np.full(geometry.shape, np.nan, dtype=np.float64)
        destination[present] = total[present] / weight[present]

        return destination

    def resample(
            self,
            geometry: RasterGrid,
            resampling: str = "nearest",
            nodata_policy: str = "renormalize") -> Raster:
        """
        Compute the raster over another geometry, reprojecting if the CRS differs.

        Each target cell center is mapped back into the source grid. Nearest copies
        the containing source cell and suits categorical data; bilinear averages the
        four nearest source cell centers and suits continuous data.

        Args:
            geometry (RasterGrid): Target geometry.
            resampling (str, optional): "nearest" or "bilinear". Defaults to "nearest".
            nodata_policy (str, optional): With bilinear resampling, "renormalize" excludes no data
                source cells and reweights the rest, "propagate" makes the target cell no data if
                any contributing source cell is. Defaults to "renormalize".

        Returns:
            Raster: Float raster over the target geometry.
        """
        if resampling not in RESAMPLING_METHODS:
            raise ValueError(f"unknown resampling method: {resampling}, expected one of {list(RESAMPLING_METHODS)}")

        if nodata_policy not in NODATA_POLICIES:
            raise ValueError(f"unknown no data policy: {nodata_policy}, expected one of {list(NODATA_POLICIES)}")

        if resampling == "bilinear":
            destination = self._interpolate_bilinear(geometry, nodata_policy)
        else:
            destination = np.full(geometry.shape, np.nan, dtype=np.float64)

            reproject(
                source=self.data,
                destination=destination,
                src_transform=self.geometry.affine,
                src_crs=self.crs.rasterio,
                src_nodata=np.nan,
                dst_transform=geometry.affine,
                dst_crs=geometry.crs.rasterio,
                dst_nodata=np.nan,
                resampling=RESAMPLING_METHODS[resampling]
            )

        LOGGER.debug("resampled %s onto %s using %s", self.geometry, geometry, resampling)

        return Raster(destination, geometry=geometry)

    def to_crs(
            self,
            crs: Union[CRS, str],
            cell_size: Union[float, Tuple[float, float]] = None,
            resampling: str = "nearest",
            nodata_policy: str = "renormalize") -> Raster:
        """
        Reproject the raster to another coordinate reference system.
        """
        geometry = self.geometry.to_crs(crs, cell_size=cell_size)

        return self.resample(geometry, resampling=resampling, nodata_policy=nodata_policy)

    def align_to(self, reference: Union[Raster, RasterGrid], resampling: str = "nearest", nodata_policy: str = "renormalize") -> Raster:
        """
        Resample the raster onto the geometry of a reference raster.
        """
        if isinstance(reference, Raster):
            reference = reference.geometry

        return self.resample(reference, resampling=resampling, nodata_policy=nodata_policy)

    def mask(self, mask: Union[Raster, gpd.GeoDataFrame], all_touched: bool = False) -> Raster:
        """
        Force cells to no data where a mask raster is no data or outside a region.

        Args:
            mask (Union[Raster, gpd.GeoDataFrame]): Raster of identical geometry, or region features.
            all_touched (bool, optional): With region features, keep every cell the region touches.

        Returns:
            Raster: Masked raster.

        Raises:
            GeometryMismatchError: If a mask raster has a different geometry.
        """
        if isinstance(mask, Raster):
            if mask.geometry != self.geometry:
                raise GeometryMismatchError(f"cannot mask {self.geometry} with {mask.geometry}")

            outside = mask.missing
        elif isinstance(mask, gpd.GeoDataFrame):
            outside = self.geometry.geometry_mask(mask, all_touched=all_touched)
        else:
            raise TypeError(f"cannot mask with {type(mask)}")

        return self._with_missing(outside)

    def crop(self, target: Union[Raster, RasterGrid, BBox]) -> Raster:
        """
        Restrict the raster to the cells overlapping a target.

        Args:
            target (Union[Raster, RasterGrid, BBox]): Aligned raster or grid, or a bounding box
                which is snapped outward to whole cells.

        Returns:
            Raster: Cropped raster.

        Raises:
            GeometryMismatchError: If a target grid is not aligned with this raster.
            OutOfBoundsError: If the target does not overlap this raster.
        """
        if isinstance(target, Raster):
            target = target.geometry

        if isinstance(target, BBox):
            return self[self.geometry.index(target)]

        if not isinstance(target, RasterGrid):
            raise TypeError(f"cannot crop to {type(target)}")

        if not self.geometry.is_aligned_with(target):
            raise GeometryMismatchError(f"cannot crop {self.geometry} to unaligned {target}")

        row_offset, col_offset = self.geometry.offset_of(target)
        row_start = max(row_offset, 0)
        col_start = max(col_offset, 0)
        row_end = min(row_offset + target.rows, self.geometry.rows)
        col_end = min(col_offset + target.cols, self.geometry.cols)

        if row_end <= row_start or col_end <= col_start:
            raise OutOfBoundsError(f"{target} does not overlap {self.geometry}")

        return self[row_start:row_end, col_start:col_end]

    def trim(self) -> Raster:
        """
        Shrink the raster to the smallest rectangle containing every cell with data.

        Raises:
            ValueError: If every cell is no data.
        """
        present = ~self.missing

        if not present.any():
            raise ValueError("cannot trim a raster without data")

        rows = np.flatnonzero(present.any(axis=1))
        cols = np.flatnonzero(present.any(axis=0))

        return self[rows[0]:rows[-1] + 1, cols[0]:cols[-1] + 1]

    def expand(self, geometry: RasterGrid) -> Raster:
        """
        Place the raster within a larger aligned geometry, padding with no data.

        Raises:
            GeometryMismatchError: If the geometry is not aligned with this raster.
            OutOfBoundsError: If the geometry does not contain this raster.
        """
        if not geometry.is_aligned_with(self.geometry):
            raise GeometryMismatchError(f"cannot expand {self.geometry} to unaligned {geometry}")

        row_offset, col_offset = geometry.offset_of(self.geometry)
        rows, cols = self.shape

        if row_offset < 0 or col_offset < 0 or row_offset + rows > geometry.rows or col_offset + cols > geometry.cols:
            raise OutOfBoundsError(f"{geometry} does not contain {self.geometry}")

        if self.nodata is None:
            array = np.full(geometry.shape, np.nan, dtype=np.float64)
        else:
            array = np.full(geometry.shape, self.nodata, dtype=self.dtype)

        array[row_offset:row_offset + rows, col_offset:col_offset + cols] = self.array

        return Raster(array, geometry=geometry, nodata=self.nodata)

    def distance(self) -> Raster:
        """
        Euclidean distance from every cell to the nearest cell with data.

        Distances are in units of the CRS and account for rectangular cells.
        Cells with data have a distance of zero.

        Raises:
            ValueError: If no cell has data.
        """
        missing = self.missing

        if missing.all():
            raise ValueError("cannot compute distances on a raster without source cells")

        sampling = (abs(self.geometry.cell_height), self.geometry.cell_width)
        distances = distance_transform_edt(missing, sampling=sampling)

        return Raster(distances.astype(np.float64), geometry=self.geometry)

    def to_xyz(self, include_missing: bool = False, name: str = "value") -> pd.DataFrame:
        """
        Tabular view of the raster as cell-center coordinates and values, row-major.

        Args:
            include_missing (bool, optional): Keep no data cells as NaN rows. Defaults to False.
            name (str, optional): Name of the value column. Defaults to "value".

        Returns:
            pd.DataFrame: Columns x, y and the value column.
        """
        x, y = self.geometry.xy

        if self.nodata is None or np.isnan(self.nodata):
            values = self.array
        else:
            values = self.data

        table = pd.DataFrame({
            "x": x.ravel(),
            "y": y.ravel(),
            name: values.ravel()
        })

        if not include_missing:
            table = table[~self.missing.ravel()].reset_index(drop=True)

        return table

    def to_geotiff(self, filename: str, compress: str = "deflate"):
        """
        Write the raster to a single-band GeoTIFF.
        """
        array = self.array

        if array.dtype == np.int64 or array.dtype == np.bool_:
            array = self.data

        nodata = np.nan if np.issubdtype(array.dtype, np.floating) else self.nodata

        profile = {
            "driver": "GTiff",
            "height": self.geometry.rows,
            "width": self.geometry.cols,
            "count": 1,
            "dtype": str(array.dtype),
            "crs": self.crs.rasterio,
            "transform": self.geometry.affine,
            "nodata": nodata,
            "compress": compress
        }

        with rasterio.open(filename, "w", **profile) as file:
            file.write(array, 1)

        LOGGER.info("wrote %s", filename)
