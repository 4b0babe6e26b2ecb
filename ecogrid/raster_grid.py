from __future__ import annotations

from typing import Union, Tuple, TYPE_CHECKING

import logging
import os

import numpy as np

import geopandas as gpd

from affine import Affine

import rasterio
from rasterio import DatasetReader
from rasterio.enums import MergeAlg
from rasterio.features import rasterize, geometry_mask
from rasterio.warp import calculate_default_transform

from .out_of_bounds_error import OutOfBoundsError
from .unknown_coordinate_system_error import UnknownCoordinateSystemError

from .CRS import parse_crs
from .raster_geometry import RasterGeometry
from .bbox import BBox

if TYPE_CHECKING:
    from .CRS import CRS
    from .raster import Raster

LOGGER = logging.getLogger(__name__)

# relative tolerance for comparing cell sizes and cell offsets
ALIGNMENT_TOLERANCE = 1e-6


def _cell_count(length: float, cell_size: float) -> int:
    count = length / abs(cell_size)
    rounded = round(count)

    if abs(count - rounded) < ALIGNMENT_TOLERANCE:
        return int(rounded)

    LOGGER.debug("extent %s is not a multiple of cell size %s, rounding up", length, cell_size)

    return int(np.ceil(count))


class RasterGrid(RasterGeometry):
    """
    This class encapsulates the georeferencing of gridded data using affine transforms.
    Gridded surfaces are assumed to be north-oriented. Row and column rotation are not supported.
    """
    geometry_type = "grid"

    def __init__(
            self,
            x_origin: float,
            y_origin: float,
            cell_width: float,
            cell_height: float,
            rows: int,
            cols: int,
            crs: Union[CRS, str],
            **kwargs):
        """
        Initialize a RasterGrid object.

        Args:
            x_origin (float): X-coordinate of the top-left corner of the grid.
            y_origin (float): Y-coordinate of the top-left corner of the grid.
            cell_width (float): Width of each cell in the grid.
            cell_height (float): Height of each cell in the grid (negative for north-oriented grids).
            rows (int): Number of rows in the grid.
            cols (int): Number of columns in the grid.
            crs (Union[CRS, str]): Coordinate reference system.
            **kwargs: Additional keyword arguments.

        Raises:
            UnknownCoordinateSystemError: If the CRS is missing or cannot be parsed.
            ValueError: If the cell size or dimensions are invalid.
        """
        super(RasterGrid, self).__init__(crs=crs, **kwargs)

        if cell_width <= 0:
            raise ValueError(f"cell width must be positive: {cell_width}")

        if cell_height >= 0:
            raise ValueError(f"cell height must be negative for north-oriented grids: {cell_height}")

        if int(rows) < 1 or int(cols) < 1:
            raise ValueError(f"invalid grid dimensions: ({rows}, {cols})")

        # Assemble affine transform for the grid
        self._affine = Affine(cell_width, 0, x_origin, 0, cell_height, y_origin)

        # Store grid dimensions
        self._rows = int(rows)
        self._cols = int(cols)

    def __repr__(self) -> str:
        return (
            f"RasterGrid(x_origin={self.x_origin}, y_origin={self.y_origin}, "
            f"cell_width={self.cell_width}, cell_height={self.cell_height}, "
            f"rows={self.rows}, cols={self.cols}, crs={self.crs!r})"
        )

    def _subset_index(self, y_slice: slice, x_slice: slice) -> RasterGrid:
        """
        Create a subset of the grid based on the provided slices.

        Args:
            y_slice (slice): Slice for the rows.
            x_slice (slice): Slice for the columns.

        Returns:
            RasterGrid: A new RasterGrid object representing the subset.
        """
        y_start, y_end, _ = y_slice.indices(self.rows)
        x_start, x_end, _ = x_slice.indices(self.cols)

        rows = y_end - y_start
        cols = x_end - x_start

        if rows < 1 or cols < 1:
            raise OutOfBoundsError(f"empty subset rows {y_start}:{y_end} cols {x_start}:{x_end} of grid {self.shape}")

        # Calculate new origins based on the slices
        y_origin = self.y_origin + y_start * self.cell_height
        x_origin = self.x_origin + x_start * self.cell_width

        affine = Affine(
            self.affine.a,
            self.affine.b,
            x_origin,
            self.affine.d,
            self.affine.e,
            y_origin
        )

        return RasterGrid.from_affine(affine, rows, cols, self.crs)

    def __eq__(self, other: RasterGrid) -> bool:
        """
        Check equality between two RasterGrid objects.

        Args:
            other (RasterGrid): Another RasterGrid object to compare.

        Returns:
            bool: True if the objects are equal, False otherwise.
        """
        return (
            isinstance(other, RasterGrid) and
            self.crs.equivalent(other.crs) and
            self.affine.almost_equals(other.affine, precision=ALIGNMENT_TOLERANCE * min(self.cell_width, abs(self.cell_height))) and
            self.shape == other.shape
        )

    def __ne__(self, other: RasterGrid) -> bool:
        return not self.__eq__(other)

    @classmethod
    def from_affine(cls, affine: Affine, rows: int, cols: int, crs: Union[CRS, str]) -> RasterGrid:
        """
        Create a RasterGrid from an affine transform.

        Args:
            affine (Affine): Affine transform object.
            rows (int): Number of rows in the grid.
            cols (int): Number of columns in the grid.
            crs (Union[CRS, str]): Coordinate reference system.

        Returns:
            RasterGrid: A new RasterGrid object.
        """
        if not isinstance(affine, Affine):
            raise ValueError("affine is not an Affine object")

        if affine.b != 0 or affine.d != 0:
            raise ValueError(f"rotated grids are not supported: {affine}")

        return RasterGrid(affine.c, affine.f, affine.a, affine.e, rows, cols, crs)

    @classmethod
    def from_rasterio(cls, file: DatasetReader, crs: Union[CRS, str] = None, **kwargs) -> RasterGrid:
        """
        Create a RasterGrid from a rasterio DatasetReader object.

        Args:
            file (DatasetReader): Rasterio dataset reader object.
            crs (Union[CRS, str], optional): Coordinate reference system overriding the one in the file.
            **kwargs: Additional keyword arguments.

        Returns:
            RasterGrid: A new RasterGrid object.

        Raises:
            UnknownCoordinateSystemError: If the file carries no CRS and none is given.
        """
        if crs is None:
            if file.crs is None:
                raise UnknownCoordinateSystemError(f"raster file has no coordinate reference system: {file.name}")

            crs = file.crs

        return cls.from_affine(file.transform, file.height, file.width, parse_crs(crs))

    @classmethod
    def open(cls, filename: str, crs: Union[CRS, str] = None) -> RasterGrid:
        """
        Read the geometry of a raster file.

        Args:
            filename (str): Path to the raster file.
            crs (Union[CRS, str], optional): Coordinate reference system overriding the one in the file.

        Returns:
            RasterGrid: A new RasterGrid object.
        """
        os.environ["CPL_ZIP_ENCODING"] = "UTF-8"

        with rasterio.open(filename, "r") as file:
            return cls.from_rasterio(file, crs=crs)

    @classmethod
    def from_vectors(cls, x_vector: np.ndarray, y_vector: np.ndarray, crs: Union[CRS, str]) -> RasterGrid:
        """
        Create a RasterGrid from vectors of cell-center coordinates.

        Args:
            x_vector (np.ndarray): Array of x-coordinates, west to east.
            y_vector (np.ndarray): Array of y-coordinates, north to south.
            crs (Union[CRS, str]): Coordinate reference system.

        Returns:
            RasterGrid: A new RasterGrid object.
        """
        cols = len(x_vector)
        rows = len(y_vector)

        if cols < 2 or rows < 2:
            raise ValueError("at least two coordinates are needed on each axis to infer the cell size")

        # Calculate cell dimensions
        cell_width = np.nanmean(np.diff(x_vector))
        cell_height = np.nanmean(np.diff(y_vector))

        # Calculate origins
        x_origin = x_vector[0] - cell_width / 2.0
        y_origin = y_vector[0] - cell_height / 2.0

        return RasterGrid(
            x_origin=x_origin,
            y_origin=y_origin,
            cell_width=cell_width,
            cell_height=cell_height,
            rows=rows,
            cols=cols,
            crs=crs
        )

    @classmethod
    def from_bbox(
            cls,
            bbox: Union[BBox, Tuple[float]] = None,
            shape: Tuple[int, int] = None,
            cell_size: float = None,
            cell_width: float = None,
            cell_height: float = None,
            crs: Union[CRS, str] = None,
            xmin: float = None,
            ymin: float = None,
            xmax: float = None,
            ymax: float = None) -> RasterGrid:
        """
        Create a RasterGrid from a bounding box or individual coordinates.

        Args:
            bbox (Union[BBox, Tuple[float]], optional): Bounding box object or tuple (xmin, ymin, xmax, ymax).
            shape (Tuple[int, int], optional): Shape of the grid as (rows, cols). Defaults to None.
            cell_size (float, optional): Uniform cell size. Defaults to None.
            cell_width (float, optional): Width of each cell. Defaults to None.
            cell_height (float, optional): Height of each cell, the sign is ignored. Defaults to None.
            crs (Union[CRS, str], optional): Coordinate reference system. Required unless bbox is a BBox.
            xmin (float, optional): Minimum x-coordinate. Defaults to None.
            ymin (float, optional): Minimum y-coordinate. Defaults to None.
            xmax (float, optional): Maximum x-coordinate. Defaults to None.
            ymax (float, optional): Maximum y-coordinate. Defaults to None.

        Returns:
            RasterGrid: A new RasterGrid object.

        Raises:
            ValueError: If both bbox and individual coordinates are provided, or if required parameters are missing.
            UnknownCoordinateSystemError: If no CRS is given.
        """
        # Handle either bbox or individual coordinates
        if bbox is not None and any(coord is not None for coord in [xmin, ymin, xmax, ymax]):
            raise ValueError("Provide either bbox parameter or individual xmin/ymin/xmax/ymax, not both")

        if bbox is None and any(coord is None for coord in [xmin, ymin, xmax, ymax]):
            raise ValueError("When not providing bbox, all of xmin, ymin, xmax, ymax must be provided")

        if cell_size is not None:
            cell_width = cell_size if cell_width is None else cell_width
            cell_height = cell_size if cell_height is None else cell_height

        if bbox is not None:
            if crs is None and isinstance(bbox, BBox):
                crs = bbox.crs

            xmin, ymin, xmax, ymax = bbox

        width = xmax - xmin
        height = ymax - ymin

        if width <= 0 or height <= 0:
            raise ValueError(f"empty bounding box: ({xmin}, {ymin}, {xmax}, {ymax})")

        if shape is None:
            if cell_width is None or cell_height is None:
                raise ValueError("no cell size given")

            cell_width = float(cell_width)
            cell_height = -abs(float(cell_height))
            cols = _cell_count(width, cell_width)
            rows = _cell_count(height, cell_height)
        else:
            rows, cols = shape
            cell_width = width / cols
            cell_height = -height / rows

        return RasterGrid(
            x_origin=xmin,
            y_origin=ymax,
            cell_width=cell_width,
            cell_height=cell_height,
            rows=rows,
            cols=cols,
            crs=crs
        )

    def get_bbox(self, crs: Union[CRS, str] = None) -> BBox:
        """
        Get the bounding box of the grid.

        Args:
            crs (Union[CRS, str], optional): Target coordinate reference system. Defaults to None.

        Returns:
            BBox: Bounding box of the grid.
        """
        bbox = BBox(xmin=self.xmin, ymin=self.ymin, xmax=self.xmax, ymax=self.ymax, crs=self.crs)

        if crs is not None:
            bbox = bbox.transform(crs)

        return bbox

    bbox = property(get_bbox)

    @property
    def affine(self) -> Affine:
        """
        Get the affine transform of the top-left corners of cells.
        """
        return self._affine

    @property
    def affine_center(self) -> Affine:
        """
        Get the affine transform of cell centroids.
        """
        return self.affine * Affine.translation(0.5, 0.5)

    @property
    def cell_width(self) -> float:
        """
        Get the positive cell width in units of the CRS.
        """
        return self.affine.a

    @property
    def cell_height(self) -> float:
        """
        Get the negative cell height in units of the CRS.
        """
        return self.affine.e

    @property
    def cell_size(self) -> float:
        """
        Get the cell size, the smaller of width and height for rectangular cells.
        """
        return min(self.cell_width, abs(self.cell_height))

    @property
    def width(self) -> float:
        return self.cell_width * self.cols

    @property
    def height(self) -> float:
        return abs(self.cell_height) * self.rows

    @property
    def x_origin(self) -> float:
        return self.affine.c

    @property
    def y_origin(self) -> float:
        return self.affine.f

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def xmin(self) -> float:
        return self.x_origin

    @property
    def xmax(self) -> float:
        return self.x_origin + self.width

    @property
    def ymin(self) -> float:
        return self.y_origin - self.height

    @property
    def ymax(self) -> float:
        return self.y_origin

    def with_crs(self, crs: Union[CRS, str]) -> RasterGrid:
        """
        Label the grid with a coordinate reference system without moving any cell.

        This is an assignment, not a reprojection: the affine transform is kept as is.

        Args:
            crs (Union[CRS, str]): Coordinate reference system to assign.

        Returns:
            RasterGrid: A new RasterGrid with the same cells in the given CRS.
        """
        return RasterGrid.from_affine(self.affine, self.rows, self.cols, crs)

    def to_crs(self, crs: Union[CRS, str], cell_size: Union[float, Tuple[float, float]] = None) -> RasterGrid:
        """
        Compute the default grid covering this grid in another coordinate reference system.

        Args:
            crs (Union[CRS, str]): Target coordinate reference system.
            cell_size (Union[float, Tuple[float, float]], optional): Target resolution in units of the target CRS.
                Defaults to the resolution preserving the number of cells.

        Returns:
            RasterGrid: Geometry of the reprojected grid.
        """
        crs = parse_crs(crs)

        if cell_size is not None and not isinstance(cell_size, tuple):
            cell_size = (cell_size, cell_size)

        affine, cols, rows = calculate_default_transform(
            self.crs.rasterio,
            crs.rasterio,
            self.cols,
            self.rows,
            left=self.xmin,
            bottom=self.ymin,
            right=self.xmax,
            top=self.ymax,
            resolution=cell_size
        )

        grid = RasterGrid.from_affine(affine, rows, cols, crs)
        LOGGER.debug("projected %s to %s", self, grid)

        return grid

    def rescale(self, cell_size: float = None, rows: int = None, cols: int = None) -> RasterGrid:
        """
        Rescale the grid over the same extent based on cell size or dimensions.

        Args:
            cell_size (float, optional): New cell size. Defaults to None.
            rows (int, optional): New number of rows. Defaults to None.
            cols (int, optional): New number of columns. Defaults to None.

        Returns:
            RasterGrid: A new RasterGrid with rescaled dimensions.
        """
        if cell_size is None and (rows is None or cols is None):
            raise ValueError("either cell size or both rows and cols must be given")

        if cell_size is None:
            return RasterGrid.from_bbox(bbox=self.bbox, shape=(rows, cols))

        return RasterGrid.from_bbox(bbox=self.bbox, cell_size=cell_size)

    def buffer(self, pixels: int) -> RasterGrid:
        """
        Add a buffer of whole cells around the grid.

        Args:
            pixels (int): Number of pixels to buffer.

        Returns:
            RasterGrid: A new RasterGrid with the buffer applied.
        """
        return RasterGrid(
            x_origin=self.x_origin - (pixels * self.cell_width),
            y_origin=self.y_origin - (pixels * self.cell_height),
            cell_width=self.cell_width,
            cell_height=self.cell_height,
            rows=self.rows + pixels * 2,
            cols=self.cols + pixels * 2,
            crs=self.crs
        )

    @property
    def x_vector(self) -> np.ndarray:
        """
        Get the vector of cell-center x-coordinates.
        """
        return (self.affine_center * (np.arange(self.cols), np.zeros(self.cols)))[0]

    @property
    def y_vector(self) -> np.ndarray:
        """
        Get the vector of cell-center y-coordinates.
        """
        return (self.affine_center * (np.zeros(self.rows), np.arange(self.rows)))[1]

    @property
    def xy(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get the geolocation arrays of cell-center x and y coordinates.

        Returns:
            Tuple[np.ndarray, np.ndarray]: Arrays of x and y coordinates.
        """
        return self.affine_center * np.meshgrid(np.arange(self.cols), np.arange(self.rows))

    def index_point(self, x: float, y: float) -> Tuple[int, int]:
        """
        Get the index of the cell containing a point in the grid's CRS.

        Args:
            x (float): X-coordinate.
            y (float): Y-coordinate.

        Returns:
            Tuple[int, int]: Grid index as (row, col), which may lie outside the grid.
        """
        col, row = ~self.affine * (x, y)

        return (int(np.floor(row)), int(np.floor(col)))

    def index(self, bbox: Union[BBox, Tuple[float, float, float, float]]) -> Tuple[slice, slice]:
        """
        Get the slices of the cells touched by a bounding box.

        Args:
            bbox (Union[BBox, Tuple[float, float, float, float]]): Bounding box, assumed in the grid's CRS if a tuple.

        Returns:
            Tuple[slice, slice]: Slices of rows and columns.

        Raises:
            OutOfBoundsError: If the bounding box does not overlap the grid.
        """
        if not isinstance(bbox, BBox):
            bbox = BBox(*bbox, crs=self.crs)

        xmin, ymin, xmax, ymax = bbox.transform(self.crs)

        col_start = int(np.floor((xmin - self.x_origin) / self.cell_width + ALIGNMENT_TOLERANCE))
        col_end = int(np.ceil((xmax - self.x_origin) / self.cell_width - ALIGNMENT_TOLERANCE))
        row_start = int(np.floor((ymax - self.y_origin) / self.cell_height + ALIGNMENT_TOLERANCE))
        row_end = int(np.ceil((ymin - self.y_origin) / self.cell_height - ALIGNMENT_TOLERANCE))

        rows, cols = self.shape

        if row_end <= 0 or col_end <= 0 or row_start >= rows or col_start >= cols:
            raise OutOfBoundsError(
                f"target geometry is not within source geometry row_start: {row_start} row_end: {row_end} col_start: {col_start} col_end: {col_end} rows: {rows} cols: {cols}\nsource geometry:\n{self}\ntarget geometry:\n{bbox}")

        row_start = max(row_start, 0)
        col_start = max(col_start, 0)
        row_end = min(row_end, rows)
        col_end = min(col_end, cols)

        return (slice(row_start, row_end), slice(col_start, col_end))

    def subset(self, target: Union[BBox, RasterGrid]) -> RasterGrid:
        """
        Subset the grid to the cells touched by a target geometry.

        Args:
            target (Union[BBox, RasterGrid]): Target geometry for subsetting.

        Returns:
            RasterGrid: Subset of the grid.
        """
        if isinstance(target, RasterGrid):
            target = target.bbox

        return self[self.index(target)]

    def is_aligned_with(self, other: RasterGrid) -> bool:
        """
        Check whether another grid shares this grid's CRS and resolution with
        an origin offset by a whole number of cells.
        """
        if not self.crs.equivalent(other.crs):
            return False

        if not np.isclose(self.cell_width, other.cell_width, rtol=ALIGNMENT_TOLERANCE, atol=0):
            return False

        if not np.isclose(self.cell_height, other.cell_height, rtol=ALIGNMENT_TOLERANCE, atol=0):
            return False

        col_offset = (other.x_origin - self.x_origin) / self.cell_width
        row_offset = (other.y_origin - self.y_origin) / self.cell_height

        return (
            abs(col_offset - round(col_offset)) < ALIGNMENT_TOLERANCE and
            abs(row_offset - round(row_offset)) < ALIGNMENT_TOLERANCE
        )

    def offset_of(self, other: RasterGrid) -> Tuple[int, int]:
        """
        Position of the top-left cell of an aligned grid within this grid as (row, col).
        """
        col_offset = (other.x_origin - self.x_origin) / self.cell_width
        row_offset = (other.y_origin - self.y_origin) / self.cell_height

        return (int(round(row_offset)), int(round(col_offset)))

    def cell_ids(self, start: int = 1) -> Raster:
        """
        Number the cells of the grid row-major, starting from the top-left cell.

        Args:
            start (int, optional): Identifier of the top-left cell. Defaults to 1.

        Returns:
            Raster: Integer raster of cell identifiers.
        """
        from .raster import Raster

        ids = np.arange(start, start + self.size, dtype=np.int64).reshape(self.shape)

        return Raster(ids, geometry=self)

    def rasterize(
            self,
            features: gpd.GeoDataFrame,
            attribute: str = None,
            all_touched: bool = False) -> Raster:
        """
        Burn vector features into the grid.

        Polygons burn the cells whose centers they cover, lines burn the cells they
        traverse and points burn the cell containing them. Where features overlap,
        the last feature in input order wins. Cells not covered are no data.

        Args:
            features (gpd.GeoDataFrame): Features to rasterize.
            attribute (str, optional): Column holding the values to burn.
                Defaults to the 1-based position of each feature.
            all_touched (bool, optional): Whether polygons burn every cell they touch. Defaults to False.

        Returns:
            Raster: Float raster of burned values.
        """
        from .raster import Raster

        if features.crs is None:
            raise UnknownCoordinateSystemError("features have no coordinate reference system")

        if attribute is None:
            values = np.arange(1, len(features) + 1, dtype=np.float64)
        else:
            values = features[attribute].to_numpy(dtype=np.float64)

        geometries = features.geometry.to_crs(self.crs)

        shapes = [
            (geometry, value)
            for geometry, value
            in zip(geometries, values)
            if geometry is not None and not geometry.is_empty and not np.isnan(value)
        ]

        LOGGER.debug("rasterizing %d of %d features onto %s", len(shapes), len(features), self)

        if len(shapes) == 0:
            return Raster(np.full(self.shape, np.nan), geometry=self)

        image = rasterize(
            shapes=shapes,
            out_shape=self.shape,
            fill=np.nan,
            transform=self.affine,
            all_touched=all_touched,
            merge_alg=MergeAlg.replace,
            dtype=np.float64
        )

        return Raster(image, geometry=self)

    def geometry_mask(
            self,
            features: gpd.GeoDataFrame,
            all_touched: bool = False,
            invert: bool = False) -> np.ndarray:
        """
        Boolean array flagging the cells outside the features.

        Args:
            features (gpd.GeoDataFrame): Region features.
            all_touched (bool, optional): Whether every cell touched by a feature is inside. Defaults to False.
            invert (bool, optional): Flag the cells inside the features instead. Defaults to False.

        Returns:
            np.ndarray: Boolean array of the grid's shape.
        """
        if features.crs is None:
            raise UnknownCoordinateSystemError("features have no coordinate reference system")

        geometries = [
            geometry
            for geometry
            in features.geometry.to_crs(self.crs)
            if geometry is not None and not geometry.is_empty
        ]

        if len(geometries) == 0:
            return np.full(self.shape, not invert)

        return geometry_mask(
            geometries,
            out_shape=self.shape,
            transform=self.affine,
            all_touched=all_touched,
            invert=invert
        )

    def to_dict(self, output_dict: dict = None) -> dict:
        """
        Convert the RasterGrid to a dictionary representation.

        Args:
            output_dict (dict, optional): Dictionary to populate. Defaults to None.

        Returns:
            dict: Dictionary representation of the RasterGrid.
        """
        if output_dict is None:
            output_dict = {}

        output_dict['type'] = 'grid'
        output_dict['crs'] = self.crs.to_wkt()
        output_dict['cell_width'] = self.cell_width
        output_dict['cell_height'] = self.cell_height
        output_dict['x_origin'] = self.x_origin
        output_dict['y_origin'] = self.y_origin
        output_dict['rows'] = self.rows
        output_dict['cols'] = self.cols

        return output_dict

    @classmethod
    def from_dict(cls, input_dict: dict) -> RasterGrid:
        if input_dict.get('type', 'grid') != 'grid':
            raise ValueError(f"not a grid description: {input_dict.get('type')}")

        return cls(
            x_origin=input_dict['x_origin'],
            y_origin=input_dict['y_origin'],
            cell_width=input_dict['cell_width'],
            cell_height=input_dict['cell_height'],
            rows=input_dict['rows'],
            cols=input_dict['cols'],
            crs=input_dict.get('crs')
        )
