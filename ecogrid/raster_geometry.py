from __future__ import annotations

from typing import Union, Tuple, TYPE_CHECKING

from .CRS import parse_crs

if TYPE_CHECKING:
    from .CRS import CRS


class RasterGeometry:
    """
    Base class for the georeferencing of gridded data.
    The coordinate reference system is required and is parsed on construction.
    """
    geometry_type = None

    def __init__(self, crs: Union[CRS, str], **kwargs):
        self._crs = parse_crs(crs)

    def __getitem__(self, key: Tuple[slice, slice]) -> RasterGeometry:
        if not isinstance(key, tuple) or len(key) != 2:
            raise IndexError("raster geometries are indexed by a pair of (row, col) slices")

        y_slice, x_slice = key

        if not isinstance(y_slice, slice) or not isinstance(x_slice, slice):
            raise IndexError("raster geometries can only be subset with slices")

        if y_slice.step not in (None, 1) or x_slice.step not in (None, 1):
            raise IndexError("strided subsets are not supported")

        return self._subset_index(y_slice, x_slice)

    def _subset_index(self, y_slice: slice, x_slice: slice) -> RasterGeometry:
        raise NotImplementedError()

    @property
    def crs(self) -> CRS:
        return self._crs

    @property
    def rows(self) -> int:
        raise NotImplementedError()

    @property
    def cols(self) -> int:
        raise NotImplementedError()

    @property
    def shape(self) -> Tuple[int, int]:
        """
        Dimensions of the grid as (rows, cols).
        """
        return (self.rows, self.cols)

    @property
    def size(self) -> int:
        return self.rows * self.cols
