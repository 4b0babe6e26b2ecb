from __future__ import annotations

from typing import Union, Iterator

import numpy as np
from rasterio.warp import transform_bounds

from .CRS import CRS, parse_crs


class BBox:
    """
    Axis-aligned bounding rectangle in a given coordinate reference system.
    """

    def __init__(self, xmin: float, ymin: float, xmax: float, ymax: float, crs: Union[CRS, str]):
        if xmin > xmax or ymin > ymax:
            raise ValueError(f"invalid bounding box: ({xmin}, {ymin}, {xmax}, {ymax})")

        self.xmin = float(xmin)
        self.ymin = float(ymin)
        self.xmax = float(xmax)
        self.ymax = float(ymax)
        self.crs = parse_crs(crs)

    def __repr__(self) -> str:
        return f"BBox(xmin={self.xmin}, ymin={self.ymin}, xmax={self.xmax}, ymax={self.ymax}, crs={self.crs!r})"

    def __iter__(self) -> Iterator[float]:
        for element in (self.xmin, self.ymin, self.xmax, self.ymax):
            yield element

    def __eq__(self, other: BBox) -> bool:
        return (
            isinstance(other, BBox) and
            self.crs.equivalent(other.crs) and
            np.allclose(tuple(self), tuple(other))
        )

    def transform(self, crs: Union[CRS, str]) -> BBox:
        """
        Transform the bounding box into another coordinate reference system.

        The corners are densified along the edges so the result encloses the
        whole reprojected rectangle.

        Args:
            crs (Union[CRS, str]): Target coordinate reference system.

        Returns:
            BBox: Bounding box in the target CRS.
        """
        crs = parse_crs(crs)

        if self.crs.equivalent(crs):
            return BBox(*self, crs=crs)

        xmin, ymin, xmax, ymax = transform_bounds(self.crs.rasterio, crs.rasterio, *self, densify_pts=21)

        return BBox(xmin, ymin, xmax, ymax, crs=crs)

    to_crs = transform

