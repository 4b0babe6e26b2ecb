from __future__ import annotations

from typing import Union

import pyproj
from pyproj.exceptions import CRSError
from rasterio.crs import CRS as RasterioCRS

from .unknown_coordinate_system_error import UnknownCoordinateSystemError


class CRS(pyproj.CRS):
    """
    Coordinate reference system of a grid, extending `pyproj.CRS` with the
    conversions needed by the raster and vector backends.
    """

    def __repr__(self) -> str:
        epsg = self.to_epsg()

        if epsg is not None:
            return f'CRS("EPSG:{epsg}")'

        return f'CRS("{self.proj4}")'

    def equivalent(self, other: Union[CRS, str]) -> bool:
        """
        Check whether two coordinate systems describe the same positions,
        ignoring the axis order of geographic systems.
        """
        return self.equals(pyproj.CRS(other), ignore_axis_order=True)

    @property
    def proj4(self) -> str:
        return self.to_proj4()

    @property
    def rasterio(self) -> RasterioCRS:
        epsg = self.to_epsg()

        if epsg is not None:
            return RasterioCRS.from_epsg(epsg)

        return RasterioCRS.from_wkt(self.to_wkt())


def parse_crs(crs: Union[CRS, pyproj.CRS, RasterioCRS, str, int]) -> CRS:
    """
    Coerce a CRS definition into a `CRS` object.

    Args:
        crs: EPSG code, authority string, proj4/WKT string or CRS object.

    Returns:
        CRS: parsed coordinate reference system.

    Raises:
        UnknownCoordinateSystemError: if no definition is given or it cannot be parsed.
    """
    if isinstance(crs, CRS):
        return crs

    if crs is None or (isinstance(crs, str) and crs.strip() == ""):
        raise UnknownCoordinateSystemError("coordinate reference system is required")

    if isinstance(crs, RasterioCRS):
        epsg = crs.to_epsg()
        crs = f"EPSG:{epsg}" if epsg is not None else crs.to_wkt()

    try:
        return CRS.from_user_input(crs)
    except CRSError as e:
        raise UnknownCoordinateSystemError(f"unable to parse coordinate reference system: {crs}") from e


WGS84 = CRS("EPSG:4326")
