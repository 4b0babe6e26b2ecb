from __future__ import annotations

from typing import Union, Tuple, List, Iterator, TYPE_CHECKING

import logging

from collections import OrderedDict
from collections.abc import Mapping

import numpy as np
import pandas as pd

import rasterio

from .geometry_mismatch_error import GeometryMismatchError

from .raster import Raster
from .raster_grid import RasterGrid
from .xyz import grid_from_xyz, populate

if TYPE_CHECKING:
    from .CRS import CRS

LOGGER = logging.getLogger(__name__)


class RasterStack(Mapping):
    """
    Named layers sharing one geometry.
    """

    def __init__(self, layers: Union[Mapping[str, Raster], List[Tuple[str, Raster]]]):
        self._layers = OrderedDict(layers)

        if len(self._layers) == 0:
            raise ValueError("a raster stack needs at least one layer")

        geometry = self.geometry

        for name, raster in self._layers.items():
            if not isinstance(raster, Raster):
                raise TypeError(f"layer {name} is not a Raster: {type(raster)}")

            if raster.geometry != geometry:
                raise GeometryMismatchError(f"layer {name} has geometry {raster.geometry}, expected {geometry}")

    def __getitem__(self, name: str) -> Raster:
        return self._layers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    def __repr__(self) -> str:
        return f"RasterStack(layers={list(self._layers)}, geometry={self.geometry!r})"

    @property
    def geometry(self) -> RasterGrid:
        return next(iter(self._layers.values())).geometry

    @property
    def crs(self) -> CRS:
        return self.geometry.crs

    @classmethod
    def from_table(
            cls,
            table: pd.DataFrame,
            layers: List[str],
            crs: Union[CRS, str],
            x: str = "x",
            y: str = "y",
            cell_size: Union[float, Tuple[float, float]] = None) -> RasterStack:
        """
        Build one layer per value column of a data frame of cell-center records.

        Args:
            table (pd.DataFrame): Records with coordinate and value columns.
            layers (List[str]): Value columns, each becoming a layer of the same name.
            crs (Union[CRS, str]): Coordinate reference system of the coordinates.
            x (str, optional): X-coordinate column. Defaults to "x".
            y (str, optional): Y-coordinate column. Defaults to "y".
            cell_size (Union[float, Tuple[float, float]], optional): Known cell size.

        Returns:
            RasterStack: Stack of float rasters.
        """
        geometry, row_index, col_index = grid_from_xyz(
            table[x].to_numpy(),
            table[y].to_numpy(),
            crs=crs,
            cell_size=cell_size
        )

        return cls([
            (name, Raster(populate(geometry, row_index, col_index, table[name].to_numpy(), name=name), geometry=geometry))
            for name
            in layers
        ])

    def to_table(self, include_missing: bool = False) -> pd.DataFrame:
        """
        Tabular view with the cell-center coordinates and one column per layer.

        Cells that are no data in every layer are dropped unless include_missing is set.
        """
        x, y = self.geometry.xy

        table = pd.DataFrame({"x": x.ravel(), "y": y.ravel()})

        for name, raster in self.items():
            table[name] = raster.data.ravel()

        if not include_missing:
            missing = np.all([raster.missing.ravel() for raster in self.values()], axis=0)
            table = table[~missing].reset_index(drop=True)

        return table

    def to_geotiff(self, filename: str, compress: str = "deflate"):
        """
        Write the stack to a multi-band float GeoTIFF with the layer names as band descriptions.
        """
        profile = {
            "driver": "GTiff",
            "height": self.geometry.rows,
            "width": self.geometry.cols,
            "count": len(self),
            "dtype": "float64",
            "crs": self.crs.rasterio,
            "transform": self.geometry.affine,
            "nodata": np.nan,
            "compress": compress
        }

        with rasterio.open(filename, "w", **profile) as file:
            for band, (name, raster) in enumerate(self.items(), start=1):
                file.write(raster.data, band)
                file.set_band_description(band, name)

        LOGGER.info("wrote %d layers to %s", len(self), filename)

    @classmethod
    def open(cls, filename: str, crs: Union[CRS, str] = None) -> RasterStack:
        """
        Read every band of a raster file, naming layers after the band descriptions.
        """
        with rasterio.open(filename, "r") as file:
            geometry = RasterGrid.from_rasterio(file, crs=crs)
            nodata = file.nodata
            names = [
                description if description else f"band_{band}"
                for band, description
                in enumerate(file.descriptions, start=1)
            ]
            layers = [
                (name, Raster(file.read(band), geometry=geometry, nodata=nodata))
                for band, name
                in enumerate(names, start=1)
            ]

        return cls(layers)
