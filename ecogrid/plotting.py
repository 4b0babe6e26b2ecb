from __future__ import annotations

from typing import TYPE_CHECKING

import logging

import numpy as np

import matplotlib.pyplot as plt
from matplotlib.axes import Axes

import geopandas as gpd

from .unknown_coordinate_system_error import UnknownCoordinateSystemError

if TYPE_CHECKING:
    from .raster import Raster

LOGGER = logging.getLogger(__name__)


def plot_raster(
        raster: Raster,
        boundary: gpd.GeoDataFrame = None,
        ax: Axes = None,
        cmap: str = "viridis",
        title: str = None,
        colorbar: bool = True) -> Axes:
    """
    Draw a raster from its tabular view with an optional boundary overlay.

    Args:
        raster (Raster): Raster to draw.
        boundary (gpd.GeoDataFrame, optional): Region outlines, drawn in the raster's CRS.
        ax (Axes, optional): Axes to draw on. Defaults to a new figure.
        cmap (str, optional): Colormap name. Defaults to "viridis".
        title (str, optional): Axes title.
        colorbar (bool, optional): Whether to add a colorbar. Defaults to True.

    Returns:
        Axes: The axes drawn on.
    """
    table = raster.to_xyz(include_missing=True)
    mesh = table.pivot(index="y", columns="x", values="value").sort_index()

    if ax is None:
        _, ax = plt.subplots()

    image = ax.pcolormesh(
        mesh.columns.to_numpy(),
        mesh.index.to_numpy(),
        np.ma.masked_invalid(mesh.to_numpy()),
        cmap=cmap,
        shading="nearest"
    )

    if colorbar:
        ax.figure.colorbar(image, ax=ax)

    if boundary is not None:
        if boundary.crs is None:
            raise UnknownCoordinateSystemError("boundary has no coordinate reference system")

        boundary.to_crs(raster.crs).boundary.plot(ax=ax, color="black", linewidth=0.5)

    ax.set_xlim(raster.geometry.xmin, raster.geometry.xmax)
    ax.set_ylim(raster.geometry.ymin, raster.geometry.ymax)
    ax.set_aspect("equal")

    if title is not None:
        ax.set_title(title)

    return ax


def save_plot(raster: Raster, filename: str, dpi: int = 150, **kwargs):
    """
    Draw a raster with `plot_raster` and write the figure to an image file.
    """
    figure, ax = plt.subplots()

    try:
        plot_raster(raster, ax=ax, **kwargs)
        figure.savefig(filename, dpi=dpi, bbox_inches="tight")
    finally:
        plt.close(figure)

    LOGGER.info("wrote %s", filename)
