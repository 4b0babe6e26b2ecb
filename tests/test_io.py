import numpy as np
import pytest

import rasterio

from ecogrid import Raster, RasterGrid, RasterStack, UnknownCoordinateSystemError


def test_geotiff_round_trip(tmp_path, ramp):
    array = ramp.data
    array[0, 0] = np.nan
    raster = Raster(array, geometry=ramp.geometry)
    filename = str(tmp_path / "ramp.tif")

    raster.to_geotiff(filename)
    result = Raster.open(filename)

    assert result.geometry == raster.geometry
    assert result.crs.to_epsg() == 32633
    assert result == raster
    assert RasterGrid.open(filename) == raster.geometry


def test_integer_raster_is_written_as_float(tmp_path, global_grid):
    filename = str(tmp_path / "cells.tif")

    global_grid.cell_ids().to_geotiff(filename)
    result = Raster.open(filename)

    assert result.geometry == global_grid
    np.testing.assert_array_equal(result.array, [[1, 2], [3, 4]])


def test_stack_round_trip(tmp_path, ramp, utm_grid):
    stack = RasterStack([
        ("ramp", ramp),
        ("empty", Raster.full(utm_grid))
    ])
    filename = str(tmp_path / "stack.tif")

    stack.to_geotiff(filename)
    result = RasterStack.open(filename)

    assert list(result) == ["ramp", "empty"]
    assert result.geometry == utm_grid
    assert result["ramp"] == ramp
    assert result["empty"].missing.all()


def test_file_without_crs(tmp_path):
    filename = str(tmp_path / "no_crs.tif")
    profile = {
        "driver": "GTiff",
        "height": 2,
        "width": 2,
        "count": 1,
        "dtype": "float32",
        "transform": rasterio.transform.from_origin(0, 2, 1, 1)
    }

    with rasterio.open(filename, "w", **profile) as file:
        file.write(np.ones((2, 2), dtype=np.float32), 1)

    with pytest.raises(UnknownCoordinateSystemError):
        Raster.open(filename)

    raster = Raster.open(filename, crs="EPSG:32633")

    assert raster.crs.to_epsg() == 32633
    assert raster.shape == (2, 2)


def test_stack_layers_share_geometry(ramp, global_grid):
    from ecogrid import GeometryMismatchError

    with pytest.raises(GeometryMismatchError):
        RasterStack({"ramp": ramp, "cells": global_grid.cell_ids()})
