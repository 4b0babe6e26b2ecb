import numpy as np
import pytest

import geopandas as gpd
from shapely.geometry import box

from ecogrid import BBox, Raster, RasterGrid, GeometryMismatchError, OutOfBoundsError

UTM = "EPSG:32633"


@pytest.fixture
def block(utm_grid):
    array = np.full((10, 10), np.nan)
    array[2:5, 3:7] = np.arange(12).reshape(3, 4)

    return Raster(array, geometry=utm_grid)


def test_mask_with_itself(block):
    assert block.mask(block) == block


def test_mask_with_raster(ramp, block):
    masked = ramp.mask(block)

    np.testing.assert_array_equal(masked.missing, block.missing)
    np.testing.assert_array_equal(masked.array[2:5, 3:7], ramp.array[2:5, 3:7])


def test_mask_geometry_mismatch(ramp, global_grid):
    with pytest.raises(GeometryMismatchError):
        ramp.mask(global_grid.cell_ids())


def test_mask_with_region(ramp):
    region = gpd.GeoDataFrame(geometry=[box(0, 0, 5, 10)], crs=UTM)

    masked = ramp.mask(region)

    assert not masked.missing[:, :5].any()
    assert masked.missing[:, 5:].all()


def test_mask_integer_raster_without_sentinel(utm_grid, block):
    masked = utm_grid.cell_ids().mask(block)

    assert masked.dtype == np.float64
    assert masked.array[2, 3] == 24
    assert np.isnan(masked.array[0, 0])


def test_crop_to_aligned_grid(ramp):
    target = RasterGrid(3, 8, 1, -1, 4, 4, crs=UTM)

    cropped = ramp.crop(target)

    assert cropped.geometry == target
    np.testing.assert_array_equal(cropped.array, ramp.array[2:6, 3:7])


def test_crop_to_partially_overlapping_grid(ramp):
    target = RasterGrid(8, 12, 1, -1, 4, 4, crs=UTM)

    cropped = ramp.crop(target)

    assert cropped.shape == (2, 2)
    np.testing.assert_array_equal(cropped.array, ramp.array[0:2, 8:10])


def test_crop_to_bbox(ramp):
    cropped = ramp.crop(BBox(2.5, 2.5, 4.5, 4.5, crs=UTM))

    assert cropped.shape == (3, 3)
    np.testing.assert_array_equal(cropped.array, ramp.array[5:8, 2:5])


def test_crop_unaligned(ramp):
    with pytest.raises(GeometryMismatchError):
        ramp.crop(RasterGrid(3.5, 8, 1, -1, 4, 4, crs=UTM))

    with pytest.raises(GeometryMismatchError):
        ramp.crop(RasterGrid(3, 8, 2, -2, 2, 2, crs=UTM))

    with pytest.raises(GeometryMismatchError):
        ramp.crop(RasterGrid(3, 8, 1, -1, 4, 4, crs="EPSG:32634"))


def test_crop_without_overlap(ramp):
    with pytest.raises(OutOfBoundsError):
        ramp.crop(RasterGrid(20, 8, 1, -1, 2, 2, crs=UTM))


def test_trim(block):
    trimmed = block.trim()

    assert trimmed.shape == (3, 4)
    assert trimmed.geometry.x_origin == 3
    assert trimmed.geometry.y_origin == 8
    assert not trimmed.missing.any()


def test_trim_then_expand(block):
    assert block.trim().expand(block.geometry) == block


def test_trim_without_data(utm_grid):
    with pytest.raises(ValueError):
        Raster.full(utm_grid).trim()


def test_expand_needs_containing_grid(block, ramp):
    with pytest.raises(OutOfBoundsError):
        ramp.expand(ramp.geometry[0:5, 0:5])

    with pytest.raises(GeometryMismatchError):
        block.trim().expand(RasterGrid(0.5, 10, 1, -1, 10, 10, crs=UTM))


def test_geometry_mask_flags_outside(utm_grid):
    region = gpd.GeoDataFrame(geometry=[box(0, 0, 5, 5)], crs=UTM)
    outside = utm_grid.geometry_mask(region)

    assert outside.shape == (10, 10)
    assert not outside[5:, :5].any()
    assert outside[:5, :].all()
    assert outside[:, 5:].all()
    np.testing.assert_array_equal(utm_grid.geometry_mask(region, invert=True), ~outside)


def test_geometry_mask_without_geometries(utm_grid):
    empty = gpd.GeoDataFrame(geometry=[], crs=UTM)

    assert utm_grid.geometry_mask(empty).all()
