import numpy as np
import pytest

from affine import Affine

from ecogrid import (
    BBox,
    RasterGrid,
    OutOfBoundsError,
    UnknownCoordinateSystemError,
    WGS84,
)


def test_from_bbox_dimensions():
    grid = RasterGrid.from_bbox(xmin=-180, ymin=-90, xmax=180, ymax=90, cell_size=0.5, crs="EPSG:4326")

    assert grid.shape == (360, 720)
    assert grid.cell_width == 0.5
    assert grid.cell_height == -0.5
    assert grid.x_origin == -180
    assert grid.y_origin == 90
    assert grid.bbox == BBox(-180, -90, 180, 90, crs=WGS84)


def test_from_bbox_with_shape(global_grid):
    grid = RasterGrid.from_bbox(bbox=global_grid.bbox, shape=(4, 8))

    assert grid.shape == (4, 8)
    assert grid.cell_width == 45
    assert grid.cell_height == -45
    assert grid.crs.equivalent(WGS84)


def test_from_bbox_rejects_mixed_arguments():
    with pytest.raises(ValueError):
        RasterGrid.from_bbox(bbox=(0, 0, 1, 1), xmin=0, cell_size=1, crs="EPSG:4326")

    with pytest.raises(ValueError):
        RasterGrid.from_bbox(xmin=0, ymin=0, xmax=1, cell_size=1, crs="EPSG:4326")

    with pytest.raises(ValueError):
        RasterGrid.from_bbox(xmin=0, ymin=0, xmax=1, ymax=1, crs="EPSG:4326")


def test_crs_is_required():
    with pytest.raises(UnknownCoordinateSystemError):
        RasterGrid.from_bbox(xmin=0, ymin=0, xmax=1, ymax=1, cell_size=1)

    with pytest.raises(UnknownCoordinateSystemError):
        RasterGrid(0, 1, 1, -1, 1, 1, crs="not a coordinate system")


def test_with_crs_keeps_cells(utm_grid):
    relabelled = utm_grid.with_crs("EPSG:32634")

    assert relabelled.affine == utm_grid.affine
    assert relabelled.shape == utm_grid.shape
    assert relabelled != utm_grid
    assert relabelled.crs.to_epsg() == 32634


def test_cell_centers(utm_grid):
    np.testing.assert_allclose(utm_grid.x_vector, np.arange(10) + 0.5)
    np.testing.assert_allclose(utm_grid.y_vector, 9.5 - np.arange(10))

    x, y = utm_grid.xy

    assert x.shape == (10, 10)
    assert x[3, 4] == 4.5
    assert y[3, 4] == 6.5


def test_from_vectors_reproduces_grid(utm_grid):
    grid = RasterGrid.from_vectors(utm_grid.x_vector, utm_grid.y_vector, crs=utm_grid.crs)

    assert grid == utm_grid


def test_cell_ids_are_row_major(global_grid):
    ids = global_grid.cell_ids()

    np.testing.assert_array_equal(ids.array, [[1, 2], [3, 4]])
    assert not ids.missing.any()


def test_index_snaps_outward(utm_grid):
    rows, cols = utm_grid.index((2.5, 2.5, 4.5, 4.5))

    assert (rows.start, rows.stop) == (5, 8)
    assert (cols.start, cols.stop) == (2, 5)


def test_index_outside_grid(utm_grid):
    with pytest.raises(OutOfBoundsError):
        utm_grid.index((20, 20, 30, 30))


def test_subset(utm_grid):
    subset = utm_grid[2:5, 3:7]

    assert subset.shape == (3, 4)
    assert subset.x_origin == 3
    assert subset.y_origin == 8
    assert utm_grid.is_aligned_with(subset)
    assert utm_grid.offset_of(subset) == (2, 3)


def test_alignment(utm_grid):
    assert utm_grid.is_aligned_with(utm_grid.buffer(2))
    assert not utm_grid.is_aligned_with(RasterGrid(0.5, 10, 1, -1, 10, 10, crs=utm_grid.crs))
    assert not utm_grid.is_aligned_with(RasterGrid(0, 10, 2, -2, 5, 5, crs=utm_grid.crs))
    assert not utm_grid.is_aligned_with(utm_grid.with_crs("EPSG:32634"))


def test_to_crs_covers_source():
    grid = RasterGrid.from_bbox(xmin=10, ymin=40, xmax=12, ymax=42, cell_size=0.25, crs="EPSG:4326")
    projected = grid.to_crs("EPSG:3857", cell_size=10000)

    assert projected.crs.to_epsg() == 3857
    assert projected.cell_width == pytest.approx(10000)
    assert projected.cell_height == pytest.approx(-10000)
    assert projected.bbox.transform("EPSG:4326").xmin <= 10 + 1e-6


def test_rescale_keeps_extent(utm_grid):
    coarse = utm_grid.rescale(cell_size=2)

    assert coarse.shape == (5, 5)
    assert coarse.bbox == utm_grid.bbox


def test_dict_round_trip(utm_grid):
    assert RasterGrid.from_dict(utm_grid.to_dict()) == utm_grid


def test_from_affine(utm_grid):
    grid = RasterGrid.from_affine(utm_grid.affine, 10, 10, "EPSG:32633")

    assert grid == utm_grid


def test_from_affine_rejects_rotation():
    with pytest.raises(ValueError):
        RasterGrid.from_affine(Affine.rotation(30), 2, 2, "EPSG:4326")
