import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from ecogrid import RasterGrid, Raster

UTM = "EPSG:32633"


@pytest.fixture
def utm_grid():
    # 10 x 10 grid of unit cells with its top-left corner at (0, 10)
    return RasterGrid(x_origin=0, y_origin=10, cell_width=1, cell_height=-1, rows=10, cols=10, crs=UTM)


@pytest.fixture
def global_grid():
    return RasterGrid.from_bbox(xmin=-180, ymin=-90, xmax=180, ymax=90, cell_width=180, cell_height=90, crs="EPSG:4326")


@pytest.fixture
def ramp(utm_grid):
    return Raster(np.arange(100, dtype=np.float64).reshape(10, 10), geometry=utm_grid)
