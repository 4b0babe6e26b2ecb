from .out_of_bounds_error import OutOfBoundsError
from .malformed_input_error import MalformedInputError
from .configuration_error import ConfigurationError
from .geometry_mismatch_error import GeometryMismatchError
from .unknown_coordinate_system_error import UnknownCoordinateSystemError

from .CRS import CRS, WGS84, parse_crs
from .bbox import BBox
from .raster_geometry import RasterGeometry
from .raster_grid import RasterGrid
from .raster import Raster
from .raster_stack import RasterStack
from .aggregation import count_distinct
from .plotting import plot_raster, save_plot

__version__ = "0.1.0"
