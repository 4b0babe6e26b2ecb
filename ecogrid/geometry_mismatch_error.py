class GeometryMismatchError(ValueError):
    """
    Raised when an operation that needs matching or aligned grids receives grids
    with a different CRS, resolution or origin.
    """
    pass
