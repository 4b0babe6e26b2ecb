class UnknownCoordinateSystemError(ValueError):
    """
    Raised when the coordinate reference system of a grid cannot be determined.
    """
    pass
