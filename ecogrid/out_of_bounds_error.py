class OutOfBoundsError(Exception):
    """
    Raised when a target geometry does not overlap the source geometry.
    """
    pass
