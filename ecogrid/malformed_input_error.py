class MalformedInputError(ValueError):
    """
    Raised when tabular input cannot be resolved to a single regular grid,
    either because the coordinate spacing is irregular or because the same cell
    is given conflicting values.
    """
    pass
