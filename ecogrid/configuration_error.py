class ConfigurationError(ValueError):
    """
    Raised when a workflow configuration has unknown, missing or invalid settings.
    """
    pass
