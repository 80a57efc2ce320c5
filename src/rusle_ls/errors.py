class ConfigurationError(ValueError):
    """Raised when run parameters (units, slope cutoffs, angle floor) are invalid."""


class InvalidRasterError(ValueError):
    """Raised when a raster cannot be processed: empty extent, bad cell size or all nodata."""
