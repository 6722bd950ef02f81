"""
Error types raised by the pipeline stages.
"""


class ValkartaError(Exception):
    """Base class for pipeline errors."""


class AcquisitionError(ValkartaError):
    """A download or archive extraction failed. Aborts the run."""


class SchemaError(ValkartaError, ValueError):
    """A source file is missing expected columns or holds malformed values."""


class SmoothingError(ValkartaError):
    """A surface could not be fitted or evaluated for one party."""


class GridError(ValkartaError):
    """The sample grid has no point inside the national boundary."""
