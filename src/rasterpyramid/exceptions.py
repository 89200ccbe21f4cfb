# src/rasterpyramid/exceptions.py

"""
This module defines the exception hierarchy shared by the raster, tiling and production layers.

Raster errors describe invalid geodata or invalid combinations of geodata.
Production errors describe why a pipeline run could not be configured or completed.
"""

from pathlib import Path
from typing import Any, Optional, Union

__all__ = [
    "RasterError",
    "RasterValidationError",
    "IncompatibleRasterKind",
    "ProductionError",
    "InvalidConfiguration",
    "SourceReadError",
    "WriteFailure",
    "InvalidState",
    "ProductionCancelled"
]

class RasterError(Exception):
    """Base class for errors raised by raster objects and format adapters."""

class RasterValidationError(RasterError, ValueError):
    """Raised when a sector or raster violates its structural invariants."""

class IncompatibleRasterKind(RasterError):
    """Raised when image data and scalar grid data are mixed without an explicit conversion."""

class ProductionError(Exception):
    """Base class for errors raised while configuring or running a production."""

class InvalidConfiguration(ProductionError, ValueError):
    """
    Raised when production parameters are missing or invalid.

    Args:
        field: Name of the offending parameter.
        message: Human-readable explanation.
    """
    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Missing or invalid production parameter: '{field}'")

class SourceReadError(ProductionError):
    """
    Raised when a format adapter cannot decode a data source.

    Args:
        source: The source that failed to decode.
        message: Human-readable explanation.
    """
    def __init__(self, source: Any, message: Optional[str] = None):
        self.source = source
        super().__init__(message or f"Unable to read data source: {source}")

class WriteFailure(ProductionError):
    """
    Raised when a tile or metadata file cannot be written.

    Args:
        path: Destination that could not be written.
        message: Human-readable explanation.
    """
    def __init__(self, path: Union[str, Path], message: Optional[str] = None):
        self.path = Path(path)
        super().__init__(message or f"Failed to write {path}")

class InvalidState(ProductionError, RuntimeError):
    """Raised when a producer operation is invoked from a state that does not allow it."""

class ProductionCancelled(ProductionError):
    """Raised between tile writes once cancellation of a production has been requested."""
