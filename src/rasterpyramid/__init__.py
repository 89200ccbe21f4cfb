# src/rasterpyramid/__init__.py
#
# Copyright (c) The rasterpyramid project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
rasterpyramid converts georeferenced imagery and elevation rasters into
multi-resolution quad-tree tile caches described by a metadata document.
"""

__version__ = "0.3.0"

from .exceptions import (
    RasterError,
    RasterValidationError,
    IncompatibleRasterKind,
    ProductionError,
    InvalidConfiguration,
    SourceReadError,
    WriteFailure,
    InvalidState,
    ProductionCancelled
)
from .sector import Sector
from .raster import (
    Raster,
    SampleKind,
    RasterCache,
    CachedRasterHandle,
    FormatAdapterRegistry,
    default_registry
)
from .tiling import (
    LevelSet,
    Tile,
    TilePyramidBuilder,
    BuildPolicy
)
from .production import (
    ProductionParameters,
    ProductionStatus,
    TiledRasterProducer,
    load_parameters
)
from .metadata import (
    DatasetMetadataDocument,
    convert_legacy_descriptor,
    open_document
)
from .log import setup_logging

__all__ = [
    "__version__",

    # Errors
    "RasterError",
    "RasterValidationError",
    "IncompatibleRasterKind",
    "ProductionError",
    "InvalidConfiguration",
    "SourceReadError",
    "WriteFailure",
    "InvalidState",
    "ProductionCancelled",

    # Geodata
    "Sector",
    "Raster",
    "SampleKind",
    "RasterCache",
    "CachedRasterHandle",
    "FormatAdapterRegistry",
    "default_registry",

    # Tiling
    "LevelSet",
    "Tile",
    "TilePyramidBuilder",
    "BuildPolicy",

    # Production
    "ProductionParameters",
    "ProductionStatus",
    "TiledRasterProducer",
    "load_parameters",

    # Metadata
    "DatasetMetadataDocument",
    "convert_legacy_descriptor",
    "open_document",

    # Logging
    "setup_logging"
]
