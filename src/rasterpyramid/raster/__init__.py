# src/rasterpyramid/raster/__init__.py
#
# Copyright (c) The rasterpyramid project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the geodata unit shared by sources and tiles,
including resampling kernels, memory estimation, the shared raster cache
and format adapters for reading and writing rasters.
"""
# Core data structure
from .layer import (
    Raster,
    SampleKind,
    GEOGRAPHIC_CRS
)

# Sampling kernels
from .resample import (
    SUPPORTED_RESAMPLING,
    block_mean
)

# Resource management
from .resources import (
    MemoryEstimate,
    estimate_raster_bytes,
    estimate_memory_safety,
    default_cache_capacity
)

# Caching
from .cache import (
    CachedRasterHandle,
    RasterCache
)

# I/O operations
from .io import (
    FormatAdapter,
    MemoryRasterAdapter,
    GeoTiffAdapter,
    PngTileAdapter,
    FormatAdapterRegistry,
    default_registry
)

__all__ = [
    # Layer
    "Raster",
    "SampleKind",
    "GEOGRAPHIC_CRS",

    # Resample
    "SUPPORTED_RESAMPLING",
    "block_mean",

    # Resources
    "MemoryEstimate",
    "estimate_raster_bytes",
    "estimate_memory_safety",
    "default_cache_capacity",

    # Cache
    "CachedRasterHandle",
    "RasterCache",

    # I/O
    "FormatAdapter",
    "MemoryRasterAdapter",
    "GeoTiffAdapter",
    "PngTileAdapter",
    "FormatAdapterRegistry",
    "default_registry"
]
