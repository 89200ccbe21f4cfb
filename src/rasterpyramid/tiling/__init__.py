# src/rasterpyramid/tiling/__init__.py
#
# Copyright (c) The rasterpyramid project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The tiling subpackage provides the quad-tree pyramid geometry, the on-disk
tile store and the builder that draws source rasters into tiles.
"""
# Pyramid geometry
from .levels import (
    Level,
    Tile,
    LevelSet,
    default_tile_size,
    default_level_zero_delta
)

# Tile persistence
from .store import (
    TileStore
)

# Pyramid construction
from .builder import (
    BuildPolicy,
    BuildReport,
    TilePyramidBuilder
)

__all__ = [
    # Levels
    "Level",
    "Tile",
    "LevelSet",
    "default_tile_size",
    "default_level_zero_delta",

    # Store
    "TileStore",

    # Builder
    "BuildPolicy",
    "BuildReport",
    "TilePyramidBuilder"
]
