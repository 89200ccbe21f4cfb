# src/rasterpyramid/production/__init__.py
#
# Copyright (c) The rasterpyramid project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The production subpackage provides parameter validation, configuration loading
and the producer driving a dataset from raster sources to a tile cache.
"""
# Parameters
from .config import (
    ProductionParameters,
    load_parameters,
    sanitize_name
)

# Run state
from .state import (
    ProductionStatus,
    OfferedSource,
    ProductionState
)

# Producer
from .producer import (
    TiledRasterProducer
)

__all__ = [
    # Config
    "ProductionParameters",
    "load_parameters",
    "sanitize_name",

    # State
    "ProductionStatus",
    "OfferedSource",
    "ProductionState",

    # Producer
    "TiledRasterProducer"
]
