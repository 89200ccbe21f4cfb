# src/rasterpyramid/raster/resources.py

"""
This module performs static memory analysis for rasters and the host system.

It answers two questions before pixels are materialized:
- How many bytes a raster of a given shape occupies once loaded (Memory Estimation)
- How large the shared raster cache may grow on this machine (Cache Capacity)
"""

import logging
from dataclasses import dataclass
from typing import Union

import numpy as np
import psutil

log = logging.getLogger(__name__)

__all__ = [
    "MemoryEstimate",
    "estimate_raster_bytes",
    "estimate_memory_safety",
    "default_cache_capacity"
]

DEFAULT_SAFETY_FACTOR = 3.0
MIN_FREE_GB = 2.0
DEFAULT_CACHE_FRACTION = 0.25
MIN_CACHE_BYTES = 64 * 1024**2

@dataclass(frozen=True)
class MemoryEstimate:
    """
    Estimation of memory requirements and safety for materializing a raster.

    Args:
        total_required_bytes: Total bytes required to load the raster (with overhead)
        available_system_bytes: Currently available system memory in bytes
        is_safe: Boolean indicating if loading is considered safe
        reason: Explanation for the safety assessment
    """
    total_required_bytes: int
    available_system_bytes: int
    is_safe: bool
    reason: str

def estimate_raster_bytes(
    width: int,
    height: int,
    bands: int = 1,
    dtype: Union[str, np.dtype] = "float32"
) -> int:
    """Exact byte size of a (bands, height, width) array of the given dtype."""
    return int(width) * int(height) * int(bands) * np.dtype(dtype).itemsize

def estimate_memory_safety(
    width: int,
    height: int,
    bands: int = 1,
    dtype: Union[str, np.dtype] = "float32",
    safety_factor: float = DEFAULT_SAFETY_FACTOR,
    min_free_gb: float = MIN_FREE_GB
) -> MemoryEstimate:
    """
    Checks if a raster of the given shape fits in RAM safely.

    Args:
        width: Raster columns.
        height: Raster rows.
        bands: Raster bands.
        dtype: Sample dtype.
        safety_factor: Multiplier to account for resampling overhead (default 3.0)
        min_free_gb: Minimum free GB to leave available after loading (default 2.0)

    Returns:
        MemoryEstimate: Contains total required bytes, available bytes, safety boolean, and reason.
    """
    raw_bytes = estimate_raster_bytes(width, height, bands, dtype)
    overhead_bytes = int(raw_bytes * (safety_factor - 1.0))
    total_required = raw_bytes + overhead_bytes

    mem = psutil.virtual_memory()
    min_free_bytes = int(min_free_gb * (1024**3))
    is_safe = (total_required + min_free_bytes) <= mem.available

    reason = f"Req: {total_required/1e9:.2f}GB, Avail: {mem.available/1e9:.2f}GB"

    return MemoryEstimate(total_required, mem.available, is_safe, reason)

def default_cache_capacity(fraction: float = DEFAULT_CACHE_FRACTION) -> int:
    """
    Capacity in bytes for a raster cache sized from currently available memory.

    Args:
        fraction: Share of available system memory granted to the cache.

    Returns:
        int: Capacity in bytes, never below 64 MB.
    """
    if not 0.0 < fraction <= 1.0:
        raise ValueError(f"Cache fraction must be in (0, 1], got {fraction}")

    available = psutil.virtual_memory().available
    capacity = max(int(available * fraction), MIN_CACHE_BYTES)
    log.debug(f"Default raster cache capacity: {capacity/1e6:.1f}MB ({fraction:.0%} of available)")
    return capacity
