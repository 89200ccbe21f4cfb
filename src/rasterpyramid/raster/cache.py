# src/rasterpyramid/raster/cache.py

"""
This module manages lazily materialized rasters through a bounded, shared cache.

A CachedRasterHandle describes a raster (extent, size, loader) without holding pixels.
The RasterCache owns every materialized pixel buffer and is safe for concurrent use:
- Least-recently-used entries are evicted once the estimated size exceeds capacity
- Entries checked out for drawing are pinned and never evicted
- Concurrent requests for one key collapse into a single load
"""

import logging
import threading
from collections import Counter, OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

from ..sector import Sector
from .layer import Raster, SampleKind
from .resources import default_cache_capacity, estimate_memory_safety, estimate_raster_bytes

log = logging.getLogger(__name__)

__all__ = [
    "CachedRasterHandle",
    "RasterCache"
]

@dataclass(frozen=True)
class CachedRasterHandle:
    """
    Lightweight descriptor that resolves to a materialized Raster via a RasterCache.

    Args:
        source_ref: The source the adapter reads (path, in-memory Raster, ...).
        cache_key: Key of the materialized raster in the cache.
        sector: Geographic extent of the raster.
        width: Raster columns.
        height: Raster rows.
        bands: Raster bands.
        dtype: Sample dtype name.
        kind: SampleKind of the raster.
        missing_value: Missing-value signal declared by the source, if any.
        adapter: Format adapter owning the load.
        read_params: Keyword arguments passed to the adapter's read().
    """
    source_ref: Any = field(compare=False)
    cache_key: str
    sector: Sector
    width: int
    height: int
    bands: int = 1
    dtype: str = "float32"
    kind: SampleKind = SampleKind.SCALAR_GRID
    missing_value: Optional[Any] = field(default=None, compare=False)
    adapter: Any = field(default=None, compare=False, repr=False)
    read_params: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def estimated_bytes(self) -> int:
        return estimate_raster_bytes(self.width, self.height, self.bands, self.dtype)

    @property
    def resolution(self) -> float:
        """Latitude degrees per pixel."""
        return self.sector.delta_lat / self.height

    def load(self) -> Raster:
        """Read the raster through the owning adapter, bypassing any cache."""
        if self.adapter is None:
            raise RuntimeError(f"Handle {self.cache_key} has no format adapter to load from")
        return self.adapter.read(self.source_ref, **dict(self.read_params))

class _Entry:
    __slots__ = ("raster", "nbytes", "pins")

    def __init__(self, raster: Raster, pins: int = 0):
        self.raster = raster
        self.nbytes = raster.nbytes
        self.pins = pins

class _PendingLoad:
    __slots__ = ("event", "raster", "error")

    def __init__(self):
        self.event = threading.Event()
        self.raster: Optional[Raster] = None
        self.error: Optional[BaseException] = None

class RasterCache:
    """
    Bounded key-addressed store of materialized rasters with LRU eviction.

    The cache is constructed explicitly and passed to every component that needs it.

    Args:
        capacity_bytes: Maximum estimated size of all cached rasters. Defaults to a
            share of available system memory.
    """

    def __init__(self, capacity_bytes: Optional[int] = None):
        self._capacity = int(capacity_bytes) if capacity_bytes is not None else default_cache_capacity()
        if self._capacity <= 0:
            raise ValueError(f"Cache capacity must be positive, got {self._capacity}")

        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._pending: Dict[str, _PendingLoad] = {}
        self._size = 0
        self._load_counts: Counter = Counter()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._size

    def set_capacity(self, capacity_bytes: int):
        """Change the capacity, evicting unpinned entries until the cache fits."""
        if capacity_bytes <= 0:
            raise ValueError(f"Cache capacity must be positive, got {capacity_bytes}")
        with self._lock:
            self._capacity = int(capacity_bytes)
            self._evict_over_capacity()

    def load_count(self, key: str) -> int:
        """Number of completed loads for key since the cache was created."""
        with self._lock:
            return self._load_counts[key]

    def materialize(self, handle: CachedRasterHandle) -> Raster:
        """
        Return the raster for handle, loading it through its adapter if absent.

        Blocks while another thread loads the same key. Load errors propagate to
        every waiting caller and are not cached.
        """
        return self._acquire(handle, pin=False)

    @contextmanager
    def checkout(self, handle: CachedRasterHandle) -> Iterator[Raster]:
        """
        Materialize handle and pin it for the duration of the context.

        Usage:
            with cache.checkout(handle) as raster:
                raster.draw_into(tile)
        """
        raster = self._acquire(handle, pin=True)
        try:
            yield raster
        finally:
            self._release(handle.cache_key)

    def evict(self, key: str) -> bool:
        """
        Remove key from the cache.

        Returns:
            bool: True if the entry was removed, False if absent or currently checked out.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.pins > 0:
                log.warning(f"Refusing to evict '{key}': checked out by {entry.pins} caller(s)")
                return False
            self._remove(key)
            return True

    def clear(self):
        """Drop every unpinned entry."""
        with self._lock:
            for key in [k for k, e in self._entries.items() if e.pins == 0]:
                self._remove(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return (f"<RasterCache entries={len(self._entries)} "
                f"size={self._size/1e6:.1f}MB capacity={self._capacity/1e6:.1f}MB>")

    def _acquire(self, handle: CachedRasterHandle, pin: bool) -> Raster:
        key = handle.cache_key

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                if pin:
                    entry.pins += 1
                return entry.raster

            pending = self._pending.get(key)
            is_loader = pending is None
            if is_loader:
                pending = _PendingLoad()
                self._pending[key] = pending

        if not is_loader:
            pending.event.wait()
            if pending.error is not None:
                raise pending.error
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    # Evicted between the load and this wake-up; reinsert the loaded raster
                    entry = self._insert(key, pending.raster)
                else:
                    self._entries.move_to_end(key)
                if pin:
                    entry.pins += 1
                return entry.raster

        log.debug(f"Materializing raster '{key}' ({handle.estimated_bytes/1e6:.1f}MB estimated)")
        estimate = estimate_memory_safety(handle.width, handle.height, handle.bands, handle.dtype)
        if not estimate.is_safe:
            log.warning(f"Materializing raster '{key}' may exhaust system memory ({estimate.reason})")
        try:
            raster = handle.load()
        except BaseException as e:
            with self._lock:
                del self._pending[key]
            pending.error = e
            pending.event.set()
            raise

        with self._lock:
            self._load_counts[key] += 1
            entry = _Entry(raster, pins=1 if pin else 0)
            self._entries[key] = entry
            self._size += entry.nbytes
            self._evict_over_capacity(protect=key)
            del self._pending[key]
        pending.raster = raster
        pending.event.set()
        return raster

    def _insert(self, key: str, raster: Raster) -> _Entry:
        entry = _Entry(raster)
        self._entries[key] = entry
        self._size += entry.nbytes
        self._evict_over_capacity(protect=key)
        return entry

    def _release(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.pins > 0:
                entry.pins -= 1
                if entry.pins == 0:
                    self._evict_over_capacity()

    def _remove(self, key: str):
        entry = self._entries.pop(key)
        self._size -= entry.nbytes
        log.debug(f"Evicted raster '{key}' ({entry.nbytes/1e6:.1f}MB)")

    def _evict_over_capacity(self, protect: Optional[str] = None):
        """Evict least-recently-used unpinned entries until the size fits. Caller holds the lock."""
        if self._size <= self._capacity:
            return
        for key in list(self._entries.keys()):
            if self._size <= self._capacity:
                break
            entry = self._entries[key]
            if key == protect or entry.pins > 0:
                continue
            self._remove(key)

        if self._size > self._capacity:
            log.debug(
                f"Raster cache over capacity ({self._size/1e6:.1f}MB > {self._capacity/1e6:.1f}MB); "
                "remaining entries are pinned"
            )
