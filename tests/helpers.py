# tests/helpers.py

import hashlib
import threading
from pathlib import Path

import numpy as np
from rasterpyramid.raster import CachedRasterHandle, Raster

class CountingAdapter:
    """In-memory adapter serving named rasters and counting how often each is read."""

    name = "counting"
    suffixes = ()

    def __init__(self, rasters, delay_event: threading.Event = None):
        self.rasters = dict(rasters)
        self.reads = {}
        self.delay_event = delay_event
        self._lock = threading.Lock()

    def can_read(self, source):
        return isinstance(source, str) and source in self.rasters

    def read_info(self, source, **params):
        raster = self.rasters[source]
        return {
            "sector": raster.sector,
            "width": raster.width,
            "height": raster.height,
            "bands": raster.count,
            "dtype": raster.dtype.name,
            "kind": raster.kind,
            "missing_value": raster.missing_value
        }

    def read(self, source, **params):
        if self.delay_event is not None:
            self.delay_event.wait(timeout=5)
        with self._lock:
            self.reads[source] = self.reads.get(source, 0) + 1
        return self.rasters[source]

    def can_write(self, kind):
        return False

    def write(self, raster, destination):
        raise NotImplementedError

    def cache_key(self, source, params):
        return f"counting:{source}"

def handle_for(adapter: CountingAdapter, name: str) -> CachedRasterHandle:
    """Describe one of the adapter's rasters as a cache handle."""
    info = adapter.read_info(name)
    return CachedRasterHandle(
        source_ref=name,
        cache_key=adapter.cache_key(name, {}),
        sector=info["sector"],
        width=info["width"],
        height=info["height"],
        bands=info["bands"],
        dtype=info["dtype"],
        kind=info["kind"],
        adapter=adapter
    )

def assert_unchanged(before: Raster, after: Raster):
    """Strictly verify that a raster kept its samples."""
    assert before.shape == after.shape, \
        f"Shape mismatch: {before.shape} != {after.shape}"
    assert np.array_equal(before.data, after.data, equal_nan=True), \
        "Raster samples changed"

def tree_digest(root: Path) -> dict:
    """Map every file under root (relative path) to the SHA-256 of its bytes."""
    return {
        str(path.relative_to(root)): hashlib.sha256(path.read_bytes()).hexdigest()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
