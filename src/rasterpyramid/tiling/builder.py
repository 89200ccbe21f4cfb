# src/rasterpyramid/tiling/builder.py

"""
This module builds tile pyramids from source rasters.

One build draws a source into the finest level it supports, then derives the
coarser levels bottom-up:
- Tiles of the selected level are drawn in parallel; each tile is owned by one worker
- Each coarser level starts only after the finer level has been written
- Parent tiles are the 2x2 block mean of their four children, laid over the existing parent
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm import tqdm

from ..exceptions import IncompatibleRasterKind, ProductionCancelled
from ..raster.cache import CachedRasterHandle, RasterCache
from ..raster.io import MemoryRasterAdapter
from ..raster.layer import Raster, SampleKind
from ..raster.resample import block_mean
from .levels import Level, LevelSet, Tile
from .store import TileStore

log = logging.getLogger(__name__)

__all__ = [
    "BuildPolicy",
    "BuildReport",
    "TilePyramidBuilder"
]

@dataclass(frozen=True)
class BuildPolicy:
    """
    Controls how a source is turned into tiles.

    Args:
        allow_upsample: Draw into the finest level even when it is finer than the source.
        coarsen: Derive coarser levels from their children (True) or draw the
            source directly into every coarser level (False).
        max_workers: Threads drawing tiles of one level concurrently.
        show_progress: Display a tqdm progress bar per level.
    """
    allow_upsample: bool = False
    coarsen: bool = True
    max_workers: int = 1
    show_progress: bool = False

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

@dataclass
class BuildReport:
    """
    Outcome of building one source into a pyramid.

    Args:
        source: Cache key of the source.
        selected_level: Level the source was drawn into, None if skipped.
        written_paths: Tile files written, in write order.
        tiles_per_level: Number of tiles written per level index.
        extremes: (min, max) of the source's valid samples, if any.
        skipped: True if the source did not overlap the pyramid.
    """
    source: str
    selected_level: Optional[int] = None
    written_paths: List[Path] = field(default_factory=list)
    tiles_per_level: Dict[int, int] = field(default_factory=dict)
    extremes: Optional[Tuple[float, float]] = None
    skipped: bool = False

    @property
    def tile_count(self) -> int:
        return sum(self.tiles_per_level.values())

class TilePyramidBuilder:
    """
    Draws sources into the tiles of a LevelSet through a TileStore.

    Args:
        level_set: Pyramid geometry.
        store: Tile store reading and writing tile rasters.
        cache: Raster cache holding materialized sources.
        policy: Build policy.
        cancel_event: Event checked before every tile write.
        on_write: Callback receiving each tile path before the file is written.
    """

    def __init__(
        self,
        level_set: LevelSet,
        store: TileStore,
        cache: RasterCache,
        policy: Optional[BuildPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        on_write: Optional[Callable[[Path], None]] = None
    ):
        self.level_set = level_set
        self.store = store
        self.cache = cache
        self.policy = policy or BuildPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.on_write = on_write
        self._report_lock = threading.Lock()

    def build(self, source: Union[Raster, CachedRasterHandle]) -> BuildReport:
        """
        Draw a source into the pyramid.

        Args:
            source: In-memory Raster or a handle resolved through the cache.

        Returns:
            BuildReport: Written paths and per-level tile counts.

        Raises:
            IncompatibleRasterKind: If the source kind differs from the tile kind.
            ProductionCancelled: If cancellation was requested before a tile write.
            WriteFailure: If a tile cannot be written.
        """
        handle = self._as_handle(source)
        report = BuildReport(source=handle.cache_key)

        if handle.kind is not self.store.kind:
            raise IncompatibleRasterKind(
                f"Source {handle.cache_key} holds {handle.kind.value} data but the pyramid "
                f"stores {self.store.kind.value} tiles"
            )

        if not handle.sector.intersects(self.level_set.sector):
            log.warning(f"Source {handle.cache_key} does not overlap {self.level_set.sector}; skipped")
            report.skipped = True
            return report

        level = self.level_set.select_level(handle.resolution, self.policy.allow_upsample)
        report.selected_level = level.level_index
        log.info(
            f"Drawing {handle.cache_key} into level {level.level_index} "
            f"(gsd {level.gsd:.6g} deg, source {handle.resolution:.6g} deg)"
        )

        with self.cache.checkout(handle) as raster:
            if self.store.kind is SampleKind.SCALAR_GRID:
                report.extremes = raster.extremes()

        tiles = self.level_set.tiles_intersecting(level.level_index, handle.sector)
        self._run(tiles, lambda tile: self._draw_tile(tile, handle, report), level, "Drawing")

        for index in range(level.level_index - 1, -1, -1):
            coarser = self.level_set.level(index)
            if self.policy.coarsen:
                parents = self._parents_of(tiles)
                self._run(parents, lambda tile: self._coarsen_tile(tile, report), coarser, "Coarsening")
                tiles = parents
            else:
                tiles = self.level_set.tiles_intersecting(index, handle.sector)
                self._run(tiles, lambda tile: self._draw_tile(tile, handle, report), coarser, "Drawing")

        log.info(f"Source {handle.cache_key} produced {report.tile_count} tile write(s)")
        return report

    def _as_handle(self, source: Union[Raster, CachedRasterHandle]) -> CachedRasterHandle:
        if isinstance(source, CachedRasterHandle):
            return source
        if not isinstance(source, Raster):
            raise TypeError(f"Source must be a Raster or CachedRasterHandle, got {type(source)}")

        adapter = MemoryRasterAdapter()
        return CachedRasterHandle(
            source_ref=source,
            cache_key=adapter.cache_key(source, {}),
            sector=source.sector,
            width=source.width,
            height=source.height,
            bands=source.count,
            dtype=source.dtype.name,
            kind=source.kind,
            missing_value=source.missing_value,
            adapter=adapter
        )

    def _parents_of(self, tiles: Sequence[Tile]) -> List[Tile]:
        parents = {}
        for tile in tiles:
            parent = self.level_set.parent_of(tile)
            parents[parent.key] = parent
        return [parents[k] for k in sorted(parents)]

    def _run(self, tiles: Sequence[Tile], work: Callable[[Tile], None], level: Level, action: str):
        """Apply work to every tile, spreading tiles over the worker pool."""
        if not tiles:
            return

        progress = tqdm(
            total=len(tiles),
            desc=f"{action} level {level.level_index}",
            disable=not self.policy.show_progress
        )
        try:
            if self.policy.max_workers == 1 or len(tiles) == 1:
                for tile in tiles:
                    work(tile)
                    progress.update(1)
                return

            executor = ThreadPoolExecutor(max_workers=min(self.policy.max_workers, len(tiles)))
            try:
                futures = [executor.submit(work, tile) for tile in tiles]
                for future in as_completed(futures):
                    future.result()
                    progress.update(1)
            finally:
                # Queued tiles are dropped once one worker has failed
                executor.shutdown(wait=True, cancel_futures=True)
        finally:
            progress.close()

    def _draw_tile(self, tile: Tile, handle: CachedRasterHandle, report: BuildReport):
        self._check_cancelled()
        dest = self.store.load_or_create(tile)
        with self.cache.checkout(handle) as raster:
            raster.draw_into(dest)
        self._persist(tile, dest, report)

    def _coarsen_tile(self, parent: Tile, report: BuildReport):
        self._check_cancelled()
        height, width = self.level_set.tile_height, self.level_set.tile_width
        bands = self.store.bands

        mosaic = np.empty((bands, 2 * height, 2 * width), dtype=self.store.dtype)
        valid = np.zeros((2 * height, 2 * width), dtype=bool)

        for child in self.level_set.children_of(parent):
            raster = self.store.load_or_create(child)
            # Row 0 of a raster is its northern edge, so northern children fill the top half
            y = 0 if child.row % 2 == 1 else height
            x = 0 if child.col % 2 == 0 else width
            mosaic[:, y:y + height, x:x + width] = raster.data
            valid[y:y + height, x:x + width] = raster.valid_mask()

        if not valid.any():
            return

        reduced, reduced_valid = block_mean(mosaic, valid, self.store.dtype, self.store.missing_value)

        dest = self.store.load_or_create(parent)
        for b in range(bands):
            dest.data[b][reduced_valid] = reduced[b][reduced_valid]
        self._persist(parent, dest, report)

    def _persist(self, tile: Tile, raster: Raster, report: BuildReport):
        self._check_cancelled()
        with self._report_lock:
            report.written_paths.append(tile.storage_path)
            report.tiles_per_level[tile.level] = report.tiles_per_level.get(tile.level, 0) + 1
        if self.on_write is not None:
            self.on_write(tile.storage_path)
        self.store.save(tile, raster)

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise ProductionCancelled("Production cancelled before the next tile write")
