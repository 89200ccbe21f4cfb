# src/rasterpyramid/tiling/store.py

"""
This module loads and persists the rasters backing pyramid tiles.
"""

import logging
import threading
from typing import Optional, Union

import numpy as np
from rasterio.enums import Resampling

from ..exceptions import ProductionError, RasterError, WriteFailure
from ..raster.io import FormatAdapter
from ..raster.layer import Raster, SampleKind
from .levels import LevelSet, Tile

log = logging.getLogger(__name__)

__all__ = [
    "TileStore"
]

class TileStore:
    """
    Reads existing tiles from disk or creates blank ones, and writes tiles back.

    Every tile raster of one store shares the same kind, band count, dtype and
    missing-value signal.

    Args:
        level_set: Pyramid geometry.
        adapter: Format adapter used to read and write tile files.
        kind: SampleKind of the tiles.
        bands: Bands per tile.
        dtype: Sample dtype of the tiles.
        missing_value: Fill value of blank tiles and missing-data signal.
        resampling: Kernel used when sources are drawn into the tiles.
    """

    def __init__(
        self,
        level_set: LevelSet,
        adapter: FormatAdapter,
        kind: SampleKind,
        bands: int = 1,
        dtype: Union[str, np.dtype] = "float32",
        missing_value: Optional[Union[float, int]] = None,
        resampling: Optional[Resampling] = None
    ):
        if not adapter.can_write(kind):
            raise ValueError(f"Adapter '{adapter.name}' cannot write {kind.value} tiles")

        self.level_set = level_set
        self.adapter = adapter
        self.kind = kind
        self.bands = int(bands)
        self.dtype = np.dtype(dtype)
        self.missing_value = missing_value
        self.resampling = resampling or kind.default_resampling
        self._write_count = 0
        self._lock = threading.Lock()

    @property
    def write_count(self) -> int:
        return self._write_count

    def blank(self, tile: Tile) -> Raster:
        return Raster.blank(
            tile.sector,
            self.level_set.tile_width,
            self.level_set.tile_height,
            self.kind,
            bands=self.bands,
            dtype=self.dtype,
            missing_value=self.missing_value,
            resampling=self.resampling
        )

    def load_or_create(self, tile: Tile) -> Raster:
        """
        Return the raster stored for tile, or a blank raster filled with the missing signal.

        Raises:
            WriteFailure: If an existing tile file does not match the tile layout.
        """
        path = tile.storage_path
        if not path.exists():
            return self.blank(tile)

        try:
            raster = self.adapter.read(
                path,
                sector=tile.sector,
                data_kind=self.kind,
                missing_data_signal=self.missing_value,
                resampling=self.resampling
            )
        except ProductionError as e:
            raise WriteFailure(path, f"Existing tile {tile} at {path} is unreadable: {e}") from e

        expected = (self.bands, self.level_set.tile_height, self.level_set.tile_width)
        if raster.shape != expected or raster.dtype != self.dtype:
            raise WriteFailure(
                path,
                f"Existing tile {tile} has shape {raster.shape} ({raster.dtype}), "
                f"expected {expected} ({self.dtype})"
            )
        log.debug(f"Loaded existing tile {tile}")
        return raster

    def save(self, tile: Tile, raster: Raster):
        """
        Persist raster as the tile's file.

        Raises:
            WriteFailure: If the adapter fails to write the file.
        """
        try:
            self.adapter.write(raster, tile.storage_path)
        except WriteFailure:
            raise
        except (OSError, RasterError) as e:
            raise WriteFailure(tile.storage_path, f"Failed to write tile {tile}: {e}") from e

        with self._lock:
            self._write_count += 1
        log.debug(f"Wrote tile {tile} → {tile.storage_path}")
