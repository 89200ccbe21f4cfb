# src/rasterpyramid/tiling/levels.py

"""
This module describes the geometry of a tile pyramid.

A LevelSet holds N levels over one top sector. Level 0 is the coarsest; every
finer level halves the tile extent, so each tile has four children one level down.

Tile numbering:
- The tile origin is the south-west corner of the level-zero tile grid
- Rows grow from south to north and columns from west to east
- Tile files are laid out as {cache_root}/{level}/{row}/{row}_{col}{suffix}
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from ..exceptions import RasterValidationError
from ..raster.layer import SampleKind
from ..sector import Sector

log = logging.getLogger(__name__)

__all__ = [
    "Level",
    "Tile",
    "LevelSet",
    "default_tile_size",
    "default_level_zero_delta"
]

DEFAULT_IMAGE_TILE_SIZE = 512
DEFAULT_IMAGE_LEVEL_ZERO_DELTA = 36.0
DEFAULT_ELEVATION_TILE_SIZE = 150
DEFAULT_ELEVATION_LEVEL_ZERO_DELTA = 20.0

# Relative tolerance used when comparing resolutions and grid extents
_EPS = 1e-9

def default_tile_size(kind: SampleKind) -> int:
    """Tile edge in pixels used when none is configured."""
    return DEFAULT_IMAGE_TILE_SIZE if kind is SampleKind.IMAGE else DEFAULT_ELEVATION_TILE_SIZE

def default_level_zero_delta(kind: SampleKind) -> float:
    """Level-zero tile extent in degrees used when none is configured."""
    return DEFAULT_IMAGE_LEVEL_ZERO_DELTA if kind is SampleKind.IMAGE else DEFAULT_ELEVATION_LEVEL_ZERO_DELTA

@dataclass(frozen=True)
class Level:
    """
    One resolution level of a tile pyramid.

    Args:
        level_index: 0 for the coarsest level.
        tile_width: Tile columns in pixels.
        tile_height: Tile rows in pixels.
        tile_delta_lat: Tile extent in latitude degrees.
        tile_delta_lon: Tile extent in longitude degrees.
        sector: Top sector of the owning LevelSet.
        num_rows: Rows of tiles in the level grid.
        num_cols: Columns of tiles in the level grid.
    """
    level_index: int
    tile_width: int
    tile_height: int
    tile_delta_lat: float
    tile_delta_lon: float
    sector: Sector
    num_rows: int = 1
    num_cols: int = 1

    @property
    def gsd(self) -> float:
        """Ground sample distance in latitude degrees per pixel."""
        return self.tile_delta_lat / self.tile_height

    @property
    def tile_count(self) -> int:
        return self.num_rows * self.num_cols

@dataclass(frozen=True)
class Tile:
    """
    A single tile of the pyramid.

    Args:
        level: Level index.
        row: Row number, 0 at the southern edge of the grid.
        col: Column number, 0 at the western edge of the grid.
        sector: Geographic extent of the tile.
        storage_path: File holding the tile raster.
    """
    level: int
    row: int
    col: int
    sector: Sector
    storage_path: Path

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.level, self.row, self.col)

    def __str__(self) -> str:
        return f"{self.level}/{self.row}/{self.col}"

class LevelSet:
    """
    Ordered set of pyramid levels sharing one top sector, level-zero tile delta and tile size.

    Args:
        sector: Top sector. May not cross the antimeridian.
        level_zero_tile_delta: Level-zero tile extent in degrees, as (lat, lon) or a single value.
        tile_width: Tile columns in pixels.
        tile_height: Tile rows in pixels.
        num_levels: Number of levels (>= 1).
        cache_root: Directory holding the tile tree.
        format_suffix: Tile file suffix including the dot (e.g. '.tif').
        tile_origin: (lat, lon) of the grid's south-west corner. Defaults to the
            south-west corner of the top sector.

    Raises:
        RasterValidationError: If the geometry is invalid or the level-zero grid leaves the globe.
    """

    def __init__(
        self,
        sector: Sector,
        level_zero_tile_delta: Union[float, Tuple[float, float]],
        tile_width: int,
        tile_height: int,
        num_levels: int,
        cache_root: Union[str, Path],
        format_suffix: str = ".tif",
        tile_origin: Optional[Tuple[float, float]] = None
    ):
        if sector.crosses_antimeridian:
            raise RasterValidationError(f"Top sector {sector} may not cross the antimeridian")

        if isinstance(level_zero_tile_delta, (int, float)):
            level_zero_tile_delta = (float(level_zero_tile_delta), float(level_zero_tile_delta))
        delta_lat, delta_lon = (float(v) for v in level_zero_tile_delta)

        if delta_lat <= 0 or delta_lon <= 0:
            raise RasterValidationError(f"Level-zero tile delta must be positive, got {level_zero_tile_delta}")
        if tile_width <= 0 or tile_height <= 0:
            raise RasterValidationError(f"Tile size must be positive, got {tile_width}x{tile_height}")
        if tile_width % 2 or tile_height % 2:
            raise RasterValidationError(f"Tile size must be even to allow coarsening, got {tile_width}x{tile_height}")
        if num_levels < 1:
            raise RasterValidationError(f"A level set needs at least one level, got {num_levels}")

        self.sector = sector
        self.level_zero_tile_delta = (delta_lat, delta_lon)
        self.tile_width = int(tile_width)
        self.tile_height = int(tile_height)
        self.cache_root = Path(cache_root)
        self.format_suffix = format_suffix if format_suffix.startswith(".") else f".{format_suffix}"
        self.tile_origin = tile_origin or (sector.min_lat, sector.min_lon)

        rows0 = max(1, math.ceil((sector.max_lat - self.tile_origin[0]) / delta_lat - _EPS))
        cols0 = max(1, math.ceil((sector.max_lon - self.tile_origin[1]) / delta_lon - _EPS))
        self._check_grid(rows0, cols0)

        self.levels: List[Level] = [
            Level(
                level_index=i,
                tile_width=self.tile_width,
                tile_height=self.tile_height,
                tile_delta_lat=delta_lat / 2**i,
                tile_delta_lon=delta_lon / 2**i,
                sector=sector,
                num_rows=rows0 * 2**i,
                num_cols=cols0 * 2**i
            )
            for i in range(num_levels)
        ]

    @classmethod
    def for_extent(
        cls,
        sector: Sector,
        finest_resolution: float,
        kind: SampleKind,
        cache_root: Union[str, Path],
        format_suffix: str = ".tif",
        tile_width: Optional[int] = None,
        tile_height: Optional[int] = None,
        level_zero_tile_delta: Optional[Union[float, Tuple[float, float]]] = None,
        num_levels: Optional[int] = None
    ) -> 'LevelSet':
        """
        Build the level set for a dataset covering sector at finest_resolution.

        The level count is chosen so the finest level is the finest one whose ground
        sample distance does not go below finest_resolution. The tile origin is shifted
        south and west when needed to keep the level-zero grid on the globe.

        Args:
            sector: Union of the source sectors.
            finest_resolution: Finest source resolution in latitude degrees per pixel.
            kind: Dataset sample kind, used for the default tile geometry.
            cache_root: Directory holding the tile tree.
            format_suffix: Tile file suffix.
            tile_width: Tile columns. Defaults per kind.
            tile_height: Tile rows. Defaults per kind.
            level_zero_tile_delta: Level-zero tile extent. Defaults per kind.
            num_levels: Explicit level count overriding the computed one.

        Returns:
            LevelSet: The pyramid geometry.
        """
        tile_width = tile_width or default_tile_size(kind)
        tile_height = tile_height or default_tile_size(kind)
        if level_zero_tile_delta is None:
            level_zero_tile_delta = default_level_zero_delta(kind)
        if isinstance(level_zero_tile_delta, (int, float)):
            level_zero_tile_delta = (float(level_zero_tile_delta), float(level_zero_tile_delta))
        delta_lat, delta_lon = level_zero_tile_delta

        if num_levels is None:
            if finest_resolution <= 0:
                raise RasterValidationError(f"Resolution must be positive, got {finest_resolution}")
            ratio = (delta_lat / tile_height) / finest_resolution
            num_levels = max(1, math.floor(math.log2(ratio) + _EPS) + 1) if ratio > 1 else 1

        rows0 = max(1, math.ceil(sector.delta_lat / delta_lat - _EPS))
        cols0 = max(1, math.ceil(sector.delta_lon / delta_lon - _EPS))
        origin_lat = max(-90.0, min(sector.min_lat, 90.0 - rows0 * delta_lat))
        origin_lon = max(-180.0, min(sector.min_lon, 180.0 - cols0 * delta_lon))

        log.debug(
            f"Level set for {sector}: {num_levels} level(s), {tile_width}x{tile_height} px tiles, "
            f"level-zero delta {delta_lat}x{delta_lon} deg"
        )
        return cls(
            sector=sector,
            level_zero_tile_delta=(delta_lat, delta_lon),
            tile_width=tile_width,
            tile_height=tile_height,
            num_levels=num_levels,
            cache_root=cache_root,
            format_suffix=format_suffix,
            tile_origin=(origin_lat, origin_lon)
        )

    def _check_grid(self, rows0: int, cols0: int):
        lat0, lon0 = self.tile_origin
        delta_lat, delta_lon = self.level_zero_tile_delta
        top = lat0 + rows0 * delta_lat
        east = lon0 + cols0 * delta_lon
        if lat0 < -90.0 - _EPS or top > 90.0 + _EPS or lon0 < -180.0 - _EPS or east > 180.0 + _EPS:
            raise RasterValidationError(
                f"Level-zero grid [{lat0}, {top}] x [{lon0}, {east}] does not fit on the globe"
            )
        if lat0 > self.sector.min_lat + _EPS or lon0 > self.sector.min_lon + _EPS:
            raise RasterValidationError(
                f"Tile origin {self.tile_origin} lies inside the top sector {self.sector}"
            )

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def last_level(self) -> Level:
        return self.levels[-1]

    def level(self, index: int) -> Level:
        if not 0 <= index < len(self.levels):
            raise IndexError(f"Level {index} outside 0..{len(self.levels) - 1}")
        return self.levels[index]

    def select_level(self, resolution: float, allow_upsample: bool = False) -> Level:
        """
        Pick the level a source of the given resolution is drawn into.

        Args:
            resolution: Source latitude degrees per pixel.
            allow_upsample: Return the finest level regardless of the source resolution.

        Returns:
            Level: The finest level whose ground sample distance is not below the
            resolution, or level 0 if the source is coarser than level 0.
        """
        if allow_upsample:
            return self.last_level

        selected = self.levels[0]
        for level in self.levels:
            if level.gsd >= resolution * (1.0 - _EPS):
                selected = level
        return selected

    def tile_sector(self, level: int, row: int, col: int) -> Sector:
        lvl = self.level(level)
        lat0, lon0 = self.tile_origin
        min_lat = lat0 + row * lvl.tile_delta_lat
        min_lon = lon0 + col * lvl.tile_delta_lon
        # Clamp round-off at the poles and the antimeridian
        return Sector(
            max(-90.0, min_lat),
            min(90.0, min_lat + lvl.tile_delta_lat),
            max(-180.0, min_lon),
            min(180.0, min_lon + lvl.tile_delta_lon)
        )

    def tile_path(self, level: int, row: int, col: int) -> Path:
        return self.cache_root / str(level) / str(row) / f"{row}_{col}{self.format_suffix}"

    def tile(self, level: int, row: int, col: int) -> Tile:
        lvl = self.level(level)
        if not (0 <= row < lvl.num_rows and 0 <= col < lvl.num_cols):
            raise IndexError(f"Tile {level}/{row}/{col} outside the {lvl.num_rows}x{lvl.num_cols} grid")
        return Tile(level, row, col, self.tile_sector(level, row, col), self.tile_path(level, row, col))

    def tiles_intersecting(self, level: int, sector: Sector) -> List[Tile]:
        """
        Tiles of a level whose sectors overlap sector with positive area.

        Tiles that only share an edge with sector are excluded. Results are ordered
        by row, then column.
        """
        lvl = self.level(level)
        lat0, lon0 = self.tile_origin
        found = {}
        for part in sector.split():
            # One tile of slack on each side absorbs round-off; the intersects test decides
            r0 = max(0, math.floor((part.min_lat - lat0) / lvl.tile_delta_lat) - 1)
            r1 = min(lvl.num_rows - 1, math.ceil((part.max_lat - lat0) / lvl.tile_delta_lat))
            c0 = max(0, math.floor((part.min_lon - lon0) / lvl.tile_delta_lon) - 1)
            c1 = min(lvl.num_cols - 1, math.ceil((part.max_lon - lon0) / lvl.tile_delta_lon))
            for row in range(r0, r1 + 1):
                for col in range(c0, c1 + 1):
                    if (row, col) in found:
                        continue
                    tile = self.tile(level, row, col)
                    if tile.sector.intersects(part):
                        found[(row, col)] = tile
        return [found[k] for k in sorted(found)]

    def iter_tiles(self, level: int) -> Iterator[Tile]:
        lvl = self.level(level)
        for row in range(lvl.num_rows):
            for col in range(lvl.num_cols):
                yield self.tile(level, row, col)

    def parent_of(self, tile: Tile) -> Optional[Tile]:
        """The tile one level coarser containing tile, or None at level 0."""
        if tile.level == 0:
            return None
        return self.tile(tile.level - 1, tile.row // 2, tile.col // 2)

    def children_of(self, tile: Tile) -> List[Tile]:
        """
        The four tiles one level finer covering tile.

        Returns:
            List[Tile]: Ordered south-west, south-east, north-west, north-east.
            Empty at the finest level.
        """
        if tile.level + 1 >= self.num_levels:
            return []
        level = tile.level + 1
        return [
            self.tile(level, 2 * tile.row + dr, 2 * tile.col + dc)
            for dr in (0, 1)
            for dc in (0, 1)
        ]

    def __repr__(self) -> str:
        return (f"<LevelSet sector={self.sector} levels={self.num_levels} "
                f"tile={self.tile_width}x{self.tile_height} delta={self.level_zero_tile_delta}>")
