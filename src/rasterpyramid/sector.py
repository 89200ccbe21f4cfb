# src/rasterpyramid/sector.py

"""
This module defines the geographic bounding box used by every raster, level and tile.

All values are decimal degrees on a latitude/longitude grid. A sector may wrap
eastward across the antimeridian only when it is explicitly flagged; in that case
its minimum longitude lies east of its maximum longitude.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .exceptions import RasterValidationError

__all__ = [
    "Sector"
]

@dataclass(frozen=True)
class Sector:
    """
    Geographic bounding box in latitude/longitude degrees.

    Args:
        min_lat: Southern edge.
        max_lat: Northern edge.
        min_lon: Western edge.
        max_lon: Eastern edge.
        crosses_antimeridian: True if the sector wraps eastward across 180 degrees,
            in which case min_lon must be greater than max_lon.

    Raises:
        RasterValidationError: If an axis is inverted or a coordinate is out of range.
    """
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float
    crosses_antimeridian: bool = False

    def __post_init__(self):
        if not (-90.0 <= self.min_lat <= self.max_lat <= 90.0):
            raise RasterValidationError(
                f"Invalid latitude range [{self.min_lat}, {self.max_lat}]"
            )
        for lon in (self.min_lon, self.max_lon):
            if not (-180.0 <= lon <= 180.0):
                raise RasterValidationError(f"Longitude {lon} outside [-180, 180]")

        if self.crosses_antimeridian:
            if self.min_lon <= self.max_lon:
                raise RasterValidationError(
                    f"Antimeridian sector requires min_lon > max_lon, got "
                    f"[{self.min_lon}, {self.max_lon}]"
                )
        elif self.min_lon > self.max_lon:
            raise RasterValidationError(
                f"Invalid longitude range [{self.min_lon}, {self.max_lon}]; "
                "set crosses_antimeridian=True for sectors spanning 180 degrees"
            )

    @classmethod
    def from_bounds(cls, left: float, bottom: float, right: float, top: float) -> 'Sector':
        """Build a sector from (left, bottom, right, top) bounds, the rasterio ordering."""
        return cls(min_lat=bottom, max_lat=top, min_lon=left, max_lon=right)

    @classmethod
    def from_values(cls, values: Iterable[float]) -> 'Sector':
        """Build a sector from an iterable ordered (min_lat, max_lat, min_lon, max_lon)."""
        values = [float(v) for v in values]
        if len(values) != 4:
            raise RasterValidationError(f"Sector requires 4 values, got {len(values)}")
        min_lat, max_lat, min_lon, max_lon = values
        return cls(min_lat, max_lat, min_lon, max_lon, crosses_antimeridian=min_lon > max_lon)

    @property
    def delta_lat(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def delta_lon(self) -> float:
        if self.crosses_antimeridian:
            return (self.max_lon + 360.0) - self.min_lon
        return self.max_lon - self.min_lon

    @property
    def centroid(self) -> Tuple[float, float]:
        """Returns (lat, lon) of the sector center."""
        lon = self.min_lon + self.delta_lon / 2.0
        if lon > 180.0:
            lon -= 360.0
        return (self.min_lat + self.delta_lat / 2.0, lon)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Returns (left, bottom, right, top)."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def split(self) -> Tuple['Sector', ...]:
        """Returns one sector, or two non-wrapping halves if this sector crosses the antimeridian."""
        if not self.crosses_antimeridian:
            return (self,)
        return (
            Sector(self.min_lat, self.max_lat, self.min_lon, 180.0),
            Sector(self.min_lat, self.max_lat, -180.0, self.max_lon)
        )

    def lon_offset(self, lon: float) -> float:
        """Degrees eastward from the western edge to lon, unwrapping across the antimeridian."""
        offset = lon - self.min_lon
        if self.crosses_antimeridian and offset < 0:
            offset += 360.0
        return offset

    def contains(self, lat: float, lon: float) -> bool:
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        return any(part.min_lon <= lon <= part.max_lon for part in self.split())

    def intersects(self, other: 'Sector') -> bool:
        """True iff the two sectors overlap with positive area; shared edges do not count."""
        for a in self.split():
            for b in other.split():
                if (a.min_lat < b.max_lat and b.min_lat < a.max_lat
                        and a.min_lon < b.max_lon and b.min_lon < a.max_lon):
                    return True
        return False

    def intersection(self, other: 'Sector') -> Optional['Sector']:
        """
        Returns the overlapping sector, or None if the sectors do not overlap with positive area.

        When the overlap consists of two disjoint pieces (possible only for antimeridian
        sectors), the larger piece is returned.
        """
        pieces = []
        for a in self.split():
            for b in other.split():
                lat0, lat1 = max(a.min_lat, b.min_lat), min(a.max_lat, b.max_lat)
                lon0, lon1 = max(a.min_lon, b.min_lon), min(a.max_lon, b.max_lon)
                if lat0 < lat1 and lon0 < lon1:
                    pieces.append(Sector(lat0, lat1, lon0, lon1))
        if not pieces:
            return None
        if len(pieces) == 2 and pieces[0].max_lon == 180.0 and pieces[1].min_lon == -180.0:
            a, b = pieces
            if a.min_lat == b.min_lat and a.max_lat == b.max_lat:
                return Sector(a.min_lat, a.max_lat, a.min_lon, b.max_lon, crosses_antimeridian=True)
        return max(pieces, key=lambda s: s.delta_lat * s.delta_lon)

    def union(self, other: 'Sector') -> 'Sector':
        """
        Returns the smallest non-wrapping sector enclosing both sectors.

        Antimeridian sectors are widened to the full longitude range.
        """
        if self.crosses_antimeridian or other.crosses_antimeridian:
            min_lon, max_lon = -180.0, 180.0
        else:
            min_lon, max_lon = min(self.min_lon, other.min_lon), max(self.max_lon, other.max_lon)
        return Sector(
            min(self.min_lat, other.min_lat),
            max(self.max_lat, other.max_lat),
            min_lon,
            max_lon
        )

    @staticmethod
    def union_all(sectors: Iterable['Sector']) -> Optional['Sector']:
        result = None
        for sector in sectors:
            result = sector if result is None else result.union(sector)
        return result

    def __str__(self) -> str:
        wrap = " (antimeridian)" if self.crosses_antimeridian else ""
        return (f"[{self.min_lat}, {self.max_lat}] x [{self.min_lon}, {self.max_lon}]{wrap}")
