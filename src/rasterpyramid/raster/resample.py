# src/rasterpyramid/raster/resample.py

"""
This module implements the sampling kernels used when one raster is drawn into another.

It covers three tasks:
- Locating the destination pixels whose centers fall inside a source sector (Overlap)
- Sampling source pixels at fractional positions (Nearest / Bilinear)
- Reducing a 2x2 mosaic of child tiles into a parent tile (Block Mean)
"""

import logging
from typing import Optional, Tuple

import numpy as np
from rasterio.enums import Resampling
from scipy import ndimage

from ..sector import Sector

log = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_RESAMPLING",
    "pixel_centers",
    "overlap_indices",
    "sample",
    "cast_samples",
    "block_mean"
]

SUPPORTED_RESAMPLING = (Resampling.nearest, Resampling.bilinear)

# Weight below which a bilinear sample is considered to touch a missing neighbour
_FULL_WEIGHT = 1.0 - 1e-9

def pixel_centers(sector: Sector, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute the geographic coordinates of pixel centers.

    Row 0 lies at the northern edge, column 0 at the western edge.

    Args:
        sector: Sector covered by the pixel grid.
        width: Number of columns.
        height: Number of rows.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Latitudes per row and longitudes per column.
            Longitudes are normalised into [-180, 180].
    """
    lat_step = sector.delta_lat / height
    lon_step = sector.delta_lon / width
    lats = sector.max_lat - (np.arange(height) + 0.5) * lat_step
    lons = sector.min_lon + (np.arange(width) + 0.5) * lon_step
    lons = np.where(lons > 180.0, lons - 360.0, lons)
    return lats, lons

def _lon_offsets(sector: Sector, lons: np.ndarray) -> np.ndarray:
    """Vectorised Sector.lon_offset."""
    offsets = lons - sector.min_lon
    if sector.crosses_antimeridian:
        offsets = np.where(offsets < 0, offsets + 360.0, offsets)
    return offsets

def overlap_indices(
    source: Sector,
    dest: Sector,
    dest_width: int,
    dest_height: int
) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]]:
    """
    Find destination pixels whose centers fall inside the source sector.

    Args:
        source: Sector of the raster being drawn.
        dest: Sector of the destination raster.
        dest_width: Destination columns.
        dest_height: Destination rows.

    Returns:
        Optional tuple (rows, cols, lat_offsets, lon_offsets) where rows/cols are destination
        indices and the offsets are measured from the source's north-west corner
        (southward latitude degrees, eastward longitude degrees). None if nothing overlaps.
    """
    if not source.intersects(dest):
        return None

    lats, lons = pixel_centers(dest, dest_width, dest_height)
    row_mask = (lats >= source.min_lat) & (lats <= source.max_lat)
    lon_off = _lon_offsets(source, lons)
    col_mask = (lon_off >= 0.0) & (lon_off <= source.delta_lon)

    rows = np.nonzero(row_mask)[0]
    cols = np.nonzero(col_mask)[0]
    if rows.size == 0 or cols.size == 0:
        return None

    return rows, cols, source.max_lat - lats[rows], lon_off[cols]

def sample(
    data: np.ndarray,
    valid: np.ndarray,
    y: np.ndarray,
    x: np.ndarray,
    method: Resampling = Resampling.nearest
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample a (bands, height, width) array on the grid formed by fractional rows y and columns x.

    Positions are expressed in pixel units where integer values address pixel centers.
    Positions outside the array are clamped to the edge.

    Args:
        data: Source pixel array.
        valid: Boolean (height, width) mask of non-missing source pixels.
        y: Fractional row positions, one per output row.
        x: Fractional column positions, one per output column.
        method: Resampling.nearest or Resampling.bilinear. Bilinear falls back to the
            nearest sample wherever a contributing neighbour is missing.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Sampled values (bands, len(y), len(x)) and their validity mask.
    """
    if method not in SUPPORTED_RESAMPLING:
        raise ValueError(f"Unsupported resampling '{method}'. Use one of {SUPPORTED_RESAMPLING}")

    height, width = valid.shape
    rows_n = np.clip(np.floor(y + 0.5).astype(np.int64), 0, height - 1)
    cols_n = np.clip(np.floor(x + 0.5).astype(np.int64), 0, width - 1)
    grid = np.ix_(rows_n, cols_n)

    nearest = data[:, grid[0], grid[1]]
    nearest_valid = valid[grid]

    if method == Resampling.nearest:
        return nearest, nearest_valid

    yy, xx = np.meshgrid(
        np.clip(y, 0, height - 1),
        np.clip(x, 0, width - 1),
        indexing='ij'
    )
    coords = np.vstack([yy.ravel(), xx.ravel()])

    weight = ndimage.map_coordinates(
        valid.astype(np.float64), coords, order=1, mode='nearest'
    ).reshape(yy.shape)
    complete = weight >= _FULL_WEIGHT

    interpolated = np.empty(nearest.shape, dtype=np.float64)
    for b in range(data.shape[0]):
        # Missing samples only reach incomplete positions, which are replaced below
        band = np.where(valid, data[b], 0).astype(np.float64)
        interpolated[b] = ndimage.map_coordinates(
            band, coords, order=1, mode='nearest'
        ).reshape(yy.shape)

    values = np.where(complete, interpolated, nearest)
    return values, complete | nearest_valid

def cast_samples(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Cast sampled values to a destination dtype, rounding and clipping for integer types."""
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer) and not np.issubdtype(values.dtype, np.integer):
        info = np.iinfo(dtype)
        values = np.clip(np.rint(values), info.min, info.max)
    return values.astype(dtype, copy=False)

def block_mean(
    data: np.ndarray,
    valid: np.ndarray,
    dtype: np.dtype,
    missing_value: Optional[float] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduce an array by 2 on each axis, averaging the non-missing samples of every 2x2 block.

    Args:
        data: (bands, 2h, 2w) array.
        valid: Boolean (2h, 2w) mask of non-missing pixels.
        dtype: Output dtype.
        missing_value: Fill for blocks without any valid sample (0 if None).

    Returns:
        Tuple[np.ndarray, np.ndarray]: (bands, h, w) reduced array and its validity mask.
    """
    bands, height, width = data.shape
    if height % 2 or width % 2:
        raise ValueError(f"Block mean requires even dimensions, got {height}x{width}")
    h, w = height // 2, width // 2

    counts = valid.reshape(h, 2, w, 2).sum(axis=(1, 3)).astype(np.float64)
    sums = np.where(valid, data, 0).astype(np.float64).reshape(bands, h, 2, w, 2).sum(axis=(2, 4))

    mean = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
    out_valid = counts > 0

    out = cast_samples(mean, dtype)
    fill = 0 if missing_value is None else missing_value
    out[:, ~out_valid] = fill
    return out, out_valid
