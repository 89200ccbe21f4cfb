# src/rasterpyramid/raster/layer.py

"""
This module defines the Raster, the geodata unit shared by sources and tiles.
"""

import copy
import logging
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import Affine

from ..exceptions import IncompatibleRasterKind, RasterValidationError
from ..sector import Sector
from . import resample

log = logging.getLogger(__name__)

__all__ = [
    "SampleKind",
    "Raster",
    "GEOGRAPHIC_CRS"
]

GEOGRAPHIC_CRS = CRS.from_epsg(4326)

def _is_nan(value) -> bool:
    return isinstance(value, (float, np.floating)) and bool(np.isnan(value))

def _opaque(dtype: np.dtype) -> Union[int, float]:
    """Fully opaque alpha value for samples of dtype."""
    dtype = np.dtype(dtype)
    return int(np.iinfo(dtype).max) if np.issubdtype(dtype, np.integer) else 1.0

class SampleKind(Enum):
    """
    Nature of the samples held by a Raster.

    Options:
        IMAGE: Color or grayscale imagery; drawn with nearest-neighbour sampling by default.
        SCALAR_GRID: Scalar measurements such as elevations; drawn bilinearly by default.
    """
    IMAGE = "image"
    SCALAR_GRID = "scalar_grid"

    @classmethod
    def from_data_kind(cls, data_kind: Union[str, 'SampleKind']) -> 'SampleKind':
        """Map a configuration data kind ('imagery' or 'elevation') to a SampleKind."""
        if isinstance(data_kind, SampleKind):
            return data_kind
        aliases = {
            "imagery": cls.IMAGE,
            "image": cls.IMAGE,
            "elevation": cls.SCALAR_GRID,
            "elevations": cls.SCALAR_GRID,
            "scalar_grid": cls.SCALAR_GRID
        }
        try:
            return aliases[str(data_kind).lower()]
        except KeyError:
            raise ValueError(
                f"Unknown data kind '{data_kind}'. Expected one of {sorted(aliases)}"
            ) from None

    @property
    def default_resampling(self) -> Resampling:
        return Resampling.nearest if self is SampleKind.IMAGE else Resampling.bilinear

class Raster:
    """
    A 2-D grid of samples bound to a geographic sector.

    The pixel grid is assumed uniform within the sector: every pixel spans
    sector.delta_lat / height degrees of latitude and sector.delta_lon / width
    degrees of longitude. Row 0 lies along the northern edge.

    Attributes:
        data (np.ndarray): Samples in (Bands, Height, Width) format.
        sector (Sector): Geographic extent of the grid.
        kind (SampleKind): Image or scalar grid.
        missing_value (float | int | None): Sample value that marks missing data.
        resampling (Resampling): Kernel used when other rasters are drawn INTO this one.
    """

    def __init__(
        self,
        data: np.ndarray,
        sector: Sector,
        kind: SampleKind = SampleKind.SCALAR_GRID,
        missing_value: Optional[Union[float, int]] = None,
        resampling: Optional[Resampling] = None
    ):
        """
        Initialize a Raster object.

        Args:
            data: Input array. Must be 2D (Height, Width) or 3D (Bands, Height, Width).
                  2D arrays are automatically promoted to 3D (1, Height, Width).
            sector: Geographic extent of the grid.
            kind: SampleKind of the data.
            missing_value: Value indicating missing data.
            resampling: Kernel for draws into this raster. Defaults to the kind's default.

        Raises:
            RasterValidationError: If dimensions or types are invalid.
        """
        self.validate_inputs(data, sector, kind)

        if data.ndim == 2:
            data = data[np.newaxis, :, :]

        self._data = data
        self.sector = sector
        self.kind = kind
        self.missing_value = missing_value
        self.resampling = resampling or kind.default_resampling

        if self.resampling not in resample.SUPPORTED_RESAMPLING:
            raise RasterValidationError(
                f"Unsupported resampling {self.resampling}; use one of {resample.SUPPORTED_RESAMPLING}"
            )

    @staticmethod
    def validate_inputs(data: np.ndarray, sector: Sector, kind: SampleKind):
        if not isinstance(data, np.ndarray):
            raise TypeError(f"Data must be numpy.ndarray, got {type(data)}")

        if data.ndim not in (2, 3):
            raise RasterValidationError(f"Data must be 2D or 3D, got shape {data.shape}")

        if data.shape[-1] == 0 or data.shape[-2] == 0:
            raise RasterValidationError(f"Raster dimensions must be positive, got shape {data.shape}")

        if not isinstance(sector, Sector):
            raise TypeError(f"Sector must be a Sector, got {type(sector)}")

        if not isinstance(kind, SampleKind):
            raise TypeError(f"Kind must be a SampleKind, got {type(kind)}")

    @classmethod
    def blank(
        cls,
        sector: Sector,
        width: int,
        height: int,
        kind: SampleKind,
        bands: int = 1,
        dtype: Union[str, np.dtype] = "float32",
        missing_value: Optional[Union[float, int]] = None,
        resampling: Optional[Resampling] = None
    ) -> 'Raster':
        """
        Create a raster filled with the missing-value signal (or zeros if there is none).

        Args:
            sector: Geographic extent.
            width: Number of columns.
            height: Number of rows.
            kind: SampleKind of the new raster.
            bands: Number of bands.
            dtype: Sample dtype.
            missing_value: Fill value and missing-data signal.
            resampling: Kernel for draws into the new raster.

        Returns:
            Raster: A new Raster instance.
        """
        fill = 0 if missing_value is None else missing_value
        data = np.full((bands, height, width), fill, dtype=np.dtype(dtype))
        return cls(data, sector, kind, missing_value=missing_value, resampling=resampling)

    # Dynamic metadata properties

    @property
    def data(self) -> np.ndarray:
        """Access the raw pixel data."""
        return self._data

    @data.setter
    def data(self, new_data: np.ndarray):
        """
        Replace the pixel data. The new array must keep the current grid dimensions,
        since the sector (and therefore the pixel size) is not updated.
        """
        if new_data.ndim == 2:
            new_data = new_data[np.newaxis, :, :]

        if new_data.ndim != 3:
            raise RasterValidationError(f"New data must be 2D or 3D, got {new_data.ndim}D")

        if new_data.shape[1:] != self._data.shape[1:]:
            raise RasterValidationError(
                f"New data grid {new_data.shape[1:]} does not match raster grid {self._data.shape[1:]}"
            )
        self._data = new_data

    @property
    def width(self) -> int:
        return self._data.shape[2]

    @property
    def height(self) -> int:
        return self._data.shape[1]

    @property
    def count(self) -> int:
        return self._data.shape[0]

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Returns (Bands, Height, Width)."""
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def nbytes(self) -> int:
        return int(self._data.nbytes)

    @property
    def resolution(self) -> Tuple[float, float]:
        """Returns (lat, lon) degrees per pixel."""
        return (self.sector.delta_lat / self.height, self.sector.delta_lon / self.width)

    @property
    def transform(self) -> Affine:
        """Affine transform of the grid in EPSG:4326, usable with rasterio."""
        return rasterio.transform.from_bounds(
            self.sector.min_lon,
            self.sector.min_lat,
            self.sector.min_lon + self.sector.delta_lon,
            self.sector.max_lat,
            self.width,
            self.height
        )

    def valid_mask(self) -> np.ndarray:
        """
        Boolean (Height, Width) mask of pixels that hold data.

        A pixel is missing when every band equals the missing-value signal
        (NaN signals match NaN samples).
        """
        if self.missing_value is None:
            return np.ones((self.height, self.width), dtype=bool)

        if _is_nan(self.missing_value):
            missing = np.isnan(self._data)
        else:
            missing = self._data == self.missing_value
        return ~missing.all(axis=0)

    def extremes(self) -> Optional[Tuple[float, float]]:
        """Returns (min, max) over valid samples, or None if every pixel is missing."""
        valid = self.valid_mask()
        if not valid.any():
            return None
        values = self._data[:, valid]
        return (float(np.nanmin(values)), float(np.nanmax(values)))

    def intersects(self, other: Sector) -> bool:
        """True iff this raster's sector overlaps the other sector with positive area."""
        return self.sector.intersects(other)

    def draw_into(self, dest: 'Raster'):
        """
        Resample this raster into the geographic overlap region of dest.

        Sampling happens at the centers of the destination pixels using the
        destination's resampling kernel. Pixels outside the overlap are untouched,
        and missing source samples are never written. Otherwise the last raster
        drawn wins, so callers draw the least authoritative sources first.
        RGB imagery drawn into RGBA rasters gets an opaque alpha band.

        Args:
            dest: Raster to modify in place.

        Raises:
            IncompatibleRasterKind: If the kinds differ or the band counts cannot be matched.
        """
        if self.kind is not dest.kind:
            raise IncompatibleRasterKind(
                f"Cannot draw {self.kind.value} data into a {dest.kind.value} raster"
            )
        adds_alpha = self.kind is SampleKind.IMAGE and self.count == 3 and dest.count == 4
        if self.count != dest.count and self.count != 1 and not adds_alpha:
            raise IncompatibleRasterKind(
                f"Cannot draw {self.count} band(s) into a raster with {dest.count} band(s)"
            )

        overlap = resample.overlap_indices(self.sector, dest.sector, dest.width, dest.height)
        if overlap is None:
            return

        rows, cols, lat_off, lon_off = overlap
        lat_res, lon_res = self.resolution
        y = lat_off / lat_res - 0.5
        x = lon_off / lon_res - 0.5

        values, valid = resample.sample(self._data, self.valid_mask(), y, x, dest.resampling)
        if not valid.any():
            return

        values = resample.cast_samples(values, dest.dtype)
        region = np.ix_(rows, cols)
        for b in range(dest.count):
            band = dest.data[b]
            if self.count == 1:
                src_band = values[0]
            elif b < self.count:
                src_band = values[b]
            else:
                src_band = _opaque(dest.dtype)
            band[region] = np.where(valid, src_band, band[region])

    def copy(self) -> 'Raster':
        """Returns a deep copy of the Raster."""
        return Raster(
            data=self._data.copy(),
            sector=self.sector,
            kind=self.kind,
            missing_value=copy.copy(self.missing_value),
            resampling=self.resampling
        )

    def __repr__(self) -> str:
        return (f"<Raster kind={self.kind.value} shape={self.shape} dtype={self._data.dtype} "
                f"sector={self.sector}>")

    def __eq__(self, other: object) -> bool:
        """Checks equality based on metadata and pixel data."""
        if not isinstance(other, Raster):
            return NotImplemented

        meta_eq = (
            self.sector == other.sector and
            self.kind is other.kind and
            self.shape == other.shape
        )
        if not meta_eq:
            return False

        if self.missing_value != other.missing_value:
            if not (_is_nan(self.missing_value) and _is_nan(other.missing_value)):
                return False

        return np.array_equal(self._data, other.data, equal_nan=True)

    __hash__ = None

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        """Allows np.array(raster_obj) to work directly."""
        if dtype is not None:
            return self._data.astype(dtype)
        return self._data
