# src/rasterpyramid/raster/io.py

"""
This module handles all disk-based operations for raster data.

Each on-disk format is wrapped by a format adapter exposing the same capability set
(can_read / read / read_info / can_write / write). The FormatAdapterRegistry picks
an adapter for a source by probing, so the production pipeline never depends on a
concrete format.
"""

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import NotGeoreferencedWarning, RasterioIOError
from rasterio.warp import calculate_default_transform, reproject

from ..exceptions import RasterValidationError, SourceReadError, WriteFailure
from ..sector import Sector
from .cache import CachedRasterHandle
from .layer import GEOGRAPHIC_CRS, Raster, SampleKind

log = logging.getLogger(__name__)

__all__ = [
    "FormatAdapter",
    "MemoryRasterAdapter",
    "GeoTiffAdapter",
    "PngTileAdapter",
    "FormatAdapterRegistry",
    "default_registry"
]

# Tolerance for georeferencing round-off at the edges of the globe
_EDGE_TOLERANCE = 1e-6

@runtime_checkable
class FormatAdapter(Protocol):
    """Capability set every raster format adapter provides."""

    name: str
    suffixes: Tuple[str, ...]

    def can_read(self, source: Any) -> bool:
        """Return True if this adapter can decode source."""

    def read_info(self, source: Any, **params) -> Dict[str, Any]:
        """Return sector, width, height, bands, dtype and kind without loading pixels."""

    def read(self, source: Any, **params) -> Raster:
        """Decode source into a Raster."""

    def can_write(self, kind: SampleKind) -> bool:
        """Return True if this adapter can encode rasters of the given kind."""

    def write(self, raster: Raster, destination: Union[str, Path]):
        """Encode raster to destination."""

def _infer_kind(dtype: Union[str, np.dtype], count: int, data_kind: Optional[Any]) -> SampleKind:
    """Use the declared data kind, else treat byte rasters with 1, 3 or 4 bands as imagery."""
    if data_kind is not None:
        return SampleKind.from_data_kind(data_kind)
    if np.dtype(dtype) == np.uint8 and count in (1, 3, 4):
        return SampleKind.IMAGE
    return SampleKind.SCALAR_GRID

def _clamp_sector(left: float, bottom: float, right: float, top: float, source: Any) -> Sector:
    """Build a sector from bounds, absorbing round-off just outside the valid ranges."""
    def _snap(value: float, limit: float) -> float:
        if abs(value) > limit and abs(value) - limit <= _EDGE_TOLERANCE:
            return float(np.sign(value) * limit)
        return float(value)

    try:
        return Sector.from_bounds(
            _snap(left, 180.0), _snap(bottom, 90.0), _snap(right, 180.0), _snap(top, 90.0)
        )
    except RasterValidationError as e:
        raise SourceReadError(source, f"Source {source} lies outside geographic bounds: {e}") from e

def _source_key(adapter_name: str, source: Any, params: Mapping[str, Any]) -> str:
    suffix = ",".join(f"{k}={params[k]}" for k in sorted(params))
    return f"{adapter_name}:{source}" + (f"?{suffix}" if suffix else "")

class MemoryRasterAdapter:
    """Adapter for sources that are already in-memory Raster objects."""

    name = "memory"
    suffixes: Tuple[str, ...] = ()

    def can_read(self, source: Any) -> bool:
        return isinstance(source, Raster)

    def read_info(self, source: Raster, **params) -> Dict[str, Any]:
        return {
            "sector": source.sector,
            "width": source.width,
            "height": source.height,
            "bands": source.count,
            "dtype": source.dtype.name,
            "kind": source.kind,
            "missing_value": source.missing_value
        }

    def read(self, source: Raster, **params) -> Raster:
        if not isinstance(source, Raster):
            raise SourceReadError(source, f"Expected a Raster object, got {type(source).__name__}")
        return source

    def can_write(self, kind: SampleKind) -> bool:
        return False

    def write(self, raster: Raster, destination: Union[str, Path]):
        raise NotImplementedError("In-memory rasters cannot be written to disk")

    def cache_key(self, source: Raster, params: Mapping[str, Any]) -> str:
        return f"memory:{id(source):x}"

class GeoTiffAdapter:
    """
    Reads and writes GeoTIFF rasters through rasterio.

    Sources in a projected CRS are reprojected to geographic EPSG:4326 on read.

    Args:
        compress: GeoTIFF compression for written files.
    """

    name = "geotiff"
    suffixes: Tuple[str, ...] = (".tif", ".tiff", ".gtif")
    driver = "GTiff"

    def __init__(self, compress: Optional[str] = "lzw"):
        self.compress = compress

    def can_read(self, source: Any) -> bool:
        if not isinstance(source, (str, Path)):
            return False
        path = Path(source)
        if path.suffix.lower() not in self.suffixes or not path.is_file():
            return False
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                with rasterio.open(path) as src:
                    return src.driver == self.driver
        except RasterioIOError:
            return False

    def cache_key(self, source: Union[str, Path], params: Mapping[str, Any]) -> str:
        return _source_key(self.name, Path(source).resolve(), params)

    def read_info(
        self,
        source: Union[str, Path],
        sector: Optional[Sector] = None,
        data_kind: Optional[Any] = None,
        missing_data_signal: Optional[Union[float, int]] = None,
        **params
    ) -> Dict[str, Any]:
        """
        Inspect a raster file without reading its pixels.

        Args:
            source: Path to the file.
            sector: Optional sector overriding the file's georeferencing.
            data_kind: Optional declared kind ('imagery' or 'elevation').
            missing_data_signal: Optional override of the file's nodata value.

        Returns:
            Dict[str, Any]: sector, width, height, bands, dtype, kind, missing_value.
        """
        path = Path(source)
        try:
            with self._open(path) as src:
                if sector is None:
                    sector, width, height = self._geographic_grid(src, path)
                else:
                    width, height = src.width, src.height
                return {
                    "sector": sector,
                    "width": width,
                    "height": height,
                    "bands": src.count,
                    "dtype": src.dtypes[0],
                    "kind": _infer_kind(src.dtypes[0], src.count, data_kind),
                    "missing_value": src.nodata if missing_data_signal is None else missing_data_signal
                }
        except RasterioIOError as e:
            raise SourceReadError(path, f"Failed to read raster metadata from {path}: {e}") from e

    def read(
        self,
        source: Union[str, Path],
        sector: Optional[Sector] = None,
        data_kind: Optional[Any] = None,
        missing_data_signal: Optional[Union[float, int]] = None,
        resampling: Optional[Resampling] = None,
        **params
    ) -> Raster:
        """
        Load a raster file into memory as a geographic Raster.

        Args:
            source: Path to the file.
            sector: Optional sector overriding the file's georeferencing.
            data_kind: Optional declared kind ('imagery' or 'elevation').
            missing_data_signal: Optional override of the file's nodata value.
            resampling: Kernel for draws into the returned raster.

        Returns:
            Raster: In-memory Raster object
        """
        path = Path(source)
        if not path.exists():
            raise SourceReadError(path, f"Raster file not found: {path}")

        log.debug(f"Loading raster: {path.name}")

        try:
            with self._open(path) as src:
                missing = missing_data_signal if missing_data_signal is not None else src.nodata
                kind = _infer_kind(src.dtypes[0], src.count, data_kind)

                if sector is not None:
                    data = src.read()
                elif src.crs is not None and not src.crs.is_geographic:
                    sector, data = self._read_reprojected(src, path, missing, kind)
                else:
                    sector, _, _ = self._geographic_grid(src, path)
                    data = src.read()

                return Raster(
                    data=data,
                    sector=sector,
                    kind=kind,
                    missing_value=missing,
                    resampling=resampling
                )
        except RasterioIOError as e:
            raise SourceReadError(path, f"Failed to read raster from {path}: {e}") from e

    def can_write(self, kind: SampleKind) -> bool:
        return True

    def write(self, raster: Raster, destination: Union[str, Path]):
        """
        Write a Raster object to disk as a georeferenced GeoTIFF.

        Args:
            raster: Raster object to save
            destination: Output file path.
        """
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)

        profile = {
            'driver': self.driver,
            'dtype': raster.dtype.name,
            'nodata': raster.missing_value,
            'width': raster.width,
            'height': raster.height,
            'count': raster.count,
            'crs': GEOGRAPHIC_CRS,
            'transform': raster.transform
        }
        if self.compress:
            profile['compress'] = self.compress

        log.debug(f"Saving raster {raster.shape} → {path}")

        try:
            with rasterio.open(path, 'w', **profile) as dst:
                dst.write(raster.data)
        except Exception as e:
            raise WriteFailure(path, f"Failed to save raster to {path}: {e}") from e

    def _open(self, path: Path):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NotGeoreferencedWarning)
            return rasterio.open(path)

    def _geographic_grid(self, src: rasterio.DatasetReader, path: Path) -> Tuple[Sector, int, int]:
        """Sector and pixel dimensions of src once expressed in EPSG:4326."""
        if src.crs is None:
            raise SourceReadError(path, f"Raster {path.name} has no coordinate reference system")

        if src.transform.b != 0 or src.transform.d != 0:
            raise SourceReadError(path, f"Raster {path.name} has a rotated geotransform")

        if src.crs.is_geographic:
            left, bottom, right, top = src.bounds
            return _clamp_sector(left, bottom, right, top, path), src.width, src.height

        transform, width, height = calculate_default_transform(
            src.crs, GEOGRAPHIC_CRS, src.width, src.height, *src.bounds
        )
        left, top = transform.c, transform.f
        right = left + transform.a * width
        bottom = top + transform.e * height
        return _clamp_sector(left, bottom, right, top, path), width, height

    def _read_reprojected(
        self,
        src: rasterio.DatasetReader,
        path: Path,
        missing: Optional[Union[float, int]],
        kind: SampleKind
    ) -> Tuple[Sector, np.ndarray]:
        """Warp a projected raster onto a geographic grid."""
        log.info(f"Reprojecting {path.name} from {src.crs} to {GEOGRAPHIC_CRS}")
        sector, width, height = self._geographic_grid(src, path)

        fill = 0 if missing is None else missing
        destination = np.full((src.count, height, width), fill, dtype=src.dtypes[0])
        method = Resampling.nearest if kind is SampleKind.IMAGE else Resampling.bilinear

        try:
            reproject(
                source=rasterio.band(src, list(src.indexes)),
                destination=destination,
                src_transform=src.transform,
                src_crs=src.crs,
                src_nodata=src.nodata,
                dst_transform=rasterio.transform.from_bounds(*sector.bounds, width, height),
                dst_crs=GEOGRAPHIC_CRS,
                dst_nodata=missing,
                resampling=method
            )
        except Exception as e:
            raise SourceReadError(path, f"Failed to reproject {path.name}: {e}") from e
        return sector, destination

class PngTileAdapter:
    """
    Writes and reads 8-bit imagery tiles as PNG through rasterio.

    PNG tiles carry no georeferencing; readers must pass the tile sector.
    """

    name = "png"
    suffixes: Tuple[str, ...] = (".png",)
    driver = "PNG"

    def can_read(self, source: Any) -> bool:
        return isinstance(source, (str, Path)) and Path(source).suffix.lower() in self.suffixes \
            and Path(source).is_file()

    def cache_key(self, source: Union[str, Path], params: Mapping[str, Any]) -> str:
        return _source_key(self.name, Path(source).resolve(), params)

    def read_info(self, source: Union[str, Path], sector: Optional[Sector] = None, **params) -> Dict[str, Any]:
        if sector is None:
            raise SourceReadError(source, f"PNG tile {source} requires an explicit sector")
        path = Path(source)
        try:
            with self._open(path) as src:
                return {
                    "sector": sector,
                    "width": src.width,
                    "height": src.height,
                    "bands": src.count,
                    "dtype": src.dtypes[0],
                    "kind": SampleKind.IMAGE,
                    "missing_value": None
                }
        except RasterioIOError as e:
            raise SourceReadError(path, f"Failed to read PNG metadata from {path}: {e}") from e

    def read(
        self,
        source: Union[str, Path],
        sector: Optional[Sector] = None,
        missing_data_signal: Optional[Union[float, int]] = None,
        resampling: Optional[Resampling] = None,
        **params
    ) -> Raster:
        if sector is None:
            raise SourceReadError(source, f"PNG tile {source} requires an explicit sector")
        path = Path(source)
        try:
            with self._open(path) as src:
                data = src.read()
        except RasterioIOError as e:
            raise SourceReadError(path, f"Failed to read PNG tile {path}: {e}") from e
        return Raster(data, sector, SampleKind.IMAGE, missing_value=missing_data_signal, resampling=resampling)

    def can_write(self, kind: SampleKind) -> bool:
        return kind is SampleKind.IMAGE

    def write(self, raster: Raster, destination: Union[str, Path]):
        if raster.dtype != np.uint8:
            raise WriteFailure(destination, f"PNG tiles require uint8 samples, got {raster.dtype}")
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                with rasterio.open(
                    path, 'w', driver=self.driver, width=raster.width, height=raster.height,
                    count=raster.count, dtype='uint8'
                ) as dst:
                    dst.write(raster.data)
        except Exception as e:
            raise WriteFailure(path, f"Failed to save PNG tile to {path}: {e}") from e

    def _open(self, path: Path):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NotGeoreferencedWarning)
            return rasterio.open(path)

class FormatAdapterRegistry:
    """
    Ordered collection of format adapters chosen by probing.

    Adapters registered first are probed first.

    Args:
        adapters: Initial adapters.
    """

    def __init__(self, adapters: Optional[Iterable[FormatAdapter]] = None):
        self._adapters: List[FormatAdapter] = list(adapters or [])

    def register(self, adapter: FormatAdapter, first: bool = False):
        if first:
            self._adapters.insert(0, adapter)
        else:
            self._adapters.append(adapter)

    @property
    def adapters(self) -> Tuple[FormatAdapter, ...]:
        return tuple(self._adapters)

    def find_reader(self, source: Any) -> Optional[FormatAdapter]:
        """Return the first adapter able to read source, or None."""
        for adapter in self._adapters:
            if adapter.can_read(source):
                return adapter
        return None

    def find_writer(self, kind: SampleKind, suffix: Optional[str] = None) -> Optional[FormatAdapter]:
        """
        Return the first adapter able to write rasters of kind.

        Args:
            kind: SampleKind to encode.
            suffix: Optional file suffix ('.tif', 'png', ...) restricting the choice.
        """
        if suffix is not None:
            suffix = suffix.lower() if suffix.startswith(".") else f".{suffix.lower()}"
        for adapter in self._adapters:
            if suffix is not None and suffix not in adapter.suffixes:
                continue
            if adapter.can_write(kind):
                return adapter
        return None

    def create_handle(
        self,
        source: Any,
        params: Optional[Mapping[str, Any]] = None,
        reader_options: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> CachedRasterHandle:
        """
        Probe source and describe it as a CachedRasterHandle without loading pixels.

        Args:
            source: Path or object to resolve.
            params: Reader parameters forwarded to the adapter.
            reader_options: Default reader parameters keyed by adapter name; params take precedence.

        Raises:
            SourceReadError: If no adapter can read source or its metadata is invalid.
        """
        adapter = self.find_reader(source)
        if adapter is None:
            raise SourceReadError(source, f"No format adapter can read {source}")

        merged = dict((reader_options or {}).get(adapter.name, {}))
        merged.update(params or {})
        params = merged

        info = adapter.read_info(source, **params)
        if info["width"] <= 0 or info["height"] <= 0:
            raise SourceReadError(source, f"Source {source} has an empty pixel grid")

        return CachedRasterHandle(
            source_ref=source,
            cache_key=adapter.cache_key(source, params),
            sector=info["sector"],
            width=int(info["width"]),
            height=int(info["height"]),
            bands=int(info["bands"]),
            dtype=str(info["dtype"]),
            kind=info["kind"],
            missing_value=info.get("missing_value"),
            adapter=adapter,
            read_params=params
        )

def default_registry() -> FormatAdapterRegistry:
    """Create a registry holding the built-in adapters."""
    return FormatAdapterRegistry([
        MemoryRasterAdapter(),
        GeoTiffAdapter(),
        PngTileAdapter()
    ])
