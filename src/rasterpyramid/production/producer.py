# src/rasterpyramid/production/producer.py

"""
This module drives the production of a tiled raster dataset.

A TiledRasterProducer collects data sources and parameters, then turns the sources
into a tile pyramid plus a metadata document. Its lifecycle is explicit:

    IDLE -> CONFIGURED -> PRODUCING -> SUCCEEDED | FAILED

A failed run leaves its partial output on disk. The caller rolls it back with
remove_production_state(), which deletes every recorded path and returns to IDLE.
Only files created by the run are recorded; tiles that already existed and were
updated by the run stay on disk, with their updates.
"""

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Union

import numpy as np

from ..exceptions import (
    IncompatibleRasterKind,
    InvalidConfiguration,
    InvalidState,
    RasterValidationError,
    SourceReadError
)
from ..metadata.document import build_document
from ..raster.cache import CachedRasterHandle, RasterCache
from ..raster.io import FormatAdapterRegistry, default_registry
from ..raster.layer import SampleKind, _is_nan
from ..sector import Sector
from ..tiling.builder import BuildPolicy, TilePyramidBuilder
from ..tiling.levels import LevelSet
from ..tiling.store import TileStore
from .config import ProductionParameters, normalize_reader_params
from .state import OfferedSource, ProductionState, ProductionStatus

log = logging.getLogger(__name__)

__all__ = [
    "TiledRasterProducer"
]

DEFAULT_IMAGE_MISSING_SIGNAL = 0
DEFAULT_ELEVATION_MISSING_SIGNAL = -32768

def _default_missing_signal(kind: SampleKind, dtype: np.dtype) -> Union[int, float]:
    if kind is SampleKind.IMAGE:
        return DEFAULT_IMAGE_MISSING_SIGNAL
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return DEFAULT_ELEVATION_MISSING_SIGNAL if info.min <= DEFAULT_ELEVATION_MISSING_SIGNAL else int(info.min)
    return float(DEFAULT_ELEVATION_MISSING_SIGNAL)

def _top_sector(sector: Sector) -> Sector:
    """Widen a sector crossing the antimeridian to the full longitude range."""
    if sector.crosses_antimeridian:
        return Sector(sector.min_lat, sector.max_lat, -180.0, 180.0)
    return sector

class TiledRasterProducer:
    """
    Produces a quad-tree tile cache and its metadata document from raster sources.

    One producer drives one dataset; its state is never shared with other producers.
    The raster cache is the only shared resource and may serve several producers.

    Args:
        cache: Raster cache materializing the sources.
        registry: Format adapters used to read sources and write tiles.
            Defaults to the built-in adapters.

    Usage:
        producer = TiledRasterProducer(RasterCache())
        producer.offer_data_source("dem.tif")
        producer.set_store_parameters({"file_store_location": "cache", "dataset_name": "DEM"})
        document, document_path = producer.start_production()
    """

    def __init__(self, cache: RasterCache, registry: Optional[FormatAdapterRegistry] = None):
        self.cache = cache
        self.registry = registry or default_registry()
        self._status = ProductionStatus.IDLE
        self._state = ProductionState()
        self._requested: Optional[ProductionParameters] = None
        self._level_set: Optional[LevelSet] = None
        self._failure: Optional[BaseException] = None
        self._cancel = threading.Event()

    # Accessors

    @property
    def state(self) -> ProductionStatus:
        return self._status

    @property
    def production_state(self) -> ProductionState:
        return self._state

    @property
    def written_paths(self) -> List[Path]:
        return list(self._state.written_paths)

    @property
    def warnings(self) -> List[str]:
        return list(self._state.warnings)

    @property
    def failure(self) -> Optional[BaseException]:
        """The exception that failed the last run, if any."""
        return self._failure

    @property
    def level_set(self) -> Optional[LevelSet]:
        return self._level_set

    @property
    def production_results(self) -> List[Any]:
        """[DatasetMetadataDocument, document path] after a successful run, empty otherwise."""
        if self._status is not ProductionStatus.SUCCEEDED:
            return []
        return list(self._state.results)

    # Configuration

    def offer_data_source(self, source: Any, params: Optional[Mapping[str, Any]] = None):
        """
        Add a data source to the production.

        Args:
            source: File path or in-memory Raster.
            params: Reader parameters for this source (sector, data_kind, ...).

        Raises:
            InvalidConfiguration: If the source is None or its sector is invalid.
        """
        self._require(ProductionStatus.IDLE, ProductionStatus.CONFIGURED, action="offer data sources")
        if source is None:
            raise InvalidConfiguration("source", "Data source may not be None")
        self._state.sources.append(OfferedSource(source, normalize_reader_params(params or {})))
        log.debug(f"Offered data source {source}")

    def offer_data_sources(self, sources: Iterable[Any]):
        for source in sources:
            self.offer_data_source(source)

    def set_store_parameters(self, params: Union[Mapping[str, Any], ProductionParameters]):
        """
        Validate production parameters and move to CONFIGURED.

        Raises:
            InvalidConfiguration: If a parameter is missing or invalid, or no source
                has been offered. The producer stays IDLE.
            InvalidState: If a run is in progress or finished.
        """
        self._require(ProductionStatus.IDLE, ProductionStatus.CONFIGURED, action="set store parameters")
        self._status = ProductionStatus.IDLE
        if not isinstance(params, ProductionParameters):
            params = ProductionParameters.from_mapping(params)
        self._requested = params
        self._configure()

    def _configure(self):
        if self._requested is None:
            raise InvalidConfiguration("file_store_location", "Store parameters have not been set")
        if not self._state.sources:
            raise InvalidConfiguration("sources", "At least one data source must be offered")
        self._check_tile_format(self._requested)
        self._check_geometry(self._requested)
        self._state.parameters = self._requested
        self._status = ProductionStatus.CONFIGURED
        log.info(
            f"Production of '{self._requested.dataset_name}' configured with "
            f"{len(self._state.sources)} source(s)"
        )

    def _check_tile_format(self, params: ProductionParameters):
        """Require a registered writer for the tile format, for either kind when the kind is inferred."""
        kinds = [params.data_kind] if params.data_kind is not None else list(SampleKind)
        if not any(self.registry.find_writer(kind, params.tile_format) for kind in kinds):
            described = params.data_kind.value if params.data_kind is not None else "any"
            raise InvalidConfiguration(
                "tile_format", f"No format adapter writes {described} tiles as '{params.tile_format}'"
            )

    def _check_geometry(self, params: ProductionParameters):
        """Validate the pyramid geometry that does not depend on the sources."""
        delta = params.level_zero_tile_delta
        if delta is not None and (delta[0] > 180.0 or delta[1] > 360.0):
            raise InvalidConfiguration(
                "level_zero_tile_delta", f"Level-zero tile delta {delta} exceeds the globe"
            )
        if params.sector is None:
            return

        try:
            LevelSet.for_extent(
                _top_sector(params.sector),
                finest_resolution=1.0,
                kind=params.data_kind or SampleKind.SCALAR_GRID,
                cache_root=params.cache_root,
                format_suffix=params.tile_format,
                tile_width=params.tile_width,
                tile_height=params.tile_height,
                level_zero_tile_delta=delta,
                num_levels=params.num_levels or 1
            )
        except RasterValidationError as e:
            raise InvalidConfiguration("level_zero_tile_delta", f"Invalid pyramid geometry: {e}") from e

    # Lifecycle

    def start_production(self) -> List[Any]:
        """
        Run the production.

        From IDLE the parameters and sources are validated first.

        Returns:
            List[Any]: The production results, [DatasetMetadataDocument, document path].

        Raises:
            InvalidConfiguration: If the production is not configured; the producer stays IDLE.
            InvalidState: If a run is in progress or finished.
            ProductionError / RasterError: Any error that failed the run; the producer is FAILED.
        """
        self._require(ProductionStatus.IDLE, ProductionStatus.CONFIGURED, action="start production")
        if self._status is ProductionStatus.IDLE:
            self._configure()

        self._status = ProductionStatus.PRODUCING
        self._failure = None
        self._cancel.clear()
        self._state.reset_run()

        try:
            self._produce()
        except BaseException as e:
            self._status = ProductionStatus.FAILED
            self._failure = e
            log.error(
                f"Production of '{self._state.parameters.dataset_name}' failed: {e}. "
                f"{len(self._state.written_paths)} path(s) remain until rollback"
            )
            raise

        self._status = ProductionStatus.SUCCEEDED
        log.info(
            f"Production of '{self._state.parameters.dataset_name}' succeeded: "
            f"{len(self._state.written_paths)} file(s) written"
        )
        return list(self._state.results)

    def cancel(self):
        """Request the running production to stop before its next tile write."""
        log.info("Production cancellation requested")
        self._cancel.set()

    def remove_production_state(self):
        """
        Delete every file created by the last run and return to IDLE.

        Files that existed before the run are left in place, including their updates.

        Offered sources and parameters are kept, so the production can be started again.

        Raises:
            InvalidState: If a run is in progress.
        """
        if self._status is ProductionStatus.PRODUCING:
            raise InvalidState("Cannot remove production state while producing")

        removed = 0
        directories = set()
        for path in self._state.written_paths:
            if path.is_file() or path.is_symlink():
                path.unlink()
                removed += 1
            directories.add(path.parent)

        if self._state.parameters is not None:
            self._prune_directories(directories, Path(self._state.parameters.file_store_location))

        log.info(f"Removed {removed} file(s) from the production state")
        self._state.reset_run()
        self._level_set = None
        self._failure = None
        self._status = ProductionStatus.IDLE

    def _prune_directories(self, directories: Iterable[Path], stop: Path):
        """Remove emptied directories, walking up until stop (exclusive)."""
        stop = stop.resolve()
        for directory in sorted(directories, key=lambda p: len(p.parts), reverse=True):
            current = directory.resolve()
            while current != stop and stop in current.parents:
                if not current.is_dir() or any(current.iterdir()):
                    break
                current.rmdir()
                current = current.parent

    def _require(self, *allowed: ProductionStatus, action: str):
        if self._status not in allowed:
            raise InvalidState(f"Cannot {action} while {self._status.value}")

    # Production

    def _produce(self):
        params = self._state.parameters
        handles = self._resolve_sources(params)

        kind = params.data_kind or handles[0].kind
        for handle in handles:
            if handle.kind is not kind:
                raise IncompatibleRasterKind(
                    f"Source {handle.cache_key} holds {handle.kind.value} data but the dataset "
                    f"is {kind.value}"
                )

        dtype = np.dtype(handles[0].dtype)
        bands = max(h.bands for h in handles) if kind is SampleKind.IMAGE else 1
        missing = params.missing_data_signal
        if missing is None and kind is SampleKind.SCALAR_GRID:
            missing = handles[0].missing_value
        if missing is None:
            missing = _default_missing_signal(kind, dtype)
        if _is_nan(missing) and np.issubdtype(dtype, np.integer):
            raise InvalidConfiguration("missing_data_signal", f"NaN cannot mark missing {dtype} samples")

        self._state.parameters = params = replace(params, data_kind=kind)
        self._state.data_type = dtype.name
        self._state.bands = bands
        self._state.missing_data_signal = missing

        level_set = self._create_level_set(params, handles, kind)
        self._level_set = level_set

        writer = self.registry.find_writer(kind, params.tile_format)
        if writer is None:
            raise InvalidConfiguration(
                "tile_format", f"No format adapter writes {kind.value} tiles as '{params.tile_format}'"
            )

        store = TileStore(level_set, writer, kind, bands, dtype, missing, params.resampling)
        builder = TilePyramidBuilder(
            level_set,
            store,
            self.cache,
            policy=BuildPolicy(
                allow_upsample=params.allow_upsample,
                coarsen=params.coarsen,
                max_workers=params.max_workers,
                show_progress=params.show_progress
            ),
            cancel_event=self._cancel,
            on_write=self._state.record_new_path
        )

        unreadable = []
        for handle in handles:
            try:
                report = builder.build(handle)
            except SourceReadError as e:
                self._warn(f"Skipping source {handle.cache_key}, its samples could not be read: {e}")
                unreadable.append(handle.source_ref)
                continue
            if report.skipped:
                self._state.warnings.append(f"Source {handle.cache_key} does not overlap {level_set.sector}; skipped")
                continue
            self._state.merge_extremes(report.extremes)

        if len(unreadable) == len(handles):
            raise SourceReadError(unreadable, "None of the offered data sources could be read")

        document = build_document(self._state, level_set)
        document_path = params.cache_root / f"{params.data_cache_name}.xml"
        self._state.record_new_path(document_path)
        document.write(document_path)
        self._state.results = [document, document_path]

    def _resolve_sources(self, params: ProductionParameters) -> List[CachedRasterHandle]:
        handles = []
        for offered in self._state.sources:
            read_params = dict(offered.params)
            if params.data_kind is not None:
                read_params.setdefault("data_kind", params.data_kind)
            try:
                handles.append(self.registry.create_handle(offered.source, read_params, params.reader_options))
            except SourceReadError as e:
                self._warn(f"Skipping unreadable source {offered.source}: {e}")

        if not handles:
            raise SourceReadError(
                [o.source for o in self._state.sources], "None of the offered data sources could be read"
            )
        return handles

    def _create_level_set(
        self,
        params: ProductionParameters,
        handles: List[CachedRasterHandle],
        kind: SampleKind
    ) -> LevelSet:
        sector = _top_sector(params.sector or Sector.union_all(h.sector for h in handles))

        try:
            return LevelSet.for_extent(
                sector,
                finest_resolution=min(h.resolution for h in handles),
                kind=kind,
                cache_root=params.cache_root,
                format_suffix=params.tile_format,
                tile_width=params.tile_width,
                tile_height=params.tile_height,
                level_zero_tile_delta=params.level_zero_tile_delta,
                num_levels=params.num_levels
            )
        except RasterValidationError as e:
            raise InvalidConfiguration("level_zero_tile_delta", f"Invalid pyramid geometry: {e}") from e

    def _warn(self, message: str):
        log.warning(message)
        self._state.warnings.append(message)

    def __repr__(self) -> str:
        return f"<TiledRasterProducer state={self._status.value} sources={len(self._state.sources)}>"
