# tests/integration/test_production.py

import pytest
import numpy as np

from rasterpyramid.exceptions import (
    IncompatibleRasterKind,
    InvalidConfiguration,
    InvalidState,
    ProductionCancelled,
    SourceReadError
)
from rasterpyramid.metadata import DatasetMetadataDocument, open_document
from rasterpyramid.production import ProductionStatus, TiledRasterProducer
from rasterpyramid.raster import FormatAdapterRegistry, GeoTiffAdapter, Raster, SampleKind
from rasterpyramid.sector import Sector
from helpers import CountingAdapter, tree_digest

MISSING = -9999.0

@pytest.fixture
def params(store_root):
    """Small elevation pyramid: 10 degree, 10 px level-zero tiles."""
    return {
        "file_store_location": str(store_root),
        "dataset_name": "Test DEM",
        "data_kind": "elevation",
        "tile_width": 10,
        "tile_height": 10,
        "level_zero_tile_delta": 10
    }

@pytest.fixture
def dem_path(geotiff_factory):
    """20x20 float32 GeoTIFF over [10,20]x[30,40], half a degree per pixel."""
    return geotiff_factory(nodata=MISSING)

def _files(root):
    return sorted(p for p in root.rglob("*") if p.is_file())

def _flat_raster(value=5.0):
    return Raster(np.full((1, 20, 20), value, dtype="float32"), Sector(10.0, 20.0, 30.0, 40.0))

class CorruptAdapter(CountingAdapter):
    """Serves headers for every source but fails to decode the samples of "corrupt"."""

    def read(self, source, **read_params):
        if source == "corrupt":
            raise SourceReadError(source, "corrupt pixel data")
        return super().read(source, **read_params)

def test_full_elevation_production(store_root, cache, params, dem_path):
    """
    Simulates a standard user workflow:
    1. Offer: Hand a GeoTIFF elevation model to the producer.
    2. Configure: Validate the store parameters.
    3. Produce: Build the pyramid and its metadata document.
    4. Inspect: Re-open the document from disk.
    """

    # --- 1. OFFER & CONFIGURE ---

    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)
    producer.set_store_parameters(params)

    assert producer.state is ProductionStatus.CONFIGURED

    # --- 2. PRODUCE ---

    document, document_path = producer.start_production()

    assert producer.state is ProductionStatus.SUCCEEDED
    assert producer.production_results == [document, document_path]
    assert document_path == store_root / "Test_DEM" / "Test_DEM.xml"

    # One level-zero tile and four level-one tiles, plus the document
    cache_root = store_root / "Test_DEM"
    tiles = [p for p in _files(cache_root) if p.suffix == ".tif"]
    assert len(tiles) == 5
    assert (cache_root / "0" / "0" / "0_0.tif").exists()
    assert (cache_root / "1" / "1" / "1_1.tif").exists()
    assert sorted(producer.written_paths) == _files(store_root)

    # --- 3. INSPECT ---

    reopened = open_document(document_path)
    assert isinstance(reopened, DatasetMetadataDocument)
    assert reopened == document
    assert reopened.kind is SampleKind.SCALAR_GRID
    assert reopened.num_levels == 2
    assert reopened.sector == Sector(10.0, 20.0, 30.0, 40.0)
    assert reopened.data_type == "float32"
    assert reopened.missing_data_signal == MISSING
    assert reopened.extremes == pytest.approx((0.0, 100.0))

def test_imagery_production_writes_png_tiles(store_root, cache, raster_factory):
    image = raster_factory(kind=SampleKind.IMAGE, dtype="uint8", bands=3)

    producer = TiledRasterProducer(cache)
    producer.offer_data_source(image)
    producer.set_store_parameters({
        "file_store_location": str(store_root),
        "dataset_name": "Imagery",
        "tile_width": 10,
        "tile_height": 10,
        "level_zero_tile_delta": 10,
        "tile_format": "png"
    })

    document, _ = producer.start_production()

    assert document.kind is SampleKind.IMAGE
    assert document.bands == 3
    assert document.missing_data_signal is None
    tiles = [p for p in producer.written_paths if p.suffix == ".png"]
    assert len(tiles) == 5

def test_rollback_removes_every_written_path(store_root, cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)
    producer.set_store_parameters(params)
    producer.start_production()
    written = producer.written_paths

    producer.remove_production_state()

    assert producer.state is ProductionStatus.IDLE
    assert producer.written_paths == []
    assert not any(path.exists() for path in written)
    assert _files(store_root) == []
    assert store_root.exists()

def test_rerun_after_rollback_is_identical(store_root, cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)
    producer.set_store_parameters(params)

    producer.start_production()
    first = tree_digest(store_root)
    producer.remove_production_state()
    producer.start_production()
    second = tree_digest(store_root)

    assert first == second
    assert len(first) == 6

def test_no_sources_is_rejected(store_root, cache, params):
    producer = TiledRasterProducer(cache)

    with pytest.raises(InvalidConfiguration):
        producer.set_store_parameters(params)
    with pytest.raises(InvalidConfiguration):
        producer.start_production()

    assert producer.state is ProductionStatus.IDLE
    assert producer.written_paths == []
    assert _files(store_root) == []

def test_invalid_parameters_keep_producer_idle(cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)

    with pytest.raises(InvalidConfiguration) as excinfo:
        producer.set_store_parameters({**params, "tile_width": 11})

    assert excinfo.value.field == "tile_width"
    assert producer.state is ProductionStatus.IDLE

def test_finished_production_cannot_restart(cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)
    producer.set_store_parameters(params)
    producer.start_production()

    with pytest.raises(InvalidState):
        producer.start_production()
    with pytest.raises(InvalidState):
        producer.offer_data_source(dem_path)

def test_unreadable_source_is_skipped_with_warning(store_root, cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(store_root / "absent.tif")
    producer.offer_data_source(dem_path)
    producer.set_store_parameters(params)

    producer.start_production()

    assert producer.state is ProductionStatus.SUCCEEDED
    assert len(producer.warnings) == 1
    assert "absent.tif" in producer.warnings[0]

def test_all_sources_unreadable_fails(store_root, cache, params):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(store_root / "absent.tif")
    producer.set_store_parameters(params)

    with pytest.raises(SourceReadError):
        producer.start_production()

    assert producer.state is ProductionStatus.FAILED
    assert isinstance(producer.failure, SourceReadError)
    assert producer.production_results == []

def test_mixed_kind_sources_fail(cache, params, raster_factory):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(raster_factory())
    producer.offer_data_source(raster_factory(kind=SampleKind.IMAGE, dtype="uint8"))
    producer.set_store_parameters({**params, "data_kind": None})

    with pytest.raises(IncompatibleRasterKind):
        producer.start_production()

    assert producer.state is ProductionStatus.FAILED

def test_cancellation_fails_run_and_rollback_cleans_up(store_root, cache, params):
    """
    1. Two in-memory sources are served by a test adapter.
    2. Reading the second source requests cancellation.
    3. The run fails before the second source writes; rollback removes the first source's tiles.
    """
    class CancellingAdapter(CountingAdapter):
        producer = None

        def read(self, source, **read_params):
            if source == "second":
                self.producer.cancel()
            return super().read(source, **read_params)

    adapter = CancellingAdapter({"first": _flat_raster(), "second": _flat_raster()})
    producer = TiledRasterProducer(cache, FormatAdapterRegistry([adapter, GeoTiffAdapter()]))
    adapter.producer = producer
    producer.offer_data_sources(["first", "second"])
    producer.set_store_parameters(params)

    with pytest.raises(ProductionCancelled):
        producer.start_production()

    assert producer.state is ProductionStatus.FAILED
    assert isinstance(producer.failure, ProductionCancelled)
    assert len(producer.written_paths) == 5
    assert all(path.exists() for path in producer.written_paths)

    producer.remove_production_state()

    assert _files(store_root) == []
    assert producer.state is ProductionStatus.IDLE

def test_source_failing_to_load_samples_is_skipped(store_root, cache, params):
    adapter = CorruptAdapter({"corrupt": _flat_raster(), "intact": _flat_raster(7.0)})
    producer = TiledRasterProducer(cache, FormatAdapterRegistry([adapter, GeoTiffAdapter()]))
    producer.offer_data_sources(["corrupt", "intact"])
    producer.set_store_parameters(params)

    document, _ = producer.start_production()

    assert producer.state is ProductionStatus.SUCCEEDED
    assert len(producer.warnings) == 1
    assert "corrupt" in producer.warnings[0]
    assert document.extremes == (7.0, 7.0)
    assert len([p for p in producer.written_paths if p.suffix == ".tif"]) == 5

def test_every_source_failing_to_load_samples_fails(store_root, cache, params):
    adapter = CorruptAdapter({"corrupt": _flat_raster()})
    producer = TiledRasterProducer(cache, FormatAdapterRegistry([adapter, GeoTiffAdapter()]))
    producer.offer_data_source("corrupt")
    producer.set_store_parameters(params)

    with pytest.raises(SourceReadError):
        producer.start_production()

    assert producer.state is ProductionStatus.FAILED
    assert producer.written_paths == []
    assert _files(store_root) == []

@pytest.mark.parametrize("overrides, field", [
    ({"tile_format": "jpg"}, "tile_format"),
    ({"tile_format": "png"}, "tile_format"),
    ({"level_zero_tile_delta": [200, 10]}, "level_zero_tile_delta"),
    ({"level_zero_tile_delta": 100, "sector": [-90, 90, -180, 180]}, "level_zero_tile_delta")
])
def test_unusable_store_parameters_fail_before_production(store_root, cache, params, dem_path, overrides, field):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path)

    with pytest.raises(InvalidConfiguration) as excinfo:
        producer.set_store_parameters({**params, **overrides})
    assert excinfo.value.field == field
    assert producer.state is ProductionStatus.IDLE

    with pytest.raises(InvalidConfiguration):
        producer.start_production()
    assert producer.state is ProductionStatus.IDLE
    assert _files(store_root) == []

def test_rollback_keeps_files_from_earlier_production(store_root, cache, params, geotiff_factory):
    """
    1. A first production fills the western half of a shared sector.
    2. A second production into the same cache overlaps it and extends it east.
    3. Rolling back the second production keeps every file of the first.
    """
    shared = {**params, "sector": [10, 20, 30, 50]}
    west = geotiff_factory("west.tif", bounds=(30.0, 10.0, 40.0, 20.0), nodata=MISSING)
    east = geotiff_factory("east.tif", bounds=(35.0, 10.0, 45.0, 20.0), nodata=MISSING)

    first = TiledRasterProducer(cache)
    first.offer_data_source(west)
    first.set_store_parameters(shared)
    _, document_path = first.start_production()
    existing = _files(store_root)

    second = TiledRasterProducer(cache)
    second.offer_data_source(east)
    second.set_store_parameters(shared)
    second.start_production()
    created = second.written_paths

    assert created
    assert document_path not in created
    assert not set(created) & set(existing)

    second.remove_production_state()

    assert _files(store_root) == existing

def test_rgb_and_rgba_sources_share_rgba_tiles(store_root, cache, raster_factory):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(raster_factory(kind=SampleKind.IMAGE, dtype="uint8", bands=3))
    producer.offer_data_source(raster_factory(kind=SampleKind.IMAGE, dtype="uint8", bands=4))
    producer.set_store_parameters({
        "file_store_location": str(store_root),
        "dataset_name": "Imagery",
        "tile_width": 10,
        "tile_height": 10,
        "level_zero_tile_delta": 10,
        "tile_format": "png"
    })

    document, _ = producer.start_production()

    assert producer.state is ProductionStatus.SUCCEEDED
    assert document.bands == 4

def test_offered_sector_list_overrides_georeferencing(cache, params, dem_path):
    producer = TiledRasterProducer(cache)
    producer.offer_data_source(dem_path, {"sector": [11, 21, 31, 41]})
    producer.set_store_parameters(params)

    document, _ = producer.start_production()

    assert document.sector == Sector(11.0, 21.0, 31.0, 41.0)
