# tests/unit/test_io.py

import pytest
import numpy as np

from rasterpyramid.exceptions import SourceReadError, WriteFailure
from rasterpyramid.raster import (
    FormatAdapter,
    GeoTiffAdapter,
    MemoryRasterAdapter,
    PngTileAdapter,
    SampleKind,
    default_registry
)
from rasterpyramid.sector import Sector

MISSING = -9999.0

def test_builtin_adapters_satisfy_protocol():
    for adapter in default_registry().adapters:
        assert isinstance(adapter, FormatAdapter)

def test_geotiff_read_keeps_geographic_extent(geotiff_factory):
    path = geotiff_factory(nodata=MISSING)

    raster = GeoTiffAdapter().read(path)

    assert raster.sector == Sector(10.0, 20.0, 30.0, 40.0)
    assert raster.shape == (1, 20, 20)
    assert raster.kind is SampleKind.SCALAR_GRID
    assert raster.missing_value == MISSING

def test_geotiff_read_info_does_not_need_pixels(geotiff_factory):
    path = geotiff_factory(count=3, dtype="uint8")

    info = GeoTiffAdapter().read_info(path)

    assert info["sector"] == Sector(10.0, 20.0, 30.0, 40.0)
    assert (info["width"], info["height"], info["bands"]) == (20, 20, 3)
    assert info["dtype"] == "uint8"
    assert info["kind"] is SampleKind.IMAGE

def test_declared_data_kind_overrides_inference(geotiff_factory):
    path = geotiff_factory(dtype="uint8")

    info = GeoTiffAdapter().read_info(path, data_kind="elevation")

    assert info["kind"] is SampleKind.SCALAR_GRID

def test_missing_signal_override(geotiff_factory):
    path = geotiff_factory(nodata=MISSING)

    raster = GeoTiffAdapter().read(path, missing_data_signal=0.0)

    assert raster.missing_value == 0.0

def test_geotiff_write_then_read(tmp_path, raster_factory):
    original = raster_factory(missing_value=MISSING)
    path = tmp_path / "out" / "tile.tif"
    adapter = GeoTiffAdapter()

    adapter.write(original, path)
    restored = adapter.read(path)

    assert path.exists()
    assert restored == original
    assert restored.missing_value == MISSING

def test_projected_source_is_reprojected(geotiff_factory):
    # Web Mercator bounds of lon 30..40, lat 10..20
    path = geotiff_factory(
        filename="mercator.tif",
        bounds=(3339584.72, 1118889.97, 4452779.63, 2273030.93),
        crs="EPSG:3857"
    )

    raster = GeoTiffAdapter().read(path)

    assert raster.sector.min_lat == pytest.approx(10.0, abs=0.5)
    assert raster.sector.max_lat == pytest.approx(20.0, abs=0.5)
    assert raster.sector.min_lon == pytest.approx(30.0, abs=0.5)
    assert raster.sector.max_lon == pytest.approx(40.0, abs=0.5)
    assert raster.data.max() > 50

def test_source_without_crs_is_rejected(geotiff_factory):
    path = geotiff_factory(filename="bare.tif", crs=None)

    with pytest.raises(SourceReadError):
        GeoTiffAdapter().read(path)

def test_missing_file_is_rejected(tmp_path):
    adapter = GeoTiffAdapter()

    assert adapter.can_read(tmp_path / "absent.tif") is False
    with pytest.raises(SourceReadError):
        adapter.read(tmp_path / "absent.tif")

def test_png_tile_requires_sector(tmp_path, raster_factory):
    tile = raster_factory(kind=SampleKind.IMAGE, dtype="uint8", bands=3)
    path = tmp_path / "tile.png"
    adapter = PngTileAdapter()

    adapter.write(tile, path)

    with pytest.raises(SourceReadError):
        adapter.read(path)
    restored = adapter.read(path, sector=tile.sector)
    assert np.array_equal(restored.data, tile.data)
    assert restored.kind is SampleKind.IMAGE

def test_png_tile_rejects_non_byte_samples(tmp_path, raster_factory):
    adapter = PngTileAdapter()

    assert adapter.can_write(SampleKind.SCALAR_GRID) is False
    with pytest.raises(WriteFailure):
        adapter.write(raster_factory(), tmp_path / "tile.png")

def test_registry_probes_in_order(tmp_path, geotiff_factory, raster_factory):
    registry = default_registry()
    text = tmp_path / "notes.txt"
    text.write_text("not a raster")

    assert isinstance(registry.find_reader(raster_factory()), MemoryRasterAdapter)
    assert isinstance(registry.find_reader(geotiff_factory()), GeoTiffAdapter)
    assert registry.find_reader(text) is None

    with pytest.raises(SourceReadError):
        registry.create_handle(text)

def test_registry_register_first_takes_precedence(raster_factory):
    class Shadow(MemoryRasterAdapter):
        name = "shadow"

    registry = default_registry()
    registry.register(Shadow(), first=True)

    assert registry.find_reader(raster_factory()).name == "shadow"

def test_registry_finds_writer_by_kind_and_suffix():
    registry = default_registry()

    assert isinstance(registry.find_writer(SampleKind.SCALAR_GRID), GeoTiffAdapter)
    assert isinstance(registry.find_writer(SampleKind.IMAGE, "png"), PngTileAdapter)
    assert isinstance(registry.find_writer(SampleKind.IMAGE, ".TIF"), GeoTiffAdapter)
    assert registry.find_writer(SampleKind.SCALAR_GRID, ".png") is None

def test_create_handle_describes_source_without_caching(geotiff_factory):
    path = geotiff_factory(nodata=MISSING)

    handle = default_registry().create_handle(path)

    assert handle.sector == Sector(10.0, 20.0, 30.0, 40.0)
    assert (handle.width, handle.height) == (20, 20)
    assert handle.missing_value == MISSING
    assert handle.resolution == pytest.approx(0.5)
    assert handle.cache_key.startswith("geotiff:")
    assert handle.load().shape == (1, 20, 20)

def test_create_handle_merges_reader_options(geotiff_factory):
    path = geotiff_factory(nodata=MISSING)
    registry = default_registry()
    options = {"geotiff": {"missing_data_signal": -1.0}}

    defaulted = registry.create_handle(path, reader_options=options)
    explicit = registry.create_handle(path, {"missing_data_signal": -5.0}, reader_options=options)

    assert defaulted.missing_value == -1.0
    assert explicit.missing_value == -5.0
    assert "missing_data_signal=-5.0" in explicit.cache_key
    assert defaulted.cache_key != explicit.cache_key

def test_memory_handles_are_distinct_per_object(raster_factory):
    registry = default_registry()
    a, b = raster_factory(), raster_factory()

    assert registry.create_handle(a).cache_key != registry.create_handle(b).cache_key
    assert registry.create_handle(a).cache_key == registry.create_handle(a).cache_key
