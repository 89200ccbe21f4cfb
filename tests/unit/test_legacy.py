# tests/unit/test_legacy.py

import logging

import pytest

from rasterpyramid.exceptions import InvalidConfiguration, SourceReadError
from rasterpyramid.metadata import (
    EARTH_ELEVATION_MAX,
    EARTH_ELEVATION_MIN,
    LEGACY_FIELDS,
    LEGACY_PREFIX,
    DatasetMetadataDocument,
    convert_legacy_descriptor,
    open_document,
    read_legacy_descriptor
)
from rasterpyramid.raster import SampleKind
from rasterpyramid.sector import Sector

LEGACY_XML = """<?xml version="1.0" encoding="UTF-8"?>
<dataDescriptor version="1">
    <property name="gov.nasa.worldwind.avkey.DatasetNameKey">Mount Rainier</property>
    <property name="gov.nasa.worldwind.avkey.DataCacheNameKey">Earth/MtRainier</property>
    <property name="gov.nasa.worldwind.avkey.DatasetTypeKey">gov.nasa.worldwind.avkey.TiledElevations</property>
    <property name="gov.nasa.worldwind.avkey.Sector">
        <property name="gov.nasa.worldwind.avkey.Sector.MinLatitude">46.5</property>
        <property name="gov.nasa.worldwind.avkey.Sector.MaxLatitude">47.0</property>
        <property name="gov.nasa.worldwind.avkey.Sector.MinLongitude">-122.0</property>
        <property name="gov.nasa.worldwind.avkey.Sector.MaxLongitude">-121.5</property>
    </property>
    <property name="gov.nasa.worldwind.avkey.LevelZeroTileDelta">20,20</property>
    <property name="gov.nasa.worldwind.avkey.NumLevels">5</property>
    <property name="gov.nasa.worldwind.avkey.TileWidthKey">150</property>
    <property name="gov.nasa.worldwind.avkey.TileHeightKey">150</property>
    <property name="gov.nasa.worldwind.avkey.FormatSuffixKey">.bil</property>
    <property name="gov.nasa.worldwind.avkey.PixelType">gov.nasa.worldwind.avkey.Int16</property>
    <property name="gov.nasa.worldwind.avkey.MissingDataValue">-32768</property>
    <property name="gov.nasa.worldwind.avkey.ByteOrder">LittleEndian</property>
</dataDescriptor>
"""

def _key(name):
    return LEGACY_PREFIX + name

@pytest.fixture
def descriptor():
    return {
        _key("DatasetNameKey"): "Blue Marble",
        _key("DatasetTypeKey"): "TiledImagery",
        _key("Sector"): "-90,90,-180,180",
        _key("TileOrigin"): "-90,-180",
        _key("LevelZeroTileDelta"): "36,36",
        _key("NumLevels"): "4",
        _key("TileWidthKey"): "512",
        _key("TileHeightKey"): "512",
        _key("FormatSuffixKey"): ".png",
        _key("DataType"): "uint8"
    }

def test_imagery_descriptor_converts(descriptor):
    doc = convert_legacy_descriptor(descriptor)

    assert doc.kind is SampleKind.IMAGE
    assert doc.dataset_name == "Blue Marble"
    assert doc.data_cache_name == "Blue_Marble"
    assert doc.sector == Sector(-90.0, 90.0, -180.0, 180.0)
    assert doc.level_zero_tile_delta == (36.0, 36.0)
    assert doc.tile_size == (512, 512)
    assert doc.format_suffix == ".png"
    assert doc.extremes is None

def test_document_fields_survive_legacy_round_trip():
    original = DatasetMetadataDocument.from_fields(
        kind=SampleKind.SCALAR_GRID,
        dataset_name="SRTM",
        data_cache_name="SRTM",
        sector=Sector(-60.0, 60.0, -180.0, 180.0),
        tile_origin=(-60.0, -180.0),
        level_zero_tile_delta=(20.0, 20.0),
        num_levels=8,
        tile_width=150,
        tile_height=150,
        format_suffix=".tif",
        data_type="int16",
        elevation_min=-430.0,
        elevation_max=8850.0,
        missing_data_signal=-32768
    )
    fields = original.to_fields()
    sector = fields["sector"]
    descriptor = {
        _key("DatasetNameKey"): fields["dataset_name"],
        _key("DataCacheNameKey"): fields["data_cache_name"],
        _key("DatasetTypeKey"): "TiledElevations",
        _key("Sector"): f"{sector.min_lat},{sector.max_lat},{sector.min_lon},{sector.max_lon}",
        _key("TileOrigin"): "%s,%s" % fields["tile_origin"],
        _key("LevelZeroTileDelta"): "%s,%s" % fields["level_zero_tile_delta"],
        _key("NumLevels"): str(fields["num_levels"]),
        _key("TileWidthKey"): str(fields["tile_width"]),
        _key("TileHeightKey"): str(fields["tile_height"]),
        _key("FormatSuffixKey"): fields["format_suffix"],
        _key("DataType"): fields["data_type"],
        _key("ElevationMinKey"): str(fields["elevation_min"]),
        _key("ElevationMaxKey"): str(fields["elevation_max"]),
        _key("MissingDataSignal"): str(fields["missing_data_signal"])
    }

    converted = convert_legacy_descriptor(descriptor).to_fields()

    for name in LEGACY_FIELDS:
        assert converted[name] == fields[name], name

def test_missing_data_value_is_remapped(descriptor):
    descriptor[_key("MissingDataValue")] = "-9999"
    descriptor[_key("DatasetTypeKey")] = "TiledElevations"

    doc = convert_legacy_descriptor(descriptor)

    assert doc.missing_data_signal == -9999

def test_elevation_without_extremes_gets_earth_extremes(descriptor):
    descriptor[_key("DatasetTypeKey")] = "TiledElevations"
    del descriptor[_key("DataType")]

    doc = convert_legacy_descriptor(descriptor)

    assert doc.extremes == (EARTH_ELEVATION_MIN, EARTH_ELEVATION_MAX)
    assert doc.data_type == "int16"

def test_unknown_keys_are_dropped(descriptor, caplog):
    descriptor[_key("ServiceURLKey")] = "https://example.org/wms"

    with caplog.at_level(logging.DEBUG, logger="rasterpyramid.metadata.legacy"):
        doc = convert_legacy_descriptor(descriptor)

    assert "ServiceURLKey" not in doc.to_xml()
    assert "ServiceURLKey" in caplog.text

def test_unprefixed_keys_are_accepted(descriptor):
    plain = {key[len(LEGACY_PREFIX):]: value for key, value in descriptor.items()}

    assert convert_legacy_descriptor(plain) == convert_legacy_descriptor(descriptor)

@pytest.mark.parametrize("name, field", [
    ("DatasetNameKey", "dataset_name"),
    ("Sector", "sector"),
    ("LevelZeroTileDelta", "level_zero_tile_delta"),
    ("NumLevels", "num_levels"),
    ("TileWidthKey", "tile_width"),
    ("TileHeightKey", "tile_height")
])
def test_required_keys(descriptor, name, field):
    del descriptor[_key(name)]

    with pytest.raises(InvalidConfiguration) as excinfo:
        convert_legacy_descriptor(descriptor)

    assert excinfo.value.field == field

@pytest.mark.parametrize("name, value, field", [
    ("Sector", "10,20,30", "sector"),
    ("LevelZeroTileDelta", "1,2,3", "level_zero_tile_delta"),
    ("NumLevels", "many", "num_levels"),
    ("DataType", "complex64", "data_type"),
    ("DatasetTypeKey", "TiledPointClouds", "kind")
])
def test_unparseable_values(descriptor, name, value, field):
    descriptor[_key(name)] = value

    with pytest.raises(InvalidConfiguration) as excinfo:
        convert_legacy_descriptor(descriptor)

    assert excinfo.value.field == field

def test_read_legacy_file(tmp_path):
    path = tmp_path / "MtRainier.xml"
    path.write_text(LEGACY_XML)

    mapping = read_legacy_descriptor(path)

    assert mapping[_key("NumLevels")] == "5"
    assert mapping[_key("Sector")][_key("Sector.MinLatitude")] == "46.5"

def test_open_document_converts_legacy_file(tmp_path):
    path = tmp_path / "MtRainier.xml"
    path.write_text(LEGACY_XML)

    doc = open_document(path)

    assert doc.kind is SampleKind.SCALAR_GRID
    assert doc.sector == Sector(46.5, 47.0, -122.0, -121.5)
    assert doc.data_cache_name == "Earth/MtRainier"
    assert doc.format_suffix == ".bil"
    assert doc.data_type == "int16"
    assert doc.missing_data_signal == -32768
    assert doc.extremes == (EARTH_ELEVATION_MIN, EARTH_ELEVATION_MAX)

def test_read_legacy_rejects_other_documents(tmp_path):
    path = tmp_path / "doc.xml"
    path.write_text("<ElevationModel version=\"1\"/>")

    with pytest.raises(SourceReadError):
        read_legacy_descriptor(path)
