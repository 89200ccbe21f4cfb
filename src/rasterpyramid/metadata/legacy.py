# src/rasterpyramid/metadata/legacy.py

"""
This module converts legacy data descriptors into dataset metadata documents.

Legacy descriptors are flat key/value maps whose keys carry the
'gov.nasa.worldwind.avkey.' prefix. They were stored as XML files of the form:

    <dataDescriptor version="1">
        <property name="gov.nasa.worldwind.avkey.DatasetNameKey">Mount Rainier</property>
        <property name="gov.nasa.worldwind.avkey.Sector">46.5,47.0,-122.0,-121.5</property>
        ...
    </dataDescriptor>

The conversion only goes one way: documents cannot be turned back into descriptors.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from ..exceptions import InvalidConfiguration, RasterValidationError, SourceReadError
from ..production.config import sanitize_name
from ..raster.layer import SampleKind
from ..sector import Sector
from .document import DatasetMetadataDocument

log = logging.getLogger(__name__)

__all__ = [
    "LEGACY_PREFIX",
    "LEGACY_FIELDS",
    "convert_legacy_descriptor",
    "read_legacy_descriptor"
]

LEGACY_PREFIX = "gov.nasa.worldwind.avkey."

# Document fields a legacy descriptor is able to express
LEGACY_FIELDS = (
    "kind",
    "dataset_name",
    "data_cache_name",
    "sector",
    "tile_origin",
    "level_zero_tile_delta",
    "num_levels",
    "tile_width",
    "tile_height",
    "format_suffix",
    "data_type",
    "elevation_min",
    "elevation_max",
    "missing_data_signal"
)

# Legacy key (without prefix) -> document field
_KEY_MAP = {
    "DatasetNameKey": "dataset_name",
    "DataCacheNameKey": "data_cache_name",
    "DatasetTypeKey": "kind",
    "Sector": "sector",
    "TileOrigin": "tile_origin",
    "LevelZeroTileDelta": "level_zero_tile_delta",
    "NumLevels": "num_levels",
    "TileWidthKey": "tile_width",
    "TileHeightKey": "tile_height",
    "FormatSuffixKey": "format_suffix",
    "DataType": "data_type",
    "PixelType": "data_type",
    "ElevationMinKey": "elevation_min",
    "ElevationMaxKey": "elevation_max",
    "MissingDataValue": "missing_data_signal",
    "MissingDataSignal": "missing_data_signal"
}

_KIND_VALUES = {
    "TiledImagery": SampleKind.IMAGE,
    "TiledElevations": SampleKind.SCALAR_GRID
}

_DATA_TYPES = {
    "int8": "int8",
    "uint8": "uint8",
    "byte": "uint8",
    "int16": "int16",
    "uint16": "uint16",
    "int32": "int32",
    "float32": "float32",
    "float64": "float64"
}

def _strip_prefix(value: str) -> str:
    return value[len(LEGACY_PREFIX):] if value.startswith(LEGACY_PREFIX) else value

def _pair(value: Any, key: str) -> Tuple[float, float]:
    if isinstance(value, str):
        value = [v for v in value.replace(";", ",").split(",") if v.strip()]
    if isinstance(value, (int, float)):
        return (float(value), float(value))
    if isinstance(value, Sequence) and len(value) == 2:
        return (float(value[0]), float(value[1]))
    raise InvalidConfiguration(key, f"Legacy value for '{key}' must hold two numbers, got {value!r}")

def _sector(value: Any) -> Sector:
    if isinstance(value, Sector):
        return value
    if isinstance(value, Mapping):
        bounds = {}
        for name, number in value.items():
            for suffix in ("MinLatitude", "MaxLatitude", "MinLongitude", "MaxLongitude"):
                if str(name).lower().endswith(suffix.lower()):
                    bounds[suffix] = number
        try:
            value = [bounds[s] for s in ("MinLatitude", "MaxLatitude", "MinLongitude", "MaxLongitude")]
        except KeyError as e:
            raise InvalidConfiguration("sector", f"Legacy sector is missing {e}") from e
    if isinstance(value, str):
        value = value.split(",")
    try:
        return Sector.from_values(value)
    except (TypeError, ValueError, RasterValidationError) as e:
        raise InvalidConfiguration("sector", f"Invalid legacy sector {value!r}: {e}") from e

def _number(value: Any, key: str) -> Union[int, float]:
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise InvalidConfiguration(key, f"Legacy value for '{key}' must be numeric, got {value!r}") from None

def _data_type(value: Any) -> str:
    name = _strip_prefix(str(value)).lower()
    if name not in _DATA_TYPES:
        raise InvalidConfiguration("data_type", f"Unknown legacy data type '{value}'")
    return _DATA_TYPES[name]

def _kind(value: Any) -> SampleKind:
    if isinstance(value, SampleKind):
        return value
    name = _strip_prefix(str(value))
    if name in _KIND_VALUES:
        return _KIND_VALUES[name]
    try:
        return SampleKind.from_data_kind(name)
    except ValueError as e:
        raise InvalidConfiguration("kind", f"Unknown legacy dataset type '{value}'") from e

def convert_legacy_descriptor(mapping: Mapping[str, Any]) -> DatasetMetadataDocument:
    """
    Build a metadata document from a legacy descriptor map.

    Known keys are remapped to document fields (the legacy MissingDataValue key
    becomes the missing-data signal); unknown keys are dropped. Elevation data
    without extremes receives Earth's extreme elevations.

    Args:
        mapping: Legacy key/value pairs, with or without the 'gov.nasa.worldwind.avkey.' prefix.

    Returns:
        DatasetMetadataDocument: The equivalent document.

    Raises:
        InvalidConfiguration: If a required field is missing or a value cannot be parsed.
    """
    values: Dict[str, Any] = {}
    dropped = []
    for key, value in mapping.items():
        target = _KEY_MAP.get(_strip_prefix(str(key)))
        if target is None:
            dropped.append(key)
            continue
        if value is None:
            continue
        values[target] = value

    if dropped:
        log.debug(f"Dropping unrecognized legacy keys: {sorted(map(str, dropped))}")

    for required in ("dataset_name", "sector", "level_zero_tile_delta", "num_levels",
                     "tile_width", "tile_height"):
        if required not in values:
            raise InvalidConfiguration(required, f"Legacy descriptor has no value for '{required}'")

    kind = _kind(values.get("kind", "TiledImagery"))
    dataset_name = str(values["dataset_name"])
    sector = _sector(values["sector"])

    missing: Optional[Union[int, float]] = None
    if "missing_data_signal" in values:
        missing = _number(values["missing_data_signal"], "missing_data_signal")

    return DatasetMetadataDocument.from_fields(
        kind=kind,
        dataset_name=dataset_name,
        data_cache_name=str(values.get("data_cache_name") or sanitize_name(dataset_name)),
        sector=sector,
        tile_origin=_pair(values["tile_origin"], "tile_origin") if "tile_origin" in values else None,
        level_zero_tile_delta=_pair(values["level_zero_tile_delta"], "level_zero_tile_delta"),
        num_levels=int(_number(values["num_levels"], "num_levels")),
        tile_width=int(_number(values["tile_width"], "tile_width")),
        tile_height=int(_number(values["tile_height"], "tile_height")),
        format_suffix=str(values.get("format_suffix", ".tif")),
        data_type=_data_type(values.get("data_type", "uint8" if kind is SampleKind.IMAGE else "int16")),
        elevation_min=float(_number(values["elevation_min"], "elevation_min")) if "elevation_min" in values else None,
        elevation_max=float(_number(values["elevation_max"], "elevation_max")) if "elevation_max" in values else None,
        missing_data_signal=missing
    )

def _property_value(element: ET.Element) -> Any:
    nested = element.findall("property")
    if nested:
        return {child.get("name"): _property_value(child) for child in nested}
    return (element.text or "").strip()

def read_legacy_descriptor(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Parse a legacy descriptor XML file into a flat key/value map.

    Properties holding nested properties become nested dicts.

    Raises:
        SourceReadError: If the file is missing or is not a legacy descriptor.
    """
    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise SourceReadError(path, f"Failed to parse legacy descriptor {path}: {e}") from e

    if root.tag != "dataDescriptor":
        raise SourceReadError(path, f"{path} is not a legacy descriptor (root <{root.tag}>)")

    return {
        element.get("name"): _property_value(element)
        for element in root.findall("property")
        if element.get("name")
    }
