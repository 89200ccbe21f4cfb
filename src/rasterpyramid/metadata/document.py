# src/rasterpyramid/metadata/document.py

"""
This module defines the dataset metadata document describing a produced tile pyramid.

The document is a small tree of named nodes serialised as XML. Imagery datasets
use a <Layer> root and elevation datasets an <ElevationModel> root:

    <ElevationModel version="1">
        <DisplayName>...</DisplayName>
        <DataCacheName>...</DataCacheName>
        <Sector><SouthWest><LatLon .../></SouthWest><NorthEast><LatLon .../></NorthEast></Sector>
        <TileOrigin><LatLon .../></TileOrigin>
        <LevelZeroTileDelta><LatLon .../></LevelZeroTileDelta>
        <NumLevels count="..."/>
        <TileSize><Dimension width="..." height="..."/></TileSize>
        <FormatSuffix>.tif</FormatSuffix>
        <DataType type="float32" bands="1"/>
        <ExtremeElevations min="..." max="..."/>
        <MissingData signal="..."/>
    </ElevationModel>
"""

import logging
import math
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..exceptions import SourceReadError, WriteFailure
from ..raster.layer import SampleKind
from ..sector import Sector
from ..tiling.levels import LevelSet

log = logging.getLogger(__name__)

__all__ = [
    "MetadataNode",
    "DatasetMetadataDocument",
    "build_document",
    "read_document",
    "open_document",
    "find_metadata_documents",
    "EARTH_ELEVATION_MIN",
    "EARTH_ELEVATION_MAX"
]

# Deepest ocean trench and highest summit, in meters
EARTH_ELEVATION_MIN = -11000.0
EARTH_ELEVATION_MAX = 8500.0

_ROOT_TAGS = {SampleKind.IMAGE: "Layer", SampleKind.SCALAR_GRID: "ElevationModel"}
_LEGACY_ROOT_TAG = "dataDescriptor"

def _format_number(value: Any) -> str:
    if isinstance(value, float) and math.isnan(value):
        return "NaN"
    if isinstance(value, float) and value.is_integer():
        return repr(value)
    return str(value)

def _parse_number(text: str) -> Union[int, float]:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        return float(text)

@dataclass
class MetadataNode:
    """
    One element of a metadata document.

    Args:
        name: Element name.
        text: Element text, if any.
        attributes: Element attributes.
        children: Child nodes in document order.
    """
    name: str
    text: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List['MetadataNode'] = field(default_factory=list)

    def add(self, name: str, text: Optional[str] = None, **attributes: Any) -> 'MetadataNode':
        """Append a child node and return it."""
        node = MetadataNode(name, text, {k: _format_number(v) for k, v in attributes.items()})
        self.children.append(node)
        return node

    def child(self, name: str) -> Optional['MetadataNode']:
        for node in self.children:
            if node.name == name:
                return node
        return None

    def find(self, path: str) -> Optional['MetadataNode']:
        """Follow a '/'-separated path of child names."""
        node = self
        for part in path.split("/"):
            node = node.child(part)
            if node is None:
                return None
        return node

    def to_element(self) -> ET.Element:
        element = ET.Element(self.name, self.attributes)
        if self.text is not None:
            element.text = self.text
        for node in self.children:
            element.append(node.to_element())
        return element

    @classmethod
    def from_element(cls, element: ET.Element) -> 'MetadataNode':
        text = element.text.strip() if element.text and element.text.strip() else None
        return cls(
            name=element.tag,
            text=text,
            attributes=dict(element.attrib),
            children=[cls.from_element(child) for child in element]
        )

def _latlon(parent: MetadataNode, lat: float, lon: float):
    parent.add("LatLon", latitude=float(lat), longitude=float(lon), units="degrees")

def _read_latlon(root: MetadataNode, path: str) -> Optional[Tuple[float, float]]:
    node = root.find(f"{path}/LatLon")
    if node is None:
        return None
    return (float(node.attributes["latitude"]), float(node.attributes["longitude"]))

class DatasetMetadataDocument:
    """
    Description of a produced tile pyramid, backed by a MetadataNode tree.

    Two documents are equal when their fields (see to_fields) are equal.

    Args:
        root: Root node of the document tree.
    """

    def __init__(self, root: MetadataNode):
        if root.name not in _ROOT_TAGS.values():
            raise ValueError(f"Unknown metadata root '{root.name}'; expected one of {sorted(_ROOT_TAGS.values())}")
        self.root = root

    @classmethod
    def from_fields(
        cls,
        kind: SampleKind,
        dataset_name: str,
        data_cache_name: str,
        sector: Sector,
        level_zero_tile_delta: Tuple[float, float],
        num_levels: int,
        tile_width: int,
        tile_height: int,
        format_suffix: str,
        data_type: str,
        bands: int = 1,
        tile_origin: Optional[Tuple[float, float]] = None,
        elevation_min: Optional[float] = None,
        elevation_max: Optional[float] = None,
        missing_data_signal: Optional[Union[float, int]] = None
    ) -> 'DatasetMetadataDocument':
        """
        Assemble a document from its fields.

        Extremes and the missing-data signal are only recorded for elevation datasets.
        """
        root = MetadataNode(_ROOT_TAGS[kind], attributes={"version": "1"})
        root.add("DisplayName", dataset_name)
        root.add("DataCacheName", data_cache_name)

        sector_node = root.add("Sector")
        _latlon(sector_node.add("SouthWest"), sector.min_lat, sector.min_lon)
        _latlon(sector_node.add("NorthEast"), sector.max_lat, sector.max_lon)

        origin = tile_origin or (sector.min_lat, sector.min_lon)
        _latlon(root.add("TileOrigin"), *origin)
        _latlon(root.add("LevelZeroTileDelta"), *level_zero_tile_delta)

        root.add("NumLevels", count=int(num_levels))
        root.add("TileSize").add("Dimension", width=int(tile_width), height=int(tile_height))
        root.add("FormatSuffix", format_suffix)
        root.add("DataType", type=data_type, bands=int(bands))

        if kind is SampleKind.SCALAR_GRID:
            root.add(
                "ExtremeElevations",
                min=float(EARTH_ELEVATION_MIN if elevation_min is None else elevation_min),
                max=float(EARTH_ELEVATION_MAX if elevation_max is None else elevation_max)
            )
            if missing_data_signal is not None:
                root.add("MissingData", signal=missing_data_signal)

        return cls(root)

    # Field accessors

    @property
    def kind(self) -> SampleKind:
        return SampleKind.IMAGE if self.root.name == _ROOT_TAGS[SampleKind.IMAGE] else SampleKind.SCALAR_GRID

    @property
    def dataset_name(self) -> Optional[str]:
        node = self.root.child("DisplayName")
        return node.text if node is not None else None

    @property
    def data_cache_name(self) -> Optional[str]:
        node = self.root.child("DataCacheName")
        return node.text if node is not None else None

    @property
    def sector(self) -> Optional[Sector]:
        sw = _read_latlon(self.root, "Sector/SouthWest")
        ne = _read_latlon(self.root, "Sector/NorthEast")
        if sw is None or ne is None:
            return None
        return Sector.from_values((sw[0], ne[0], sw[1], ne[1]))

    @property
    def tile_origin(self) -> Optional[Tuple[float, float]]:
        return _read_latlon(self.root, "TileOrigin")

    @property
    def level_zero_tile_delta(self) -> Optional[Tuple[float, float]]:
        return _read_latlon(self.root, "LevelZeroTileDelta")

    @property
    def num_levels(self) -> Optional[int]:
        node = self.root.child("NumLevels")
        return int(node.attributes["count"]) if node is not None else None

    @property
    def tile_size(self) -> Optional[Tuple[int, int]]:
        """Returns (width, height) in pixels."""
        node = self.root.find("TileSize/Dimension")
        if node is None:
            return None
        return (int(node.attributes["width"]), int(node.attributes["height"]))

    @property
    def format_suffix(self) -> Optional[str]:
        node = self.root.child("FormatSuffix")
        return node.text if node is not None else None

    @property
    def data_type(self) -> Optional[str]:
        node = self.root.child("DataType")
        return node.attributes.get("type") if node is not None else None

    @property
    def bands(self) -> int:
        node = self.root.child("DataType")
        return int(node.attributes.get("bands", 1)) if node is not None else 1

    @property
    def extremes(self) -> Optional[Tuple[float, float]]:
        node = self.root.child("ExtremeElevations")
        if node is None:
            return None
        return (float(node.attributes["min"]), float(node.attributes["max"]))

    @property
    def missing_data_signal(self) -> Optional[Union[float, int]]:
        node = self.root.child("MissingData")
        if node is None or "signal" not in node.attributes:
            return None
        return _parse_number(node.attributes["signal"])

    def to_fields(self) -> Dict[str, Any]:
        """Flat mapping of every field the document records."""
        extremes = self.extremes
        tile_size = self.tile_size
        return {
            "kind": self.kind,
            "dataset_name": self.dataset_name,
            "data_cache_name": self.data_cache_name,
            "sector": self.sector,
            "tile_origin": self.tile_origin,
            "level_zero_tile_delta": self.level_zero_tile_delta,
            "num_levels": self.num_levels,
            "tile_width": tile_size[0] if tile_size else None,
            "tile_height": tile_size[1] if tile_size else None,
            "format_suffix": self.format_suffix,
            "data_type": self.data_type,
            "bands": self.bands,
            "elevation_min": extremes[0] if extremes else None,
            "elevation_max": extremes[1] if extremes else None,
            "missing_data_signal": self.missing_data_signal
        }

    # Serialisation

    def to_xml(self) -> str:
        element = self.root.to_element()
        ET.indent(element)
        return ET.tostring(element, encoding="unicode", xml_declaration=True)

    @classmethod
    def from_xml(cls, text: str) -> 'DatasetMetadataDocument':
        return cls(MetadataNode.from_element(ET.fromstring(text)))

    def write(self, path: Union[str, Path]) -> Path:
        """
        Save the document as XML.

        Raises:
            WriteFailure: If the file cannot be written.
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.to_xml(), encoding="utf-8")
        except OSError as e:
            raise WriteFailure(path, f"Failed to write metadata document {path}: {e}") from e
        log.info(f"Metadata document written to {path}")
        return path

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DatasetMetadataDocument):
            return NotImplemented
        return _fields_equal(self.to_fields(), other.to_fields())

    __hash__ = None

    def __repr__(self) -> str:
        return f"<DatasetMetadataDocument {self.root.name} '{self.dataset_name}' levels={self.num_levels}>"

def _fields_equal(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    if a.keys() != b.keys():
        return False
    for key in a:
        x, y = a[key], b[key]
        if isinstance(x, float) and isinstance(y, float) and math.isnan(x) and math.isnan(y):
            continue
        if x != y:
            return False
    return True

def build_document(state, level_set: LevelSet) -> DatasetMetadataDocument:
    """
    Describe a produced pyramid.

    Args:
        state: ProductionState of the run; parameters, data type, bands, extremes
            and missing signal are read from it.
        level_set: Geometry of the produced pyramid.

    Returns:
        DatasetMetadataDocument: The dataset description.
    """
    params = state.parameters
    kind = params.data_kind or SampleKind.SCALAR_GRID

    elevation_min = elevation_max = None
    if kind is SampleKind.SCALAR_GRID:
        if state.extremes is not None:
            elevation_min, elevation_max = state.extremes
        if params.elevation_min is not None:
            elevation_min = params.elevation_min
        if params.elevation_max is not None:
            elevation_max = params.elevation_max

    return DatasetMetadataDocument.from_fields(
        kind=kind,
        dataset_name=params.dataset_name,
        data_cache_name=params.data_cache_name,
        sector=level_set.sector,
        tile_origin=level_set.tile_origin,
        level_zero_tile_delta=level_set.level_zero_tile_delta,
        num_levels=level_set.num_levels,
        tile_width=level_set.tile_width,
        tile_height=level_set.tile_height,
        format_suffix=level_set.format_suffix,
        data_type=state.data_type or "float32",
        bands=state.bands,
        elevation_min=elevation_min,
        elevation_max=elevation_max,
        missing_data_signal=state.missing_data_signal
    )

def _parse_root(path: Path) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise SourceReadError(path, f"Failed to parse metadata document {path}: {e}") from e

def read_document(path: Union[str, Path]) -> DatasetMetadataDocument:
    """
    Load a metadata document written by DatasetMetadataDocument.write.

    Raises:
        SourceReadError: If the file is missing, malformed or not a metadata document.
    """
    path = Path(path)
    root = _parse_root(path)
    try:
        return DatasetMetadataDocument(MetadataNode.from_element(root))
    except ValueError as e:
        raise SourceReadError(path, f"{path} is not a dataset metadata document: {e}") from e

def open_document(path: Union[str, Path]) -> DatasetMetadataDocument:
    """
    Load a metadata document, converting legacy descriptor files on the fly.

    Raises:
        SourceReadError: If the file cannot be read as either format.
    """
    from .legacy import convert_legacy_descriptor, read_legacy_descriptor

    path = Path(path)
    if _parse_root(path).tag == _LEGACY_ROOT_TAG:
        log.info(f"Converting legacy descriptor {path}")
        return convert_legacy_descriptor(read_legacy_descriptor(path))
    return read_document(path)

def _is_metadata_file(path: Path) -> bool:
    try:
        for _, element in ET.iterparse(path, events=("start",)):
            return element.tag in _ROOT_TAGS.values() or element.tag == _LEGACY_ROOT_TAG
    except (OSError, ET.ParseError):
        return False
    return False

def find_metadata_documents(root: Union[str, Path]) -> List[Path]:
    """
    Find metadata documents closest to root.

    Directories are searched breadth first. Once a directory holds a document,
    its subdirectories are not searched.

    Args:
        root: Directory to search.

    Returns:
        List[Path]: Document paths, sorted.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    found: List[Path] = []
    queue = deque([root])
    while queue:
        directory = queue.popleft()
        documents = [p for p in sorted(directory.glob("*.xml")) if p.is_file() and _is_metadata_file(p)]
        if documents:
            found.extend(documents)
            continue
        queue.extend(sorted(p for p in directory.iterdir() if p.is_dir()))

    log.debug(f"Found {len(found)} metadata document(s) under {root}")
    return sorted(found)
