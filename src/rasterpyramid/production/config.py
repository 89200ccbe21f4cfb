# src/rasterpyramid/production/config.py

"""
This module validates production parameters and loads them from configuration files.

Parameters arrive as a flat mapping (built in code, or read from YAML / JSON).
Recognized keys are validated and converted; unknown keys are kept verbatim in
ProductionParameters.extras for components outside the core.
"""

import json
import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml
from rasterio.enums import Resampling

from ..exceptions import InvalidConfiguration, RasterValidationError
from ..raster.layer import SampleKind
from ..raster.resample import SUPPORTED_RESAMPLING
from ..sector import Sector

log = logging.getLogger(__name__)

__all__ = [
    "ProductionParameters",
    "load_parameters",
    "normalize_reader_params",
    "sanitize_name"
]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

def sanitize_name(name: str) -> str:
    """File-system safe version of a dataset name."""
    cleaned = _UNSAFE_CHARS.sub("_", name.strip()).strip("._")
    return cleaned or "dataset"

def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1", "false", "no", "0"):
        return value.lower() in ("true", "yes", "1")
    raise InvalidConfiguration(key, f"Parameter '{key}' must be a boolean, got {value!r}")

def _as_positive_int(key: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(key, f"Parameter '{key}' must be an integer, got {value!r}") from None
    if number <= 0 or number != float(value):
        raise InvalidConfiguration(key, f"Parameter '{key}' must be a positive integer, got {value!r}")
    return number

def _as_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(key, f"Parameter '{key}' must be a number, got {value!r}") from None

def _as_delta(value: Any) -> Tuple[float, float]:
    key = "level_zero_tile_delta"
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise InvalidConfiguration(key, f"'{key}' needs (lat, lon) degrees, got {value!r}")
        delta = (_as_float(key, value[0]), _as_float(key, value[1]))
    else:
        delta = (_as_float(key, value),) * 2
    if min(delta) <= 0:
        raise InvalidConfiguration(key, f"'{key}' must be positive, got {value!r}")
    return delta

def _as_sector(value: Any) -> Sector:
    if isinstance(value, Sector):
        return value
    try:
        if isinstance(value, Mapping):
            return Sector(
                float(value["min_lat"]), float(value["max_lat"]),
                float(value["min_lon"]), float(value["max_lon"]),
                bool(value.get("crosses_antimeridian", False))
            )
        return Sector.from_values(value)
    except (KeyError, TypeError, ValueError, RasterValidationError) as e:
        raise InvalidConfiguration("sector", f"Invalid sector {value!r}: {e}") from e

def normalize_reader_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy reader parameters, converting a sector given as a list or mapping into a Sector."""
    normalized = dict(params)
    if normalized.get("sector") is not None:
        normalized["sector"] = _as_sector(normalized["sector"])
    return normalized

def _as_resampling(value: Any) -> Resampling:
    if isinstance(value, Resampling):
        method = value
    else:
        try:
            method = Resampling[str(value).lower()]
        except KeyError:
            raise InvalidConfiguration("resampling", f"Unknown resampling '{value}'") from None
    if method not in SUPPORTED_RESAMPLING:
        raise InvalidConfiguration(
            "resampling", f"Resampling '{method.name}' is not supported; use nearest or bilinear"
        )
    return method

@dataclass
class ProductionParameters:
    """
    Validated parameters of one production run.

    Args:
        file_store_location: Directory under which the dataset cache is created.
        dataset_name: Display name of the dataset.
        data_cache_name: Directory name of the dataset cache. Defaults to the sanitized dataset name.
        data_kind: Imagery or elevation. Inferred from the first source when None.
        tile_width: Tile columns in pixels.
        tile_height: Tile rows in pixels.
        level_zero_tile_delta: Level-zero tile extent as (lat, lon) degrees.
        num_levels: Explicit level count.
        tile_format: Tile file suffix ('.tif' or '.png').
        resampling: Kernel used to draw sources into tiles.
        elevation_min: Override of the lowest elevation reported in the metadata.
        elevation_max: Override of the highest elevation reported in the metadata.
        missing_data_signal: Override of the missing-value signal of the tiles.
        max_workers: Threads drawing tiles concurrently.
        allow_upsample: Draw sources into levels finer than their own resolution.
        coarsen: Derive coarser levels from finer ones.
        show_progress: Display progress bars.
        sector: Explicit top sector of the pyramid.
        reader_options: Per-format reader keyword arguments keyed by adapter name.
        extras: Unrecognized keys, passed through untouched.
    """
    file_store_location: Path
    dataset_name: str
    data_cache_name: Optional[str] = None
    data_kind: Optional[SampleKind] = None
    tile_width: Optional[int] = None
    tile_height: Optional[int] = None
    level_zero_tile_delta: Optional[Tuple[float, float]] = None
    num_levels: Optional[int] = None
    tile_format: str = ".tif"
    resampling: Optional[Resampling] = None
    elevation_min: Optional[float] = None
    elevation_max: Optional[float] = None
    missing_data_signal: Optional[Union[float, int]] = None
    max_workers: int = 1
    allow_upsample: bool = False
    coarsen: bool = True
    show_progress: bool = False
    sector: Optional[Sector] = None
    reader_options: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.data_cache_name:
            self.data_cache_name = sanitize_name(self.dataset_name)
        if not self.tile_format.startswith("."):
            self.tile_format = f".{self.tile_format}"
        self.tile_format = self.tile_format.lower()

    @property
    def cache_root(self) -> Path:
        """Directory holding the tile tree and the metadata document."""
        return Path(self.file_store_location) / self.data_cache_name

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> 'ProductionParameters':
        """
        Validate a parameter mapping.

        Args:
            mapping: Parameter names to values.

        Returns:
            ProductionParameters: The validated parameters.

        Raises:
            InvalidConfiguration: Naming the first missing or invalid parameter.
        """
        data = dict(mapping)

        location = data.pop("file_store_location", None)
        if location is None or str(location).strip() == "":
            raise InvalidConfiguration("file_store_location")

        name = data.pop("dataset_name", None)
        if name is None or str(name).strip() == "":
            raise InvalidConfiguration("dataset_name")

        kwargs: Dict[str, Any] = {
            "file_store_location": Path(location),
            "dataset_name": str(name).strip()
        }

        if data.get("data_cache_name") is not None:
            kwargs["data_cache_name"] = sanitize_name(str(data.pop("data_cache_name")))
        if data.get("data_kind") is not None:
            try:
                kwargs["data_kind"] = SampleKind.from_data_kind(data.pop("data_kind"))
            except ValueError as e:
                raise InvalidConfiguration("data_kind", str(e)) from e
        for key in ("tile_width", "tile_height", "num_levels", "max_workers"):
            if data.get(key) is not None:
                kwargs[key] = _as_positive_int(key, data.pop(key))
        for key in ("tile_width", "tile_height"):
            if key in kwargs and kwargs[key] % 2:
                raise InvalidConfiguration(key, f"Parameter '{key}' must be even, got {kwargs[key]}")
        if data.get("level_zero_tile_delta") is not None:
            kwargs["level_zero_tile_delta"] = _as_delta(data.pop("level_zero_tile_delta"))
        if data.get("tile_format") is not None:
            suffix = str(data.pop("tile_format"))
            kwargs["tile_format"] = suffix if suffix.startswith(".") else f".{suffix}"
        if data.get("resampling") is not None:
            kwargs["resampling"] = _as_resampling(data.pop("resampling"))
        for key in ("elevation_min", "elevation_max"):
            if data.get(key) is not None:
                kwargs[key] = _as_float(key, data.pop(key))
        if data.get("missing_data_signal") is not None:
            value = data.pop("missing_data_signal")
            kwargs["missing_data_signal"] = value if isinstance(value, int) else _as_float(
                "missing_data_signal", value
            )
        for key in ("allow_upsample", "coarsen", "show_progress"):
            if data.get(key) is not None:
                kwargs[key] = _as_bool(key, data.pop(key))
        if data.get("sector") is not None:
            kwargs["sector"] = _as_sector(data.pop("sector"))
        if data.get("reader_options") is not None:
            options = data.pop("reader_options")
            if not isinstance(options, Mapping) or not all(isinstance(v, Mapping) for v in options.values()):
                raise InvalidConfiguration(
                    "reader_options", "'reader_options' must map format names to keyword mappings"
                )
            kwargs["reader_options"] = {str(k): normalize_reader_params(v) for k, v in options.items()}

        if ("elevation_min" in kwargs and "elevation_max" in kwargs
                and kwargs["elevation_min"] > kwargs["elevation_max"]):
            raise InvalidConfiguration(
                "elevation_min",
                f"elevation_min {kwargs['elevation_min']} exceeds elevation_max {kwargs['elevation_max']}"
            )

        # Keys consumed above are gone; None-valued known keys fall back to defaults
        known = {f.name for f in fields(cls)}
        kwargs["extras"] = {k: v for k, v in data.items() if k not in known}
        if kwargs["extras"]:
            log.debug(f"Passing through unrecognized production parameters: {sorted(kwargs['extras'])}")

        return cls(**kwargs)

def load_parameters(path: Union[str, Path], base_dir: Optional[Path] = None) -> ProductionParameters:
    """
    Load production parameters from a YAML or JSON file.

    A relative file_store_location is resolved against the directory holding the file.

    Args:
        path: Configuration file (.yaml, .yml or .json).
        base_dir: Directory used to resolve a relative path. Defaults to the working directory.

    Returns:
        ProductionParameters: The validated parameters.

    Raises:
        InvalidConfiguration: If the file cannot be parsed or its parameters are invalid.
    """
    config_path = Path(path)
    if not config_path.is_absolute():
        config_path = ((base_dir or Path.cwd()) / config_path).resolve()

    suffix = config_path.suffix.lower()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            if suffix in {".yaml", ".yml"}:
                payload = yaml.safe_load(handle) or {}
            elif suffix == ".json":
                payload = json.load(handle) or {}
            else:
                raise InvalidConfiguration("config", f"Unsupported configuration format: {suffix}")
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidConfiguration("config", f"Failed to load configuration {config_path}: {e}") from e

    if not isinstance(payload, Mapping):
        raise InvalidConfiguration("config", f"Configuration {config_path} must hold a mapping")

    log.info(f"Loaded production parameters from {config_path}")
    params = ProductionParameters.from_mapping(payload)
    if not params.file_store_location.is_absolute():
        params.file_store_location = config_path.parent / params.file_store_location
    return params
