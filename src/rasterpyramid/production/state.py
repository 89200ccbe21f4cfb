# src/rasterpyramid/production/state.py

"""
This module holds the lifecycle status and the mutable state of one production run.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import ProductionParameters

log = logging.getLogger(__name__)

__all__ = [
    "ProductionStatus",
    "OfferedSource",
    "ProductionState"
]

class ProductionStatus(Enum):
    """
    Lifecycle of a producer.

    Options:
        IDLE: Accepting sources and parameters.
        CONFIGURED: Parameters validated, ready to start.
        PRODUCING: A run is in progress.
        SUCCEEDED: The run completed and results are available.
        FAILED: The run aborted; partial output may remain on disk until rolled back.
    """
    IDLE = "idle"
    CONFIGURED = "configured"
    PRODUCING = "producing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

@dataclass(frozen=True)
class OfferedSource:
    """A data source together with the reader parameters it was offered with."""
    source: Any
    params: Dict[str, Any] = field(default_factory=dict, hash=False)

@dataclass
class ProductionState:
    """
    Everything one production run accumulates.

    Args:
        parameters: Validated parameters, set once configured.
        sources: Offered sources in offer order.
        written_paths: Every path the run created (or is about to create).
        results: Production results, filled on success.
        warnings: Human-readable warnings recorded during the run.
        extremes: (min, max) over all contributing sources.
        data_type: Sample dtype name of the tiles.
        bands: Bands per tile.
        missing_data_signal: Missing-value signal of the tiles.
    """
    parameters: Optional[ProductionParameters] = None
    sources: List[OfferedSource] = field(default_factory=list)
    written_paths: List[Path] = field(default_factory=list)
    results: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    extremes: Optional[Tuple[float, float]] = None
    data_type: Optional[str] = None
    bands: int = 1
    missing_data_signal: Optional[Any] = None
    _seen: set = field(default_factory=set, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_path(self, path: Path):
        """Add a path to the write-set. Safe to call from worker threads."""
        with self._lock:
            if path not in self._seen:
                self._seen.add(path)
                self.written_paths.append(path)

    def record_new_path(self, path: Path):
        """
        Add a path to the write-set unless it existed before the run first touched it.

        Must be called before the file is written.
        """
        with self._lock:
            if path in self._seen:
                return
            if path.exists():
                log.debug(f"Updating existing file {path}; it is not part of the write-set")
                return
            self._seen.add(path)
            self.written_paths.append(path)

    def merge_extremes(self, extremes: Optional[Tuple[float, float]]):
        if extremes is None:
            return
        if self.extremes is None:
            self.extremes = extremes
        else:
            self.extremes = (min(self.extremes[0], extremes[0]), max(self.extremes[1], extremes[1]))

    def reset_run(self):
        """Forget everything produced by a run, keeping sources and parameters."""
        with self._lock:
            self.written_paths = []
            self._seen = set()
        self.results = []
        self.warnings = []
        self.extremes = None
        self.data_type = None
        self.bands = 1
        self.missing_data_signal = None
