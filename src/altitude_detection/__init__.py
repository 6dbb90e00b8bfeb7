"""Public API for min/max altitude detection over streamed tile meshes."""

from altitude_detection.contracts import (
    AltitudeDetectionError,
    DetectionConfig,
    MalformedGeometryError,
    ResultState,
    ScanStats,
    UnknownShapeError,
)
from altitude_detection.engine import AltitudeDetectionEngine
from altitude_detection.geometry import footprint_mesh
from altitude_detection.tiles import TileSet

__all__ = [
    "AltitudeDetectionEngine",
    "AltitudeDetectionError",
    "DetectionConfig",
    "MalformedGeometryError",
    "ResultState",
    "ScanStats",
    "TileSet",
    "UnknownShapeError",
    "footprint_mesh",
]
