"""Contracts for the altitude extremum detection engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Hashable, Mapping, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]
ShapeHandle = str
TileId = Hashable

# Canonical "down" in the tile set root frame.
DEFAULT_DIRECTION: Vec3 = (0.0, 0.0, -1.0)
RAYCAST_DISTANCE = 1e5


class AltitudeDetectionError(Exception):
    """Base exception for altitude detection errors."""
    pass


class UnknownShapeError(AltitudeDetectionError, KeyError):
    """Handle does not refer to a registered shape."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class MalformedGeometryError(AltitudeDetectionError, ValueError):
    """Geometry is missing connectivity, normals or finite positions."""
    pass


@dataclass(frozen=True)
class DetectionConfig:
    """Scan configuration, fixed for the lifetime of an engine."""

    skirt_dot_threshold: float = 0.1  # |normal . direction| below this is a skirt
    surface_angle_threshold_deg: float = 45.0
    use_centroids: bool = False
    follow_surface: bool = False
    raycast_distance: float = RAYCAST_DISTANCE
    sample_batch_size: int = 2048

    def __post_init__(self):
        if not 0.0 <= self.skirt_dot_threshold <= 1.0:
            raise ValueError("skirt_dot_threshold must be in [0, 1]")
        if not 0.0 <= self.surface_angle_threshold_deg <= 90.0:
            raise ValueError("surface_angle_threshold_deg must be in [0, 90]")
        if self.raycast_distance <= 0.0:
            raise ValueError("raycast_distance must be positive")
        if self.sample_batch_size < 1:
            raise ValueError("sample_batch_size must be >= 1")

    @property
    def surface_min_dot(self) -> float:
        return math.cos(math.radians(self.surface_angle_threshold_deg))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DetectionConfig":
        """Build a config from a JSON-like mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown detection config keys: {', '.join(unknown)}")
        return cls(**dict(values))


def _nan_point() -> np.ndarray:
    return np.full(3, np.nan)


@dataclass
class ResultState:
    """Accumulated extremes for one shape within the current pass.

    Points are only meaningful once the matching pending flag has been set
    during the pass (or the altitude left its sentinel).
    """

    min_altitude: float = math.inf
    min_point: np.ndarray = field(default_factory=_nan_point)
    min_pending: bool = False
    max_altitude: float = -math.inf
    max_point: np.ndarray = field(default_factory=_nan_point)
    max_pending: bool = False
    dispatch_scheduled: bool = False

    def reset(self) -> None:
        self.min_altitude = math.inf
        self.max_altitude = -math.inf
        self.min_pending = False
        self.max_pending = False

    @property
    def has_hit(self) -> bool:
        return math.isfinite(self.min_altitude) and math.isfinite(self.max_altitude)

    def copy(self) -> "ResultState":
        return ResultState(
            min_altitude=self.min_altitude,
            min_point=self.min_point.copy(),
            min_pending=self.min_pending,
            max_altitude=self.max_altitude,
            max_point=self.max_point.copy(),
            max_pending=self.max_pending,
            dispatch_scheduled=self.dispatch_scheduled,
        )


@dataclass
class ScanStats:
    """Counters for one (tile, shape) scan or an accumulated pass."""

    pairs: int = 0
    pairs_culled: int = 0
    triangles: int = 0
    skirts_rejected: int = 0
    samples: int = 0
    samples_skipped: int = 0
    raycasts: int = 0
    hits: int = 0
    surface_rejected: int = 0
    min_updates: int = 0
    max_updates: int = 0

    def merge(self, other: "ScanStats") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> Dict[str, int]:
        return {f.name: int(getattr(self, f.name)) for f in fields(self)}
