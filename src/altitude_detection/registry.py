"""Registry of query shapes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Sequence

import numpy as np
import trimesh

from altitude_detection.contracts import (
    DEFAULT_DIRECTION,
    ResultState,
    ShapeHandle,
    UnknownShapeError,
)
from altitude_detection.geometry import (
    BoundingSphere,
    bounding_sphere,
    normalize_direction,
    to_root_frame,
)

logger = logging.getLogger(__name__)


@dataclass
class ShapeRecord:
    """One registered footprint and its accumulated extremes."""

    handle: ShapeHandle
    direction: np.ndarray  # (3,) unit vector, "down"
    geometry: trimesh.Trimesh  # owned copy, root frame
    sphere: BoundingSphere
    result: ResultState = field(default_factory=ResultState)


class ShapeRegistry:
    """Owns registered shapes. Records are rebuilt, never patched."""

    def __init__(self):
        self._shapes: Dict[ShapeHandle, ShapeRecord] = {}

    def add(
        self,
        geometry,
        direction: Sequence[float] = DEFAULT_DIRECTION,
        transform: Optional[np.ndarray] = None,
        handle: Optional[ShapeHandle] = None,
    ) -> ShapeRecord:
        record = self._build(
            handle or uuid.uuid4().hex,
            geometry,
            normalize_direction(direction),
            transform,
        )
        self._shapes[record.handle] = record
        return record

    def update(
        self,
        handle: ShapeHandle,
        geometry,
        transform: Optional[np.ndarray] = None,
    ) -> ShapeRecord:
        existing = self._shapes.get(handle)
        if existing is None:
            raise UnknownShapeError(f"Shape {handle!r} is not registered")
        # Build before removing so a malformed update leaves the old record in place.
        record = self._build(handle, geometry, existing.direction.copy(), transform)
        del self._shapes[handle]
        self._shapes[handle] = record
        return record

    def delete(self, handle: ShapeHandle) -> bool:
        return self._shapes.pop(handle, None) is not None

    def clear(self) -> int:
        count = len(self._shapes)
        self._shapes.clear()
        return count

    def get(self, handle: ShapeHandle) -> Optional[ShapeRecord]:
        return self._shapes.get(handle)

    def require(self, handle: ShapeHandle) -> ShapeRecord:
        record = self._shapes.get(handle)
        if record is None:
            raise UnknownShapeError(f"Shape {handle!r} is not registered")
        return record

    def __contains__(self, handle) -> bool:
        return handle in self._shapes

    def __len__(self) -> int:
        return len(self._shapes)

    def __iter__(self) -> Iterator[ShapeRecord]:
        return iter(list(self._shapes.values()))

    @staticmethod
    def _build(handle, geometry, direction, transform) -> ShapeRecord:
        mesh = to_root_frame(geometry, transform)
        sphere = bounding_sphere(mesh)
        logger.debug(
            "Shape %s: %d faces, direction %s, radius %.3f",
            handle, len(mesh.faces), np.round(direction, 4).tolist(), sphere.radius,
        )
        return ShapeRecord(handle=handle, direction=direction, geometry=mesh, sphere=sphere)
