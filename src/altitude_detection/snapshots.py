"""Point-in-time copies of streamed tile meshes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

import numpy as np
import trimesh

from altitude_detection.contracts import TileId
from altitude_detection.geometry import BoundingSphere, bounding_sphere, to_root_frame

logger = logging.getLogger(__name__)


@dataclass
class TileSnapshot:
    """Baseline copy of one tile's surface in the root frame.

    The mesh is private to the store; nothing outside the engine holds a
    reference to it, so in-place edits to the live tile never reach a scan.
    """

    tile_id: TileId
    mesh: trimesh.Trimesh
    sphere: BoundingSphere

    @property
    def vertices(self) -> np.ndarray:
        return self.mesh.vertices

    @property
    def faces(self) -> np.ndarray:
        return self.mesh.faces

    @property
    def face_normals(self) -> np.ndarray:
        return self.mesh.face_normals


class SnapshotStore:
    """Tile id -> TileSnapshot, kept in capture order."""

    def __init__(self):
        self._snapshots: Dict[TileId, TileSnapshot] = {}

    def capture(
        self,
        tile_id: TileId,
        mesh,
        transform: Optional[np.ndarray] = None,
    ) -> TileSnapshot:
        """Store a deep copy of *mesh* for *tile_id*, replacing any previous one.

        Raises MalformedGeometryError and leaves no snapshot for *tile_id*
        when the mesh cannot be used.
        """
        try:
            copy = to_root_frame(mesh, transform)
        except Exception:
            self._snapshots.pop(tile_id, None)
            raise

        snapshot = TileSnapshot(tile_id=tile_id, mesh=copy, sphere=bounding_sphere(copy))
        self._snapshots.pop(tile_id, None)
        self._snapshots[tile_id] = snapshot
        logger.debug(
            "Captured tile %r: %d vertices, %d faces, radius %.3f",
            tile_id, len(copy.vertices), len(copy.faces), snapshot.sphere.radius,
        )
        return snapshot

    def release(self, tile_id: TileId) -> bool:
        if self._snapshots.pop(tile_id, None) is None:
            return False
        logger.debug("Released tile %r", tile_id)
        return True

    def get(self, tile_id: TileId) -> Optional[TileSnapshot]:
        return self._snapshots.get(tile_id)

    def clear(self) -> None:
        self._snapshots.clear()

    def __contains__(self, tile_id) -> bool:
        return tile_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> Iterator[TileSnapshot]:
        return iter(list(self._snapshots.values()))
