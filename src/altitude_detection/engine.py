"""
Altitude extremum detection engine.

Plugs into a tile streaming host (see ``altitude_detection.tiles``):
snapshots tiles as they become available, drops them when they are
discarded, and on every "update-after" signal recomputes the minimum and
maximum surface altitude under each registered shape when anything changed.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import numpy as np

from altitude_detection.contracts import (
    DEFAULT_DIRECTION,
    DetectionConfig,
    MalformedGeometryError,
    ResultState,
    ScanStats,
    ShapeHandle,
    TileId,
)
from altitude_detection.dispatch import (
    DispatchCallbacks,
    DispatchQueue,
    ExtremeCallback,
    RangeCallback,
)
from altitude_detection.registry import ShapeRecord, ShapeRegistry
from altitude_detection.scan import scan_tile
from altitude_detection.snapshots import SnapshotStore, TileSnapshot

logger = logging.getLogger(__name__)

UPDATE_AFTER_EVENT = "update-after"


class AltitudeDetectionEngine:
    """Tracks min/max surface altitude under registered shapes."""

    # Runs before any flattening plugin that reshapes the same meshes.
    name = "ALTITUDE_DETECTION_PLUGIN"
    priority = -1000

    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        on_min_altitude_change: Optional[ExtremeCallback] = None,
        on_max_altitude_change: Optional[ExtremeCallback] = None,
        on_altitude_change: Optional[RangeCallback] = None,
    ):
        self.config = config or DetectionConfig()
        self.shapes = ShapeRegistry()
        self.snapshots = SnapshotStore()
        self.dispatcher = DispatchQueue(DispatchCallbacks(
            on_min_altitude_change=on_min_altitude_change,
            on_max_altitude_change=on_max_altitude_change,
            on_altitude_change=on_altitude_change,
        ))
        self.dirty = True
        self.tiles = None
        self.last_pass_stats: Optional[ScanStats] = None
        self.pass_count = 0

    # ── Host hooks ──────────────────────────────────────────────────────────

    def init(self, tiles) -> None:
        self.tiles = tiles
        tiles.add_event_listener(UPDATE_AFTER_EVENT, self.update_after)

    def process_tile_model(
        self,
        mesh,
        tile_id: TileId,
        transform: Optional[np.ndarray] = None,
    ) -> Optional[TileSnapshot]:
        """Snapshot a newly available tile and fold it into current results.

        A tile that cannot be captured is logged and excluded until a later
        capture succeeds.
        """
        try:
            snapshot = self.capture(tile_id, mesh, transform)
        except MalformedGeometryError as exc:
            logger.warning("Skipping tile %r: %s", tile_id, exc)
            return None

        stats = ScanStats()
        for record in self.shapes:
            stats.merge(self._scan(snapshot, record))
        self.dispatcher.drain(self.shapes)
        logger.debug("Partial scan of tile %r: %s", tile_id, stats.to_dict())
        return snapshot

    def dispose_tile(self, tile_id: TileId) -> bool:
        return self.release(tile_id)

    def dispose(self) -> None:
        if self.tiles is not None:
            self.tiles.remove_event_listener(UPDATE_AFTER_EVENT, self.update_after)
            self.tiles = None
        self.dispatcher.clear()
        self.snapshots.clear()

    # ── Snapshots ───────────────────────────────────────────────────────────

    def capture(
        self,
        tile_id: TileId,
        mesh,
        transform: Optional[np.ndarray] = None,
    ) -> TileSnapshot:
        """Store a copy of *mesh* for *tile_id*. Raises MalformedGeometryError."""
        had_snapshot = tile_id in self.snapshots
        try:
            snapshot = self.snapshots.capture(tile_id, mesh, transform)
        except MalformedGeometryError:
            if had_snapshot:
                self.dirty = True
            raise
        self.dirty = True
        return snapshot

    def release(self, tile_id: TileId) -> bool:
        released = self.snapshots.release(tile_id)
        if released:
            self.dirty = True
        return released

    # ── Shapes ──────────────────────────────────────────────────────────────

    def has_shape(self, handle: ShapeHandle) -> bool:
        return handle in self.shapes

    def add_shape(
        self,
        geometry,
        direction: Sequence[float] = DEFAULT_DIRECTION,
        transform: Optional[np.ndarray] = None,
    ) -> ShapeHandle:
        record = self.shapes.add(geometry, direction, transform)
        self.dirty = True
        return record.handle

    def update_shape(
        self,
        handle: ShapeHandle,
        geometry,
        transform: Optional[np.ndarray] = None,
    ) -> None:
        """Replace the geometry of *handle*. Raises UnknownShapeError."""
        self.shapes.update(handle, geometry, transform)
        self.dirty = True

    def delete_shape(self, handle: ShapeHandle) -> bool:
        if not self.shapes.delete(handle):
            return False
        self.dirty = True
        return True

    def clear_shapes(self) -> None:
        if self.shapes.clear():
            self.dirty = True

    def get_result(self, handle: ShapeHandle) -> ResultState:
        return self.shapes.require(handle).result.copy()

    # ── Passes ──────────────────────────────────────────────────────────────

    def update_after(self, *_args) -> Optional[ScanStats]:
        """Run a full pass if anything changed since the last one."""
        if not self.dirty:
            return None

        start = time.perf_counter()
        for record in self.shapes:
            record.result.reset()

        stats = ScanStats()
        for snapshot in self.snapshots:
            for record in self.shapes:
                stats.merge(self._scan(snapshot, record))

        self.dirty = False
        self.pass_count += 1
        self.last_pass_stats = stats
        logger.debug(
            "Pass %d: %d tiles x %d shapes in %.1f ms %s",
            self.pass_count,
            len(self.snapshots),
            len(self.shapes),
            (time.perf_counter() - start) * 1000.0,
            stats.to_dict(),
        )

        self.dispatcher.drain(self.shapes)
        return stats

    def _scan(self, snapshot: TileSnapshot, record: ShapeRecord) -> ScanStats:
        return scan_tile(snapshot, record, self.config, on_update=self.dispatcher.schedule)
