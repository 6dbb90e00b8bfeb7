"""Tests for the shape registry and the tile snapshot store."""

import numpy as np
import pytest
import trimesh

from altitude_detection.contracts import (
    MalformedGeometryError,
    ResultState,
    UnknownShapeError,
)
from altitude_detection.registry import ShapeRegistry
from altitude_detection.snapshots import SnapshotStore
from conftest import DOWN_Y, flat_quad, flat_triangle, footprint_disk


class TestShapeRegistry:

    def test_add_builds_sphere_and_sentinels(self):
        registry = ShapeRegistry()
        record = registry.add(footprint_disk(radius=50.0, thickness=2.0), (0.0, -3.0, 0.0))

        assert np.allclose(record.direction, DOWN_Y)
        assert np.allclose(record.sphere.center, [0.0, 100.0, 0.0], atol=1e-6)
        assert record.sphere.radius == pytest.approx(np.hypot(50.0, 1.0), rel=1e-3)
        assert record.result.min_altitude == np.inf
        assert record.result.max_altitude == -np.inf
        assert record.handle in registry

    def test_handles_are_unique(self):
        registry = ShapeRegistry()
        handles = {registry.add(footprint_disk(), DOWN_Y).handle for _ in range(5)}
        assert len(handles) == 5
        assert len(registry) == 5

    def test_update_replaces_record_with_fresh_result(self):
        registry = ShapeRegistry()
        record = registry.add(footprint_disk(), DOWN_Y)
        record.result.min_altitude = 3.0

        replaced = registry.update(record.handle, footprint_disk(radius=10.0))

        assert replaced is not record
        assert replaced.handle == record.handle
        assert replaced.result.min_altitude == np.inf
        assert replaced.sphere.radius < record.sphere.radius
        assert registry.get(record.handle) is replaced

    def test_malformed_update_keeps_old_record(self):
        registry = ShapeRegistry()
        record = registry.add(footprint_disk(), DOWN_Y)

        with pytest.raises(MalformedGeometryError):
            registry.update(record.handle, trimesh.Trimesh())
        assert registry.get(record.handle) is record

    def test_update_unknown_handle(self):
        registry = ShapeRegistry()
        registry.add(footprint_disk(), DOWN_Y)

        with pytest.raises(UnknownShapeError):
            registry.update("nope", footprint_disk())
        with pytest.raises(KeyError):
            registry.require("nope")
        assert len(registry) == 1

    def test_add_with_transform(self):
        registry = ShapeRegistry()
        transform = trimesh.transformations.translation_matrix([10.0, 0.0, 0.0])
        record = registry.add(footprint_disk(), DOWN_Y, transform)
        assert record.sphere.center[0] == pytest.approx(10.0)


class TestSnapshotStore:

    def test_capture_copies_geometry(self):
        store = SnapshotStore()
        live = flat_triangle(10.0)
        snapshot = store.capture("a", live)

        live.vertices[:, 1] += 50.0
        assert np.allclose(snapshot.vertices[:, 1], 10.0)
        assert snapshot.face_normals.shape == (1, 3)
        assert snapshot.mesh is not live

    def test_recapture_replaces_and_keeps_single_entry(self):
        store = SnapshotStore()
        store.capture("a", flat_triangle(10.0))
        snapshot = store.capture("a", flat_quad(3.0))

        assert len(store) == 1
        assert store.get("a") is snapshot
        assert len(snapshot.faces) == 2

    def test_release(self):
        store = SnapshotStore()
        store.capture("a", flat_triangle(10.0))

        assert store.release("a")
        assert not store.release("a")
        assert "a" not in store

    def test_iteration_in_capture_order(self):
        store = SnapshotStore()
        for tile_id in ("c", "a", "b"):
            store.capture(tile_id, flat_triangle(1.0))
        assert [s.tile_id for s in store] == ["c", "a", "b"]

    @pytest.mark.parametrize(
        "geometry",
        [
            None,
            trimesh.Trimesh(),
            trimesh.Scene(),
            trimesh.Trimesh(vertices=[[0, 0, 0], [1, 0, 0]], faces=[[0, 1, 5]], process=False),
        ],
    )
    def test_malformed_capture(self, geometry):
        store = SnapshotStore()
        with pytest.raises(MalformedGeometryError):
            store.capture("bad", geometry)
        assert "bad" not in store


def test_result_state_copy_is_independent():
    state = ResultState()
    state.min_altitude = 1.0
    state.min_point = np.array([0.0, 1.0, 0.0])

    copy = state.copy()
    copy.min_point[1] = 99.0
    assert state.min_point[1] == 1.0
    assert not ResultState().has_hit
