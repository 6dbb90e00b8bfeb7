"""
Shared test fixtures for altitude detection tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

DOWN_Y = (0.0, -1.0, 0.0)

# Off-axis corners so no sample lies on a footprint triangle edge.
TRIANGLE_XZ = [(-12.0, -7.0), (9.0, -11.0), (2.0, 13.0)]


def flat_triangle(altitude: float, offset_xz=(0.0, 0.0)) -> trimesh.Trimesh:
    """One horizontal triangle at y = altitude."""
    ox, oz = offset_xz
    vertices = [[x + ox, altitude, z + oz] for x, z in TRIANGLE_XZ]
    return trimesh.Trimesh(vertices=vertices, faces=[[0, 1, 2]], process=False)


def flat_quad(altitude: float, half_size: float = 15.0, center_xz=(0.0, 0.0)) -> trimesh.Trimesh:
    """Two horizontal triangles sharing an edge, at y = altitude."""
    cx, cz = center_xz
    h = half_size
    vertices = [
        [cx - h + 0.3, altitude, cz - h + 0.7],
        [cx + h - 0.2, altitude, cz - h + 0.1],
        [cx + h - 0.6, altitude, cz + h - 0.4],
        [cx - h + 0.5, altitude, cz + h - 0.9],
    ]
    faces = [[0, 1, 2], [0, 2, 3]]
    return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


def ramp(low: float, high: float, steps: int = 6) -> trimesh.Trimesh:
    """Strip of triangles descending from *high* at x=-20 to *low* at x=+20."""
    xs = np.linspace(-20.0, 20.0, steps + 1)
    ys = np.linspace(high, low, steps + 1)
    vertices = []
    for x, y in zip(xs, ys):
        vertices.append([x + 0.13, y, -8.7])
        vertices.append([x + 0.29, y, 9.1])
    faces = []
    for i in range(steps):
        a, b = 2 * i, 2 * i + 1
        c, d = 2 * i + 2, 2 * i + 3
        faces.append([a, b, c])
        faces.append([b, d, c])
    return trimesh.Trimesh(vertices=np.array(vertices), faces=np.array(faces), process=False)


def footprint_disk(
    radius: float = 50.0,
    center=(0.0, 100.0, 0.0),
    direction=DOWN_Y,
    thickness: float = 2.0,
) -> trimesh.Trimesh:
    """Thin cylinder whose axis follows *direction*."""
    transform = trimesh.geometry.align_vectors([0.0, 0.0, 1.0], direction)
    transform[:3, 3] = center
    return trimesh.creation.cylinder(
        radius=radius,
        height=thickness,
        sections=64,
        transform=transform,
    )


class CallbackRecorder:
    """Collects (altitude, point, handle) callback invocations."""

    def __init__(self):
        self.calls = []

    def __call__(self, altitude, point, handle):
        self.calls.append((altitude, np.asarray(point), handle))

    @property
    def altitudes(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def min_calls():
    return CallbackRecorder()


@pytest.fixture
def max_calls():
    return CallbackRecorder()


@pytest.fixture
def engine(min_calls, max_calls):
    from altitude_detection import AltitudeDetectionEngine

    return AltitudeDetectionEngine(
        on_min_altitude_change=min_calls,
        on_max_altitude_change=max_calls,
    )


@pytest.fixture
def disk():
    return footprint_disk()
