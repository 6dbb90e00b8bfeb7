"""
Geometry helpers for the altitude detection engine.

Everything here works in the tile set's root frame. Provides:
1. Flattening a mesh or scene into a single root-frame Trimesh copy.
2. Validation of connectivity and positions before geometry is accepted.
3. Bounding spheres and the direction-projected sphere overlap test.
4. Planar footprint meshes built from Shapely polygons.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import trimesh
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import triangulate

from altitude_detection.contracts import MalformedGeometryError


@dataclass(frozen=True)
class BoundingSphere:
    center: np.ndarray  # (3,)
    radius: float


def to_root_frame(geometry, transform: Optional[np.ndarray] = None) -> trimesh.Trimesh:
    """Return an independent Trimesh of *geometry* in the root frame.

    Scenes are flattened with their graph transforms baked in. *transform*
    is an optional 4x4 matrix applied afterwards (e.g. the inverse of the
    tile set's world matrix). The input is never modified.
    """
    if isinstance(geometry, trimesh.Scene):
        mesh = _flatten_scene(geometry)
    elif isinstance(geometry, trimesh.Trimesh):
        mesh = trimesh.Trimesh(
            vertices=np.array(geometry.vertices, dtype=np.float64),
            faces=np.array(geometry.faces, dtype=np.int64),
            process=False,
        )
    else:
        raise MalformedGeometryError(
            f"Expected trimesh.Trimesh or trimesh.Scene, got {type(geometry).__name__}"
        )

    validate_mesh(mesh)

    if transform is not None:
        matrix = np.asarray(transform, dtype=np.float64)
        if matrix.shape != (4, 4) or not np.all(np.isfinite(matrix)):
            raise MalformedGeometryError("transform must be a finite 4x4 matrix")
        mesh.apply_transform(matrix)

    # Populate the normal caches while the copy is still private.
    _ = mesh.face_normals
    _ = mesh.vertex_normals
    return mesh


def validate_mesh(mesh: trimesh.Trimesh) -> None:
    """Raise MalformedGeometryError unless *mesh* is a usable triangle mesh."""
    vertices = np.asarray(mesh.vertices)
    faces = np.asarray(mesh.faces)

    if vertices.ndim != 2 or vertices.shape[1] != 3 or len(vertices) == 0:
        raise MalformedGeometryError("Mesh has no vertex positions")
    if faces.ndim != 2 or faces.shape[1] != 3 or len(faces) == 0:
        raise MalformedGeometryError("Mesh has no triangle connectivity")
    if faces.min() < 0 or faces.max() >= len(vertices):
        raise MalformedGeometryError("Mesh faces reference missing vertices")
    if not np.all(np.isfinite(vertices)):
        raise MalformedGeometryError("Mesh has non-finite vertex positions")


def _flatten_scene(scene: trimesh.Scene) -> trimesh.Trimesh:
    parts = []
    for node_name in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node_name]
        geometry = scene.geometry.get(geometry_name)
        if not isinstance(geometry, trimesh.Trimesh) or len(geometry.faces) == 0:
            continue
        part = trimesh.Trimesh(
            vertices=np.array(geometry.vertices, dtype=np.float64),
            faces=np.array(geometry.faces, dtype=np.int64),
            process=False,
        )
        part.apply_transform(transform)
        parts.append(part)

    if not parts:
        raise MalformedGeometryError("Scene contains no triangle meshes")
    if len(parts) == 1:
        return parts[0]
    return trimesh.util.concatenate(parts)


def bounding_sphere(mesh: trimesh.Trimesh) -> BoundingSphere:
    """Sphere centred on the AABB centre that encloses every vertex."""
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    center = 0.5 * (vertices.min(axis=0) + vertices.max(axis=0))
    radius = float(np.sqrt(np.max(np.sum((vertices - center) ** 2, axis=1))))
    return BoundingSphere(center=center, radius=radius)


def normalize_direction(direction: Sequence[float]) -> np.ndarray:
    vec = np.asarray(direction, dtype=np.float64).reshape(-1)
    if vec.shape != (3,) or not np.all(np.isfinite(vec)):
        raise MalformedGeometryError("direction must be a finite 3D vector")
    length = float(np.linalg.norm(vec))
    if length < 1e-12:
        raise MalformedGeometryError("direction must be non-zero")
    return vec / length


def spheres_overlap_along(
    a: BoundingSphere,
    b: BoundingSphere,
    direction: np.ndarray,
) -> bool:
    """True if the spheres overlap once projected onto the plane orthogonal to *direction*."""
    delta = a.center - b.center
    delta = delta - direction * float(np.dot(direction, delta))
    reach = a.radius + b.radius
    return float(np.dot(delta, delta)) <= reach * reach


def altitude_of(points: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Signed altitude of *points* measured against *direction* (``-p . d``)."""
    return -(np.asarray(points, dtype=np.float64) @ direction)


def plane_axes(direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Right-handed (u, v) axes spanning the plane orthogonal to unit *direction*.

    The world axis least aligned with *direction* seeds u, so the footprint
    keeps a stable orientation for axis-aligned directions.
    """
    seed = np.zeros(3)
    seed[int(np.argmin(np.abs(direction)))] = 1.0
    u = seed - direction * np.dot(seed, direction)
    u /= np.linalg.norm(u)
    return u, np.cross(direction, u)


def footprint_mesh(
    polygon,
    direction: Sequence[float],
    offset: float = 0.0,
) -> trimesh.Trimesh:
    """Build a planar shape mesh from a 2D footprint polygon.

    The polygon's (x, y) coordinates are laid out on the (u, v) basis of the
    plane orthogonal to *direction*; the plane sits at altitude *offset*.
    Only the largest part of a MultiPolygon is used.
    """
    if isinstance(polygon, MultiPolygon):
        polygon = max(polygon.geoms, key=lambda g: g.area)
    if not isinstance(polygon, Polygon) or polygon.is_empty or not polygon.is_valid:
        raise MalformedGeometryError("Footprint must be a valid, non-empty polygon")

    n = normalize_direction(direction)
    u_axis, v_axis = plane_axes(n)

    vertices = []
    faces = []
    for tri in triangulate(polygon):
        if tri.is_empty or tri.area <= 1e-9:
            continue
        if not polygon.covers(tri.representative_point()):
            continue
        base = len(vertices)
        for x, y in list(tri.exterior.coords)[:3]:
            vertices.append(x * u_axis + y * v_axis - offset * n)
        faces.append([base, base + 1, base + 2])

    if not faces:
        raise MalformedGeometryError("Footprint polygon produced no triangles")

    return trimesh.Trimesh(
        vertices=np.asarray(vertices, dtype=np.float64),
        faces=np.asarray(faces, dtype=np.int64),
        process=True,
    )
