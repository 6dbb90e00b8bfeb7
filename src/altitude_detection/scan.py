"""
Extremum scan for one (tile snapshot, shape) pair.

The scan culls the pair by projected bounding spheres, drops skirt triangles,
samples the surviving triangles (deduplicated vertices or centroids), skips
samples that cannot move either extreme, and confirms the rest with a
containment ray against the shape. Samples are processed in batches so the
early-exit bound tightens as the scan progresses.
"""

from __future__ import annotations

from typing import Callable, Optional, Tuple

import numpy as np
import trimesh

from altitude_detection.contracts import DetectionConfig, ResultState, ScanStats
from altitude_detection.geometry import altitude_of, spheres_overlap_along
from altitude_detection.registry import ShapeRecord
from altitude_detection.snapshots import TileSnapshot

UpdateHook = Callable[[ShapeRecord], None]

# Altitude slack when comparing a surface hit with the sample it refines.
SURFACE_TOLERANCE = 1e-6


def scan_tile(
    snapshot: TileSnapshot,
    record: ShapeRecord,
    config: DetectionConfig,
    on_update: Optional[UpdateHook] = None,
) -> ScanStats:
    """Fold the samples of *snapshot* that fall under *record* into its result.

    *on_update* is called with the record after every batch that moved an
    extreme.
    """
    stats = ScanStats(pairs=1)
    direction = record.direction

    if not spheres_overlap_along(snapshot.sphere, record.sphere, direction):
        stats.pairs_culled = 1
        return stats

    samples, source_faces = _select_samples(snapshot.mesh, direction, config, stats)
    if len(samples) == 0:
        return stats

    altitudes = altitude_of(samples, direction)
    result = record.result
    batch = config.sample_batch_size

    for start in range(0, len(samples), batch):
        points = samples[start:start + batch]
        faces = source_faces[start:start + batch]
        sample_altitudes = altitudes[start:start + batch]

        # Anything strictly between the current extremes cannot improve them.
        open_mask = (sample_altitudes <= result.min_altitude) | (
            sample_altitudes >= result.max_altitude
        )
        stats.samples_skipped += int(len(points) - np.count_nonzero(open_mask))
        if not open_mask.any():
            continue
        points = points[open_mask]
        faces = faces[open_mask]

        origins = points + direction * config.raycast_distance
        ray_directions = np.tile(-direction, (len(points), 1))

        stats.raycasts += len(points)
        inside = record.geometry.ray.intersects_any(
            ray_origins=origins,
            ray_directions=ray_directions,
        )
        if not np.any(inside):
            continue
        points = points[inside]
        faces = faces[inside]

        if config.follow_surface:
            stats.raycasts += len(points)
            points, rejected = _follow_surface(
                snapshot.mesh,
                points,
                faces,
                origins[inside],
                ray_directions[inside],
                direction,
                config.surface_min_dot,
            )
            stats.surface_rejected += rejected
            if len(points) == 0:
                continue

        stats.hits += len(points)
        if _fold_extremes(result, points, altitude_of(points, direction), stats):
            if on_update is not None:
                on_update(record)

    return stats


def _select_samples(
    mesh: trimesh.Trimesh,
    direction: np.ndarray,
    config: DetectionConfig,
    stats: ScanStats,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (samples, source_face_index) for the non-skirt triangles."""
    faces = mesh.faces
    stats.triangles = len(faces)

    facing = np.abs(mesh.face_normals @ direction)
    keep = facing >= config.skirt_dot_threshold
    stats.skirts_rejected = int(len(faces) - np.count_nonzero(keep))
    if not keep.any():
        return np.zeros((0, 3)), np.zeros(0, dtype=np.int64)

    kept_faces = np.nonzero(keep)[0]
    if config.use_centroids:
        samples = mesh.triangles_center[keep]
        sources = kept_faces
    else:
        # Each shared vertex once, in first-visit triangle order.
        visited = faces[keep].reshape(-1)
        _, first = np.unique(visited, return_index=True)
        first = np.sort(first)
        samples = mesh.vertices[visited[first]]
        sources = np.repeat(kept_faces, 3)[first]

    samples = np.asarray(samples, dtype=np.float64)
    stats.samples = len(samples)
    return samples, np.asarray(sources, dtype=np.int64)


def _follow_surface(
    mesh: trimesh.Trimesh,
    samples: np.ndarray,
    source_faces: np.ndarray,
    origins: np.ndarray,
    ray_directions: np.ndarray,
    direction: np.ndarray,
    min_dot: float,
) -> Tuple[np.ndarray, int]:
    """Replace samples with the first tile surface met from each origin.

    Every sample lies on the tile, so a ray that misses or only hits past the
    sample has slipped through a vertex or edge; the sample and the triangle
    it came from stand in for the hit. Points on a face steeper than
    *min_dot* allows are discarded. Returns (points, rejected_count).
    """
    points = samples.copy()
    faces = source_faces.copy()

    locations, index_ray, index_tri = mesh.ray.intersects_location(
        ray_origins=origins,
        ray_directions=ray_directions,
        multiple_hits=False,
    )
    index_ray = np.asarray(index_ray, dtype=np.int64)
    if len(index_ray) > 0:
        locations = np.asarray(locations, dtype=np.float64)
        index_tri = np.asarray(index_tri, dtype=np.int64)
        # Rays travel toward increasing altitude.
        reached = altitude_of(locations, direction) <= (
            altitude_of(samples[index_ray], direction) + SURFACE_TOLERANCE
        )
        points[index_ray[reached]] = locations[reached]
        faces[index_ray[reached]] = index_tri[reached]

    flat_enough = np.abs(mesh.face_normals[faces] @ direction) >= min_dot
    return points[flat_enough], int(len(points) - np.count_nonzero(flat_enough))


def _fold_extremes(
    result: ResultState,
    points: np.ndarray,
    altitudes: np.ndarray,
    stats: ScanStats,
) -> bool:
    changed = False

    low = int(np.argmin(altitudes))
    if altitudes[low] < result.min_altitude:
        result.min_altitude = float(altitudes[low])
        result.min_point = points[low].copy()
        result.min_pending = True
        stats.min_updates += 1
        changed = True

    high = int(np.argmax(altitudes))
    if altitudes[high] > result.max_altitude:
        result.max_altitude = float(altitudes[high])
        result.max_point = points[high].copy()
        result.max_pending = True
        stats.max_updates += 1
        changed = True

    return changed
