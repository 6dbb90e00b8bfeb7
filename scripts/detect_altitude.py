#!/usr/bin/env python3
"""
Report the min/max surface altitude under a footprint.

Loads one or more tile meshes, registers a footprint (a polygon in JSON or a
shape mesh file), runs a single detection pass and prints the extremes.

Usage:
    python scripts/detect_altitude.py --tile a.glb --tile b.glb --footprint footprint.json
    python scripts/detect_altitude.py --tile terrain.ply --shape region.stl --direction 0 -1 0
    python scripts/detect_altitude.py --tile terrain.obj --footprint fp.json --follow-surface --output result.json
"""
import sys
import json
import argparse
import logging
import math
from collections import Counter
from pathlib import Path

import trimesh
from shapely.geometry import Polygon, shape

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from altitude_detection import (
    AltitudeDetectionEngine,
    AltitudeDetectionError,
    DetectionConfig,
    TileSet,
    footprint_mesh,
)

logger = logging.getLogger("detect_altitude")


def _load_footprint(path: Path) -> Polygon:
    """Read a GeoJSON-like geometry or a bare list of (x, y) pairs."""
    payload = json.loads(path.read_text())
    if isinstance(payload, dict):
        return shape(payload.get("geometry", payload))
    return Polygon(payload)


def _tile_ids(paths):
    """File stems as tile ids; repeated stems fall back to the resolved path."""
    stems = Counter(path.stem for path in paths)
    return [path.stem if stems[path.stem] == 1 else str(path.resolve()) for path in paths]


def _finite_or_none(value: float):
    return float(value) if math.isfinite(value) else None


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Detect min/max surface altitude under a footprint.",
    )
    parser.add_argument(
        "--tile", action="append", required=True,
        help="Tile mesh file (STL, OBJ, GLB, PLY); repeat for several tiles",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--footprint",
        help="JSON polygon: GeoJSON geometry/feature or [[x, y], ...]",
    )
    source.add_argument(
        "--shape",
        help="Shape mesh file used directly as the footprint",
    )
    parser.add_argument(
        "--direction", type=float, nargs=3, default=[0.0, 0.0, -1.0],
        metavar=("X", "Y", "Z"),
        help="Altitude axis pointing down (default: 0 0 -1)",
    )
    parser.add_argument(
        "--config", default=None,
        help="JSON file with DetectionConfig fields",
    )
    parser.add_argument(
        "--centroids", action="store_true",
        help="Sample triangle centroids instead of vertices",
    )
    parser.add_argument(
        "--follow-surface", action="store_true",
        help="Refine samples with a second ray against the tile surface",
    )
    parser.add_argument(
        "--output", default=None,
        help="Write a JSON summary to this path",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    if args.config:
        overrides.update(json.loads(Path(args.config).read_text()))
    if args.centroids:
        overrides["use_centroids"] = True
    if args.follow_surface:
        overrides["follow_surface"] = True

    try:
        config = DetectionConfig.from_mapping(overrides)
    except ValueError as exc:
        parser.error(str(exc))

    if args.footprint:
        geometry = footprint_mesh(_load_footprint(Path(args.footprint)), args.direction)
    else:
        geometry = trimesh.load(args.shape)

    engine = AltitudeDetectionEngine(config=config)
    tiles = TileSet()
    tiles.register_plugin(engine)

    try:
        handle = engine.add_shape(geometry, args.direction)
    except AltitudeDetectionError as exc:
        parser.error(f"Invalid shape: {exc}")

    paths = [Path(tile_path) for tile_path in args.tile]
    for path in paths:
        if not path.is_file():
            parser.error(f"Tile file not found: {path}")
    for tile_id, path in zip(_tile_ids(paths), paths):
        tiles.load_tile(tile_id, trimesh.load(str(path)))

    tiles.update()
    result = engine.get_result(handle)
    stats = engine.last_pass_stats

    if result.has_hit:
        print(f"Min altitude: {result.min_altitude:.3f} at {result.min_point.round(3).tolist()}")
        print(f"Max altitude: {result.max_altitude:.3f} at {result.max_point.round(3).tolist()}")
    else:
        print("No surface found under the footprint.")
    logger.info("Pass stats: %s", stats.to_dict() if stats else {})

    if args.output:
        summary = {
            "tiles": tiles.loaded_tile_ids,
            "direction": list(args.direction),
            "min_altitude": _finite_or_none(result.min_altitude),
            "min_point": result.min_point.tolist() if result.has_hit else None,
            "max_altitude": _finite_or_none(result.max_altitude),
            "max_point": result.max_point.tolist() if result.has_hit else None,
            "stats": stats.to_dict() if stats else {},
        }
        Path(args.output).write_text(json.dumps(summary, indent=2))
        print(f"Summary written to {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
