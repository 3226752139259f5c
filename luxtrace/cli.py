from __future__ import annotations

import argparse
import json
import logging
import time
from typing import List

import numpy as np

from luxtrace.accel.blas import BottomLevelAccelerationStructure
from luxtrace.accel.config import BLASBuildConfig, SplitAxisPolicy, TLASBuildConfig
from luxtrace.accel.tlas import TopLevelAccelerationStructure
from luxtrace.errors import AccelerationBuildError
from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.core import Vector3
from luxtrace.geometry.mesh import TriangleMesh
from luxtrace.geometry.ray import Ray
from luxtrace.logging_config import setup_logging
from luxtrace.scene.instance import Instance
from luxtrace.scene.registry import GeometryRegistry
from luxtrace.scene.synthetic import random_triangles, sweep_rays

logger = logging.getLogger(__name__)


def _check_positive(name: str, value: int) -> bool:
    if value < 1:
        print(f"[ERROR] --{name} must be >= 1, got {value}.")
        return False
    return True


def _cmd_stats(args: argparse.Namespace) -> int:
    if not (_check_positive("triangles", args.triangles) and _check_positive("instances", args.instances)):
        return 2
    if not _check_positive("workers", args.workers):
        return 2

    soup = random_triangles(args.triangles, seed=args.seed)
    mesh = TriangleMesh(soup, config=BLASBuildConfig(workers=args.workers))
    registry = GeometryRegistry()
    handle = registry.add(mesh)
    registry.freeze()

    instances = [
        Instance(geometry_id=handle, instance_id=i).with_position(50.0 * i, 0.0, 0.0)
        for i in range(args.instances)
    ]
    config = TLASBuildConfig(axis_policy=SplitAxisPolicy(args.policy), seed=args.seed)
    try:
        tlas = TopLevelAccelerationStructure.build(instances, registry, config=config)
    except AccelerationBuildError as e:
        print(f"[ERROR] {e}")
        return 3

    blas = mesh.blas
    stats = {
        "blas": {
            "primitives": blas.primitive_count,
            "nodes": blas.node_count,
            "depth": blas.depth(),
            "bounds": blas.bounding_box().to_dict(),
        },
        "tlas": {
            "instances": len(tlas.instances),
            "nodes": tlas.node_count,
            "depth": tlas.depth(),
            "policy": config.axis_policy.value,
            "bounds": tlas.bounding_box().to_dict(),
        },
    }
    if args.json:
        print(json.dumps(stats, indent=2))
        return 0

    print("Luxtrace Stats")
    print(f"  BLAS primitives: {stats['blas']['primitives']}")
    print(f"  BLAS nodes:      {stats['blas']['nodes']}")
    print(f"  BLAS depth:      {stats['blas']['depth']}")
    print(f"  TLAS instances:  {stats['tlas']['instances']}")
    print(f"  TLAS nodes:      {stats['tlas']['nodes']}")
    print(f"  TLAS depth:      {stats['tlas']['depth']} ({config.axis_policy.value})")
    return 0


def _cmd_bench(args: argparse.Namespace) -> int:
    if not (_check_positive("triangles", args.triangles) and _check_positive("rays", args.rays)):
        return 2

    soup = random_triangles(args.triangles, seed=args.seed)
    rays = [Ray(o, d) for o, d in sweep_rays(args.rays)]
    t_min, t_max = 1e-4, 120.0

    t0 = time.perf_counter()
    blas = BottomLevelAccelerationStructure.build(soup)
    t1 = time.perf_counter()

    leaf_boxes = [AABB.from_points(Vector3.from_array(p) for p in soup[3 * i : 3 * i + 3]) for i in range(args.triangles)]
    brute: List[List[int]] = []
    for ray in rays:
        brute.append([i for i, box in enumerate(leaf_boxes) if box.hit(ray, t_min, t_max)])
    t2 = time.perf_counter()

    scalar = [blas.hit_test(None, ray, t_min, t_max) for ray in rays]
    t3 = time.perf_counter()

    origins = np.asarray([r.origin.to_tuple() for r in rays], dtype=np.float64)
    directions = np.asarray([r.direction.to_tuple() for r in rays], dtype=np.float64)
    # First call compiles; time the second.
    blas.hit_test_batch(origins[:1], directions[:1], t_min, t_max)
    t4 = time.perf_counter()
    offsets, ids = blas.hit_test_batch(origins, directions, t_min, t_max)
    t5 = time.perf_counter()

    matches = all(sorted(a) == sorted(b) for a, b in zip(brute, scalar))
    batch_matches = all(
        sorted(ids[offsets[i] : offsets[i + 1]].tolist()) == sorted(scalar[i]) for i in range(len(rays))
    )
    brute_s = t2 - t1
    scalar_s = t3 - t2
    batch_s = t5 - t4

    print("BLAS Candidate Benchmark")
    print(f"Triangles:  {args.triangles}")
    print(f"Rays:       {len(rays)}")
    print(f"Build:      {t1 - t0:.4f}s (depth {blas.depth()})")
    print(f"Bruteforce: {brute_s:.4f}s ({sum(len(c) for c in brute)} candidates)")
    print(f"hit_test:   {scalar_s:.4f}s ({sum(len(c) for c in scalar)} candidates)")
    print(f"batch:      {batch_s:.4f}s ({int(offsets[-1])} candidates)")
    print(f"Speedup:    {brute_s / scalar_s if scalar_s > 0 else float('inf'):.2f}x")
    if not (matches and batch_matches):
        print("[ERROR] Candidate sets differ from brute force.")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="luxtrace")
    p.add_argument("--log-level", default=None, help="Log level (default: LUXTRACE_LOG_LEVEL or WARNING)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("stats", help="Build a synthetic mesh scene and print BLAS/TLAS statistics.")
    s.add_argument("--triangles", type=int, default=1000, help="Triangles in the synthetic mesh")
    s.add_argument("--instances", type=int, default=8, help="Instances of the mesh placed along x")
    s.add_argument("--seed", type=int, default=7, help="Seed for geometry and random split policies")
    s.add_argument(
        "--policy",
        default=SplitAxisPolicy.LONGEST_EXTENT.value,
        choices=[m.value for m in SplitAxisPolicy],
        help="TLAS split-axis policy",
    )
    s.add_argument("--workers", type=int, default=1, help="BLAS build worker threads")
    s.add_argument("--json", action="store_true", help="Print statistics as JSON")
    s.set_defaults(func=_cmd_stats)

    b = sub.add_parser("bench", help="Time BLAS candidate queries against brute force.")
    b.add_argument("--triangles", type=int, default=5000, help="Triangles in the synthetic mesh")
    b.add_argument("--rays", type=int, default=1200, help="Number of rays")
    b.add_argument("--seed", type=int, default=7, help="Geometry seed")
    b.set_defaults(func=_cmd_bench)

    args = p.parse_args(argv)
    setup_logging(level=args.log_level)
    logger.debug("running %s", args.cmd)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
