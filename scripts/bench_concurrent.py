#!/usr/bin/env python3
"""
Render one dynamic SQL template from N threads at once and check every result.

Each request gets its own id list, so a leak of bindings between concurrent
evaluations shows up as a wrong marker count or wrong parameter values.

Usage:
  python scripts/bench_concurrent.py [--concurrent N] [--requests M] [--max-ids K]
  Or set env: CONCURRENT, REQUESTS
"""

import argparse
import os
import random
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

from dynsql import SQLTemplateEngine

TEMPLATE = (
    "SELECT * FROM orders"
    "<where>"
    "<if test='status != null'>AND status = #{status}</if>"
    "<if test='ids'>AND id IN"
    "<foreach collection='ids' item='id' open='(' separator=',' close=')'>#{id}</foreach>"
    "</if>"
    "</where>"
)


def do_render(engine: SQLTemplateEngine, index: int, max_ids: int) -> tuple[int, bool, float]:
    """Render once; return (index, ok, elapsed_ms)."""
    ids = random.sample(range(1_000_000), random.randint(1, max_ids))
    params = {"status": f"s{index}", "ids": ids}
    start = time.perf_counter()
    bound = engine.render(TEMPLATE, params)
    elapsed = (time.perf_counter() - start) * 1000
    ok = bound.sql.count("?") == len(ids) + 1 and bound.parameter_values() == [f"s{index}", *ids]
    return (index, ok, elapsed)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Render a dynamic SQL template concurrently and verify each result."
    )
    parser.add_argument(
        "--concurrent",
        type=int,
        default=int(os.environ.get("CONCURRENT", "16")),
        help="Number of worker threads (default 16)",
    )
    parser.add_argument(
        "--requests",
        type=int,
        default=int(os.environ.get("REQUESTS", "2000")),
        help="Total renders (default 2000)",
    )
    parser.add_argument(
        "--max-ids",
        type=int,
        default=50,
        help="Upper bound of the id list length per render (default 50)",
    )
    args = parser.parse_args()

    engine = SQLTemplateEngine()
    print(f"Rendering {args.requests} times on {args.concurrent} threads")
    print("---")

    results: list[tuple[int, bool, float]] = []
    with ThreadPoolExecutor(max_workers=args.concurrent) as executor:
        futures = [
            executor.submit(do_render, engine, i, args.max_ids) for i in range(1, args.requests + 1)
        ]
        for fut in as_completed(futures):
            results.append(fut.result())

    results.sort(key=lambda x: x[0])
    bad = [idx for idx, ok, _ in results if not ok]
    timings = sorted(ms for _, _, ms in results)
    p50 = timings[len(timings) // 2]
    p99 = timings[min(len(timings) - 1, int(len(timings) * 0.99))]
    print(f"Done. ok={len(results) - len(bad)} bad={len(bad)} p50={p50:.3f}ms p99={p99:.3f}ms")
    if bad:
        print(f"Mismatched renders: {bad[:20]}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
