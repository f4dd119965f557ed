#!/usr/bin/env python3
"""Headless skate benchmark: how fast can the cache keep up with a held key?"""
from __future__ import annotations

import argparse
import time

from core.backends import BackendKind
from core.load_ops import Direction
from core.navigation import NavigationSettings, Navigator
from core.prefetch import PrefetchConfig


def _wait_for_window(nav: Navigator, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        nav.tick()
        if all(pane.cache is not None and not pane.cache.holes() for pane in nav.loaded_panes()):
            return
        time.sleep(0.002)


def run_skate(path: str, *, cache_count: int, threads: int, tick_s: float, duration: float) -> dict:
    settings = NavigationSettings(
        cache_count=cache_count,
        prefetch=PrefetchConfig(),
        backend=BackendKind.CPU,
        decode_threads=threads,
    )
    nav = Navigator(settings, pane_count=1)
    try:
        pane = nav.open_path(0, path)
        _wait_for_window(nav)
        start_index = pane.current_index
        nav.start_skate(Direction.NEXT)
        t0 = time.perf_counter()
        ticks = 0
        stalls = 0
        while time.perf_counter() - t0 < duration and pane.current_index < pane.num_files - 1:
            before = pane.current_index
            nav.tick()
            ticks += 1
            if pane.current_index == before:
                stalls += 1
            time.sleep(tick_s)
        elapsed = time.perf_counter() - t0
        nav.stop_skate()
        steps = pane.current_index - start_index
        return {
            "cache_count": cache_count,
            "threads": threads,
            "steps": steps,
            "elapsed_s": elapsed,
            "images_per_s": steps / elapsed if elapsed > 0 else 0.0,
            "stall_ratio": stalls / ticks if ticks else 0.0,
            "update_avg_ms": nav.timing.update.average_ms(),
            "upload_avg_ms": nav.timing.decode.average_ms(),
            "dropped_ops": nav.scheduler.dropped,
        }
    finally:
        nav.close()


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", help="image folder or archive")
    parser.add_argument("--cache-counts", type=int, nargs="+", default=[2, 5, 10])
    parser.add_argument("--threads", type=int, default=4)
    parser.add_argument("--tick-ms", type=float, default=8.0)
    parser.add_argument("--duration", type=float, default=5.0)
    args = parser.parse_args()

    print(f"{'K':>4} {'steps':>6} {'img/s':>8} {'stall':>6} {'update':>8} {'upload':>8} {'drop':>5}")
    for cache_count in args.cache_counts:
        stats = run_skate(
            args.path,
            cache_count=cache_count,
            threads=args.threads,
            tick_s=args.tick_ms / 1000.0,
            duration=args.duration,
        )
        print(
            f"{stats['cache_count']:>4} {stats['steps']:>6} {stats['images_per_s']:>8.1f} "
            f"{stats['stall_ratio']:>6.2f} {stats['update_avg_ms']:>7.2f}ms "
            f"{stats['upload_avg_ms']:>7.2f}ms {stats['dropped_ops']:>5}"
        )


if __name__ == "__main__":
    main()
