"""Benchmark: OnlyGate gate evaluation latency.

Measures gate() on the open, exhausted and debug paths, and the only()
decorator, against MemoryStore and FileStore.
Run: python bench/bench.py
"""

from __future__ import annotations

import statistics
import tempfile
import time
from pathlib import Path

from onlygate import FileStore, MemoryStore, Registry, Status, Store

VERSION = "bench"


def _report(name: str, timings_ns: list[int]) -> dict[str, float]:
    timings_us = [t / 1_000 for t in timings_ns]
    n = len(timings_us)
    p50 = statistics.median(timings_us)
    p95 = sorted(timings_us)[int(n * 0.95)]
    p99 = sorted(timings_us)[int(n * 0.99)]
    mean = statistics.mean(timings_us)
    mn = min(timings_us)
    mx = max(timings_us)

    print(f"\n{'=' * 64}")
    print(f"  {name}")
    print(f"{'=' * 64}")
    print(f"  Iterations : {n:,}")
    print(f"  Mean       : {mean:>10.2f} µs")
    print(f"  Median p50 : {p50:>10.2f} µs")
    print(f"  p95        : {p95:>10.2f} µs")
    print(f"  p99        : {p99:>10.2f} µs")
    print(f"  Min        : {mn:>10.2f} µs")
    print(f"  Max        : {mx:>10.2f} µs")

    return {"mean": mean, "p50": p50, "p95": p95, "p99": p99}


def bench_gate_open(store: Store, n: int = 10_000) -> list[int]:
    """Benchmark Registry.gate() while the budget is not yet exhausted."""
    registry = Registry(store, version=VERSION)

    timings: list[int] = []
    for _ in range(n):
        start = time.perf_counter_ns()
        outcome = registry.gate("open", times=n, on_do=lambda: None)
        elapsed = time.perf_counter_ns() - start
        assert outcome.opened
        timings.append(elapsed)

    return timings


def bench_gate_done(store: Store, n: int = 10_000) -> list[int]:
    """Benchmark Registry.gate() once the budget is exhausted."""
    registry = Registry(store, version=VERSION)

    # Exhaust the budget
    registry.once("done")

    timings: list[int] = []
    for _ in range(n):
        start = time.perf_counter_ns()
        outcome = registry.once("done", on_done=lambda: None)
        elapsed = time.perf_counter_ns() - start
        assert outcome.status == Status.DONE
        timings.append(elapsed)

    return timings


def bench_gate_debug(n: int = 10_000) -> list[int]:
    """Benchmark Registry.gate() in debug mode (no save)."""
    registry = Registry(MemoryStore(), version=VERSION, debug=True)

    timings: list[int] = []
    for _ in range(n):
        start = time.perf_counter_ns()
        outcome = registry.once("debug", on_do=lambda: None)
        elapsed = time.perf_counter_ns() - start
        assert outcome.status == Status.DEBUG
        timings.append(elapsed)

    return timings


def bench_only_decorator(n: int = 10_000) -> list[int]:
    """Benchmark @registry.only() decorator overhead (open path)."""
    registry = Registry(MemoryStore(), version=VERSION)

    @registry.only("decorated", times=n)
    def noop() -> int:
        return 42

    timings: list[int] = []
    for _ in range(n):
        start = time.perf_counter_ns()
        result = noop()
        elapsed = time.perf_counter_ns() - start
        assert result.unwrap() == 42
        timings.append(elapsed)

    return timings


def main() -> None:
    print("OnlyGate Benchmark")
    print(f"Python perf_counter_ns resolution: ~{time.get_clock_info('perf_counter').resolution * 1e9:.0f} ns")

    results: dict[str, dict[str, float]] = {}

    timings = bench_gate_open(MemoryStore())
    results["gate (OPEN, memory)"] = _report("Registry.gate() — OPEN path, MemoryStore", timings)

    timings = bench_gate_done(MemoryStore())
    results["gate (DONE, memory)"] = _report("Registry.gate() — DONE path, MemoryStore", timings)

    timings = bench_gate_debug()
    results["gate (DEBUG)"] = _report("Registry.gate() — DEBUG path", timings)

    timings = bench_only_decorator()
    results["only"] = _report("@registry.only() — OPEN path", timings)

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "prefs.json"

        timings = bench_gate_open(FileStore(path), n=1_000)
        results["gate (OPEN, file)"] = _report("Registry.gate() — OPEN path, FileStore", timings)

        timings = bench_gate_done(FileStore(path), n=1_000)
        results["gate (DONE, file)"] = _report("Registry.gate() — DONE path, FileStore", timings)

    print(f"\n{'=' * 64}")
    print("  Summary")
    print(f"{'=' * 64}")
    for name, r in results.items():
        print(f"  {name:<25s}  p50={r['p50']:.2f}µs  p99={r['p99']:.2f}µs")


if __name__ == "__main__":
    main()
