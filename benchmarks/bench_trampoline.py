"""
╔════════════════════════════════════════════════════════════════════════════╗
║  stacksafe Benchmark Suite                                                 ║
║  Trampolined recursion vs native recursion                                 ║
║                                                                            ║
║  Benchmarks:                                                               ║
║   1. Generation time (parse + classify + rewrite + compile)                ║
║   2. Per-call overhead at depths native recursion can reach                ║
║   3. Throughput at depths native recursion cannot reach                    ║
╚════════════════════════════════════════════════════════════════════════════╝
"""

import time
import statistics
import sys
import os

# Ensure stacksafe is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from stacksafe import SafeRecursionGenerator, transform, transform_group


# ═══════════════════════════════════════════════════════════════════
#  Benchmark Targets
# ═══════════════════════════════════════════════════════════════════

def bench_sum(n):
    """Linear recursion with one assignment site."""
    if n == 0:
        return 0
    rest = bench_sum(n - 1)
    return rest + n

def bench_gcd(a, b):
    """Tail call."""
    if b == 0:
        return a
    return bench_gcd(b, a % b)

def bench_fib(n):
    """Tree recursion, two call sites."""
    if n < 2:
        return n
    f1 = bench_fib(n - 1)
    f2 = bench_fib(n - 2)
    return f1 + f2

def bench_fill(n, out):
    """Void recursion."""
    if n == 0:
        return
    out.append(n)
    bench_fill(n - 1, out)

def bench_is_even(n):
    if n == 0:
        return True
    return bench_is_odd(n - 1)

def bench_is_odd(n):
    if n == 0:
        return False
    return bench_is_even(n - 1)


# ═══════════════════════════════════════════════════════════════════
#  Timing Utilities
# ═══════════════════════════════════════════════════════════════════

def time_function(func, args, iterations=20):
    """Median time of one call over several rounds, in µs."""
    times = []
    for _ in range(5):
        start = time.perf_counter_ns()
        for _ in range(iterations):
            func(*args)
        end = time.perf_counter_ns()
        times.append((end - start) / iterations / 1000)
    return statistics.median(times)


def run_benchmarks():
    """Run the complete stacksafe benchmark suite."""

    print("=" * 80)
    print("  STACKSAFE — BENCHMARK SUITE")
    print("=" * 80)
    print()

    # ─────────────────────────────────────────────────────────
    #  Benchmark 1: Generation time
    # ─────────────────────────────────────────────────────────
    print("┌──────────────────────────────────────────────────────────────┐")
    print("│  BENCHMARK 1: Generation Time                                │")
    print("└──────────────────────────────────────────────────────────────┘")

    targets = [
        ("sum", bench_sum),
        ("gcd", bench_gcd),
        ("fib", bench_fib),
        ("fill", bench_fill),
    ]

    print(f"  {'Function':<20} {'Generate (ms)':>14} {'Call sites':>12}")
    print(f"  {'─' * 20} {'─' * 14} {'─' * 12}")

    compile_times = []
    for name, func in targets:
        generator = SafeRecursionGenerator()
        start = time.perf_counter()
        generator.generate([func])
        elapsed = (time.perf_counter() - start) * 1000
        compile_times.append(elapsed)
        print(f"  {name:<20} {elapsed:>14.2f} {generator.stats['call_sites']:>12}")

    avg_compile = statistics.mean(compile_times)
    print(f"\n  Average generation time: {avg_compile:.2f} ms")
    print()

    # ─────────────────────────────────────────────────────────
    #  Benchmark 2: Overhead at native-reachable depths
    # ─────────────────────────────────────────────────────────
    print("┌──────────────────────────────────────────────────────────────┐")
    print("│  BENCHMARK 2: Overhead vs Native Recursion                   │")
    print("└──────────────────────────────────────────────────────────────┘")

    cases = [
        ("sum(500)", bench_sum, (500,)),
        ("gcd(F30, F29)", bench_gcd, (832040, 514229)),
        ("fib(18)", bench_fib, (18,)),
    ]

    print(f"  {'Case':<20} {'Native (µs)':>12} {'Safe (µs)':>12} {'Slowdown':>10} {'Correct':>8}")
    print(f"  {'─' * 20} {'─' * 12} {'─' * 12} {'─' * 10} {'─' * 8}")

    slowdowns = []
    for label, func, args in cases:
        safe = transform(func)
        correct = safe(*args) == func(*args)
        t_native = time_function(func, args)
        t_safe = time_function(safe, args)
        slowdown = t_safe / t_native if t_native > 0 else float('inf')
        slowdowns.append(slowdown)
        print(f"  {label:<20} {t_native:>12.1f} {t_safe:>12.1f} {slowdown:>9.2f}x {'✓' if correct else '✗':>8}")

    geo_mean = statistics.geometric_mean(slowdowns)
    print(f"\n  Geometric mean slowdown: {geo_mean:.2f}x")
    print()

    # ─────────────────────────────────────────────────────────
    #  Benchmark 3: Deep recursion
    # ─────────────────────────────────────────────────────────
    print("┌──────────────────────────────────────────────────────────────┐")
    print("│  BENCHMARK 3: Beyond the Recursion Limit                     │")
    print("└──────────────────────────────────────────────────────────────┘")

    limit = sys.getrecursionlimit()
    sum_safe = transform(bench_sum)
    fill_safe = transform(bench_fill)
    parity = transform_group(bench_is_even, bench_is_odd)

    deep_cases = [
        ("sum", lambda n: sum_safe(n)),
        ("fill", lambda n: fill_safe(n, [])),
        ("is_even (mutual)", lambda n: parity['bench_is_even'](n)),
    ]

    print(f"  Recursion limit: {limit}")
    print(f"  {'Case':<20} {'Depth':>10} {'Time (ms)':>12} {'Calls/s':>14}")
    print(f"  {'─' * 20} {'─' * 10} {'─' * 12} {'─' * 14}")

    for label, run in deep_cases:
        for depth in (limit * 10, limit * 100):
            start = time.perf_counter()
            run(depth)
            elapsed = time.perf_counter() - start
            rate = depth / elapsed if elapsed > 0 else float('inf')
            print(f"  {label:<20} {depth:>10} {elapsed * 1000:>12.1f} {rate:>14,.0f}")

    print()
    print("=" * 80)
    print("  STACKSAFE BENCHMARK SUITE COMPLETE")
    print("=" * 80)

    return {
        "avg_generate_ms": avg_compile,
        "geo_mean_slowdown": geo_mean,
    }


if __name__ == "__main__":
    run_benchmarks()
