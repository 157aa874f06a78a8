#!/usr/bin/env python3

import argparse
import math
import statistics
import time
from typing import Dict, List, Optional, Tuple

from screenfind import matcher, samples
from screenfind.geometry import Rectangle

# name -> (pattern rectangle on the 1920x1080 reference, search padding in capture px)
CASE_MATRIX: Dict[str, Tuple[Rectangle, Optional[int]]] = {
    "full": (Rectangle(600, 400, 200, 150), None),
    "region": (Rectangle(600, 400, 200, 150), 40),
    "region-tight": (Rectangle(600, 400, 200, 150), 8),
    "small-full": (Rectangle(1200, 800, 60, 40), None),
}

Case = Tuple[str, matcher.Pattern, Optional[Rectangle]]


def _percentile(sorted_vals: List[float], p: float) -> float:
    if not sorted_vals:
        return 0.0
    k = (len(sorted_vals) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[f] * (c - k) + sorted_vals[c] * (k - f)


def _format_ms(value_s: float) -> str:
    return f"{value_s * 1000.0:.2f} ms"


def _resolve_cases(
    selected: List[str], reference, capture, scale: float
) -> List[Case]:
    names = selected or list(CASE_MATRIX)
    resolved: List[Case] = []
    for name in names:
        item = CASE_MATRIX.get(name)
        if item is None:
            raise ValueError(
                f"Unknown case '{name}'. Available: {', '.join(CASE_MATRIX)}"
            )
        rect, pad = item
        pattern = samples.crop_pattern(reference, rect, name=name)
        region = None
        if pad is not None:
            x = max(0, int(rect.x * scale) - pad)
            y = max(0, int(rect.y * scale) - pad)
            right = min(capture.width, int(math.ceil(rect.right * scale)) + pad)
            bottom = min(capture.height, int(math.ceil(rect.bottom * scale)) + pad)
            region = Rectangle(x, y, right - x, bottom - y)
        resolved.append((name, pattern, region))
    return resolved


def _run_benchmark(
    capture,
    cases: List[Case],
    scale: float,
    iterations: int,
    repeats: int,
    warmup: int,
) -> Dict[str, List[float]]:
    timings: Dict[str, List[float]] = {name: [] for name, *_ in cases}

    def _run_cases(record: bool) -> None:
        for name, pattern, region in cases:
            start = time.perf_counter()
            matcher.match(pattern, capture, region, scale=scale)
            if record:
                timings[name].append(time.perf_counter() - start)

    for _ in range(warmup):
        _run_cases(record=False)

    for _ in range(repeats):
        for _ in range(iterations):
            _run_cases(record=True)

    return timings


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Benchmark full-capture versus region-restricted matching."
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=5,
        help="Iterations per repeat (per case).",
    )
    parser.add_argument(
        "--repeats",
        type=int,
        default=3,
        help="Repeat count for the iteration loop.",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=1,
        help="Warmup passes before timing.",
    )
    parser.add_argument(
        "--case",
        action="append",
        default=[],
        help="Case name to benchmark (repeatable).",
    )
    parser.add_argument(
        "--scale",
        type=float,
        default=0.8,
        help="Display scaling of the synthetic capture.",
    )
    parser.add_argument(
        "--band-rows",
        type=int,
        default=None,
        help="Override matcher.BAND_ROWS.",
    )
    parser.add_argument(
        "--scan-multiplier",
        type=int,
        default=None,
        help="Override matcher.TOP_MATCH_SCAN_MULTIPLIER.",
    )
    args = parser.parse_args()

    if args.band_rows is not None:
        matcher.BAND_ROWS = args.band_rows
    if args.scan_multiplier is not None:
        matcher.TOP_MATCH_SCAN_MULTIPLIER = args.scan_multiplier

    reference = samples.make_reference_screen()
    capture = samples.make_scaled_capture(reference, args.scale)
    cases = _resolve_cases(args.case, reference, capture, args.scale)

    timings = _run_benchmark(
        capture=capture,
        cases=cases,
        scale=args.scale,
        iterations=args.iterations,
        repeats=args.repeats,
        warmup=args.warmup,
    )

    total_runs = sum(len(v) for v in timings.values())
    print(
        f"Runs: {total_runs} | cases: {len(cases)} | "
        f"iterations: {args.iterations} | repeats: {args.repeats} | warmup: {args.warmup}"
    )
    print(
        "matcher:",
        f"scale={args.scale}",
        f"band_rows={matcher.BAND_ROWS}",
        f"scan_multiplier={matcher.TOP_MATCH_SCAN_MULTIPLIER}",
    )

    def _summarize(label: str, values: List[float]) -> str:
        sorted_vals = sorted(values)
        return (
            f"{label}: median {_format_ms(statistics.median(sorted_vals))}, "
            f"mean {_format_ms(statistics.mean(sorted_vals))}, "
            f"p95 {_format_ms(_percentile(sorted_vals, 95))}, "
            f"min {_format_ms(sorted_vals[0])}, "
            f"max {_format_ms(sorted_vals[-1])}"
        )

    for name, pattern, region in cases:
        area = region.area if region is not None else capture.width * capture.height
        print(_summarize(f"{name} ({area} px searched)", timings[name]))


if __name__ == "__main__":
    main()
