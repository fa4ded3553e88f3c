from __future__ import annotations

"""
Summarize gateway timings and fallback reasons from the raw debug log.

Only `transform_end` entries are counted; they carry the backend, the result
source, the fallback reason and the wall time including the display floor.
"""

import argparse
import json
import math
import re
import statistics
from collections import Counter
from pathlib import Path
from typing import Any

ENTRY_RE = re.compile(r"^\[(?P<ts>[^\]]+)\]\s+stage=(?P<stage>\S+)\s+meta=(?P<meta>\{.*\})$")


def _latency_summary(values: list[float]) -> str:
    if not values:
        return "n/a"
    ordered = sorted(values)

    def at(q: float) -> float:
        pos = q * (len(ordered) - 1)
        lower, upper = math.floor(pos), math.ceil(pos)
        return ordered[lower] + (ordered[upper] - ordered[lower]) * (pos - lower)

    return (
        f"avg={statistics.fmean(ordered):.2f}ms p50={at(0.5):.2f}ms "
        f"p95={at(0.95):.2f}ms max={ordered[-1]:.2f}ms n={len(ordered)}"
    )


def parse_log(path: Path) -> dict[str, Any]:
    model_latencies: list[float] = []
    fallback_latencies: list[float] = []
    fallback_reasons: Counter[str] = Counter()
    backends: Counter[str] = Counter()

    for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        match = ENTRY_RE.match(line.strip())
        if not match:
            continue
        if match.group("stage") != "transform_end":
            continue
        try:
            meta = json.loads(match.group("meta"))
        except ValueError:
            meta = {}

        elapsed = float(meta.get("elapsed_ms", 0.0) or 0.0)
        backends[str(meta.get("backend", "unknown"))] += 1
        if meta.get("source") == "fallback":
            fallback_latencies.append(elapsed)
            fallback_reasons[str(meta.get("reason") or "unknown")] += 1
        else:
            model_latencies.append(elapsed)

    total = len(model_latencies) + len(fallback_latencies)
    return {
        "model_latencies": model_latencies,
        "fallback_latencies": fallback_latencies,
        "fallback_reasons": dict(fallback_reasons),
        "backends": dict(backends),
        "total_calls": total,
        "fallback_calls": len(fallback_latencies),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Report transformation gateway latency and fallback rate.")
    parser.add_argument(
        "--log-path",
        default="/tmp/emotion_jar_gateway_raw.log",
        help="Gateway debug log written when JAR_GATEWAY_DEBUG_LOG is set.",
    )
    parser.add_argument("--list-latencies", action="store_true", help="Also print every latency value.")
    args = parser.parse_args()

    path = Path(args.log_path).expanduser()
    if not path.is_file():
        raise SystemExit(f"log file not found: {path}")

    stats = parse_log(path)
    total = stats["total_calls"]
    fallbacks = stats["fallback_calls"]

    print(f"log_path: {path}")
    print(f"calls: {total}")
    for backend, count in sorted(stats["backends"].items()):
        print(f"  backend[{backend}]: {count}")
    print(f"model_latency: {_latency_summary(stats['model_latencies'])}")
    print(f"fallback_latency: {_latency_summary(stats['fallback_latencies'])}")
    if total:
        print(f"fallback_rate: {100.0 * fallbacks / total:.1f}% ({fallbacks}/{total})")
    for reason, count in Counter(stats["fallback_reasons"]).most_common():
        print(f"  fallback_reason[{reason}]: {count}")

    if args.list_latencies:
        for label in ("model_latencies", "fallback_latencies"):
            values = ", ".join(f"{v:.2f}" for v in stats[label]) or "n/a"
            print(f"{label}_ms: {values}")


if __name__ == "__main__":
    main()
