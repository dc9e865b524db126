#!/usr/bin/env python3
import argparse
import json
import re
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

TELEMETRY_PATTERN = re.compile(r"case_aggregation=(\{.*\})")


def _iter_lines(paths: List[str]) -> Iterable[str]:
    if not paths:
        for line in sys.stdin:
            yield line.rstrip("\n")
        return
    for path in paths:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                yield line.rstrip("\n")


def parse_payload(line: str) -> Optional[Dict[str, Any]]:
    match = TELEMETRY_PATTERN.search(line)
    if not match:
        return None
    try:
        value = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _safe_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def build_report(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    result_counts: Counter[str] = Counter()
    source_failures: Counter[str] = Counter()
    source_runs: Counter[str] = Counter()
    source_cases: Counter[str] = Counter()
    elapsed_total = 0
    empty_runs = 0

    for row in rows:
        result_counts[str(row.get("result", "unknown"))] += 1
        elapsed_total += _safe_int(row.get("elapsed_ms", 0))
        counts = row.get("source_counts") or {}
        if isinstance(counts, dict):
            for source, count in counts.items():
                source_runs[str(source)] += 1
                source_cases[str(source)] += _safe_int(count)
            if row.get("result") == "ok" and not any(_safe_int(v) for v in counts.values()):
                empty_runs += 1
        for source in row.get("failed_sources", []) or []:
            source_failures[str(source)] += 1

    total = len(rows)
    sources = {}
    for source, runs in sorted(source_runs.items()):
        failures = source_failures.get(source, 0)
        sources[source] = {
            "runs": runs,
            "failures": failures,
            "failure_rate": round(failures / runs, 4) if runs else 0.0,
            "avg_cases": round(source_cases[source] / runs, 4) if runs else 0.0,
        }

    return {
        "total_runs": total,
        "result_counts": dict(result_counts),
        "empty_runs": empty_runs,
        "avg_elapsed_ms": round(elapsed_total / total, 2) if total else 0.0,
        "sources": sources,
    }


def print_human(report: Dict[str, Any]) -> None:
    print(f"Total aggregation runs: {report['total_runs']}")
    print(f"Average elapsed: {report['avg_elapsed_ms']:.2f} ms")
    print(f"Runs with zero cases: {report['empty_runs']}")
    print("Results:")
    for result, count in sorted(report["result_counts"].items(), key=lambda x: x[1], reverse=True):
        print(f"  - {result}: {count}")
    print("Sources:")
    for source, stats in report["sources"].items():
        print(
            f"  - {source}: runs={stats['runs']} failures={stats['failures']} "
            f"failure_rate={stats['failure_rate']:.2%} avg_cases={stats['avg_cases']:.2f}"
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize case_aggregation telemetry logs.")
    parser.add_argument("log_files", nargs="*", help="Log files to parse. If omitted, read stdin.")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON summary.")
    args = parser.parse_args()

    rows = [payload for payload in (parse_payload(line) for line in _iter_lines(args.log_files)) if payload]
    report = build_report(rows)
    print_human(report)

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote report: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
