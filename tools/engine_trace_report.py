#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import re
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Dict, List


ENGINE_TRACE_RE = re.compile(r"engine_trace\s+(\{.*\})\s*$")


def _parse_engine_trace_rows(path: Path) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            m = ENGINE_TRACE_RE.search(line.strip())
            if not m:
                continue
            try:
                row = json.loads(m.group(1))
            except json.JSONDecodeError:
                continue
            if not isinstance(row, dict) or not str(row.get("component", "")):
                continue
            rows.append(row)
    return rows


def _group_rows(rows: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        grouped[str(row.get("component", "unknown"))].append(row)
    return grouped


def _summarize(grouped: Dict[str, List[Dict[str, Any]]]) -> str:
    lines: List[str] = [f"components={len(grouped)}"]
    for component, rows in sorted(grouped.items()):
        rows_sorted = sorted(rows, key=lambda r: int(r.get("seq", 0) or 0))
        events = Counter(str(r.get("event", "")) for r in rows_sorted)
        stale = sum(1 for r in rows_sorted if r.get("applied") is False)
        counts = " ".join(f"{name}={n}" for name, n in sorted(events.items()))
        lines.append(f"[{component}] rows={len(rows_sorted)} stale={stale} {counts}".rstrip())
        for row in rows_sorted[-5:]:
            extra = {k: v for k, v in row.items() if k not in {"component", "event", "seq", "ts_ms"}}
            lines.append(
                "  - "
                f"seq={int(row.get('seq', 0) or 0)} event={row.get('event', '')} "
                f"{json.dumps(extra, ensure_ascii=False, separators=(',', ':'))}"
            )
    return "\n".join(lines)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Summarize engine_trace events from a gateway log.")
    p.add_argument("--log", required=True, help="Path to gateway log file")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    rows = _parse_engine_trace_rows(Path(args.log).expanduser())
    print(_summarize(_group_rows(rows)))


if __name__ == "__main__":
    main()
