from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _as_snapshot(msg: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(msg, dict):
        return None
    inner = msg.get("snapshot")
    if isinstance(inner, dict):
        return inner
    if isinstance(msg.get("segments"), list):
        return msg
    return None


def _row_key(row: Dict[str, Any]) -> Tuple[float, str]:
    try:
        order = float(row.get("order", 0.0))
    except (TypeError, ValueError):
        order = 0.0
    return (order, str(row.get("segment_id", "") or ""))


@dataclass
class CaptionSelfcheckResult:
    snapshot_count: int
    max_segments: int
    stable_regressions: int
    order_violations: int
    duplicate_ids: int
    stream_regressions: int
    examples: List[Dict[str, Any]]

    @property
    def clean(self) -> bool:
        return not (self.stable_regressions or self.order_violations or self.duplicate_ids or self.stream_regressions)


def analyze_snapshots(snapshots: Iterable[Any]) -> CaptionSelfcheckResult:
    """
    Walk rendering snapshots in emission order and count consistency breaks:
    confirmed caption text that shrank without a finalized log change, rows out
    of (order, id) order, repeated row ids, and streaming translation text that
    was rewritten while the same stream was still streaming.
    """
    count = 0
    max_segments = 0
    stable_regressions = 0
    order_violations = 0
    duplicates = 0
    stream_regressions = 0
    examples: List[Dict[str, Any]] = []
    prev: Optional[Dict[str, Any]] = None

    def _example(row: Dict[str, Any]) -> None:
        if len(examples) < 8:
            examples.append(row)

    for idx, msg in enumerate(snapshots):
        snap = _as_snapshot(msg)
        if snap is None:
            continue
        count += 1
        rows = [r for r in snap.get("segments") or [] if isinstance(r, dict)]
        max_segments = max(max_segments, len(rows))

        keys = [_row_key(r) for r in rows]
        if keys != sorted(keys):
            order_violations += 1
            _example({"kind": "order_violation", "index": idx, "ids": [k[1] for k in keys][:16]})

        ids = [k[1] for k in keys]
        if len(set(ids)) != len(ids):
            duplicates += 1
            _example({"kind": "duplicate_id", "index": idx, "ids": sorted({i for i in ids if ids.count(i) > 1})})

        caption = snap.get("caption") or {}
        stream = snap.get("stream") or {}
        stable = str(caption.get("stable_text", "") or "")
        finalized = str(snap.get("finalized_text", "") or "")

        if prev is not None:
            prev_caption = prev.get("caption") or {}
            prev_stable = str(prev_caption.get("stable_text", "") or "")
            prev_finalized = str(prev.get("finalized_text", "") or "")
            if prev_stable and finalized == prev_finalized and not stable.startswith(prev_stable):
                stable_regressions += 1
                _example(
                    {
                        "kind": "stable_regression",
                        "index": idx,
                        "from": prev_stable[-80:],
                        "to": stable[-80:],
                    }
                )

            prev_stream = prev.get("stream") or {}
            same_stream = (
                prev_stream.get("order") is not None
                and prev_stream.get("order") == stream.get("order")
                and prev_stream.get("stream_id") == stream.get("stream_id")
            )
            if same_stream and prev_stream.get("status") == "streaming" and stream.get("status") == "streaming":
                prev_text = str(prev_stream.get("text", "") or "")
                text = str(stream.get("text", "") or "")
                if not text.startswith(prev_text):
                    stream_regressions += 1
                    _example(
                        {
                            "kind": "stream_regression",
                            "index": idx,
                            "order": stream.get("order"),
                            "from": prev_text[-80:],
                            "to": text[-80:],
                        }
                    )

        prev = snap

    return CaptionSelfcheckResult(
        snapshot_count=count,
        max_segments=max_segments,
        stable_regressions=stable_regressions,
        order_violations=order_violations,
        duplicate_ids=duplicates,
        stream_regressions=stream_regressions,
        examples=examples,
    )


def summarize_result(result: CaptionSelfcheckResult) -> str:
    lines = [
        f"snapshots={result.snapshot_count}",
        f"max_segments={result.max_segments}",
        f"stable_regressions={result.stable_regressions}",
        f"order_violations={result.order_violations}",
        f"duplicate_ids={result.duplicate_ids}",
        f"stream_regressions={result.stream_regressions}",
    ]
    if result.examples:
        lines.append("examples:")
        for ex in result.examples:
            kind = ex.get("kind", "snapshot")
            lines.append(f"  - {kind}: {ex}")
    return "\n".join(lines)
