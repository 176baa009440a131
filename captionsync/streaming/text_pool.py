# coding=utf-8
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .ordering import sort_key

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_EDGE_RE = re.compile(r"[A-Za-z0-9]")


def normalize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def join_segments(segments: List[str]) -> str:
    out = ""
    for seg in segments:
        cur = normalize_text(seg)
        if not cur:
            continue
        if not out:
            out = cur
            continue
        need_space = bool(_WORD_EDGE_RE.match(out[-1])) or bool(_WORD_EDGE_RE.match(cur[:1]))
        out = f"{out} {cur}" if need_space else f"{out}{cur}"
    return out


def trim_prefix_overlap(
    reference_text: str,
    candidate_text: str,
    *,
    min_overlap: int = 2,
    window_chars: int = 64,
) -> Tuple[str, int]:
    """
    Strip the longest suffix of ``reference_text`` (searched within its last
    ``window_chars`` characters) that is also a prefix of ``candidate_text``.
    """
    ref = str(reference_text or "")
    cand = str(candidate_text or "")
    if not ref or not cand:
        return cand, 0

    ref = ref[-max(1, int(window_chars)):]
    min_k = max(1, int(min_overlap))
    best = 0
    for k in range(min(len(ref), len(cand)), min_k - 1, -1):
        if ref[-k:] == cand[:k]:
            best = k
            break
    if best <= 0:
        return cand, 0
    return cand[best:].lstrip(), best


@dataclass
class FinalizedEntry:
    segment_id: str
    order: float
    text: str
    late: bool = False


@dataclass(frozen=True)
class LogChange:
    inserted: bool
    changed: bool
    late: bool


class FinalizedLog:
    """
    Ordered log of finalized segment texts keyed by segment id.

    The joined text is rebuilt from the sorted entries on every change since a
    late insertion can land anywhere in the timeline.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, FinalizedEntry] = {}
        self._max_order: Optional[float] = None
        self.text = ""

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._entries

    def get(self, segment_id: str) -> Optional[FinalizedEntry]:
        return self._entries.get(str(segment_id or ""))

    def upsert(self, segment_id: str, order: float, text: str) -> LogChange:
        sid = str(segment_id or "").strip()
        if not sid:
            raise ValueError("segment_id is required")
        cleaned = normalize_text(text)
        cur = self._entries.get(sid)
        if cur is not None:
            if cur.text == cleaned and cur.order == float(order):
                return LogChange(inserted=False, changed=False, late=cur.late)
            cur.text = cleaned
            cur.order = float(order)
            self._track_max(cur.order)
            self._rebuild()
            return LogChange(inserted=False, changed=True, late=cur.late)

        late = self._max_order is not None and float(order) < self._max_order
        self._entries[sid] = FinalizedEntry(segment_id=sid, order=float(order), text=cleaned, late=late)
        self._track_max(float(order))
        self._rebuild()
        return LogChange(inserted=True, changed=True, late=late)

    def entries(self) -> List[FinalizedEntry]:
        return sorted(self._entries.values(), key=lambda e: sort_key(e.order, e.segment_id))

    def clear(self) -> None:
        self._entries.clear()
        self._max_order = None
        self.text = ""

    def snapshot(self) -> Dict[str, object]:
        ordered = self.entries()
        return {
            "count": len(ordered),
            "ids": [e.segment_id for e in ordered],
            "late_ids": [e.segment_id for e in ordered if e.late],
            "text": self.text,
        }

    def _track_max(self, order: float) -> None:
        if self._max_order is None or order > self._max_order:
            self._max_order = order

    def _rebuild(self) -> None:
        self.text = join_segments([e.text for e in self.entries()])
