# coding=utf-8
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from captionsync.streaming.ordering import segment_order, sort_key
from captionsync.streaming.stream_reassembler import TRANSLATION_FAILED
from captionsync.streaming.text_pool import normalize_text

TRANSCRIBING_PLACEHOLDER = "Transcribing..."


@dataclass
class Segment:
    segment_id: str
    order: float
    created_at: Optional[str] = None
    duration_ms: Optional[float] = None
    transcript: Optional[str] = None
    translation: Optional[str] = None
    translation_error: str = ""
    speaker_id: Optional[Any] = None
    speaker_mixed: bool = False
    speaker_changed: Optional[bool] = None
    late: bool = False

    def merge(self, fields: Mapping[str, Any]) -> bool:
        """
        Merge known fields in place. Keys absent from ``fields`` keep their
        value, and the order is re-derived from the merged metadata.
        """
        changed = False
        for key, value in fields.items():
            if not hasattr(self, key) or key in {"segment_id", "order", "late"}:
                continue
            if getattr(self, key) != value:
                setattr(self, key, value)
                changed = True
        if "translation" in fields and normalize_text(self.translation):
            self.translation_error = ""
        if "created_at" in fields:
            # An unparseable timestamp keeps the current position.
            order = segment_order({"created_at": self.created_at, "name": self.segment_id}, now_ms=lambda: self.order)
            if order != self.order:
                self.order = order
                changed = True
        return changed

    @property
    def has_transcript(self) -> bool:
        return bool(normalize_text(self.transcript))

    @property
    def has_translation(self) -> bool:
        return bool(normalize_text(self.translation))

    def mark_translation_failed(self, message: str = TRANSLATION_FAILED) -> None:
        self.translation = ""
        self.translation_error = str(message or "").strip() or TRANSLATION_FAILED


def new_segment(segment_id: str, fields: Mapping[str, Any], now_ms: Optional[Callable[[], float]] = None) -> Segment:
    info: Dict[str, Any] = {"name": segment_id}
    info.update(fields)
    seg = Segment(segment_id=segment_id, order=segment_order(info, now_ms=now_ms))
    for key, value in fields.items():
        if hasattr(seg, key) and key not in {"segment_id", "order", "late"}:
            setattr(seg, key, value)
    return seg


@dataclass(frozen=True)
class SegmentView:
    segment_id: str
    order: float
    transcript: str
    transcript_state: str
    translation: str
    translation_state: str
    speaker: str
    late: bool


@dataclass(frozen=True)
class CaptionView:
    stable_text: str
    partial_text: str
    meta: str
    speaker: str


@dataclass(frozen=True)
class StreamView:
    order: Optional[float]
    stream_id: str
    text: str
    status: str


@dataclass(frozen=True)
class RenderSnapshot:
    segments: List[SegmentView]
    caption: CaptionView
    stream: StreamView
    live_transcript: str
    finalized_text: str
    translation_enabled: bool
    status: str
    queue_depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def speaker_label(speaker_id: Any, mixed: bool) -> str:
    if mixed or speaker_id is None:
        return "Speaker ?"
    return f"Speaker {speaker_id}"


def _row_speaker(seg: Segment) -> str:
    if seg.speaker_id is None and not seg.speaker_mixed:
        return ""
    return speaker_label(seg.speaker_id, bool(seg.speaker_mixed))


def render_segment(seg: Segment, translation_enabled: bool) -> SegmentView:
    transcript = normalize_text(seg.transcript)
    if transcript:
        transcript_state = "ready"
    else:
        transcript, transcript_state = TRANSCRIBING_PLACEHOLDER, "pending"

    if not translation_enabled:
        translation, translation_state = "", "hidden"
    elif seg.translation is None:
        translation, translation_state = "", "pending"
    elif normalize_text(seg.translation):
        translation, translation_state = normalize_text(seg.translation), "ready"
    else:
        translation, translation_state = seg.translation_error or TRANSLATION_FAILED, "error"

    return SegmentView(
        segment_id=seg.segment_id,
        order=seg.order,
        transcript=transcript,
        transcript_state=transcript_state,
        translation=translation,
        translation_state=translation_state,
        speaker=_row_speaker(seg),
        late=seg.late,
    )


def ordered_segments(table: Mapping[str, Segment]) -> List[Segment]:
    return sorted(table.values(), key=lambda s: sort_key(s.order, s.segment_id))
