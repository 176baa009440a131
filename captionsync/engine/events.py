# coding=utf-8
"""
Typed inbound events and payload validation.

Payloads arrive as JSON objects from external collaborators. ``parse_event``
returns one of the event dataclasses below, or None when the payload is
missing its identifying fields.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

SEGMENT_FIELDS: Tuple[str, ...] = (
    "created_at",
    "duration_ms",
    "transcript",
    "translation",
    "speaker_id",
    "speaker_mixed",
    "speaker_changed",
)

_ALIASES: Dict[str, Tuple[str, ...]] = {
    "created_at": ("created_at", "createdAt"),
    "duration_ms": ("duration_ms", "durationMs"),
    "speaker_id": ("speaker_id", "speakerId"),
    "speaker_mixed": ("speaker_mixed", "speakerMixed"),
    "speaker_changed": ("speaker_changed", "speakerChanged"),
    "elapsed_ms": ("elapsed_ms", "elapsedMs"),
    "window_ms": ("window_ms", "windowMs"),
    "stream_id": ("id", "stream_id", "streamId"),
    "segment_id": ("name", "id", "segment_id", "segmentId"),
}

_MISSING = object()


def _pick(payload: Mapping[str, Any], key: str) -> Any:
    for alias in _ALIASES.get(key, (key,)):
        if alias in payload:
            return payload[alias]
    return _MISSING


def _text(value: Any) -> str:
    if value is None or value is _MISSING:
        return ""
    return str(value)


def _number(value: Any) -> Optional[float]:
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _segment_id(payload: Mapping[str, Any]) -> str:
    return _text(_pick(payload, "segment_id")).strip()


def _segment_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key in SEGMENT_FIELDS:
        value = _pick(payload, key)
        if value is _MISSING:
            continue
        if key in {"transcript", "translation"} and value is not None:
            value = str(value)
        fields[key] = value
    return fields


@dataclass(frozen=True)
class SegmentCreated:
    name: ClassVar[str] = "segment_created"
    segment_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentTranscribed:
    name: ClassVar[str] = "segment_transcribed"
    segment_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentTranslated:
    name: ClassVar[str] = "segment_translated"
    segment_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentSpeakered:
    name: ClassVar[str] = "segment_speakered"
    segment_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentListCleared:
    name: ClassVar[str] = "segment_list_cleared"


@dataclass(frozen=True)
class WindowTranscribed:
    name: ClassVar[str] = "window_transcribed"
    text: str
    elapsed_ms: Optional[float] = None
    window_ms: Optional[float] = None
    has_speaker: bool = False
    speaker_id: Optional[Any] = None
    speaker_mixed: bool = False


@dataclass(frozen=True)
class LiveTranslationStart:
    name: ClassVar[str] = "live_translation_start"
    order: float
    stream_id: str


@dataclass(frozen=True)
class LiveTranslationChunk:
    name: ClassVar[str] = "live_translation_chunk"
    order: float
    stream_id: str
    chunk: str


@dataclass(frozen=True)
class LiveTranslationDone:
    name: ClassVar[str] = "live_translation_done"
    order: float
    stream_id: str
    translation: str


@dataclass(frozen=True)
class LiveTranslationError:
    name: ClassVar[str] = "live_translation_error"
    order: float
    stream_id: str
    error: str = ""


@dataclass(frozen=True)
class LiveTranslationCleared:
    name: ClassVar[str] = "live_translation_cleared"


@dataclass(frozen=True)
class TranslationToggled:
    name: ClassVar[str] = "translation_toggled"
    enabled: bool


InboundEvent = Union[
    SegmentCreated,
    SegmentTranscribed,
    SegmentTranslated,
    SegmentSpeakered,
    SegmentListCleared,
    WindowTranscribed,
    LiveTranslationStart,
    LiveTranslationChunk,
    LiveTranslationDone,
    LiveTranslationError,
    LiveTranslationCleared,
    TranslationToggled,
]


def normalize_event_name(name: Any) -> str:
    return _text(name).strip().lower().replace("-", "_")


def _parse_segment(cls, payload: Mapping[str, Any], required: Tuple[str, ...] = ()):
    sid = _segment_id(payload)
    if not sid:
        return None
    fields = _segment_fields(payload)
    if any(key not in fields for key in required):
        return None
    return cls(segment_id=sid, fields=fields)


def _parse_live(payload: Mapping[str, Any]) -> Optional[Tuple[float, str]]:
    order = _number(_pick(payload, "order"))
    stream_id = _text(_pick(payload, "stream_id")).strip()
    if order is None or not stream_id:
        return None
    return order, stream_id


def parse_event(name: Any, payload: Optional[Mapping[str, Any]] = None) -> Optional[InboundEvent]:
    kind = normalize_event_name(name)
    data: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}

    if kind == SegmentCreated.name:
        return _parse_segment(SegmentCreated, data)
    if kind == SegmentTranscribed.name:
        return _parse_segment(SegmentTranscribed, data)
    if kind == SegmentTranslated.name:
        return _parse_segment(SegmentTranslated, data, required=("translation",))
    if kind == SegmentSpeakered.name:
        return _parse_segment(SegmentSpeakered, data)
    if kind == SegmentListCleared.name:
        return SegmentListCleared()
    if kind == LiveTranslationCleared.name:
        return LiveTranslationCleared()

    if kind == WindowTranscribed.name:
        text = _pick(data, "text")
        if text is _MISSING or text is None:
            return None
        speaker_id = _pick(data, "speaker_id")
        speaker_mixed = _pick(data, "speaker_mixed")
        return WindowTranscribed(
            text=_text(text),
            elapsed_ms=_number(_pick(data, "elapsed_ms")),
            window_ms=_number(_pick(data, "window_ms")),
            has_speaker=speaker_id is not _MISSING or speaker_mixed is not _MISSING,
            speaker_id=None if speaker_id is _MISSING else speaker_id,
            speaker_mixed=bool(speaker_mixed) if speaker_mixed is not _MISSING else False,
        )

    if kind == TranslationToggled.name:
        enabled = _pick(data, "enabled")
        if enabled is _MISSING or enabled is None:
            return None
        return TranslationToggled(enabled=bool(enabled))

    if kind in {
        LiveTranslationStart.name,
        LiveTranslationChunk.name,
        LiveTranslationDone.name,
        LiveTranslationError.name,
    }:
        head = _parse_live(data)
        if head is None:
            return None
        order, stream_id = head
        if kind == LiveTranslationStart.name:
            return LiveTranslationStart(order=order, stream_id=stream_id)
        if kind == LiveTranslationChunk.name:
            chunk = _pick(data, "chunk")
            if chunk is _MISSING or chunk is None:
                return None
            return LiveTranslationChunk(order=order, stream_id=stream_id, chunk=_text(chunk))
        if kind == LiveTranslationDone.name:
            translation = _pick(data, "translation")
            if translation is _MISSING:
                return None
            return LiveTranslationDone(order=order, stream_id=stream_id, translation=_text(translation))
        return LiveTranslationError(order=order, stream_id=stream_id, error=_text(_pick(data, "error")))

    return None
