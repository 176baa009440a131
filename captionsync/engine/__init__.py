# coding=utf-8

from .backend import BackendError, HttpSegmentBackend, NullBackend, SegmentBackend
from .events import InboundEvent, normalize_event_name, parse_event
from .segments import CaptionView, RenderSnapshot, Segment, SegmentView, StreamView
from .session import CaptionSession

__all__ = [
    "BackendError",
    "CaptionSession",
    "CaptionView",
    "HttpSegmentBackend",
    "InboundEvent",
    "NullBackend",
    "RenderSnapshot",
    "Segment",
    "SegmentBackend",
    "SegmentView",
    "StreamView",
    "normalize_event_name",
    "parse_event",
]
