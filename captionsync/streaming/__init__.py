# coding=utf-8

from .caption_stabilizer import CaptionStabilizer, CaptionState, common_prefix_len
from .dispatch_queue import DispatchQueue
from .ordering import parse_name_timestamp, segment_order, sort_key
from .stream_reassembler import (
    TRANSLATION_FAILED,
    LiveTranslationTranscript,
    StreamReassembler,
    TranslationStream,
)
from .text_pool import FinalizedEntry, FinalizedLog, LogChange, join_segments, normalize_text, trim_prefix_overlap

__all__ = [
    "CaptionStabilizer",
    "CaptionState",
    "DispatchQueue",
    "FinalizedEntry",
    "FinalizedLog",
    "LiveTranslationTranscript",
    "LogChange",
    "StreamReassembler",
    "TRANSLATION_FAILED",
    "TranslationStream",
    "common_prefix_len",
    "join_segments",
    "normalize_text",
    "parse_name_timestamp",
    "segment_order",
    "sort_key",
    "trim_prefix_overlap",
]
