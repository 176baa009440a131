# coding=utf-8
from __future__ import annotations

import bisect
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

TRANSLATION_FAILED = "Translation failed"

STATUS_IDLE = "idle"
STATUS_PENDING = "pending"
STATUS_STREAMING = "streaming"
STATUS_READY = "ready"
STATUS_ERROR = "error"


@dataclass
class TranslationStream:
    order: float = -math.inf
    stream_id: str = ""
    accumulated_text: str = ""
    status: str = STATUS_IDLE
    error: str = ""

    @property
    def display_text(self) -> str:
        if self.status == STATUS_ERROR:
            return self.error or TRANSLATION_FAILED
        return self.accumulated_text


class StreamReassembler:
    """
    Merge start/chunk/done/error events of streaming translations into the
    text of the current live head.

    Order is the only authority for which stream is current. When two streams
    race at the same order the first id wins and the others are dropped.
    Every method returns True when the event changed the stream, False when
    it was stale or a redelivery.
    """

    def __init__(self) -> None:
        self.stream = TranslationStream()

    def start(self, order: float, stream_id: str) -> bool:
        if order < self.stream.order:
            return False
        self.stream = TranslationStream(order=float(order), stream_id=str(stream_id or ""), status=STATUS_PENDING)
        return True

    def chunk(self, order: float, stream_id: str, payload: str) -> bool:
        if not self._accept(order, stream_id):
            return False
        if not payload:
            return False
        self.stream.accumulated_text += payload
        self.stream.status = STATUS_STREAMING
        return True

    def done(self, order: float, stream_id: str, translation: str) -> bool:
        before = replace(self.stream)
        if not self._accept(order, stream_id):
            return False
        text = str(translation or "").strip()
        self.stream.accumulated_text = text
        if text:
            self.stream.status = STATUS_READY
            self.stream.error = ""
        else:
            self.stream.status = STATUS_ERROR
            self.stream.error = TRANSLATION_FAILED
        return self.stream != before

    def error(self, order: float, stream_id: str, message: str) -> bool:
        before = replace(self.stream)
        if not self._accept(order, stream_id):
            return False
        self.stream.accumulated_text = ""
        self.stream.status = STATUS_ERROR
        self.stream.error = str(message or "").strip() or TRANSLATION_FAILED
        return self.stream != before

    def clear(self) -> None:
        self.stream = TranslationStream()

    def _accept(self, order: float, stream_id: str) -> bool:
        cur = self.stream
        if order < cur.order:
            return False
        sid = str(stream_id or "")
        if order > cur.order:
            self.stream = TranslationStream(order=float(order), stream_id=sid, status=STATUS_PENDING)
            return True
        if cur.stream_id and sid and sid != cur.stream_id:
            return False
        return True


class LiveTranslationTranscript:
    """
    Ordered history of completed live translations.

    Results are committed strictly in ascending order of the started orders;
    chunks of the head order form a streaming tail. Anything at or below the
    last committed order is dropped, so redelivered or straggling results
    never append again.
    """

    def __init__(self) -> None:
        self.committed: List[str] = []
        self.streaming_order: Optional[float] = None
        self.streaming_buffer = ""
        self._orders: List[float] = []
        self._pending: Dict[float, str] = {}
        self._flushed_through = -math.inf

    @property
    def text(self) -> str:
        return "\n".join(self.committed)

    @property
    def display_text(self) -> str:
        base = self.text
        if not self.streaming_buffer:
            return base
        return f"{base}\n{self.streaming_buffer}" if base else self.streaming_buffer

    def start(self, order: float) -> bool:
        if order <= self._flushed_through:
            return False
        self._enqueue(order)
        if self.streaming_order is None or self._orders[0] == order:
            self.streaming_order = self._orders[0]
            self.streaming_buffer = ""
        return True

    def chunk(self, order: float, payload: str) -> bool:
        if not payload or order <= self._flushed_through:
            return False
        if self.streaming_order is None:
            self.streaming_order = self._orders[0] if self._orders else float(order)
        if order != self.streaming_order:
            return False
        self.streaming_buffer += payload
        return True

    def done(self, order: float, translation: str) -> bool:
        text = str(translation or "").strip()
        return self._resolve(order, text or TRANSLATION_FAILED)

    def error(self, order: float, message: str) -> bool:
        text = str(message or "").strip() or TRANSLATION_FAILED
        return self._resolve(order, text)

    def clear(self) -> None:
        self.committed.clear()
        self.streaming_order = None
        self.streaming_buffer = ""
        self._orders.clear()
        self._pending.clear()
        self._flushed_through = -math.inf

    def _enqueue(self, order: float) -> None:
        value = float(order)
        idx = bisect.bisect_left(self._orders, value)
        if idx < len(self._orders) and self._orders[idx] == value:
            return
        self._orders.insert(idx, value)

    def _resolve(self, order: float, text: str) -> bool:
        value = float(order)
        if value <= self._flushed_through or self._pending.get(value) == text:
            return False
        self._enqueue(value)
        self._pending[value] = text
        self._flush_ready()
        return True

    def _flush_ready(self) -> None:
        while self._orders:
            head = self._orders[0]
            text = self._pending.pop(head, None)
            if text is None:
                break
            self._orders.pop(0)
            self._flushed_through = head
            if text:
                self.committed.append(text)
            if self.streaming_order == head:
                self.streaming_order = None
                self.streaming_buffer = ""
