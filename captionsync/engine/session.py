# coding=utf-8
"""
CaptionSession owns every piece of engine state and routes each inbound event
to the component that handles it.

All handlers are synchronous and run to completion. The only suspension points
are the dispatch queue drain task and the live translation requests, both of
which re-enter the session through ``handle`` or the queue callbacks.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from contextlib import suppress
from typing import Any, Callable, Dict, Mapping, Optional, Set

from captionsync.config import EngineConfig
from captionsync.engine.backend import NullBackend, SegmentBackend
from captionsync.engine.events import (
    InboundEvent,
    LiveTranslationChunk,
    LiveTranslationCleared,
    LiveTranslationDone,
    LiveTranslationError,
    LiveTranslationStart,
    SegmentCreated,
    SegmentListCleared,
    SegmentSpeakered,
    SegmentTranscribed,
    SegmentTranslated,
    TranslationToggled,
    WindowTranscribed,
    parse_event,
)
from captionsync.engine.segments import (
    CaptionView,
    RenderSnapshot,
    Segment,
    StreamView,
    new_segment,
    ordered_segments,
    render_segment,
    speaker_label,
)
from captionsync.streaming import (
    CaptionStabilizer,
    DispatchQueue,
    FinalizedLog,
    LiveTranslationTranscript,
    StreamReassembler,
    normalize_text,
)
from captionsync.streaming.dispatch_queue import SleepFn

logger = logging.getLogger(__name__)

META_IDLE = "Idle"
META_LISTENING = "Listening..."


def _format_meta(window_ms: Optional[float], elapsed_ms: Optional[float]) -> str:
    parts = []
    if window_ms is not None:
        parts.append(f"{max(0.0, window_ms) / 1000.0:.1f}s window")
    if elapsed_ms is not None:
        parts.append(f"{max(0.0, elapsed_ms) / 1000.0:.1f}s")
    return " | ".join(parts) if parts else META_LISTENING


class CaptionSession:
    def __init__(
        self,
        backend: Optional[SegmentBackend] = None,
        config: Optional[EngineConfig] = None,
        *,
        sleep: Optional[SleepFn] = None,
        now_ms: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.backend: SegmentBackend = backend or NullBackend(self.config.default_translate_provider)
        self._now_ms = now_ms

        self.segments: Dict[str, Segment] = {}
        self.log = FinalizedLog()
        self.stabilizer = CaptionStabilizer(
            hysteresis_hits=self.config.hysteresis_hits,
            overlap_window_chars=self.config.overlap_window_chars,
            overlap_min_chars=self.config.overlap_min_chars,
        )
        self.reassembler = StreamReassembler()
        self.live_transcript = LiveTranslationTranscript()
        self.translation_enabled = bool(self.config.translation_enabled)
        self.queue = DispatchQueue(
            self._request_translation,
            is_eligible=self._needs_translation,
            on_failure=self._on_translation_failed,
            pacing_interval_sec=self.config.translation_pacing_sec,
            sleep=sleep,
            enabled=self.translation_enabled,
        )

        self.live_meta = META_IDLE
        self.live_speaker = ""
        self._live_requested: Set[str] = set()
        self._live_tasks: Set[asyncio.Task] = set()
        self._generation = 0
        self._trace_seq = 0
        self.on_change: Optional[Callable[[], None]] = None

        self._handlers: Dict[type, Callable[[Any], bool]] = {
            SegmentCreated: self._on_segment_created,
            SegmentTranscribed: self._on_segment_transcribed,
            SegmentTranslated: self._on_segment_translated,
            SegmentSpeakered: self._on_segment_speakered,
            SegmentListCleared: self._on_list_cleared,
            WindowTranscribed: self._on_window_transcribed,
            LiveTranslationStart: self._on_live_start,
            LiveTranslationChunk: self._on_live_chunk,
            LiveTranslationDone: self._on_live_done,
            LiveTranslationError: self._on_live_error,
            LiveTranslationCleared: self._on_live_cleared,
            TranslationToggled: self._on_translation_toggled,
        }

    # ----- routing -----

    def handle(self, event: InboundEvent) -> bool:
        """Apply one event. Returns False when it was stale or had no effect."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("unhandled event type=%s", type(event).__name__)
            return False
        applied = bool(handler(event))
        if applied:
            self._notify()
        return applied

    def handle_raw(self, name: Any, payload: Optional[Mapping[str, Any]] = None) -> bool:
        event = parse_event(name, payload)
        if event is None:
            logger.debug("dropped malformed event name=%s", name)
            return False
        return self.handle(event)

    # ----- lifecycle -----

    async def load(self) -> int:
        try:
            rows = await self.backend.list_segments()
        except Exception as exc:
            logger.warning("segment list load failed err=%s", exc)
            return 0
        loaded = 0
        for row in rows:
            event = parse_event(SegmentCreated.name, row)
            if event is None:
                logger.debug("dropped malformed segment row keys=%s", sorted(row))
                continue
            self.handle(event)
            loaded += 1
        logger.info("session loaded segments=%d", loaded)
        if self.translation_enabled:
            self.queue_missing_translations()
        return loaded

    async def wait_idle(self) -> None:
        while self._live_tasks:
            await asyncio.gather(*list(self._live_tasks), return_exceptions=True)
        await self.queue.wait_idle()

    async def close(self) -> None:
        await self.queue.close()
        tasks = list(self._live_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._live_tasks.clear()

    # ----- translation toggle / dispatch -----

    def set_translation_enabled(self, enabled: bool) -> bool:
        enabled = bool(enabled)
        if enabled == self.translation_enabled:
            return False
        self.translation_enabled = enabled
        self.queue.enabled = enabled
        self._trace("session", "translation_toggled", enabled=enabled)
        if enabled:
            self.queue_missing_translations()
        return True

    def queue_missing_translations(self) -> int:
        queued = 0
        for seg in ordered_segments(self.segments):
            if self._enqueue_translation(seg):
                queued += 1
        if queued:
            logger.info("queued missing translations count=%d", queued)
        return queued

    def _needs_translation(self, segment_id: str) -> bool:
        seg = self.segments.get(segment_id)
        return bool(self.translation_enabled and seg is not None and seg.has_transcript and not seg.has_translation)

    def _enqueue_translation(self, seg: Segment) -> bool:
        if not self.queue.enqueue(seg.segment_id):
            return False
        # Back to pending until a result or failure arrives.
        seg.translation = None
        seg.translation_error = ""
        self._trace("dispatch", "enqueue", segment_id=seg.segment_id, depth=self.queue.depth)
        return True

    async def translate_provider(self) -> str:
        default = self.config.default_translate_provider
        try:
            provider = str(await self.backend.get_translate_provider() or "").strip().lower()
        except Exception as exc:
            logger.warning("translate provider lookup failed err=%s", exc)
            return default
        if provider not in self.config.translate_providers:
            if provider:
                logger.debug("unknown translate provider=%s fallback=%s", provider, default)
            return default
        return provider

    async def _request_translation(self, segment_id: str) -> None:
        provider = await self.translate_provider()
        self._trace("dispatch", "request", segment_id=segment_id, provider=provider)
        await self.backend.translate_segment(segment_id, provider)

    def _on_translation_failed(self, segment_id: str, exc: BaseException) -> None:
        seg = self.segments.get(segment_id)
        if seg is None:
            return
        seg.mark_translation_failed()
        self._trace("dispatch", "failed", segment_id=segment_id, error=str(exc))
        self._notify()

    def _maybe_translate_live(self, seg: Segment) -> None:
        if not (self.translation_enabled and self.config.live_translation):
            return
        text = normalize_text(seg.transcript)
        if not text or seg.segment_id in self._live_requested:
            return
        self._live_requested.add(seg.segment_id)
        task = asyncio.get_running_loop().create_task(
            self._request_live_translation(text, seg.segment_id, seg.order, self._generation)
        )
        self._live_tasks.add(task)
        task.add_done_callback(self._live_tasks.discard)

    async def _request_live_translation(self, text: str, segment_id: str, order: float, generation: int) -> None:
        try:
            provider = await self.translate_provider()
            self._trace("live", "request", segment_id=segment_id, order=order, provider=provider)
            await self.backend.translate_live(text, provider, segment_id, order)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("live translation request failed segment=%s err=%s", segment_id, exc)
            if generation == self._generation:
                self.handle(LiveTranslationError(order=order, stream_id=segment_id, error=""))

    # ----- segment events -----

    def _on_segment_created(self, event: SegmentCreated) -> bool:
        seg = self.segments.get(event.segment_id)
        if seg is None:
            seg = new_segment(event.segment_id, event.fields, now_ms=self._now_ms)
            self.segments[seg.segment_id] = seg
            changed = True
        else:
            changed = seg.merge(event.fields)
        changed = self._sync_finalized(seg) or changed
        self._trace("segments", "created", segment_id=seg.segment_id, order=seg.order, changed=changed)
        return changed

    def _on_segment_transcribed(self, event: SegmentTranscribed) -> bool:
        seg = self.segments.get(event.segment_id)
        if seg is None:
            seg = new_segment(event.segment_id, event.fields, now_ms=self._now_ms)
            self.segments[seg.segment_id] = seg
            changed = True
        else:
            changed = seg.merge(event.fields)
        changed = self._sync_finalized(seg) or changed
        self._trace(
            "segments",
            "transcribed",
            segment_id=seg.segment_id,
            changed=changed,
            text_chars=len(normalize_text(seg.transcript)),
        )
        if changed and seg.has_transcript and self.translation_enabled:
            self._enqueue_translation(seg)
            self._maybe_translate_live(seg)
        return changed

    def _on_segment_translated(self, event: SegmentTranslated) -> bool:
        self.queue.mark_done(event.segment_id)
        seg = self.segments.get(event.segment_id)
        if seg is None:
            logger.debug("dropped translation for unknown segment=%s", event.segment_id)
            return False
        changed = seg.merge(event.fields)
        if not seg.has_translation and not seg.translation_error and seg.translation is not None:
            seg.mark_translation_failed()
            changed = True
        changed = self._sync_finalized(seg) or changed
        self._trace("segments", "translated", segment_id=seg.segment_id, changed=changed)
        return changed

    def _on_segment_speakered(self, event: SegmentSpeakered) -> bool:
        seg = self.segments.get(event.segment_id)
        if seg is None:
            logger.debug("dropped speaker update for unknown segment=%s", event.segment_id)
            return False
        changed = seg.merge(event.fields)
        changed = self._sync_finalized(seg) or changed
        return changed

    def _sync_finalized(self, seg: Segment) -> bool:
        text = normalize_text(seg.transcript)
        if not text:
            return False
        change = self.log.upsert(seg.segment_id, seg.order, text)
        if not change.changed:
            return False
        seg.late = change.late
        self.stabilizer.reset()
        self._trace(
            "finalized_log",
            "insert" if change.inserted else "update",
            segment_id=seg.segment_id,
            late=change.late,
            entries=len(self.log),
        )
        return True

    def _on_list_cleared(self, event: SegmentListCleared) -> bool:
        self._generation += 1
        self.segments.clear()
        self.log.clear()
        self.stabilizer.reset()
        self.reassembler.clear()
        self.live_transcript.clear()
        dropped = self.queue.clear()
        self._live_requested.clear()
        self.live_meta = META_IDLE
        self.live_speaker = ""
        logger.info("segment list cleared dropped_queue=%d", dropped)
        self._trace("session", "cleared", dropped_queue=dropped)
        return True

    # ----- live caption -----

    def _on_window_transcribed(self, event: WindowTranscribed) -> bool:
        before = (self.stabilizer.state.stable_text, self.stabilizer.state.partial_text)
        state = self.stabilizer.update(event.text, self.log.text)
        self.live_meta = _format_meta(event.window_ms, event.elapsed_ms)
        self.live_speaker = speaker_label(event.speaker_id, event.speaker_mixed) if event.has_speaker else ""
        self._trace(
            "caption",
            "window",
            stable_chars=len(state.stable_text),
            partial_chars=len(state.partial_text),
            pending_hits=state.pending_hits,
        )
        return before != (state.stable_text, state.partial_text)

    # ----- live translation stream -----

    def _on_live_start(self, event: LiveTranslationStart) -> bool:
        applied = self.reassembler.start(event.order, event.stream_id)
        queued = self.live_transcript.start(event.order)
        self._trace_live("start", event.order, event.stream_id, applied)
        return applied or queued

    def _on_live_chunk(self, event: LiveTranslationChunk) -> bool:
        applied = self.reassembler.chunk(event.order, event.stream_id, event.chunk)
        tail = self.live_transcript.chunk(event.order, event.chunk)
        self._trace_live("chunk", event.order, event.stream_id, applied, chunk_chars=len(event.chunk))
        return applied or tail

    def _on_live_done(self, event: LiveTranslationDone) -> bool:
        applied = self.reassembler.done(event.order, event.stream_id, event.translation)
        committed = self.live_transcript.done(event.order, event.translation)
        self._trace_live("done", event.order, event.stream_id, applied)
        return applied or committed

    def _on_live_error(self, event: LiveTranslationError) -> bool:
        applied = self.reassembler.error(event.order, event.stream_id, event.error)
        committed = self.live_transcript.error(event.order, event.error)
        self._trace_live("error", event.order, event.stream_id, applied)
        return applied or committed

    def _on_live_cleared(self, event: LiveTranslationCleared) -> bool:
        self.reassembler.clear()
        self.live_transcript.clear()
        self.stabilizer.reset()
        self.live_meta = META_IDLE
        self.live_speaker = ""
        self._trace("stream", "cleared")
        return True

    def _on_translation_toggled(self, event: TranslationToggled) -> bool:
        return self.set_translation_enabled(event.enabled)

    # ----- projection -----

    def snapshot(self) -> RenderSnapshot:
        rows = [render_segment(seg, self.translation_enabled) for seg in ordered_segments(self.segments)]
        st = self.stabilizer.state
        stream = self.reassembler.stream
        return RenderSnapshot(
            segments=rows,
            caption=CaptionView(
                stable_text=st.stable_text,
                partial_text=st.partial_text,
                meta=self.live_meta,
                speaker=self.live_speaker,
            ),
            stream=StreamView(
                order=stream.order if math.isfinite(stream.order) else None,
                stream_id=stream.stream_id,
                text=stream.display_text,
                status=stream.status,
            ),
            live_transcript=self.live_transcript.display_text,
            finalized_text=self.log.text,
            translation_enabled=self.translation_enabled,
            status=f"Saved {len(rows)}" if rows else "No segments",
            queue_depth=self.queue.depth,
        )

    # ----- tracing -----

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _trace_live(self, event: str, order: float, stream_id: str, applied: bool, **payload: Any) -> None:
        if not applied:
            logger.debug("stale live translation %s order=%s id=%s", event, order, stream_id)
        self._trace("stream", event, order=order, stream_id=stream_id, applied=applied, **payload)

    def _trace(self, component: str, event: str, **payload: Any) -> None:
        if not self.config.trace_log:
            return
        self._trace_seq += 1
        row: Dict[str, Any] = {
            "component": component,
            "event": event,
            "seq": int(self._trace_seq),
            "ts_ms": int(time.time() * 1000),
            "generation": int(self._generation),
        }
        if payload:
            row.update(payload)
        logger.info("engine_trace %s", json.dumps(row, ensure_ascii=False, separators=(",", ":"), default=str))
