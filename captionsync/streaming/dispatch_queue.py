# coding=utf-8
from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import suppress
from typing import Awaitable, Callable, Deque, Optional, Set

logger = logging.getLogger(__name__)

DispatchFn = Callable[[str], Awaitable[None]]
EligibleFn = Callable[[str], bool]
FailureFn = Callable[[str, BaseException], None]
SleepFn = Callable[[float], Awaitable[None]]


def _always_eligible(segment_id: str) -> bool:
    return True


def _ignore_failure(segment_id: str, exc: BaseException) -> None:
    return None


class DispatchQueue:
    """
    Single-concurrency, paced FIFO of segment ids awaiting a translation request.

    One drain task pops the head, re-validates it, awaits the outbound request
    and then sleeps ``pacing_interval_sec`` before the next entry. An id stays
    in the requested set from enqueue until ``mark_done`` (result delivered) or
    a failed request, so it cannot be queued twice while outstanding.
    """

    def __init__(
        self,
        dispatch: DispatchFn,
        *,
        is_eligible: Optional[EligibleFn] = None,
        on_failure: Optional[FailureFn] = None,
        pacing_interval_sec: float = 1.0,
        sleep: Optional[SleepFn] = None,
        enabled: bool = False,
    ) -> None:
        self._dispatch = dispatch
        self._is_eligible = is_eligible or _always_eligible
        self._on_failure = on_failure or _ignore_failure
        self.pacing_interval_sec = max(0.0, float(pacing_interval_sec))
        self._sleep = sleep or asyncio.sleep
        self.enabled = bool(enabled)

        self._fifo: Deque[str] = deque()
        self._requested: Set[str] = set()
        self._draining = False
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self.dispatched = 0
        self.failed = 0

    @property
    def depth(self) -> int:
        return len(self._fifo)

    @property
    def draining(self) -> bool:
        return self._draining

    def is_requested(self, segment_id: str) -> bool:
        return str(segment_id or "") in self._requested

    def enqueue(self, segment_id: str) -> bool:
        sid = str(segment_id or "").strip()
        if not sid or not self.enabled:
            return False
        if sid in self._requested:
            return False
        if not self._is_eligible(sid):
            return False
        self._requested.add(sid)
        self._fifo.append(sid)
        try:
            self._ensure_draining()
        except RuntimeError:
            self._fifo.pop()
            self._requested.discard(sid)
            raise
        return True

    def mark_done(self, segment_id: str) -> None:
        self._requested.discard(str(segment_id or ""))

    def clear(self) -> int:
        """Drop queued and requested ids. An in-flight request is left to finish."""
        dropped = len(self._fifo)
        self._fifo.clear()
        self._requested.clear()
        self._generation += 1
        return dropped

    async def wait_idle(self) -> None:
        while self._task is not None:
            await self._task

    async def close(self) -> None:
        self.clear()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._task = None
        self._draining = False

    def _ensure_draining(self) -> None:
        if self._draining:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._drain())
        self._draining = True

    async def _drain(self) -> None:
        try:
            while self._fifo:
                segment_id = self._fifo.popleft()
                generation = self._generation
                if not self.enabled or not self._is_eligible(segment_id):
                    self._requested.discard(segment_id)
                    logger.debug("dispatch skip segment=%s enabled=%s", segment_id, self.enabled)
                    continue
                try:
                    await self._dispatch(segment_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.failed += 1
                    logger.warning("translation request failed segment=%s err=%s", segment_id, exc)
                    if generation == self._generation:
                        self._requested.discard(segment_id)
                        self._on_failure(segment_id, exc)
                else:
                    self.dispatched += 1
                await self._sleep(self.pacing_interval_sec)
        finally:
            self._draining = False
            self._task = None
        if self._fifo:
            self._ensure_draining()
