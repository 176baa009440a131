import asyncio

import pytest

from captionsync.streaming.dispatch_queue import DispatchQueue


class _VirtualClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


def test_duplicate_enqueue_dispatches_once():
    calls = []
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        calls.append(segment_id)

    async def scenario():
        q = DispatchQueue(dispatch, pacing_interval_sec=1.0, sleep=clock.sleep, enabled=True)
        assert q.enqueue("seg-1") is True
        assert q.enqueue("seg-1") is False
        assert q.depth == 1
        await q.wait_idle()
        return q

    q = asyncio.run(scenario())
    assert calls == ["seg-1"]
    assert q.is_requested("seg-1")
    assert q.dispatched == 1


def test_drain_is_fifo_and_paced():
    calls = []
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        calls.append((segment_id, clock.now))

    async def scenario():
        q = DispatchQueue(dispatch, pacing_interval_sec=2.5, sleep=clock.sleep, enabled=True)
        for sid in ["a", "b", "c"]:
            q.enqueue(sid)
        await q.wait_idle()

    asyncio.run(scenario())
    assert calls == [("a", 0.0), ("b", 2.5), ("c", 5.0)]
    assert clock.sleeps == [2.5, 2.5, 2.5]


def test_single_drain_loop_runs_at_a_time():
    active = 0
    peak = 0
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1

    async def scenario():
        q = DispatchQueue(dispatch, pacing_interval_sec=0.0, sleep=clock.sleep, enabled=True)
        q.enqueue("a")
        await asyncio.sleep(0)
        q.enqueue("b")
        q.enqueue("c")
        await q.wait_idle()
        return q

    q = asyncio.run(scenario())
    assert peak == 1
    assert q.dispatched == 3
    assert not q.draining


def test_entries_arriving_after_drain_restart_loop():
    calls = []
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        calls.append(segment_id)

    async def scenario():
        q = DispatchQueue(dispatch, pacing_interval_sec=0.0, sleep=clock.sleep, enabled=True)
        q.enqueue("a")
        await q.wait_idle()
        q.enqueue("b")
        await q.wait_idle()

    asyncio.run(scenario())
    assert calls == ["a", "b"]


def test_failure_unmarks_and_reports():
    failures = []
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        raise RuntimeError("backend down")

    async def scenario():
        q = DispatchQueue(
            dispatch,
            on_failure=lambda sid, exc: failures.append((sid, str(exc))),
            sleep=clock.sleep,
            enabled=True,
        )
        q.enqueue("a")
        await q.wait_idle()
        assert not q.is_requested("a")
        assert q.enqueue("a") is True
        await q.wait_idle()
        return q

    q = asyncio.run(scenario())
    assert failures == [("a", "backend down"), ("a", "backend down")]
    assert q.failed == 2


def test_revalidation_skips_ineligible_entries():
    calls = []
    translated = set()
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        calls.append(segment_id)

    async def scenario():
        q = DispatchQueue(
            dispatch,
            is_eligible=lambda sid: sid not in translated,
            pacing_interval_sec=0.0,
            sleep=clock.sleep,
            enabled=True,
        )
        q.enqueue("a")
        q.enqueue("b")
        translated.add("b")
        await q.wait_idle()
        return q

    q = asyncio.run(scenario())
    assert calls == ["a"]
    assert not q.is_requested("b")


def test_disabled_queue_rejects_and_skips():
    calls = []
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        calls.append(segment_id)

    async def scenario():
        q = DispatchQueue(dispatch, sleep=clock.sleep, enabled=False)
        assert q.enqueue("a") is False
        q.enabled = True
        q.enqueue("b")
        q.enabled = False
        await q.wait_idle()

    asyncio.run(scenario())
    assert calls == []


def test_clear_leaves_in_flight_request_and_drops_its_failure():
    failures = []
    clock = _VirtualClock()
    release = None

    async def dispatch(segment_id: str) -> None:
        await release.wait()
        raise RuntimeError("late failure")

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        q = DispatchQueue(
            dispatch,
            on_failure=lambda sid, exc: failures.append(sid),
            sleep=clock.sleep,
            enabled=True,
        )
        q.enqueue("a")
        q.enqueue("b")
        await asyncio.sleep(0)
        assert q.clear() == 1
        assert q.depth == 0
        assert q.draining
        release.set()
        await q.wait_idle()
        return q

    q = asyncio.run(scenario())
    assert failures == []
    assert q.failed == 1


def test_enqueue_requires_running_loop():
    calls = []

    async def dispatch(segment_id: str) -> None:
        calls.append(segment_id)

    q = DispatchQueue(dispatch, pacing_interval_sec=0.0, enabled=True)
    with pytest.raises(RuntimeError):
        q.enqueue("a")
    assert q.depth == 0
    assert not q.is_requested("a")
    assert not q.draining

    async def scenario():
        assert q.enqueue("b") is True
        await q.wait_idle()

    asyncio.run(scenario())
    assert calls == ["b"]


def test_close_cancels_drain():
    clock = _VirtualClock()

    async def dispatch(segment_id: str) -> None:
        await asyncio.Event().wait()

    async def scenario():
        q = DispatchQueue(dispatch, sleep=clock.sleep, enabled=True)
        q.enqueue("a")
        await asyncio.sleep(0)
        await q.close()
        return q

    q = asyncio.run(scenario())
    assert not q.draining
    assert q.depth == 0
