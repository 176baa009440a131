#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import websockets

from captionsync.config import EngineConfig
from captionsync.debug.caption_selfcheck import analyze_snapshots, summarize_result
from captionsync.engine.backend import NullBackend
from captionsync.engine.events import normalize_event_name
from captionsync.engine.session import CaptionSession


def _load_events_jsonl(path: Path) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            text = line.strip()
            if not text:
                continue
            row = json.loads(text)
            if isinstance(row, dict) and str(row.get("type", "")).strip():
                events.append(row)
    return events


def _save_jsonl(path: Path, rows: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")


async def _no_sleep(delay: float) -> None:
    return None


async def _replay_offline(events: List[Dict[str, Any]], translation: bool) -> List[Dict[str, Any]]:
    config = EngineConfig(translation_enabled=translation, translation_pacing_sec=0.0)
    session = CaptionSession(NullBackend(), config, sleep=_no_sleep)
    snapshots: List[Dict[str, Any]] = [session.snapshot().to_dict()]
    try:
        for event in events:
            payload = dict(event)
            name = normalize_event_name(payload.pop("type", ""))
            session.handle_raw(name, payload)
            snapshots.append(session.snapshot().to_dict())
        await session.wait_idle()
    finally:
        await session.close()
    return snapshots


async def _recv_loop(ws, messages: List[Dict[str, Any]], stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=0.5)
        except asyncio.TimeoutError:
            continue
        except Exception:
            break
        if isinstance(raw, bytes):
            continue
        messages.append(json.loads(raw))


async def _replay_ws(ws_url: str, events: List[Dict[str, Any]], interval_sec: float, settle_sec: float) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    stop = asyncio.Event()
    async with websockets.connect(ws_url, max_size=16 * 1024 * 1024) as ws:
        ready = json.loads(await ws.recv())
        messages.append(ready)
        if str(ready.get("type", "")).lower() != "ready":
            raise RuntimeError(f"unexpected first message: {ready}")

        recv_task = asyncio.create_task(_recv_loop(ws, messages, stop))
        for event in events:
            await ws.send(json.dumps(event, ensure_ascii=False))
            if interval_sec > 0:
                await asyncio.sleep(interval_sec)
        await asyncio.sleep(max(0.0, settle_sec))
        stop.set()
        await recv_task
    return messages


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Replay caption engine events and self-check the rendered snapshots.")
    p.add_argument("--events-jsonl", required=True, help="jsonl file with one {\"type\": <event>, ...} object per line")
    p.add_argument("--ws-url", default="", help="send events to a running gateway instead of an offline session")
    p.add_argument("--interval-ms", type=int, default=0, help="delay between sent events in ws mode")
    p.add_argument("--settle-sec", type=float, default=1.0, help="wait for trailing snapshots in ws mode")
    p.add_argument(
        "--translation",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="start the offline session with translation enabled",
    )
    p.add_argument("--snapshots-jsonl", default="", help="save observed snapshots to jsonl")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    events = _load_events_jsonl(Path(args.events_jsonl).expanduser())

    if args.ws_url:
        snapshots = asyncio.run(
            _replay_ws(
                ws_url=str(args.ws_url),
                events=events,
                interval_sec=max(0, int(args.interval_ms)) / 1000.0,
                settle_sec=float(args.settle_sec),
            )
        )
    else:
        snapshots = asyncio.run(_replay_offline(events, translation=bool(args.translation)))

    if args.snapshots_jsonl:
        _save_jsonl(Path(args.snapshots_jsonl).expanduser(), snapshots)

    result = analyze_snapshots(snapshots)
    print(f"events={len(events)}")
    print(summarize_result(result))


if __name__ == "__main__":
    main()
