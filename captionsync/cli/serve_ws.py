# coding=utf-8
# Copyright 2026 The Alibaba Qwen team.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Caption engine event gateway over HTTP and WebSocket.
"""
import argparse
import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from captionsync.config import DEFAULT_TRANSLATE_PROVIDER, TRANSLATE_PROVIDERS, EngineConfig
from captionsync.engine.backend import HttpSegmentBackend, NullBackend, SegmentBackend
from captionsync.engine.events import normalize_event_name, parse_event
from captionsync.engine.session import CaptionSession

logger = logging.getLogger(__name__)


def _parse_json_message(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid json: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("json message must be an object")
    return payload


def _create_app(
    args: argparse.Namespace,
    backend: Optional[SegmentBackend] = None,
    session: Optional[CaptionSession] = None,
) -> FastAPI:
    if session is None:
        session = CaptionSession(backend, EngineConfig.from_args(args))
    load_on_startup = bool(getattr(args, "load_on_startup", True))
    clients: Set[WebSocket] = set()
    broadcast_tasks: Set[asyncio.Task] = set()
    send_lock = asyncio.Lock()

    def _snapshot_message(kind: str) -> Dict[str, Any]:
        return {"type": kind, "snapshot": session.snapshot().to_dict()}

    async def _broadcast() -> None:
        if not clients:
            return
        payload = _snapshot_message("snapshot")
        async with send_lock:
            for ws in list(clients):
                try:
                    await ws.send_json(payload)
                except Exception as exc:
                    logger.debug("drop websocket client err=%s", exc)
                    clients.discard(ws)

    def _on_change() -> None:
        if not clients:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(_broadcast())
        broadcast_tasks.add(task)
        task.add_done_callback(_on_broadcast_done)

    def _on_broadcast_done(task: asyncio.Task) -> None:
        broadcast_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("snapshot broadcast failed err=%s", exc)

    session.on_change = _on_change

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if load_on_startup:
            await session.load()
        try:
            yield
        finally:
            pending = list(broadcast_tasks)
            for task in pending:
                task.cancel()
            for task in pending:
                with suppress(asyncio.CancelledError, Exception):
                    await task
            await session.close()

    app = FastAPI(title="CaptionSync Event Gateway", lifespan=lifespan)
    app.state.session = session
    app.state.broadcast_tasks = broadcast_tasks

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/snapshot")
    async def snapshot() -> Dict[str, Any]:
        return session.snapshot().to_dict()

    @app.post("/events/{name}")
    async def post_event(name: str, request: Request) -> Dict[str, Any]:
        raw = await request.body()
        payload: Dict[str, Any] = {}
        if raw.strip():
            try:
                payload = _parse_json_message(raw.decode("utf-8", errors="replace"))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
        event = parse_event(name, payload)
        if event is None:
            raise HTTPException(status_code=400, detail=f"malformed event: {normalize_event_name(name)}")
        applied = session.handle(event)
        return {"applied": applied, "snapshot": session.snapshot().to_dict()}

    @app.websocket("/ws")
    async def ws_events(websocket: WebSocket) -> None:
        await websocket.accept()
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
        async with send_lock:
            await websocket.send_json(_snapshot_message("ready"))
        clients.add(websocket)
        logger.info("websocket connected peer=%s clients=%d", peer, len(clients))
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    payload = _parse_json_message(text)
                except ValueError as e:
                    async with send_lock:
                        await websocket.send_json({"type": "error", "message": str(e)})
                    continue
                name = normalize_event_name(payload.pop("type", ""))
                event = parse_event(name, payload)
                if event is None:
                    async with send_lock:
                        await websocket.send_json({"type": "error", "message": f"malformed event: {name or '?'}"})
                    continue
                if not session.handle(event):
                    async with send_lock:
                        await websocket.send_json({"type": "ignored", "event": name})
        except WebSocketDisconnect:
            pass
        finally:
            clients.discard(websocket)
            logger.info("websocket closed peer=%s clients=%d", peer, len(clients))

    return app


def _build_backend(args: argparse.Namespace) -> SegmentBackend:
    base_url = str(getattr(args, "backend_url", "") or "").strip()
    if not base_url:
        logger.warning("no --backend-url given, running with an offline backend")
        return NullBackend(getattr(args, "default_translate_provider", DEFAULT_TRANSLATE_PROVIDER))
    return HttpSegmentBackend(
        base_url,
        timeout_sec=getattr(args, "backend_timeout_sec", 30.0),
        api_key=getattr(args, "backend_api_key", ""),
    )


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Live caption and translation synchronization gateway")
    p.add_argument("--host", default="0.0.0.0", help="Bind host")
    p.add_argument("--port", type=int, default=8025, help="Bind port")
    p.add_argument("--backend-url", default="", help="Base URL of the segment/translation service")
    p.add_argument("--backend-timeout-sec", type=float, default=30.0, help="HTTP timeout for backend requests")
    p.add_argument("--backend-api-key", default="", help="Bearer token for the backend service")
    p.add_argument(
        "--load-on-startup",
        default=True,
        action=argparse.BooleanOptionalAction,
        help="Bulk load existing segments from the backend at startup",
    )
    p.add_argument(
        "--enable-translation",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Start with segment translation enabled",
    )
    p.add_argument(
        "--live-translation",
        default=True,
        action=argparse.BooleanOptionalAction,
        help="Request a streaming translation for each newly transcribed segment",
    )
    p.add_argument(
        "--translation-pacing-sec",
        type=float,
        default=1.0,
        help="Delay between successive segment translation requests",
    )
    p.add_argument(
        "--default-translate-provider",
        default=DEFAULT_TRANSLATE_PROVIDER,
        choices=list(TRANSLATE_PROVIDERS),
        help="Provider used when the backend selection is missing or unknown",
    )
    p.add_argument("--hysteresis-hits", type=int, default=2, help="Agreeing samples before caption text is confirmed")
    p.add_argument(
        "--overlap-window-chars",
        type=int,
        default=64,
        help="Tail of the finalized log searched for overlap with the live window",
    )
    p.add_argument("--overlap-min-chars", type=int, default=2, help="Shortest overlap that is trimmed")
    p.add_argument(
        "--trace-log",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Emit structured engine_trace logs for state transitions",
    )
    p.add_argument("--log-level", default="info", choices=["critical", "error", "warning", "info", "debug"])
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = _create_app(args, _build_backend(args))
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
