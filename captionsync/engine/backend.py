# coding=utf-8
"""
Outbound collaborators: segment listing, translation requests and provider
lookup. Results of translation requests come back later as inbound events.
"""
from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    pass


class SegmentBackend(Protocol):
    async def list_segments(self) -> List[Dict[str, Any]]:
        ...

    async def translate_segment(self, segment_id: str, provider: str) -> None:
        ...

    async def translate_live(self, text: str, provider: str, segment_id: str, order: float) -> None:
        ...

    async def get_translate_provider(self) -> str:
        ...


class NullBackend:
    """Collaborator that owns no segments and accepts every request."""

    def __init__(self, provider: str = "ollama") -> None:
        self.provider = provider

    async def list_segments(self) -> List[Dict[str, Any]]:
        return []

    async def translate_segment(self, segment_id: str, provider: str) -> None:
        return None

    async def translate_live(self, text: str, provider: str, segment_id: str, order: float) -> None:
        return None

    async def get_translate_provider(self) -> str:
        return self.provider


class HttpSegmentBackend:
    """
    JSON-over-HTTP client for the capture/translation service.

    Blocking urllib calls run in a worker thread so the event loop keeps
    handling inbound events while a request is outstanding.
    """

    def __init__(self, base_url: str, timeout_sec: float = 30.0, api_key: str = "") -> None:
        self.base_url = str(base_url or "").strip().rstrip("/")
        if not self.base_url:
            raise ValueError("backend base_url is empty")
        self.timeout_sec = max(1.0, float(timeout_sec))
        self.api_key = str(api_key or "").strip()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        data = None
        headers = {"Accept": "application/json"}
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = urllib.request.Request(self._url(path), data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raise BackendError(f"{method} {path} failed: http {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            raise BackendError(f"{method} {path} failed: {e}") from e
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise BackendError(f"{method} {path} returned invalid json: {e}") from e

    async def list_segments(self) -> List[Dict[str, Any]]:
        payload = await asyncio.to_thread(self._request, "GET", "/segments")
        if isinstance(payload, dict):
            payload = payload.get("segments")
        if not isinstance(payload, list):
            raise BackendError("segment list must be a json array")
        return [item for item in payload if isinstance(item, dict)]

    async def translate_segment(self, segment_id: str, provider: str) -> None:
        quoted = urllib.parse.quote(str(segment_id), safe="")
        await asyncio.to_thread(self._request, "POST", f"/segments/{quoted}/translate", {"provider": provider})

    async def translate_live(self, text: str, provider: str, segment_id: str, order: float) -> None:
        body = {"text": text, "provider": provider, "name": segment_id, "order": order}
        await asyncio.to_thread(self._request, "POST", "/live/translate", body)

    async def get_translate_provider(self) -> str:
        payload = await asyncio.to_thread(self._request, "GET", "/settings/translate-provider")
        if isinstance(payload, dict):
            payload = payload.get("provider")
        return str(payload or "")
