# coding=utf-8
from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Optional, Tuple

DEFAULT_TRANSLATE_PROVIDER = "ollama"
TRANSLATE_PROVIDERS: Tuple[str, ...] = ("ollama", "openai", "local-gpt")


@dataclass(frozen=True)
class EngineConfig:
    hysteresis_hits: int = 2
    overlap_window_chars: int = 64
    overlap_min_chars: int = 2
    translation_pacing_sec: float = 1.0
    translation_enabled: bool = False
    live_translation: bool = True
    default_translate_provider: str = DEFAULT_TRANSLATE_PROVIDER
    translate_providers: Tuple[str, ...] = TRANSLATE_PROVIDERS
    trace_log: bool = False

    @classmethod
    def from_args(cls, args: Optional[argparse.Namespace]) -> "EngineConfig":
        if args is None:
            return cls()
        default_provider = str(
            getattr(args, "default_translate_provider", DEFAULT_TRANSLATE_PROVIDER) or DEFAULT_TRANSLATE_PROVIDER
        ).strip().lower()
        providers = tuple(
            p.strip().lower()
            for p in (getattr(args, "translate_providers", None) or TRANSLATE_PROVIDERS)
            if str(p or "").strip()
        )
        if default_provider not in providers:
            providers = providers + (default_provider,)
        return cls(
            hysteresis_hits=max(1, int(getattr(args, "hysteresis_hits", 2))),
            overlap_window_chars=max(1, int(getattr(args, "overlap_window_chars", 64))),
            overlap_min_chars=max(1, int(getattr(args, "overlap_min_chars", 2))),
            translation_pacing_sec=max(0.0, float(getattr(args, "translation_pacing_sec", 1.0))),
            translation_enabled=bool(getattr(args, "enable_translation", False)),
            live_translation=bool(getattr(args, "live_translation", True)),
            default_translate_provider=default_provider,
            translate_providers=providers,
            trace_log=bool(getattr(args, "trace_log", False)),
        )
