# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass

from .text_pool import normalize_text, trim_prefix_overlap


def common_prefix_len(a: str, b: str) -> int:
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    return i


@dataclass
class CaptionState:
    stable_text: str = ""
    partial_text: str = ""
    pending_candidate: str = ""
    pending_hits: int = 0


class CaptionStabilizer:
    """
    Split successive hypothesis windows of the live utterance into a confirmed
    prefix and an unconfirmed tail.

    A prefix is confirmed only after ``hysteresis_hits`` consecutive samples
    agree on it. Confirmed text only grows until ``reset``.
    """

    def __init__(
        self,
        hysteresis_hits: int = 2,
        overlap_window_chars: int = 64,
        overlap_min_chars: int = 2,
    ) -> None:
        self.hysteresis_hits = max(1, int(hysteresis_hits))
        self.overlap_window_chars = max(1, int(overlap_window_chars))
        self.overlap_min_chars = max(1, int(overlap_min_chars))
        self.state = CaptionState()
        self._previous_window: str | None = None

    def reset(self) -> None:
        self.state = CaptionState()
        self._previous_window = None

    def update(self, raw_window: str, finalized_log: str = "") -> CaptionState:
        window, _ = trim_prefix_overlap(
            finalized_log,
            normalize_text(raw_window),
            min_overlap=self.overlap_min_chars,
            window_chars=self.overlap_window_chars,
        )
        previous = window if self._previous_window is None else self._previous_window
        candidate = window[: common_prefix_len(window, previous)]
        self._previous_window = window

        st = self.state
        if len(candidate) > len(st.stable_text) and candidate.startswith(st.stable_text):
            if candidate == st.pending_candidate:
                st.pending_hits += 1
            else:
                st.pending_candidate = candidate
                st.pending_hits = 1
            if st.pending_hits >= self.hysteresis_hits:
                st.stable_text = st.pending_candidate
                st.pending_candidate = ""
                st.pending_hits = 0
        else:
            # Revision inside confirmed text or no new agreement.
            st.pending_candidate = st.stable_text
            st.pending_hits = 0

        # Confirmed text owns its span; a window that diverged from it has no tail.
        st.partial_text = window[len(st.stable_text):] if window.startswith(st.stable_text) else ""
        return st

    def display_text(self) -> str:
        return f"{self.state.stable_text}{self.state.partial_text}"
