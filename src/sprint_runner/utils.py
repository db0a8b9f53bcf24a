"""Provide utility helpers for timestamps and text."""

from __future__ import annotations

from datetime import datetime, timezone


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _tail(text: str, max_chars: int) -> str:
    if not text or len(text) <= max_chars:
        return text or ""
    return "…" + text[-max_chars:]
