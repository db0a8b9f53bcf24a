"""Recognize the human confirmation vocabulary.

Only the fixed set of words below is understood; anything else parses as
`Signal.UNRECOGNIZED` and the caller re-prompts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SignalKind(str, Enum):
    CONTINUE = "continue"
    HOLD = "hold"
    SPECIAL = "special"
    UNRECOGNIZED = "unrecognized"


class Signal(str, Enum):
    YES = "yes"
    READY = "ready"
    NEXT = "next"
    DONE = "done"
    NO = "no"
    HOLD = "hold"
    WAIT = "wait"
    VERIFY = "verify"
    SKIP = "skip"
    RETRY = "retry"
    RESUME = "resume"
    RESTART = "restart"
    COMPACT = "compact"
    SKIP_COMPACT = "skip compact"
    UNRECOGNIZED = "unrecognized"

    @property
    def kind(self) -> SignalKind:
        if self in CONTINUE_SIGNALS:
            return SignalKind.CONTINUE
        if self in HOLD_SIGNALS:
            return SignalKind.HOLD
        if self == Signal.UNRECOGNIZED:
            return SignalKind.UNRECOGNIZED
        return SignalKind.SPECIAL


CONTINUE_SIGNALS = frozenset({Signal.YES, Signal.READY, Signal.NEXT, Signal.DONE})
HOLD_SIGNALS = frozenset({Signal.NO, Signal.HOLD, Signal.WAIT})

_EXACT = {signal.value: signal for signal in Signal if signal != Signal.UNRECOGNIZED}
_SKIP_RE = re.compile(r"^skip(?:\s*[:\-]\s*|\s+)(?P<reason>.+)$", re.I | re.S)


@dataclass(frozen=True)
class ParsedSignal:
    signal: Signal
    raw: str = ""
    reason: Optional[str] = None

    @property
    def kind(self) -> SignalKind:
        return self.signal.kind

    @property
    def is_continue(self) -> bool:
        return self.signal.kind == SignalKind.CONTINUE

    @property
    def is_hold(self) -> bool:
        return self.signal.kind == SignalKind.HOLD


def parse_signal(text: Optional[str]) -> ParsedSignal:
    """Parse free text typed by the human into a `ParsedSignal`.

    `skip` may carry a reason (`skip: flaky upstream API`); `skip compact`
    is its own signal.
    """
    raw = text or ""
    normalized = " ".join(raw.strip().split()).lower()
    if not normalized:
        return ParsedSignal(Signal.UNRECOGNIZED, raw)
    exact = _EXACT.get(normalized)
    if exact is not None:
        return ParsedSignal(exact, raw)
    match = _SKIP_RE.match(raw.strip())
    if match:
        reason = match.group("reason").strip()
        return ParsedSignal(Signal.SKIP, raw, reason=reason or None)
    return ParsedSignal(Signal.UNRECOGNIZED, raw)
