"""
Cloze Tokenizer
===============
Deterministic state machine that finds cloze-deletion markers in a string.

Recognized forms:
    {{c<N?>::content}}      canonical, closed by the first unescaped ``}}``
    {{c<N?>:[content]}}     legacy, closed by the first unescaped ``]}}``

While scanning content, an ``inMath`` flag toggles on an unescaped ``$``
that has a partner ``$`` later on the same line (before the next marker
opening); a lone ``$`` such as ``{{c1::$5}}`` is literal. Inside math no
brace or close delimiter is interpreted. Outside math, nested
``{...}`` groups are balanced before a close delimiter is accepted.
Unterminated markers produce nothing and their characters stay literal.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .models import ClozeMarker

logger = logging.getLogger(__name__)

# ─── Marker Literals ──────────────────────────────────────────────────────────

OPEN_PREFIX = "{{c"
CANONICAL_DELIMITER = "::"
LEGACY_DELIMITER = ":["
CANONICAL_CLOSE = "}}"
LEGACY_CLOSE = "]}}"

_DIGITS = "0123456789"


class ScannerState(Enum):
    """Internal states of the cloze scanner."""
    SCANNING = "SCANNING"
    OPEN = "OPEN"
    CONTENT = "CONTENT"
    CLOSE = "CLOSE"


class ClozeStateMachine:
    """
    Finite state machine turning a string into ordered, non-overlapping
    ClozeMarker records. One instance per scan; holds no global state.
    """

    def __init__(self):
        self.state = ScannerState.SCANNING
        self.markers: list[ClozeMarker] = []
        self.unterminated: list[int] = []

    def reset(self):
        """Reset the machine for a fresh scan."""
        self.state = ScannerState.SCANNING
        self.markers = []
        self.unterminated = []

    def scan(self, text: str) -> list[ClozeMarker]:
        """Scan ``text`` and return its markers in document order."""
        self.reset()
        if not text:
            return self.markers

        pos = 0
        while True:
            start = text.find(OPEN_PREFIX, pos)
            if start < 0:
                break
            self.state = ScannerState.OPEN
            end = self._consume_marker(text, start)
            self.state = ScannerState.SCANNING
            # A rejected opening resumes one character later
            pos = end if end is not None else start + 1

        return self.markers

    def _consume_marker(self, text: str, start: int) -> Optional[int]:
        """Run OPEN → CONTENT → CLOSE from ``start``; return end offset."""

        # ─── OPEN: optional digit run, then a delimiter literal ───
        i = start + len(OPEN_PREFIX)
        digits_start = i
        while i < len(text) and text[i] in _DIGITS:
            i += 1
        digits = text[digits_start:i]

        if text.startswith(CANONICAL_DELIMITER, i):
            close, legacy = CANONICAL_CLOSE, False
        elif text.startswith(LEGACY_DELIMITER, i):
            close, legacy = LEGACY_CLOSE, True
        else:
            return None

        # ─── CONTENT ───
        self.state = ScannerState.CONTENT
        content_start = i + 2
        close_at = self._find_close(text, content_start, close)
        if close_at is None:
            self.unterminated.append(start)
            logger.debug(f"Unterminated cloze marker at offset {start}")
            return None

        # ─── CLOSE ───
        self.state = ScannerState.CLOSE
        end = close_at + len(close)
        self.markers.append(ClozeMarker(
            id=int(digits) if digits else None,
            number=len(self.markers) + 1,
            content=text[content_start:close_at],
            start=start,
            end=end,
            legacy=legacy,
        ))
        return end

    @staticmethod
    def _find_close(text: str, i: int, close: str) -> Optional[int]:
        in_math = False
        depth = 0
        n = len(text)
        while i < n:
            ch = text[i]
            if ch == "\\":
                i += 2
                continue
            if ch == "$":
                # A lone dollar (currency) never opens math
                if in_math or _has_partner(text, i):
                    in_math = not in_math
            elif not in_math:
                if depth == 0 and text.startswith(close, i):
                    return i
                if ch == "{":
                    depth += 1
                elif ch == "}" and depth:
                    depth -= 1
            i += 1
        return None


def _has_partner(text: str, i: int) -> bool:
    """
    True when the ``$`` at ``i`` has a closing ``$`` on the same line
    before the next cloze opening.
    """
    partner = text.find("$", i + 1)
    if partner < 0:
        return False
    line_end = text.find("\n", i + 1)
    next_open = text.find(OPEN_PREFIX, i + 1)
    return (
        (line_end < 0 or partner < line_end)
        and (next_open < 0 or partner < next_open)
    )


def find_clozes(text: str) -> list[ClozeMarker]:
    """Convenience wrapper: scan ``text`` with a fresh state machine."""
    return ClozeStateMachine().scan(text)
