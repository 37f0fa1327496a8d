"""
Segmenter
=========
Partitions (math-guarded) text into an ordered, non-overlapping tiling of
structural spans and the text gaps between them.

Each structural category is scanned independently; overlapping candidates
are resolved by greedy interval partitioning: earliest start wins, ties go
to the longer span.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .models import (
    CodeBlockElement,
    ElementType,
    ImageElement,
    TableElement,
    TextElement,
)

logger = logging.getLogger(__name__)

# ─── Structural Patterns ──────────────────────────────────────────────────────

# Embedded media reference: ![[diagram.png]]
IMAGE_PATTERN = re.compile(r"!\[\[([^\]\n]+)\]\]")

# Fenced code block with optional language tag
CODE_BLOCK_PATTERN = re.compile(r"```([\w+#.-]*)[ \t]*\r?\n([\s\S]*?)```")

# Pipe table: header row, separator row, any number of data rows
TABLE_PATTERN = re.compile(
    r"^[ \t]*\|.*\|[ \t]*\r?\n"
    r"[ \t]*\|[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|[ \t]*"
    r"(?:\r?\n[ \t]*\|.*\|[ \t]*)*",
    re.MULTILINE,
)


@dataclass(frozen=True)
class Segment:
    """One tile of the partition: ``text[start:end]`` of a given kind."""
    kind: ElementType
    start: int
    end: int
    payload: Optional[tuple] = None


def _scan_candidates(text: str) -> list[Segment]:
    candidates: list[Segment] = []

    for m in IMAGE_PATTERN.finditer(text):
        candidates.append(Segment(
            ElementType.IMAGE, m.start(), m.end(), (m.group(1).strip(),)
        ))

    for m in CODE_BLOCK_PATTERN.finditer(text):
        candidates.append(Segment(
            ElementType.CODE_BLOCK, m.start(), m.end(),
            (m.group(1), m.group(2)),
        ))

    for m in TABLE_PATTERN.finditer(text):
        candidates.append(Segment(
            ElementType.TABLE, m.start(), m.end(), (m.group(0),)
        ))

    return candidates


def resolve_overlaps(candidates: list[Segment]) -> list[Segment]:
    """
    Keep a canonical, order-preserving subset of non-overlapping hits.

    Sorted by start ascending (longer span first on ties); a hit is accepted
    only if it starts at or after the end of the previously accepted one.
    """
    accepted: list[Segment] = []
    last_end = 0
    for seg in sorted(candidates, key=lambda s: (s.start, -s.end)):
        if seg.start >= last_end:
            accepted.append(seg)
            last_end = seg.end
        else:
            logger.debug(
                f"Dropping {seg.kind.value} at {seg.start}-{seg.end} "
                f"(overlaps hit ending at {last_end})"
            )
    return accepted


def find_segments(text: str) -> list[Segment]:
    """
    Return the complete tiling of ``text``: structural hits plus the text
    gaps around them, untrimmed, covering every character exactly once.
    """
    tiles: list[Segment] = []
    pos = 0
    for seg in resolve_overlaps(_scan_candidates(text)):
        if seg.start > pos:
            tiles.append(Segment(ElementType.TEXT, pos, seg.start))
        tiles.append(seg)
        pos = seg.end
    if pos < len(text):
        tiles.append(Segment(ElementType.TEXT, pos, len(text)))
    return tiles


def segment(text: str) -> list:
    """
    Split ``text`` into Text/Image/CodeBlock/Table elements in document
    order. Text gaps are trimmed; gaps that are pure whitespace are dropped.
    """
    elements = []
    for tile in find_segments(text):
        if tile.kind == ElementType.TEXT:
            gap = text[tile.start:tile.end].strip()
            if gap:
                elements.append(TextElement(content=gap))
        elif tile.kind == ElementType.IMAGE:
            elements.append(ImageElement(filename=tile.payload[0]))
        elif tile.kind == ElementType.CODE_BLOCK:
            lang, code = tile.payload
            elements.append(CodeBlockElement(lang=lang, code=code))
        elif tile.kind == ElementType.TABLE:
            elements.append(TableElement(markup=tile.payload[0]))
    return elements
