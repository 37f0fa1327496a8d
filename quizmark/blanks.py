"""
Blank Resolver
==============
Pure projections over one list of cloze markers.

    grouped     first occurrence per authored id → one answer-key entry
    individual  every occurrence → its own blank, document order
    sequential  every occurrence → positional token __CLOZE_k__

Every string-level helper here protects math before scanning and restores
it afterwards, so ``$...$`` content never confuses the tokenizer and the
returned blanks carry their original math literals.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Union

from . import math_guard
from .models import ClozeMarker, IssueType, ParseIssue
from .state_machine import ClozeStateMachine

logger = logging.getLogger(__name__)

BLANK_PLACEHOLDER = "_____"
SEQUENTIAL_TOKEN = "__CLOZE_{}__"


# ─── Marker-Level Projections ─────────────────────────────────────────────────


def _group_key(marker: ClozeMarker):
    # Markers without an authored id never share a group
    return marker.id if marker.id is not None else ("seq", marker.number)


def grouped_markers(markers: list[ClozeMarker]) -> list[ClozeMarker]:
    """First occurrence of every authored id, in document order."""
    seen = set()
    out = []
    for m in markers:
        key = _group_key(m)
        if key not in seen:
            seen.add(key)
            out.append(m)
    return out


def substitute_sequential(
    text: str,
    markers: list[ClozeMarker],
    start_index: int = 1,
) -> str:
    """
    Rewrite each marker span of ``text`` as __CLOZE_k__, k counting from
    ``start_index``. Text outside the spans is copied byte for byte.
    """
    return _rewrite(
        text, markers,
        lambda i, m: SEQUENTIAL_TOKEN.format(start_index + i),
    )


def _rewrite(
    text: str,
    markers: list[ClozeMarker],
    replace: Callable[[int, ClozeMarker], str],
) -> str:
    parts = []
    pos = 0
    for i, m in enumerate(markers):
        parts.append(text[pos:m.start])
        parts.append(replace(i, m))
        pos = m.end
    parts.append(text[pos:])
    return "".join(parts)


# ─── String-Level Helpers ─────────────────────────────────────────────────────


def _scan(text: str):
    guarded, entries = math_guard.protect(text)
    markers = ClozeStateMachine().scan(guarded)
    return guarded, entries, markers


def find_cloze(text: str) -> list[ClozeMarker]:
    """
    Markers of ``text`` with math restored inside their content.
    Offsets refer to the math-guarded string, not to ``text``.
    """
    _, entries, markers = _scan(text)
    return [
        m.model_copy(update={"content": math_guard.restore(m.content, entries)})
        for m in markers
    ]


def individual_blanks(text: str) -> list[str]:
    """Every cloze occurrence as its own blank, in document order."""
    return [m.content for m in find_cloze(text)]


def grouped_blanks(text: str) -> list[str]:
    """One blank per authored cloze id (first occurrence wins)."""
    return [m.content for m in grouped_markers(find_cloze(text))]


def to_sequential_blanks(text: str) -> str:
    """Replace every marker with __CLOZE_1__, __CLOZE_2__, ... regardless of id."""
    if not text:
        return text or ""
    guarded, entries, markers = _scan(text)
    return math_guard.restore(substitute_sequential(guarded, markers), entries)


def static_blanks(
    text: str,
    placeholder: str = BLANK_PLACEHOLDER,
    target_id: Optional[int] = None,
) -> str:
    """
    Read-only preview: markers become a fixed-width glyph. With
    ``target_id`` only markers of that authored id are blanked; the others
    keep their original markup.
    """
    if not text:
        return text or ""
    guarded, entries, markers = _scan(text)

    def _blank(i: int, m: ClozeMarker) -> str:
        if target_id is None or m.id == target_id:
            return placeholder
        return guarded[m.start:m.end]

    return math_guard.restore(_rewrite(guarded, markers, _blank), entries)


def strip_markers(text: str) -> str:
    """Replace every marker with its inner content."""
    if not text:
        return text or ""
    guarded, entries, markers = _scan(text)
    return math_guard.restore(
        _rewrite(guarded, markers, lambda i, m: m.content), entries
    )


def renumber_clozes(text: str) -> str:
    """
    Rewrite every marker in canonical ``{{cN::content}}`` form with
    contiguous numbering from 1, converting the legacy ``:[...]`` form.
    """
    if not text:
        return text or ""
    guarded, entries, markers = _scan(text)
    return math_guard.restore(
        _rewrite(
            guarded, markers,
            lambda i, m: f"{{{{c{i + 1}::{m.content}}}}}",
        ),
        entries,
    )


def has_cloze(text: str) -> bool:
    if not text:
        return False
    return bool(_scan(text)[2])


def cloze_ids(text: str) -> list[int]:
    """Sorted unique authored ids present in ``text``."""
    return sorted({m.id for m in find_cloze(text) if m.id is not None})


def split_parts(text: str) -> list[Union[str, ClozeMarker]]:
    """
    Split ``text`` into literal strings and markers, in order. Strings and
    marker contents have their math restored.
    """
    if not text:
        return []
    guarded, entries, markers = _scan(text)
    parts: list[Union[str, ClozeMarker]] = []
    pos = 0
    for m in markers:
        if m.start > pos:
            parts.append(math_guard.restore(guarded[pos:m.start], entries))
        parts.append(m.model_copy(
            update={"content": math_guard.restore(m.content, entries)}
        ))
        pos = m.end
    if pos < len(guarded):
        parts.append(math_guard.restore(guarded[pos:], entries))
    return parts


# ─── Validation ───────────────────────────────────────────────────────────────


def validate_cloze_text(text: str) -> list[ParseIssue]:
    """Report content problems of the markers in ``text``. Never raises."""
    guarded, _ = math_guard.protect(text or "")
    machine = ClozeStateMachine()
    markers = machine.scan(guarded)
    return marker_issues(markers, machine.unterminated)


def marker_issues(
    markers: list[ClozeMarker],
    unterminated: list[int],
) -> list[ParseIssue]:
    """Issues for one question's marker list and unterminated offsets."""
    issues = []

    for offset in unterminated:
        issues.append(ParseIssue(
            type=IssueType.UNTERMINATED_CLOZE,
            severity=40,
            message="Cloze marker is never closed; kept as literal text",
            context={"offset": offset},
        ))

    empty = [m.number for m in markers if not m.content.strip()]
    if empty:
        issues.append(ParseIssue(
            type=IssueType.EMPTY_CLOZE,
            severity=30,
            message="Some cloze markers have empty content",
            context={"occurrences": empty},
        ))

    ids = sorted({m.id for m in markers if m.id is not None})
    if ids and ids != list(range(1, len(ids) + 1)):
        issues.append(ParseIssue(
            type=IssueType.NON_SEQUENTIAL_CLOZE_IDS,
            severity=20,
            message=(
                f"Authored cloze ids are not sequential (found "
                f"{', '.join(map(str, ids))}); occurrences are renumbered"
            ),
            context={"ids": ids},
        ))

    return issues


# ─── Rendering ────────────────────────────────────────────────────────────────


def render_with_inputs(
    parts: list[Union[str, ClozeMarker]],
    render_blank: Callable[[int, ClozeMarker], Any],
    render_text: Optional[Callable[[str], Any]] = None,
    starting_blank_index: int = 0,
    placeholder: str = BLANK_PLACEHOLDER,
) -> list:
    """
    Render the output of :func:`split_parts`.

    The first occurrence of each authored id gets ``render_blank(index,
    marker)``; repeated occurrences are display-only placeholders.

    Raises:
        TypeError: If ``render_blank`` is not callable.
    """
    if not callable(render_blank):
        raise TypeError("render_blank must be a callable")
    render_text = render_text or (lambda s: s)

    rendered = []
    seen = set()
    blank_index = starting_blank_index
    for part in parts:
        if isinstance(part, str):
            rendered.append(render_text(part))
            continue
        key = _group_key(part)
        if key in seen:
            rendered.append(placeholder)
            continue
        seen.add(key)
        rendered.append(render_blank(blank_index, part))
        blank_index += 1
    return rendered
