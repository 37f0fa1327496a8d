"""
Content Assembler
=================
Runs the per-question pipeline and builds the immutable ParsedQuestion.

    prompt → Math Guard (protect) → Segmenter →
    [cloze only] Cloze Tokenizer + sequential substitution on Text/Table →
    Math Guard (restore) on the element stream and on every blank

Author markup never raises here; problems become ParseIssue records.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from . import math_guard
from .blanks import (
    grouped_markers,
    marker_issues,
    substitute_sequential,
    to_sequential_blanks,
)
from .models import (
    ClozeMarker,
    CodeBlockElement,
    ElementType,
    ImageElement,
    IssueType,
    MathElement,
    MathPlaceholderElement,
    MathProtectionEntry,
    ParsedQuestion,
    ParseIssue,
    QuestionType,
    TableElement,
    TextElement,
)
from .segmenter import segment
from .state_machine import ClozeStateMachine

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class AssembledContent:
    """Intermediate result of :func:`parse_content`."""
    elements: list = field(default_factory=list)
    markers: list[ClozeMarker] = field(default_factory=list)
    blanks: list[str] = field(default_factory=list)
    answer_key: list[str] = field(default_factory=list)
    entries: list[MathProtectionEntry] = field(default_factory=list)
    issues: list[ParseIssue] = field(default_factory=list)


def generate_question_id(
    text: str,
    question_type: Union[QuestionType, str],
    index: int = 0,
    group: str = "1",
) -> str:
    """Stable id derived from the prompt, its type and its position."""
    qtype = question_type.value if isinstance(question_type, QuestionType) else question_type
    clean = _WHITESPACE.sub(" ", text or "")
    clean = re.sub(r"[^\w\s$=+-]", "", clean).strip()[:100]
    digest = hashlib.sha1(clean.encode("utf-8")).hexdigest()[:6]
    clean_group = re.sub(r"[^\w]", "", str(group))[:20]
    return f"q{clean_group}_{index + 1}_{qtype.lower()}_{digest}"


def _restore_element(element, entries: list[MathProtectionEntry]):
    """Restore math literals inside a non-text element."""
    if not entries:
        return element
    if element.type == ElementType.TABLE:
        return TableElement(markup=math_guard.restore(element.markup, entries))
    if element.type == ElementType.CODE_BLOCK:
        return CodeBlockElement(
            lang=element.lang,
            code=math_guard.restore(element.code, entries),
        )
    if element.type == ElementType.IMAGE:
        return ImageElement(
            filename=math_guard.restore(element.filename, entries)
        )
    return element


def _split_math(
    text: str,
    entries: list[MathProtectionEntry],
    as_placeholders: bool,
) -> list:
    """Split a guarded text run into Text and Math(/Placeholder) elements."""
    pattern = math_guard.token_pattern(entries)
    if pattern is None:
        return [TextElement(content=text)]

    by_token = {e.token: e for e in entries}
    out = []
    pos = 0
    for m in pattern.finditer(text):
        if m.start() > pos:
            out.append(TextElement(content=text[pos:m.start()]))
        entry = by_token[m.group(0)]
        if as_placeholders:
            out.append(MathPlaceholderElement(token=entry.token))
        else:
            out.append(MathElement(expr=entry.expr, display=entry.display))
        pos = m.end()
    if pos < len(text):
        out.append(TextElement(content=text[pos:]))
    return out


def parse_content(
    text: str,
    is_cloze: bool = False,
    math_placeholders: bool = False,
) -> AssembledContent:
    """
    Turn raw markup into ordered elements (and blanks for cloze content).

    Non-cloze content keeps math, images, code blocks and tables as distinct
    typed elements. Cloze content keeps math inline in its text (or as
    MathPlaceholder elements when ``math_placeholders`` is set) and carries
    __CLOZE_k__ tokens where markers were.
    """
    result = AssembledContent()
    if not text:
        return result

    guarded, entries = math_guard.protect(text)
    result.entries = entries
    raw_elements = segment(guarded)

    if not is_cloze:
        for element in raw_elements:
            if element.type == ElementType.TEXT:
                result.elements.extend(
                    _split_math(element.content, entries, as_placeholders=False)
                )
            else:
                result.elements.append(_restore_element(element, entries))
        return result

    # Sequential counter is local to this call
    counter = 0
    unterminated: list[int] = []
    for element in raw_elements:
        if element.type not in (ElementType.TEXT, ElementType.TABLE):
            result.elements.append(_restore_element(element, entries))
            continue

        source = element.content if element.type == ElementType.TEXT else element.markup
        machine = ClozeStateMachine()
        markers = machine.scan(source)
        unterminated.extend(machine.unterminated)
        substituted = substitute_sequential(source, markers, start_index=counter + 1)

        for m in markers:
            counter += 1
            result.markers.append(m.model_copy(update={
                "number": counter,
                "content": math_guard.restore(m.content, entries),
            }))

        if element.type == ElementType.TABLE:
            result.elements.append(
                TableElement(markup=math_guard.restore(substituted, entries))
            )
        elif math_placeholders:
            result.elements.extend(
                _split_math(substituted, entries, as_placeholders=True)
            )
        else:
            result.elements.append(
                TextElement(content=math_guard.restore(substituted, entries))
            )

    result.blanks = [m.content for m in result.markers]
    result.answer_key = [m.content for m in grouped_markers(result.markers)]
    result.issues.extend(marker_issues(result.markers, unterminated))
    return result


def canonical_text(
    elements: list,
    entries: Optional[list[MathProtectionEntry]] = None,
) -> str:
    """Render an element stream back to markup, one canonical form per type."""
    originals = {e.token: e.original for e in entries or []}
    out = []
    for e in elements:
        if e.type == ElementType.TEXT:
            out.append(e.content)
        elif e.type == ElementType.IMAGE:
            out.append(f"![[{e.filename}]]")
        elif e.type == ElementType.CODE_BLOCK:
            out.append(f"```{e.lang}\n{e.code}```")
        elif e.type == ElementType.TABLE:
            out.append(e.markup)
        elif e.type == ElementType.MATH:
            delim = "$$" if e.display else "$"
            out.append(f"{delim}{e.expr}{delim}")
        elif e.type == ElementType.MATH_PLACEHOLDER:
            out.append(originals.get(e.token, e.token))
    return "\n".join(out)


def is_consistent(text: str, content: AssembledContent) -> bool:
    """
    True when the element stream matches one whole-text sequential pass.
    Whitespace is ignored since text gaps are trimmed by the segmenter.
    """
    expected = to_sequential_blanks(text)
    actual = canonical_text(content.elements, content.entries)
    return _WHITESPACE.sub("", expected) == _WHITESPACE.sub("", actual)


class ContentAssembler:
    """
    Builds ParsedQuestion objects. Holds configuration only, so a single
    instance can serve concurrent callers.
    """

    def __init__(
        self,
        math_placeholders: bool = False,
        check_consistency: bool = True,
    ):
        self.math_placeholders = math_placeholders
        self.check_consistency = check_consistency

    def assemble(
        self,
        prompt: str,
        question_type: Union[QuestionType, str] = QuestionType.CLOZE,
        answer: str = "",
        explanation: str = "",
        question_id: Optional[str] = None,
        audio_file: Optional[str] = None,
    ) -> ParsedQuestion:
        """
        Assemble one question.

        Raises:
            ValueError: If ``question_type`` is not a known type.
        """
        qtype = QuestionType(
            question_type.upper() if isinstance(question_type, str) else question_type
        )
        prompt = prompt or ""
        is_cloze = qtype == QuestionType.CLOZE

        content = parse_content(
            prompt,
            is_cloze=is_cloze,
            math_placeholders=self.math_placeholders and is_cloze,
        )
        issues = list(content.issues)

        if not prompt.strip() and qtype != QuestionType.AUDIO:
            issues.append(ParseIssue(
                type=IssueType.EMPTY_PROMPT,
                severity=80,
                message="Question has no prompt text",
            ))

        if is_cloze and prompt.strip() and not content.markers:
            issues.append(ParseIssue(
                type=IssueType.CLOZE_WITHOUT_MARKERS,
                severity=50,
                message="Cloze question contains no cloze markers",
            ))

        if qtype in (QuestionType.TRUE_FALSE, QuestionType.SHORT) and not answer.strip():
            issues.append(ParseIssue(
                type=IssueType.MISSING_ANSWER,
                severity=60,
                message="Question has no answer line",
            ))

        if is_cloze and self.check_consistency and not is_consistent(prompt, content):
            logger.warning(
                "Element stream differs from whole-text cloze substitution "
                f"for question {question_id or '(unnamed)'}"
            )
            issues.append(ParseIssue(
                type=IssueType.ELEMENT_STREAM_MISMATCH,
                severity=80,
                message=(
                    "A cloze marker overlaps a structural element; "
                    "it was left as literal text"
                ),
            ))

        explanation_content = parse_content(explanation or "", is_cloze=False)

        question = ParsedQuestion(
            id=question_id or generate_question_id(prompt, qtype),
            question_type=qtype,
            ordered_elements=content.elements,
            blanks=content.blanks,
            answer_key=content.answer_key,
            answer=(answer or "").strip(),
            raw_text=prompt,
            raw_explanation=explanation or "",
            explanation_elements=explanation_content.elements,
            math_entries=content.entries if self.math_placeholders and is_cloze else [],
            audio_file=audio_file,
            issues=issues,
        )
        logger.debug(
            f"Assembled {question.id}: {len(question.ordered_elements)} elements, "
            f"{question.blank_count} blanks, {len(issues)} issues"
        )
        return question
