"""
Block Extractor
===============
Splits a Markdown question document into groups and raw question blocks.

Document layout:
    ## <group title>
    ### Transcript          (optional, free content)
    ### Questions
    --- start-question      or   ````ad-question
    TYPE: CLOZE
    ID: q1_1_cloze_ab12cd   (optional)
    Q: prompt text, may span several lines
    A: single-line answer
    E: explanation, runs to the end of the block
    --- end-question        or   ````

No assembly happens here; blocks are handed to the ContentAssembler.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .models import QuestionBlock, QuestionType

logger = logging.getLogger(__name__)

# ─── Document Patterns ────────────────────────────────────────────────────────

# Group heading: "## Lesson 4" (never matches "###")
HEADING_PATTERN = re.compile(r"^##[ \t]+(.+?)[ \t]*$", re.MULTILINE)

# Sub-section headings inside a group
TRANSCRIPT_PATTERN = re.compile(
    r"^###[ \t]+Transcript[ \t]*\r?\n([\s\S]*?)(?=^###[ \t]|\Z)",
    re.MULTILINE | re.IGNORECASE,
)
QUESTIONS_PATTERN = re.compile(
    r"^###[ \t]+Questions[ \t]*\r?\n([\s\S]*)",
    re.MULTILINE | re.IGNORECASE,
)

# Question block fences: dashed markers or a four-backtick admonition
QUESTION_BLOCK_PATTERN = re.compile(
    r"^---[ \t]*start-question[ \t]*\r?\n([\s\S]*?)\r?\n---[ \t]*end-question"
    r"|^````ad-question[ \t]*\r?\n([\s\S]*?)\r?\n````",
    re.MULTILINE,
)

# Group-level audio: a code block holding "AUDIO: ![[file.mp3]]"
AUDIO_BLOCK_PATTERN = re.compile(r"```[^`]*?AUDIO:[ \t]*([^`]*?)```")
AUDIO_FILE_PATTERN = re.compile(
    r"!\[\[([^\]]+\.(?:mp3|wav|m4a|ogg|flac))\]\]", re.IGNORECASE
)

# Block fields
TYPE_PATTERN = re.compile(r"^TYPE:[ \t]*(\S+)[ \t]*$", re.MULTILINE | re.IGNORECASE)
ID_PATTERN = re.compile(r"^ID:[ \t]*(\S.*?)[ \t]*$", re.MULTILINE)
QUESTION_PATTERN = re.compile(
    r"^Q:[ \t]*([\s\S]*?)(?=\r?\n(?:A:|E:)|\Z)", re.MULTILINE
)
ANSWER_PATTERN = re.compile(r"^A:[ \t]*(.*)$", re.MULTILINE)
EXPLANATION_PATTERN = re.compile(r"^E:[ \t]*([\s\S]*)", re.MULTILINE)
AUDIO_LINE_PATTERN = re.compile(r"^AUDIO:[ \t]*(.*)$", re.MULTILINE)

_TYPE_ALIASES = {
    "CLOZE": QuestionType.CLOZE,
    "T-F": QuestionType.TRUE_FALSE,
    "TF": QuestionType.TRUE_FALSE,
    "SHORT": QuestionType.SHORT,
    "AUDIO": QuestionType.AUDIO,
}


@dataclass
class RawGroup:
    """One ``##`` section split into its raw parts."""
    key: str
    title: str = ""
    transcript: str = ""
    audio_file: Optional[str] = None
    blocks: list[QuestionBlock] = field(default_factory=list)
    skipped_blocks: int = 0

    @property
    def id(self) -> str:
        return f"g{self.key}"


def normalize_type(value: str) -> Optional[QuestionType]:
    """Map an authored TYPE value to a QuestionType (None if unknown)."""
    return _TYPE_ALIASES.get((value or "").strip().upper())


def group_key(title: str, index: int) -> str:
    """Filesystem- and id-safe key for a group heading."""
    key = re.sub(r"[^\w]", "", title or "")[:20]
    return key or str(index + 1)


class QuestionBlockExtractor:
    """
    Splits documents into RawGroup objects.

    Stateless; safe to share between threads.
    """

    def extract(self, text: str) -> list[RawGroup]:
        """
        Extract every group of ``text`` in document order.

        A document without any ``##`` heading is treated as one untitled
        group.
        """
        text = (text or "").replace("\r\n", "\n")
        headings = list(HEADING_PATTERN.finditer(text))

        if not headings:
            group = self._extract_group(text, title="", index=0)
            return [group] if group.blocks or group.transcript else []

        groups = []
        for i, heading in enumerate(headings):
            end = headings[i + 1].start() if i + 1 < len(headings) else len(text)
            body = text[heading.end():end]
            groups.append(self._extract_group(body, heading.group(1).strip(), i))

        logger.debug(
            f"Extracted {len(groups)} groups, "
            f"{sum(len(g.blocks) for g in groups)} question blocks"
        )
        return groups

    def _extract_group(self, body: str, title: str, index: int) -> RawGroup:
        group = RawGroup(key=group_key(title, index), title=title)

        # Questions section; a group without one is scanned whole
        q_match = QUESTIONS_PATTERN.search(body)
        questions_section = q_match.group(1) if q_match else body
        preamble = body[:q_match.start()] if q_match else body

        block_matches = list(QUESTION_BLOCK_PATTERN.finditer(questions_section))
        outside = QUESTION_BLOCK_PATTERN.sub("", preamble)

        # Group audio
        audio_match = AUDIO_BLOCK_PATTERN.search(outside)
        if audio_match:
            file_match = AUDIO_FILE_PATTERN.search(audio_match.group(1))
            group.audio_file = file_match.group(1) if file_match else None

        # Transcript, without the audio code block
        t_match = TRANSCRIPT_PATTERN.search(outside)
        if t_match:
            transcript = AUDIO_BLOCK_PATTERN.sub("", t_match.group(1))
            group.transcript = transcript.strip()

        for m in block_matches:
            raw = (m.group(1) if m.group(1) is not None else m.group(2)).strip()
            block = self.parse_block(raw, index=len(group.blocks), group=group.key)
            if block is None:
                group.skipped_blocks += 1
                continue
            group.blocks.append(block)

        # A group-level audio block implies an audio question up front
        if audio_match and not any(
            b.type == QuestionType.AUDIO.value for b in group.blocks
        ):
            group.blocks.insert(0, QuestionBlock(
                type=QuestionType.AUDIO.value,
                id=f"g{group.key}_q0",
                audio_file=group.audio_file,
                index=0,
            ))
            group.blocks = [
                b.model_copy(update={"index": i}) for i, b in enumerate(group.blocks)
            ]

        return group

    def parse_block(
        self,
        raw: str,
        index: int = 0,
        group: str = "1",
    ) -> Optional[QuestionBlock]:
        """
        Parse the inside of one question block.

        Returns:
            The QuestionBlock, or None when it has no recognised TYPE.
        """
        audio_line = AUDIO_LINE_PATTERN.search(raw)
        type_match = TYPE_PATTERN.search(raw)
        qtype = normalize_type(type_match.group(1)) if type_match else None

        if qtype is None and audio_line:
            qtype = QuestionType.AUDIO

        if qtype is None:
            found = type_match.group(1) if type_match else "none"
            logger.warning(
                f"Skipping question block {index + 1} in group {group}: "
                f"unrecognised TYPE ({found})"
            )
            return None

        id_match = ID_PATTERN.search(raw)
        q_match = QUESTION_PATTERN.search(raw)
        a_match = ANSWER_PATTERN.search(raw)
        e_match = EXPLANATION_PATTERN.search(raw)

        audio_file = None
        if audio_line:
            file_match = AUDIO_FILE_PATTERN.search(audio_line.group(1))
            audio_file = file_match.group(1) if file_match else None

        prompt = q_match.group(1) if q_match else ""
        if prompt.startswith("\n"):
            prompt = prompt[1:]

        return QuestionBlock(
            type=qtype.value,
            id=id_match.group(1) if id_match else None,
            prompt=prompt.rstrip(),
            answer=a_match.group(1).strip() if a_match else "",
            explanation=e_match.group(1).strip() if e_match else "",
            audio_file=audio_file,
            index=index,
        )
