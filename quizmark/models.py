"""
Data Models
===========
Pydantic models for parsed quiz content.
All models are serializable to JSON for renderers and exporters.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class ElementType(str, Enum):
    """Type of a renderable content element."""
    TEXT = "text"
    IMAGE = "image"
    CODE_BLOCK = "code_block"
    TABLE = "table"
    MATH = "math"
    MATH_PLACEHOLDER = "math_placeholder"


class QuestionType(str, Enum):
    """Supported question formats."""
    CLOZE = "CLOZE"
    TRUE_FALSE = "T-F"
    SHORT = "SHORT"
    AUDIO = "AUDIO"


class IssueType(str, Enum):
    """Non-fatal findings about authored question content."""
    UNTERMINATED_CLOZE = "unterminated_cloze"
    EMPTY_CLOZE = "empty_cloze"
    NON_SEQUENTIAL_CLOZE_IDS = "non_sequential_cloze_ids"
    CLOZE_WITHOUT_MARKERS = "cloze_without_markers"
    ELEMENT_STREAM_MISMATCH = "element_stream_mismatch"
    MISSING_ANSWER = "missing_answer"
    EMPTY_PROMPT = "empty_prompt"
    DUPLICATE_QUESTION_ID = "duplicate_question_id"


# ─── Content Elements ─────────────────────────────────────────────────────────


class _Element(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextElement(_Element):
    """Plain text, possibly holding __CLOZE_k__ tokens in cloze questions."""
    type: Literal[ElementType.TEXT] = ElementType.TEXT
    content: str


class ImageElement(_Element):
    """Embedded media reference (``![[filename]]``)."""
    type: Literal[ElementType.IMAGE] = ElementType.IMAGE
    filename: str


class CodeBlockElement(_Element):
    """Fenced code block."""
    type: Literal[ElementType.CODE_BLOCK] = ElementType.CODE_BLOCK
    lang: str = ""
    code: str


class TableElement(_Element):
    """Pipe table, kept as its raw markup."""
    type: Literal[ElementType.TABLE] = ElementType.TABLE
    markup: str


class MathElement(_Element):
    """Inline (``$..$``) or display (``$$..$$``) math."""
    type: Literal[ElementType.MATH] = ElementType.MATH
    expr: str
    display: bool = False


class MathPlaceholderElement(_Element):
    """Opaque math token, resolved by the renderer via ``math_entries``."""
    type: Literal[ElementType.MATH_PLACEHOLDER] = ElementType.MATH_PLACEHOLDER
    token: str


ContentElement = Annotated[
    Union[
        TextElement,
        ImageElement,
        CodeBlockElement,
        TableElement,
        MathElement,
        MathPlaceholderElement,
    ],
    Field(discriminator="type"),
]


# ─── Engine Records ───────────────────────────────────────────────────────────


class ClozeMarker(BaseModel):
    """
    One cloze occurrence found by the tokenizer.

    ``id`` is the number the author wrote (``None`` for ``{{c::...}}``);
    ``number`` is the final sequential occurrence number (1-based).
    Offsets are relative to the scanned string.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    number: int = Field(ge=1)
    content: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    legacy: bool = Field(
        default=False,
        description="True for the {{cN:[...]}} form",
    )

    @property
    def span(self) -> tuple[int, int]:
        return (self.start, self.end)


class MathProtectionEntry(BaseModel):
    """Mapping between one math token and the literal it replaced."""
    model_config = ConfigDict(frozen=True)

    token: str
    original: str
    expr: str
    display: bool = False


# ─── Issue Model ──────────────────────────────────────────────────────────────


class ParseIssue(BaseModel):
    """A structural problem detected in authored content."""
    model_config = ConfigDict(frozen=True)

    type: IssueType
    severity: int = Field(
        ge=0, le=100,
        description="Severity score 0-100"
    )
    message: str
    context: Optional[dict] = None


# ─── Question Model ──────────────────────────────────────────────────────────


class ParsedQuestion(BaseModel):
    """
    A fully assembled question: ordered renderable elements plus the
    literal expected answer of every blank. Sequences are tuples, so the
    record cannot be changed in place either.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    question_type: QuestionType
    ordered_elements: tuple[ContentElement, ...] = ()
    blanks: tuple[str, ...] = Field(
        default=(),
        description="Expected answer per cloze occurrence, document order",
    )
    answer_key: tuple[str, ...] = Field(
        default=(),
        description="Expected answer per authored cloze id (first occurrence)",
    )
    answer: str = ""
    raw_text: str = ""
    raw_explanation: str = ""
    explanation_elements: tuple[ContentElement, ...] = ()
    math_entries: tuple[MathProtectionEntry, ...] = ()
    audio_file: Optional[str] = None
    issues: tuple[ParseIssue, ...] = ()

    @computed_field
    @property
    def is_cloze(self) -> bool:
        return self.question_type == QuestionType.CLOZE

    @computed_field
    @property
    def blank_count(self) -> int:
        return len(self.blanks)

    @computed_field
    @property
    def issue_score(self) -> int:
        """Aggregate issue score (0-100)."""
        if not self.issues:
            return 0
        return min(100, sum(i.severity for i in self.issues))

    @computed_field
    @property
    def image_count(self) -> int:
        return sum(
            1
            for e in (*self.ordered_elements, *self.explanation_elements)
            if e.type == ElementType.IMAGE
        )


# ─── Document Models ──────────────────────────────────────────────────────────


class QuestionBlock(BaseModel):
    """Raw sections of one question block, before assembly."""
    type: str
    id: Optional[str] = None
    prompt: str = ""
    answer: str = ""
    explanation: str = ""
    audio_file: Optional[str] = None
    index: int = Field(ge=0, description="Position inside its group")


class QuestionGroup(BaseModel):
    """A ``## heading`` section with its transcript and questions."""
    id: str
    title: str = ""
    transcript: str = ""
    transcript_elements: list[ContentElement] = Field(default_factory=list)
    audio_file: Optional[str] = None
    questions: list[ParsedQuestion] = Field(default_factory=list)
    skipped_blocks: int = 0


class SourceMetadata(BaseModel):
    """Metadata about the source question file."""
    name: str = ""
    source_file: str = ""
    file_hash: str = ""
    file_size_bytes: int = 0


class ParseVersion(BaseModel):
    """Version tracking for a parse run."""
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    group_count: int = 0
    question_count: int = 0


class ValidationReport(BaseModel):
    """Post-parse validation report."""
    total_questions: int = 0
    cloze_questions: int = 0
    total_blanks: int = 0
    clean_questions: int = 0
    skipped_blocks: int = 0
    duplicate_question_ids: list[str] = Field(default_factory=list)
    questions_missing_answer: list[str] = Field(default_factory=list)
    questions_with_non_sequential_ids: list[str] = Field(default_factory=list)
    inconsistent_questions: list[str] = Field(default_factory=list)
    issue_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def clean_rate(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(self.clean_questions / self.total_questions * 100, 2)


class DocumentResult(BaseModel):
    """
    Complete output of parsing one question document.
    This is the top-level JSON structure written by the engine.
    """
    source: SourceMetadata
    parse_version: ParseVersion
    groups: list[QuestionGroup] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)

    @property
    def questions(self) -> list[ParsedQuestion]:
        return [q for g in self.groups for q in g.questions]
