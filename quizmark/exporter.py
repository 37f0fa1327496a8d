"""
Anki Exporter
=============
Turns ParsedQuestion objects into AnkiConnect notes.

Pipeline per question:
    1. Pick a note type (cloze content always maps to "Cloze")
    2. Upload every referenced image plus the audio file, concurrently
    3. Convert the element stream to HTML
    4. Re-insert blanks as {{cK::...}} at each __CLOZE_K__ token
    5. Map content onto the first available field of the note type

Media uploads settle independently: a failed upload keeps the original
filename so the note still references it.
"""

from __future__ import annotations

import html
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from . import math_guard
from .anki_connect import (
    DEFAULT_DECK,
    DEFAULT_URL,
    DEFAULT_VERSION,
    AnkiConnectClient,
    AnkiConnectError,
)
from .blanks import has_cloze, renumber_clozes
from .models import ElementType, ParsedQuestion, QuestionType
from .storage import is_audio, load_media_base64, sanitize_media_name

logger = logging.getLogger(__name__)


class ExportError(RuntimeError):
    """A question cannot be exported to the connected Anki profile."""


# ─── Configuration ────────────────────────────────────────────────────────────

NOTE_TYPE_MAPPING = {
    QuestionType.CLOZE.value: "Cloze",
    QuestionType.TRUE_FALSE.value: "T-F",
    QuestionType.SHORT.value: "Short",
    "BASIC": "Basic",
}

FALLBACK_NOTE_TYPE = NOTE_TYPE_MAPPING["BASIC"]

FIELD_MAPPING = {
    "CLOZE": {
        "text": ["Text", "Q", "Front", "Question"],
        "extra": ["Extra", "E", "A", "Back", "Notes"],
        "audio": "AUDIO",
    },
    "BASIC": {
        "question": ["Front", "Question", "Prompt", "Q"],
        "answer": ["Back", "Answer", "Response", "A"],
        "explanation": ["Extra", "Explanation", "Notes", "E"],
        "audio": "AUDIO",
    },
}

SEQUENTIAL_TOKEN_PATTERN = re.compile(r"__CLOZE_(\d+)__")

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")
_INLINE_CODE = re.compile(r"`([^`\n]+)`")


@dataclass
class AnkiConfig:
    """Configuration for the Anki exporter."""

    url: str = DEFAULT_URL
    version: int = DEFAULT_VERSION
    deck: str = DEFAULT_DECK
    tags: list[str] = field(default_factory=lambda: ["quizmark"])
    timeout: float = 30
    media_workers: int = 4

    # Vault root used to resolve ![[media]] references
    vault: Optional[str] = None

    # Render pipe tables as <table> (False keeps the markdown)
    convert_tables: bool = True


# ─── Note Type Selection ──────────────────────────────────────────────────────


def question_has_clozes(question: ParsedQuestion) -> bool:
    return bool(question.blanks) or has_cloze(question.raw_explanation)


def map_question_type_to_note_type(question: ParsedQuestion) -> str:
    """Preferred note type; anything holding cloze markers is a Cloze note."""
    if question_has_clozes(question):
        return NOTE_TYPE_MAPPING["CLOZE"]
    return NOTE_TYPE_MAPPING.get(question.question_type.value, FALLBACK_NOTE_TYPE)


# ─── HTML Conversion ──────────────────────────────────────────────────────────


def inline_markdown_to_html(text: str) -> str:
    """Bold, italic, inline code and line breaks. Math spans are left alone."""
    if not text:
        return ""
    guarded, entries = math_guard.protect(text)
    guarded = _INLINE_CODE.sub(lambda m: f"<code>{html.escape(m.group(1))}</code>", guarded)
    guarded = _BOLD.sub(r"<strong>\1</strong>", guarded)
    guarded = _ITALIC.sub(r"<em>\1</em>", guarded)
    guarded = guarded.replace("\n", "<br>")
    return math_guard.restore(guarded, entries)


def code_block_to_html(code: str, lang: str = "") -> str:
    if not code:
        return ""
    return (
        '<div style="background-color: #f8f8f8; border: 1px solid #ddd; '
        "border-radius: 4px; padding: 12px; margin: 8px 0; "
        "font-family: 'Courier New', Courier, monospace; white-space: pre-wrap; "
        f'overflow-x: auto;"><pre><code class="language-{html.escape(lang)}">'
        f"{html.escape(code.rstrip())}</code></pre></div>"
    )


def _split_row(line: str) -> list[str]:
    cells = line.strip().strip("|").split("|")
    return [c.strip() for c in cells]


def table_to_html(markup: str) -> str:
    """Convert a pipe table to a bordered HTML table."""
    lines = [line for line in markup.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        return markup

    header, rows = lines[0], lines[2:]
    out = ['<table border="1" style="border-collapse: collapse;"><thead><tr>']
    for cell in _split_row(header):
        out.append(
            f'<th style="padding: 8px; background-color: #f0f0f0;">'
            f"{inline_markdown_to_html(cell)}</th>"
        )
    out.append("</tr></thead>")
    if rows:
        out.append("<tbody>")
        for row in rows:
            out.append("<tr>")
            for cell in _split_row(row):
                out.append(f'<td style="padding: 8px;">{inline_markdown_to_html(cell)}</td>')
            out.append("</tr>")
        out.append("</tbody>")
    out.append("</table>")
    return "".join(out)


def elements_to_html(
    elements: list,
    media_map: Optional[dict[str, str]] = None,
    math_entries: Optional[list] = None,
    convert_tables: bool = True,
) -> str:
    """Render an element stream as Anki field HTML."""
    media_map = media_map or {}
    originals = {e.token: e.original for e in math_entries or []}
    parts = []
    for e in elements:
        if e.type == ElementType.TEXT:
            parts.append(inline_markdown_to_html(e.content))
        elif e.type == ElementType.IMAGE:
            src = media_map.get(e.filename, e.filename)
            parts.append(
                f'<img src="{html.escape(src)}" alt="Question Image" '
                'style="max-width: 500px; height: auto;">'
            )
        elif e.type == ElementType.CODE_BLOCK:
            parts.append(code_block_to_html(e.code, e.lang))
        elif e.type == ElementType.TABLE:
            parts.append(table_to_html(e.markup) if convert_tables else e.markup)
        elif e.type == ElementType.MATH:
            delim = "$$" if e.display else "$"
            parts.append(f"{delim}{e.expr}{delim}")
        elif e.type == ElementType.MATH_PLACEHOLDER:
            parts.append(originals.get(e.token, e.token))
    return "<br>".join(p for p in parts if p)


def reinsert_blanks(content: str, blanks: list[str]) -> str:
    """
    Replace each __CLOZE_K__ with {{cK::blank}}. Numbering is contiguous,
    so every occurrence becomes its own card.
    """
    def _replace(m: re.Match) -> str:
        k = int(m.group(1))
        if not 1 <= k <= len(blanks):
            logger.warning(f"No blank for token {m.group(0)}")
            return m.group(0)
        return f"{{{{c{k}::{blanks[k - 1]}}}}}"

    return SEQUENTIAL_TOKEN_PATTERN.sub(_replace, content)


def media_references(question: ParsedQuestion) -> list[str]:
    """Every image referenced by the question plus its audio file, deduplicated."""
    names = []
    for e in (*question.ordered_elements, *question.explanation_elements):
        if e.type == ElementType.IMAGE and e.filename not in names:
            names.append(e.filename)
    if question.audio_file and question.audio_file not in names:
        names.append(question.audio_file)
    return names


def _first_available(candidates: list[str], available: list[str]) -> Optional[str]:
    return next((f for f in candidates if f in available), None)


# ─── Exporter ─────────────────────────────────────────────────────────────────


class AnkiExporter:
    """
    Exports ParsedQuestion objects through an AnkiConnectClient.
    """

    def __init__(
        self,
        config: Optional[AnkiConfig] = None,
        client: Optional[AnkiConnectClient] = None,
    ):
        self.config = config or AnkiConfig()
        self.client = client or AnkiConnectClient(
            url=self.config.url,
            version=self.config.version,
            timeout=self.config.timeout,
        )

    # ── Media ─────────────────────────────────────────────────────────

    def _upload_one(self, filename: str) -> str:
        try:
            data = load_media_base64(filename, self.config.vault)
            if data is None:
                return filename
            return self.client.store_media_file(sanitize_media_name(filename), data)
        except (AnkiConnectError, OSError) as e:
            logger.error(f"Failed to upload media file {filename}: {e}")
            return filename

    def upload_media(self, filenames: list[str]) -> dict[str, str]:
        """
        Upload media concurrently. Returns original name → stored name;
        failed uploads map to their original name.
        """
        if not filenames:
            return {}
        workers = max(1, min(self.config.media_workers, len(filenames)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            stored = list(pool.map(self._upload_one, filenames))
        media_map = dict(zip(filenames, stored))
        logger.debug(f"Uploaded {len(media_map)} media files")
        return media_map

    # ── Notes ─────────────────────────────────────────────────────────

    def check_note_types(self) -> dict[str, bool]:
        available = self.client.model_names()
        return {name: name in available for name in sorted(set(NOTE_TYPE_MAPPING.values()))}

    def resolve_note_type(self, question: ParsedQuestion) -> str:
        """
        Preferred note type, or the Basic fallback.

        Raises:
            ExportError: If neither is available.
        """
        available = self.client.model_names()
        preferred = map_question_type_to_note_type(question)
        if preferred in available:
            return preferred

        logger.info(f"Note type '{preferred}' not found, falling back to '{FALLBACK_NOTE_TYPE}'")
        if FALLBACK_NOTE_TYPE not in available:
            raise ExportError(
                f"Note type '{preferred}' not found and '{FALLBACK_NOTE_TYPE}' "
                f"fallback also not available. Available types: {', '.join(available)}"
            )
        return FALLBACK_NOTE_TYPE

    def render_fields(
        self,
        question: ParsedQuestion,
        media_map: dict[str, str],
    ) -> tuple[str, str, str]:
        """(question_html, explanation_html, audio) for one question."""
        question_html = elements_to_html(
            question.ordered_elements,
            media_map,
            question.math_entries,
            self.config.convert_tables,
        )
        question_html = reinsert_blanks(question_html, question.blanks)

        explanation_html = elements_to_html(
            question.explanation_elements,
            media_map,
            convert_tables=self.config.convert_tables,
        )
        if has_cloze(question.raw_explanation):
            explanation_html = renumber_clozes(explanation_html)

        audio = ""
        if question.audio_file and is_audio(question.audio_file):
            audio = f"[sound:{media_map.get(question.audio_file, question.audio_file)}]"

        return question_html or "No question text available", explanation_html, audio

    def prepare_note(
        self,
        question: ParsedQuestion,
        note_type: str,
        deck: Optional[str] = None,
    ) -> dict:
        """
        Build the AnkiConnect note for ``question``.

        Raises:
            ExportError: If the note type has no field to hold the question.
        """
        available = self.client.model_field_names(note_type)
        media_map = self.upload_media(media_references(question))
        question_html, explanation_html, audio = self.render_fields(question, media_map)

        fields: dict[str, str] = {}
        if note_type == NOTE_TYPE_MAPPING["CLOZE"]:
            mapping = FIELD_MAPPING["CLOZE"]
            text_field = _first_available(mapping["text"], available)
            if text_field:
                fields[text_field] = question_html
            extra_field = _first_available(mapping["extra"], available)
            if explanation_html and extra_field:
                fields[extra_field] = explanation_html
        else:
            mapping = FIELD_MAPPING["BASIC"]
            text_field = _first_available(mapping["question"], available)
            if text_field:
                fields[text_field] = question_html
            answer_field = _first_available(mapping["answer"], available)
            if answer_field:
                fields[answer_field] = question.answer or "No answer provided"
            explanation_field = _first_available(mapping["explanation"], available)
            if explanation_html and explanation_field:
                fields[explanation_field] = explanation_html

        if text_field is None:
            raise ExportError(
                f"Note type '{note_type}' has no field for question text "
                f"(fields: {', '.join(available) or 'none'})"
            )

        if audio and mapping["audio"] in available:
            fields[mapping["audio"]] = audio

        return {
            "deckName": deck or self.config.deck,
            "modelName": note_type,
            "fields": fields,
            "tags": list(self.config.tags),
        }

    def add_question(self, question: ParsedQuestion, deck: Optional[str] = None) -> Optional[int]:
        """
        Export one question.

        Raises:
            ExportError: No usable note type or field.
            AnkiConnectError: AnkiConnect rejected the note.
        """
        note_type = self.resolve_note_type(question)
        note = self.prepare_note(question, note_type, deck)
        return self.client.add_note(note)

    def export_questions(
        self,
        questions: list[ParsedQuestion],
        deck: Optional[str] = None,
        progress_callback: Optional[callable] = None,
    ) -> dict:
        """
        Export many questions, one note each. Failures are logged and
        collected; they never stop the run.
        """
        target = deck or self.config.deck
        if target not in self.client.deck_names():
            self.client.create_deck(target)

        added: list[int] = []
        failed: dict[str, str] = {}
        for i, question in enumerate(questions):
            try:
                note_id = self.add_question(question, target)
                if note_id is not None:
                    added.append(note_id)
            except (ExportError, AnkiConnectError) as e:
                logger.error(f"Export failed for {question.id}: {e}")
                failed[question.id] = str(e)
            if progress_callback:
                progress_callback(i + 1, len(questions))

        logger.info(
            f"Exported {len(added)}/{len(questions)} questions to deck '{target}'"
        )
        return {"deck": target, "added": added, "failed": failed}
