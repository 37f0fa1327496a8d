"""
Quiz Markup Engine
==================
Main orchestrator that combines document splitting, per-question assembly,
validation, and output formatting into a complete parsing pipeline.

Usage:
    engine = ParserEngine(config)
    result = engine.parse_file("vault/lesson-04.md")
    # result is a DocumentResult with structured JSON output

Architecture:
    Markdown → QuestionBlockExtractor → RawGroups → ContentAssembler →
    ParsedQuestions → ValidationEngine → DocumentResult (JSON)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from . import __version__
from .assembler import ContentAssembler, generate_question_id, parse_content
from .blanks import BLANK_PLACEHOLDER
from .block_extractor import QuestionBlockExtractor, RawGroup
from .models import (
    DocumentResult,
    ParsedQuestion,
    ParseVersion,
    QuestionGroup,
    QuestionType,
    SourceMetadata,
)
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Output settings
    output_dir: str = "output"
    save_output: bool = True

    # Document metadata
    document_name: str = ""

    # Assembly
    blank_placeholder: str = BLANK_PLACEHOLDER
    math_placeholders: bool = False
    check_consistency: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ParserEngine:
    """
    Main quiz-markup parsing engine.

    Orchestrates the full pipeline:
        1. Document splitting (groups + question blocks)
        2. Content assembly (math guard, segmenter, cloze tokenizer)
        3. Validation
        4. Output formatting

    Holds no per-parse state; safe for parallel document processing.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.assembler = ContentAssembler(
            math_placeholders=self.config.math_placeholders,
            check_consistency=self.config.check_consistency,
        )
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the quizmark package
        package_logger = logging.getLogger("quizmark")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
            )
            package_logger.addHandler(file_handler)

    # ─── Single Question ──────────────────────────────────────────────────

    def parse_question(
        self,
        prompt: str,
        question_type: Union[QuestionType, str] = QuestionType.CLOZE,
        answer: str = "",
        explanation: str = "",
        question_id: Optional[str] = None,
        audio_file: Optional[str] = None,
    ) -> ParsedQuestion:
        """Assemble one question from its raw prompt text."""
        return self.assembler.assemble(
            prompt,
            question_type=question_type,
            answer=answer,
            explanation=explanation,
            question_id=question_id,
            audio_file=audio_file,
        )

    # ─── Documents ────────────────────────────────────────────────────────

    def parse_document(
        self,
        text: str,
        name: str = "",
        source: Optional[SourceMetadata] = None,
        progress_callback: Optional[callable] = None,
    ) -> DocumentResult:
        """
        Parse a whole question document held in memory.

        Args:
            text: Markdown document.
            name: Display name of the document.
            source: Optional metadata (file path, hash) to attach.
            progress_callback: Callback(group_num, total_groups).

        Returns:
            DocumentResult with every group, question and the validation report.
        """
        start_time = time.time()
        source = source or SourceMetadata(name=name or self.config.document_name)

        # ── Step 1: Split document ────────────────────────────────────
        raw_groups = QuestionBlockExtractor().extract(text)

        # ── Step 2: Assemble questions ────────────────────────────────
        groups: list[QuestionGroup] = []
        for i, raw in enumerate(raw_groups):
            groups.append(self._assemble_group(raw))
            if progress_callback:
                progress_callback(i + 1, len(raw_groups))

        questions = [q for g in groups for q in g.questions]
        skipped = sum(g.skipped_blocks for g in groups)

        # ── Step 3: Validation ────────────────────────────────────────
        validation = ValidationEngine().validate(questions, skipped_blocks=skipped)

        # ── Step 4: Build result ──────────────────────────────────────
        result = DocumentResult(
            source=source,
            parse_version=ParseVersion(
                parser_version=__version__,
                group_count=len(groups),
                question_count=len(questions),
            ),
            groups=groups,
            validation=validation,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Parsed {source.name or 'document'} in {elapsed:.2f}s: "
            f"{len(groups)} groups, {len(questions)} questions"
        )
        return result

    def _assemble_group(self, raw: RawGroup) -> QuestionGroup:
        questions = []
        for block in raw.blocks:
            question_id = block.id or generate_question_id(
                block.prompt, block.type, block.index, raw.key
            )
            questions.append(self.assembler.assemble(
                block.prompt,
                question_type=block.type,
                answer=block.answer,
                explanation=block.explanation,
                question_id=question_id,
                audio_file=block.audio_file,
            ))

        return QuestionGroup(
            id=raw.id,
            title=raw.title,
            transcript=raw.transcript,
            transcript_elements=parse_content(raw.transcript).elements,
            audio_file=raw.audio_file,
            questions=questions,
            skipped_blocks=raw.skipped_blocks,
        )

    def parse_file(
        self,
        path: str,
        progress_callback: Optional[callable] = None,
    ) -> DocumentResult:
        """
        Parse a question file and (optionally) save its JSON output.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        path = os.path.abspath(path)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Question file not found: {path}")

        logger.info(f"Starting parse of: {path}")

        with open(path, "r", encoding="utf-8") as f:
            text = f.read()

        source = SourceMetadata(
            name=self.config.document_name or Path(path).stem,
            source_file=os.path.basename(path),
            file_hash=self._compute_file_hash(path),
            file_size_bytes=os.path.getsize(path),
        )
        result = self.parse_document(
            text, source=source, progress_callback=progress_callback
        )

        if self.config.save_output:
            self.save_result(result, self._generate_document_id(path))

        return result

    def save_result(self, result: DocumentResult, document_id: str) -> Path:
        """Write ``<id>_parsed.json`` and ``<id>_validation.json``."""
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        output_file = output_dir / f"{document_id}_parsed.json"
        self._save_json_dict(result.model_dump(mode="json"), output_file)

        report_file = output_dir / f"{document_id}_validation.json"
        self._save_json_dict(result.validation.model_dump(mode="json"), report_file)

        logger.info(f"Output saved to: {output_dir}")
        return output_file

    def _compute_file_hash(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _generate_document_id(self, path: str) -> str:
        """Filesystem-safe id from the document file name."""
        name = Path(path).stem
        clean_name = "".join(
            c if c.isalnum() or c in "-_" else "_"
            for c in name
        )
        return clean_name[:50]

    def _save_json_dict(self, data: dict, filepath: Path):
        """Save a dict to JSON file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON: {e}")
