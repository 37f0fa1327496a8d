"""
Test Suite for Document Parsing
===============================
Tests for block extraction, validation, vault storage and the full
document pipeline.
"""

from __future__ import annotations

import json
import re

import pytest

from quizmark import storage
from quizmark.block_extractor import QuestionBlockExtractor, group_key, normalize_type
from quizmark.engine import ParserConfig, ParserEngine
from quizmark.models import (
    ElementType,
    IssueType,
    ParsedQuestion,
    ParseIssue,
    QuestionType,
)
from quizmark.validator import ValidationEngine


LESSON_DOC = """# Lesson

## 1

### Transcript
Listen to the dialogue about $x$.

```
AUDIO: ![[dialogue.mp3]]
```

### Questions

--- start-question
TYPE: CLOZE
ID: q1_1_cloze_abc123
Q: The capital of France is {{c1::Paris}}.
E: Paris has been the capital since 508.
--- end-question

````ad-question
TYPE: T-F
Q: The sky is green.
A: False
````

--- start-question
TYPE: MCQ
Q: unsupported
--- end-question

## 2

### Questions

--- start-question
TYPE: SHORT
Q: What is
2 + 2?
A: 4
E: Basic
arithmetic.
--- end-question
"""


def quiet_engine(**overrides) -> ParserEngine:
    config = ParserConfig(save_output=False, log_level="WARNING")
    for key, value in overrides.items():
        setattr(config, key, value)
    return ParserEngine(config)


# ═══════════════════════════════════════════════════════════════════════════════
# BLOCK EXTRACTOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBlockExtractor:
    """Test group and question block extraction."""

    def setup_method(self):
        self.extractor = QuestionBlockExtractor()

    def test_groups_and_titles(self):
        groups = self.extractor.extract(LESSON_DOC)
        assert [g.id for g in groups] == ["g1", "g2"]
        assert [g.title for g in groups] == ["1", "2"]

    def test_both_fence_forms(self):
        group = self.extractor.extract(LESSON_DOC)[0]
        types = [b.type for b in group.blocks]
        assert types == ["AUDIO", "CLOZE", "T-F"]

    def test_unknown_type_is_skipped(self):
        group = self.extractor.extract(LESSON_DOC)[0]
        assert group.skipped_blocks == 1

    def test_transcript_and_group_audio(self):
        group = self.extractor.extract(LESSON_DOC)[0]
        assert group.transcript == "Listen to the dialogue about $x$."
        assert group.audio_file == "dialogue.mp3"

    def test_implicit_audio_question(self):
        blocks = self.extractor.extract(LESSON_DOC)[0].blocks
        assert blocks[0].id == "g1_q0"
        assert blocks[0].audio_file == "dialogue.mp3"
        assert [b.index for b in blocks] == [0, 1, 2]

    def test_block_fields(self):
        cloze = self.extractor.extract(LESSON_DOC)[0].blocks[1]
        assert cloze.id == "q1_1_cloze_abc123"
        assert cloze.prompt == "The capital of France is {{c1::Paris}}."
        assert cloze.explanation == "Paris has been the capital since 508."
        assert cloze.answer == ""

    def test_multiline_prompt_and_explanation(self):
        short = self.extractor.extract(LESSON_DOC)[1].blocks[0]
        assert short.prompt == "What is\n2 + 2?"
        assert short.answer == "4"
        assert short.explanation == "Basic\narithmetic."

    def test_document_without_headings(self):
        doc = "--- start-question\nTYPE: SHORT\nQ: 1+1?\nA: 2\n--- end-question"
        groups = self.extractor.extract(doc)
        assert len(groups) == 1
        assert groups[0].title == ""
        assert groups[0].blocks[0].answer == "2"

    def test_empty_document(self):
        assert self.extractor.extract("") == []
        assert self.extractor.extract("just some notes") == []

    def test_windows_line_endings(self):
        doc = LESSON_DOC.replace("\n", "\r\n")
        groups = self.extractor.extract(doc)
        assert len(groups[1].blocks) == 1
        assert groups[1].blocks[0].prompt == "What is\n2 + 2?"

    def test_parse_block_without_id(self):
        block = self.extractor.parse_block("TYPE: cloze\nQ: {{c1::x}}")
        assert block.type == "CLOZE"
        assert block.id is None
        assert block.prompt == "{{c1::x}}"

    def test_audio_line_implies_audio_type(self):
        block = self.extractor.parse_block("AUDIO: ![[clip.wav]]\nQ: Listen")
        assert block.type == "AUDIO"
        assert block.audio_file == "clip.wav"
        assert block.prompt == "Listen"

    def test_parse_block_unknown_type(self):
        assert self.extractor.parse_block("TYPE: MCQ\nQ: x") is None
        assert self.extractor.parse_block("Q: no type at all") is None

    def test_normalize_type(self):
        assert normalize_type("tf") == QuestionType.TRUE_FALSE
        assert normalize_type(" Short ") == QuestionType.SHORT
        assert normalize_type("essay") is None

    def test_group_key(self):
        assert group_key("Lesson 4: Verbs", 0) == "Lesson4Verbs"
        assert group_key("!!!", 2) == "3"


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestValidationEngine:
    """Test the post-parse validation report."""

    def test_empty_input(self):
        report = ValidationEngine().validate([], skipped_blocks=2)
        assert report.total_questions == 0
        assert report.skipped_blocks == 2
        assert report.clean_rate == 0.0

    def test_duplicates_are_never_clean(self):
        questions = [
            ParsedQuestion(id="q1", question_type=QuestionType.SHORT, answer="x"),
            ParsedQuestion(id="q1", question_type=QuestionType.SHORT, answer="y"),
            ParsedQuestion(id="q2", question_type=QuestionType.CLOZE, blanks=["a", "b"]),
        ]
        report = ValidationEngine().validate(questions)

        assert report.total_questions == 3
        assert report.duplicate_question_ids == ["q1"]
        assert report.clean_questions == 1
        assert report.cloze_questions == 1
        assert report.total_blanks == 2
        assert report.issue_breakdown == {"duplicate_question_id": 2}
        assert report.clean_rate == 33.33

    def test_issue_lists(self):
        questions = [
            ParsedQuestion(
                id="a", question_type=QuestionType.TRUE_FALSE,
                issues=[ParseIssue(type=IssueType.MISSING_ANSWER, severity=60, message="m")],
            ),
            ParsedQuestion(
                id="b", question_type=QuestionType.CLOZE,
                issues=[
                    ParseIssue(type=IssueType.NON_SEQUENTIAL_CLOZE_IDS, severity=20, message="n"),
                    ParseIssue(type=IssueType.ELEMENT_STREAM_MISMATCH, severity=80, message="e"),
                ],
            ),
        ]
        report = ValidationEngine().validate(questions)

        assert report.questions_missing_answer == ["a"]
        assert report.questions_with_non_sequential_ids == ["b"]
        assert report.inconsistent_questions == ["b"]
        assert report.clean_questions == 0


# ═══════════════════════════════════════════════════════════════════════════════
# STORAGE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStorage:
    """Test vault file and media lookup."""

    def test_find_question_files_skips_hidden(self, tmp_path):
        (tmp_path / "b.md").write_text("x", encoding="utf-8")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "a.md").write_text("x", encoding="utf-8")
        (tmp_path / ".obsidian").mkdir()
        (tmp_path / ".obsidian" / "c.md").write_text("x", encoding="utf-8")

        files = storage.find_question_files(str(tmp_path))
        assert [p.relative_to(tmp_path).as_posix() for p in files] == ["b.md", "sub/a.md"]

        top_level = storage.find_question_files(str(tmp_path), recursive=False)
        assert [p.name for p in top_level] == ["b.md"]

    def test_find_question_files_rejects_file(self, tmp_path):
        target = tmp_path / "a.md"
        target.write_text("x", encoding="utf-8")
        with pytest.raises(NotADirectoryError):
            storage.find_question_files(str(target))

    def test_vault_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(storage.VAULT_ENV_VAR, str(tmp_path))
        assert storage.get_vault_dir() == tmp_path.absolute()

    def test_resolve_media_path(self, tmp_path):
        (tmp_path / "attachments").mkdir()
        image = tmp_path / "attachments" / "map.png"
        image.write_bytes(b"png")
        deep = tmp_path / "notes" / "audio"
        deep.mkdir(parents=True)
        (deep / "clip.mp3").write_bytes(b"mp3")

        assert storage.resolve_media_path("map.png", str(tmp_path)) == image
        assert storage.resolve_media_path("clip.mp3", str(tmp_path)) == deep / "clip.mp3"
        assert storage.resolve_media_path("missing.png", str(tmp_path)) is None
        assert storage.resolve_media_path("../map.png", str(tmp_path)) is None

    def test_load_media_base64(self, tmp_path):
        (tmp_path / "a.png").write_bytes(b"data")
        assert storage.load_media_base64("a.png", str(tmp_path)) == "ZGF0YQ=="
        assert storage.load_media_base64("b.png", str(tmp_path)) is None

    def test_media_helpers(self):
        assert storage.is_image("Photo.JPG")
        assert storage.is_audio("clip.m4a")
        assert not storage.is_audio("clip.png")
        assert storage.sanitize_media_name("dir/my file?.png") == "my_file_.png"

    def test_read_question_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            storage.read_question_file(str(tmp_path / "nope.md"))


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE INTEGRATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestParserEngine:
    """End-to-end document parsing."""

    def test_parse_document(self):
        result = quiet_engine().parse_document(LESSON_DOC, name="lesson")

        assert result.source.name == "lesson"
        assert result.parse_version.group_count == 2
        assert result.parse_version.question_count == 4
        assert [q.question_type for q in result.questions] == [
            QuestionType.AUDIO,
            QuestionType.CLOZE,
            QuestionType.TRUE_FALSE,
            QuestionType.SHORT,
        ]

        report = result.validation
        assert report.total_questions == 4
        assert report.cloze_questions == 1
        assert report.total_blanks == 1
        assert report.skipped_blocks == 1
        assert report.clean_questions == 4

    def test_group_content(self):
        group = quiet_engine().parse_document(LESSON_DOC).groups[0]

        assert group.audio_file == "dialogue.mp3"
        assert [e.type for e in group.transcript_elements] == [
            ElementType.TEXT, ElementType.MATH, ElementType.TEXT,
        ]
        assert group.questions[0].id == "g1_q0"
        assert group.questions[0].audio_file == "dialogue.mp3"

        cloze = group.questions[1]
        assert cloze.id == "q1_1_cloze_abc123"
        assert list(cloze.blanks) == ["Paris"]
        assert cloze.ordered_elements[0].content == "The capital of France is __CLOZE_1__."

    def test_generated_ids_follow_position(self):
        result = quiet_engine().parse_document(LESSON_DOC)
        tf = result.groups[0].questions[2]
        short = result.groups[1].questions[0]

        assert re.fullmatch(r"q1_3_t-f_[0-9a-f]{6}", tf.id)
        assert re.fullmatch(r"q2_1_short_[0-9a-f]{6}", short.id)
        # Deterministic across runs
        assert quiet_engine().parse_document(LESSON_DOC).groups[1].questions[0].id == short.id

    def test_progress_callback(self):
        calls = []
        quiet_engine().parse_document(
            LESSON_DOC, progress_callback=lambda i, n: calls.append((i, n))
        )
        assert calls == [(1, 2), (2, 2)]

    def test_math_placeholders_config(self):
        engine = quiet_engine(math_placeholders=True)
        q = engine.parse_question("{{c1::a}} and $b$")
        assert q.ordered_elements[-1].type == ElementType.MATH_PLACEHOLDER
        assert q.math_entries[0].original == "$b$"

    def test_parse_file_writes_output(self, tmp_path):
        doc = tmp_path / "lesson-04.md"
        doc.write_text(LESSON_DOC, encoding="utf-8")
        out_dir = tmp_path / "out"

        engine = quiet_engine(save_output=True, output_dir=str(out_dir))
        result = engine.parse_file(str(doc))

        assert result.source.name == "lesson-04"
        assert result.source.source_file == "lesson-04.md"
        assert len(result.source.file_hash) == 64
        assert result.source.file_size_bytes == doc.stat().st_size

        parsed = json.loads((out_dir / "lesson-04_parsed.json").read_text(encoding="utf-8"))
        assert parsed["parse_version"]["question_count"] == 4
        assert parsed["groups"][0]["questions"][1]["blanks"] == ["Paris"]

        report = json.loads((out_dir / "lesson-04_validation.json").read_text(encoding="utf-8"))
        assert report["clean_rate"] == 100.0

    def test_parse_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            quiet_engine().parse_file(str(tmp_path / "missing.md"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
