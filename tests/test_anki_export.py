"""
Test Suite for the Anki Export
==============================
Tests for the AnkiConnect client and the note exporter. No Anki instance
is needed: HTTP calls and the client are mocked.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from quizmark.anki_connect import AnkiConnectClient, AnkiConnectError
from quizmark.assembler import ContentAssembler
from quizmark.exporter import (
    AnkiConfig,
    AnkiExporter,
    ExportError,
    elements_to_html,
    inline_markdown_to_html,
    map_question_type_to_note_type,
    media_references,
    reinsert_blanks,
    table_to_html,
)
from quizmark.models import QuestionType


def make_client(models=("Cloze", "Basic", "T-F", "Short"), fields=None):
    client = MagicMock(spec=AnkiConnectClient)
    client.model_names.return_value = list(models)
    client.model_field_names.side_effect = lambda name: (fields or {
        "Cloze": ["Text", "Extra", "AUDIO"],
        "Basic": ["Front", "Back"],
        "T-F": ["Question", "Answer", "Explanation"],
        "Short": ["Question", "Answer", "Explanation"],
    }).get(name, [])
    client.deck_names.return_value = ["Default"]
    client.store_media_file.side_effect = lambda name, data: name
    return client


def reply(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


# ═══════════════════════════════════════════════════════════════════════════════
# ANKICONNECT CLIENT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnkiConnectClient:
    """Test the JSON-over-HTTP client."""

    @patch("quizmark.anki_connect.requests.post")
    def test_invoke_returns_result(self, mock_post):
        mock_post.return_value = reply({"result": 6, "error": None})
        client = AnkiConnectClient(url="http://anki:8765", timeout=5)

        assert client.invoke("deckNames", foo=1) == 6
        mock_post.assert_called_once_with(
            "http://anki:8765",
            json={"action": "deckNames", "version": 6, "params": {"foo": 1}},
            timeout=5,
        )

    @patch("quizmark.anki_connect.requests.post")
    def test_api_error_raises(self, mock_post):
        mock_post.return_value = reply({"result": None, "error": "model was not found"})
        with pytest.raises(AnkiConnectError) as exc:
            AnkiConnectClient().invoke("addNote", note={})
        assert exc.value.action == "addNote"
        assert "model was not found" in str(exc.value)

    @patch("quizmark.anki_connect.requests.post")
    def test_malformed_reply_raises(self, mock_post):
        mock_post.return_value = reply(["not", "a", "dict"])
        with pytest.raises(AnkiConnectError):
            AnkiConnectClient().invoke("version")

    @patch("quizmark.anki_connect.requests.post")
    def test_network_failure(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        client = AnkiConnectClient()

        with pytest.raises(AnkiConnectError):
            client.invoke("version")
        assert client.test_connection() is False
        assert client.deck_names() == ["Default"]
        assert client.model_names() == []
        assert client.create_deck("Lesson") is False

    @patch("quizmark.anki_connect.requests.post")
    def test_store_media_keeps_name_without_result(self, mock_post):
        mock_post.return_value = reply({"result": None, "error": None})
        assert AnkiConnectClient().store_media_file("a.png", "ZGF0YQ==") == "a.png"


# ═══════════════════════════════════════════════════════════════════════════════
# HTML CONVERSION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestHtmlConversion:
    """Test element stream → Anki field HTML."""

    def test_reinsert_blanks(self):
        html = reinsert_blanks("A __CLOZE_1__ B __CLOZE_2__", ["x", "y"])
        assert html == "A {{c1::x}} B {{c2::y}}"

    def test_reinsert_blanks_out_of_range_kept(self):
        assert reinsert_blanks("__CLOZE_3__", ["x"]) == "__CLOZE_3__"

    def test_inline_markdown_leaves_math_alone(self):
        html = inline_markdown_to_html("**bold** and $a*b*c$\nnext")
        assert html == "<strong>bold</strong> and $a*b*c$<br>next"

    def test_table_to_html(self):
        html = table_to_html("| a | b |\n|---|---|\n| 1 | **2** |")
        assert html.startswith("<table")
        assert html.count("<th style") == 2
        assert "<strong>2</strong>" in html

    def test_cloze_table_round_trip(self):
        q = ContentAssembler().assemble("| {{c1::Name}} | Age |\n|---|---|\n| John | 25 |")
        html = reinsert_blanks(elements_to_html(q.ordered_elements), q.blanks)
        assert "<table" in html
        assert "{{c1::Name}}" in html

    def test_code_block_is_escaped(self):
        q = ContentAssembler().assemble(
            "```html\n<b>hi</b>\n```", QuestionType.SHORT, answer="x"
        )
        html = elements_to_html(q.ordered_elements)
        assert "&lt;b&gt;hi&lt;/b&gt;" in html
        assert 'class="language-html"' in html

    def test_images_use_media_map(self):
        q = ContentAssembler().assemble("![[a.png]]", QuestionType.SHORT, answer="x")
        html = elements_to_html(q.ordered_elements, {"a.png": "stored_a.png"})
        assert 'src="stored_a.png"' in html


# ═══════════════════════════════════════════════════════════════════════════════
# EXPORTER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnkiExporter:
    """Test note preparation and export."""

    def setup_method(self):
        self.assembler = ContentAssembler()

    def test_note_type_mapping(self):
        cloze = self.assembler.assemble("{{c1::a}}")
        short = self.assembler.assemble("What?", QuestionType.SHORT, answer="x")
        audio = self.assembler.assemble("", QuestionType.AUDIO, audio_file="a.mp3")
        short_with_cloze_explanation = self.assembler.assemble(
            "What?", QuestionType.SHORT, answer="x", explanation="{{c1::because}}"
        )

        assert map_question_type_to_note_type(cloze) == "Cloze"
        assert map_question_type_to_note_type(short) == "Short"
        assert map_question_type_to_note_type(audio) == "Basic"
        assert map_question_type_to_note_type(short_with_cloze_explanation) == "Cloze"

    def test_basic_fallback(self):
        exporter = AnkiExporter(client=make_client(models=["Basic"]))
        q = self.assembler.assemble("Sky?", QuestionType.TRUE_FALSE, answer="True")
        assert exporter.resolve_note_type(q) == "Basic"

    def test_missing_fallback_raises(self):
        exporter = AnkiExporter(client=make_client(models=["Cloze"]))
        q = self.assembler.assemble("Sky?", QuestionType.SHORT, answer="Blue")
        with pytest.raises(ExportError):
            exporter.resolve_note_type(q)

    def test_check_note_types(self):
        exporter = AnkiExporter(client=make_client(models=["Cloze", "Basic"]))
        assert exporter.check_note_types() == {
            "Basic": True, "Cloze": True, "Short": False, "T-F": False,
        }

    def test_prepare_cloze_note(self):
        exporter = AnkiExporter(
            config=AnkiConfig(deck="French", tags=["lesson"]),
            client=make_client(),
        )
        q = self.assembler.assemble(
            "The capital of France is {{c1::Paris}}.", explanation="Since 508."
        )
        note = exporter.prepare_note(q, "Cloze")

        assert note["deckName"] == "French"
        assert note["modelName"] == "Cloze"
        assert note["tags"] == ["lesson"]
        assert note["fields"] == {
            "Text": "The capital of France is {{c1::Paris}}.",
            "Extra": "Since 508.",
        }

    def test_repeated_ids_become_separate_cards(self):
        exporter = AnkiExporter(client=make_client())
        q = self.assembler.assemble("{{c1::A}} and {{c1::B}}")
        note = exporter.prepare_note(q, "Cloze")
        assert note["fields"]["Text"] == "{{c1::A}} and {{c2::B}}"

    def test_prepare_basic_note(self):
        exporter = AnkiExporter(client=make_client())
        q = self.assembler.assemble("Is the sky blue?", QuestionType.TRUE_FALSE)
        note = exporter.prepare_note(q, "Basic")
        assert note["fields"] == {
            "Front": "Is the sky blue?",
            "Back": "No answer provided",
        }

    def test_prepare_note_without_text_field(self):
        exporter = AnkiExporter(client=make_client(fields={"Cloze": ["Other"]}))
        q = self.assembler.assemble("{{c1::a}}")
        with pytest.raises(ExportError):
            exporter.prepare_note(q, "Cloze")

    @patch("quizmark.exporter.load_media_base64", return_value="ZGF0YQ==")
    def test_audio_field(self, _mock_load):
        exporter = AnkiExporter(client=make_client())
        q = self.assembler.assemble("{{c1::Bonjour}}", audio_file="hello.mp3")
        note = exporter.prepare_note(q, "Cloze")
        assert note["fields"]["AUDIO"] == "[sound:hello.mp3]"

    @patch("quizmark.exporter.load_media_base64", return_value="ZGF0YQ==")
    def test_media_upload_settles_independently(self, _mock_load):
        client = make_client()

        def store(name, data):
            if name == "bad.png":
                raise AnkiConnectError("storeMediaFile", "disk full")
            return f"stored_{name}"

        client.store_media_file.side_effect = store
        exporter = AnkiExporter(client=client)

        media_map = exporter.upload_media(["good.png", "bad.png"])
        assert media_map == {"good.png": "stored_good.png", "bad.png": "bad.png"}

    @patch("quizmark.exporter.load_media_base64", return_value=None)
    def test_missing_media_keeps_name(self, _mock_load):
        client = make_client()
        exporter = AnkiExporter(client=client)
        assert exporter.upload_media(["gone.png"]) == {"gone.png": "gone.png"}
        client.store_media_file.assert_not_called()

    def test_media_references(self):
        q = self.assembler.assemble(
            "![[a.png]] {{c1::x}} ![[a.png]]",
            explanation="![[b.png]]",
            audio_file="c.mp3",
        )
        assert media_references(q) == ["a.png", "b.png", "c.mp3"]

    def test_export_collects_failures(self):
        client = make_client()
        client.deck_names.return_value = ["Default"]
        client.add_note.side_effect = [AnkiConnectError("addNote", "duplicate"), 42]
        exporter = AnkiExporter(client=client)

        questions = [
            self.assembler.assemble("{{c1::a}}", question_id="q1"),
            self.assembler.assemble("{{c1::b}}", question_id="q2"),
        ]
        progress = []
        summary = exporter.export_questions(
            questions, deck="New Deck", progress_callback=lambda i, n: progress.append(i)
        )

        client.create_deck.assert_called_once_with("New Deck")
        assert summary["deck"] == "New Deck"
        assert summary["added"] == [42]
        assert list(summary["failed"]) == ["q1"]
        assert progress == [1, 2]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
