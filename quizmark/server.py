"""
HTTP Microservice
=================
Flask-based HTTP API for the quiz markup engine.

Lets renderers and editors call the engine over HTTP instead of importing
it, enabling:
    - Live preview of a single question while authoring
    - Whole-document parsing
    - Blank projections for grading front-ends

Endpoints:
    POST   /api/parse            → Assemble one question
    POST   /api/parse-document   → Parse a whole question document
    POST   /api/blanks           → Blank projections of a text
    GET    /media/<path>         → Serve a vault media file
    GET    /api/health           → Health check
    GET    /api/info             → Engine version info
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS

from . import __version__
from . import blanks
from . import storage
from .engine import ParserConfig, ParserEngine

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

BLANK_MODES = ("grouped", "individual", "sequential", "static", "strip", "renumber")


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("VAULT_DIR", str(storage.get_vault_dir()))
    app.config.setdefault("LOG_LEVEL", "INFO")
    app.config.setdefault("MATH_PLACEHOLDERS", False)
    app.config.setdefault("MAX_CONTENT_LENGTH", 16 * 1024 * 1024)  # 16MB

    return app


def _engine(params: dict) -> ParserEngine:
    """Engine for one request; nothing is written to disk."""
    placeholders = params.get("math_placeholders", app.config.get("MATH_PLACEHOLDERS", False))
    if isinstance(placeholders, str):
        # Form fields arrive as strings
        placeholders = placeholders.lower() in ("1", "true", "yes", "on")
    return ParserEngine(ParserConfig(
        save_output=False,
        log_level=app.config.get("LOG_LEVEL", "INFO"),
        math_placeholders=bool(placeholders),
    ))


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "quizmark",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Engine version and capability info."""
    return jsonify({
        "version": __version__,
        "question_types": ["CLOZE", "T-F", "SHORT", "AUDIO"],
        "capabilities": [
            "math_protection",
            "structural_segmentation",
            "cloze_tokenization",
            "blank_projection",
            "consistency_check",
        ],
        "blank_modes": list(BLANK_MODES),
        "supported_formats": ["md", "txt"],
    })


# ─── Parse Endpoints ──────────────────────────────────────────────────────────


@app.route("/api/parse", methods=["POST"])
def parse_question():
    """
    Assemble a single question.

    JSON body: {"text", "type"?, "answer"?, "explanation"?, "id"?,
                "audio_file"?, "math_placeholders"?}
    """
    data = request.get_json(silent=True) or {}
    text = data.get("text")
    if text is None:
        return jsonify({"error": "Provide JSON with a 'text' field"}), 400

    try:
        question = _engine(data).parse_question(
            text,
            question_type=data.get("type", "CLOZE"),
            answer=data.get("answer", ""),
            explanation=data.get("explanation", ""),
            question_id=data.get("id"),
            audio_file=data.get("audio_file"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(question.model_dump(mode="json")), 200


@app.route("/api/parse-document", methods=["POST"])
def parse_document():
    """
    Parse a whole question document.

    Accepts either:
        - A file upload (multipart/form-data)
        - A JSON body with "text" or "file_path"
    """
    name = ""
    params: dict = {}

    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return jsonify({"error": "No file selected"}), 400
        text = file.read().decode("utf-8", errors="replace")
        name = Path(file.filename).stem
        params = dict(request.form)
    elif request.is_json:
        params = request.get_json(silent=True) or {}
        text = params.get("text")
        name = params.get("name", "")
        if text is None:
            file_path = params.get("file_path")
            if not file_path or not os.path.exists(file_path):
                return jsonify({"error": f"File not found: {file_path}"}), 404
            text = storage.read_question_file(file_path)
            name = name or Path(file_path).stem
    else:
        return jsonify({
            "error": "Provide a file upload or JSON with text or file_path"
        }), 400

    result = _engine(params).parse_document(text, name=name)
    return jsonify(result.model_dump(mode="json")), 200


@app.route("/api/blanks", methods=["POST"])
def blank_projections():
    """
    Blank projections of a cloze text.

    JSON body: {"text", "mode"?} where mode is one of BLANK_MODES
    (default "individual").
    """
    data = request.get_json(silent=True) or {}
    text = data.get("text")
    mode = data.get("mode", "individual")
    if text is None:
        return jsonify({"error": "Provide JSON with a 'text' field"}), 400
    if mode not in BLANK_MODES:
        return jsonify({
            "error": f"Unknown mode '{mode}'",
            "modes": list(BLANK_MODES),
        }), 400

    if mode == "grouped":
        return jsonify({"mode": mode, "blanks": blanks.grouped_blanks(text)})
    if mode == "individual":
        return jsonify({"mode": mode, "blanks": blanks.individual_blanks(text)})

    if mode == "sequential":
        out = blanks.to_sequential_blanks(text)
    elif mode == "static":
        out = blanks.static_blanks(
            text,
            data.get("placeholder", blanks.BLANK_PLACEHOLDER),
            data.get("target_id"),
        )
    elif mode == "strip":
        out = blanks.strip_markers(text)
    else:
        out = blanks.renumber_clozes(text)
    return jsonify({"mode": mode, "text": out})


# ─── Media ────────────────────────────────────────────────────────────────────


@app.route("/media/<path:filename>")
def serve_media(filename):
    """Serve a media file referenced as ![[filename]] from the vault."""
    path = storage.resolve_media_path(filename, app.config.get("VAULT_DIR"))
    if not path:
        logger.warning(f"Media NOT FOUND: {filename}")
        return jsonify({"error": "Media not found", "path": filename}), 404
    return send_from_directory(str(path.parent), path.name)


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Create the app and run the development server."""
    create_app()
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
