"""
Vault Storage
=============
Locates question documents and their media inside a vault directory.

Directory Layout (typical):
    <vault>/
    ├── lesson-01.md
    ├── grammar/
    │   └── cases.md
    └── attachments/       # Images and audio referenced as ![[file]]

The vault root comes from an explicit argument, else the QUIZMARK_VAULT
environment variable, else the current working directory.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

VAULT_ENV_VAR = "QUIZMARK_VAULT"

IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg", ".tiff", ".webp")
AUDIO_EXTS = (".wav", ".m4a", ".flac", ".mp3", ".wma", ".aac", ".webm", ".ogg")
SUPPORTED_MEDIA_EXTS = IMAGE_EXTS + AUDIO_EXTS

# Sub-folders searched for media before falling back to a recursive search
MEDIA_DIRS = ("", "attachments", "assets", "media", "images", "audio")


def get_vault_dir(vault: Optional[str] = None) -> Path:
    """Resolve the vault root directory."""
    root = vault or os.environ.get(VAULT_ENV_VAR) or os.getcwd()
    return Path(root).expanduser().absolute()


# ─── Question Documents ───────────────────────────────────────────────────────


def find_question_files(
    directory: Optional[str] = None,
    pattern: str = "*.md",
    recursive: bool = True,
) -> list[Path]:
    """
    List question documents under ``directory`` (default: the vault),
    sorted by path. Hidden directories are skipped.
    """
    root = get_vault_dir(directory)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    found = root.rglob(pattern) if recursive else root.glob(pattern)
    files = sorted(
        p for p in found
        if p.is_file()
        and not any(part.startswith(".") for part in p.relative_to(root).parts)
    )
    logger.debug(f"Found {len(files)} question files under {root}")
    return files


def read_question_file(path: str) -> str:
    """
    Read a question document as UTF-8 text.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Question file not found: {p}")
    return p.read_text(encoding="utf-8")


# ─── Media ────────────────────────────────────────────────────────────────────


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTS


def is_audio(filename: str) -> bool:
    return Path(filename).suffix.lower() in AUDIO_EXTS


def resolve_media_path(
    filename: str,
    vault: Optional[str] = None,
) -> Optional[Path]:
    """
    Resolve a ``![[filename]]`` reference to a file on disk.
    Tries:
      1. As-is (if absolute)
      2. Each known media folder of the vault
      3. A recursive search of the vault by file name
    """
    p = Path(filename)
    if p.is_absolute():
        return p if p.exists() else None
    if ".." in p.parts:
        logger.warning(f"Rejected media path outside the vault: {filename}")
        return None

    root = get_vault_dir(vault)
    for sub in MEDIA_DIRS:
        candidate = root / sub / p
        if candidate.is_file():
            return candidate

    for candidate in root.rglob(p.name):
        if candidate.is_file():
            return candidate

    return None


def load_media_base64(
    filename: str,
    vault: Optional[str] = None,
) -> Optional[str]:
    """Base64 content of a media reference, or None when it can't be read."""
    path = resolve_media_path(filename, vault)
    if path is None:
        logger.warning(f"Media file not found in vault: {filename}")
        return None
    try:
        return base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as e:
        logger.warning(f"Failed to read media file {path}: {e}")
        return None


def sanitize_media_name(name: str) -> str:
    """Sanitize a media file name for upload."""
    stem_safe = "".join(
        c if c.isalnum() or c in "-_. " else "_"
        for c in Path(name).name
    )
    return stem_safe.strip().replace(" ", "_")[:100]
