"""
AnkiConnect Client
==================
Thin JSON-over-HTTP client for the AnkiConnect add-on.

Every request is a POST of ``{"action", "version", "params"}``; a reply
carrying a non-null ``error`` raises AnkiConnectError.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8765"
DEFAULT_VERSION = 6
DEFAULT_DECK = "Default"


class AnkiConnectError(RuntimeError):
    """AnkiConnect was unreachable or answered with an error."""

    def __init__(self, action: str, message: str):
        super().__init__(f"AnkiConnect {action} failed: {message}")
        self.action = action


class AnkiConnectClient:
    """
    Stateless wrapper around one AnkiConnect endpoint.
    A single client may be shared by worker threads.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        version: int = DEFAULT_VERSION,
        timeout: float = 30,
    ):
        self.url = url
        self.version = version
        self.timeout = timeout

    def invoke(self, action: str, **params) -> Any:
        """
        Call one AnkiConnect action and return its ``result``.

        Raises:
            AnkiConnectError: On network failure, HTTP error or API error.
        """
        payload = {"action": action, "version": self.version, "params": params}
        logger.debug(f"Invoking {action}")

        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            raise AnkiConnectError(action, str(e)) from e
        except ValueError as e:
            raise AnkiConnectError(action, f"invalid JSON reply: {e}") from e

        if not isinstance(data, dict) or "result" not in data:
            raise AnkiConnectError(action, f"unexpected reply: {data!r}")
        if data.get("error"):
            raise AnkiConnectError(action, str(data["error"]))
        return data["result"]

    def safe_invoke(self, action: str, fallback: Any = None, **params) -> Any:
        """Like :meth:`invoke` but logs failures and returns ``fallback``."""
        try:
            return self.invoke(action, **params)
        except AnkiConnectError as e:
            logger.error(str(e))
            return fallback

    # ─── Actions ──────────────────────────────────────────────────────────

    def test_connection(self) -> bool:
        try:
            self.invoke("version")
            return True
        except AnkiConnectError:
            return False

    def deck_names(self) -> list[str]:
        return self.safe_invoke("deckNames", fallback=[DEFAULT_DECK])

    def create_deck(self, deck: str) -> bool:
        try:
            self.invoke("createDeck", deck=deck)
            return True
        except AnkiConnectError as e:
            logger.error(f"Failed to create deck {deck}: {e}")
            return False

    def model_names(self) -> list[str]:
        return self.safe_invoke("modelNames", fallback=[])

    def model_field_names(self, model_name: str) -> list[str]:
        return self.safe_invoke("modelFieldNames", fallback=[], modelName=model_name)

    def store_media_file(self, filename: str, data: str) -> str:
        """
        Upload base64 ``data``. Returns the stored name (AnkiConnect may
        rename), or ``filename`` when the reply carries none.
        """
        result = self.invoke("storeMediaFile", filename=filename, data=data)
        return result if result else filename

    def add_note(self, note: dict) -> Optional[int]:
        """Add one note and return its id."""
        note_id = self.invoke("addNote", note=note)
        logger.info(f"Note added with id {note_id}")
        return note_id
