"""Session file persistence and scratch body rehydration."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from ..editor.tab_model import Session, Tab
from ..errors import SessionDecodeError
from .file_system import FileSystem
from .scratch_storage import ScratchStorage

__all__ = ["SessionCodec", "SESSION_SCHEMA", "default_session"]

LOGGER = logging.getLogger(__name__)
_SESSION_VERSION = 1

_TAB_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "name", "path", "scratch_path"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "path": {"type": ["string", "null"]},
        "scratch_path": {"type": ["string", "null"]},
        "cursor_position": {"type": "integer", "minimum": 0},
        "content": {"type": "string"},
        "saved_content": {"type": "string"},
    },
    "oneOf": [
        {
            "properties": {
                "path": {"type": "string", "minLength": 1},
                "scratch_path": {"type": "null"},
            }
        },
        {
            "properties": {
                "path": {"type": "null"},
                "scratch_path": {"type": "string", "minLength": 1},
            }
        },
    ],
}

SESSION_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["tabs", "active_tab_id", "next_scratch_sequence"],
    "properties": {
        "version": {"type": "integer"},
        "tabs": {"type": "array", "items": _TAB_SCHEMA},
        "active_tab_id": {"type": ["string", "null"]},
        "next_scratch_sequence": {"type": "integer", "minimum": 1},
        "dark_mode": {"type": "boolean"},
    },
}

_VALIDATOR = Draft202012Validator(SESSION_SCHEMA)


def default_session() -> Session:
    return Session(tabs=[], active_tab_id=None, next_scratch_sequence=1, dark_mode=True)


class SessionCodec:
    """Reads and writes the session file plus the bodies of scratch tabs.

    Only scratch bodies are persisted alongside the session. Persisted tabs
    are re-read from their own ``path`` on load, so unsaved edits to a file
    that the user saved before do not survive a restart.
    """

    def __init__(
        self,
        session_path: Path | str,
        *,
        storage: ScratchStorage,
        file_system: FileSystem,
    ) -> None:
        self._path = Path(session_path).expanduser()
        self._storage = storage
        self._fs = file_system

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------
    async def save(self, session: Session) -> bool:
        """Persist ``session``; failures are logged and reported as ``False``."""

        tabs = [replace(tab) for tab in session.tabs]
        snapshot = replace(session, tabs=tabs)
        try:
            if not await self._fs.exists(self._path.parent):
                await self._fs.make_dirs(self._path.parent)
            scratch_tabs = [tab for tab in tabs if tab.scratch_path is not None]
            if scratch_tabs:
                await self._storage.ensure_dir()
            for tab in scratch_tabs:
                await self._write_scratch_body(session, tab)
            await self._fs.write_text(self._path, self.encode(snapshot))
        except Exception:
            LOGGER.exception("Failed to save session to %s", self._path)
            return False
        LOGGER.debug(
            "Session saved to %s: %d tabs, active=%s",
            self._path,
            len(tabs),
            snapshot.active_tab_id,
        )
        return True

    def encode(self, session: Session) -> str:
        """Serialize ``session`` with every tab body blanked out."""

        payload = {
            "version": _SESSION_VERSION,
            "tabs": [_encode_tab(tab) for tab in session.tabs],
            "active_tab_id": session.active_tab_id,
            "next_scratch_sequence": session.next_scratch_sequence,
            "dark_mode": session.dark_mode,
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    async def _write_scratch_body(self, session: Session, tab: Tab) -> None:
        """Write one scratch body unless its tab was closed or saved meanwhile.

        The live ``session`` is checked again after the write: a close or
        Save As that ran while the body was in flight has already deleted
        the scratch file, so the copy just written is removed again.
        """

        scratch_path = tab.scratch_path
        assert scratch_path is not None
        if not _owns_scratch(session, tab.id, scratch_path):
            return
        await self._storage.write(scratch_path, tab.content)
        if not _owns_scratch(session, tab.id, scratch_path):
            LOGGER.debug("Tab %s left the session during autosave; removing %s", tab.id, scratch_path)
            await self._storage.delete(scratch_path)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------
    async def load(self) -> Session:
        """Load the session, falling back to defaults when absent or invalid."""

        try:
            if not await self._fs.exists(self._path):
                LOGGER.info("No session file at %s; starting fresh", self._path)
                return default_session()
            text = await self._fs.read_text(self._path)
            session = self.decode(text)
        except (OSError, ValueError, SessionDecodeError) as exc:
            LOGGER.warning("Unable to load session from %s: %s", self._path, exc)
            return default_session()

        for tab in session.tabs:
            body = await self._read_body(tab)
            tab.content = body
            tab.saved_content = body
        LOGGER.debug(
            "Session loaded from %s: %d tabs, active=%s",
            self._path,
            len(session.tabs),
            session.active_tab_id,
        )
        return session

    def decode(self, text: str) -> Session:
        """Parse and validate a session payload.

        Raises:
            SessionDecodeError: the text is not JSON or violates the schema.
        """

        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise SessionDecodeError(f"Session file is not valid JSON: {exc}") from exc

        error = best_match(_VALIDATOR.iter_errors(payload))
        if error is not None:
            location = "/".join(str(part) for part in error.absolute_path) or "<root>"
            raise SessionDecodeError(f"Session schema mismatch at {location}: {error.message}")

        tabs = [_decode_tab(entry) for entry in payload["tabs"]]
        seen: set[str] = set()
        for tab in tabs:
            if tab.id in seen:
                raise SessionDecodeError(f"Duplicate tab id in session: {tab.id}")
            seen.add(tab.id)

        return Session(
            tabs=tabs,
            active_tab_id=payload["active_tab_id"],
            next_scratch_sequence=payload["next_scratch_sequence"],
            dark_mode=payload.get("dark_mode", True),
        )

    async def _read_body(self, tab: Tab) -> str:
        try:
            if tab.scratch_path is not None:
                return await self._storage.read(tab.scratch_path)
            if tab.path is not None:
                return await self._fs.read_text(tab.path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Backing file for tab %s unavailable: %s", tab.id, exc)
        return ""


def _owns_scratch(session: Session, tab_id: str, scratch_path: Path) -> bool:
    live = session.find_tab(tab_id)
    return live is not None and live.scratch_path == scratch_path


def _encode_tab(tab: Tab) -> dict[str, Any]:
    return {
        "id": tab.id,
        "name": tab.name,
        "path": str(tab.path) if tab.path is not None else None,
        "scratch_path": str(tab.scratch_path) if tab.scratch_path is not None else None,
        "cursor_position": tab.cursor_position,
        "content": "",
        "saved_content": "",
    }


def _decode_tab(entry: Mapping[str, Any]) -> Tab:
    path = entry.get("path")
    scratch_path = entry.get("scratch_path")
    return Tab(
        id=entry["id"],
        name=entry["name"],
        path=Path(path) if path else None,
        scratch_path=Path(scratch_path) if scratch_path else None,
        cursor_position=entry.get("cursor_position", 0),
    )
