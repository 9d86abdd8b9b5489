"""Exception hierarchy shared by the tab and session layers."""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "SkrivError",
    "ScratchAllocationError",
    "TabSaveError",
    "TabRenameError",
    "SessionDecodeError",
]


class SkrivError(Exception):
    """Base class for all errors raised by skriv."""


class ScratchAllocationError(SkrivError):
    """Raised when a scratch file location could not be prepared."""

    def __init__(self, sequence: int, cause: BaseException | None = None) -> None:
        super().__init__(f"Unable to allocate scratch document 'new {sequence}': {cause}")
        self.sequence = sequence
        self.cause = cause


class TabSaveError(SkrivError):
    """Raised when an explicit Save / Save As request fails.

    These failures are user visible, unlike autosave failures which are only
    logged.
    """

    def __init__(self, tab_id: str, path: Path | None, cause: BaseException | None = None) -> None:
        super().__init__(f"Could not save {path or 'document'}: {cause}")
        self.tab_id = tab_id
        self.path = path
        self.cause = cause


class TabRenameError(SkrivError):
    """Raised when a rename could not be applied to the backing file."""

    def __init__(self, tab_id: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.tab_id = tab_id
        self.cause = cause


class SessionDecodeError(SkrivError):
    """Raised when a session payload does not match the session schema."""
