"""Dataclasses describing open tabs and the persisted session."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["Tab", "Session", "generate_tab_id", "scratch_display_name"]


def generate_tab_id() -> str:
    return uuid.uuid4().hex


def scratch_display_name(sequence: int) -> str:
    """Return the placeholder name shown for scratch document ``sequence``."""

    return f"new {sequence}"


@dataclass(slots=True)
class Tab:
    """One open document.

    A tab is either *persisted* (``path`` set) or *scratch* (``scratch_path``
    set), never both and never neither.
    """

    id: str
    name: str
    path: Path | None = None
    scratch_path: Path | None = None
    content: str = ""
    saved_content: str = ""
    cursor_position: int = 0

    def __post_init__(self) -> None:
        if self.path is not None:
            self.path = Path(self.path)
        if self.scratch_path is not None:
            self.scratch_path = Path(self.scratch_path)
        if (self.path is None) == (self.scratch_path is None):
            raise ValueError(
                f"Tab {self.id!r} must have exactly one of path or scratch_path"
            )

    @property
    def dirty(self) -> bool:
        return self.content != self.saved_content

    @property
    def is_scratch(self) -> bool:
        return self.scratch_path is not None

    @property
    def is_persisted(self) -> bool:
        return self.path is not None

    def mark_saved(self, written: str) -> None:
        """Record ``written`` as the text last stored on disk.

        ``written`` may lag behind ``content`` when edits arrived while the
        write was in flight; the tab then stays dirty.
        """

        self.saved_content = written

    def promote(self, destination: Path, written: str) -> None:
        """Turn a scratch tab into a persisted tab backed by ``destination``."""

        self.path = Path(destination)
        self.scratch_path = None
        self.name = self.path.name or str(self.path)
        self.mark_saved(written)

    def relocate(self, destination: Path) -> None:
        """Point a persisted tab at a renamed file."""

        if self.path is None:
            raise ValueError(f"Tab {self.id!r} has no backing file to relocate")
        self.path = Path(destination)
        self.name = self.path.name


@dataclass(slots=True)
class Session:
    """Process-wide editor state shared by the registry, MRU tracker and autosave."""

    tabs: list[Tab] = field(default_factory=list)
    active_tab_id: str | None = None
    next_scratch_sequence: int = 1
    dark_mode: bool = True

    def tab_ids(self) -> tuple[str, ...]:
        return tuple(tab.id for tab in self.tabs)

    def find_tab(self, tab_id: str | None) -> Tab | None:
        if tab_id is None:
            return None
        for tab in self.tabs:
            if tab.id == tab_id:
                return tab
        return None

    def index_of(self, tab_id: str) -> int:
        for index, tab in enumerate(self.tabs):
            if tab.id == tab_id:
                return index
        raise KeyError(f"Unknown tab_id: {tab_id}")

    @property
    def active_tab(self) -> Tab | None:
        return self.find_tab(self.active_tab_id)

    def reserve_scratch_sequence(self) -> int:
        value = self.next_scratch_sequence
        self.next_scratch_sequence += 1
        return value
