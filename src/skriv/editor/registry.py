"""Tab registry managing the ordered set of open documents."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from ..errors import ScratchAllocationError, TabRenameError, TabSaveError
from ..services.file_system import FileSystem
from ..services.scratch_storage import ScratchStorage
from ..ui.events import (
    ActiveTabChanged,
    Event,
    EventBus,
    NoticePosted,
    SessionRestored,
    TabClosed,
    TabCreated,
    TabModified,
    TabOpened,
    TabRenamed,
    TabSaved,
)
from .tab_model import Session, Tab, generate_tab_id, scratch_display_name

__all__ = ["TabRegistry", "OpenPathsResult"]

LOGGER = logging.getLogger(__name__)


def _normalize_path(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


@dataclass(slots=True)
class OpenPathsResult:
    """Outcome of :meth:`TabRegistry.open_paths`.

    Attributes:
        opened: Tabs created for paths that were not open yet.
        activated: Existing tabs that were re-activated instead of reopened.
        failures: Paths that could not be read, with the error raised.
    """

    opened: list[Tab] = field(default_factory=list)
    activated: list[Tab] = field(default_factory=list)
    failures: dict[Path, OSError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class TabRegistry:
    """Owns tab lifecycle operations on the shared :class:`Session`.

    The session's ``tabs`` list is the display order. Every mutation is
    applied synchronously before the registry publishes the matching event,
    so observers always see a consistent session.
    """

    def __init__(
        self,
        session: Session,
        *,
        storage: ScratchStorage,
        file_system: FileSystem,
        event_bus: EventBus | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._session = session
        self._storage = storage
        self._fs = file_system
        self._bus = event_bus or EventBus()
        self._id_factory = id_factory or generate_tab_id
        self._issued_ids: set[str] = set(session.tab_ids())

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    @property
    def session(self) -> Session:
        return self._session

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def active_tab_id(self) -> str | None:
        return self._session.active_tab_id

    @property
    def active_tab(self) -> Tab | None:
        return self._session.active_tab

    @property
    def tabs(self) -> tuple[Tab, ...]:
        """Open tabs in display order."""

        return tuple(self._session.tabs)

    def tab_ids(self) -> tuple[str, ...]:
        return self._session.tab_ids()

    def tab_count(self) -> int:
        return len(self._session.tabs)

    def get_tab(self, tab_id: str) -> Tab:
        tab = self._session.find_tab(tab_id)
        if tab is None:
            raise KeyError(f"Unknown tab_id: {tab_id}")
        return tab

    def find_tab_by_path(self, path: Path | str) -> Tab | None:
        normalized = _normalize_path(path)
        for tab in self._session.tabs:
            if tab.path is not None and _normalize_path(tab.path) == normalized:
                return tab
        return None

    # ------------------------------------------------------------------
    # Activation and edits
    # ------------------------------------------------------------------
    def set_active_tab(self, tab_id: str) -> Tab:
        """Mark the provided tab as active and notify listeners."""

        tab = self.get_tab(tab_id)
        if self._session.active_tab_id != tab_id:
            self._session.active_tab_id = tab_id
            self._publish(ActiveTabChanged(tab_id=tab_id))
        return tab

    def update_content(self, tab_id: str, content: str, cursor_position: int | None = None) -> Tab:
        """Store new editor content for ``tab_id``.

        The dirty state is derived from ``content`` and ``saved_content``
        on demand and never stored separately.
        """

        tab = self.get_tab(tab_id)
        tab.content = content
        if cursor_position is not None:
            tab.cursor_position = max(0, cursor_position)
        self._publish(TabModified(tab_id=tab_id, dirty=tab.dirty))
        return tab

    def update_cursor(self, tab_id: str, cursor_position: int) -> None:
        self.get_tab(tab_id).cursor_position = max(0, cursor_position)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def create_tab(self) -> Tab:
        """Create an empty scratch tab named from the session counter and activate it.

        Raises:
            ScratchAllocationError: the scratch area could not be prepared;
                no tab is added.
        """

        sequence = self._session.reserve_scratch_sequence()
        scratch_path = await self._storage.allocate(sequence)
        tab = Tab(
            id=self._next_id(),
            name=scratch_display_name(sequence),
            scratch_path=scratch_path,
        )
        self._session.tabs.append(tab)
        LOGGER.debug("Created scratch tab %s (%s)", tab.id, scratch_path)
        self._publish(TabCreated(tab_id=tab.id, name=tab.name))
        self.set_active_tab(tab.id)
        return tab

    async def open_paths(self, paths: Iterable[Path | str]) -> OpenPathsResult:
        """Open each path in its own tab, re-activating tabs that are already open.

        A failure to read one path is recorded in the result and does not
        prevent the remaining paths from opening.
        """

        result = OpenPathsResult()
        for raw_path in paths:
            path = _normalize_path(raw_path)
            existing = self.find_tab_by_path(path)
            if existing is not None:
                self.set_active_tab(existing.id)
                result.activated.append(existing)
                continue
            try:
                content = await self._fs.read_text(path)
            except OSError as exc:
                LOGGER.warning("Unable to open %s: %s", path, exc)
                result.failures[path] = exc
                self._publish(NoticePosted(message=f"Could not open {path.name}: {exc}", path=str(path)))
                continue
            # Another open request may have added the same file while we read it.
            existing = self.find_tab_by_path(path)
            if existing is not None:
                self.set_active_tab(existing.id)
                result.activated.append(existing)
                continue
            tab = Tab(
                id=self._next_id(),
                name=path.name or str(path),
                path=path,
                content=content,
                saved_content=content,
            )
            self._session.tabs.append(tab)
            self._publish(TabOpened(tab_id=tab.id, path=str(path)))
            self.set_active_tab(tab.id)
            result.opened.append(tab)
        return result

    async def close_tab(self, tab_id: str) -> Tab:
        """Close and return the specified tab.

        Closing the last tab first creates a fresh scratch tab, so the
        registry is never empty while the application runs.
        """

        tab = self.get_tab(tab_id)
        if self.tab_count() == 1:
            await self.create_tab()

        index = self._session.index_of(tab_id)
        self._session.tabs.pop(index)
        was_active = self._session.active_tab_id == tab_id
        self._publish(TabClosed(tab_id=tab_id, index=index))

        if was_active:
            if self._session.tabs:
                fallback_index = min(index, len(self._session.tabs) - 1)
                self.set_active_tab(self._session.tabs[fallback_index].id)
            else:  # pragma: no cover - unreachable while a replacement tab exists
                self._session.active_tab_id = None
                self._publish(ActiveTabChanged(tab_id=None))

        if tab.scratch_path is not None:
            try:
                await self._storage.delete(tab.scratch_path)
            except OSError as exc:
                LOGGER.warning("Unable to delete scratch file %s: %s", tab.scratch_path, exc)
                self._publish(
                    NoticePosted(
                        message=f"Could not remove scratch file for {tab.name}: {exc}",
                        path=str(tab.scratch_path),
                    )
                )
        LOGGER.debug("Closed tab %s (%s)", tab_id, tab.name)
        return tab

    async def rename_tab(self, tab_id: str, new_name: str) -> bool:
        """Rename a tab, moving its backing file first when it has one.

        Returns ``False`` when the name is empty or unchanged.

        Raises:
            TabRenameError: the new name is not a plain file name, or the file
                rename failed. The tab is left untouched.
        """

        tab = self.get_tab(tab_id)
        name = new_name.strip()
        if not name or name == tab.name:
            return False
        if os.sep in name or (os.altsep and os.altsep in name) or name in {".", ".."}:
            raise TabRenameError(tab_id, f"'{name}' is not a valid file name")

        if tab.path is not None:
            source = tab.path
            target = source.parent / name
            try:
                await self._fs.rename(source, target)
            except OSError as exc:
                LOGGER.warning("Unable to rename %s to %s: %s", source, target, exc)
                raise TabRenameError(tab_id, f"Could not rename {source.name} to {name}: {exc}", exc) from exc
            tab.relocate(target)
        else:
            tab.name = name
        self._publish(TabRenamed(tab_id=tab_id, name=tab.name, path=str(tab.path) if tab.path else None))
        return True

    async def save_active(self, destination: Path | str | None = None) -> Tab | None:
        """Save the active tab.

        Persisted tabs are written to their own path. Scratch tabs behave
        like :meth:`save_active_as` and need a ``destination``; without one
        nothing is written (the user dismissed the picker).

        Raises:
            TabSaveError: the write failed; the tab stays dirty.
        """

        tab = self.active_tab
        if tab is None:
            return None
        if tab.path is None:
            if destination is None:
                return None
            return await self.save_active_as(destination)

        content = tab.content
        try:
            await self._fs.write_text(tab.path, content)
        except OSError as exc:
            LOGGER.error("Saving %s failed: %s", tab.path, exc)
            raise TabSaveError(tab.id, tab.path, exc) from exc
        tab.mark_saved(content)
        self._publish(TabSaved(tab_id=tab.id, path=str(tab.path)))
        return tab

    async def save_active_as(self, destination: Path | str) -> Tab | None:
        """Write the active tab to ``destination`` and make it a persisted tab.

        Raises:
            TabSaveError: the write failed; the tab keeps its previous backing.
        """

        tab = self.active_tab
        if tab is None:
            return None
        target = _normalize_path(destination)
        content = tab.content
        try:
            await self._fs.write_text(target, content)
        except OSError as exc:
            LOGGER.error("Saving %s as %s failed: %s", tab.name, target, exc)
            raise TabSaveError(tab.id, target, exc) from exc

        previous_scratch = tab.scratch_path
        tab.promote(target, content)
        if previous_scratch is not None:
            try:
                await self._storage.delete(previous_scratch)
            except OSError as exc:
                LOGGER.warning("Unable to delete scratch file %s: %s", previous_scratch, exc)
        self._publish(TabSaved(tab_id=tab.id, path=str(target)))
        return tab

    # ------------------------------------------------------------------
    # Session restore
    # ------------------------------------------------------------------
    def restore(self, session: Session) -> None:
        """Adopt a freshly loaded session's tabs, order and counters."""

        self._session.tabs = list(session.tabs)
        self._session.next_scratch_sequence = session.next_scratch_sequence
        self._session.dark_mode = session.dark_mode
        self._issued_ids.update(self._session.tab_ids())

        for tab in self._session.tabs:
            sequence = _scratch_sequence_of(tab)
            if sequence is not None and sequence >= self._session.next_scratch_sequence:
                self._session.next_scratch_sequence = sequence + 1

        active = session.active_tab_id
        if self._session.find_tab(active) is None:
            active = self._session.tabs[0].id if self._session.tabs else None
        self._session.active_tab_id = active
        self._publish(SessionRestored(tab_count=self.tab_count(), active_tab_id=active))

    async def ensure_tab(self) -> Tab:
        """Ensure at least one tab exists, returning the active one."""

        if not self._session.tabs:
            return await self.create_tab()
        active = self.active_tab
        if active is None:
            active = self.set_active_tab(self._session.tabs[0].id)
        return active

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _next_id(self) -> str:
        candidate = self._id_factory()
        while candidate in self._issued_ids:
            candidate = self._id_factory()
        self._issued_ids.add(candidate)
        return candidate

    def _publish(self, event: Event) -> None:
        self._bus.publish(event)


def _scratch_sequence_of(tab: Tab) -> int | None:
    if tab.scratch_path is None:
        return None
    stem = tab.scratch_path.stem
    prefix, _, number = stem.partition(" ")
    if prefix != "new" or not number.isdigit():
        return None
    return int(number)
