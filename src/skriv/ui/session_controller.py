"""Owner of the shared session and the components that operate on it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from ..editor.mru import MRUTracker
from ..editor.registry import OpenPathsResult, TabRegistry
from ..editor.tab_model import Session, Tab
from ..services.autosave import AutosaveScheduler
from ..services.file_system import FileSystem, LocalFileSystem
from ..services.open_requests import OpenRequest
from ..services.scratch_storage import ScratchStorage
from ..services.session_codec import SessionCodec, default_session
from ..services.settings import Settings
from .events import EventBus, PreferencesChanged, StatusMessage

__all__ = ["SessionController"]

LOGGER = logging.getLogger(__name__)


class SessionController:
    """Wires the registry, MRU tracker, codec and autosave around one session.

    The desktop shell talks only to this object. Each public coroutine maps
    to a user action; the controller forwards it to the registry and, where
    the action must not wait for the debounce window, flushes autosave.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        file_system: FileSystem | None = None,
        event_bus: EventBus | None = None,
        session: Session | None = None,
    ) -> None:
        self._settings = settings
        self._fs = file_system or LocalFileSystem()
        self._bus = event_bus or EventBus()
        self._session = session or default_session()
        self._storage = ScratchStorage(settings.scratch_dir, self._fs)
        self._codec = SessionCodec(settings.session_path, storage=self._storage, file_system=self._fs)
        self._registry = TabRegistry(
            self._session,
            storage=self._storage,
            file_system=self._fs,
            event_bus=self._bus,
        )
        self._mru = MRUTracker(ids_provider=self._registry.tab_ids, event_bus=self._bus)
        self._scheduler = AutosaveScheduler(
            self._session,
            self._codec,
            event_bus=self._bus,
            interval=settings.autosave_interval,
        )
        self._started = False
        self._shut_down = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def session(self) -> Session:
        return self._session

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def registry(self) -> TabRegistry:
        return self._registry

    @property
    def mru(self) -> MRUTracker:
        return self._mru

    @property
    def scheduler(self) -> AutosaveScheduler:
        return self._scheduler

    @property
    def codec(self) -> SessionCodec:
        return self._codec

    @property
    def storage(self) -> ScratchStorage:
        return self._storage

    @property
    def dark_mode(self) -> bool:
        return self._session.dark_mode

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Startup and shutdown
    # ------------------------------------------------------------------
    async def start(self, initial: OpenRequest | None = None) -> Tab:
        """Restore the previous session and open any files passed on launch.

        Returns the active tab; the registry always holds at least one tab
        afterwards.
        """

        loaded = await self._codec.load()
        self._registry.restore(loaded)
        if initial is not None:
            paths = initial.resolve_paths()
            if paths:
                await self._registry.open_paths(paths)
        active = await self._registry.ensure_tab()
        self._started = True
        LOGGER.info(
            "Session started with %d tab(s); active=%s",
            self._registry.tab_count(),
            active.name,
        )
        return active

    async def shutdown(self) -> bool:
        """Write the final session state and stop observing mutations."""

        if self._shut_down:
            return True
        self._shut_down = True
        success = await self._scheduler.aclose()
        self._mru.detach()
        if not success:
            LOGGER.error("Final session save failed; previous session file left in place")
        return success

    # ------------------------------------------------------------------
    # Tab actions
    # ------------------------------------------------------------------
    async def new_tab(self) -> Tab:
        return await self._registry.create_tab()

    async def open_paths(self, paths: Iterable[Path | str]) -> OpenPathsResult:
        result = await self._registry.open_paths(paths)
        if result.opened:
            self._bus.publish(StatusMessage(f"Opened {len(result.opened)} file(s)", timeout_ms=3000))
        return result

    async def handle_open_request(self, request: OpenRequest) -> OpenPathsResult:
        """Open the files named by a launch or a forwarded request."""

        paths = request.resolve_paths()
        LOGGER.debug("Handling open request from %s with %d path(s)", request.cwd, len(paths))
        return await self.open_paths(paths)

    async def close_tab(self, tab_id: str | None = None) -> Tab | None:
        """Close ``tab_id`` (the active tab by default) and persist right away."""

        target = tab_id or self._registry.active_tab_id
        if target is None:
            return None
        closed = await self._registry.close_tab(target)
        await self._scheduler.flush()
        return closed

    async def rename_tab(self, tab_id: str, new_name: str) -> bool:
        return await self._registry.rename_tab(tab_id, new_name)

    async def save_active(self, destination: Path | str | None = None) -> Tab | None:
        tab = await self._registry.save_active(destination)
        if tab is not None:
            self._bus.publish(StatusMessage(f"Saved {tab.name}", timeout_ms=3000))
        return tab

    async def save_active_as(self, destination: Path | str) -> Tab | None:
        tab = await self._registry.save_active_as(destination)
        if tab is not None:
            self._bus.publish(StatusMessage(f"Saved {tab.name}", timeout_ms=3000))
        return tab

    def activate(self, tab_id: str) -> Tab:
        return self._registry.set_active_tab(tab_id)

    def update_content(self, tab_id: str, content: str, cursor_position: int | None = None) -> Tab:
        return self._registry.update_content(tab_id, content, cursor_position)

    def update_cursor(self, tab_id: str, cursor_position: int) -> None:
        self._registry.update_cursor(tab_id, cursor_position)

    def set_dark_mode(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if self._session.dark_mode == enabled:
            return
        self._session.dark_mode = enabled
        self._bus.publish(PreferencesChanged(dark_mode=enabled))

    # ------------------------------------------------------------------
    # Quick switch
    # ------------------------------------------------------------------
    def begin_quick_switch(self, *, reverse: bool = False) -> str | None:
        return self._mru.begin_quick_switch(reverse=reverse)

    def advance_quick_switch(self, *, reverse: bool | None = None) -> str | None:
        return self._mru.advance(reverse=reverse)

    def commit_quick_switch(self) -> Tab | None:
        """Finish the quick switch and activate the selected tab."""

        selected = self._mru.commit()
        if selected is None or self._session.find_tab(selected) is None:
            return None
        return self._registry.set_active_tab(selected)

    def cancel_quick_switch(self) -> None:
        self._mru.cancel()
