"""Thin PySide6 window around :class:`SessionController`."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Coroutine

from PySide6.QtCore import QEvent, QObject, Qt
from PySide6.QtGui import QAction, QColor, QKeySequence, QPalette
from PySide6.QtWidgets import (
    QApplication,
    QFileDialog,
    QInputDialog,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QTabBar,
    QVBoxLayout,
    QWidget,
)

from ..errors import SkrivError
from .events import (
    ActiveTabChanged,
    Event,
    NoticePosted,
    PreferencesChanged,
    SessionRestored,
    StatusMessage,
    TabClosed,
    TabCreated,
    TabModified,
    TabOpened,
    TabRenamed,
    TabSaved,
)
from .session_controller import SessionController

__all__ = ["MainWindow", "WindowAction"]

_LOGGER = logging.getLogger(__name__)
_DIRTY_MARKER = " ●"
_TAB_EVENTS = (
    TabCreated,
    TabOpened,
    TabClosed,
    TabRenamed,
    TabSaved,
    TabModified,
    ActiveTabChanged,
    SessionRestored,
)


@dataclass(slots=True)
class WindowAction:
    """Menu entry bound to a window callback."""

    name: str
    text: str
    trigger: Callable[[], None]
    shortcut: QKeySequence | str | None = None
    status_tip: str | None = None


class MainWindow(QMainWindow):
    """Tab strip over a single plain-text editor.

    All state lives in the controller; the window only mirrors it and turns
    user input into controller calls.
    """

    def __init__(self, controller: SessionController, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._controller = controller
        self._syncing = False
        self._shown_tab_id: str | None = None
        self._closing = False
        self._shutdown_complete = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self.setWindowTitle("skriv")
        self.resize(960, 720)

        self._tab_bar = QTabBar(self)
        self._tab_bar.setTabsClosable(True)
        self._tab_bar.setExpanding(False)
        self._tab_bar.setDocumentMode(True)
        self._tab_bar.currentChanged.connect(self._on_tab_bar_changed)
        self._tab_bar.tabCloseRequested.connect(self._on_tab_close_requested)
        self._tab_bar.tabBarDoubleClicked.connect(self._on_tab_double_clicked)

        self._editor = QPlainTextEdit(self)
        self._editor.setLineWrapMode(QPlainTextEdit.LineWrapMode.NoWrap)
        self._editor.textChanged.connect(self._on_text_changed)
        self._editor.cursorPositionChanged.connect(self._on_cursor_moved)
        self._editor.installEventFilter(self)
        self._tab_bar.installEventFilter(self)

        central = QWidget(self)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        layout.addWidget(self._tab_bar)
        layout.addWidget(self._editor)
        self.setCentralWidget(central)

        self._qt_actions = self._install_actions(self._build_actions())

        bus = controller.event_bus
        for event_type in _TAB_EVENTS:
            bus.subscribe(event_type, self._on_tabs_changed)
        bus.subscribe(NoticePosted, self._on_notice)
        bus.subscribe(StatusMessage, self._on_status_message)
        bus.subscribe(PreferencesChanged, self._on_preferences_changed)

        self._apply_dark_mode(controller.dark_mode)
        self._refresh_tabs()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def _build_actions(self) -> list[WindowAction]:
        return [
            WindowAction("new", "&New", self._action_new, QKeySequence.StandardKey.New),
            WindowAction("open", "&Open...", self._action_open, QKeySequence.StandardKey.Open),
            WindowAction("save", "&Save", self._action_save, QKeySequence.StandardKey.Save),
            WindowAction("save_as", "Save &As...", self._action_save_as, QKeySequence.StandardKey.SaveAs),
            WindowAction("close_tab", "&Close Tab", self._action_close, "Ctrl+W"),
            WindowAction("rename", "&Rename...", lambda: self._action_rename(), "F2"),
            WindowAction(
                "dark_mode",
                "&Dark Mode",
                self._action_toggle_dark_mode,
                "Ctrl+Shift+D",
                "Toggle the dark color scheme",
            ),
            WindowAction("quit", "&Quit", self.close, QKeySequence.StandardKey.Quit),
        ]

    def _install_actions(self, actions: list[WindowAction]) -> dict[str, QAction]:
        menu = self.menuBar().addMenu("&File")
        qt_actions: dict[str, QAction] = {}
        for action in actions:
            qt_action = QAction(action.text, self)
            if action.shortcut is not None:
                qt_action.setShortcut(action.shortcut)
            if action.status_tip:
                qt_action.setStatusTip(action.status_tip)
            qt_action.triggered.connect(action.trigger)
            menu.addAction(qt_action)
            qt_actions[action.name] = qt_action
        dark = qt_actions["dark_mode"]
        dark.setCheckable(True)
        dark.setChecked(self._controller.dark_mode)
        return qt_actions

    def _action_new(self) -> None:
        self._run_coroutine(self._controller.new_tab())

    def _action_open(self) -> None:
        paths, _ = QFileDialog.getOpenFileNames(self, "Open Files")
        if paths:
            self._run_coroutine(self._controller.open_paths([Path(p) for p in paths]))

    def _action_save(self) -> None:
        tab = self._controller.registry.active_tab
        if tab is None:
            return
        if tab.path is None:
            self._action_save_as()
            return
        self._run_coroutine(self._controller.save_active())

    def _action_save_as(self) -> None:
        tab = self._controller.registry.active_tab
        if tab is None:
            return
        start = str(tab.path) if tab.path is not None else tab.name
        destination, _ = QFileDialog.getSaveFileName(self, "Save As", start)
        if destination:
            self._run_coroutine(self._controller.save_active_as(Path(destination)))

    def _action_close(self) -> None:
        tab_id = self._controller.registry.active_tab_id
        if tab_id is not None:
            self._run_coroutine(self._controller.close_tab(tab_id))

    def _action_rename(self, tab_id: str | None = None) -> None:
        target = tab_id or self._controller.registry.active_tab_id
        if target is None:
            return
        tab = self._controller.registry.get_tab(target)
        name, accepted = QInputDialog.getText(self, "Rename", "New name:", text=tab.name)
        if accepted:
            self._run_coroutine(self._controller.rename_tab(target, name))

    def _action_toggle_dark_mode(self) -> None:
        self._controller.set_dark_mode(not self._controller.dark_mode)

    # ------------------------------------------------------------------
    # Widget callbacks
    # ------------------------------------------------------------------
    def _on_tab_bar_changed(self, index: int) -> None:
        if self._syncing or index < 0:
            return
        tab_id = self._tab_bar.tabData(index)
        if tab_id:
            self._controller.activate(tab_id)

    def _on_tab_close_requested(self, index: int) -> None:
        tab_id = self._tab_bar.tabData(index)
        if tab_id:
            self._run_coroutine(self._controller.close_tab(tab_id))

    def _on_tab_double_clicked(self, index: int) -> None:
        tab_id = self._tab_bar.tabData(index)
        if tab_id:
            self._action_rename(tab_id)

    def _on_text_changed(self) -> None:
        if self._syncing or self._shown_tab_id is None:
            return
        cursor = self._editor.textCursor().position()
        self._controller.update_content(self._shown_tab_id, self._editor.toPlainText(), cursor)

    def _on_cursor_moved(self) -> None:
        if self._syncing or self._shown_tab_id is None:
            return
        self._controller.update_cursor(self._shown_tab_id, self._editor.textCursor().position())

    def eventFilter(self, watched: QObject, event: QEvent) -> bool:  # noqa: N802 - Qt naming
        event_type = event.type()
        if event_type == QEvent.Type.KeyPress:
            key = event.key()  # type: ignore[attr-defined]
            modifiers = event.modifiers()  # type: ignore[attr-defined]
            if key in (Qt.Key.Key_Tab, Qt.Key.Key_Backtab) and modifiers & Qt.KeyboardModifier.ControlModifier:
                reverse = key == Qt.Key.Key_Backtab or bool(modifiers & Qt.KeyboardModifier.ShiftModifier)
                if self._controller.mru.is_switching:
                    selected = self._controller.advance_quick_switch(reverse=reverse)
                else:
                    selected = self._controller.begin_quick_switch(reverse=reverse)
                self._show_quick_switch_selection(selected)
                return True
            if key == Qt.Key.Key_Escape and self._controller.mru.is_switching:
                self._controller.cancel_quick_switch()
                self.statusBar().clearMessage()
                return True
        elif event_type == QEvent.Type.KeyRelease:
            if event.key() == Qt.Key.Key_Control and self._controller.mru.is_switching:  # type: ignore[attr-defined]
                self._controller.commit_quick_switch()
                self.statusBar().clearMessage()
                return True
        return super().eventFilter(watched, event)

    def _show_quick_switch_selection(self, tab_id: str | None) -> None:
        if tab_id is None:
            return
        tab = self._controller.session.find_tab(tab_id)
        if tab is not None:
            self.statusBar().showMessage(f"Switch to: {tab.name}")

    # ------------------------------------------------------------------
    # Event bus handlers
    # ------------------------------------------------------------------
    def _on_tabs_changed(self, _event: Event) -> None:
        self._refresh_tabs()

    def _on_notice(self, event: NoticePosted) -> None:
        self.statusBar().showMessage(event.message, 8000)

    def _on_status_message(self, event: StatusMessage) -> None:
        self.statusBar().showMessage(event.message, event.timeout_ms)

    def _on_preferences_changed(self, event: PreferencesChanged) -> None:
        self._apply_dark_mode(event.dark_mode)
        action = self._qt_actions.get("dark_mode")
        if action is not None:
            action.setChecked(event.dark_mode)

    def _refresh_tabs(self) -> None:
        registry = self._controller.registry
        active_id = registry.active_tab_id
        self._syncing = True
        try:
            tabs = registry.tabs
            while self._tab_bar.count() > len(tabs):
                self._tab_bar.removeTab(self._tab_bar.count() - 1)
            while self._tab_bar.count() < len(tabs):
                self._tab_bar.addTab("")
            active_index = -1
            for index, tab in enumerate(tabs):
                label = tab.name + (_DIRTY_MARKER if tab.dirty else "")
                self._tab_bar.setTabText(index, label)
                self._tab_bar.setTabToolTip(index, str(tab.path) if tab.path else tab.name)
                self._tab_bar.setTabData(index, tab.id)
                if tab.id == active_id:
                    active_index = index
            if active_index >= 0:
                self._tab_bar.setCurrentIndex(active_index)
            if active_id != self._shown_tab_id:
                self._show_tab(active_id)
        finally:
            self._syncing = False

    def _show_tab(self, tab_id: str | None) -> None:
        self._shown_tab_id = tab_id
        tab = self._controller.session.find_tab(tab_id)
        if tab is None:
            self._editor.clear()
            self.setWindowTitle("skriv")
            return
        self._editor.setPlainText(tab.content)
        cursor = self._editor.textCursor()
        cursor.setPosition(min(tab.cursor_position, len(tab.content)))
        self._editor.setTextCursor(cursor)
        self.setWindowTitle(f"{tab.name} - skriv")

    def _apply_dark_mode(self, enabled: bool) -> None:
        app = QApplication.instance()
        if app is None:
            return
        app.setStyle("Fusion")  # type: ignore[attr-defined]
        if not enabled:
            app.setPalette(app.style().standardPalette())  # type: ignore[attr-defined]
            return
        palette = QPalette()
        palette.setColor(QPalette.ColorRole.Window, QColor(37, 37, 38))
        palette.setColor(QPalette.ColorRole.WindowText, QColor(220, 220, 220))
        palette.setColor(QPalette.ColorRole.Base, QColor(30, 30, 30))
        palette.setColor(QPalette.ColorRole.AlternateBase, QColor(45, 45, 48))
        palette.setColor(QPalette.ColorRole.Text, QColor(220, 220, 220))
        palette.setColor(QPalette.ColorRole.Button, QColor(45, 45, 48))
        palette.setColor(QPalette.ColorRole.ButtonText, QColor(220, 220, 220))
        palette.setColor(QPalette.ColorRole.Highlight, QColor(38, 79, 120))
        palette.setColor(QPalette.ColorRole.HighlightedText, QColor(255, 255, 255))
        app.setPalette(palette)  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Async plumbing
    # ------------------------------------------------------------------
    def _run_coroutine(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_finished)
        return task

    def _on_task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, SkrivError):
            _LOGGER.warning("Action failed: %s", exc)
            QMessageBox.warning(self, "skriv", str(exc))
            return
        _LOGGER.error("Unexpected error in window action", exc_info=exc)
        self.statusBar().showMessage(f"Unexpected error: {exc}", 8000)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def closeEvent(self, event: Any) -> None:  # noqa: N802 - Qt naming
        """Defer the close until the final session save has completed."""

        if self._shutdown_complete:
            event.accept()
            return
        event.ignore()
        if self._closing:
            return
        self._closing = True
        self.statusBar().showMessage("Saving session...")
        self._run_coroutine(self._shutdown_and_close())

    async def _shutdown_and_close(self) -> None:
        try:
            await self._controller.shutdown()
        finally:
            self._shutdown_complete = True
            self.close()
