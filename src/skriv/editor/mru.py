"""Most-recently-used tab ordering and the quick-switch selection state."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from ..ui.events import (
    ActiveTabChanged,
    EventBus,
    SessionRestored,
    TabClosed,
    TabCreated,
    TabOpened,
)

__all__ = ["MRUTracker"]

LOGGER = logging.getLogger(__name__)

IdsProvider = Callable[[], Iterable[str]]


class MRUTracker:
    """Keeps a most-recent-first permutation of the open tab ids.

    The order is independent of the display order. Only explicit activation
    promotes a tab; tabs that appear through other means are appended at
    the back. While a quick switch is in progress the order is frozen and
    activation merely moves the selection.
    """

    def __init__(
        self,
        *,
        ids_provider: IdsProvider,
        event_bus: EventBus | None = None,
    ) -> None:
        self._ids_provider = ids_provider
        self._order: list[str] = []
        self._snapshot: list[str] | None = None
        self._selection = 0
        self._reverse = False
        self._bus = event_bus
        self.sync()
        if event_bus is not None:
            event_bus.subscribe(TabCreated, self._on_membership_changed)
            event_bus.subscribe(TabOpened, self._on_membership_changed)
            event_bus.subscribe(TabClosed, self._on_membership_changed)
            event_bus.subscribe(SessionRestored, self._on_restored)
            event_bus.subscribe(ActiveTabChanged, self._on_active_changed)

    def detach(self) -> None:
        if self._bus is None:
            return
        self._bus.unsubscribe(TabCreated, self._on_membership_changed)
        self._bus.unsubscribe(TabOpened, self._on_membership_changed)
        self._bus.unsubscribe(TabClosed, self._on_membership_changed)
        self._bus.unsubscribe(SessionRestored, self._on_restored)
        self._bus.unsubscribe(ActiveTabChanged, self._on_active_changed)
        self._bus = None

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------
    @property
    def order(self) -> tuple[str, ...]:
        return tuple(self._order)

    def sync(self) -> None:
        """Drop ids that are no longer open and append newly opened ones."""

        open_ids = list(self._ids_provider())
        open_set = set(open_ids)
        self._order = [tab_id for tab_id in self._order if tab_id in open_set]
        known = set(self._order)
        for tab_id in open_ids:
            if tab_id not in known:
                self._order.append(tab_id)
                known.add(tab_id)
        if self._snapshot is not None:
            self._prune_snapshot(open_set)

    def touch(self, tab_id: str) -> None:
        """Record an activation of ``tab_id``."""

        if self._snapshot is not None:
            if tab_id in self._snapshot:
                self._selection = self._snapshot.index(tab_id)
            return
        self._promote(tab_id)

    # ------------------------------------------------------------------
    # Quick switch
    # ------------------------------------------------------------------
    @property
    def is_switching(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._snapshot or ())

    @property
    def selection(self) -> int:
        return self._selection

    @property
    def selected_id(self) -> str | None:
        if not self._snapshot:
            return None
        return self._snapshot[self._selection]

    def begin_quick_switch(self, *, reverse: bool = False) -> str | None:
        """Freeze the current order and select the neighbour of the current tab.

        Returns the selected id, or ``None`` when fewer than two tabs are
        open (quick switch is disabled).
        """

        if self._snapshot is not None:
            return self.advance(reverse=reverse)
        self.sync()
        if len(self._order) < 2:
            return None
        self._snapshot = list(self._order)
        self._reverse = reverse
        self._selection = len(self._snapshot) - 1 if reverse else 1
        LOGGER.debug("Quick switch opened (reverse=%s)", reverse)
        return self.selected_id

    def advance(self, *, reverse: bool | None = None) -> str | None:
        """Move the selection one step, wrapping around the frozen order."""

        if not self._snapshot:
            return None
        backwards = self._reverse if reverse is None else reverse
        step = -1 if backwards else 1
        self._selection = (self._selection + step) % len(self._snapshot)
        return self.selected_id

    def commit(self) -> str | None:
        """Close the quick switch and promote the selected tab.

        The caller is expected to activate the returned id in the registry.
        """

        if self._snapshot is None:
            return None
        selected = self.selected_id
        self._end_switch()
        if selected is not None:
            self._promote(selected)
        return selected

    def cancel(self) -> None:
        self._end_switch()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_membership_changed(self, _event: object) -> None:
        self.sync()

    def _on_restored(self, event: SessionRestored) -> None:
        self._order = []
        self._end_switch()
        self.sync()
        if event.active_tab_id is not None:
            self._promote(event.active_tab_id)

    def _on_active_changed(self, event: ActiveTabChanged) -> None:
        if event.tab_id is not None:
            self.sync()
            self.touch(event.tab_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _promote(self, tab_id: str) -> None:
        if tab_id not in self._order:
            return
        self._order.remove(tab_id)
        self._order.insert(0, tab_id)

    def _end_switch(self) -> None:
        self._snapshot = None
        self._selection = 0
        self._reverse = False

    def _prune_snapshot(self, open_set: set[str]) -> None:
        selected = self.selected_id
        self._snapshot = [tab_id for tab_id in self._snapshot or () if tab_id in open_set]
        if len(self._snapshot) < 2:
            self._end_switch()
            return
        if selected in self._snapshot:
            self._selection = self._snapshot.index(selected)
        else:
            self._selection = min(self._selection, len(self._snapshot) - 1)
