"""Event bus used to decouple the tab registry from its observers.

The registry publishes one event per state mutation. The MRU tracker, the
autosave scheduler and the desktop shell subscribe to the events they care
about without holding references to each other.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

# Type variable for event types
E = TypeVar("E", bound="Event")

# Handler type: a callable that takes an event and returns None
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system.

    Example::

        @dataclass(slots=True)
        class TabOpened(Event):
            tab_id: str
            path: str
    """

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Tab lifecycle events
# =============================================================================


@dataclass(slots=True)
class TabCreated(Event):
    """Emitted when a new scratch tab is added to the registry.

    Attributes:
        tab_id: The identifier of the new tab.
        name: The placeholder display name (``new N``).
    """

    tab_id: str
    name: str


@dataclass(slots=True)
class TabOpened(Event):
    """Emitted when a file from disk is opened in a new tab."""

    tab_id: str
    path: str


@dataclass(slots=True)
class TabClosed(Event):
    """Emitted after a tab has been removed from the registry.

    Attributes:
        tab_id: The identifier of the closed tab.
        index: The display position the tab occupied before closing.
    """

    tab_id: str
    index: int


@dataclass(slots=True)
class TabSaved(Event):
    """Emitted when a tab's content has been written to its user file."""

    tab_id: str
    path: str


@dataclass(slots=True)
class TabRenamed(Event):
    """Emitted when a tab's display name (and possibly its file) changes."""

    tab_id: str
    name: str
    path: str | None = None


@dataclass(slots=True)
class TabModified(Event):
    """Emitted when the editor reports new content or caret position.

    Attributes:
        tab_id: The identifier of the edited tab.
        dirty: Whether the tab differs from its last saved content.
    """

    tab_id: str
    dirty: bool


_QUIET_EVENT_TYPES.add(TabModified)


@dataclass(slots=True)
class ActiveTabChanged(Event):
    """Emitted when the active (shown) tab changes.

    Attributes:
        tab_id: The newly active tab, or None when nothing is shown.
    """

    tab_id: str | None


# =============================================================================
# Session events
# =============================================================================


@dataclass(slots=True)
class SessionRestored(Event):
    """Emitted once the persisted session has been loaded into the registry.

    Attributes:
        tab_count: The number of tabs that were restored.
        active_tab_id: The active tab after restore.
    """

    tab_count: int
    active_tab_id: str | None


@dataclass(slots=True)
class SessionSaved(Event):
    """Emitted after each autosave cycle.

    Attributes:
        success: False when the cycle failed and the on-disk session is stale.
    """

    success: bool


@dataclass(slots=True)
class PreferencesChanged(Event):
    """Emitted when a persisted preference such as dark mode changes."""

    dark_mode: bool


# =============================================================================
# User feedback events
# =============================================================================


@dataclass(slots=True)
class StatusMessage(Event):
    """Emitted to display a message in the status bar.

    Attributes:
        message: The text message to display in the status bar.
        timeout_ms: Duration in milliseconds to show the message.
                   Use 0 for persistent messages, or a positive value
                   for auto-dismissing messages.
    """

    message: str
    timeout_ms: int = 0


@dataclass(slots=True)
class NoticePosted(Event):
    """Emitted when a non-fatal problem should be shown to the user.

    Attributes:
        message: The notice text to display to the user.
        path: The file involved, when there is one.
    """

    message: str
    path: str | None = None


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers are registered per concrete event class. Bound methods are held
    through weak references so a subscriber that goes away stops receiving
    events without an explicit unsubscribe.

    Example::

        bus = EventBus()

        def on_tab_opened(event: TabOpened) -> None:
            print(f"Opened: {event.path}")

        bus.subscribe(TabOpened, on_tab_opened)
        bus.publish(TabOpened(tab_id="1", path="/tmp/notes.txt"))
        bus.unsubscribe(TabOpened, on_tab_opened)

    Thread Safety:
        Not thread-safe. Publish and subscribe from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events whose type is exactly ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every handler for ``event`` synchronously, in registration order.

        A handler that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead: list[_HandlerRef] = []
        # Handlers may subscribe or unsubscribe while we iterate.
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the handler count for ``event_type``, or across all types."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Holds a handler weakly (bound methods) or strongly (plain callables)."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        # Bound method
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


MUTATION_EVENT_TYPES: tuple[type[Event], ...] = (
    TabCreated,
    TabOpened,
    TabClosed,
    TabSaved,
    TabRenamed,
    TabModified,
    ActiveTabChanged,
    PreferencesChanged,
)


__all__ = [
    # Core infrastructure
    "Event",
    "EventBus",
    "Handler",
    "MUTATION_EVENT_TYPES",
    # Tab events
    "TabCreated",
    "TabOpened",
    "TabClosed",
    "TabSaved",
    "TabRenamed",
    "TabModified",
    "ActiveTabChanged",
    # Session events
    "SessionRestored",
    "SessionSaved",
    "PreferencesChanged",
    # User feedback
    "StatusMessage",
    "NoticePosted",
]
