"""Debounced session autosave."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from ..editor.tab_model import Session
from ..ui.events import MUTATION_EVENT_TYPES, Event, EventBus, SessionSaved
from .session_codec import SessionCodec

__all__ = ["DebounceTimer", "AutosaveScheduler"]

LOGGER = logging.getLogger(__name__)


class DebounceTimer:
    """Single cancelable timer that invokes an async callback after a quiet period.

    Each :meth:`arm` replaces the pending timer rather than stacking a new
    one, so a burst of calls results in one callback.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._interval = max(0.0, interval)
        self._callback = callback
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def drain(self) -> None:
        """Wait for callbacks that already fired to finish."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._callback())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class AutosaveScheduler:
    """Coalesces session mutations into debounced :meth:`SessionCodec.save` calls.

    Saves never overlap: a forced :meth:`flush` waits for an in-flight timer
    save before writing the latest state.
    """

    def __init__(
        self,
        session: Session,
        codec: SessionCodec,
        *,
        event_bus: EventBus,
        interval: float = 1.0,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._session = session
        self._codec = codec
        self._bus = event_bus
        self._timer = DebounceTimer(interval, self._save_from_timer, loop=loop)
        self._lock = asyncio.Lock()
        self._save_count = 0
        self._closed = False
        for event_type in MUTATION_EVENT_TYPES:
            event_bus.subscribe(event_type, self._on_mutation)

    @property
    def pending(self) -> bool:
        return self._timer.armed

    @property
    def save_count(self) -> int:
        return self._save_count

    @property
    def interval(self) -> float:
        return self._timer.interval

    def notify_mutation(self) -> None:
        """Restart the quiet period; the save runs once no mutation arrives for ``interval``."""

        if self._closed:
            return
        try:
            self._timer.arm()
        except RuntimeError:
            LOGGER.debug("Autosave not armed: no running event loop")

    async def flush(self) -> bool:
        """Cancel the debounce window and save immediately, awaiting completion."""

        self._timer.cancel()
        return await self._save()

    async def aclose(self) -> bool:
        """Flush the final state and stop observing mutations."""

        if self._closed:
            return True
        self._closed = True
        for event_type in MUTATION_EVENT_TYPES:
            self._bus.unsubscribe(event_type, self._on_mutation)
        result = await self.flush()
        with contextlib.suppress(asyncio.CancelledError):
            await self._timer.drain()
        return result

    def _on_mutation(self, _event: Event) -> None:
        self.notify_mutation()

    async def _save_from_timer(self) -> None:
        await self._save()

    async def _save(self) -> bool:
        async with self._lock:
            success = await self._codec.save(self._session)
            self._save_count += 1
        if not success:
            LOGGER.warning("Autosave cycle failed; previous session file left in place")
        self._bus.publish(SessionSaved(success=success))
        return success
