from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

log = logging.getLogger("bucket_manager.events")

Listener = Callable[..., Any]


class EventEmitter:
    """Named events with sync or async listeners. A failing listener never breaks the emitter."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        # the loop only holds weak references to tasks
        self._pending: set[asyncio.Future] = set()

    def on(self, event_name: str, callback: Listener) -> None:
        listeners = self._listeners.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event_name: str, callback: Listener) -> None:
        listeners = self._listeners.get(event_name) or []
        if callback in listeners:
            listeners.remove(callback)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, event_name: str, *args: Any) -> None:
        # snapshot: listeners may unsubscribe themselves while running
        for callback in list(self._listeners.get(event_name) or []):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(lambda t, name=event_name: self._finished(name, t))
            except Exception:
                log.exception("event_listener_failed event=%s", event_name)

    def _finished(self, event_name: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("event_listener_failed event=%s error=%s", event_name, task.exception())
