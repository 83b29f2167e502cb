"""
Шахматные часы: один взведённый таймер на активную партию.
Перевзвод отменяет предыдущий таймер этой партии.
"""
import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class LoopScheduler:
    """Таймеры на текущем event loop (asyncio.TimerHandle)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)


class SessionClock:
    def __init__(self, scheduler: Scheduler, on_expire: Callable[[str], None]):
        self._scheduler = scheduler
        self._on_expire = on_expire
        self._handles: dict[str, TimerHandle] = {}

    def arm(self, session_id: str, remaining_ms: int) -> None:
        self.cancel(session_id)
        delay = max(0, remaining_ms) / 1000
        self._handles[session_id] = self._scheduler.call_later(delay, self._fire, session_id)
        logger.debug("Clock: armed %s for %dms", session_id, remaining_ms)

    def cancel(self, session_id: str) -> None:
        handle = self._handles.pop(session_id, None)
        if handle is not None:
            handle.cancel()

    def is_armed(self, session_id: str) -> bool:
        return session_id in self._handles

    def cancel_all(self) -> None:
        for session_id in list(self._handles):
            self.cancel(session_id)

    def _fire(self, session_id: str) -> None:
        self._handles.pop(session_id, None)
        logger.info("Clock: fired for %s", session_id)
        self._on_expire(session_id)
