"""
Запись в базу «выстрелил и забыл»: снимок партии снимается сразу,
а сама запись идёт в рабочем потоке. Ошибки только логируются,
игра от базы не зависит.
"""
import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .constants import Side
from .models import SessionSnapshot
from .repository import SessionRepository
from .session import Session

logger = logging.getLogger(__name__)


class SnapshotWriter:
    def __init__(self, repository: SessionRepository) -> None:
        self.repository = repository
        self._tasks: set[asyncio.Task] = set()
        # Сохраняет порядок записей одной и той же партии
        self._lock = asyncio.Lock()

    def save_snapshot(self, session: Session) -> None:
        self._spawn(self.repository.save_snapshot, SessionSnapshot.from_session(session))

    def record_result(self, session: Session) -> None:
        white = session.identities.get(Side.WHITE)
        black = session.identities.get(Side.BLACK)
        if not white or not black or session.result is None:
            return
        self._spawn(self.repository.record_result, white, black, session.result.winner)

    async def drain(self) -> None:
        """Дождаться всех начатых записей (при остановке и в тестах)."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Store: no running loop, %s skipped", fn.__name__)
            return
        task = loop.create_task(self._run(fn, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(fn, *args)
            except Exception:
                logger.exception("Store: %s failed", fn.__name__)
