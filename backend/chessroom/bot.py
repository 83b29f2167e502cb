"""
Ходы бота. После любого изменения, передавшего ход боту, берём ход у
оценщика и применяем его через тот же SessionRegistry.apply_move, что и
для человека. Если за время «раздумья» партия изменилась, ответ
выбрасывается.
"""
import asyncio
import logging
import random
from dataclasses import dataclass

from .constants import BOT_PLAYER_ID, Side, Status
from .engine import Evaluator
from .registry import MoveRejected, SessionRegistry
from .rules import Move
from .session import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Guard:
    session_id: str
    side: Side
    ply: int

    def holds(self, session: Session | None) -> bool:
        return (
            session is not None
            and session.is_bot
            and session.status is Status.ACTIVE
            and session.turn is self.side
            and session.ply == self.ply
        )


class OpponentDriver:
    def __init__(
        self,
        registry: SessionRegistry,
        evaluator: Evaluator,
        think_seconds: tuple[float, float] = (0.5, 1.5),
        rng: random.Random | None = None,
    ):
        self._registry = registry
        self._evaluator = evaluator
        self._think_seconds = think_seconds
        self._rng = rng or random.Random()
        self._tasks: dict[str, asyncio.Task] = {}

    def request_move(self, session_id: str) -> bool:
        """Запланировать ход бота. False если не очередь бота или ход уже готовится."""
        session = self._registry.get(session_id)
        if session is None or not session.is_bot_turn:
            return False
        pending = self._tasks.get(session_id)
        if pending is not None and not pending.done():
            return False
        guard = _Guard(session_id, session.turn, session.ply)
        task = asyncio.get_running_loop().create_task(self._play(guard))
        self._tasks[session_id] = task
        task.add_done_callback(lambda t: self._forget(session_id, t))
        return True

    def retry(self, session_id: str) -> bool:
        """Повторить запрос хода (бот мог застрять после ошибки оценщика)."""
        logger.info("Bot: retry requested for %s", session_id)
        return self.request_move(session_id)

    def is_thinking(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            task.cancel()

    async def _play(self, guard: _Guard) -> None:
        await asyncio.sleep(self._rng.uniform(*self._think_seconds))
        session = self._registry.get(guard.session_id)
        if not guard.holds(session):
            logger.debug("Bot: session %s changed while thinking, skipped", guard.session_id)
            return
        try:
            uci = await self._evaluator.best_move(session.fen, session.bot_strength)
        except Exception:
            logger.exception("Bot: evaluator failed for session %s", guard.session_id)
            return
        session = self._registry.get(guard.session_id)
        if not guard.holds(session):
            logger.info("Bot: stale reply %s for session %s discarded", uci, guard.session_id)
            return
        outcome = self._registry.apply_move(guard.session_id, BOT_PLAYER_ID, Move.from_uci(uci))
        if isinstance(outcome, MoveRejected):
            logger.warning("Bot: move %s rejected in %s: %s", uci, guard.session_id, outcome.reason)

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
