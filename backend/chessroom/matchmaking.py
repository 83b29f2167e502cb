"""
Очередь быстрой игры (in-memory).
Поиск соперника и создание партии выполняются одним синхронным шагом, поэтому два
одновременных запроса не могут забрать одного и того же ждущего.
"""
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .constants import TIME_CONTROL_MINUTES, Side, Status
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class QueueEntry:
    player_id: str
    identity_id: str | None
    return_address: str
    time_control: int
    enqueued_at: float


@dataclass(frozen=True)
class Queued:
    time_control: int


@dataclass(frozen=True)
class Matched:
    session_id: str
    side: Side
    opponent_id: str
    opponent_address: str
    opponent_side: Side
    start_position: str
    start_clocks: dict[Side, int]


class MatchmakingQueue:
    def __init__(
        self,
        registry: SessionRegistry,
        now: Callable[[], float] = time.monotonic,
        stale_seconds: float = 30.0,
    ):
        self._registry = registry
        self._now = now
        self._stale_seconds = stale_seconds
        self._entries: list[QueueEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def is_queued(self, player_id: str) -> bool:
        return any(e.player_id == player_id for e in self._entries)

    def counts(self) -> dict[int, int]:
        """Количество ожидающих по каждому режиму."""
        counts = {minutes: 0 for minutes in TIME_CONTROL_MINUTES}
        for entry in self._entries:
            counts[entry.time_control] = counts.get(entry.time_control, 0) + 1
        return counts

    def enqueue(
        self,
        player_id: str,
        identity_id: str | None,
        return_address: str,
        time_control: int,
    ) -> Queued | Matched:
        """
        Встать в очередь или сразу получить партию, если кто-то ждёт
        с тем же контролем времени. Ждавший играет белыми.
        """
        if self.is_queued(player_id) or self._registry.find_seat(player_id, Status.WAITING, Status.ACTIVE):
            logger.info("Queue: %s already queued or playing", player_id)
            return Queued(time_control)
        self._drop_seated()
        for i, entry in enumerate(self._entries):
            if entry.time_control != time_control or entry.player_id == player_id:
                continue
            del self._entries[i]
            session_id = self._registry.create_session(
                entry.player_id,
                time_control,
                identity_id=entry.identity_id,
            )
            side = self._registry.join_session(session_id, player_id, identity_id)
            session = self._registry.get(session_id)
            logger.info("Queue: matched %s with %s in %s", entry.player_id, player_id, session_id)
            return Matched(
                session_id=session_id,
                side=side,
                opponent_id=entry.player_id,
                opponent_address=entry.return_address,
                opponent_side=side.opponent,
                start_position=session.fen,
                start_clocks=dict(session.remaining_ms),
            )
        self._entries.append(QueueEntry(
            player_id=player_id,
            identity_id=identity_id,
            return_address=return_address,
            time_control=time_control,
            enqueued_at=self._now(),
        ))
        logger.info("Queue: %s waiting for %s min", player_id, time_control)
        return Queued(time_control)

    def dequeue(self, player_id: str) -> bool:
        """Убрать из очереди. Возвращает True если был в очереди."""
        for i, entry in enumerate(self._entries):
            if entry.player_id == player_id:
                del self._entries[i]
                return True
        return False

    def _drop_seated(self) -> None:
        """Записи игроков, которые уже сели за партию, не годятся для пары."""
        seated = [e for e in self._entries if self._registry.find_seat(e.player_id, Status.WAITING, Status.ACTIVE)]
        for entry in seated:
            self._entries.remove(entry)
            logger.info("Queue: dropped %s, already seated", entry.player_id)

    def sweep_stale(self) -> list[str]:
        """Убрать давно ждущих; вернуть их адреса для уведомления."""
        now = self._now()
        stale = [e for e in self._entries if now - e.enqueued_at >= self._stale_seconds]
        if not stale:
            return []
        self._entries = [e for e in self._entries if now - e.enqueued_at < self._stale_seconds]
        logger.info("Queue: %d entries timed out", len(stale))
        return [e.return_address for e in stale]
