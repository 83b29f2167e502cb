"""
Учёт отключившихся игроков. Часы партии при отключении не
останавливаются: отключившийся может проиграть и по времени.
"""
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .constants import Reason, Side, Status
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class DisconnectionRecord:
    player_id: str
    session_id: str
    side: Side
    disconnected_at: float


@dataclass(frozen=True)
class Reconnection:
    session_id: str
    player_id: str
    side: Side
    opponent_disconnected: bool


class DisconnectionTracker:
    def __init__(
        self,
        registry: SessionRegistry,
        now: Callable[[], float] = time.monotonic,
        grace_seconds: float = 60.0,
    ):
        self._registry = registry
        self._now = now
        self._grace_seconds = grace_seconds
        self._records: dict[str, DisconnectionRecord] = {}

    def is_disconnected(self, player_id: str) -> bool:
        return player_id in self._records

    def get(self, player_id: str) -> DisconnectionRecord | None:
        return self._records.get(player_id)

    def mark_disconnected(self, player_id: str) -> DisconnectionRecord | None:
        seat = self._registry.find_seat(player_id, Status.ACTIVE)
        if seat is None:
            return None
        session, side = seat
        if session.is_bot:
            return None
        record = DisconnectionRecord(
            player_id=player_id,
            session_id=session.id,
            side=side,
            disconnected_at=self._now(),
        )
        self._records[player_id] = record
        logger.info("Disconnect: %s left session %s (%s)", player_id, session.id, side)
        return record

    def reconnect(self, player_id: str, identity_id: str | None = None) -> Reconnection | None:
        record = self._records.get(player_id)
        if record is not None:
            if self._now() - record.disconnected_at >= self._grace_seconds:
                self._expire(record)
                return None
            del self._records[player_id]
            session = self._registry.get(record.session_id)
            if session is not None and session.status is Status.ACTIVE:
                self._registry.rearm(session.id)
                logger.info("Disconnect: %s back in session %s", player_id, session.id)
                return self._reconnection(session.id, player_id, record.side)

        # Не отмечен как отключившийся (например, перезагрузка вкладки)
        seat = self._registry.find_seat(player_id, Status.ACTIVE)
        if seat is None and identity_id:
            seat = self._registry.find_seat_by_identity(identity_id, Status.ACTIVE)
        if seat is None:
            return None
        session, side = seat
        return self._reconnection(session.id, session.players[side], side)

    def sweep_expired(self) -> list[DisconnectionRecord]:
        """Засчитать поражение всем, кто не вернулся за отведённое время."""
        now = self._now()
        expired = [r for r in self._records.values() if now - r.disconnected_at >= self._grace_seconds]
        return [r for r in expired if self._expire(r)]

    def _expire(self, record: DisconnectionRecord) -> bool:
        self._records.pop(record.player_id, None)
        forfeited = self._registry.forfeit(record.session_id, record.side, Reason.DISCONNECTION)
        if forfeited:
            logger.info("Disconnect: %s forfeited session %s", record.player_id, record.session_id)
        return forfeited

    def _reconnection(self, session_id: str, player_id: str, side: Side) -> Reconnection:
        session = self._registry.get(session_id)
        opponent = session.players.get(side.opponent)
        opponent_record = self._records.get(opponent) if opponent else None
        return Reconnection(
            session_id=session_id,
            player_id=player_id,
            side=side,
            opponent_disconnected=opponent_record is not None and opponent_record.session_id == session_id,
        )
