"""
Реестр партий: создание, присоединение, ходы, сдача, ничьи, флаг.

Все операции синхронные и выполняются на одном event loop, поэтому
каждая из них атомарна относительно остальных. Любой переход в finished
идёт через _finish: первый вызвавший побеждает, остальные ничего не меняют.
"""
import logging
import random
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from .clock import Scheduler, SessionClock
from .constants import (
    BOT_PLAYER_ID,
    DEFAULT_TIME_CONTROL,
    DRAW,
    MAX_BOT_STRENGTH,
    MIN_BOT_STRENGTH,
    SESSION_ID_ALPHABET,
    SESSION_ID_LENGTH,
    Reason,
    Side,
    Status,
)
from .rules import ChessRules, Move
from .session import Session

if TYPE_CHECKING:
    from .store import SnapshotWriter

logger = logging.getLogger(__name__)


class JoinFailure(StrEnum):
    NOT_FOUND = "session not found"
    FULL = "session full"


class RejectReason(StrEnum):
    SESSION_NOT_FOUND = "session not found"
    NOT_ACTIVE = "session not active"
    NOT_SEATED = "player not in session"
    NOT_YOUR_TURN = "not your turn"
    OUT_OF_TIME = "time out"
    ILLEGAL_MOVE = "illegal move"


@dataclass(frozen=True)
class MoveAccepted:
    session_id: str
    side: Side
    uci: str
    san: str
    fen: str
    history: list[str]
    remaining_ms: dict[Side, int]
    move_time_ms: int
    terminal: bool = False
    winner: str | None = None
    reason: Reason | None = None

    @property
    def from_square(self) -> str:
        return self.uci[:2]

    @property
    def to_square(self) -> str:
        return self.uci[2:4]


@dataclass(frozen=True)
class MoveRejected:
    reason: RejectReason


MoveListener = Callable[[Session, MoveAccepted], None]
GameOverListener = Callable[[Session], None]


class SessionRegistry:
    def __init__(
        self,
        rules: ChessRules,
        scheduler: Scheduler,
        now: Callable[[], float] = time.monotonic,
        store: "SnapshotWriter | None" = None,
        rng: random.Random | None = None,
        idle_seconds: float = 3600.0,
        retention_seconds: float = 86400.0,
    ):
        self._rules = rules
        self._now = now
        self._store = store
        self._rng = rng or random.Random()
        self._idle_seconds = idle_seconds
        self._retention_seconds = retention_seconds
        self._sessions: dict[str, Session] = {}
        self._clock = SessionClock(scheduler, self._handle_expiry)
        self.on_move: list[MoveListener] = []
        self.on_game_over: list[GameOverListener] = []
        # Вызывается, когда очередь хода переходит к боту (OpponentDriver.request_move)
        self.on_bot_turn: Callable[[str], None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def find_seat(self, player_id: str, *statuses: Status) -> tuple[Session, Side] | None:
        """Партия (в одном из statuses), где игрок занимает сторону."""
        statuses = statuses or (Status.WAITING, Status.ACTIVE)
        for session in self._sessions.values():
            if session.status not in statuses:
                continue
            side = session.side_of(player_id)
            if side is not None:
                return session, side
        return None

    def find_seat_by_identity(self, identity_id: str, *statuses: Status) -> tuple[Session, Side] | None:
        statuses = statuses or (Status.WAITING, Status.ACTIVE)
        for session in self._sessions.values():
            if session.status not in statuses:
                continue
            side = session.side_of_identity(identity_id)
            if side is not None:
                return session, side
        return None

    def pending_sessions(self) -> list[dict]:
        """Открытые публичные партии для лобби."""
        return [
            {
                "id": s.id,
                "players": {side.value: pid for side, pid in s.players.items()},
                "time_control": s.duration_minutes,
            }
            for s in self._sessions.values()
            if s.status is Status.WAITING and not s.is_private
        ]

    # -- Операции ---
    def create_session(
        self,
        player_id: str,
        duration_minutes: int = DEFAULT_TIME_CONTROL,
        randomize_side: bool = False,
        is_private: bool = False,
        bot_game: bool = False,
        bot_strength: int = MIN_BOT_STRENGTH,
        identity_id: str | None = None,
    ) -> str:
        now = self._now()
        side = Side.BLACK if randomize_side and self._rng.random() < 0.5 else Side.WHITE
        session = Session(
            id=self._new_session_id(),
            duration_minutes=duration_minutes,
            last_clock_at=now,
            created_at=now,
            is_private=is_private,
            is_bot=bot_game,
            bot_strength=min(MAX_BOT_STRENGTH, max(MIN_BOT_STRENGTH, bot_strength)),
        )
        session.players[side] = player_id
        if identity_id:
            session.identities[side] = identity_id
        if bot_game:
            session.players[side.opponent] = BOT_PLAYER_ID
            session.status = Status.ACTIVE
        self._sessions[session.id] = session
        logger.info(
            "Session %s created by %s: side=%s minutes=%s bot=%s",
            session.id, player_id, side, duration_minutes, bot_game,
        )
        self._persist(session)
        if bot_game:
            self._arm(session)
            self._maybe_bot_turn(session)
        return session.id

    def join_session(self, session_id: str, player_id: str, identity_id: str | None = None) -> Side | JoinFailure:
        session = self._sessions.get(session_id)
        if session is None:
            return JoinFailure.NOT_FOUND
        side = session.side_of(player_id)
        if session.status is Status.FINISHED:
            # Можно вернуться, чтобы посмотреть результат
            return side if side is not None else JoinFailure.FULL
        if side is not None:
            return side
        side = session.open_side()
        if side is None:
            return JoinFailure.FULL
        session.players[side] = player_id
        if identity_id:
            session.identities[side] = identity_id
        session.status = Status.ACTIVE
        session.last_clock_at = self._now()
        logger.info("Session %s joined by %s as %s", session_id, player_id, side)
        self._persist(session)
        self._arm(session)
        self._maybe_bot_turn(session)
        return side

    def apply_move(self, session_id: str, player_id: str, move: Move) -> MoveAccepted | MoveRejected:
        session = self._sessions.get(session_id)
        if session is None:
            return self._reject(session_id, player_id, RejectReason.SESSION_NOT_FOUND)
        if session.status is not Status.ACTIVE:
            return self._reject(session_id, player_id, RejectReason.NOT_ACTIVE)
        side = session.side_of(player_id)
        if side is None:
            return self._reject(session_id, player_id, RejectReason.NOT_SEATED)
        if side is not session.turn:
            return self._reject(session_id, player_id, RejectReason.NOT_YOUR_TURN)
        now = self._now()
        if session.remaining_now(now) <= 0:
            self._expire(session)
            return self._reject(session_id, player_id, RejectReason.OUT_OF_TIME)

        applied = self._rules.apply_move(session.moves_uci, move)
        if applied is None:
            return self._reject(session_id, player_id, RejectReason.ILLEGAL_MOVE)

        used = session.charge(now)
        session.record_move(applied)
        terminal = applied.terminal
        outcome = MoveAccepted(
            session_id=session_id,
            side=side,
            uci=applied.uci,
            san=applied.san,
            fen=applied.fen,
            history=list(session.history),
            remaining_ms=dict(session.remaining_ms),
            move_time_ms=used,
            terminal=terminal is not None,
            winner=terminal.winner if terminal else None,
            reason=terminal.reason if terminal else None,
        )
        logger.info("Session %s: %s played %s (%dms)", session_id, side, applied.san, used)
        self._persist(session)
        self._emit(self.on_move, session, outcome)
        if terminal is not None:
            self._finish(session, terminal.winner, terminal.reason)
        else:
            self._arm(session)
            self._maybe_bot_turn(session)
        return outcome

    def resign(self, session_id: str, player_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.status is not Status.ACTIVE:
            return False
        side = session.side_of(player_id)
        if side is None:
            return False
        return self._finish(session, side.opponent.value, Reason.RESIGNATION)

    def offer_draw(self, session_id: str, player_id: str) -> Side | None:
        session, side = self._seated(session_id, player_id)
        if session is None or session.is_bot:
            return None
        if session.draw_offer is side.opponent:
            # Встречное предложение не записываем, его нужно принять
            return None
        session.draw_offer = side
        logger.info("Session %s: draw offered by %s", session_id, side)
        return side

    def accept_draw(self, session_id: str, player_id: str) -> bool:
        session, side = self._seated(session_id, player_id)
        if session is None or session.draw_offer is None or session.draw_offer is side:
            return False
        return self._finish(session, DRAW, Reason.AGREEMENT)

    def decline_draw(self, session_id: str, player_id: str) -> bool:
        session, side = self._seated(session_id, player_id)
        if session is None or session.draw_offer is not side.opponent:
            return False
        session.draw_offer = None
        logger.info("Session %s: draw declined by %s", session_id, side)
        return True

    def check_timeout(self, session_id: str) -> bool:
        """
        Сверка часов по запросу клиента. Возвращает True, если партия
        завершилась по времени этим вызовом.
        """
        session = self._sessions.get(session_id)
        if session is None or session.status is not Status.ACTIVE:
            return False
        remaining = session.remaining_now(self._now())
        if remaining > 0:
            logger.debug("Session %s: %dms left for %s", session_id, remaining, session.turn)
            return False
        return self._expire(session)

    def forfeit(self, session_id: str, loser: Side, reason: Reason) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.status is not Status.ACTIVE:
            return False
        return self._finish(session, loser.opponent.value, reason)

    def rearm(self, session_id: str) -> None:
        """Перевзвести часы от текущего остатка (после переподключения)."""
        session = self._sessions.get(session_id)
        if session is not None and session.status is Status.ACTIVE:
            self._arm(session)

    def cleanup_pending(self, player_id: str) -> str | None:
        """Убрать ожидающую партию, единственный участник которой ушёл."""
        seat = self.find_seat(player_id, Status.WAITING)
        if seat is None:
            return None
        session, _ = seat
        self._finish(session, None, Reason.ABANDONED)
        del self._sessions[session.id]
        logger.info("Session %s: pending session removed, %s left", session.id, player_id)
        return session.id

    def sweep_idle(self) -> list[str]:
        """
        Пометить брошенными партии, в которых часы давно не списывались.
        Активную партию со взведёнными часами завершит флаг, её не трогаем.
        """
        now = self._now()
        abandoned = []
        for session in list(self._sessions.values()):
            if session.status is Status.FINISHED:
                continue
            if session.status is Status.ACTIVE and self._clock.is_armed(session.id):
                continue
            if now - session.last_clock_at >= self._idle_seconds:
                if self._finish(session, None, Reason.ABANDONED):
                    abandoned.append(session.id)
        return abandoned

    def sweep_finished(self) -> int:
        """Выгрузить из памяти давно завершённые партии (снимок остаётся в базе)."""
        now = self._now()
        stale = [
            s.id
            for s in self._sessions.values()
            if s.status is Status.FINISHED and s.finished_at is not None
            and now - s.finished_at >= self._retention_seconds
        ]
        for session_id in stale:
            del self._sessions[session_id]
        if stale:
            logger.info("Registry: dropped %d finished sessions", len(stale))
        return len(stale)

    def shutdown(self) -> None:
        self._clock.cancel_all()

    # -- Внутреннее --
    def _new_session_id(self) -> str:
        while True:
            session_id = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))
            if session_id not in self._sessions:
                return session_id

    def _seated(self, session_id: str, player_id: str) -> tuple[Session | None, Side | None]:
        session = self._sessions.get(session_id)
        if session is None or session.status is not Status.ACTIVE:
            return None, None
        side = session.side_of(player_id)
        if side is None:
            return None, None
        return session, side

    def _reject(self, session_id: str, player_id: str, reason: RejectReason) -> MoveRejected:
        logger.info("Session %s: move by %s rejected: %s", session_id, player_id, reason)
        return MoveRejected(reason)

    def _arm(self, session: Session) -> None:
        self._clock.arm(session.id, session.remaining_now(self._now()))

    def _handle_expiry(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.status is not Status.ACTIVE:
            logger.debug("Session %s: clock fired after finish, ignored", session_id)
            return
        remaining = session.remaining_now(self._now())
        if remaining > 0:
            self._clock.arm(session_id, remaining)
            return
        self._expire(session)

    def _expire(self, session: Session) -> bool:
        session.charge(self._now())
        return self._finish(session, session.turn.opponent.value, Reason.TIMEOUT)

    def _finish(self, session: Session, winner: str | None, reason: Reason) -> bool:
        if not session.finish(winner, reason, self._now()):
            logger.debug("Session %s already finished, %s ignored", session.id, reason)
            return False
        self._clock.cancel(session.id)
        logger.info("Session %s finished: winner=%s reason=%s", session.id, winner, reason)
        if self._store is not None:
            self._store.save_snapshot(session)
            self._store.record_result(session)
        self._emit(self.on_game_over, session)
        return True

    def _maybe_bot_turn(self, session: Session) -> None:
        if session.is_bot_turn and self.on_bot_turn is not None:
            self.on_bot_turn(session.id)

    def _persist(self, session: Session) -> None:
        if self._store is not None:
            self._store.save_snapshot(session)

    def _emit(self, listeners: list, *args) -> None:
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Registry: listener %r failed", listener)
