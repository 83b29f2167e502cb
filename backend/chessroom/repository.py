"""Хранилище снимков партий и статистики игроков."""
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from .constants import DRAW
from .models import SessionSnapshot, UserStats
from .schema import DBSession, DBUser

RATING_STEP = 10


class SessionRepository(Protocol):
    def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        """Создать или обновить снимок партии."""
        ...

    def get_snapshot(self, session_id: str) -> SessionSnapshot | None:
        ...

    def save_analysis(self, session_id: str, analysis: dict) -> bool:
        ...

    def record_result(self, white_identity: str, black_identity: str, winner: str | None) -> None:
        """Обновить статистику обоих игроков по итогам партии."""
        ...

    def get_user_stats(self, identity_id: str) -> UserStats | None:
        ...

    def list_snapshots(self, identity_id: str, limit: int = 20, offset: int = 0) -> list[SessionSnapshot]:
        """Партии игрока, новые первыми."""
        ...


class SQLSessionRepository:
    """Каждый вызов открывает свою транзакцию, методы вызываются из рабочих потоков."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        with self._session_factory() as db:
            row = db.get(DBSession, snapshot.id)
            if row is None:
                row = DBSession(id=snapshot.id)
                db.add(row)
            row.fen = snapshot.fen
            row.moves_uci = snapshot.moves_uci
            row.history = snapshot.history
            row.players = snapshot.players
            row.identities = snapshot.identities
            row.time_control = snapshot.time_control
            row.remaining_ms = snapshot.remaining_ms
            row.is_private = snapshot.is_private
            row.is_bot = snapshot.is_bot
            row.bot_strength = snapshot.bot_strength
            row.status = snapshot.status
            row.winner = snapshot.winner
            row.reason = snapshot.reason
            db.commit()

    def get_snapshot(self, session_id: str) -> SessionSnapshot | None:
        with self._session_factory() as db:
            row = db.scalar(select(DBSession).where(DBSession.id == session_id))
            return self._to_snapshot(row) if row else None

    def save_analysis(self, session_id: str, analysis: dict) -> bool:
        with self._session_factory() as db:
            row = db.get(DBSession, session_id)
            if row is None:
                return False
            row.analysis = analysis
            db.commit()
            return True

    def record_result(self, white_identity: str, black_identity: str, winner: str | None) -> None:
        with self._session_factory() as db:
            white = self._get_or_create_user(db, white_identity)
            black = self._get_or_create_user(db, black_identity)
            for user, side in ((white, "white"), (black, "black")):
                user.games += 1
                if winner == DRAW:
                    user.draws += 1
                elif winner == side:
                    user.wins += 1
                    user.rating += RATING_STEP
                elif winner is not None:
                    user.losses += 1
                    user.rating -= RATING_STEP
            db.commit()

    def get_user_stats(self, identity_id: str) -> UserStats | None:
        with self._session_factory() as db:
            user = db.get(DBUser, identity_id)
            if user is None:
                return None
            return UserStats(
                identity_id=user.identity_id,
                games=user.games,
                wins=user.wins,
                losses=user.losses,
                draws=user.draws,
                rating=user.rating,
            )

    def list_snapshots(self, identity_id: str, limit: int = 20, offset: int = 0) -> list[SessionSnapshot]:
        query = (
            select(DBSession)
            .where(or_(
                DBSession.identities["white"].as_string() == identity_id,
                DBSession.identities["black"].as_string() == identity_id,
            ))
            .order_by(DBSession.created_at.desc(), DBSession.id)
            .limit(limit)
            .offset(offset)
        )
        with self._session_factory() as db:
            return [self._to_snapshot(row) for row in db.scalars(query)]

    def _get_or_create_user(self, db: Session, identity_id: str) -> DBUser:
        user = db.get(DBUser, identity_id)
        if user is None:
            user = DBUser(identity_id=identity_id, games=0, wins=0, losses=0, draws=0, rating=1200)
            db.add(user)
        return user

    def _to_snapshot(self, row: DBSession) -> SessionSnapshot:
        return SessionSnapshot(
            id=row.id,
            fen=row.fen,
            moves_uci=list(row.moves_uci),
            history=list(row.history),
            players=dict(row.players),
            identities=dict(row.identities),
            time_control=row.time_control,
            remaining_ms=dict(row.remaining_ms),
            is_private=row.is_private,
            is_bot=row.is_bot,
            bot_strength=row.bot_strength,
            status=row.status,
            winner=row.winner,
            reason=row.reason,
            analysis=row.analysis,
        )
