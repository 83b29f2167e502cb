"""
Модели на границе с хранилищем: снимок партии и статистика игрока.
SQLAlchemy-модели остаются в schema.py.
"""
from dataclasses import dataclass

from .session import Session


@dataclass
class SessionSnapshot:
    id: str
    fen: str
    moves_uci: list[str]
    history: list[str]
    players: dict[str, str]
    identities: dict[str, str]
    time_control: int
    remaining_ms: dict[str, int]
    is_private: bool
    is_bot: bool
    bot_strength: int
    status: str
    winner: str | None = None
    reason: str | None = None
    analysis: dict | None = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionSnapshot":
        return cls(
            id=session.id,
            fen=session.fen,
            moves_uci=list(session.moves_uci),
            history=list(session.history),
            players={side.value: pid for side, pid in session.players.items()},
            identities={side.value: iid for side, iid in session.identities.items()},
            time_control=session.duration_minutes,
            remaining_ms={side.value: ms for side, ms in session.remaining_ms.items()},
            is_private=session.is_private,
            is_bot=session.is_bot,
            bot_strength=session.bot_strength,
            status=session.status.value,
            winner=session.result.winner if session.result else None,
            reason=session.result.reason.value if session.result else None,
        )


@dataclass
class UserStats:
    identity_id: str
    games: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    rating: int = 1200
