"""Сообщения, которые сервер отправляет клиентам."""
from .constants import Side
from .matchmaking import Matched
from .registry import MoveAccepted
from .session import Session


def _clocks(clocks: dict[Side, int]) -> dict[str, int]:
    return {side.value: ms for side, ms in clocks.items()}


def session_state(session: Session, now: float) -> dict:
    """Полное состояние партии (для входа, переподключения, зрителей)."""
    return {
        "session_id": session.id,
        "fen": session.fen,
        "history": list(session.history),
        "turn": session.turn.value,
        "status": session.status.value,
        "players": {side.value: pid for side, pid in session.players.items()},
        "time_remaining": _clocks(session.clocks_now(now)),
        "time_control": session.duration_minutes,
        "is_bot": session.is_bot,
        "draw_offer": session.draw_offer.value if session.draw_offer else None,
        "result": (
            {"winner": session.result.winner, "reason": session.result.reason.value}
            if session.result else None
        ),
    }


def session_created(session: Session, side: Side, now: float) -> dict:
    return {"type": "session_created", "color": side.value, **session_state(session, now)}


def session_joined(session: Session, side: Side, now: float) -> dict:
    return {"type": "session_joined", "color": side.value, **session_state(session, now)}


def opponent_joined(session: Session, player_id: str) -> dict:
    return {"type": "opponent_joined", "session_id": session.id, "opponent_id": player_id}


def board_updated(outcome: MoveAccepted) -> dict:
    return {
        "type": "board_updated",
        "session_id": outcome.session_id,
        "fen": outcome.fen,
        "san": outcome.san,
        "last_move": {"from": outcome.from_square, "to": outcome.to_square},
        "move_time_ms": outcome.move_time_ms,
        "time_remaining": _clocks(outcome.remaining_ms),
        "history": list(outcome.history),
    }


def session_over(session: Session) -> dict:
    return {
        "type": "session_over",
        "session_id": session.id,
        "winner": session.result.winner if session.result else None,
        "reason": session.result.reason.value if session.result else None,
        "fen": session.fen,
        "time_remaining": _clocks(session.remaining_ms),
    }


def session_view(session: Session, now: float) -> dict:
    return {"type": "session_state", **session_state(session, now)}


def clock_sync(session: Session, now: float) -> dict:
    return {
        "type": "clock_sync",
        "session_id": session.id,
        "turn": session.turn.value,
        "time_remaining": _clocks(session.clocks_now(now)),
    }


def draw_offered(session_id: str, side: Side) -> dict:
    return {"type": "draw_offered", "session_id": session_id, "color": side.value}


def draw_declined(session_id: str) -> dict:
    return {"type": "draw_declined", "session_id": session_id}


def opponent_disconnected(session_id: str, side: Side) -> dict:
    return {"type": "opponent_disconnected", "session_id": session_id, "color": side.value}


def opponent_reconnected(session_id: str, side: Side) -> dict:
    return {"type": "opponent_reconnected", "session_id": session_id, "color": side.value}


def match_found(matched: Matched, for_opponent: bool = False) -> dict:
    side = matched.opponent_side if for_opponent else matched.side
    return {
        "type": "match_found",
        "session_id": matched.session_id,
        "color": side.value,
        "fen": matched.start_position,
        "time_remaining": _clocks(matched.start_clocks),
        "history": [],
    }


def queued(time_control: int) -> dict:
    return {"type": "queued", "time_control": time_control}


def queue_timed_out() -> dict:
    return {"type": "queue_timed_out"}


def queue_counts(counts: dict[int, int]) -> dict:
    return {"type": "queue_counts", "counts": {str(k): v for k, v in counts.items()}}


def pending_sessions(sessions: list[dict]) -> dict:
    return {"type": "pending_sessions", "sessions": sessions}


def error(message: str) -> dict:
    return {"type": "error", "message": message}
