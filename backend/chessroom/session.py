"""
Состояние одной партии. Меняет его только SessionRegistry.
Время хранится в миллисекундах, отметки в секундах time.monotonic().
"""
from dataclasses import dataclass, field

from .constants import BOT_PLAYER_ID, Reason, Side, Status
from .rules import START_POSITION, AppliedMove


@dataclass
class GameResult:
    winner: str | None  # "white" | "black" | "draw" | None
    reason: Reason


@dataclass
class Session:
    id: str
    duration_minutes: int
    players: dict[Side, str] = field(default_factory=dict)
    identities: dict[Side, str] = field(default_factory=dict)
    fen: str = START_POSITION
    moves_uci: list[str] = field(default_factory=list)
    history: list[str] = field(default_factory=list)  # SAN
    turn: Side = Side.WHITE
    remaining_ms: dict[Side, int] = field(default_factory=dict)
    last_clock_at: float = 0.0
    is_private: bool = False
    is_bot: bool = False
    bot_strength: int = 1
    status: Status = Status.WAITING
    draw_offer: Side | None = None
    result: GameResult | None = None
    created_at: float = 0.0
    finished_at: float | None = None

    def __post_init__(self) -> None:
        if not self.remaining_ms:
            initial = self.duration_minutes * 60 * 1000
            self.remaining_ms = {Side.WHITE: initial, Side.BLACK: initial}

    def side_of(self, player_id: str) -> Side | None:
        for side, pid in self.players.items():
            if pid == player_id:
                return side
        return None

    def side_of_identity(self, identity_id: str) -> Side | None:
        for side, iid in self.identities.items():
            if iid == identity_id:
                return side
        return None

    def open_side(self) -> Side | None:
        for side in (Side.WHITE, Side.BLACK):
            if side not in self.players:
                return side
        return None

    @property
    def bot_side(self) -> Side | None:
        return self.side_of(BOT_PLAYER_ID) if self.is_bot else None

    @property
    def is_bot_turn(self) -> bool:
        return self.status is Status.ACTIVE and self.bot_side is self.turn

    @property
    def ply(self) -> int:
        return len(self.moves_uci)

    def _elapsed_ms(self, now: float) -> int:
        return max(0, int((now - self.last_clock_at) * 1000))

    def remaining_now(self, now: float) -> int:
        """Остаток времени стороны, чей ход, на момент now (без списания)."""
        return max(0, self.remaining_ms[self.turn] - self._elapsed_ms(now))

    def clocks_now(self, now: float) -> dict[Side, int]:
        clocks = dict(self.remaining_ms)
        if self.status is Status.ACTIVE:
            clocks[self.turn] = self.remaining_now(now)
        return clocks

    def charge(self, now: float) -> int:
        """Списать прошедшее время со стороны, чей ход. Возвращает списанные мс."""
        used = min(self.remaining_ms[self.turn], self._elapsed_ms(now))
        self.remaining_ms[self.turn] -= used
        self.last_clock_at = now
        return used

    def record_move(self, applied: AppliedMove) -> None:
        self.fen = applied.fen
        self.moves_uci.append(applied.uci)
        self.history.append(applied.san)
        self.turn = self.turn.opponent
        self.draw_offer = None

    def finish(self, winner: str | None, reason: Reason, now: float) -> bool:
        """
        Единственный переход в finished. Возвращает False, если партия
        уже завершена другим путём (ход, флаг, сдача, отключение).
        """
        if self.status is Status.FINISHED:
            return False
        self.status = Status.FINISHED
        self.result = GameResult(winner=winner, reason=reason)
        self.finished_at = now
        self.draw_offer = None
        return True
