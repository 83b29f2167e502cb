"""Константы: стороны, статусы партии, причины завершения, контроль времени."""
from enum import StrEnum


class Side(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Side":
        return Side.BLACK if self is Side.WHITE else Side.WHITE


class Status(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class Reason(StrEnum):
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    INSUFFICIENT_MATERIAL = "insufficient material"
    THREEFOLD_REPETITION = "threefold repetition"
    FIFTY_MOVES = "fifty-move rule"
    RESIGNATION = "resignation"
    TIMEOUT = "timeout"
    AGREEMENT = "agreement"
    DISCONNECTION = "disconnection"
    ABANDONED = "abandoned"


# Победитель в результате: "white" | "black" | "draw" | None (брошенная партия)
DRAW = "draw"

BOT_PLAYER_ID = "bot"

SESSION_ID_LENGTH = 6
SESSION_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

# Режимы быстрой игры (минуты на партию, без добавления)
TIME_CONTROL_MINUTES = [1, 3, 5, 10, 15, 30]
DEFAULT_TIME_CONTROL = 10
MAX_TIME_CONTROL = 180

MIN_BOT_STRENGTH = 1
MAX_BOT_STRENGTH = 5
# Глубина поиска по уровню сложности бота (1..5)
BOT_DEPTHS = [1, 3, 5, 8, 12]
MAX_SKILL_LEVEL = 20

ANALYSIS_DEPTH = 12

LOBBY_GROUP = "lobby"
