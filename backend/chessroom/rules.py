"""
Правила шахмат поверх python-chess: проверка и применение хода,
определение конца партии. Позиция в FEN, история в виде списка UCI-ходов
от начальной расстановки (нужна для троекратного повторения).
"""
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import chess

from .constants import DRAW, Reason, Side

START_POSITION = chess.STARTING_FEN


@dataclass(frozen=True)
class Move:
    from_square: str
    to_square: str
    promotion: str | None = None

    @property
    def uci(self) -> str:
        return self.from_square + self.to_square + (self.promotion or "")

    @classmethod
    def from_uci(cls, uci: str) -> "Move":
        return cls(uci[:2], uci[2:4], uci[4:5] or None)


@dataclass(frozen=True)
class Terminal:
    winner: str  # "white" | "black" | "draw"
    reason: Reason


@dataclass(frozen=True)
class AppliedMove:
    uci: str
    san: str
    fen: str
    terminal: Terminal | None = None


def _side(color: chess.Color) -> Side:
    return Side.WHITE if color == chess.WHITE else Side.BLACK


class ChessRules:
    def build_board(self, moves_uci: Sequence[str]) -> chess.Board:
        board = chess.Board()
        for uci in moves_uci:
            board.push_uci(uci)
        return board

    def apply_move(self, moves_uci: Sequence[str], move: Move) -> AppliedMove | None:
        """
        Применить ход к позиции после moves_uci.
        Возвращает None если ход некорректен или нелегален.
        """
        board = self.build_board(moves_uci)
        try:
            candidate = chess.Move.from_uci(move.uci)
        except ValueError:
            return None
        if candidate not in board.legal_moves:
            return None
        san = board.san(candidate)
        board.push(candidate)
        return AppliedMove(
            uci=candidate.uci(),
            san=san,
            fen=board.fen(),
            terminal=self.terminal(board),
        )

    def terminal(self, board: chess.Board) -> Terminal | None:
        if board.is_checkmate():
            # Мат получил тот, чья очередь ходить
            return Terminal(winner=_side(not board.turn).value, reason=Reason.CHECKMATE)
        if board.is_stalemate():
            return Terminal(winner=DRAW, reason=Reason.STALEMATE)
        if board.is_insufficient_material():
            return Terminal(winner=DRAW, reason=Reason.INSUFFICIENT_MATERIAL)
        if board.can_claim_threefold_repetition():
            return Terminal(winner=DRAW, reason=Reason.THREEFOLD_REPETITION)
        if board.can_claim_fifty_moves():
            return Terminal(winner=DRAW, reason=Reason.FIFTY_MOVES)
        return None

    def positions(self, moves_uci: Sequence[str]) -> Iterator[tuple[str, str, Side | None]]:
        """
        Все позиции партии: (fen, san, сторона сделавшая ход).
        Первая позиция: начальная расстановка, для неё san пустой и стороны нет.
        """
        board = chess.Board()
        yield board.fen(), "", None
        for uci in moves_uci:
            move = chess.Move.from_uci(uci)
            mover = _side(board.turn)
            san = board.san(move)
            board.push(move)
            yield board.fen(), san, mover
