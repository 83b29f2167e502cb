"""
Оценщик позиций на UCI-движке (Stockfish) через chess.engine.
Один процесс движка на приложение, запросы идут по очереди.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import chess
import chess.engine

from .constants import ANALYSIS_DEPTH, BOT_DEPTHS, MAX_SKILL_LEVEL, MIN_BOT_STRENGTH
from .exceptions import EvaluatorError

logger = logging.getLogger(__name__)

MATE_SCORE = 10000


@dataclass(frozen=True)
class Evaluation:
    score: int  # сантипешки с точки зрения белых
    best_move: str | None


def strength_settings(strength: int) -> tuple[int, int]:
    """Уровень бота 1..5 -> (Skill Level 0..20, глубина поиска)."""
    index = min(len(BOT_DEPTHS) - 1, max(0, strength - MIN_BOT_STRENGTH))
    skill = min(MAX_SKILL_LEVEL, max(0, (strength - 1) * 5))
    return skill, BOT_DEPTHS[index]


class Evaluator(Protocol):
    async def best_move(self, fen: str, strength: int) -> str: ...

    async def evaluate(self, fen: str, depth: int = ANALYSIS_DEPTH) -> Evaluation: ...


class UciEvaluator:
    def __init__(self, engine_path: str):
        self.engine_path = engine_path
        self._engine: chess.engine.UciProtocol | None = None
        self._lock = asyncio.Lock()

    async def _get_engine(self) -> chess.engine.UciProtocol:
        if self._engine is not None:
            return self._engine
        try:
            _, engine = await chess.engine.popen_uci(self.engine_path)
        except (FileNotFoundError, chess.engine.EngineError) as e:
            raise EvaluatorError(f"Failed launching engine at '{self.engine_path}': {e}") from e
        logger.info("Engine: started %s", self.engine_path)
        self._engine = engine
        return engine

    async def best_move(self, fen: str, strength: int) -> str:
        skill, depth = strength_settings(strength)
        async with self._lock:
            engine = await self._get_engine()
            try:
                await engine.configure({"Skill Level": skill})
                result = await engine.play(chess.Board(fen), chess.engine.Limit(depth=depth))
            except chess.engine.EngineTerminatedError as e:
                self._engine = None
                raise EvaluatorError(f"Engine terminated: {e}") from e
        if result.move is None:
            raise EvaluatorError(f"Engine returned no move for {fen}")
        return result.move.uci()

    async def evaluate(self, fen: str, depth: int = ANALYSIS_DEPTH) -> Evaluation:
        async with self._lock:
            engine = await self._get_engine()
            try:
                # Анализ всегда на полной силе
                await engine.configure({"Skill Level": MAX_SKILL_LEVEL})
                info = await engine.analyse(chess.Board(fen), chess.engine.Limit(depth=depth))
            except chess.engine.EngineTerminatedError as e:
                self._engine = None
                raise EvaluatorError(f"Engine terminated: {e}") from e
        score = info.get("score")
        pv = info.get("pv") or []
        return Evaluation(
            score=score.white().score(mate_score=MATE_SCORE) if score is not None else 0,
            best_move=pv[0].uci() if pv else None,
        )

    async def close(self) -> None:
        if self._engine is None:
            return
        try:
            await self._engine.quit()
        except chess.engine.EngineTerminatedError:
            pass
        self._engine = None
