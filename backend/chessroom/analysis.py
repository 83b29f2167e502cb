"""
Разбор сыгранной партии: оценка каждой позиции движком и
классификация ходов по потере оценки.
"""
import asyncio
import logging
from datetime import datetime, timezone

from .constants import ANALYSIS_DEPTH, Side
from .engine import Evaluator
from .exceptions import StoreError
from .repository import SessionRepository
from .rules import ChessRules

logger = logging.getLogger(__name__)

# Порог потери оценки (сантипешки) -> класс хода; проверяются по порядку
LOSS_CLASSES = [
    (300, "blunder"),
    (150, "mistake"),
    (50, "inaccuracy"),
]
GAIN_CLASSES = [
    (-100, "brilliant"),
    (-50, "great"),
    (-10, "good"),
]
BAD_CLASSES = {"blunder", "mistake", "inaccuracy"}


def classify(drop: int) -> str:
    """drop > 0: позиция стала хуже для сделавшего ход."""
    for threshold, name in LOSS_CLASSES:
        if drop > threshold:
            return name
    for threshold, name in GAIN_CLASSES:
        if drop < threshold:
            return name
    return "best"


def accuracy(evaluations: list[dict], side: Side) -> float | None:
    graded = [e for e in evaluations if e["side"] == side.value]
    if not graded:
        return None
    good = sum(1 for e in graded if e["classification"] not in BAD_CLASSES)
    return round(100 * good / len(graded), 1)


async def analyze_session(
    session_id: str,
    repository: SessionRepository,
    evaluator: Evaluator,
    rules: ChessRules,
    depth: int = ANALYSIS_DEPTH,
) -> dict:
    snapshot = await asyncio.to_thread(repository.get_snapshot, session_id)
    if snapshot is None:
        raise StoreError(f"Session {session_id} not found")
    if snapshot.analysis:
        return snapshot.analysis

    evaluations = []
    previous_score = 0
    for index, (fen, san, mover) in enumerate(rules.positions(snapshot.moves_uci)):
        result = await evaluator.evaluate(fen, depth)
        entry = {
            "move_index": index,
            "fen": fen,
            "san": san,
            "side": mover.value if mover else None,
            "evaluation": result.score,
            "best_move": result.best_move,
            "classification": None,
        }
        if mover is not None:
            # Оценка с точки зрения белых; для чёрных переворачиваем
            sign = 1 if mover is Side.WHITE else -1
            drop = sign * previous_score - sign * result.score
            entry["classification"] = classify(drop)
        evaluations.append(entry)
        previous_score = result.score

    analysis = {
        "evaluated": True,
        "evaluations": evaluations,
        "accuracy": {
            Side.WHITE.value: accuracy(evaluations, Side.WHITE),
            Side.BLACK.value: accuracy(evaluations, Side.BLACK),
        },
        "analyzed_at": datetime.now(timezone.utc).isoformat(),
    }
    await asyncio.to_thread(repository.save_analysis, session_id, analysis)
    logger.info("Analysis: session %s graded, %d positions", session_id, len(evaluations))
    return analysis
