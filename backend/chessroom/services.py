"""
Сборка ядра: реестр, очередь, учёт отключений, бот, запись в базу и
менеджер WebSocket. Объекты создаются один раз в lifespan приложения.
"""
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from . import payloads
from .bot import OpponentDriver
from .clock import LoopScheduler, Scheduler
from .constants import LOBBY_GROUP
from .disconnects import DisconnectionTracker
from .engine import Evaluator, UciEvaluator
from .matchmaking import MatchmakingQueue
from .registry import MoveAccepted, SessionRegistry
from .repository import SessionRepository
from .rules import ChessRules
from .session import Session
from .store import SnapshotWriter
from .ws_manager import WSManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Any
    rules: ChessRules
    registry: SessionRegistry
    queue: MatchmakingQueue
    tracker: DisconnectionTracker
    driver: OpponentDriver
    evaluator: Evaluator
    manager: WSManager
    repository: SessionRepository | None
    writer: SnapshotWriter | None
    now: Callable[[], float]

    def post_lobby(self) -> None:
        """Разослать лобби список открытых партий и размеры очередей."""
        self.manager.post(LOBBY_GROUP, payloads.pending_sessions(self.registry.pending_sessions()))
        self.manager.post(LOBBY_GROUP, payloads.queue_counts(self.queue.counts()))


def build_services(
    config: Any,
    repository: SessionRepository | None = None,
    evaluator: Evaluator | None = None,
    scheduler: Scheduler | None = None,
    now: Callable[[], float] = time.monotonic,
    manager: WSManager | None = None,
) -> Services:
    rules = ChessRules()
    writer = SnapshotWriter(repository) if repository is not None else None
    registry = SessionRegistry(
        rules,
        scheduler or LoopScheduler(),
        now=now,
        store=writer,
        idle_seconds=config.idle_abandon_seconds,
        retention_seconds=config.finished_retention_seconds,
    )
    evaluator = evaluator or UciEvaluator(config.stockfish_path)
    services = Services(
        config=config,
        rules=rules,
        registry=registry,
        queue=MatchmakingQueue(registry, now=now, stale_seconds=config.queue_stale_seconds),
        tracker=DisconnectionTracker(registry, now=now, grace_seconds=config.reconnect_grace_seconds),
        driver=OpponentDriver(
            registry,
            evaluator,
            think_seconds=(config.bot_think_min_seconds, config.bot_think_max_seconds),
        ),
        evaluator=evaluator,
        manager=manager or WSManager(),
        repository=repository,
        writer=writer,
        now=now,
    )
    _wire(services)
    return services


def _wire(services: Services) -> None:
    manager = services.manager

    def broadcast_move(session: Session, outcome: MoveAccepted) -> None:
        manager.post(session.id, payloads.board_updated(outcome))

    def broadcast_game_over(session: Session) -> None:
        manager.post(session.id, payloads.session_over(session))
        if len(session.players) < 2:
            # Ожидавшая партия пропала из лобби
            manager.post(LOBBY_GROUP, payloads.pending_sessions(services.registry.pending_sessions()))

    services.registry.on_move.append(broadcast_move)
    services.registry.on_game_over.append(broadcast_game_over)
    services.registry.on_bot_turn = services.driver.request_move
    logger.debug("Services: registry listeners wired")
