"""
Общие фикстуры: управляемое время, ручной планировщик таймеров,
заглушка оценщика и база SQLite в памяти.
"""
import json
import random
from collections.abc import Generator
from types import SimpleNamespace

import chess
import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import sessionmaker
from starlette.websockets import WebSocketDisconnect

from chessroom.engine import Evaluation
from chessroom.models import SessionSnapshot
from chessroom.registry import SessionRegistry
from chessroom.repository import SQLSessionRepository
from chessroom.rules import ChessRules
from chessroom.schema import Base
from chessroom.services import Services, build_services
from chessroom.ws_handlers import attach_connection, handle_ws_message


class FakeClock:
    """Источник времени для реестра: секунды, двигаются только вручную."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, when: float, callback, args) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """call_later поверх FakeClock: таймеры срабатывают в advance()."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.handles: list[FakeHandle] = []

    def call_later(self, delay, callback, *args) -> FakeHandle:
        handle = FakeHandle(self.clock.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        due = sorted(
            (h for h in self.handles if not h.cancelled and h.when <= self.clock.now),
            key=lambda h: h.when,
        )
        for handle in due:
            self.handles.remove(handle)
            handle.callback(*handle.args)


class StubEvaluator:
    """Оценщик без движка: первый ход из списка или первый легальный."""

    def __init__(self, moves: list[str] | None = None, scores: list[int] | None = None) -> None:
        self.moves = list(moves or [])
        self.scores = list(scores or [])
        self.best_move_calls: list[tuple[str, int]] = []
        self.evaluate_calls: list[str] = []
        self.fail = False
        self.closed = False

    async def best_move(self, fen: str, strength: int) -> str:
        self.best_move_calls.append((fen, strength))
        if self.fail:
            raise RuntimeError("engine down")
        if self.moves:
            return self.moves.pop(0)
        return next(iter(chess.Board(fen).legal_moves)).uci()

    async def evaluate(self, fen: str, depth: int = 12) -> Evaluation:
        self.evaluate_calls.append(fen)
        score = self.scores.pop(0) if self.scores else 0
        return Evaluation(score=score, best_move=None)

    async def close(self) -> None:
        self.closed = True


class RecordingStore:
    """Вместо SnapshotWriter: запоминает, что и когда сохранялось."""

    def __init__(self) -> None:
        self.snapshots: list[tuple[str, str, int]] = []
        self.results: list[tuple[str, str | None]] = []

    def save_snapshot(self, session) -> None:
        self.snapshots.append((session.id, session.status.value, session.ply))

    def record_result(self, session) -> None:
        self.results.append((session.id, session.result.winner))


def make_snapshot(**overrides) -> SessionSnapshot:
    data = dict(
        id="abc123",
        fen="start-fen",
        moves_uci=["e2e4"],
        history=["e4"],
        players={"white": "alice", "black": "bob"},
        identities={"white": "id-a"},
        time_control=5,
        remaining_ms={"white": 299000, "black": 300000},
        is_private=False,
        is_bot=False,
        bot_strength=1,
        status="active",
    )
    data.update(overrides)
    return SessionSnapshot(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def registry(clock: FakeClock, scheduler: FakeScheduler, store: RecordingStore) -> SessionRegistry:
    return SessionRegistry(ChessRules(), scheduler, now=clock, store=store, rng=random.Random(7))


@pytest.fixture
def config() -> SimpleNamespace:
    return SimpleNamespace(
        auth_secret="test-secret",
        debug=False,
        stockfish_path="stockfish",
        reconnect_grace_seconds=60.0,
        queue_stale_seconds=30.0,
        idle_abandon_seconds=3600.0,
        finished_retention_seconds=86400.0,
        sweep_interval_seconds=5.0,
        bot_think_min_seconds=0.0,
        bot_think_max_seconds=0.0,
    )


# SQLite в памяти, одно соединение на все потоки
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Таблицы пересоздаются для каждого теста."""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repository(session_factory: sessionmaker) -> SQLSessionRepository:
    return SQLSessionRepository(session_factory)


# WebSocket без сервера: сообщения копятся в sent
LOBBY_TYPES = {"pending_sessions", "queue_counts"}


class FakeWebSocket:
    def __init__(self, incoming: list[dict] | None = None) -> None:
        self.incoming = [json.dumps(m) for m in incoming or []]
        self.sent: list[dict] = []
        self.accepted = False
        self.closed_with = None

    async def accept(self) -> None:
        self.accepted = True

    async def receive_text(self) -> str:
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def types(self, lobby: bool = False) -> list[str]:
        return [m["type"] for m in self.sent if lobby or m["type"] not in LOBBY_TYPES]

    def last(self, message_type: str) -> dict:
        return [m for m in self.sent if m["type"] == message_type][-1]


@pytest.fixture
def services(config, clock, scheduler) -> Services:
    return build_services(config, evaluator=StubEvaluator(), scheduler=scheduler, now=clock)


async def connect(services: Services, player_id: str, identity_id: str | None = None):
    ws = FakeWebSocket()
    conn = await services.manager.connect(ws, player_id, identity_id)
    attach_connection(services, conn)
    return conn, ws


def send(services: Services, conn, **data) -> None:
    handle_ws_message(conn, json.dumps(data), services)
