"""Тесты chessroom/sweeper.py"""
import asyncio

from chessroom.constants import Reason, Status
from chessroom.sweeper import Sweeper

from conftest import connect, send


def test_stale_queue_entry_notified(services, clock):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        send(services, a, type="enqueue", time_control=3)
        clock.advance(31)
        Sweeper(services).run_once()
        await services.manager.flush()
        return ws_a

    ws_a = asyncio.run(scenario())
    assert ws_a.types() == ["queued", "queue_timed_out"]
    assert ws_a.last("queue_counts")["counts"]["3"] == 0
    assert not services.queue.is_queued("guest-a")


def test_disconnected_player_forfeits(services, clock):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, _ = await connect(services, "guest-b")
        send(services, a, type="create_session")
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        send(services, b, type="join_session", session_id=session_id)
        services.tracker.mark_disconnected("guest-b")
        clock.advance(61)
        Sweeper(services).run_once()
        await services.manager.flush()
        return ws_a, session_id

    ws_a, session_id = asyncio.run(scenario())
    over = ws_a.last("session_over")
    assert (over["winner"], over["reason"]) == ("white", Reason.DISCONNECTION.value)
    assert services.registry.get(session_id).status is Status.FINISHED


def test_idle_sessions_abandoned_then_dropped(services, clock):
    session_id = services.registry.create_session("guest-a", 5)
    clock.advance(3600)
    Sweeper(services).run_once()
    assert services.registry.get(session_id).result.reason is Reason.ABANDONED
    clock.advance(86400)
    Sweeper(services).run_once()
    assert session_id not in services.registry
