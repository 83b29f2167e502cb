"""Тесты chessroom/ws_handlers.py с поддельным WebSocket"""
import asyncio
from types import SimpleNamespace

from chessroom import auth
from chessroom.constants import Status
from chessroom.sweeper import Sweeper
from chessroom.ws_handlers import handle_disconnect, handle_ws_message, ws_auth_and_loop

from conftest import FakeWebSocket, connect, send


def test_create_join_move_resign(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        send(services, a, type="create_session", time_control=5)
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        assert ws_b.last("pending_sessions")["sessions"][0]["id"] == session_id

        send(services, b, type="join_session", session_id=session_id)
        send(services, b, type="move", session_id=session_id, **{"from": "e7", "to": "e5"})
        send(services, a, type="move", session_id=session_id, **{"from": "e2", "to": "e4"})
        send(services, b, type="resign", session_id=session_id)
        await services.manager.flush()
        return ws_a, ws_b

    ws_a, ws_b = asyncio.run(scenario())
    assert ws_a.types() == ["session_created", "opponent_joined", "board_updated", "session_over"]
    assert ws_b.types() == ["session_joined", "error", "board_updated", "session_over"]
    assert ws_b.last("error")["message"] == "not your turn"
    assert ws_a.last("board_updated")["last_move"] == {"from": "e2", "to": "e4"}
    over = ws_a.last("session_over")
    assert (over["winner"], over["reason"]) == ("white", "resignation")
    assert ws_b.last("session_joined")["color"] == "black"


def test_draw_offer_and_decline(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        send(services, a, type="create_session", is_private=True)
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        send(services, b, type="join_session", session_id=session_id)
        send(services, a, type="offer_draw", session_id=session_id)
        send(services, b, type="decline_draw", session_id=session_id)
        send(services, b, type="accept_draw", session_id=session_id)
        await services.manager.flush()
        return ws_a, ws_b

    ws_a, ws_b = asyncio.run(scenario())
    assert ws_a.types() == ["session_created", "opponent_joined", "draw_declined"]
    assert ws_b.types() == ["session_joined", "draw_offered", "error"]
    # Приватная партия в лобби не попадает
    assert all(not m["sessions"] for m in ws_b.sent if m["type"] == "pending_sessions")


def test_enqueue_match(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        send(services, a, type="enqueue", time_control=5)
        send(services, b, type="enqueue", time_control=5)
        await services.manager.flush()
        return ws_a, ws_b

    ws_a, ws_b = asyncio.run(scenario())
    assert ws_a.types() == ["queued", "match_found"]
    assert ws_b.types() == ["match_found"]
    found_a, found_b = ws_a.last("match_found"), ws_b.last("match_found")
    assert (found_a["color"], found_b["color"]) == ("white", "black")
    assert found_a["time_remaining"] == {"white": 300000, "black": 300000}
    assert found_a["history"] == []
    assert ws_a.last("queue_counts")["counts"]["5"] == 0


def test_invalid_message_gets_error(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        handle_ws_message(a, "{broken", services)
        send(services, a, type="move", session_id="abc123", **{"from": "z9", "to": "e4"})
        send(services, a, type="join_session", session_id="zzzzzz")
        await services.manager.flush()
        return ws_a

    ws_a = asyncio.run(scenario())
    assert [m["message"] for m in ws_a.sent] == ["invalid message", "invalid message", "session not found"]


def test_disconnect_and_reconnect(services, clock):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        send(services, a, type="create_session")
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        send(services, b, type="join_session", session_id=session_id)

        assert services.manager.disconnect(b.connection_id)
        handle_disconnect(services, b)
        await services.manager.flush()
        assert ws_a.types()[-1] == "opponent_disconnected"

        clock.advance(30)
        b2, ws_b2 = await connect(services, "guest-b")
        send(services, b2, type="reconnect")
        await services.manager.flush()
        return ws_a, ws_b2, session_id

    ws_a, ws_b2, session_id = asyncio.run(scenario())
    assert ws_a.types()[-1] == "opponent_reconnected"
    joined = ws_b2.last("session_joined")
    assert joined["session_id"] == session_id
    assert joined["time_remaining"]["white"] == 600000 - 30000
    assert services.registry.get(session_id).status is Status.ACTIVE


def test_bot_game_over_socket(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        send(services, a, type="create_session", bot_game=True)
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        send(services, a, type="move", session_id=session_id, **{"from": "e2", "to": "e4"})
        await services.driver.wait_idle()
        await services.manager.flush()
        return ws_a

    ws_a = asyncio.run(scenario())
    updates = [m for m in ws_a.sent if m["type"] == "board_updated"]
    assert len(updates) == 2
    assert len(updates[1]["history"]) == 2


def test_loop_requires_auth_first(services):
    ws = FakeWebSocket([{"type": "create_session"}])
    asyncio.run(ws_auth_and_loop(ws, services))
    assert ws.accepted
    assert ws.closed_with == 4001


def test_loop_rejects_bad_token(services, monkeypatch):
    monkeypatch.setattr(auth, "get_config", lambda: SimpleNamespace(auth_secret="s3cret", debug=False))
    ws = FakeWebSocket([{"type": "auth", "token": "someone.forged"}])
    asyncio.run(ws_auth_and_loop(ws, services))
    assert ws.closed_with == 4003


def test_loop_guest_session_cleaned_up_on_leave(services):
    ws = FakeWebSocket([
        {"type": "auth", "player_id": "a"},
        {"type": "create_session"},
    ])
    asyncio.run(ws_auth_and_loop(ws, services))
    assert ws.closed_with is None
    assert len(services.registry) == 0
    assert services.manager.address_of("guest-a") is None


def test_join_takes_player_out_of_queue(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        c, ws_c = await connect(services, "guest-c")
        send(services, a, type="enqueue", time_control=5)
        send(services, b, type="create_session", time_control=5)
        await services.manager.flush()
        session_id = ws_b.last("session_created")["session_id"]
        send(services, a, type="join_session", session_id=session_id)
        send(services, c, type="enqueue", time_control=5)
        await services.manager.flush()
        return ws_a, ws_c, session_id

    ws_a, ws_c, session_id = asyncio.run(scenario())
    assert ws_a.types() == ["queued", "session_joined"]
    assert ws_c.types() == ["queued"]
    # Очередь не создала для guest-a вторую партию
    assert len(services.registry) == 1
    assert services.registry.find_seat("guest-a")[0].id == session_id
    assert services.queue.is_queued("guest-c")


def test_seated_player_cannot_join_second_session(services):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, ws_b = await connect(services, "guest-b")
        c, ws_c = await connect(services, "guest-c")
        send(services, a, type="create_session")
        send(services, c, type="create_session")
        await services.manager.flush()
        first = ws_a.last("session_created")["session_id"]
        second = ws_c.last("session_created")["session_id"]
        send(services, b, type="join_session", session_id=first)
        send(services, b, type="join_session", session_id=second)
        send(services, b, type="join_session", session_id=first)
        await services.manager.flush()
        return ws_b, second

    ws_b, second = asyncio.run(scenario())
    assert ws_b.types() == ["session_joined", "error", "session_joined"]
    assert ws_b.last("error")["message"] == "already in a session"
    assert services.registry.get(second).status is Status.WAITING


def test_new_connection_clears_disconnect_mark(services, clock):
    async def scenario():
        a, ws_a = await connect(services, "guest-a")
        b, _ = await connect(services, "guest-b")
        send(services, a, type="create_session")
        await services.manager.flush()
        session_id = ws_a.last("session_created")["session_id"]
        send(services, b, type="join_session", session_id=session_id)
        send(services, a, type="move", session_id=session_id, **{"from": "e2", "to": "e4"})

        assert services.manager.disconnect(b.connection_id)
        handle_disconnect(services, b)
        b2, ws_b2 = await connect(services, "guest-b")
        send(services, b2, type="join_session", session_id=session_id)
        clock.advance(30)
        send(services, b2, type="move", session_id=session_id, **{"from": "e7", "to": "e5"})
        clock.advance(31)
        Sweeper(services).run_once()
        await services.manager.flush()
        return ws_a, ws_b2, session_id

    ws_a, ws_b2, session_id = asyncio.run(scenario())
    assert not services.tracker.is_disconnected("guest-b")
    assert services.registry.get(session_id).status is Status.ACTIVE
    assert "session_over" not in ws_a.types()
    assert ws_a.types()[-3:] == ["opponent_disconnected", "opponent_reconnected", "board_updated"]
    assert ws_b2.last("board_updated")["last_move"] == {"from": "e7", "to": "e5"}
