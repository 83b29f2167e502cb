"""
Обработка сообщений WebSocket: авторизация, затем разбор намерений и
передача их в реестр, очередь, учёт отключений и бота.
Ответ на отклонённое намерение получает только отправитель.
"""
import logging

from fastapi import WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from . import payloads
from .auth import verify_token
from .constants import LOBBY_GROUP, Status
from .matchmaking import Matched
from .messages import (
    AuthMessage,
    CreateSessionMessage,
    EnqueueMessage,
    MoveMessage,
    SessionMessage,
    SimpleMessage,
    parse_message,
)
from .registry import JoinFailure, MoveRejected
from .rules import Move
from .services import Services
from .ws_manager import Connection

logger = logging.getLogger(__name__)

GUEST_PREFIX = "guest-"


def _reply(services: Services, conn: Connection, payload: dict) -> None:
    services.manager.post_to(conn.connection_id, payload)


def _fail(services: Services, conn: Connection, message: str) -> None:
    logger.info("WS: rejected for %s: %s", conn.player_id, message)
    _reply(services, conn, payloads.error(message))


def _already_busy(services: Services, conn: Connection) -> bool:
    if services.registry.find_seat(conn.player_id) is not None:
        _fail(services, conn, "already in a session")
        return True
    if services.queue.is_queued(conn.player_id):
        _fail(services, conn, "already queued")
        return True
    return False


def _on_create(services: Services, conn: Connection, msg: CreateSessionMessage) -> None:
    if _already_busy(services, conn):
        return
    registry = services.registry
    session_id = registry.create_session(
        conn.player_id,
        msg.time_control,
        randomize_side=msg.randomize_side,
        is_private=msg.is_private,
        bot_game=msg.bot_game,
        bot_strength=msg.bot_strength,
        identity_id=conn.identity_id,
    )
    session = registry.get(session_id)
    services.manager.subscribe(conn.connection_id, session_id)
    _reply(services, conn, payloads.session_created(session, session.side_of(conn.player_id), services.now()))
    if session.status is Status.WAITING and not session.is_private:
        services.post_lobby()


def _on_join(services: Services, conn: Connection, msg: SessionMessage) -> None:
    registry = services.registry
    session = registry.get(msg.session_id)
    seat = registry.find_seat(conn.player_id)
    busy_elsewhere = seat is not None and session is not None and seat[0] is not session
    if busy_elsewhere and session.status is not Status.FINISHED:
        _fail(services, conn, "already in a session")
        return
    was_waiting = session is not None and session.status is Status.WAITING
    result = registry.join_session(msg.session_id, conn.player_id, conn.identity_id)
    if isinstance(result, JoinFailure):
        _fail(services, conn, result.value)
        return
    if session.status is not Status.FINISHED and services.queue.dequeue(conn.player_id):
        # Сел за партию, пока ждал в очереди
        services.manager.post(LOBBY_GROUP, payloads.queue_counts(services.queue.counts()))
    services.manager.subscribe(conn.connection_id, session.id)
    _reply(services, conn, payloads.session_joined(session, result, services.now()))
    if was_waiting and session.status is Status.ACTIVE:
        services.manager.post(session.id, payloads.opponent_joined(session, conn.player_id), exclude=conn.connection_id)
        if not session.is_private:
            services.post_lobby()


def _on_move(services: Services, conn: Connection, msg: MoveMessage) -> None:
    # board_updated и session_over рассылают слушатели реестра
    outcome = services.registry.apply_move(
        msg.session_id,
        conn.player_id,
        Move(msg.from_square, msg.to_square, msg.promotion),
    )
    if isinstance(outcome, MoveRejected):
        _fail(services, conn, outcome.reason.value)


def _on_resign(services: Services, conn: Connection, msg: SessionMessage) -> None:
    if not services.registry.resign(msg.session_id, conn.player_id):
        _fail(services, conn, "cannot resign")


def _on_offer_draw(services: Services, conn: Connection, msg: SessionMessage) -> None:
    side = services.registry.offer_draw(msg.session_id, conn.player_id)
    if side is None:
        _fail(services, conn, "cannot offer draw")
        return
    services.manager.post(msg.session_id, payloads.draw_offered(msg.session_id, side), exclude=conn.connection_id)


def _on_accept_draw(services: Services, conn: Connection, msg: SessionMessage) -> None:
    if not services.registry.accept_draw(msg.session_id, conn.player_id):
        _fail(services, conn, "no draw offer to accept")


def _on_decline_draw(services: Services, conn: Connection, msg: SessionMessage) -> None:
    if not services.registry.decline_draw(msg.session_id, conn.player_id):
        _fail(services, conn, "no draw offer to decline")
        return
    services.manager.post(msg.session_id, payloads.draw_declined(msg.session_id), exclude=conn.connection_id)


def _on_sync_clock(services: Services, conn: Connection, msg: SessionMessage) -> None:
    registry = services.registry
    session = registry.get(msg.session_id)
    if session is None:
        _fail(services, conn, "session not found")
        return
    if registry.check_timeout(msg.session_id):
        return
    if session.is_bot_turn and not services.driver.is_thinking(session.id):
        # Бот мог остаться без хода после ошибки оценщика
        services.driver.retry(session.id)
    _reply(services, conn, payloads.clock_sync(session, services.now()))


def _on_subscribe(services: Services, conn: Connection, msg: SessionMessage) -> None:
    session = services.registry.get(msg.session_id)
    if session is None or (session.is_private and session.side_of(conn.player_id) is None):
        _fail(services, conn, "session not found")
        return
    services.manager.subscribe(conn.connection_id, session.id)
    _reply(services, conn, payloads.session_view(session, services.now()))


def _on_enqueue(services: Services, conn: Connection, msg: EnqueueMessage) -> None:
    if services.registry.find_seat(conn.player_id) is not None:
        _fail(services, conn, "already in a session")
        return
    result = services.queue.enqueue(conn.player_id, conn.identity_id, conn.connection_id, msg.time_control)
    manager = services.manager
    if isinstance(result, Matched):
        manager.subscribe(conn.connection_id, result.session_id)
        manager.subscribe(result.opponent_address, result.session_id)
        manager.post_to(result.opponent_address, payloads.match_found(result, for_opponent=True))
        _reply(services, conn, payloads.match_found(result))
    else:
        _reply(services, conn, payloads.queued(result.time_control))
    manager.post(LOBBY_GROUP, payloads.queue_counts(services.queue.counts()))


def _on_cancel_queue(services: Services, conn: Connection, msg: SimpleMessage) -> None:
    if services.queue.dequeue(conn.player_id):
        services.manager.post(LOBBY_GROUP, payloads.queue_counts(services.queue.counts()))


def _on_reconnect(services: Services, conn: Connection, msg: SimpleMessage) -> None:
    reconnection = services.tracker.reconnect(conn.player_id, conn.identity_id)
    if reconnection is None:
        _fail(services, conn, "no session to reconnect")
        return
    session = services.registry.get(reconnection.session_id)
    manager = services.manager
    manager.subscribe(conn.connection_id, session.id)
    _reply(services, conn, payloads.session_joined(session, reconnection.side, services.now()))
    manager.post(
        session.id,
        payloads.opponent_reconnected(session.id, reconnection.side),
        exclude=conn.connection_id,
    )
    if reconnection.opponent_disconnected:
        _reply(services, conn, payloads.opponent_disconnected(session.id, reconnection.side.opponent))
    services.driver.request_move(session.id)


def _on_pending(services: Services, conn: Connection, msg: SimpleMessage) -> None:
    _reply(services, conn, payloads.pending_sessions(services.registry.pending_sessions()))


def _on_auth(services: Services, conn: Connection, msg: AuthMessage) -> None:
    _fail(services, conn, "already authenticated")


HANDLERS = {
    "auth": _on_auth,
    "create_session": _on_create,
    "join_session": _on_join,
    "move": _on_move,
    "resign": _on_resign,
    "offer_draw": _on_offer_draw,
    "accept_draw": _on_accept_draw,
    "decline_draw": _on_decline_draw,
    "sync_clock": _on_sync_clock,
    "subscribe_session": _on_subscribe,
    "enqueue": _on_enqueue,
    "cancel_queue": _on_cancel_queue,
    "reconnect": _on_reconnect,
    "get_pending_sessions": _on_pending,
}


def handle_ws_message(conn: Connection, raw: str, services: Services) -> None:
    """
    Обрабатывает одно сообщение от уже авторизованного клиента.
    Синхронно: между разбором и ответом нет точек переключения.
    """
    try:
        msg = parse_message(raw)
    except ValidationError as e:
        logger.warning("WS: invalid message from %s: %d errors", conn.player_id, e.error_count())
        _reply(services, conn, payloads.error("invalid message"))
        return
    logger.info("WS: msg from %s type=%s", conn.player_id, msg.type)
    HANDLERS[msg.type](services, conn, msg)


def resolve_player(msg: AuthMessage) -> tuple[str, str | None] | None:
    """
    (player_id, identity_id) по первому сообщению. Гости получают
    префикс, чтобы не совпасть с учётной записью или ботом.
    """
    if msg.token:
        identity_id = verify_token(msg.token)
        if identity_id is None:
            return None
        return identity_id, identity_id
    if msg.player_id:
        return GUEST_PREFIX + msg.player_id, None
    return None


def attach_connection(services: Services, conn: Connection) -> None:
    """
    Подписка нового подключения на лобби. Если игрок числился
    отключившимся, отметка снимается сразу, без сообщения reconnect.
    """
    manager = services.manager
    manager.subscribe(conn.connection_id, LOBBY_GROUP)
    if not services.tracker.is_disconnected(conn.player_id):
        return
    reconnection = services.tracker.reconnect(conn.player_id, conn.identity_id)
    if reconnection is None:
        return
    manager.subscribe(conn.connection_id, reconnection.session_id)
    manager.post(
        reconnection.session_id,
        payloads.opponent_reconnected(reconnection.session_id, reconnection.side),
        exclude=conn.connection_id,
    )


def handle_disconnect(services: Services, conn: Connection) -> None:
    player_id = conn.player_id
    manager = services.manager
    if services.queue.dequeue(player_id):
        manager.post(LOBBY_GROUP, payloads.queue_counts(services.queue.counts()))
    record = services.tracker.mark_disconnected(player_id)
    if record is not None:
        manager.post(record.session_id, payloads.opponent_disconnected(record.session_id, record.side))
    # session_over и обновление лобби рассылает слушатель реестра
    services.registry.cleanup_pending(player_id)


async def ws_auth_and_loop(ws: WebSocket, services: Services) -> None:
    """
    Первое сообщение: auth с токеном или гостевым player_id.
    Дальше цикл приёма сообщений.
    """
    manager = services.manager
    conn = None
    try:
        await ws.accept()
        logger.info("WS: accepted, waiting for auth")
        raw = await ws.receive_text()
        try:
            msg = parse_message(raw)
        except ValidationError:
            msg = None
        if not isinstance(msg, AuthMessage):
            logger.warning("WS: expected auth, closing 4001")
            await ws.close(code=4001)
            return
        player = resolve_player(msg)
        if player is None:
            logger.warning("WS: auth failed (invalid token or no player_id)")
            await ws.close(code=4003)
            return
        player_id, identity_id = player
        conn = await manager.connect(ws, player_id, identity_id)
        attach_connection(services, conn)
        logger.info("WS: auth ok player_id=%s connection=%s", player_id, conn.connection_id)
        _reply(services, conn, payloads.queue_counts(services.queue.counts()))
        _reply(services, conn, payloads.pending_sessions(services.registry.pending_sessions()))
        while True:
            handle_ws_message(conn, await ws.receive_text(), services)
    except WebSocketDisconnect as e:
        logger.info(
            "WS: client disconnected code=%s reason=%s player_id=%s",
            e.code, e.reason or "", conn.player_id if conn else None,
        )
    except Exception as e:
        logger.exception("WS: error player_id=%s: %s", conn.player_id if conn else None, e)
    finally:
        # Замещённое новым подключением соединение ничего не снимает
        if conn is not None and manager.disconnect(conn.connection_id):
            handle_disconnect(services, conn)
            logger.info("WS: disconnected player_id=%s", conn.player_id)
