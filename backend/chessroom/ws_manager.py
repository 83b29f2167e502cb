"""
Менеджер WebSocket: подключения, адреса для ответов и группы рассылки
(партии и лобби). Все исходящие сообщения проходят через одну очередь,
поэтому клиенты получают их в порядке постановки.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, ws: WebSocket, connection_id: str, player_id: str, identity_id: str | None):
        self.ws = ws
        self.connection_id = connection_id
        self.player_id = player_id
        self.identity_id = identity_id


class WSManager:
    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._by_player: dict[str, str] = {}
        self._groups: dict[str, set[str]] = defaultdict(set)
        self._outbox: asyncio.Queue[tuple[str | None, str | None, dict[str, Any], str | None]] = asyncio.Queue()

    async def connect(
        self,
        ws: WebSocket,
        player_id: str,
        identity_id: str | None = None,
    ) -> Connection:
        old_id = self._by_player.get(player_id)
        if old_id is not None:
            old = self._connections.pop(old_id, None)
            self._leave_groups(old_id)
            if old is not None:
                try:
                    await old.ws.close(code=4000)
                except Exception as e:
                    logger.debug("close old connection %s: %s", old_id, e)
        conn = Connection(ws, uuid.uuid4().hex, player_id, identity_id)
        self._connections[conn.connection_id] = conn
        self._by_player[player_id] = conn.connection_id
        return conn

    def disconnect(self, connection_id: str) -> bool:
        """Убрать подключение. True если оно было текущим для игрока."""
        conn = self._connections.pop(connection_id, None)
        self._leave_groups(connection_id)
        if conn is None:
            return False
        if self._by_player.get(conn.player_id) == connection_id:
            del self._by_player[conn.player_id]
            return True
        return False

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def address_of(self, player_id: str) -> str | None:
        return self._by_player.get(player_id)

    def subscribe(self, connection_id: str, group: str) -> None:
        self._groups[group].add(connection_id)

    def members(self, group: str) -> set[str]:
        return set(self._groups.get(group, ()))

    def post(self, group: str, payload: dict[str, Any], exclude: str | None = None) -> None:
        """Поставить сообщение в очередь для всей группы."""
        self._outbox.put_nowait((group, None, payload, exclude))

    def post_to(self, connection_id: str, payload: dict[str, Any]) -> None:
        """Поставить сообщение в очередь для одного адреса."""
        self._outbox.put_nowait((None, connection_id, payload, None))

    async def run(self) -> None:
        while True:
            item = await self._outbox.get()
            await self._deliver(*item)

    async def flush(self) -> None:
        while not self._outbox.empty():
            await self._deliver(*self._outbox.get_nowait())

    async def _deliver(
        self,
        group: str | None,
        connection_id: str | None,
        payload: dict[str, Any],
        exclude: str | None,
    ) -> None:
        targets = [connection_id] if connection_id else sorted(self.members(group))
        for target in targets:
            if target == exclude:
                continue
            conn = self._connections.get(target)
            if conn is None:
                continue
            try:
                await conn.ws.send_json(payload)
            except Exception as e:
                logger.warning("send to %s (%s): %s", conn.player_id, target, e)

    def _leave_groups(self, connection_id: str) -> None:
        for members in self._groups.values():
            members.discard(connection_id)
