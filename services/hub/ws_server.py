"""Websocket gateway: ``/ws/<room_id>`` -> ConnectionSession."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from core.registry import RoomRegistry
from services.hub.session import ConnectionSession
from shared.config.system import WebSocketConfig
from shared.errors import RoomNotFound
from shared.logging.logger import get_logger
from shared.utils.ids import is_room_id

log = get_logger("services.hub.ws")

WS_PREFIX = "/ws/"
POLICY_VIOLATION = 1008


def room_id_from_path(path: str) -> Optional[str]:
    path = (path or "").split("?", 1)[0]
    if not path.startswith(WS_PREFIX):
        return None
    room_id = path[len(WS_PREFIX):].strip("/")
    return room_id if is_room_id(room_id) else None


def _remote(connection: Any) -> str:
    addr = getattr(connection, "remote_address", None)
    if isinstance(addr, (tuple, list)) and addr:
        return str(addr[0])
    return str(addr or "-")


class WebSocketGateway:
    """
    Accepts display-surface connections and attaches each to its room hub.

    Library-level keepalive is disabled: pings and the read deadline are
    owned by the session so that all writes go through its outbound pump.
    """

    def __init__(self, registry: RoomRegistry, config: WebSocketConfig):
        self._registry = registry
        self._config = config
        self._server: Optional[Server] = None

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(
            self.handle,
            self._config.host,
            int(self._config.port),
            process_request=self.process_request,
            max_size=self._config.max_frame_bytes,
            ping_interval=None,
            ping_timeout=None,
        )
        log.info(
            "Websocket gateway running on %s:%s",
            self._config.host,
            self.port,
        )

    @property
    def port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return int(list(self._server.sockets)[0].getsockname()[1])

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        log.info("Websocket gateway stopped")

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Refuse the upgrade with 404 before the handshake for unknown rooms."""
        room_id = room_id_from_path(request.path)
        if room_id is not None and room_id in self._registry:
            return None
        log.info(f"Websocket upgrade refused: {request.path}")
        return connection.respond(HTTPStatus.NOT_FOUND, "room not found\n")

    async def handle(self, connection: ServerConnection) -> None:
        path = connection.request.path if connection.request else ""
        room_id = room_id_from_path(path)

        try:
            if room_id is None:
                raise RoomNotFound(path)
            room = self._registry.lookup(room_id)
        except RoomNotFound:
            log.info(f"Rejected websocket for unknown room: {path}")
            await connection.close(POLICY_VIOLATION, "room not found")
            return

        session = ConnectionSession(
            room.hub,
            connection,
            queue_size=self._config.queue_size,
            ping_interval=self._config.ping_interval,
            read_timeout=self._config.read_timeout,
            write_timeout=self._config.write_timeout,
            remote=_remote(connection),
        )
        await session.run()


__all__ = ["WebSocketGateway", "room_id_from_path"]
