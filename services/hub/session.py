from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from websockets.exceptions import ConnectionClosed

from services.hub.hub import BroadcastHub, OutboundQueue
from shared.logging.logger import get_logger

log = get_logger("services.hub.session")


class DuplexConnection(Protocol):
    """The subset of a websockets connection a session relies on."""

    async def recv(self) -> Union[str, bytes]: ...

    async def send(self, message: str) -> None: ...

    async def ping(self, data: Optional[bytes] = None) -> Awaitable[Any]: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class ConnectionSession:
    """
    Bridges one live socket to its room hub.

    Responsibilities:
    - Inbound pump: read frames, relay them to the hub, enforce the rolling
      read deadline
    - Outbound pump: the only writer to the socket (data frames, pings and
      the final close frame)
    - Any read or write failure ends the session and unregisters it; the
      hub keeps serving everyone else
    """

    def __init__(
        self,
        hub: BroadcastHub,
        connection: DuplexConnection,
        *,
        queue_size: int = 256,
        ping_interval: float = 50.0,
        read_timeout: float = 60.0,
        write_timeout: float = 10.0,
        remote: str = "-",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = uuid.uuid4().hex[:8]
        self.hub = hub
        self.outbound = OutboundQueue(queue_size)
        self.remote = remote

        self._conn = connection
        self._ping_interval = ping_interval
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._clock = clock
        self._read_deadline = clock() + read_timeout
        self._closed = False

    # ------------------------------------------------------------------ #

    async def run(self) -> None:
        """Serve the connection until either side ends it."""
        self.hub.register(self)
        log.debug(f"[{self.hub.room_id}] session {self.session_id} open ({self.remote})")

        writer = asyncio.create_task(self._outbound_pump())
        try:
            await self._inbound_pump()
        finally:
            self.hub.unregister(self)
            await self._close_connection()
            if not writer.done():
                writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
            log.debug(f"[{self.hub.room_id}] session {self.session_id} closed")

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    def _touch(self, *_: Any) -> None:
        self._read_deadline = self._clock() + self._read_timeout

    async def _inbound_pump(self) -> None:
        try:
            while True:
                remaining = self._read_deadline - self._clock()
                if remaining <= 0:
                    log.info(
                        f"[{self.hub.room_id}] session {self.session_id} "
                        "read deadline exceeded"
                    )
                    return

                try:
                    message = await asyncio.wait_for(self._conn.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    # A pong may have moved the deadline; re-check.
                    continue

                self._touch()
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self.hub.publish_frame(message)

        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            log.debug(
                f"[{self.hub.room_id}] session {self.session_id} "
                f"connection closed by peer ({e})"
            )
        except Exception as e:
            log.warning(
                f"[{self.hub.room_id}] session {self.session_id} "
                f"ConnectionLost on read: {e}"
            )

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def _outbound_pump(self) -> None:
        next_ping = self._clock() + self._ping_interval
        try:
            while True:
                wait = max(0.0, next_ping - self._clock())
                try:
                    frame = await asyncio.wait_for(self.outbound.get(), timeout=wait)
                except asyncio.TimeoutError:
                    await self._send_ping()
                    next_ping = self._clock() + self._ping_interval
                    continue

                if frame is None:
                    # Hub closed the queue.
                    log.debug(
                        f"[{self.hub.room_id}] session {self.session_id} "
                        "outbound queue closed; sending close frame"
                    )
                    return

                await asyncio.wait_for(self._conn.send(frame), timeout=self._write_timeout)

        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            log.debug(
                f"[{self.hub.room_id}] session {self.session_id} "
                f"write on closed connection ({e})"
            )
        except Exception as e:
            log.warning(
                f"[{self.hub.room_id}] session {self.session_id} "
                f"ConnectionLost on write: {e!r}"
            )
        finally:
            await self._close_connection()

    async def _send_ping(self) -> None:
        pong_waiter = await asyncio.wait_for(self._conn.ping(), timeout=self._write_timeout)
        if isinstance(pong_waiter, asyncio.Future):
            pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, waiter: asyncio.Future) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self._touch()

    # ------------------------------------------------------------------ #

    async def _close_connection(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.wait_for(self._conn.close(), timeout=self._write_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.debug(f"[{self.hub.room_id}] session {self.session_id} close ignored: {e!r}")
