"""Room-scoped broadcast hub.

One hub per room. The hub is an actor: a single asyncio task owns the
subscriber set and consumes a mailbox of register / unregister / publish
events, so the set is never touched from two places at once and every
subscriber sees frames in publish order.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Optional, Protocol, Set, Tuple

from shared.chat.envelopes import Envelope, encode_envelope
from shared.logging.logger import get_logger

log = get_logger("services.hub")

DEFAULT_QUEUE_SIZE = 256


class OutboundQueue:
    """
    Bounded FIFO between the hub (single producer) and one session's
    outbound pump (single consumer).

    Both ends run on the hub's event loop.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._maxsize = max(1, int(maxsize))
        self._items: Deque[str] = deque()
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def full(self) -> bool:
        return len(self._items) >= self._maxsize

    def offer(self, frame: str) -> bool:
        """Enqueue without waiting. False when full or closed."""
        if self._closed or self.full():
            return False
        self._items.append(frame)
        self._ready.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    async def get(self) -> Optional[str]:
        """
        Next frame in FIFO order.

        Frames enqueued before ``close()`` are still returned; afterwards
        ``None`` signals the end of the stream. Safe to cancel.
        """
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)


class Subscriber(Protocol):
    """What the hub needs from a session."""

    session_id: str
    outbound: OutboundQueue


class BroadcastHub:
    """
    Single-writer fan-out engine for one room.

    Public inputs (``register``, ``unregister``, ``publish``) may be called
    from any thread; they only post to the mailbox. ``start`` must run
    before events are processed.
    """

    def __init__(
        self,
        room_id: str,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.room_id = room_id
        self._loop = loop
        self._mailbox: asyncio.Queue = asyncio.Queue()
        self._subscribers: Set[Subscriber] = set()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

        # --------------------------------------------------
        # METRICS (READ-ONLY, ADDITIVE)
        # --------------------------------------------------
        self._metrics = {
            "published": 0,
            "delivered": 0,
            "evicted": 0,
        }
        # Replaced wholesale by the run loop; other threads only read it.
        self._stats: Dict[str, int] = dict(self._metrics, subscribers=0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the run loop on the hub's event loop (thread-safe)."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._loop.call_soon_threadsafe(self._spawn)

    def _spawn(self) -> None:
        if self._task is None and not self._stopped:
            self._task = self._loop.create_task(self._run())

    def stop(self) -> None:
        self._post("stop", None)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Mailbox inputs
    # ------------------------------------------------------------------

    def register(self, session: Subscriber) -> None:
        self._post("register", session)

    def unregister(self, session: Subscriber) -> None:
        self._post("unregister", session)

    def publish(self, envelope: Envelope) -> None:
        self._post("publish", encode_envelope(envelope))

    def publish_frame(self, frame: str) -> None:
        """Relay an already-encoded frame unmodified."""
        self._post("publish", frame)

    async def flush(self) -> None:
        """Resolve once every event posted before this call is handled."""
        done = asyncio.get_running_loop().create_future()
        self._post("sync", done)
        await done

    def _post(self, kind: str, item: Any) -> None:
        event: Tuple[str, Any] = (kind, item)
        if self._loop is None:
            self._mailbox.put_nowait(event)
            return
        self._loop.call_soon_threadsafe(self._mailbox.put_nowait, event)

    # ------------------------------------------------------------------
    # Run loop (sole owner of the subscriber set)
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        log.debug(f"[{self.room_id}] hub loop started")
        try:
            while True:
                kind, item = await self._mailbox.get()

                if kind == "register":
                    self._handle_register(item)
                elif kind == "unregister":
                    self._handle_unregister(item)
                elif kind == "publish":
                    self._handle_publish(item)
                elif kind == "sync":
                    if not item.done():
                        item.set_result(None)
                elif kind == "stop":
                    self._handle_stop()
                    self._refresh_stats()
                    return

                self._refresh_stats()
        except asyncio.CancelledError:
            log.debug(f"[{self.room_id}] hub loop cancelled")
            self._handle_stop()
            self._refresh_stats()
            raise

    def _handle_register(self, session: Subscriber) -> None:
        if session.outbound.closed:
            # Evicted or already unregistered: never re-enters.
            return
        self._subscribers.add(session)
        log.info(
            f"[{self.room_id}] session {session.session_id} registered "
            f"(subscribers={len(self._subscribers)})"
        )

    def _handle_unregister(self, session: Subscriber) -> None:
        if session not in self._subscribers:
            return
        self._subscribers.discard(session)
        session.outbound.close()
        log.info(
            f"[{self.room_id}] session {session.session_id} unregistered "
            f"(subscribers={len(self._subscribers)})"
        )

    def _handle_publish(self, frame: str) -> None:
        self._metrics["published"] += 1
        evicted = []

        for session in self._subscribers:
            if session.outbound.offer(frame):
                self._metrics["delivered"] += 1
            else:
                evicted.append(session)

        for session in evicted:
            self._subscribers.discard(session)
            session.outbound.close()
            self._metrics["evicted"] += 1
            log.warning(
                f"[{self.room_id}] session {session.session_id} evicted "
                "(outbound queue full)"
            )

    def _handle_stop(self) -> None:
        self._stopped = True
        for session in self._subscribers:
            session.outbound.close()
        self._subscribers.clear()
        log.debug(f"[{self.room_id}] hub loop stopped")

    def _refresh_stats(self) -> None:
        stats = dict(self._metrics)
        stats["subscribers"] = len(self._subscribers)
        self._stats = stats

    # ------------------------------------------------------------------
    # Read-only visibility (safe from any thread)
    # ------------------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return self._stats["subscribers"]

    def snapshot(self) -> Dict[str, int]:
        """Counters as of the last handled mailbox event."""
        return dict(self._stats)
