import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from core.ratelimits import RateLedger
from services.hub.hub import BroadcastHub
from shared.chat.envelopes import ClearEnvelope, Envelope
from shared.errors import RateLimited, RoomNotFound, RoomPaused
from shared.logging.logger import get_logger
from shared.utils.ids import new_room_id

log = get_logger("core.registry")

DEFAULT_COOLDOWN_SECONDS = 2.0


@dataclass
class Room:
    room_id: str
    hub: BroadcastHub
    paused: bool = False
    # seconds; 0 means "use the default cooldown"
    slow_mode: float = 0.0
    created_at: float = field(default_factory=time.time)


class RoomRegistry:
    """
    Authoritative in-memory map of rooms.

    Constructed once by the runtime and handed to the HTTP API and the
    websocket gateway. Every read and write of room state happens under a
    single lock which is held briefly and never across I/O. Rooms live
    until process exit.
    """

    def __init__(
        self,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        default_cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = new_room_id,
    ):
        self._loop = loop
        self._default_cooldown = float(default_cooldown)
        self._clock = clock
        self._id_factory = id_factory
        self._lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}
        self._ledger = RateLedger()
        # Never shrinks, so a swept entry can no longer block any room.
        self._longest_cooldown = self._default_cooldown

    # ------------------------------------------------------------------
    # PROVISIONING
    # ------------------------------------------------------------------

    def create_room(self) -> str:
        with self._lock:
            room_id = self._id_factory()
            while room_id in self._rooms:
                log.warning(f"Room id collision on {room_id}; regenerating")
                room_id = self._id_factory()

            hub = BroadcastHub(room_id, loop=self._loop)
            self._rooms[room_id] = Room(room_id=room_id, hub=hub)

        hub.start()
        log.info(f"[{room_id}] Room created")
        return room_id

    def lookup(self, room_id: str) -> Room:
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def __contains__(self, room_id: object) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    # ------------------------------------------------------------------
    # ADMIN MUTATIONS (IDEMPOTENT)
    # ------------------------------------------------------------------

    def set_paused(self, room_id: str, paused: bool) -> None:
        with self._lock:
            room = self._require(room_id)
            room.paused = bool(paused)
        log.info(f"[{room_id}] {'Paused' if paused else 'Resumed'}")

    def set_slow_mode(self, room_id: str, seconds: float) -> float:
        seconds = max(0.0, float(seconds))
        with self._lock:
            room = self._require(room_id)
            room.slow_mode = seconds
            self._longest_cooldown = max(self._longest_cooldown, seconds)
        log.info(f"[{room_id}] Slow mode set to {seconds:.3f}s")
        return seconds

    def request_clear(self, room_id: str) -> None:
        self.publish(room_id, ClearEnvelope())
        log.info(f"[{room_id}] Clear requested")

    def publish(self, room_id: str, envelope: Envelope) -> None:
        room = self.lookup(room_id)
        room.hub.publish(envelope)

    # ------------------------------------------------------------------
    # INGRESS GATE
    # ------------------------------------------------------------------

    def admit(self, room_id: str, identity: str, now: Optional[float] = None) -> None:
        """
        Pause check plus cooldown check-and-record, as one guarded region.

        Raises RoomNotFound, RoomPaused or RateLimited. On return the
        identity's new acceptance time has been recorded.
        """
        now = self._clock() if now is None else now
        with self._lock:
            room = self._require(room_id)
            if room.paused:
                raise RoomPaused(room_id)

            cooldown = room.slow_mode if room.slow_mode > 0 else self._default_cooldown
            wait = self._ledger.try_acquire(
                room_id, identity, cooldown, now, retention=self._longest_cooldown
            )
            if wait > 0:
                raise RateLimited(wait)

    # ------------------------------------------------------------------
    # READ-ONLY VISIBILITY
    # ------------------------------------------------------------------

    def status(self, room_id: str) -> Dict[str, Any]:
        with self._lock:
            room = self._require(room_id)
            payload = {
                "roomId": room.room_id,
                "paused": room.paused,
                "slowModeMs": int(round(room.slow_mode * 1000)),
                "createdAt": room.created_at,
            }
            hub = room.hub
        payload["hub"] = hub.snapshot()
        return payload

    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        with self._lock:
            hubs = [room.hub for room in self._rooms.values()]

        for hub in hubs:
            hub.stop()
        if hubs:
            await asyncio.gather(*(hub.wait_closed() for hub in hubs), return_exceptions=True)
        log.info(f"Registry shutdown complete ({len(hubs)} room(s))")

    def _require(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room
