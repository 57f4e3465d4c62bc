"""Per-identity posting cooldowns.

Identity here is a coarse fingerprint used for abuse mitigation only. It is
not unique per person and must never be treated as authentication.
"""

from __future__ import annotations

import ipaddress
import threading
from typing import Dict, Optional, Tuple


def coarse_origin(remote_addr: str, forwarded_for: Optional[str] = None) -> str:
    """
    Reduce a request origin to the part used for rate limiting.

    - First hop of X-Forwarded-For wins over the peer address
    - A trailing port is stripped
    - IPv6 addresses collapse to their /64 network
    """
    origin = (forwarded_for or "").split(",")[0].strip() or (remote_addr or "").strip()

    if origin.startswith("["):
        # [v6]:port
        origin = origin[1:].split("]", 1)[0]
    elif origin.count(":") == 1:
        origin = origin.rsplit(":", 1)[0]

    try:
        addr = ipaddress.ip_address(origin)
    except ValueError:
        return origin.lower()

    if addr.version == 6:
        network = ipaddress.ip_network(f"{addr}/64", strict=False)
        return str(network.network_address) + "/64"
    return str(addr)


def identity(origin: str, handle: str) -> str:
    return f"{origin}|{(handle or '').strip().lower()}"


SWEEP_INTERVAL_SECONDS = 60.0


class RateLedger:
    """
    Last-accepted timestamps keyed by (room_id, identity).

    ``try_acquire`` is the only writer: the cooldown check and the record of
    the new timestamp happen under one lock so two near-simultaneous posts
    from the same identity cannot both pass.
    """

    def __init__(self, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._lock = threading.Lock()
        self._last: Dict[Tuple[str, str], float] = {}
        self._sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None

    def try_acquire(
        self,
        room_id: str,
        key: str,
        cooldown: float,
        now: float,
        *,
        retention: Optional[float] = None,
    ) -> float:
        """
        Record ``now`` for the identity if its cooldown has elapsed.

        Returns 0.0 on success, otherwise the seconds left until the next
        post would be accepted (nothing is recorded).

        With ``retention`` set, entries at least that old are swept out at
        most once per sweep interval. It must cover the longest cooldown any
        room can apply.
        """
        slot = (room_id, key)
        with self._lock:
            if retention is not None:
                self._maybe_sweep(now, max(retention, cooldown))
            last = self._last.get(slot)
            if last is not None:
                elapsed = now - last
                if elapsed < cooldown:
                    return cooldown - elapsed
            self._last[slot] = now
            return 0.0

    def _maybe_sweep(self, now: float, retention: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        stale = [slot for slot, last in self._last.items() if now - last >= retention]
        for slot in stale:
            del self._last[slot]

    def last_accepted(self, room_id: str, key: str) -> Optional[float]:
        with self._lock:
            return self._last.get((room_id, key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
