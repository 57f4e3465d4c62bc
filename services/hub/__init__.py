"""Room broadcast hub, subscriber sessions and the websocket gateway."""

from .hub import BroadcastHub, OutboundQueue
from .session import ConnectionSession

__all__ = ["BroadcastHub", "OutboundQueue", "ConnectionSession"]
