"""Client-facing rejection taxonomy for comment ingress."""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus


class RejectReason(str, Enum):
    """
    Every reason a submission can be turned away.

    The value is the stable identifier returned to clients; ``status`` is
    the HTTP status the chat API maps it to.
    """

    EMPTY_TEXT = "EmptyText"
    TEXT_TOO_LONG = "TextTooLong"
    HANDLE_TOO_LONG = "HandleTooLong"
    BLOCKED_CONTENT = "BlockedContent"
    ROOM_PAUSED = "RoomPaused"
    RATE_LIMITED = "RateLimited"
    ROOM_NOT_FOUND = "RoomNotFound"
    MALFORMED_REQUEST = "MalformedRequest"

    @property
    def status(self) -> HTTPStatus:
        return _STATUS[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_STATUS = {
    RejectReason.EMPTY_TEXT: HTTPStatus.BAD_REQUEST,
    RejectReason.TEXT_TOO_LONG: HTTPStatus.BAD_REQUEST,
    RejectReason.HANDLE_TOO_LONG: HTTPStatus.BAD_REQUEST,
    RejectReason.MALFORMED_REQUEST: HTTPStatus.BAD_REQUEST,
    RejectReason.BLOCKED_CONTENT: HTTPStatus.FORBIDDEN,
    RejectReason.ROOM_NOT_FOUND: HTTPStatus.NOT_FOUND,
    RejectReason.ROOM_PAUSED: HTTPStatus.LOCKED,
    RejectReason.RATE_LIMITED: HTTPStatus.TOO_MANY_REQUESTS,
}

_MESSAGES = {
    RejectReason.EMPTY_TEXT: "text required",
    RejectReason.TEXT_TOO_LONG: "text too long",
    RejectReason.HANDLE_TOO_LONG: "handle too long",
    RejectReason.MALFORMED_REQUEST: "invalid json",
    RejectReason.BLOCKED_CONTENT: "ng word detected",
    RejectReason.ROOM_NOT_FOUND: "room not found",
    RejectReason.ROOM_PAUSED: "paused",
    RejectReason.RATE_LIMITED: "rate limited",
}


# ======================================================================
# Exceptions
# ======================================================================

class SubmissionRejected(Exception):
    """Raised inside the ingress path; converted to a Verdict at the edge."""

    reason: RejectReason = RejectReason.MALFORMED_REQUEST

    def __init__(self, reason: RejectReason | None = None, detail: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(detail or self.reason.message)


class RoomNotFound(SubmissionRejected):
    reason = RejectReason.ROOM_NOT_FOUND

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(detail=f"room not found: {room_id}")


class RoomPaused(SubmissionRejected):
    reason = RejectReason.ROOM_PAUSED

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(detail=f"room paused: {room_id}")


class RateLimited(SubmissionRejected):
    """
    Raised when an identity posts again inside its cooldown.

    ``retry_after`` is the remaining cooldown in seconds.
    """

    reason = RejectReason.RATE_LIMITED

    def __init__(self, retry_after: float):
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(detail=f"rate limited; retry in {self.retry_after:.2f}s")


__all__ = [
    "RejectReason",
    "SubmissionRejected",
    "RoomNotFound",
    "RoomPaused",
    "RateLimited",
]
