"""Comment ingress: validation, content filter, pause and cooldown gates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from core.ratelimits import identity
from core.registry import RoomRegistry
from shared.chat.envelopes import ChatEnvelope, Comment
from shared.errors import RateLimited, RejectReason, SubmissionRejected
from shared.logging.logger import get_logger

log = get_logger("services.moderation.ingress")

MAX_TEXT_LENGTH = 200
MAX_HANDLE_LENGTH = 32


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    reason: Optional[RejectReason] = None
    retry_after: Optional[float] = None
    comment: Optional[Comment] = None

    @classmethod
    def accept(cls, comment: Comment) -> "Verdict":
        return cls(accepted=True, comment=comment)

    @classmethod
    def reject(cls, reason: RejectReason, retry_after: Optional[float] = None) -> "Verdict":
        return cls(accepted=False, reason=reason, retry_after=retry_after)


class IngressModerator:
    """
    Gatekeeper between submitters and a room's hub.

    Rules:
    - Checks run in a fixed order and the first failure wins
    - Lengths are counted in code points, never truncated
    - A rejection has no side effects; only an accepted comment touches the
      rate ledger and the hub
    """

    def __init__(
        self,
        registry: RoomRegistry,
        *,
        ng_words: Iterable[str] = (),
        max_text_length: int = MAX_TEXT_LENGTH,
        max_handle_length: int = MAX_HANDLE_LENGTH,
    ):
        self._registry = registry
        self._ng_words: List[str] = [w.strip().lower() for w in ng_words if w and w.strip()]
        self._max_text = max_text_length
        self._max_handle = max_handle_length

    # ------------------------------------------------------------------

    def submit(
        self,
        room_id: str,
        handle: Any,
        text: Any,
        *,
        origin: str = "",
        now: Optional[float] = None,
    ) -> Verdict:
        try:
            comment = self.validate(handle, text)
            self._registry.admit(room_id, identity(origin, comment.handle), now=now)
        except RateLimited as e:
            log.info(f"[{room_id}] Rejected {e.reason.value}: retry in {e.retry_after:.2f}s")
            return Verdict.reject(e.reason, retry_after=e.retry_after)
        except SubmissionRejected as e:
            if e.reason is RejectReason.BLOCKED_CONTENT:
                log.info(f"[{room_id}] Rejected {e.reason.value}")
            else:
                log.debug(f"[{room_id}] Rejected {e.reason.value}")
            return Verdict.reject(e.reason)

        self._registry.publish(room_id, ChatEnvelope.from_comment(comment))
        log.debug(f"[{room_id}] Accepted comment ({len(comment.text)} chars)")
        return Verdict.accept(comment)

    def validate(self, handle: Any, text: Any) -> Comment:
        """Steps that need no room state. Raises SubmissionRejected."""
        if handle is None:
            handle = ""
        if not isinstance(text, str) or not isinstance(handle, str):
            raise SubmissionRejected(RejectReason.MALFORMED_REQUEST)

        text = text.strip()
        handle = handle.strip()

        if not text:
            raise SubmissionRejected(RejectReason.EMPTY_TEXT)
        if len(text) > self._max_text:
            raise SubmissionRejected(RejectReason.TEXT_TOO_LONG)
        if len(handle) > self._max_handle:
            raise SubmissionRejected(RejectReason.HANDLE_TOO_LONG)
        if self.is_blocked(text):
            raise SubmissionRejected(RejectReason.BLOCKED_CONTENT)

        return Comment(text=text, handle=handle)

    def is_blocked(self, text: str) -> bool:
        lowered = text.lower()
        return any(word in lowered for word in self._ng_words)
