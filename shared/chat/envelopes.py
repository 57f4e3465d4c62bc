"""Wire envelopes exchanged between the hub and display surfaces."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

CHAT = "chat"
CLEAR = "clear"


@dataclass(frozen=True)
class Comment:
    """A moderated viewer comment. Bounds are enforced by ingress."""

    text: str
    handle: str = ""


@dataclass(frozen=True)
class ChatEnvelope:
    text: str
    handle: str = ""

    @classmethod
    def from_comment(cls, comment: Comment) -> "ChatEnvelope":
        return cls(text=comment.text, handle=comment.handle)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": CHAT, "text": self.text, "handle": self.handle}


@dataclass(frozen=True)
class ClearEnvelope:
    def to_dict(self) -> Dict[str, Any]:
        return {"type": CLEAR}


@dataclass(frozen=True)
class UnparseableEnvelope:
    """
    Anything that is not a recognised envelope.

    Display surfaces show ``raw`` as literal caption text instead of
    dropping it.
    """

    raw: str


Envelope = Union[ChatEnvelope, ClearEnvelope, UnparseableEnvelope]


def encode_envelope(envelope: Envelope) -> str:
    if isinstance(envelope, UnparseableEnvelope):
        return envelope.raw
    return json.dumps(envelope.to_dict(), ensure_ascii=False, separators=(",", ":"))


def _as_text(raw: Union[str, bytes]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def parse_envelope(raw: Union[str, bytes]) -> Envelope:
    """Decode a frame. Never raises; unknown shapes become Unparseable."""
    text = _as_text(raw)
    try:
        payload = json.loads(text)
    except ValueError:
        return UnparseableEnvelope(raw=text)

    if not isinstance(payload, dict):
        return UnparseableEnvelope(raw=text)

    kind = payload.get("type")
    if kind == CHAT:
        body = payload.get("text")
        handle = payload.get("handle")
        return ChatEnvelope(
            text="" if body is None else str(body),
            handle="" if handle is None else str(handle),
        )
    if kind == CLEAR:
        return ClearEnvelope()
    return UnparseableEnvelope(raw=text)


__all__ = [
    "CHAT",
    "CLEAR",
    "Comment",
    "ChatEnvelope",
    "ClearEnvelope",
    "UnparseableEnvelope",
    "Envelope",
    "encode_envelope",
    "parse_envelope",
]
