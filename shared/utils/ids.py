"""Identifier helpers for rooms."""
from __future__ import annotations

import secrets
import string

ROOM_ID_ALPHABET = string.ascii_letters + string.digits
ROOM_ID_LENGTH = 10


def new_room_id(length: int = ROOM_ID_LENGTH) -> str:
    """Return a random token drawn from ``[a-zA-Z0-9]``."""
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def is_room_id(value: str) -> bool:
    return bool(value) and len(value) <= 64 and all(c in ROOM_ID_ALPHABET for c in value)
