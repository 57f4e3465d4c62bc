from __future__ import annotations

import json

from shared.chat.envelopes import (
    ChatEnvelope,
    ClearEnvelope,
    Comment,
    UnparseableEnvelope,
    encode_envelope,
    parse_envelope,
)


def test_chat_envelope_wire_shape() -> None:
    frame = encode_envelope(ChatEnvelope(text="hello", handle="alice"))
    assert json.loads(frame) == {"type": "chat", "text": "hello", "handle": "alice"}


def test_clear_envelope_wire_shape() -> None:
    assert json.loads(encode_envelope(ClearEnvelope())) == {"type": "clear"}


def test_non_ascii_text_is_kept_readable_on_the_wire() -> None:
    frame = encode_envelope(ChatEnvelope(text="こんにちは", handle=""))
    assert "こんにちは" in frame


def test_parse_known_envelopes() -> None:
    assert parse_envelope('{"type":"chat","text":"hi","handle":"bob"}') == ChatEnvelope("hi", "bob")
    assert parse_envelope(b'{"type":"clear"}') == ClearEnvelope()


def test_parse_chat_with_missing_fields_defaults_to_empty() -> None:
    assert parse_envelope('{"type":"chat"}') == ChatEnvelope(text="", handle="")


def test_parse_falls_back_to_unparseable() -> None:
    assert parse_envelope("plain words") == UnparseableEnvelope("plain words")
    assert parse_envelope("[1, 2]") == UnparseableEnvelope("[1, 2]")
    assert parse_envelope('{"type":"vote"}') == UnparseableEnvelope('{"type":"vote"}')


def test_unparseable_encodes_to_its_raw_text() -> None:
    assert encode_envelope(UnparseableEnvelope("raw frame")) == "raw frame"


def test_chat_from_comment() -> None:
    assert ChatEnvelope.from_comment(Comment(text="t", handle="h")) == ChatEnvelope("t", "h")
