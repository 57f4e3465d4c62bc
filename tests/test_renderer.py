from __future__ import annotations

import json
import random

import pytest

from services.overlay.measure import EstimatingMeasurer, FixedWidthMeasurer
from services.overlay.renderer import Caption, CaptionRenderer, caption_text
from shared.chat.envelopes import ChatEnvelope
from shared.config.system import RendererConfig


def _renderer(width=1000, height=130, **overrides) -> CaptionRenderer:
    config = RendererConfig(**overrides)
    return CaptionRenderer(width, height, config=config, measurer=FixedWidthMeasurer(10))


def _occupy(renderer: CaptionRenderer, lane: int, right: float) -> Caption:
    caption = Caption(
        text="x",
        x=right - 10,
        y=renderer.lane_y(lane),
        width=10,
        lane=lane,
        speed=renderer.config.speed,
        color=renderer.config.color,
    )
    renderer.captions.append(caption)
    return caption


def _chat(text, handle=""):
    return json.dumps({"type": "chat", "text": text, "handle": handle})


# ------------------------------------------------------------
# Geometry
# ------------------------------------------------------------

def test_lane_count_from_line_height() -> None:
    renderer = _renderer(height=130)
    assert renderer.line_height == 43
    assert renderer.lane_count == 3


def test_tiny_surface_still_has_one_lane() -> None:
    assert _renderer(height=10).lane_count == 1


def test_lane_y_is_centred_in_lane() -> None:
    renderer = _renderer()
    assert renderer.lane_y(0) == 4
    assert renderer.lane_y(2) == 90


def test_empty_lane_beats_occupied_lanes() -> None:
    renderer = _renderer()
    _occupy(renderer, 0, 50)
    _occupy(renderer, 1, 200)
    renderer.enqueue("abcdefgh")

    frame = renderer.tick(0)

    placed = [c for c in frame if c.text == "abcdefgh"]
    assert len(placed) == 1
    assert placed[0].lane == 2
    assert placed[0].x == 1000
    assert placed[0].width == 80
    assert placed[0].y == renderer.lane_y(2)


def test_ties_go_to_lowest_lane() -> None:
    renderer = _renderer()
    renderer.enqueue("first")
    renderer.tick(0)
    assert renderer.captions[0].lane == 0


def test_least_occupied_lane_when_all_busy() -> None:
    renderer = _renderer()
    _occupy(renderer, 0, 700)
    _occupy(renderer, 1, 300)
    _occupy(renderer, 2, 500)

    assert renderer.select_lane() == (1, 300)


def test_runway_gap_blocks_placement() -> None:
    renderer = _renderer()
    for lane in range(3):
        _occupy(renderer, lane, 861)
    renderer.enqueue("waiting")

    renderer.tick(0)
    assert renderer.pending == 1

    # One clamped frame moves everything 8px left.
    renderer.tick(0.05)
    assert renderer.pending == 0


# ------------------------------------------------------------
# Inbox
# ------------------------------------------------------------

def test_chat_with_handle_is_prefixed() -> None:
    renderer = _renderer()
    renderer.receive(_chat("hello", handle="alice"))

    assert [e.text for e in renderer.inbox] == ["【alice】 hello"]
    frame = renderer.tick(0)
    assert frame[0].text == "【alice】 hello"
    assert frame[0].color == "#ffffff"


def test_caption_text_without_handle() -> None:
    assert caption_text(ChatEnvelope(text="plain")) == "plain"
    assert caption_text(ChatEnvelope(text="plain", handle="   ")) == "plain"
    assert caption_text(ChatEnvelope(text="y" * 300)) == "y" * 200


def test_unparseable_frames_render_as_literal_text() -> None:
    renderer = _renderer()
    renderer.receive("just words")
    renderer.receive('{"type":"poll","q":1}')

    assert [e.text for e in renderer.inbox] == ["just words", '{"type":"poll","q":1}']


def test_empty_texts_are_dropped() -> None:
    renderer = _renderer()
    renderer.receive(_chat(""))
    renderer.enqueue("")
    assert renderer.pending == 0


def test_clear_empties_screen_and_inbox() -> None:
    renderer = _renderer()
    for i in range(10):
        renderer.enqueue(f"c{i}")
    renderer.tick(0)
    assert renderer.captions and renderer.inbox

    renderer.receive('{"type":"clear"}')

    assert renderer.captions == []
    assert renderer.pending == 0


def test_fifo_head_blocks_the_rest() -> None:
    renderer = _renderer()
    for lane in range(3):
        _occupy(renderer, lane, 990)
    renderer.enqueue("a")
    renderer.enqueue("b")

    renderer.tick(0)
    assert [e.text for e in renderer.inbox] == ["a", "b"]


# ------------------------------------------------------------
# Motion
# ------------------------------------------------------------

def test_dt_is_clamped() -> None:
    renderer = _renderer()
    caption = _occupy(renderer, 0, 500)

    renderer.tick(3.0)
    assert caption.x == pytest.approx(490 - 160 * 0.05)

    renderer.tick(-1.0)
    assert caption.x == pytest.approx(490 - 160 * 0.05)


def test_captions_expire_once_fully_off_screen() -> None:
    renderer = _renderer()
    _occupy(renderer, 0, 4)

    assert len(renderer.tick(0.01)) == 1
    assert renderer.tick(0.05) == []


def test_on_screen_cap() -> None:
    renderer = _renderer(height=2000, max_captions=3)
    for i in range(5):
        renderer.enqueue(f"c{i}")

    frame = renderer.tick(0)

    assert len(frame) == 3
    assert renderer.pending == 2


def test_captions_never_overlap_within_a_lane() -> None:
    rng = random.Random(7)
    renderer = CaptionRenderer(
        1280,
        300,
        config=RendererConfig(),
        measurer=EstimatingMeasurer(36),
    )

    for step in range(3000):
        if rng.random() < 0.3:
            renderer.enqueue("x" * rng.randint(1, 40))
        frame = renderer.tick(1 / 60)

        by_lane = {}
        for caption in frame:
            by_lane.setdefault(caption.lane, []).append(caption)
        for captions in by_lane.values():
            captions.sort(key=lambda c: c.x)
            for left, right in zip(captions, captions[1:]):
                assert left.right <= right.x + 1e-6, f"overlap at step {step}"

        assert all(c.right >= 0 for c in frame)
        assert len(frame) <= renderer.config.max_captions


def test_resize_changes_lane_count() -> None:
    renderer = _renderer()
    renderer.resize(1000, 430)
    assert renderer.lane_count == 10
