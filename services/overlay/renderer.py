"""Scrolling-caption placement for display surfaces.

The renderer owns two collections: a FIFO inbox of texts waiting for room
and the set of captions currently on screen. Each tick moves captions left,
expires the ones that have fully left the screen, then greedily places
waiting texts into the lane with the most free runway.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple, Union

from services.overlay.measure import EstimatingMeasurer, TextMeasurer
from shared.chat.envelopes import (
    ChatEnvelope,
    ClearEnvelope,
    Envelope,
    UnparseableEnvelope,
    parse_envelope,
)
from shared.config.system import RendererConfig
from shared.logging.logger import get_logger

log = get_logger("services.overlay.renderer", runtime="overlay")

MAX_DT = 0.05
MAX_TEXT_LENGTH = 200
EMPTY_LANE = -1.0


@dataclass
class Caption:
    text: str
    x: float
    y: int
    width: int
    lane: int
    speed: float
    color: str

    @property
    def right(self) -> float:
        return self.x + self.width


@dataclass(frozen=True)
class InboxEntry:
    text: str
    color: str


def caption_text(envelope: ChatEnvelope) -> str:
    """Display form of a chat envelope: ``【handle】 text`` or just the text."""
    text = envelope.text[:MAX_TEXT_LENGTH]
    handle = envelope.handle.strip()
    return f"【{handle}】 {text}" if handle else text


class CaptionRenderer:
    def __init__(
        self,
        width: int,
        height: int,
        *,
        config: Optional[RendererConfig] = None,
        measurer: Optional[TextMeasurer] = None,
    ):
        self.config = config or RendererConfig()
        self.measurer = measurer or EstimatingMeasurer(self.config.font_size)
        self.width = int(width)
        self.height = int(height)
        self.line_height = int(round(self.config.font_size * 1.2))

        self.inbox: Deque[InboxEntry] = deque()
        self.captions: List[Caption] = []

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def resize(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)

    @property
    def lane_count(self) -> int:
        return max(1, self.height // self.line_height)

    def lane_y(self, lane: int) -> int:
        return int(round(lane * self.line_height + (self.line_height - self.config.font_size) / 2))

    def rightmost_edge(self, lane: int) -> float:
        edges = [c.right for c in self.captions if c.lane == lane]
        return max(edges) if edges else EMPTY_LANE

    def select_lane(self) -> Tuple[int, float]:
        """
        Lane with the most free runway: the smallest rightmost occupied
        edge, lowest index on ties.
        """
        best_lane = 0
        best_right = float("inf")
        for lane in range(self.lane_count):
            right = self.rightmost_edge(lane)
            if right < best_right:
                best_lane, best_right = lane, right
        return best_lane, best_right

    # ------------------------------------------------------------------
    # Stream input
    # ------------------------------------------------------------------

    def receive(self, raw: Union[str, bytes]) -> Envelope:
        envelope = parse_envelope(raw)
        self.apply(envelope)
        return envelope

    def apply(self, envelope: Envelope) -> None:
        if isinstance(envelope, ClearEnvelope):
            self.clear()
        elif isinstance(envelope, ChatEnvelope):
            self.enqueue(caption_text(envelope))
        elif isinstance(envelope, UnparseableEnvelope):
            log.debug("Unparseable envelope shown as literal text")
            self.enqueue(envelope.raw)

    def enqueue(self, text: str, color: Optional[str] = None) -> None:
        if not text:
            return
        self.inbox.append(InboxEntry(text=text, color=color or self.config.color))

    def clear(self) -> None:
        self.inbox.clear()
        self.captions.clear()

    # ------------------------------------------------------------------
    # Frame
    # ------------------------------------------------------------------

    def tick(self, dt: float) -> List[Caption]:
        dt = min(MAX_DT, max(0.0, dt))

        survivors = []
        for caption in self.captions:
            caption.x -= caption.speed * dt
            if caption.right >= 0:
                survivors.append(caption)
        self.captions = survivors

        while self.inbox and len(self.captions) < self.config.max_captions:
            if not self.try_place(self.inbox[0]):
                # Lane choice ignores text width, so nothing later fits either.
                break
            self.inbox.popleft()

        return list(self.captions)

    def try_place(self, entry: InboxEntry) -> Optional[Caption]:
        lane, right = self.select_lane()
        if right > self.width - self.config.lane_gap:
            return None

        caption = Caption(
            text=entry.text,
            x=float(self.width),
            y=self.lane_y(lane),
            width=self.measurer.width(entry.text),
            lane=lane,
            speed=self.config.speed,
            color=entry.color,
        )
        self.captions.append(caption)
        return caption

    @property
    def pending(self) -> int:
        return len(self.inbox)
