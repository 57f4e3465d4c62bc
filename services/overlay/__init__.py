"""Display-surface caption rendering."""

from .measure import EstimatingMeasurer, FixedWidthMeasurer, TextMeasurer
from .renderer import Caption, CaptionRenderer, InboxEntry, caption_text

__all__ = [
    "Caption",
    "CaptionRenderer",
    "EstimatingMeasurer",
    "FixedWidthMeasurer",
    "InboxEntry",
    "TextMeasurer",
    "caption_text",
]
