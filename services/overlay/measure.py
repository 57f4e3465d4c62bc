from __future__ import annotations

import math
import unicodedata
from typing import Protocol


class TextMeasurer(Protocol):
    def width(self, text: str) -> int:
        """Rendered width of ``text`` in pixels."""
        ...


class EstimatingMeasurer:
    """
    Font-free width estimate for headless surfaces.

    Wide and fullwidth characters (CJK, fullwidth brackets) take one em,
    combining marks take nothing, everything else takes ``narrow_ratio`` em.
    """

    def __init__(self, font_size: int = 36, narrow_ratio: float = 0.6):
        self.font_size = font_size
        self.narrow_ratio = narrow_ratio

    def width(self, text: str) -> int:
        units = 0.0
        for ch in text:
            if unicodedata.combining(ch):
                continue
            if unicodedata.east_asian_width(ch) in ("W", "F"):
                units += 1.0
            else:
                units += self.narrow_ratio
        return int(math.ceil(units * self.font_size))


class FixedWidthMeasurer:
    """Every code point is ``char_width`` pixels wide."""

    def __init__(self, char_width: int):
        self.char_width = char_width

    def width(self, text: str) -> int:
        return len(text) * self.char_width
