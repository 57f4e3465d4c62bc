"""
======================================================================
 SlideFlow Runtime — operator tools
======================================================================
"""

from __future__ import annotations

"""
Headless overlay watcher.

Connects a caption renderer to a room and logs what a display surface would
show. No drawing; the frame sink prints a summary once per second.
"""


import argparse
import asyncio
import sys
import time
from typing import List, Optional

from services.overlay.client import OverlayClient
from services.overlay.renderer import Caption, CaptionRenderer
from shared.config.system import load_system_config


class _SummarySink:
    def __init__(self, renderer: CaptionRenderer, every: float = 1.0):
        self._renderer = renderer
        self._every = every
        self._last = 0.0

    def __call__(self, frame: List[Caption]) -> None:
        now = time.monotonic()
        if now - self._last < self._every:
            return
        self._last = now
        lanes = sorted({c.lane for c in frame})
        print(
            f"captions={len(frame)} pending={self._renderer.pending} lanes={lanes}"
        )
        for caption in frame:
            print(f"  lane {caption.lane:>2} x={caption.x:7.1f} {caption.text}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Watch a SlideFlow room headlessly")
    parser.add_argument("url", help="ws://host:port/ws/<room_id>")
    parser.add_argument("--width", type=int, default=1920)
    parser.add_argument("--height", type=int, default=1080)
    args = parser.parse_args(argv)

    config = load_system_config().renderer
    renderer = CaptionRenderer(args.width, args.height, config=config)
    client = OverlayClient(
        args.url,
        renderer,
        on_frame=_SummarySink(renderer),
        fps=config.fps,
    )

    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
