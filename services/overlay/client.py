import asyncio
import time
from typing import Callable, List, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from services.overlay.renderer import Caption, CaptionRenderer
from shared.logging.logger import get_logger

log = get_logger("services.overlay.client", runtime="overlay")

RECONNECT_DELAY = 1.0

FrameSink = Callable[[List[Caption]], None]


class OverlayClient:
    """
    Display-surface driver.

    Responsibilities:
    - Keep a websocket open to ``/ws/<room_id>``, reconnecting after drops
    - Feed every received frame into the renderer
    - Tick the renderer at a fixed rate and hand each frame to ``on_frame``
    """

    def __init__(
        self,
        url: str,
        renderer: CaptionRenderer,
        *,
        on_frame: Optional[FrameSink] = None,
        fps: int = 60,
        reconnect_delay: float = RECONNECT_DELAY,
    ):
        self.url = url
        self.renderer = renderer
        self.on_frame = on_frame
        self._frame_interval = 1.0 / max(1, fps)
        self._reconnect_delay = reconnect_delay
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #

    async def run(self) -> None:
        log.info(f"Overlay client starting ({self.url})")
        animator = asyncio.create_task(self._animate())
        try:
            await self._receive_forever()
        finally:
            animator.cancel()
            await asyncio.gather(animator, return_exceptions=True)
            log.info("Overlay client stopped")

    def stop(self) -> None:
        self._stop_event.set()

    # ------------------------------------------------------------------ #

    async def _receive_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                async with connect(self.url) as ws:
                    log.info("Overlay connected")
                    await self._pump(ws)
            except asyncio.CancelledError:
                raise
            except InvalidStatus as e:
                log.warning(f"Overlay connection refused: {e}")
            except (ConnectionClosed, OSError) as e:
                log.info(f"Overlay connection lost: {e}")

            if self._stop_event.is_set():
                return
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._reconnect_delay)
            except asyncio.TimeoutError:
                pass

    async def _pump(self, ws) -> None:
        stop_wait = asyncio.create_task(self._stop_event.wait())
        try:
            while True:
                recv = asyncio.create_task(ws.recv())
                done, _ = await asyncio.wait(
                    {recv, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_wait in done:
                    recv.cancel()
                    await asyncio.gather(recv, return_exceptions=True)
                    return
                self.renderer.receive(recv.result())
        finally:
            stop_wait.cancel()

    async def _animate(self) -> None:
        last = time.monotonic()
        while True:
            await asyncio.sleep(self._frame_interval)
            now = time.monotonic()
            frame = self.renderer.tick(now - last)
            last = now
            if self.on_frame is not None:
                try:
                    self.on_frame(frame)
                except Exception as e:
                    log.warning(f"Frame sink failed: {e}")
