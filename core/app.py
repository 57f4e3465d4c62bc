import asyncio
import signal
import sys

from dotenv import load_dotenv

from core.registry import RoomRegistry
from runtime.version import as_string
from services.chat_api import ChatApiServer
from services.hub.ws_server import WebSocketGateway
from services.moderation.ingress import IngressModerator
from shared.config.system import load_system_config
from shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    config = load_system_config()
    log.info(
        f"Moderation: {len(config.moderation.ng_words)} ng word(s), "
        f"default cooldown {config.moderation.default_cooldown:.1f}s"
    )

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    registry = RoomRegistry(
        loop=asyncio.get_running_loop(),
        default_cooldown=config.moderation.default_cooldown,
    )
    moderator = IngressModerator(
        registry,
        ng_words=config.moderation.ng_words,
        max_text_length=config.moderation.max_text_length,
        max_handle_length=config.moderation.max_handle_length,
    )

    api = ChatApiServer(registry, moderator, config.api, config.websocket)
    gateway = WebSocketGateway(registry, config.websocket)

    # --------------------------------------------------
    # START SURFACES
    # --------------------------------------------------
    await gateway.start()
    api.start()

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: INGRESS FIRST, THEN HUBS
    # --------------------------------------------------
    try:
        api.stop()
    except Exception as e:
        log.warning(f"Chat API shutdown error ignored: {e}")

    try:
        await registry.shutdown()
    except Exception as e:
        log.warning(f"Registry shutdown error ignored: {e}")

    try:
        await gateway.stop()
    except Exception as e:
        log.warning(f"Websocket gateway shutdown error ignored: {e}")

    log.info("SlideFlow stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        # --------------------------------------------------
        # FINAL LOOP CLEANUP
        # --------------------------------------------------
        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
