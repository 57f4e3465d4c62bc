"""HTTP API server for room provisioning, comment submission and admin."""

from __future__ import annotations

import json
import math
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from core.ratelimits import coarse_origin
from core.registry import RoomRegistry
from services.moderation.ingress import IngressModerator, Verdict
from shared.config.system import ApiConfig, WebSocketConfig
from shared.errors import RejectReason, RoomNotFound
from shared.logging.logger import get_logger

log = get_logger("services.chat_api")

ADMIN_ACTIONS = {"pause", "resume", "clear", "slowmode"}
MAX_SLOW_MODE_MS = 24 * 60 * 60 * 1000


def _split_room_path(path: str) -> Tuple[Optional[str], Optional[str]]:
    """``/rooms/<id>[/<action>]`` -> (id, action)."""
    rest = path[len("/rooms/"):].strip("/")
    if not rest:
        return None, None
    parts = rest.split("/")
    if len(parts) > 2:
        return None, None
    return parts[0], (parts[1] if len(parts) == 2 else None)


def _slow_mode_ms(payload: Optional[Dict[str, Any]]) -> Optional[int]:
    """
    Milliseconds from a slowmode body, clamped to [0, MAX_SLOW_MODE_MS].

    None for anything that is not a finite JSON number.
    """
    ms = payload.get("ms") if payload is not None else None
    if isinstance(ms, bool) or not isinstance(ms, (int, float)):
        return None
    if isinstance(ms, float) and not math.isfinite(ms):
        return None
    return max(0, min(MAX_SLOW_MODE_MS, int(ms)))


class ChatApiServer:
    def __init__(
        self,
        registry: RoomRegistry,
        moderator: IngressModerator,
        config: ApiConfig,
        ws_config: Optional[WebSocketConfig] = None,
    ) -> None:
        self._registry = registry
        self._moderator = moderator
        self._config = config
        self._ws_config = ws_config or WebSocketConfig()
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        log.info(
            "Chat API server running on %s:%s",
            self._config.host,
            self._server.server_address[1],
        )

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        log.info("Chat API server stopped")

    def _build_handler(self):
        config = self._config
        ws_config = self._ws_config
        registry = self._registry
        moderator = self._moderator

        class Handler(BaseHTTPRequestHandler):
            server_version = "SlideFlow"

            def _send_json(
                self,
                status: int,
                payload: Dict[str, Any],
                headers: Optional[Dict[str, str]] = None,
            ) -> None:
                body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                for name, value in (headers or {}).items():
                    self.send_header(name, value)
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _send_text(self, status: int, text: str) -> None:
                body = text.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _send_rejection(self, reason: RejectReason, retry_after: Optional[float] = None) -> None:
                payload: Dict[str, Any] = {
                    "ok": False,
                    "error": reason.value,
                    "message": reason.message,
                }
                headers = {}
                if retry_after is not None:
                    payload["retryAfterMs"] = int(math.ceil(retry_after * 1000))
                    headers["Retry-After"] = str(max(1, int(math.ceil(retry_after))))
                self._send_json(reason.status, payload, headers)

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Headers", "Content-Type")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

            def _read_json_body(self) -> Optional[Dict[str, Any]]:
                """Parsed object body; {} when empty, None when invalid."""
                try:
                    length = int(self.headers.get("Content-Length", 0))
                except ValueError:
                    return None
                if length <= 0:
                    return {}
                if length > config.max_body_bytes:
                    return None
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    return None
                return payload if isinstance(payload, dict) else None

            def _base_url(self) -> str:
                if config.public_base_url:
                    return config.public_base_url
                scheme = self.headers.get("X-Forwarded-Proto") or "http"
                host = self.headers.get("X-Forwarded-Host") or self.headers.get("Host") or "localhost"
                return f"{scheme}://{host}".rstrip("/")

            def _ws_url(self, room_id: str) -> str:
                base = self._base_url()
                scheme, _, host = base.partition("://")
                ws_scheme = "wss" if scheme == "https" else "ws"
                if config.public_base_url:
                    return f"{ws_scheme}://{host}/ws/{room_id}"
                hostname = urlparse(base).hostname or "localhost"
                if ":" in hostname:
                    hostname = f"[{hostname}]"
                return f"{ws_scheme}://{hostname}:{ws_config.port}/ws/{room_id}"

            def _origin(self) -> str:
                return coarse_origin(self.client_address[0], self.headers.get("X-Forwarded-For"))

            # ----------------------------------------------------------
            # Verbs
            # ----------------------------------------------------------

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path

                if path == "/health":
                    return self._send_text(HTTPStatus.OK, "ok")

                if path.startswith("/rooms/"):
                    room_id, action = _split_room_path(path)
                    if room_id and action is None:
                        try:
                            return self._send_json(HTTPStatus.OK, registry.status(room_id))
                        except RoomNotFound:
                            return self._send_rejection(RejectReason.ROOM_NOT_FOUND)
                    if room_id and (action == "messages" or action in ADMIN_ACTIONS):
                        return self._send_json(
                            HTTPStatus.METHOD_NOT_ALLOWED, {"ok": False, "error": "method not allowed"}
                        )

                self._send_json(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                path = urlparse(self.path).path

                if path.rstrip("/") == "/rooms":
                    return self._handle_create_room()

                if path.startswith("/rooms/"):
                    room_id, action = _split_room_path(path)
                    if room_id and action == "messages":
                        return self._handle_post_message(room_id)
                    if room_id and action in ADMIN_ACTIONS:
                        return self._handle_admin(room_id, action)

                self._send_json(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})

            # ----------------------------------------------------------
            # Handlers
            # ----------------------------------------------------------

            def _handle_create_room(self) -> None:
                room_id = registry.create_room()
                base = self._base_url()
                self._send_json(
                    HTTPStatus.CREATED,
                    {
                        "roomId": room_id,
                        "overlayUrl": f"{base}/overlay/{room_id}",
                        "postUrl": f"{base}/post/{room_id}",
                        "wsUrl": self._ws_url(room_id),
                    },
                )

            def _handle_post_message(self, room_id: str) -> None:
                payload = self._read_json_body()
                if payload is None:
                    return self._send_rejection(RejectReason.MALFORMED_REQUEST)

                verdict: Verdict = moderator.submit(
                    room_id,
                    payload.get("handle", ""),
                    payload.get("text", ""),
                    origin=self._origin(),
                )
                if not verdict.accepted:
                    return self._send_rejection(verdict.reason, verdict.retry_after)
                self._send_json(HTTPStatus.ACCEPTED, {"ok": True})

            def _handle_admin(self, room_id: str, action: str) -> None:
                try:
                    if action == "pause":
                        registry.set_paused(room_id, True)
                        return self._send_json(HTTPStatus.OK, {"ok": True, "paused": True})

                    if action == "resume":
                        registry.set_paused(room_id, False)
                        return self._send_json(HTTPStatus.OK, {"ok": True, "paused": False})

                    if action == "clear":
                        registry.request_clear(room_id)
                        return self._send_json(HTTPStatus.OK, {"ok": True})

                    ms = _slow_mode_ms(self._read_json_body())
                    if ms is None:
                        return self._send_rejection(RejectReason.MALFORMED_REQUEST)
                    registry.set_slow_mode(room_id, ms / 1000.0)
                    return self._send_json(HTTPStatus.OK, {"ok": True, "slowModeMs": ms})

                except RoomNotFound:
                    return self._send_rejection(RejectReason.ROOM_NOT_FOUND)

            def log_message(self, format: str, *args: Any) -> None:
                log.info("%s - %s", self.address_string(), format % args)

        return Handler


__all__ = ["ChatApiServer"]
