from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.config.system")

_CONFIG_PATH = Path(__file__).parent / "system.json"

DEFAULT_NG_WORDS = ["死ね", "fuck", "shit"]


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    public_base_url: Optional[str] = None
    max_body_bytes: int = 4 << 20


@dataclass
class WebSocketConfig:
    host: str = "0.0.0.0"
    port: int = 8081
    max_frame_bytes: int = 1024
    queue_size: int = 256
    ping_interval: float = 50.0
    read_timeout: float = 60.0
    write_timeout: float = 10.0


@dataclass
class ModerationConfig:
    ng_words: List[str] = field(default_factory=lambda: list(DEFAULT_NG_WORDS))
    default_cooldown: float = 2.0
    max_text_length: int = 200
    max_handle_length: int = 32


@dataclass
class RendererConfig:
    font_size: int = 36
    speed: float = 160.0
    max_captions: int = 200
    lane_gap: float = 140.0
    color: str = "#ffffff"
    fps: int = 60


@dataclass
class SystemConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.debug(f"system.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except Exception as e:  # pragma: no cover - defensive
        log.warning(f"Failed to load system.json ({e}); using defaults")
        return {}


def _as_int(value: Any, default: int, name: str) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        log.warning(f"{name} must be an integer; defaulting to {default}")
        return default


def _as_float(value: Any, default: float, name: str) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        log.warning(f"{name} must be a number; defaulting to {default}")
        return default


def parse_word_list(raw: str) -> List[str]:
    """Split a comma-separated denylist, lowercasing and dropping blanks."""
    words = []
    for part in raw.split(","):
        word = part.strip().lower()
        if word:
            words.append(word)
    return words


def _load_api(raw: Optional[Dict[str, Any]], env: Mapping[str, str]) -> ApiConfig:
    raw = raw if isinstance(raw, dict) else {}
    cfg = ApiConfig()

    cfg.host = str(env.get("HOST") or raw.get("host") or cfg.host)
    cfg.port = _as_int(env.get("PORT") or raw.get("port"), cfg.port, "api.port")
    cfg.max_body_bytes = _as_int(raw.get("max_body_bytes"), cfg.max_body_bytes, "api.max_body_bytes")

    origins = env.get("ALLOW_ORIGINS")
    if origins is not None:
        cfg.allow_origins = [o.strip() for o in origins.split(",") if o.strip()]
    elif isinstance(raw.get("allow_origins"), list):
        cfg.allow_origins = [str(o) for o in raw["allow_origins"]]

    base = env.get("PUBLIC_BASE_URL") or raw.get("public_base_url")
    cfg.public_base_url = str(base).rstrip("/") if base else None
    return cfg


def _load_websocket(raw: Optional[Dict[str, Any]], env: Mapping[str, str]) -> WebSocketConfig:
    raw = raw if isinstance(raw, dict) else {}
    cfg = WebSocketConfig()

    cfg.host = str(env.get("HOST") or raw.get("host") or cfg.host)
    cfg.port = _as_int(env.get("WS_PORT") or raw.get("port"), cfg.port, "websocket.port")
    cfg.max_frame_bytes = _as_int(raw.get("max_frame_bytes"), cfg.max_frame_bytes, "websocket.max_frame_bytes")
    cfg.queue_size = _as_int(raw.get("queue_size"), cfg.queue_size, "websocket.queue_size")
    cfg.ping_interval = _as_float(raw.get("ping_interval"), cfg.ping_interval, "websocket.ping_interval")
    cfg.read_timeout = _as_float(raw.get("read_timeout"), cfg.read_timeout, "websocket.read_timeout")
    cfg.write_timeout = _as_float(raw.get("write_timeout"), cfg.write_timeout, "websocket.write_timeout")
    return cfg


def _load_moderation(raw: Optional[Dict[str, Any]], env: Mapping[str, str]) -> ModerationConfig:
    raw = raw if isinstance(raw, dict) else {}
    cfg = ModerationConfig()

    env_words = (env.get("NG_WORDS") or "").strip()
    if env_words:
        cfg.ng_words = parse_word_list(env_words)
    elif isinstance(raw.get("ng_words"), list):
        cfg.ng_words = parse_word_list(",".join(str(w) for w in raw["ng_words"]))

    cfg.default_cooldown = _as_float(
        raw.get("default_cooldown_seconds"), cfg.default_cooldown, "moderation.default_cooldown_seconds"
    )
    return cfg


def _load_renderer(raw: Optional[Dict[str, Any]]) -> RendererConfig:
    if not isinstance(raw, dict):
        return RendererConfig()

    cfg = RendererConfig()
    cfg.font_size = _as_int(raw.get("font_size"), cfg.font_size, "renderer.font_size")
    cfg.speed = _as_float(raw.get("speed"), cfg.speed, "renderer.speed")
    cfg.max_captions = _as_int(raw.get("max_captions"), cfg.max_captions, "renderer.max_captions")
    cfg.lane_gap = _as_float(raw.get("lane_gap"), cfg.lane_gap, "renderer.lane_gap")
    cfg.fps = _as_int(raw.get("fps"), cfg.fps, "renderer.fps")
    if isinstance(raw.get("color"), str):
        cfg.color = raw["color"]
    return cfg


def load_system_config(
    raw: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> SystemConfig:
    """
    Resolve runtime configuration.

    system.json supplies the base values; environment variables (HOST, PORT,
    WS_PORT, NG_WORDS, ALLOW_ORIGINS, PUBLIC_BASE_URL) override them.
    Invalid values are logged and replaced by defaults.
    """
    raw = raw if raw is not None else _load_json(_CONFIG_PATH)
    env = env if env is not None else os.environ

    return SystemConfig(
        api=_load_api(raw.get("api"), env),
        websocket=_load_websocket(raw.get("websocket"), env),
        moderation=_load_moderation(raw.get("moderation"), env),
        renderer=_load_renderer(raw.get("renderer")),
    )
