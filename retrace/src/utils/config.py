"""Configuration helpers for retrace services."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_RRWEB_URL = "https://cdn.jsdelivr.net/npm/rrweb@2.0.0-alpha.4/dist/rrweb.min.js"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class LLMConfig:
    """Settings for the decision engine (OpenAI-compatible chat completions)."""

    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
    )
    base_url: str = field(
        default_factory=lambda: os.getenv("RETRACE_LLM_BASE_URL", "https://openrouter.ai/api/v1")
    )
    model: str = field(
        default_factory=lambda: os.getenv("RETRACE_LLM_MODEL", "google/gemini-2.0-flash-exp:free")
    )
    timeout: int = field(default_factory=lambda: _env_int("RETRACE_LLM_TIMEOUT", 60))


@dataclass(slots=True)
class ServerConfig:
    """Orchestration server and workflow storage."""

    host: str = field(default_factory=lambda: os.getenv("RETRACE_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("RETRACE_PORT", 3000))
    storage_dir: str = field(
        default_factory=lambda: os.getenv("RETRACE_STORAGE_DIR", "workflow-foundations")
    )
    # False keeps the observed behaviour: a workflow without a trace replays unguided.
    require_trace: bool = field(default_factory=lambda: _env_bool("RETRACE_REQUIRE_TRACE"))
    cors_origins: List[str] = field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("RETRACE_CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
    )


@dataclass(slots=True)
class ReplayConfig:
    """Client-side replay loop timings (milliseconds)."""

    server_url: str = field(
        default_factory=lambda: os.getenv("RETRACE_SERVER_URL", "http://localhost:3000")
    )
    max_retries: int = 3
    retry_backoff_ms: int = 500
    step_settle_ms: int = 1000
    locate_timeout_ms: int = 5000
    poll_interval_ms: int = 100
    scroll_settle_ms: int = 300
    snapshot_quality: int = 50

    @property
    def websocket_url(self) -> str:
        base = self.server_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"


@dataclass(slots=True)
class RecorderConfig:
    """Recording capture settings."""

    preview_interval_ms: int = field(
        default_factory=lambda: _env_int("RETRACE_PREVIEW_INTERVAL_MS", 3000)
    )
    preview_quality: int = field(default_factory=lambda: _env_int("RETRACE_PREVIEW_QUALITY", 30))
    preview_max_width: int = 960
    rrweb_script_url: str = field(
        default_factory=lambda: os.getenv("RETRACE_RRWEB_URL", DEFAULT_RRWEB_URL)
    )


@dataclass(slots=True)
class AppConfig:
    """Aggregated configuration."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    replay: ReplayConfig = field(default_factory=ReplayConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)


CONFIG = AppConfig()
