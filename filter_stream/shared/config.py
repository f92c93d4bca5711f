"""
MODULE OVERVIEW:
This module provides application-wide configuration using Pydantic Settings.
Where it fits: every tunable of the stream client (backend location, retry schedule,
buffer size, timeouts) is declared here once and read from the environment or `.env`.

WHAT IS HAPPENING HERE:
The WebSocket base URL is derived from the HTTP backend URL (http -> ws, https -> wss).
The `settings` instance at the bottom is for the CLI. The ConnectionManager never reads it
implicitly; it is handed a Settings object in its constructor.
"""
import re

from pydantic_settings import BaseSettings


def derive_ws_base(backend_url: str, ws_path: str = "/ws") -> str:
    """Turn `https://host` into `wss://host/ws` (and `http` into `ws`)."""
    scheme = "wss:" if backend_url.startswith("https:") else "ws:"
    base = re.sub(r"^https?:", scheme, backend_url.rstrip("/"))
    return f"{base}/{ws_path.strip('/')}" if ws_path.strip("/") else base


class Settings(BaseSettings):
    BACKEND_URL: str = "http://localhost:8080"
    WS_PATH: str = "/ws"
    LOG_LEVEL: str = "INFO"

    # Reconnection (linear: base * attempt)
    RECONNECT_BASE_DELAY_MS: int = 2000
    MAX_RECONNECT_ATTEMPTS: int = 5

    # Event buffer
    EVENT_BUFFER_SIZE: int = 100

    # Timeouts
    HTTP_TIMEOUT_S: float = 10.0
    WS_OPEN_TIMEOUT_S: float = 10.0

    class Config:
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'

    @property
    def http_base(self) -> str:
        return self.BACKEND_URL.rstrip("/")

    @property
    def ws_base(self) -> str:
        return derive_ws_base(self.BACKEND_URL, self.WS_PATH)


settings = Settings()
