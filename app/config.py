from __future__ import annotations

from dataclasses import dataclass
import os

DEFAULT_PORT = 8080
# level names understood by both logging and uvicorn
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, "").strip() or default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class ServiceConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    request_timeout: float = 1.0
    shutdown_grace: float = 5.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError("PORT must be between 1 and 65535")
        if self.request_timeout <= 0:
            raise ValueError("REQUEST_TIMEOUT must be > 0")
        if self.shutdown_grace <= 0:
            raise ValueError("SHUTDOWN_GRACE must be > 0")
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError("LOG_LEVEL must be one of " + ", ".join(LOG_LEVELS))


def load_config() -> ServiceConfig:
    # An empty PORT falls back to the default, same as an unset one.
    return ServiceConfig(
        host=os.getenv("HOST", "").strip() or "0.0.0.0",
        port=_env_number("PORT", str(DEFAULT_PORT), int),
        request_timeout=_env_number("REQUEST_TIMEOUT", "1", float),
        shutdown_grace=_env_number("SHUTDOWN_GRACE", "5", float),
        log_level=os.getenv("LOG_LEVEL", "").strip() or "INFO",
    )
