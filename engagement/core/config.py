from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_DEFAULT_QSTASH_URL = "https://qstash.upstash.io"
_DEFAULT_PUBLIC_BASE_URL = "http://localhost:8000"


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    qstash_url: str
    qstash_token: str | None
    public_base_url: str

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    def callback_url(self, path: str) -> str:
        """Absolute URL the scheduler should POST to for ``path``."""
        return f"{self.public_base_url}/{path.lstrip('/')}"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    public_base_url = _getenv("PUBLIC_BASE_URL", _DEFAULT_PUBLIC_BASE_URL).rstrip("/")
    if not public_base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"PUBLIC_BASE_URL must be an http(s) URL (got {public_base_url!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=port,
        redis_url=_getenv("REDIS_URL", "") or None,
        qstash_url=_getenv("QSTASH_URL", _DEFAULT_QSTASH_URL).rstrip("/"),
        qstash_token=_getenv("QSTASH_TOKEN", "") or None,
        public_base_url=public_base_url,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
