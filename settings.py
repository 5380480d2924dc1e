# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEV_ENVIRONMENTS = ("dev", "development", "local", "test")


@dataclass(frozen=True)
class Settings:
    # JWT (required)
    jwt_secret: str
    jwt_issuer: str
    jwt_audience: str
    # Refresh tokens are stored as HMAC-SHA256(secret, raw)
    refresh_token_secret: str

    jwt_algorithm: str = "HS256"
    access_token_minutes: int = 60
    refresh_token_days: int = 30

    database_url: str = "sqlite+aiosqlite:///./app.db"
    db_timeout_seconds: float = 15.0

    app_env: str = "dev"
    log_level: str = "INFO"
    cors_origins: str = "*"

    notify_send_timeout_seconds: float = 5.0
    notify_require_auth: bool = False

    @property
    def debug(self) -> bool:
        return self.app_env.lower() in DEV_ENVIRONMENTS

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing {name} environment variable")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build the process-wide Settings once at startup.

    Reads .env (if present) unless an explicit mapping is given. Raises
    RuntimeError when any signing/validation secret is missing.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    return Settings(
        jwt_secret=_required(env, "JWT_SECRET"),
        jwt_issuer=_required(env, "JWT_ISSUER"),
        jwt_audience=_required(env, "JWT_AUDIENCE"),
        refresh_token_secret=_required(env, "REFRESH_TOKEN_SECRET"),
        jwt_algorithm=env.get("JWT_ALGORITHM", "HS256"),
        access_token_minutes=int(env.get("ACCESS_TOKEN_MINUTES", "60")),
        refresh_token_days=int(env.get("REFRESH_TOKEN_DAYS", "30")),
        database_url=env.get("DATABASE_URL", "sqlite+aiosqlite:///./app.db"),
        db_timeout_seconds=float(env.get("DB_TIMEOUT_SECONDS", "15")),
        app_env=env.get("APP_ENV", "dev"),
        log_level=env.get("LOG_LEVEL", "INFO"),
        cors_origins=env.get("CORS_ORIGINS", "*"),
        notify_send_timeout_seconds=float(env.get("NOTIFY_SEND_TIMEOUT_SECONDS", "5")),
        notify_require_auth=env.get("NOTIFY_REQUIRE_AUTH", "0").strip() == "1",
    )
