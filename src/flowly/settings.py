from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/flowly.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - ENABLE_BASIC_AUTH: 'true' to enable optional HTTP Basic Auth (default: false)
    - BASIC_AUTH_USERNAME / BASIC_AUTH_PASSWORD: credentials when basic auth is enabled
    - LOG_LEVEL: root log level (default: INFO)
    - WEEK_STARTS_ON: weekday index of the first day of a week, 0 = Monday (default: 0)
    - STREAK_LOOKBACK_DAYS: days of habit logs loaded to compute streaks (default: 365)
    - FREE_HABIT_LIMIT / FREE_GOAL_LIMIT: ownership limits for free users (default: 3 / 1)
    - OPENAI_API_KEY, OPENAI_MODEL, OPENAI_TEMPERATURE, OPENAI_MAX_TOKENS: assistant model
    - STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET: billing credentials
    - STRIPE_PRO_PRICE_ID / STRIPE_BASIC_PRICE_ID: price ids behind the plan aliases
    - SITE_URL: frontend base URL used for checkout and portal redirects
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    enable_basic_auth: bool
    basic_auth_username: Optional[str]
    basic_auth_password: Optional[str]
    log_level: str = "INFO"
    week_starts_on: int = 0
    streak_lookback_days: int = 365
    free_habit_limit: int = 3
    free_goal_limit: int = 1
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 1000
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_pro_price_id: Optional[str] = None
    stripe_basic_price_id: Optional[str] = None
    site_url: str = "http://localhost:3000"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _get_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_float(value: str, default: float) -> float:
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/flowly.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    enable_basic_auth = _parse_bool(_get_env("ENABLE_BASIC_AUTH", "false"), False)
    basic_user = os.getenv("BASIC_AUTH_USERNAME") if enable_basic_auth else None
    basic_pass = os.getenv("BASIC_AUTH_PASSWORD") if enable_basic_auth else None

    week_starts_on = _parse_int(_get_env("WEEK_STARTS_ON", "0"), 0)
    if week_starts_on > 6:
        week_starts_on = 0

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        enable_basic_auth=enable_basic_auth,
        basic_auth_username=basic_user,
        basic_auth_password=basic_pass,
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        week_starts_on=week_starts_on,
        streak_lookback_days=_parse_int(_get_env("STREAK_LOOKBACK_DAYS", "365"), 365, minimum=1),
        free_habit_limit=_parse_int(_get_env("FREE_HABIT_LIMIT", "3"), 3),
        free_goal_limit=_parse_int(_get_env("FREE_GOAL_LIMIT", "1"), 1),
        openai_api_key=_get_optional("OPENAI_API_KEY"),
        openai_model=_get_env("OPENAI_MODEL", "gpt-4").strip(),
        openai_temperature=_parse_float(_get_env("OPENAI_TEMPERATURE", "0.7"), 0.7),
        openai_max_tokens=_parse_int(_get_env("OPENAI_MAX_TOKENS", "1000"), 1000, minimum=1),
        stripe_secret_key=_get_optional("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_get_optional("STRIPE_WEBHOOK_SECRET"),
        stripe_pro_price_id=_get_optional("STRIPE_PRO_PRICE_ID"),
        stripe_basic_price_id=_get_optional("STRIPE_BASIC_PRICE_ID"),
        site_url=_get_env("SITE_URL", "http://localhost:3000").strip().rstrip("/"),
    )
