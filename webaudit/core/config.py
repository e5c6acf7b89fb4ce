import logging
from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Supabase project JWT secret (HS256 access tokens)
    SUPABASE_JWT_SECRET: Optional[str] = None

    ADMIN_KEY: Optional[str] = None
    CRON_SECRET: Optional[str] = None  # unset = cron endpoint open (local dev)

    FEATURE_CACHE_TTL_SECONDS: int = 300
    LEDGER_CURRENCY: str = "INR"

    BASE_URL: str = "http://localhost:8000"
    FRONTEND_ORIGIN: str = "http://localhost:3000"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

# What each unset key turns off; secrets themselves are never logged.
_DEGRADED_WITHOUT = {
    "DATABASE_URL": "no database configured",
    "SUPABASE_JWT_SECRET": "bearer tokens ignored, X-User-Id trusted",
    "ADMIN_KEY": "plan admin endpoints reject every request",
    "CRON_SECRET": "expiry cron endpoint is unauthenticated",
}


def validate_config(
    strict: Optional[bool] = None,
    settings_obj: Optional[Settings] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Report unset keys; RuntimeError in strict mode, warnings otherwise."""
    cfg = settings_obj or settings
    log = logger or logging.getLogger("webaudit.config")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    missing = [key for key in _DEGRADED_WITHOUT if not getattr(cfg, key, None)]
    if not missing:
        return True

    if strict_mode:
        raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")
    for key in missing:
        log.warning(f"[config] {key} not set: {_DEGRADED_WITHOUT[key]}")
    return True
