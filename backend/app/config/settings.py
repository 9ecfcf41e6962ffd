import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from os import getenv
from typing import Literal

logger = logging.getLogger(__name__)

_INSECURE_DEFAULTS = {"change-me", "change-me-too", ""}


@dataclass
class Settings:
    app_name: str = "Creator Ops Agent Core"
    app_env: Literal["dev", "test", "prod"] = "dev"
    app_version: str = "0.1.0"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    database_url: str = "sqlite:///./creator_ops.db"
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_ttl_minutes: int = 60

    llm_api_key: str | None = None
    llm_api_base: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 120.0

    tool_server_url: str = "http://localhost:8974"
    tool_server_token: str | None = None
    tool_timeout_seconds: float = 30.0

    payment_api_base: str = "https://api.thirdweb.com/v1"
    payment_client_id: str | None = None
    payment_secret_key: str | None = None
    payment_timeout_seconds: float = 30.0

    max_daily_transactions: int = 50
    approval_ttl_seconds: int = 60 * 60 * 24
    step_max_attempts: int = 1
    reconciliation_enabled: bool = True
    reconciliation_batch_size: int = 100
    reconciliation_interval_seconds: int = 60

    confirmation_secret: str | None = None
    confirmation_ttl_seconds: int = 600
    confirmation_threshold: float = 1.0

    balance_cache_ttl_seconds: float = 30.0

    rate_limit_per_minute: int = 120
    transfer_rate_limit_per_minute: int = 30


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    def _as_bool(value: str | None, default: bool = False) -> bool:
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}

    app_env = getenv("APP_ENV", "dev")
    jwt_secret = getenv("JWT_SECRET", "")

    # In production, refuse to start with insecure/missing secrets
    if app_env == "prod":
        if jwt_secret in _INSECURE_DEFAULTS:
            raise RuntimeError(
                "JWT_SECRET is not set or uses an insecure default. "
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
    elif jwt_secret in _INSECURE_DEFAULTS:
        jwt_secret = secrets.token_hex(32)
        logger.warning("JWT_SECRET not set — using auto-generated value (not suitable for production)")

    return Settings(
        app_name=getenv("APP_NAME", "Creator Ops Agent Core"),
        app_env=app_env,
        app_version=getenv("APP_VERSION", "0.1.0"),
        app_host=getenv("APP_HOST", "0.0.0.0"),
        app_port=int(getenv("APP_PORT", "8000")),
        database_url=getenv("DATABASE_URL", "sqlite:///./creator_ops.db"),
        jwt_secret=jwt_secret,
        jwt_algorithm=getenv("JWT_ALGORITHM", "HS256"),
        access_token_ttl_minutes=int(getenv("ACCESS_TOKEN_TTL_MINUTES", "60")),
        llm_api_key=getenv("LLM_API_KEY") or getenv("OPENAI_API_KEY"),
        llm_api_base=getenv("LLM_API_BASE", "https://api.openai.com/v1"),
        llm_model=getenv("LLM_MODEL", "gpt-4o"),
        llm_temperature=float(getenv("LLM_TEMPERATURE", "0.7")),
        llm_timeout_seconds=float(getenv("LLM_TIMEOUT_SECONDS", "120")),
        tool_server_url=getenv("TOOL_SERVER_URL", "http://localhost:8974"),
        tool_server_token=getenv("TOOL_SERVER_TOKEN"),
        tool_timeout_seconds=float(getenv("TOOL_TIMEOUT_SECONDS", "30")),
        payment_api_base=getenv("PAYMENT_API_BASE", "https://api.thirdweb.com/v1"),
        payment_client_id=getenv("PAYMENT_CLIENT_ID"),
        payment_secret_key=getenv("PAYMENT_SECRET_KEY"),
        payment_timeout_seconds=float(getenv("PAYMENT_TIMEOUT_SECONDS", "30")),
        max_daily_transactions=int(getenv("MAX_DAILY_TRANSACTIONS", "50")),
        approval_ttl_seconds=int(getenv("APPROVAL_TTL_SECONDS", str(60 * 60 * 24))),
        step_max_attempts=max(1, int(getenv("STEP_MAX_ATTEMPTS", "1"))),
        reconciliation_enabled=_as_bool(getenv("RECONCILIATION_ENABLED"), True),
        reconciliation_batch_size=int(getenv("RECONCILIATION_BATCH_SIZE", "100")),
        reconciliation_interval_seconds=int(getenv("RECONCILIATION_INTERVAL_SECONDS", "60")),
        confirmation_secret=getenv("CONFIRMATION_SECRET") or None,
        confirmation_ttl_seconds=int(getenv("CONFIRMATION_TTL_SECONDS", "600")),
        confirmation_threshold=float(getenv("CONFIRMATION_THRESHOLD", "1")),
        balance_cache_ttl_seconds=float(getenv("BALANCE_CACHE_TTL_SECONDS", "30")),
        rate_limit_per_minute=int(getenv("RATE_LIMIT_PER_MINUTE", "120")),
        transfer_rate_limit_per_minute=int(getenv("TRANSFER_RATE_LIMIT_PER_MINUTE", "30")),
    )
