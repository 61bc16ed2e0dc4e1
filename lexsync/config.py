"""Core application configuration & tunable sync rules.

All operational knobs that may evolve (batch sizes, pauses, retry budgets,
token lifetime, scheduler trigger time, CRM field limits) are centralized here
so they can be adjusted without diving into service logic. Values are read from
the environment (a local ``.env`` file is honoured) and kept as module constants;
tests monkeypatch the dicts in place.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ------------------------------ Source (LEX) ------------------------------ #
LEX_API_BASE_URL: str = os.getenv("LEX_API_BASE_URL", "https://live1.lexship.com/api").rstrip("/")
LEX_BEARER_TOKEN: str | None = os.getenv("LEX_BEARER_TOKEN") or None
# Customer-detail endpoint historically used a separate token
LEX_CUSTOMER_BEARER_TOKEN: str | None = os.getenv("LEX_CUSTOMER_BEARER_TOKEN") or LEX_BEARER_TOKEN

# ------------------------------ Target (Zoho) ----------------------------- #
ZOHO_API_BASE_URL: str = os.getenv("ZOHO_API_BASE_URL", "https://www.zohoapis.in/crm/v2").rstrip("/")
ZOHO_SHIPMENTS_MODULE: str = os.getenv("ZOHO_SHIPMENTS_MODULE", "Shipments")
ZOHO_CLIENT_ID: str | None = os.getenv("ZOHO_CLIENT_ID") or None
ZOHO_CLIENT_SECRET: str | None = os.getenv("ZOHO_CLIENT_SECRET") or None
ZOHO_REFRESH_TOKEN: str | None = os.getenv("ZOHO_REFRESH_TOKEN") or None
ZOHO_TOKEN_URL: str = os.getenv("ZOHO_TOKEN_URL", "https://accounts.zoho.in/oauth/v2/token")

ZOHO_TOKEN_SETTINGS: dict[str, float] = {
    # Zoho tokens live one hour; refresh slightly early (~58 min)
    "ttl_seconds": 3500,
}

HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# ------------------------------ Inbound API ------------------------------- #
API_AUTH_TOKEN: str | None = os.getenv("API_AUTH_TOKEN") or None
CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# ------------------------------- Batching --------------------------------- #
BATCH_SETTINGS: dict[str, int | float] = {
    "batch_size": int(os.getenv("SYNC_BATCH_SIZE", "80")),
    "inter_batch_pause_seconds": 2.0,
    # Courtesy pause between per-AWB existence checks in the daily pass
    "item_pause_seconds": 0.2,
    # Concurrent items inside one batch; 0 means "whole batch at once"
    "max_concurrency": 0,
}

# ------------------------------ Retry Policy ------------------------------ #
RETRY_POLICY: dict[str, dict[str, int | float]] = {
    # Outer per-item submit retry (fixed delay)
    "submit": {
        "max_attempts": 3,
        "delay_seconds": 2.0,
    },
    # Source write-back of the CRM id (exponential)
    "write_back": {
        "max_attempts": 3,
        "base_seconds": 1.0,
        "factor": 2,
        "max_seconds": 30.0,
    },
    # Deferred drain of the failed-operation queue (fixed delay)
    "drain": {
        "max_attempts": 3,
        "delay_seconds": 2.0,
    },
}

# ------------------------------- Scheduler -------------------------------- #
SCHEDULER_SETTINGS: dict[str, int | str | bool] = {
    "enabled": _env_bool("ENABLE_SYNC_SCHEDULER", "true"),
    "hour": int(os.getenv("SYNC_HOUR", "4")),
    "minute": int(os.getenv("SYNC_MINUTE", "0")),
    "timezone": os.getenv("SYNC_TIMEZONE", "Asia/Kolkata"),
}

# ------------------------------ CRM schema -------------------------------- #
FIELD_LIMITS: dict[str, int] = {
    "Description": 255,
    "HS_Code": 9,
}

# -------------------------------- Logging --------------------------------- #
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR: str = os.getenv("LOG_DIR", "logs")
LOG_TO_FILE: bool = _env_bool("LOG_TO_FILE", "true")

# Settings without which the service cannot talk to either system
REQUIRED_SETTINGS: tuple[str, ...] = (
    "LEX_BEARER_TOKEN",
    "ZOHO_CLIENT_ID",
    "ZOHO_CLIENT_SECRET",
    "ZOHO_REFRESH_TOKEN",
)


def validate_settings() -> list[str]:
    """Return the names of required settings that are missing or blank."""
    module_globals = globals()
    return [name for name in REQUIRED_SETTINGS if not module_globals.get(name)]


__all__ = [
    "LEX_API_BASE_URL",
    "LEX_BEARER_TOKEN",
    "LEX_CUSTOMER_BEARER_TOKEN",
    "ZOHO_API_BASE_URL",
    "ZOHO_SHIPMENTS_MODULE",
    "ZOHO_CLIENT_ID",
    "ZOHO_CLIENT_SECRET",
    "ZOHO_REFRESH_TOKEN",
    "ZOHO_TOKEN_URL",
    "ZOHO_TOKEN_SETTINGS",
    "HTTP_TIMEOUT_SECONDS",
    "API_AUTH_TOKEN",
    "CORS_ORIGINS",
    # Rule groups
    "BATCH_SETTINGS",
    "RETRY_POLICY",
    "SCHEDULER_SETTINGS",
    "FIELD_LIMITS",
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_TO_FILE",
    "REQUIRED_SETTINGS",
    "validate_settings",
]
