"""Centralized configuration for the salon WhatsApp booking bot.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/salon-bot/<VARIABLE_NAME>``.
Per-tenant WhatsApp credentials are NOT configured here; they live on the
tenant row in the database.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/salon-bot/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /salon-bot/{name} (AWS)."
    )


def _optional_env(name: str) -> str | None:
    """Like ``_require_env`` but returns ``None`` instead of raising."""
    try:
        return _require_env(name)
    except OSError:
        return None


# ── LLM (OpenAI-compatible chat-completions endpoint) ───────────────
LLM_API_KEY: str = _require_env("LLM_API_KEY")
LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
MODEL_NAME: str = os.getenv("MODEL_NAME", "gpt-4o-mini")
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "500"))
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))

# Applies to both the LLM call and the WhatsApp send
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

# ── WhatsApp Cloud API ───────────────────────────────────────────────
WHATSAPP_GRAPH_URL: str = os.getenv(
    "WHATSAPP_GRAPH_URL", "https://graph.facebook.com/v21.0",
)

# ── Database ─────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./salon_bot.db")

# ── Conversation behaviour ──────────────────────────────────────────
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))
PREVIEW_LENGTH: int = int(os.getenv("PREVIEW_LENGTH", "100"))
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")

# ── Operator API ─────────────────────────────────────────────────────
# Unset means the operator endpoints are open (local dev only).
OPERATOR_API_KEY: str | None = _optional_env("OPERATOR_API_KEY")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
