"""Centralized configuration for the City General call-center router.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/city-general-callcenter/<VARIABLE_NAME>``.

The LLM key is optional.  Without it every LLM call fails fast with
``UpstreamUnavailable`` and the router answers from its deterministic paths.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = "/city-general-callcenter"

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
        import boto3  # noqa: PLC0415 (lazy import)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        return _get_ssm_parameter(name)

    logger.warning("%s is not configured; LLM calls will use canned replies", name)
    return None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise OSError(f"Invalid integer for {name}: {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise OSError(f"Invalid number for {name}: {raw!r}") from exc


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str | None = _optional_secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Classification runs on the cheaper model
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")

LLM_TIMEOUT_SECONDS: float = _float_env("LLM_TIMEOUT_SECONDS", 20.0)
LLM_MAX_ATTEMPTS: int = max(1, _int_env("LLM_MAX_ATTEMPTS", 2))
LLM_HISTORY_TURNS: int = _int_env("LLM_HISTORY_TURNS", 10)

# ── Sessions ────────────────────────────────────────────────────────
SESSION_TTL_SECONDS: float = _float_env("SESSION_TTL_SECONDS", 30 * 60)
SESSION_MAX_ENTRIES: int = _int_env("SESSION_MAX_ENTRIES", 10_000)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
