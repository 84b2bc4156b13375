"""aws_clients.py — Secrets Manager client singleton and cached credential lookups.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import os
import time
from typing import Dict, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config import (
    JIRA_API_TOKEN_SECRET_ID,
    SECRET_CACHE_TTL_SECONDS,
    SECRETS_REGION,
    SLACK_BOT_TOKEN_SECRET_ID,
    SLACK_SIGNING_SECRET_ID,
    logger,
)
from errors import ConfigurationError

__all__ = [
    "_get_jira_api_token",
    "_get_secret",
    "_get_secretsmanager",
    "_get_slack_bot_token",
    "_get_slack_signing_secret",
    "_reset_secret_cache",
]

# ---------------------------------------------------------------------------
# AWS client singletons
# ---------------------------------------------------------------------------

_secretsmanager = None


def _get_secretsmanager():
    global _secretsmanager
    if _secretsmanager is None:
        _secretsmanager = boto3.client(
            "secretsmanager",
            region_name=SECRETS_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _secretsmanager


# ---------------------------------------------------------------------------
# Secret cache (re-fetch from Secrets Manager every hour)
# ---------------------------------------------------------------------------

_secret_cache: Dict[str, Tuple[str, float]] = {}


def _reset_secret_cache() -> None:
    _secret_cache.clear()


def _get_secret(env_name: str, secret_id: str) -> str:
    """Return a credential from the environment, else Secrets Manager (cached).

    Raises ConfigurationError when neither source yields a value.
    """
    direct = os.environ.get(env_name, "").strip()
    if direct:
        return direct

    now = time.time()
    cached = _secret_cache.get(secret_id)
    if cached and (now - cached[1]) < SECRET_CACHE_TTL_SECONDS:
        return cached[0]

    if not secret_id:
        raise ConfigurationError(f"{env_name} is not configured")

    try:
        resp = _get_secretsmanager().get_secret_value(SecretId=secret_id)
    except (BotoCoreError, ClientError) as exc:
        logger.error("Secret lookup failed for %s: %s", secret_id, exc)
        raise ConfigurationError(f"{env_name} is not configured") from exc

    value = str(resp.get("SecretString") or "").strip()
    if not value:
        raise ConfigurationError(f"{env_name} is not configured")
    _secret_cache[secret_id] = (value, now)
    return value


def _get_slack_bot_token() -> str:
    return _get_secret("SLACK_BOT_TOKEN", SLACK_BOT_TOKEN_SECRET_ID)


def _get_slack_signing_secret() -> str:
    return _get_secret("SLACK_SIGNING_SECRET", SLACK_SIGNING_SECRET_ID)


def _get_jira_api_token() -> str:
    return _get_secret("JIRA_API_TOKEN", JIRA_API_TOKEN_SECRET_ID)
