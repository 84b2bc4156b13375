"""config.py — Central configuration — environment variables, constants, logging.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import json
import logging
import os


def _normalize_api_keys(*raw_values: str) -> tuple[str, ...]:
    """Return deduplicated, non-empty key values from scalar/csv env sources."""
    keys: list[str] = []
    seen: set[str] = set()
    for raw in raw_values:
        if not raw:
            continue
        for part in str(raw).split(","):
            key = part.strip()
            if not key or key in seen:
                continue
            seen.add(key)
            keys.append(key)
    return tuple(keys)


__all__ = [
    "BRIDGE_INTERNAL_API_KEY",
    "BRIDGE_INTERNAL_API_KEY_PREVIOUS",
    "BRIDGE_INTERNAL_API_KEYS",
    "CONFLUENCE_SPACE_KEY",
    "CORS_ORIGIN",
    "DEFAULT_PROJECT_KEY",
    "EXECUTION_MODE",
    "FIELD_OPTIONS_TIMEOUT_SECONDS",
    "FIELD_OPTIONS_URL",
    "JIRA_API_TOKEN_SECRET_ID",
    "JIRA_BASE_URL",
    "JIRA_CATEGORY_FIELDS",
    "JIRA_EMAIL",
    "JIRA_ISSUE_TYPE",
    "JIRA_TIMEOUT_SECONDS",
    "REQUEST_TTL_SECONDS",
    "SECRETS_REGION",
    "SECRET_CACHE_TTL_SECONDS",
    "SLACK_BOT_TOKEN_SECRET_ID",
    "SLACK_SIGNING_SECRET_ID",
    "_EXECUTION_MODES",
    "logger",
]

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")
SECRETS_REGION = os.environ.get("SECRETS_REGION", "us-west-2")

BRIDGE_INTERNAL_API_KEY = os.environ.get("BRIDGE_INTERNAL_API_KEY", "")
BRIDGE_INTERNAL_API_KEY_PREVIOUS = os.environ.get("BRIDGE_INTERNAL_API_KEY_PREVIOUS", "")
BRIDGE_INTERNAL_API_KEYS = _normalize_api_keys(
    os.environ.get("BRIDGE_INTERNAL_API_KEYS", ""),
    BRIDGE_INTERNAL_API_KEY,
    BRIDGE_INTERNAL_API_KEY_PREVIOUS,
)

# Secrets Manager ids; the SLACK_BOT_TOKEN / SLACK_SIGNING_SECRET / JIRA_API_TOKEN
# env vars take precedence when set (local runs, tests).
SLACK_BOT_TOKEN_SECRET_ID = os.environ.get("SLACK_BOT_TOKEN_SECRET_ID", "slack-bridge/slack-bot-token")
SLACK_SIGNING_SECRET_ID = os.environ.get("SLACK_SIGNING_SECRET_ID", "slack-bridge/slack-signing-secret")
JIRA_API_TOKEN_SECRET_ID = os.environ.get("JIRA_API_TOKEN_SECRET_ID", "slack-bridge/jira-api-token")
SECRET_CACHE_TTL_SECONDS = float(os.environ.get("SECRET_CACHE_TTL_SECONDS", "3600"))

FIELD_OPTIONS_URL = os.environ.get("FIELD_OPTIONS_URL", "http://localhost:54321/jira-field-options")
FIELD_OPTIONS_TIMEOUT_SECONDS = float(os.environ.get("FIELD_OPTIONS_TIMEOUT_SECONDS", "5"))
DEFAULT_PROJECT_KEY = os.environ.get("DEFAULT_PROJECT_KEY", "AMP")

JIRA_BASE_URL = os.environ.get("JIRA_BASE_URL", "").rstrip("/")
JIRA_EMAIL = os.environ.get("JIRA_EMAIL", "")
JIRA_ISSUE_TYPE = os.environ.get("JIRA_ISSUE_TYPE", "Task")
JIRA_TIMEOUT_SECONDS = float(os.environ.get("JIRA_TIMEOUT_SECONDS", "15"))

# JSON object mapping a category field name (e.g. "pillar") to a Jira custom field id.
try:
    JIRA_CATEGORY_FIELDS = {
        str(k): str(v) for k, v in json.loads(os.environ.get("JIRA_CATEGORY_FIELDS", "") or "{}").items()
    }
except (ValueError, AttributeError):
    JIRA_CATEGORY_FIELDS = {}

CONFLUENCE_SPACE_KEY = os.environ.get("CONFLUENCE_SPACE_KEY", "")

_EXECUTION_MODES = {"inline", "poll"}
EXECUTION_MODE = os.environ.get("EXECUTION_MODE", "inline").strip().lower()
if EXECUTION_MODE not in _EXECUTION_MODES:
    EXECUTION_MODE = "inline"

# Fixed horizon for registry entries and queue pruning.
REQUEST_TTL_SECONDS = 3600

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)
