"""auth.py — Internal API key auth and Slack request signature verification.

Routes called by the desktop app authenticate with the X-Bridge-Internal-Key
header (active + rollover keys). Routes called by Slack are verified with the
v0 HMAC signing scheme via slack_sdk.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import hmac
from typing import Any, Dict, Optional, Tuple

from slack_sdk.signature import SignatureVerifier

import config
from aws_clients import _get_slack_signing_secret
from http_utils import _error, _header, _raw_body

__all__ = [
    "_authenticate_internal",
    "_verify_slack_signature",
]


def _authenticate_internal(event: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Returns (claims, None) on success or (None, error_response) on failure."""
    keys = config.BRIDGE_INTERNAL_API_KEYS
    if not keys:
        return None, _error(401, "Internal API key auth is not configured.")

    provided = _header(event, "x-bridge-internal-key")
    if provided and any(hmac.compare_digest(provided, key) for key in keys):
        return {"auth_mode": "internal-key"}, None
    return None, _error(401, "Authentication required.")


def _verify_slack_signature(event: Dict[str, Any]) -> bool:
    """Verify X-Slack-Signature over the raw body; also rejects stale timestamps."""
    timestamp = _header(event, "x-slack-request-timestamp")
    signature = _header(event, "x-slack-signature")
    if not timestamp or not signature:
        return False

    verifier = SignatureVerifier(signing_secret=_get_slack_signing_secret())
    return verifier.is_valid(body=_raw_body(event), timestamp=timestamp, signature=signature)
