"""http_utils.py — HTTP response building, body parsing, path/method extraction.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs

from config import CORS_ORIGIN
from errors import BridgeError

__all__ = [
    "_bridge_error",
    "_cors_headers",
    "_error",
    "_form_payload",
    "_header",
    "_json_body",
    "_path_method",
    "_query_param",
    "_raw_body",
    "_response",
]

# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Accept, Content-Type, X-Bridge-Internal-Key",
    }


def _response(status_code: int, payload: Any) -> Dict[str, Any]:
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, Decimal):
            if obj % 1 == 0:
                return int(obj)
            return float(obj)
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

    return {
        "statusCode": status_code,
        "headers": {**_cors_headers(), "Content-Type": "application/json"},
        "body": json.dumps(payload, default=_json_default),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        if status_code == 400:
            code = "INVALID_INPUT"
        elif status_code == 401:
            code = "PERMISSION_DENIED"
        elif status_code == 404:
            code = "NOT_FOUND"
        elif status_code == 409:
            code = "CONFLICT"
        else:
            code = "INTERNAL_ERROR"
    retryable = bool(extra.pop("retryable", status_code >= 500 or code == "UPSTREAM_ERROR"))
    details = dict(extra)
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": details,
        },
    }
    body.update(details)
    return _response(status_code, body)


def _bridge_error(exc: BridgeError) -> Dict[str, Any]:
    return _error(exc.status_code, exc.message, code=exc.code, retryable=exc.retryable, **exc.details)


def _raw_body(event: Dict[str, Any]) -> str:
    raw = event.get("body") or ""
    if raw and event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    return raw


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = _raw_body(event)
    if raw == "":
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


def _form_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    """Decode the JSON `payload` field of a form-encoded Slack interaction."""
    form = parse_qs(_raw_body(event), keep_blank_values=True)
    values = form.get("payload") or []
    if not values:
        raise ValueError("No payload in request")
    try:
        parsed = json.loads(values[0])
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid interaction payload: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Interaction payload must be an object")
    return parsed


def _header(event: Dict[str, Any], name: str) -> str:
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return str(value or "")
    return ""


def _query_param(event: Dict[str, Any], name: str, default: Optional[str] = None) -> Optional[str]:
    params = event.get("queryStringParameters") or {}
    value = params.get(name)
    return value if value not in (None, "") else default


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    method = (event.get("requestContext", {}).get("http", {}).get("method") or event.get("httpMethod") or "").upper()
    path = event.get("rawPath") or event.get("path") or "/"
    return method, path
