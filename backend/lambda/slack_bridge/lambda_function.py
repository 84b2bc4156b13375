"""slack_bridge/lambda_function.py — Slack confirmation bridge for Jira tickets and Confluence docs.

Routes (API Gateway HTTP API):
    GET     /api/slack/health            — liveness + store counters
    POST    /api/slack/confirmations     — post a confirmation prompt into a thread
    POST    /api/slack/interactions      — Slack interactivity (buttons, modal submits)
    GET     /api/slack/pending-tasks     — confirmed actions awaiting the desktop worker
    POST    /api/slack/pending-tasks     — mark a confirmed action processed
    GET     /api/slack/field-options     — Jira field option sets for a project
    POST    /api/slack/reply             — post a reply into a Slack thread
    OPTIONS /api/slack/*                 — CORS preflight

Auth:
    /interactions: Slack v0 request signature (X-Slack-Signature).
    /confirmations, /pending-tasks, /field-options, /reply: X-Bridge-Internal-Key header.

Environment variables:
    BRIDGE_INTERNAL_API_KEY     service auth key (+ _PREVIOUS / _KEYS for rotation)
    SLACK_BOT_TOKEN             or SLACK_BOT_TOKEN_SECRET_ID in Secrets Manager
    SLACK_SIGNING_SECRET        or SLACK_SIGNING_SECRET_ID in Secrets Manager
    JIRA_BASE_URL, JIRA_EMAIL   Atlassian site + account for executors
    JIRA_API_TOKEN              or JIRA_API_TOKEN_SECRET_ID in Secrets Manager
    CONFLUENCE_SPACE_KEY        space for created docs
    FIELD_OPTIONS_URL           desktop endpoint serving Jira field options
    EXECUTION_MODE              inline (default) | poll

State lives in memory of the warm container only; see store.py.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import config
from auth import _authenticate_internal, _verify_slack_signature
from blocks import (
    DOC_MODAL_CALLBACK_ID,
    OPEN_DOC_MODAL_ACTION,
    OPEN_TICKET_MODAL_ACTION,
    TICKET_MODAL_CALLBACK_ID,
    build_modal,
    parse_submission,
)
from config import DEFAULT_PROJECT_KEY, logger
from errors import EXPIRED_MESSAGE, BridgeError, NotFoundError
from executor import _executor_for_kind
from field_options import HttpFieldOptionsProvider
from http_utils import (
    _bridge_error,
    _cors_headers,
    _error,
    _form_payload,
    _json_body,
    _path_method,
    _query_param,
    _response,
)
from observability import _now_z
from slack_client import _get_notification_channel
from store import ActionKind, Store
from workflow import confirm_and_execute, confirm_for_worker, initiate_confirmation

# ---------------------------------------------------------------------------
# Store singleton (one per warm container)
# ---------------------------------------------------------------------------

_store: Optional[Store] = None
_options_provider: Optional[HttpFieldOptionsProvider] = None


def _get_store() -> Store:
    global _store
    if _store is None:
        _store = Store()
    return _store


def _get_options_provider() -> HttpFieldOptionsProvider:
    global _options_provider
    if _options_provider is None:
        _options_provider = HttpFieldOptionsProvider()
    return _options_provider


# ---------------------------------------------------------------------------
# GET /api/slack/health
# ---------------------------------------------------------------------------


def _handle_health() -> Dict[str, Any]:
    return _response(200, {
        "status": "ok",
        "message": "Slack bridge is running",
        "timestamp": _now_z(),
        "execution_mode": config.EXECUTION_MODE,
        **_get_store().stats(),
    })


# ---------------------------------------------------------------------------
# POST /api/slack/confirmations
# ---------------------------------------------------------------------------


def _handle_create_confirmation(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    logger.info("[INFO] confirmation requested: request_id=%s kind=%s", body.get("requestId"), body.get("kind"))
    try:
        result = initiate_confirmation(
            _get_store(),
            body,
            channel=_get_notification_channel(),
            options_provider=_get_options_provider(),
        )
    except ValueError as exc:
        return _error(400, str(exc))
    except BridgeError as exc:
        return _bridge_error(exc)

    return _response(200, {"success": True, **result})


# ---------------------------------------------------------------------------
# POST /api/slack/interactions
# ---------------------------------------------------------------------------


def _handle_open_modal(payload: Dict[str, Any], action: Dict[str, Any]) -> Dict[str, Any]:
    request_id = str(action.get("value") or "")
    entry = _get_store().requests.get_request(request_id)
    if entry is None:
        logger.warning("Confirmation %s not found when opening modal", request_id)
        return _error(404, EXPIRED_MESSAGE, request_id=request_id)

    try:
        _get_notification_channel().open_modal(payload.get("trigger_id") or "", build_modal(entry.kind, request_id, entry.payload))
    except BridgeError as exc:
        return _bridge_error(exc)
    return _response(200, {"ok": True})


def _modal_errors(kind: ActionKind, message: str) -> Dict[str, Any]:
    block_id = "ticket_title" if kind is ActionKind.TICKET else "doc_title"
    return _response(200, {"response_action": "errors", "errors": {block_id: message}})


def _handle_view_submission(payload: Dict[str, Any]) -> Dict[str, Any]:
    view = payload.get("view") or {}
    kind = ActionKind.TICKET if view.get("callback_id") == TICKET_MODAL_CALLBACK_ID else ActionKind.DOC
    request_id = str(view.get("private_metadata") or "")
    store = _get_store()

    try:
        entry = store.requests.require(request_id)
    except NotFoundError as exc:
        logger.warning("Confirmation %s rejected: %s", request_id, exc.code)
        return _modal_errors(kind, exc.message)

    merged = parse_submission(entry.kind, (view.get("state") or {}).get("values") or {}, entry.payload)
    try:
        if config.EXECUTION_MODE == "poll":
            result = confirm_for_worker(store, request_id, payload=merged)
        else:
            result = confirm_and_execute(
                store,
                request_id,
                _executor_for_kind(entry.kind),
                payload=merged,
                channel=_get_notification_channel(),
            )
    except BridgeError as exc:
        logger.error("Confirmation %s failed: %s", request_id, exc.message)
        return _modal_errors(kind, f"{exc.message} Please try again.")

    logger.info("[INFO] confirmation %s -> %s (%s)", request_id, result["action_id"], result["status"])
    return _response(200, {"response_action": "clear"})


def _handle_interactions(event: Dict[str, Any]) -> Dict[str, Any]:
    if not _verify_slack_signature(event):
        logger.warning("Slack signature verification failed")
        return _error(401, "Invalid Slack signature.")

    try:
        payload = _form_payload(event)
    except ValueError as exc:
        return _error(400, str(exc))

    interaction_type = payload.get("type")
    logger.info("[INFO] Slack interaction received: %s", interaction_type)

    if interaction_type == "block_actions":
        action = (payload.get("actions") or [{}])[0]
        if action.get("action_id") in (OPEN_TICKET_MODAL_ACTION, OPEN_DOC_MODAL_ACTION):
            return _handle_open_modal(payload, action)

    if interaction_type == "view_submission":
        callback_id = (payload.get("view") or {}).get("callback_id")
        if callback_id in (TICKET_MODAL_CALLBACK_ID, DOC_MODAL_CALLBACK_ID):
            return _handle_view_submission(payload)
        logger.info("[INFO] Unknown callback_id: %s", callback_id)

    return _response(200, {"ok": True})


# ---------------------------------------------------------------------------
# GET/POST /api/slack/pending-tasks
# ---------------------------------------------------------------------------


def _handle_list_pending() -> Dict[str, Any]:
    tasks = [action.to_dict() for action in _get_store().queue.list()]
    return _response(200, {"success": True, "tasks": tasks, "count": len(tasks)})


def _handle_mark_processed(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    task_id = str(body.get("taskId") or "").strip()
    if not task_id:
        return _error(400, "taskId is required")

    found = _get_store().queue.mark_processed(task_id)
    return _response(200, {"success": True, "message": "Task marked as processed", "found": found})


# ---------------------------------------------------------------------------
# GET /api/slack/field-options
# ---------------------------------------------------------------------------


def _handle_field_options(event: Dict[str, Any]) -> Dict[str, Any]:
    project_key = _query_param(event, "projectKey", DEFAULT_PROJECT_KEY)
    try:
        sets = _get_options_provider().fetch(project_key)
    except ValueError as exc:
        logger.warning("Field options unavailable for %s: %s", project_key, exc)
        return _response(200, {"success": False, "projectKey": project_key, "fieldOptions": {}})
    return _response(200, {"success": True, "projectKey": project_key, "fieldOptions": sets})


# ---------------------------------------------------------------------------
# POST /api/slack/reply
# ---------------------------------------------------------------------------


def _handle_reply(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    channel = str(body.get("channel") or "").strip()
    text = str(body.get("text") or "").strip()
    if not channel or not text:
        return _error(400, "Fields 'channel' and 'text' are required.")

    try:
        ts = _get_notification_channel().post_reply(channel, body.get("threadTs"), text)
    except BridgeError as exc:
        return _bridge_error(exc)
    return _response(200, {"success": True, "ts": ts})


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


def _route(event: Dict[str, Any]) -> Dict[str, Any]:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": _cors_headers(), "body": ""}

    if method == "GET" and path.endswith("/slack/health"):
        return _handle_health()

    # Slack-signed route
    if method == "POST" and path.endswith("/slack/interactions"):
        return _handle_interactions(event)

    _claims, auth_err = _authenticate_internal(event)
    if auth_err:
        return auth_err

    if method == "POST" and path.endswith("/slack/confirmations"):
        return _handle_create_confirmation(event)
    elif method == "GET" and path.endswith("/slack/pending-tasks"):
        return _handle_list_pending()
    elif method == "POST" and path.endswith("/slack/pending-tasks"):
        return _handle_mark_processed(event)
    elif method == "GET" and path.endswith("/slack/field-options"):
        return _handle_field_options(event)
    elif method == "POST" and path.endswith("/slack/reply"):
        return _handle_reply(event)
    else:
        return _error(404, f"Route not found: {method} {path}")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        return _route(event)
    except BridgeError as exc:
        logger.error("Request failed: %s", exc.message)
        return _bridge_error(exc)
    except Exception:
        logger.exception("Unhandled error in slack_bridge")
        return _error(500, "Internal server error")
