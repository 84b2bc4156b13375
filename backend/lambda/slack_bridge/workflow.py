"""workflow.py — Two-phase confirmation flow over the coordination store.

    initiate_confirmation   thread check → field options → registry put → Slack prompt
    confirm_action          registry get → stable action id → enqueue → thread flag
    execute_action          dedup re-check → executor.create → mark processed
    confirm_and_execute     inline path: confirm + execute + registry remove
    confirm_for_worker      poll path: confirm + registry remove; a worker executes later

Idempotency is invisible to callers: a duplicate confirmation or a refused
second initiation comes back as a successful no-op.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import time
from typing import Any, Dict, Optional, Tuple

from blocks import render_prompt
from config import DEFAULT_PROJECT_KEY, logger
from errors import BridgeError, DuplicateError, ExecutionError, NotFoundError, NotificationError
from observability import _emit_structured_observability, _now_z
from store import (
    ActionKind,
    QueuedAction,
    Store,
    _STATUS_PROCESSED,
    action_id_for,
    thread_key_for,
)

__all__ = [
    "_normalize_request",
    "confirm_action",
    "confirm_and_execute",
    "confirm_for_worker",
    "execute_action",
    "initiate_confirmation",
]

_COMPONENT = "slack_bridge"
_LEGACY_CATEGORY_KEYS = ("pillar", "pod")
_LEGACY_OPTION_KEYS = {"pillarOptions": "pillar", "podOptions": "pod"}
_KIND_LABELS = {ActionKind.TICKET: "Jira ticket", ActionKind.DOC: "Confluence doc"}


def _normalize_request(body: Dict[str, Any]) -> Tuple[str, ActionKind, Dict[str, Any]]:
    """Validate an initiation body and return (request_id, kind, payload).

    Raises ValueError on missing routing fields or an unknown kind.
    """
    kind = ActionKind.parse(body.get("kind") or ActionKind.TICKET)

    channel = str(body.get("channel") or "").strip()
    message_ts = str(body.get("messageTs") or body.get("messageTimestamp") or "").strip()
    if not channel or not message_ts:
        raise ValueError("Fields 'channel' and 'messageTs' are required.")
    title = str(body.get("title") or "").strip()
    if not title:
        raise ValueError("Field 'title' is required.")

    request_id = str(body.get("requestId") or "").strip() or f"req_{int(time.time() * 1000)}"

    categories = dict(body.get("categoryFields") or {})
    for key in _LEGACY_CATEGORY_KEYS:
        if body.get(key) and key not in categories:
            categories[key] = body[key]

    options = dict(body.get("fieldOptions") or {})
    for legacy, name in _LEGACY_OPTION_KEYS.items():
        if body.get(legacy) and name not in options:
            options[name] = body[legacy]

    payload: Dict[str, Any] = {
        "requestId": request_id,
        "kind": kind.value,
        "title": title,
        "description": body.get("description") or body.get("threadContext") or "",
        "assigneeName": body.get("assigneeName"),
        "assigneeEmail": body.get("assigneeEmail"),
        "reporterName": body.get("reporterName"),
        "reporterEmail": body.get("reporterEmail"),
        "parent": body.get("parent"),
        "priority": body.get("priority") or "Medium",
        "projectKey": body.get("projectKey") or DEFAULT_PROJECT_KEY,
        "categoryFields": categories,
        "channel": channel,
        "messageTs": message_ts,
        "threadTs": body.get("threadTs") or body.get("threadTimestamp"),
        "user": body.get("user"),
        "teamId": body.get("teamId"),
        "createdAt": body.get("createdAt") or _now_z(),
        "fieldOptions": options,
    }
    return request_id, kind, payload


def _thread_key(payload: Dict[str, Any]) -> str:
    return thread_key_for(payload["channel"], payload["messageTs"], payload.get("threadTs"))


# ---------------------------------------------------------------------------
# Phase 1: initiation
# ---------------------------------------------------------------------------


def initiate_confirmation(store: Store, body: Dict[str, Any], *, channel, options_provider=None) -> Dict[str, Any]:
    """Post a confirmation prompt unless the thread already owns an artifact of this kind."""
    request_id, kind, payload = _normalize_request(body)
    thread_key = _thread_key(payload)

    if store.threads.has_flag(thread_key, kind):
        logger.info("[INFO] thread %s already has a %s; not prompting again", thread_key, kind.value)
        return {"request_id": request_id, "kind": kind.value, "thread_key": thread_key, "skipped": True}

    if kind is ActionKind.TICKET and options_provider is not None and not payload["fieldOptions"]:
        try:
            payload["fieldOptions"] = options_provider.fetch(payload["projectKey"])
        except ValueError as exc:
            logger.warning("Field options unavailable, sending prompt without them: %s", exc)
            payload["fieldOptions"] = {}

    store.requests.put(request_id, payload, kind)
    prompt = render_prompt(kind, request_id, payload)
    try:
        message_ts = channel.post_confirmation(
            payload["channel"],
            payload.get("user"),
            payload.get("threadTs") or payload["messageTs"],
            request_id,
            prompt,
        )
    except BridgeError:
        store.requests.remove(request_id)
        raise

    _emit_structured_observability(
        component=_COMPONENT,
        event="confirmation_requested",
        request_id=request_id,
        extra={"kind": kind.value, "thread_key": thread_key},
    )
    return {
        "request_id": request_id,
        "kind": kind.value,
        "thread_key": thread_key,
        "message_ts": message_ts,
        "skipped": False,
    }


# ---------------------------------------------------------------------------
# Phase 2: confirmation and execution
# ---------------------------------------------------------------------------


def confirm_action(
    store: Store,
    request_id: str,
    payload: Optional[Dict[str, Any]] = None,
) -> Tuple[QueuedAction, bool]:
    """Turn a live request into a queued action. Returns (action, inserted).

    Raises NotFoundError (or RequestExpiredError) when the request is unknown
    to this process; nothing is created in that case.
    """
    entry = store.requests.require(request_id)
    merged = payload if payload is not None else dict(entry.payload)
    action_id = action_id_for(merged["channel"], merged["messageTs"], entry.kind)
    thread_key = _thread_key(merged)

    inserted = store.queue.enqueue(
        QueuedAction(id=action_id, kind=entry.kind, thread_key=thread_key, payload=merged)
    )
    action = store.queue.get(action_id)
    if action is not None and not inserted and payload is not None and not action.processed:
        # Resubmitted after a failed run; execute what the user entered last.
        action.payload = merged
    if action is None:
        # Already processed and since pruned from the queue.
        action = QueuedAction(id=action_id, kind=entry.kind, thread_key=thread_key, payload=merged,
                              status=_STATUS_PROCESSED, created_at=store.clock())
    store.threads.set_flag(thread_key, entry.kind)

    _emit_structured_observability(
        component=_COMPONENT,
        event="action_confirmed",
        request_id=request_id,
        action_id=action_id,
        extra={"inserted": inserted, "kind": entry.kind.value},
    )
    return action, inserted


def execute_action(store: Store, action_id: str, executor) -> Dict[str, str]:
    """Run the external create-call for a pending action.

    Raises DuplicateError when the action already completed, ExecutionError
    when the call fails (the action stays pending and may be retried).
    """
    if store.dedup.has(action_id):
        raise DuplicateError(f"Action {action_id} already processed", action_id=action_id)
    action = store.queue.get(action_id)
    if action is None:
        raise NotFoundError(f"Action {action_id} is not queued", action_id=action_id)

    started = time.time()
    try:
        result = executor.create(action.payload)
    except ExecutionError as exc:
        _emit_structured_observability(
            component=_COMPONENT,
            event="action_failed",
            action_id=action_id,
            latency_ms=int((time.time() - started) * 1000),
            error_code=exc.code,
        )
        raise

    store.queue.mark_processed(action_id)
    _emit_structured_observability(
        component=_COMPONENT,
        event="action_executed",
        action_id=action_id,
        latency_ms=int((time.time() - started) * 1000),
        extra={"external_id": result.get("external_id", "")},
    )
    return result


def _notify(channel, payload: Dict[str, Any], text: str) -> None:
    if channel is None:
        return
    try:
        channel.post_reply(payload["channel"], payload.get("threadTs") or payload["messageTs"], text)
    except NotificationError as exc:
        logger.warning("Thread notification skipped: %s", exc)


def _mark_done(channel, payload: Dict[str, Any]) -> None:
    if channel is None:
        return
    channel.remove_reaction(payload["channel"], payload["messageTs"], "eyes")
    channel.add_reaction(payload["channel"], payload["messageTs"], "white_check_mark")


def confirm_and_execute(
    store: Store,
    request_id: str,
    executor,
    *,
    payload: Optional[Dict[str, Any]] = None,
    channel=None,
) -> Dict[str, Any]:
    """Inline path: confirm, execute, and drop the request once the action completed."""
    action, inserted = confirm_action(store, request_id, payload)
    label = _KIND_LABELS[action.kind]

    try:
        result = execute_action(store, action.id, executor)
    except DuplicateError:
        logger.info("[INFO] confirmation %s is a duplicate of completed action %s", request_id, action.id)
        store.requests.remove(request_id)
        return {"action_id": action.id, "status": "duplicate", "inserted": inserted}
    except ExecutionError as exc:
        _notify(channel, action.payload, f":warning: Failed to create {label}: {exc.message}\n"
                                         "Submit the confirmation again to retry.")
        raise

    store.requests.remove(request_id)
    _notify(channel, action.payload, f":white_check_mark: {label} created: <{result['url']}|{result['external_id']}>")
    _mark_done(channel, action.payload)
    return {"action_id": action.id, "status": "executed", "inserted": inserted, **result}


def confirm_for_worker(store: Store, request_id: str, *, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Poll path: queue the action for the desktop worker and drop the request."""
    action, inserted = confirm_action(store, request_id, payload)
    store.requests.remove(request_id)
    status = "duplicate" if action.processed or not inserted else "queued"
    return {"action_id": action.id, "status": status, "inserted": inserted}
