"""executor.py — Action executors: Jira issue and Confluence page creation.

Each executor exposes create(payload) -> {"external_id", "url"} and raises
ExecutionError when the Atlassian API call fails, ConfigurationError when the
site or credentials are missing.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import base64
import html
import http.client
import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

import config
from aws_clients import _get_jira_api_token
from config import logger
from errors import ConfigurationError, ExecutionError
from store import ActionKind

__all__ = [
    "ConfluenceDocExecutor",
    "JiraTicketExecutor",
    "_adf_document",
    "_atlassian_request",
    "_executor_for_kind",
    "_storage_body",
]

# ---------------------------------------------------------------------------
# Atlassian REST helpers
# ---------------------------------------------------------------------------


def _auth_header() -> str:
    if not config.JIRA_BASE_URL:
        raise ConfigurationError("JIRA_BASE_URL is not configured")
    if not config.JIRA_EMAIL:
        raise ConfigurationError("JIRA_EMAIL is not configured")
    raw = f"{config.JIRA_EMAIL}:{_get_jira_api_token()}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _atlassian_request(method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
    """Call the Atlassian site API. Raises ExecutionError on transport/HTTP failure."""
    url = f"{config.JIRA_BASE_URL}{path}"
    req = urllib.request.Request(
        url,
        method=method,
        data=json.dumps(body).encode("utf-8") if body is not None else None,
        headers={
            "Accept": "application/json",
            "Authorization": _auth_header(),
            "Content-Type": "application/json",
        },
    )

    try:
        with urllib.request.urlopen(req, timeout=config.JIRA_TIMEOUT_SECONDS) as resp:
            raw = resp.read()
            return json.loads(raw) if raw else {}
    except urllib.error.HTTPError as exc:
        body_text = exc.read().decode("utf-8", errors="replace")
        logger.error("Atlassian API call failed: %s %s %s %s", method, path, exc.code, body_text)
        raise ExecutionError(f"Atlassian API error ({exc.code}): {body_text}") from exc
    except (urllib.error.URLError, http.client.HTTPException, OSError, json.JSONDecodeError) as exc:
        logger.error("Atlassian API call failed: %s %s: %s", method, path, exc)
        raise ExecutionError(f"Atlassian API unreachable: {exc}") from exc


def _adf_document(text: str) -> Dict[str, Any]:
    """Wrap plain text as an Atlassian Document Format doc, one paragraph per line block."""
    paragraphs = [part.strip() for part in (text or "").split("\n\n") if part.strip()]
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": part}]}
            for part in paragraphs
        ],
    }


def _storage_body(text: str) -> str:
    paragraphs = [part.strip() for part in (text or "").split("\n\n") if part.strip()]
    return "".join(f"<p>{html.escape(part).replace(chr(10), '<br/>')}</p>" for part in paragraphs)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


class JiraTicketExecutor:
    kind = ActionKind.TICKET

    def _lookup_account_id(self, email: str) -> Optional[str]:
        query = urllib.parse.urlencode({"query": email})
        try:
            users = _atlassian_request("GET", f"/rest/api/3/user/search?{query}")
        except ExecutionError as exc:
            logger.warning("Assignee lookup skipped for %s: %s", email, exc)
            return None
        if isinstance(users, list) and users:
            return users[0].get("accountId")
        return None

    def _fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "project": {"key": payload.get("projectKey") or config.DEFAULT_PROJECT_KEY},
            "summary": payload.get("title") or "Untitled",
            "issuetype": {"name": config.JIRA_ISSUE_TYPE},
        }
        if payload.get("description"):
            fields["description"] = _adf_document(payload["description"])
        if payload.get("priority"):
            fields["priority"] = {"name": payload["priority"]}
        if payload.get("parent"):
            fields["parent"] = {"key": payload["parent"]}
        for name, value in (payload.get("categoryFields") or {}).items():
            field_id = config.JIRA_CATEGORY_FIELDS.get(name)
            if field_id and value:
                fields[field_id] = {"value": value}
        return fields

    def create(self, payload: Dict[str, Any]) -> Dict[str, str]:
        fields = self._fields(payload)
        if payload.get("assigneeEmail"):
            account_id = self._lookup_account_id(payload["assigneeEmail"])
            if account_id:
                fields["assignee"] = {"accountId": account_id}

        result = _atlassian_request("POST", "/rest/api/3/issue", {"fields": fields})
        key = str((result or {}).get("key") or "")
        if not key:
            raise ExecutionError("Jira did not return an issue key")
        return {"external_id": key, "url": f"{config.JIRA_BASE_URL}/browse/{key}"}


class ConfluenceDocExecutor:
    kind = ActionKind.DOC

    def create(self, payload: Dict[str, Any]) -> Dict[str, str]:
        space_key = payload.get("spaceKey") or config.CONFLUENCE_SPACE_KEY
        if not space_key:
            raise ConfigurationError("CONFLUENCE_SPACE_KEY is not configured")

        body = {
            "type": "page",
            "title": payload.get("title") or "Untitled",
            "space": {"key": space_key},
            "body": {"storage": {"value": _storage_body(payload.get("description") or ""), "representation": "storage"}},
        }
        result = _atlassian_request("POST", "/wiki/rest/api/content", body) or {}
        page_id = str(result.get("id") or "")
        if not page_id:
            raise ExecutionError("Confluence did not return a page id")
        webui = (result.get("_links") or {}).get("webui") or f"/pages/{page_id}"
        return {"external_id": page_id, "url": f"{config.JIRA_BASE_URL}/wiki{webui}"}


def _executor_for_kind(kind: ActionKind):
    if ActionKind.parse(kind) is ActionKind.TICKET:
        return JiraTicketExecutor()
    return ConfluenceDocExecutor()
