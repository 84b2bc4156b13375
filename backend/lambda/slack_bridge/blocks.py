"""blocks.py — Slack Block Kit rendering for confirmation prompts and review modals.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from store import ActionKind

__all__ = [
    "DOC_MODAL_CALLBACK_ID",
    "OPEN_DOC_MODAL_ACTION",
    "OPEN_TICKET_MODAL_ACTION",
    "PRIORITIES",
    "TICKET_MODAL_CALLBACK_ID",
    "build_doc_modal",
    "build_modal",
    "build_ticket_modal",
    "parse_doc_submission",
    "parse_submission",
    "parse_ticket_submission",
    "render_prompt",
]

OPEN_TICKET_MODAL_ACTION = "open_ticket_modal"
OPEN_DOC_MODAL_ACTION = "open_doc_modal"
TICKET_MODAL_CALLBACK_ID = "ticket_modal"
DOC_MODAL_CALLBACK_ID = "doc_modal"

PRIORITIES = ("High", "Medium", "Low", "Lowest")
_DEFAULT_PRIORITY = "Medium"

_CATEGORY_BLOCK_PREFIX = "category_"


def _plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text}


def _option(value: str) -> Dict[str, Any]:
    return {"text": _plain(value), "value": value}


def _text_input(
    block_id: str,
    action_id: str,
    label: str,
    *,
    initial: Optional[str] = None,
    placeholder: Optional[str] = None,
    multiline: bool = False,
    optional: bool = False,
) -> Dict[str, Any]:
    element: Dict[str, Any] = {"type": "plain_text_input", "action_id": action_id}
    if multiline:
        element["multiline"] = True
    # Slack rejects empty initial values.
    if initial:
        element["initial_value"] = str(initial)
    if placeholder:
        element["placeholder"] = _plain(placeholder)
    block: Dict[str, Any] = {"type": "input", "block_id": block_id, "label": _plain(label), "element": element}
    if optional:
        block["optional"] = True
    return block


def _select_input(
    block_id: str,
    action_id: str,
    label: str,
    options: List[str],
    *,
    initial: Optional[str] = None,
    optional: bool = False,
) -> Dict[str, Any]:
    element: Dict[str, Any] = {
        "type": "static_select",
        "action_id": action_id,
        "options": [_option(value) for value in options],
    }
    if initial and initial in options:
        element["initial_option"] = _option(initial)
    block: Dict[str, Any] = {"type": "input", "block_id": block_id, "label": _plain(label), "element": element}
    if optional:
        block["optional"] = True
    return block


def _category_names(payload: Dict[str, Any]) -> List[str]:
    names = list((payload.get("categoryFields") or {}).keys())
    for name in (payload.get("fieldOptions") or {}).keys():
        if name not in names:
            names.append(name)
    return names


def _option_values(payload: Dict[str, Any], name: str) -> List[str]:
    values: List[str] = []
    for opt in (payload.get("fieldOptions") or {}).get(name) or []:
        value = opt.get("value") if isinstance(opt, dict) else opt
        if value and str(value) not in values:
            values.append(str(value))
    return values


# ---------------------------------------------------------------------------
# Confirmation prompt
# ---------------------------------------------------------------------------


def render_prompt(kind: ActionKind, request_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return {"text", "blocks"} for the message asking a human to confirm."""
    kind = ActionKind.parse(kind)
    title = payload.get("title") or "Untitled"
    mention = f"<@{payload['user']}> " if payload.get("user") else ""

    if kind is ActionKind.TICKET:
        lines = [
            f"{mention}:eyes: Ready to create Jira ticket: *{title}*",
            "",
            f"*Parent:* {payload.get('parent') or 'None'}",
            f"*Priority:* {payload.get('priority') or _DEFAULT_PRIORITY}",
            f"*Assignee:* {payload.get('assigneeName') or payload.get('assigneeEmail') or 'Unassigned'}",
        ]
        categories = payload.get("categoryFields") or {}
        if categories:
            lines.append(" | ".join(f"*{name.title()}:* {value or 'None'}" for name, value in categories.items()))
        button_text = ":memo: Review & Create Ticket"
        action_id = OPEN_TICKET_MODAL_ACTION
        fallback = f"Ready to create Jira ticket: {title}"
    else:
        lines = [f"{mention}:eyes: Ready to create Confluence doc: *{title}*"]
        button_text = ":memo: Add Context & Create Doc"
        action_id = OPEN_DOC_MODAL_ACTION
        fallback = f"Ready to create Confluence doc: {title}"

    blocks = [
        {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}},
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": _plain(button_text),
                    "style": "primary",
                    "action_id": action_id,
                    "value": request_id,
                }
            ],
        },
    ]
    return {"text": fallback, "blocks": blocks}


# ---------------------------------------------------------------------------
# Review modals
# ---------------------------------------------------------------------------


def build_ticket_modal(request_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    priority = payload.get("priority") if payload.get("priority") in PRIORITIES else _DEFAULT_PRIORITY
    blocks: List[Dict[str, Any]] = [
        _text_input("ticket_title", "title_input", "Summary", initial=payload.get("title"),
                    placeholder="Enter ticket summary..."),
        _text_input("ticket_description", "description_input", "Description",
                    initial=payload.get("description"), placeholder="Enter ticket description...",
                    multiline=True, optional=True),
        _text_input("parent_ticket", "parent_input", "Parent Ticket", initial=payload.get("parent"),
                    placeholder="e.g., AMP-12345", optional=True),
        _select_input("priority", "priority_select", "Priority", list(PRIORITIES), initial=priority),
        _text_input("assignee_name", "assignee_name_input", "Assignee Name",
                    initial=payload.get("assigneeName"), optional=True),
        _text_input("assignee_email", "assignee_email_input", "Assignee Email",
                    initial=payload.get("assigneeEmail"), optional=True),
    ]

    categories = payload.get("categoryFields") or {}
    for name in _category_names(payload):
        block_id = f"{_CATEGORY_BLOCK_PREFIX}{name}"
        options = _option_values(payload, name)
        if options:
            blocks.append(_select_input(block_id, "select", name.title(), options,
                                        initial=categories.get(name), optional=True))
        else:
            blocks.append(_text_input(block_id, "input", name.title(), initial=categories.get(name),
                                      optional=True))

    return {
        "type": "modal",
        "callback_id": TICKET_MODAL_CALLBACK_ID,
        "private_metadata": request_id,
        "title": _plain("Create Jira Ticket"),
        "submit": _plain("Create Jira"),
        "close": _plain("Cancel"),
        "blocks": blocks,
    }


def build_doc_modal(request_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "modal",
        "callback_id": DOC_MODAL_CALLBACK_ID,
        "private_metadata": request_id,
        "title": _plain("Add Context"),
        "submit": _plain("Create Doc"),
        "close": _plain("Cancel"),
        "blocks": [
            _text_input("doc_title", "title_input", "Document Title", initial=payload.get("title") or "Untitled",
                        placeholder="Enter the title for your Confluence page..."),
            _text_input("additional_context", "context_input", "Additional Context",
                        placeholder="Add any additional context, requirements, or details for the document...",
                        multiline=True, optional=True),
        ],
    }


def build_modal(kind: ActionKind, request_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if ActionKind.parse(kind) is ActionKind.TICKET:
        return build_ticket_modal(request_id, payload)
    return build_doc_modal(request_id, payload)


# ---------------------------------------------------------------------------
# Modal submissions
# ---------------------------------------------------------------------------


def _value(values: Dict[str, Any], block_id: str, action_id: str) -> Optional[str]:
    element = (values.get(block_id) or {}).get(action_id) or {}
    if element.get("selected_option"):
        return element["selected_option"].get("value") or None
    return element.get("value") or None


def parse_ticket_submission(values: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Merge submitted modal values over the stored request; blank fields keep the stored value."""
    merged = dict(payload)
    merged["title"] = _value(values, "ticket_title", "title_input") or payload.get("title")
    merged["description"] = _value(values, "ticket_description", "description_input") or payload.get("description")
    merged["parent"] = _value(values, "parent_ticket", "parent_input") or payload.get("parent")
    merged["priority"] = _value(values, "priority", "priority_select") or payload.get("priority")
    merged["assigneeName"] = _value(values, "assignee_name", "assignee_name_input") or payload.get("assigneeName")
    merged["assigneeEmail"] = _value(values, "assignee_email", "assignee_email_input") or payload.get("assigneeEmail")

    categories = dict(payload.get("categoryFields") or {})
    for name in _category_names(payload):
        block_id = f"{_CATEGORY_BLOCK_PREFIX}{name}"
        submitted = _value(values, block_id, "select") or _value(values, block_id, "input")
        categories[name] = submitted or categories.get(name) or ""
    merged["categoryFields"] = categories
    return merged


def parse_doc_submission(values: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(payload)
    merged["title"] = _value(values, "doc_title", "title_input") or payload.get("title") or "Untitled"
    additional = _value(values, "additional_context", "context_input")
    context = payload.get("description") or ""
    if additional:
        context = f"{context}\n\n---\n\nAdditional Context:\n{additional}" if context else additional
    merged["description"] = context
    return merged


def parse_submission(kind: ActionKind, values: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    if ActionKind.parse(kind) is ActionKind.TICKET:
        return parse_ticket_submission(values, payload)
    return parse_doc_submission(values, payload)
