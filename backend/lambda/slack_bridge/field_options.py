"""field_options.py — Jira field option sets served by the desktop app.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Any, Dict, List

from config import FIELD_OPTIONS_TIMEOUT_SECONDS, FIELD_OPTIONS_URL, logger

__all__ = [
    "HttpFieldOptionsProvider",
    "_normalize_option_sets",
]

OptionSets = Dict[str, List[Dict[str, str]]]

# Legacy response keys from the desktop endpoint.
_SET_NAME_ALIASES = {"pillars": "pillar", "pods": "pod"}


def _normalize_option_sets(data: Dict[str, Any]) -> OptionSets:
    """Collect every list of {id, value} options in the response, keyed by set name."""
    source = data.get("fieldOptions") if isinstance(data.get("fieldOptions"), dict) else data
    sets: OptionSets = {}
    for raw_name, raw_options in source.items():
        if not isinstance(raw_options, list):
            continue
        name = _SET_NAME_ALIASES.get(raw_name, raw_name)
        if name.endswith("Options"):
            name = name[: -len("Options")]
        options: List[Dict[str, str]] = []
        for opt in raw_options:
            if isinstance(opt, dict) and opt.get("value"):
                options.append({"id": str(opt.get("id") or opt["value"]), "value": str(opt["value"])})
            elif isinstance(opt, str) and opt.strip():
                options.append({"id": opt.strip(), "value": opt.strip()})
        sets[name] = options
    return sets


class HttpFieldOptionsProvider:
    def __init__(self, url: str = FIELD_OPTIONS_URL, timeout: float = FIELD_OPTIONS_TIMEOUT_SECONDS) -> None:
        self.url = url
        self.timeout = timeout

    def fetch(self, project_key: str) -> OptionSets:
        """POST {projectKey} to the options endpoint. Raises ValueError on any failure."""
        if not self.url:
            raise ValueError("FIELD_OPTIONS_URL is not configured")

        req = urllib.request.Request(
            self.url,
            method="POST",
            data=json.dumps({"projectKey": project_key}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read())
        except urllib.error.HTTPError as exc:
            raise ValueError(f"Field options request failed ({exc.code})") from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Field options request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Field options response must be an object")
        sets = _normalize_option_sets(data)
        logger.info("[INFO] fetched field options for %s: %s", project_key, sorted(sets))
        return sets
