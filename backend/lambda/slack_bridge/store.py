"""store.py — In-memory workflow coordination store for confirmed Slack actions.

Holds the four structures that bridge a confirmation prompt and its side
effect:

    RequestRegistry         prompts awaiting confirmation (1 hour TTL)
    TaskQueue               confirmed actions, pending or processed
    DedupGuard              action ids that have run to completion
    ThreadIdempotencyIndex  (thread, kind) pairs that already own an artifact

One Store lives per warm Lambda container. Instances do not share memory, so
a request written by one container is invisible to another; callers must
treat a registry miss as expired rather than retrying. Swapping the maps for
a shared TTL cache behind the same methods is the path to scale-out.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from config import REQUEST_TTL_SECONDS, logger
from errors import NotFoundError, RequestExpiredError

__all__ = [
    "ActionKind",
    "ActionRequest",
    "DedupGuard",
    "QueuedAction",
    "RequestRegistry",
    "Store",
    "TaskQueue",
    "ThreadIdempotencyIndex",
    "_STATUS_PENDING",
    "_STATUS_PROCESSED",
    "action_id_for",
    "thread_key_for",
]

_STATUS_PENDING = "pending"
_STATUS_PROCESSED = "processed"

Clock = Callable[[], float]


class ActionKind(str, Enum):
    TICKET = "ticket"
    DOC = "doc"

    @classmethod
    def parse(cls, raw: Any) -> "ActionKind":
        if isinstance(raw, cls):
            return raw
        value = str(raw or "").strip().lower()
        if value in {"ticket", "jira"}:
            return cls.TICKET
        if value in {"doc", "confluence"}:
            return cls.DOC
        raise ValueError(f"Unknown action kind '{raw}'")


def action_id_for(channel: str, message_ts: str, kind: ActionKind) -> str:
    """Stable id for the confirmed action; re-delivery maps to the same id."""
    return f"{channel}_{message_ts}_{ActionKind.parse(kind).value}_confirmed"


def thread_key_for(channel: str, message_ts: str, thread_ts: Optional[str] = None) -> str:
    return f"{channel}_{thread_ts or message_ts}"


@dataclass
class ActionRequest:
    id: str
    kind: ActionKind
    payload: Dict[str, Any]
    created_at: float


@dataclass
class QueuedAction:
    id: str
    kind: ActionKind
    thread_key: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = _STATUS_PENDING
    created_at: float = 0.0

    @property
    def processed(self) -> bool:
        return self.status == _STATUS_PROCESSED

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["kind"] = self.kind.value
        return out


# ---------------------------------------------------------------------------
# DedupGuard
# ---------------------------------------------------------------------------


class DedupGuard:
    """Process-lifetime set of action ids that have completed execution."""

    def __init__(self) -> None:
        self._ids: Set[str] = set()

    def has(self, action_id: str) -> bool:
        return action_id in self._ids

    def add(self, action_id: str) -> None:
        self._ids.add(action_id)

    def __len__(self) -> int:
        return len(self._ids)


# ---------------------------------------------------------------------------
# RequestRegistry
# ---------------------------------------------------------------------------


class RequestRegistry:
    def __init__(self, *, clock: Clock = time.time, ttl_seconds: float = REQUEST_TTL_SECONDS) -> None:
        self._clock = clock
        self._ttl = ttl_seconds
        self._entries: Dict[str, ActionRequest] = {}

    def _expired(self, entry: ActionRequest, now: float) -> bool:
        return (now - entry.created_at) > self._ttl

    def put(self, request_id: str, payload: Dict[str, Any], kind: Any = None) -> ActionRequest:
        """Store payload under request_id, overwriting silently, then sweep stale entries."""
        now = self._clock()
        entry = ActionRequest(
            id=request_id,
            kind=ActionKind.parse(kind or payload.get("kind") or ActionKind.TICKET),
            payload=payload,
            created_at=now,
        )
        self._entries[request_id] = entry
        logger.info("[INFO] registry stored request %s (%s)", request_id, entry.kind.value)
        self.reap(now)
        return entry

    def get_request(self, request_id: str) -> Optional[ActionRequest]:
        entry = self._entries.get(request_id)
        if entry is None or self._expired(entry, self._clock()):
            return None
        return entry

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        entry = self.get_request(request_id)
        return entry.payload if entry is not None else None

    def require(self, request_id: str) -> ActionRequest:
        entry = self._entries.get(request_id)
        if entry is None:
            raise NotFoundError(request_id=request_id)
        if self._expired(entry, self._clock()):
            raise RequestExpiredError(request_id=request_id)
        return entry

    def remove(self, request_id: str) -> None:
        if self._entries.pop(request_id, None) is not None:
            logger.info("[INFO] registry removed request %s", request_id)

    def reap(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        stale = [rid for rid, entry in self._entries.items() if self._expired(entry, now)]
        for rid in stale:
            del self._entries[rid]
            logger.info("[INFO] registry reaped expired request %s", rid)
        return len(stale)

    def __contains__(self, request_id: str) -> bool:
        return self.get_request(request_id) is not None

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# TaskQueue
# ---------------------------------------------------------------------------


class TaskQueue:
    """Confirmed actions in arrival order, admission-controlled by a DedupGuard."""

    def __init__(
        self,
        guard: DedupGuard,
        *,
        clock: Clock = time.time,
        ttl_seconds: float = REQUEST_TTL_SECONDS,
    ) -> None:
        self._guard = guard
        self._clock = clock
        self._ttl = ttl_seconds
        self._entries: Dict[str, QueuedAction] = {}

    def enqueue(self, action: QueuedAction) -> bool:
        """Insert action as pending; returns False when the id already ran or is queued."""
        if self._guard.has(action.id):
            logger.info("[INFO] queue skipped already processed action %s", action.id)
            return False
        if action.id in self._entries:
            logger.info("[INFO] queue skipped action already pending %s", action.id)
            return False

        now = self._clock()
        action.status = _STATUS_PENDING
        if not action.created_at:
            action.created_at = now
        self._entries[action.id] = action
        logger.info("[INFO] queue added pending action %s", action.id)
        self.prune(now)
        return True

    def get(self, action_id: str) -> Optional[QueuedAction]:
        return self._entries.get(action_id)

    def list(self) -> List[QueuedAction]:
        return [
            action
            for action in self._entries.values()
            if action.status == _STATUS_PENDING and not self._guard.has(action.id)
        ]

    def mark_processed(self, action_id: str) -> bool:
        """Flip the entry to processed and record the id in the guard.

        The guard write happens even when the entry was already pruned, so a
        completed action can never be admitted again.
        """
        action = self._entries.get(action_id)
        if action is not None:
            action.status = _STATUS_PROCESSED
        self._guard.add(action_id)
        logger.info("[INFO] queue marked action processed %s (found=%s)", action_id, action is not None)
        return action is not None

    def prune(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        stale = [aid for aid, action in self._entries.items() if (now - action.created_at) > self._ttl]
        for aid in stale:
            del self._entries[aid]
            logger.info("[INFO] queue pruned old action %s", aid)
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# ThreadIdempotencyIndex
# ---------------------------------------------------------------------------


class ThreadIdempotencyIndex:
    def __init__(self) -> None:
        self._flags: Set[Tuple[str, ActionKind]] = set()

    def has_flag(self, thread_key: str, kind: ActionKind) -> bool:
        return (thread_key, ActionKind.parse(kind)) in self._flags

    def set_flag(self, thread_key: str, kind: ActionKind) -> None:
        self._flags.add((thread_key, ActionKind.parse(kind)))
        logger.info("[INFO] thread %s marked as having a %s", thread_key, ActionKind.parse(kind).value)

    def __len__(self) -> int:
        return len(self._flags)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class Store:
    """All coordination state for one process, sharing one clock and TTL."""

    def __init__(self, *, clock: Clock = time.time, ttl_seconds: float = REQUEST_TTL_SECONDS) -> None:
        self.clock = clock
        self.dedup = DedupGuard()
        self.requests = RequestRegistry(clock=clock, ttl_seconds=ttl_seconds)
        self.queue = TaskQueue(self.dedup, clock=clock, ttl_seconds=ttl_seconds)
        self.threads = ThreadIdempotencyIndex()

    def stats(self) -> Dict[str, int]:
        self.requests.reap()
        return {
            "pending_requests": len(self.requests),
            "pending_tasks": len(self.queue.list()),
            "processed_actions": len(self.dedup),
            "flagged_threads": len(self.threads),
        }
