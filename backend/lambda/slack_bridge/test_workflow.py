"""test_workflow.py — Confirmation flow scenarios against a fresh Store per test.

Run from the slack_bridge directory:
    python3 -m pytest test_workflow.py -v
"""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from errors import (
    ConfigurationError,
    DuplicateError,
    ExecutionError,
    NotFoundError,
    NotificationError,
    RequestExpiredError,
)
from store import ActionKind, Store
from test_store import FakeClock
from workflow import (
    _normalize_request,
    confirm_action,
    confirm_and_execute,
    confirm_for_worker,
    execute_action,
    initiate_confirmation,
)


class FakeChannel:
    def __init__(self, fail_with=None) -> None:
        self.fail_with = fail_with
        self.prompts = []
        self.replies = []
        self.reactions = []

    def post_confirmation(self, channel, user, thread_ts, request_id, rendered_prompt):
        if self.fail_with is not None:
            raise self.fail_with
        self.prompts.append((channel, user, thread_ts, request_id, rendered_prompt))
        return "200.5"

    def post_reply(self, channel, thread_ts, text):
        self.replies.append((channel, thread_ts, text))
        return "200.6"

    def add_reaction(self, channel, timestamp, name):
        self.reactions.append(("+", name))
        return True

    def remove_reaction(self, channel, timestamp, name):
        self.reactions.append(("-", name))
        return True


class FakeExecutor:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = []

    def create(self, payload):
        self.calls.append(payload)
        if self.failures:
            self.failures -= 1
            raise ExecutionError("Jira API error (503): unavailable")
        return {"external_id": "AMP-101", "url": "https://example.atlassian.net/browse/AMP-101"}


class FakeOptionsProvider:
    def __init__(self, sets=None, error=None) -> None:
        self.sets = sets or {}
        self.error = error
        self.calls = []

    def fetch(self, project_key):
        self.calls.append(project_key)
        if self.error is not None:
            raise self.error
        return self.sets


def _body(**overrides):
    body = {
        "requestId": "req_1700000000000",
        "kind": "ticket",
        "title": "Fix login bug",
        "channel": "C1",
        "messageTs": "100.1",
        "user": "U1",
        "teamId": "T1",
    }
    body.update(overrides)
    return body


class NormalizeRequestTests(unittest.TestCase):
    def test_legacy_category_fields_are_folded(self):
        _rid, kind, payload = _normalize_request(_body(pillar="Growth", pod="Retention",
                                                       pillarOptions=[{"id": "1", "value": "Growth"}]))
        self.assertIs(kind, ActionKind.TICKET)
        self.assertEqual(payload["categoryFields"], {"pillar": "Growth", "pod": "Retention"})
        self.assertEqual(payload["fieldOptions"], {"pillar": [{"id": "1", "value": "Growth"}]})

    def test_missing_channel_is_rejected(self):
        with self.assertRaises(ValueError):
            _normalize_request(_body(channel=""))

    def test_missing_title_is_rejected(self):
        with self.assertRaises(ValueError):
            _normalize_request(_body(title="  "))

    def test_generates_request_id_when_absent(self):
        request_id, _kind, _payload = _normalize_request(_body(requestId=None))
        self.assertTrue(request_id.startswith("req_"))


class InitiateConfirmationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = Store(clock=FakeClock())
        self.channel = FakeChannel()

    def test_stores_request_and_posts_prompt(self):
        result = initiate_confirmation(self.store, _body(), channel=self.channel)

        self.assertFalse(result["skipped"])
        self.assertEqual(result["message_ts"], "200.5")
        self.assertEqual(self.store.requests.get("req_1700000000000")["title"], "Fix login bug")
        channel, user, thread_ts, request_id, prompt = self.channel.prompts[0]
        self.assertEqual((channel, user, thread_ts, request_id), ("C1", "U1", "100.1", "req_1700000000000"))
        self.assertEqual(prompt["blocks"][1]["elements"][0]["value"], "req_1700000000000")

    def test_flagged_thread_is_refused_before_put(self):
        self.store.threads.set_flag("C1_100.1", ActionKind.TICKET)

        result = initiate_confirmation(self.store, _body(), channel=self.channel)

        self.assertTrue(result["skipped"])
        self.assertEqual(len(self.store.requests), 0)
        self.assertEqual(self.channel.prompts, [])

    def test_flag_for_other_kind_does_not_block(self):
        self.store.threads.set_flag("C1_100.1", ActionKind.DOC)
        result = initiate_confirmation(self.store, _body(), channel=self.channel)
        self.assertFalse(result["skipped"])

    def test_failed_post_leaves_no_request(self):
        channel = FakeChannel(fail_with=NotificationError("Slack chat.postMessage failed: channel_not_found"))
        with self.assertRaises(NotificationError):
            initiate_confirmation(self.store, _body(), channel=channel)
        self.assertIsNone(self.store.requests.get("req_1700000000000"))

    def test_missing_bot_token_leaves_no_request(self):
        channel = FakeChannel(fail_with=ConfigurationError("SLACK_BOT_TOKEN is not configured"))
        with self.assertRaises(ConfigurationError):
            initiate_confirmation(self.store, _body(), channel=channel)
        self.assertEqual(len(self.store.requests), 0)

    def test_field_options_are_attached(self):
        provider = FakeOptionsProvider(sets={"pillar": [{"id": "1", "value": "Growth"}]})
        initiate_confirmation(self.store, _body(), channel=self.channel, options_provider=provider)
        self.assertEqual(provider.calls, ["AMP"])
        self.assertEqual(self.store.requests.get("req_1700000000000")["fieldOptions"]["pillar"][0]["value"], "Growth")

    def test_field_options_failure_degrades_to_empty(self):
        provider = FakeOptionsProvider(error=ValueError("connection refused"))
        result = initiate_confirmation(self.store, _body(), channel=self.channel, options_provider=provider)
        self.assertFalse(result["skipped"])
        self.assertEqual(self.store.requests.get("req_1700000000000")["fieldOptions"], {})
        self.assertEqual(len(self.channel.prompts), 1)

    def test_docs_skip_field_options(self):
        provider = FakeOptionsProvider()
        initiate_confirmation(self.store, _body(kind="doc"), channel=self.channel, options_provider=provider)
        self.assertEqual(provider.calls, [])


class ConfirmActionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.store = Store(clock=self.clock)
        initiate_confirmation(self.store, _body(), channel=FakeChannel())

    def test_duplicate_confirmation_enqueues_once(self):
        first, inserted_first = confirm_action(self.store, "req_1700000000000")
        second, inserted_second = confirm_action(self.store, "req_1700000000000")

        self.assertEqual(first.id, "C1_100.1_ticket_confirmed")
        self.assertTrue(inserted_first)
        self.assertFalse(inserted_second)
        self.assertIs(first, second)
        self.assertEqual(len(self.store.queue.list()), 1)
        self.assertTrue(self.store.threads.has_flag("C1_100.1", ActionKind.TICKET))

    def test_unknown_request_creates_nothing(self):
        with self.assertRaises(NotFoundError):
            confirm_action(self.store, "req_other")
        self.assertEqual(len(self.store.queue), 0)
        self.assertEqual(len(self.store.threads), 0)

    def test_expired_request_is_rejected(self):
        self.clock.advance(61 * 60)
        with self.assertRaises(RequestExpiredError):
            confirm_action(self.store, "req_1700000000000")
        self.assertEqual(len(self.store.queue), 0)

    def test_thread_ts_scopes_flag(self):
        initiate_confirmation(self.store, _body(requestId="req_2", kind="doc", messageTs="100.9", threadTs="100.1"),
                              channel=FakeChannel())
        action, _inserted = confirm_action(self.store, "req_2")
        self.assertEqual(action.id, "C1_100.9_doc_confirmed")
        self.assertEqual(action.thread_key, "C1_100.1")


class ExecuteActionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = Store(clock=FakeClock())
        self.channel = FakeChannel()
        initiate_confirmation(self.store, _body(), channel=self.channel)

    def test_execute_marks_processed(self):
        action, _ = confirm_action(self.store, "req_1700000000000")
        result = execute_action(self.store, action.id, FakeExecutor())
        self.assertEqual(result["external_id"], "AMP-101")
        self.assertTrue(self.store.dedup.has(action.id))
        self.assertEqual(self.store.queue.list(), [])

    def test_second_execution_is_refused(self):
        action, _ = confirm_action(self.store, "req_1700000000000")
        executor = FakeExecutor()
        execute_action(self.store, action.id, executor)
        with self.assertRaises(DuplicateError):
            execute_action(self.store, action.id, executor)
        self.assertEqual(len(executor.calls), 1)

    def test_failed_execution_stays_pending_then_retry_succeeds(self):
        executor = FakeExecutor(failures=1)

        with self.assertRaises(ExecutionError):
            confirm_and_execute(self.store, "req_1700000000000", executor, channel=self.channel)
        self.assertFalse(self.store.dedup.has("C1_100.1_ticket_confirmed"))
        self.assertEqual(len(self.store.queue.list()), 1)
        self.assertIsNotNone(self.store.requests.get("req_1700000000000"))
        self.assertIn("Failed to create Jira ticket", self.channel.replies[-1][2])

        result = confirm_and_execute(self.store, "req_1700000000000", executor, channel=self.channel)

        self.assertEqual(result["status"], "executed")
        self.assertFalse(result["inserted"])
        self.assertEqual(len(executor.calls), 2)
        self.assertTrue(self.store.dedup.has("C1_100.1_ticket_confirmed"))
        self.assertIsNone(self.store.requests.get("req_1700000000000"))
        self.assertEqual(self.channel.reactions, [("-", "eyes"), ("+", "white_check_mark")])

    def test_mark_processed_called_once_across_retry(self):
        executor = FakeExecutor(failures=1)
        calls = []
        real_mark = self.store.queue.mark_processed

        def _spy(action_id):
            calls.append(action_id)
            return real_mark(action_id)

        self.store.queue.mark_processed = _spy
        with self.assertRaises(ExecutionError):
            confirm_and_execute(self.store, "req_1700000000000", executor)
        confirm_and_execute(self.store, "req_1700000000000", executor)
        self.assertEqual(calls, ["C1_100.1_ticket_confirmed"])

    def test_retry_executes_resubmitted_values(self):
        executor = FakeExecutor(failures=1)
        stored = self.store.requests.get("req_1700000000000")

        with self.assertRaises(ExecutionError):
            confirm_and_execute(self.store, "req_1700000000000", executor, payload={**stored, "parent": "BAD-1"})
        queued = self.store.queue.get("C1_100.1_ticket_confirmed")
        created_at = queued.created_at

        result = confirm_and_execute(self.store, "req_1700000000000", executor, payload={**stored, "parent": "AMP-9"})

        self.assertEqual(result["status"], "executed")
        self.assertEqual([call["parent"] for call in executor.calls], ["BAD-1", "AMP-9"])
        self.assertIs(self.store.queue.get("C1_100.1_ticket_confirmed"), queued)
        self.assertEqual(queued.created_at, created_at)
        self.assertEqual(len(self.store.queue), 1)

    def test_late_redelivery_after_success_reports_expired(self):
        confirm_and_execute(self.store, "req_1700000000000", FakeExecutor())
        with self.assertRaises(NotFoundError):
            confirm_and_execute(self.store, "req_1700000000000", FakeExecutor())

    def test_already_processed_action_is_a_quiet_duplicate(self):
        self.store.dedup.add("C1_100.1_ticket_confirmed")
        executor = FakeExecutor()
        result = confirm_and_execute(self.store, "req_1700000000000", executor)
        self.assertEqual(result["status"], "duplicate")
        self.assertEqual(executor.calls, [])
        self.assertIsNone(self.store.requests.get("req_1700000000000"))


class ConfirmForWorkerTests(unittest.TestCase):
    def test_queues_for_worker_and_drops_request(self):
        store = Store(clock=FakeClock())
        initiate_confirmation(store, _body(kind="doc"), channel=FakeChannel())

        result = confirm_for_worker(store, "req_1700000000000")

        self.assertEqual(result, {"action_id": "C1_100.1_doc_confirmed", "status": "queued", "inserted": True})
        self.assertIsNone(store.requests.get("req_1700000000000"))
        self.assertEqual([a.id for a in store.queue.list()], ["C1_100.1_doc_confirmed"])
        self.assertTrue(store.threads.has_flag("C1_100.1", ActionKind.DOC))


if __name__ == "__main__":
    unittest.main()
