"""slack_client.py — Slack Web API notification channel (chat, views, reactions).

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from aws_clients import _get_slack_bot_token
from config import logger
from errors import NotificationError

__all__ = [
    "SlackNotificationChannel",
    "_get_notification_channel",
]


def _slack_error(exc: SlackApiError) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            return str(response.get("error") or exc)
        except AttributeError:
            pass
    return str(exc)


class SlackNotificationChannel:
    """Posts prompts and replies on behalf of the bot user.

    The WebClient is built lazily so a missing bot token surfaces as a
    ConfigurationError on first use rather than at import.
    """

    def __init__(self, client: Optional[WebClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> WebClient:
        if self._client is None:
            self._client = WebClient(token=_get_slack_bot_token())
        return self._client

    def post_confirmation(
        self,
        channel: str,
        user: Optional[str],
        thread_ts: Optional[str],
        request_id: str,
        rendered_prompt: Dict[str, Any],
    ) -> str:
        """Post the confirmation prompt into the thread; returns the message ts."""
        try:
            resp = self.client.chat_postMessage(
                channel=channel,
                thread_ts=thread_ts,
                text=rendered_prompt.get("text") or "",
                blocks=rendered_prompt.get("blocks"),
            )
        except SlackApiError as exc:
            error = _slack_error(exc)
            logger.error("Failed to post confirmation %s for user %s: %s", request_id, user, error)
            raise NotificationError(f"Slack chat.postMessage failed: {error}", request_id=request_id) from exc
        logger.info("[INFO] confirmation %s posted to %s", request_id, channel)
        return str(resp.get("ts") or "")

    def open_modal(self, trigger_id: str, view: Dict[str, Any]) -> None:
        try:
            self.client.views_open(trigger_id=trigger_id, view=view)
        except SlackApiError as exc:
            error = _slack_error(exc)
            logger.error("Failed to open modal %s: %s", view.get("callback_id"), error)
            raise NotificationError(f"Slack views.open failed: {error}") from exc

    def post_reply(self, channel: str, thread_ts: Optional[str], text: str) -> str:
        try:
            resp = self.client.chat_postMessage(channel=channel, thread_ts=thread_ts, text=text)
        except SlackApiError as exc:
            error = _slack_error(exc)
            logger.error("Failed to send reply to %s: %s", channel, error)
            raise NotificationError(f"Slack chat.postMessage failed: {error}") from exc
        return str(resp.get("ts") or "")

    def add_reaction(self, channel: str, timestamp: str, name: str) -> bool:
        try:
            self.client.reactions_add(channel=channel, timestamp=timestamp, name=name)
        except SlackApiError as exc:
            logger.warning("Failed to add reaction %s: %s", name, _slack_error(exc))
            return False
        return True

    def remove_reaction(self, channel: str, timestamp: str, name: str) -> bool:
        try:
            self.client.reactions_remove(channel=channel, timestamp=timestamp, name=name)
        except SlackApiError as exc:
            logger.warning("Failed to remove reaction %s: %s", name, _slack_error(exc))
            return False
        return True


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_channel: Optional[SlackNotificationChannel] = None


def _get_notification_channel() -> SlackNotificationChannel:
    global _channel
    if _channel is None:
        _channel = SlackNotificationChannel()
    return _channel
