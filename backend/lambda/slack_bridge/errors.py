"""errors.py — Exception types raised across the bridge and their HTTP mapping.

Part of the slack_bridge Lambda.
"""
from __future__ import annotations

__all__ = [
    "BridgeError",
    "ConfigurationError",
    "EXPIRED_MESSAGE",
    "DuplicateError",
    "ExecutionError",
    "NotFoundError",
    "NotificationError",
    "RequestExpiredError",
]

EXPIRED_MESSAGE = "This confirmation has expired. Please try again."


class BridgeError(Exception):
    """Base error; carries the envelope code and HTTP status used by _error()."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(BridgeError):
    """Raised when a required credential or endpoint is not configured."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(BridgeError):
    """Raised when a confirmation references an unknown request id."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = EXPIRED_MESSAGE, **details):
        super().__init__(message, **details)


class RequestExpiredError(NotFoundError):
    """Raised when the request is still resident but past its TTL."""

    code = "EXPIRED"


class DuplicateError(BridgeError):
    """Raised when an action id has already run or is already queued."""

    code = "DUPLICATE"
    status_code = 200


class ExecutionError(BridgeError):
    """Raised when the external create-call fails; the action stays pending."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    retryable = True


class NotificationError(BridgeError):
    """Raised when a Slack post fails."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    retryable = True
