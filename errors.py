"""
Error taxonomy for Instaqueue.
Every failure a job can hit maps onto one of these classes.
"""

import json
from typing import Any, Optional


class InstaqueueError(Exception):
    """Base class for all Instaqueue errors."""
    pass


class ValidationError(InstaqueueError):
    """Malformed schedule request. Raised before a job exists."""
    pass


class AccountConfigError(InstaqueueError):
    """Account key unknown, or its id/token is missing."""

    def __init__(self, account: str, reason: str = "not configured"):
        self.account = account
        self.reason = reason
        super().__init__(f"account '{account}' {reason}")


class RemoteError(InstaqueueError):
    """
    Failure reported by (or while talking to) the Graph API.

    Args:
        message: Short description of what went wrong
        payload: Decoded remote error body, if the API sent one
        step: Which publish step failed ('create', 'poll', 'publish')
    """

    step = "remote"

    def __init__(self, message: str, payload: Any = None, step: Optional[str] = None):
        self.payload = payload
        if step:
            self.step = step
        self.detail = message
        super().__init__(self._format(message, payload))

    @staticmethod
    def _format(message: str, payload: Any) -> str:
        if payload is None or payload == "":
            return message
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload, sort_keys=True)
        return f"{message}: {payload}"


class RemoteCreateError(RemoteError):
    step = "create"


class RemoteProcessingError(RemoteError):
    step = "poll"


class RemoteTimeoutError(RemoteError):
    step = "poll"


class RemotePublishError(RemoteError):
    step = "publish"


class CredentialExpiredError(RemoteError):
    """The account's access token was rejected (Graph error code 190)."""

    def __init__(self, account: str, payload: Any = None, step: Optional[str] = None):
        self.account = account
        super().__init__(
            f"access token for account '{account}' is expired or invalid; "
            f"rotate the stored token (during {step or 'remote'} step)",
            payload,
            step,
        )
