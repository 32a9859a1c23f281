"""
Job activity logging for Instaqueue.
Writes to the standard logging tree and mirrors each event into the
store's activity log so operators can inspect it over HTTP.
"""

import logging
from typing import Optional

from errors import (
    AccountConfigError,
    CredentialExpiredError,
    RemoteCreateError,
    RemoteProcessingError,
    RemotePublishError,
    RemoteTimeoutError,
)

logger = logging.getLogger("instaqueue.jobs")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "running": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class JobLogger:
    """Logger bound to one job that also records to the activity log."""

    # Operator hints for each failure mode
    HINTS = {
        'account_config': "Add the account's Instagram user id and access token to the account config.",
        'token_expired': "The account's access token was rejected. Rotate the stored token.",
        'create_failed': "Instagram refused the media. Check that the URL is public and the format is supported.",
        'processing_failed': "Instagram could not process the media file.",
        'timeout': "Instagram took too long to process the media. Large videos can need a longer POLL_TIMEOUT.",
        'publish_failed': "The container was ready but publishing failed.",
        'unknown_error': "Unexpected failure while publishing.",
    }

    def __init__(self, store, job_id: Optional[str] = None, account: Optional[str] = None):
        self.store = store
        self.job_id = job_id
        self.account = account

    def _log(self, level: str, action: str, message: str, details: dict = None):
        prefix = f"[job {self.job_id}] " if self.job_id else ""
        logger.log(_LEVELS[level], "%s%s", prefix, message)
        try:
            self.store.log_activity(self.job_id, self.account, action, level, message, details)
        except Exception as e:
            logger.warning("Failed to write activity log: %s", e)

    def success(self, action: str, message: str, details: dict = None):
        self._log('success', action, message, details)

    def running(self, action: str, message: str, details: dict = None):
        self._log('running', action, message, details)

    def info(self, action: str, message: str, details: dict = None):
        self._log('info', action, message, details)

    def warning(self, action: str, message: str, details: dict = None):
        self._log('warning', action, message, details)

    def error(self, action: str, message: str, details: dict = None):
        self._log('error', action, message, details)

    def failure(self, action: str, exception: Exception):
        """Log a failed attempt with its error class and operator hint."""
        key = self.classify(exception)
        details = {
            "error_type": type(exception).__name__,
            "hint": self.HINTS[key],
        }
        payload = getattr(exception, "payload", None)
        if payload is not None:
            details["payload"] = payload
        self._log('error', action, str(exception), details)

    @staticmethod
    def classify(exception: Exception) -> str:
        if isinstance(exception, AccountConfigError):
            return 'account_config'
        if isinstance(exception, CredentialExpiredError):
            return 'token_expired'
        if isinstance(exception, RemoteTimeoutError):
            return 'timeout'
        if isinstance(exception, RemoteCreateError):
            return 'create_failed'
        if isinstance(exception, RemoteProcessingError):
            return 'processing_failed'
        if isinstance(exception, RemotePublishError):
            return 'publish_failed'
        return 'unknown_error'
