"""
Data model for scheduled posts.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

import pytz
from pydantic import BaseModel, Field

from errors import ValidationError

VIDEO_EXTENSIONS = (".mp4", ".mov", ".m4v", ".webm")


class JobStatus(str, Enum):
    QUEUED = "queued"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class MediaType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    account: str
    caption: str = ""
    media_url: str
    scheduled_at: datetime
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    last_error: Optional[str] = None
    external_media_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def media_type(self) -> MediaType:
        return infer_media_type(self.media_url)

    def to_dict(self) -> dict:
        """JSON-friendly view used by the HTTP API."""
        return {
            "id": self.id,
            "account": self.account,
            "caption": self.caption,
            "mediaUrl": self.media_url,
            "mediaType": self.media_type.value,
            "scheduledAt": format_ts(self.scheduled_at),
            "status": self.status.value,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "externalMediaId": self.external_media_id,
            "createdAt": format_ts(self.created_at),
            "updatedAt": format_ts(self.updated_at),
        }


class Account(BaseModel):
    key: str
    remote_user_id: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.remote_user_id and self.access_token)


# ──────────────────────────────────────────────────────
# TIMESTAMPS
# ──────────────────────────────────────────────────────

def format_ts(value: datetime) -> str:
    """Fixed-width UTC ISO string; lexical order equals time order."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def parse_when(value: Any, default_tz: str = "UTC") -> datetime:
    """
    Normalise a schedule time to an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with 'Z', an offset, or naive) and
    epoch numbers (seconds, or milliseconds when large). Naive values are
    read in `default_tz`.
    """
    if value is None or value == "":
        raise ValidationError("missing 'when'")

    if isinstance(value, bool):
        raise ValidationError(f"unparsable 'when': {value!r}")

    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(f"unparsable 'when': {value!r}")

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"unparsable 'when': {value!r}")
    else:
        raise ValidationError(f"unparsable 'when': {value!r}")

    if dt.tzinfo is None:
        dt = pytz.timezone(default_tz).localize(dt)
    return dt.astimezone(timezone.utc)


# ──────────────────────────────────────────────────────
# MEDIA
# ──────────────────────────────────────────────────────

def infer_media_type(media_url: str) -> MediaType:
    path = urlparse(media_url or "").path.lower()
    if path.endswith(VIDEO_EXTENSIONS):
        return MediaType.VIDEO
    return MediaType.IMAGE


def validate_media_url(media_url: Any) -> str:
    if not media_url or not isinstance(media_url, str):
        raise ValidationError("missing 'mediaUrl'")
    url = media_url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"'mediaUrl' must be an absolute http(s) URL, got {media_url!r}")
    return url


def new_job(account: Any, media_url: Any, when: Any, caption: Any = "", default_tz: str = "UTC") -> Job:
    """Validate a schedule request and build a queued Job."""
    if not account or not isinstance(account, str) or not account.strip():
        raise ValidationError("missing 'account'")
    url = validate_media_url(media_url)
    scheduled_at = parse_when(when, default_tz)
    now = utcnow()
    return Job(
        account=account.strip(),
        caption=caption if isinstance(caption, str) else "",
        media_url=url,
        scheduled_at=scheduled_at,
        created_at=now,
        updated_at=now,
    )
