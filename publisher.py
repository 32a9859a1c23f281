"""
Instagram Graph API publisher.

Publishing is a three-step protocol:
    1. create a media container from a public URL
    2. poll the container until Instagram finishes ingesting it
    3. publish the container

Each step raises its own error type; nothing is retried here.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, NamedTuple, Optional

import requests

from errors import (
    CredentialExpiredError,
    RemoteCreateError,
    RemotePublishError,
    RemoteProcessingError,
    RemoteTimeoutError,
)
from models import Account, Job, MediaType

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.facebook.com"

# OAuthException: access token expired, revoked or otherwise invalid
TOKEN_ERROR_CODES = (190,)

READY = "FINISHED"
TERMINAL_ERRORS = ("ERROR", "EXPIRED")


class PublishResult(NamedTuple):
    creation_id: str
    media_id: str


def _json_or_text(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def is_token_error(payload: Any) -> bool:
    """True if a Graph error payload says the access token is unusable."""
    if not isinstance(payload, dict):
        return False
    err = payload.get("error")
    if not isinstance(err, dict):
        return False
    try:
        return int(err.get("code")) in TOKEN_ERROR_CODES
    except (TypeError, ValueError):
        return False


class GraphPublisher:
    """Drives one job through create -> poll -> publish."""

    def __init__(self, api_version: str = "v21.0", poll_interval: float = 3.0,
                 poll_timeout: float = 180.0, request_timeout: float = 60.0,
                 session: Optional[requests.Session] = None,
                 sleep: Callable = asyncio.sleep, clock: Callable[[], float] = time.monotonic):
        self.base_url = f"{GRAPH_BASE}/{api_version}"
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "GraphPublisher":
        return cls(
            api_version=settings.graph_api_version,
            poll_interval=settings.poll_interval,
            poll_timeout=settings.poll_timeout,
            request_timeout=settings.request_timeout,
        )

    async def _post(self, path: str, data: Dict):
        return await asyncio.to_thread(
            self.session.post, f"{self.base_url}/{path}", data=data, timeout=self.request_timeout
        )

    async def _get(self, path: str, params: Dict):
        return await asyncio.to_thread(
            self.session.get, f"{self.base_url}/{path}", params=params, timeout=self.request_timeout
        )

    # ─────────────────────────────────────────────────
    # STEPS
    # ─────────────────────────────────────────────────

    async def create_container(self, job: Job, account: Account) -> str:
        data = {"caption": job.caption or "", "access_token": account.access_token}
        if job.media_type == MediaType.VIDEO:
            data["media_type"] = "REELS"
            data["video_url"] = job.media_url
        else:
            data["image_url"] = job.media_url

        try:
            r = await self._post(f"{account.remote_user_id}/media", data)
        except requests.RequestException as e:
            raise RemoteCreateError("media container request failed", str(e))

        payload = _json_or_text(r)
        if is_token_error(payload):
            raise CredentialExpiredError(account.key, payload, step="create")
        if not r.ok:
            raise RemoteCreateError(f"Instagram API Error {r.status_code}", payload)
        creation_id = payload.get("id") if isinstance(payload, dict) else None
        if not creation_id:
            raise RemoteCreateError("media container response has no id", payload)
        return str(creation_id)

    async def wait_until_ready(self, creation_id: str, account: Account) -> Dict:
        """Poll container status until FINISHED. Returns the last status body."""
        started = self._clock()
        attempt = 0
        last_resp: Any = None
        while True:
            attempt += 1
            try:
                r = await self._get(creation_id, {
                    "fields": "status_code,status",
                    "access_token": account.access_token,
                })
            except requests.RequestException as e:
                logger.warning("Poll attempt %d for %s failed: %s", attempt, creation_id, e)
                r = None

            if r is not None:
                payload = _json_or_text(r)
                last_resp = payload
                if is_token_error(payload):
                    raise CredentialExpiredError(account.key, payload, step="poll")
                if not r.ok:
                    raise RemoteProcessingError(f"status check failed ({r.status_code})", payload)
                body = payload if isinstance(payload, dict) else {}
                status = str(body.get("status_code") or "").upper()
                logger.debug("Attempt %d - %s => %s", attempt, creation_id, payload)
                if status == READY:
                    return body
                if status in TERMINAL_ERRORS:
                    raise RemoteProcessingError(f"container {creation_id} reported {status}", payload)

            if self._clock() - started + self.poll_interval > self.poll_timeout:
                raise RemoteTimeoutError(
                    f"container {creation_id} not ready after {self.poll_timeout:g}s", last_resp
                )
            await self._sleep(self.poll_interval)

    async def publish_container(self, creation_id: str, account: Account) -> str:
        try:
            r = await self._post(f"{account.remote_user_id}/media_publish", {
                "creation_id": creation_id,
                "access_token": account.access_token,
            })
        except requests.RequestException as e:
            raise RemotePublishError("media_publish request failed", str(e))

        payload = _json_or_text(r)
        if is_token_error(payload):
            raise CredentialExpiredError(account.key, payload, step="publish")
        if not r.ok:
            raise RemotePublishError(f"media_publish error {r.status_code}", payload)
        media_id = payload.get("id") if isinstance(payload, dict) else None
        if not media_id:
            raise RemotePublishError("media_publish response has no id", payload)
        return str(media_id)

    async def publish(self, job: Job, account: Account) -> PublishResult:
        """Run all three steps for a job. Any failure aborts the attempt."""
        logger.info("Job %s: creating %s container for %s", job.id, job.media_type.value.lower(), account.key)
        creation_id = await self.create_container(job, account)
        logger.info("Job %s: waiting for container %s", job.id, creation_id)
        await self.wait_until_ready(creation_id, account)
        media_id = await self.publish_container(creation_id, account)
        logger.info("Job %s: published as media %s", job.id, media_id)
        return PublishResult(creation_id, media_id)
