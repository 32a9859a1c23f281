import pytest

from accounts import AccountRegistry
from database import JobStore, MemoryJobStore
from models import Account
from publisher import GraphPublisher


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeGraph:
    """
    Scripted stand-in for a requests.Session talking to the Graph API.
    Each entry may be a FakeResponse or an exception to raise. The last
    status response repeats once the script runs out.
    """

    def __init__(self, create=None, statuses=None, publish=None):
        self.calls = []
        self.create = create or FakeResponse(200, {"id": "c1"})
        self.statuses = list(statuses or [FakeResponse(200, {"status_code": "FINISHED", "id": "c1"})])
        self.publish = publish or FakeResponse(200, {"id": "m1"})

    @staticmethod
    def _answer(resp):
        if isinstance(resp, Exception):
            raise resp
        return resp

    def post(self, url, data=None, timeout=None):
        self.calls.append(("POST", url, dict(data or {})))
        if url.endswith("/media_publish"):
            return self._answer(self.publish)
        return self._answer(self.create)

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, dict(params or {})))
        resp = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return self._answer(resp)

    def count(self, method, suffix):
        return len([c for c in self.calls if c[0] == method and c[1].endswith(suffix)])


class FakeClock:
    """Monotonic clock that only moves when the publisher sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store(tmp_path):
    return JobStore(str(tmp_path / "jobs.db"))


@pytest.fixture
def memory_store():
    return MemoryJobStore()


@pytest.fixture
def accounts():
    return AccountRegistry(accounts={
        "acme": Account(key="acme", remote_user_id="1784000", access_token="tok-acme"),
        "halfdone": Account(key="halfdone", remote_user_id="1784001"),
    })


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_publisher(clock):
    def _make(session, poll_interval=3.0, poll_timeout=180.0):
        return GraphPublisher(
            api_version="v21.0",
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
            session=session,
            sleep=clock.sleep,
            clock=clock,
        )
    return _make
