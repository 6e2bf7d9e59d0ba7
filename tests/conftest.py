"""Shared fixtures: a scripted fake API server and an in-memory engine."""

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from fieldsync.config import Config
from fieldsync.engine import SyncEngine
from fieldsync.models import Attachment
from fieldsync.storage import KeyValueStore

API = "https://api.example.org/v1"
UPLOAD_URL = "https://files.example.org/upload"


class ApiStub:
    """Scripted HTTP server for httpx.MockTransport.

    Each URL gets a list of outcomes consumed one per request; the last
    outcome repeats. An outcome is a status code, a JSON payload (served
    with 200), or one of "connect-error" / "timeout".
    """

    def __init__(self):
        self.outcomes: dict[str, list] = {}
        self.requests: list[httpx.Request] = []
        self.uploads = 0
        self.upload_outcome = "ok"
        self.delay = 0.0

    def script(self, url: str, *outcomes) -> None:
        self.outcomes[url] = list(outcomes)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        if str(request.url) == UPLOAD_URL:
            if self.upload_outcome != "ok":
                return httpx.Response(200, json={"status": False, "message": "rejected"})
            self.uploads += 1
            return httpx.Response(
                200,
                json={"status": True, "data": [{"url": [f"https://cdn.example.org/p{self.uploads}.jpg"]}]},
            )

        queue = self.outcomes.get(str(request.url), [200])
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]

        if outcome == "connect-error":
            raise httpx.ConnectError("network unreachable", request=request)
        if outcome == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome, json={"status": outcome < 400, "message": f"status {outcome}"})
        return httpx.Response(200, json=outcome)

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def bodies_to(self, url: str) -> list:
        return [json.loads(r.content) for r in self.calls_to(url)]


@pytest.fixture
def stub():
    return ApiStub()


@pytest.fixture
def storage():
    """Create an in-memory key-value store."""
    kv = KeyValueStore(":memory:")
    kv.connect()
    yield kv
    kv.close()


@pytest.fixture
def config():
    """Engine config with automatic follow-up passes disabled."""
    config = Config()
    config.sync.retry_delay_seconds = 0
    return config


@pytest.fixture
def engine(stub, storage, config):
    """Create a SyncEngine wired to the stub server."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub.handler))
    return SyncEngine(storage, client, config, clock=lambda: datetime(2026, 6, 1, 9, 0, 0))


@pytest.fixture
def photo(tmp_path):
    """Create a local photo attachment."""
    def _make(name: str = "tree.jpg", **kwargs) -> Attachment:
        path = tmp_path / name
        path.write_bytes(b"\xff\xd8\xff" + name.encode())
        return Attachment(local_uri=str(path), upload_url=UPLOAD_URL, file_name=name, **kwargs)
    return _make
