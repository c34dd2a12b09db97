"""Pytest configuration and shared fixtures."""

from typing import Any

import httpx
import pytest

from rdpanel.config import Settings
from rdpanel.storage import MemoryStore

VALID_API_KEY = "rdp_test_0123456789abcdefghijklmnopqrstuv"
OTHER_API_KEY = "rdp_other_0123456789abcdefghijklmnopqrstu"
API_PREFIX = "/api/v1"


class FakeProvider:
    """Simulated hosting API behind an httpx.MockTransport.

    Each route holds a queue of outcomes. The last outcome repeats once the
    queue is drained. An outcome is one of:
        - an httpx.Response
        - an exception class (raised with the request attached)
        - any other value, sent as a 200 JSON body
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *outcomes: Any) -> "FakeProvider":
        self.routes[(method.upper(), path)] = list(outcomes)
        return self

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.calls
            if r.method == method.upper() and r.url.path == API_PREFIX + path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path.removeprefix(API_PREFIX)
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"message": "Not found", "code": "NOT_FOUND"})

        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated failure", request=request)
        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(200, json=outcome)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


async def no_sleep(seconds: float) -> None:
    """Stand-in for asyncio.sleep that returns immediately."""
    return None


@pytest.fixture
def api_key() -> str:
    return VALID_API_KEY


@pytest.fixture
def provider() -> FakeProvider:
    """Fake hosting API with no routes."""
    return FakeProvider()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment, with instant retries."""
    return Settings(
        _env_file=None,
        retry_delay=0,
        data_dir=tmp_path,
        encryption_key=None,
        telegram_bot_token="123456:TEST",
        allowed_chat_ids=[1001],
    )


@pytest.fixture
def server_payloads() -> list[dict]:
    """Server list as returned by the provider."""
    return [
        {
            "id": "srv-1",
            "node": "de-fra-1",
            "rdns": "alpha.example.com",
            "distro": "ubuntu-22.04",
            "status": "running",
            "plan_id": 3,
            "ip_address": "10.0.0.1",
            "expiry_date": "2030-01-15T00:00:00Z",
        },
        {
            "id": "srv-2",
            "node": "de-fra-1",
            "rdns": "",
            "distro": "debian-12",
            "status": "stopped",
            "plan_id": 3,
            "ip_address": "10.0.0.2",
            "expiry_date": "2030-01-01T00:00:00Z",
        },
        {
            "id": "srv-3",
            "node": "nl-ams-1",
            "rdns": "Bravo.example.com",
            "distro": "ubuntu-22.04",
            "status": "running",
            "plan_id": 5,
            "ip_address": "10.0.0.3",
            "expiry_date": None,
        },
    ]
