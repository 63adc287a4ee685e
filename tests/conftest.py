"""Shared test fixtures for livedeck."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from livedeck.config import Settings
from livedeck.memory_backend import MemoryBackend
from main import create_app

SECRET = "test-secret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    # Short heartbeat so server-side teardown after a client leaves is quick
    return Settings(control_secret=SECRET, heartbeat_interval=0.05)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
async def client(aiohttp_client, settings: Settings, backend: MemoryBackend):
    return await aiohttp_client(create_app(settings, backend=backend))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def read_frame(response: Any) -> str:
    """Read one event-stream frame (lines up to the blank separator line)."""
    lines = []
    while True:
        line = await asyncio.wait_for(response.content.readline(), timeout=2.0)
        if not line:
            raise AssertionError("stream ended")
        if line in (b"\n", b"\r\n"):
            return "".join(lines)
        lines.append(line.decode())


async def read_event(response: Any) -> tuple[str | None, dict[str, Any]]:
    """Next non-heartbeat frame as (event name, decoded data)."""
    while True:
        frame = await read_frame(response)
        if frame.startswith(":"):
            continue
        event = None
        data = ""
        for line in frame.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = line[len("data: "):]
        return event, json.loads(data)
