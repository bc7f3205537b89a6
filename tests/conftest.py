"""Pytest hooks and fixtures."""

import asyncio
import json
import os

import pytest

from codebox.rpc.endpoint import Endpoint


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "slow: spawns real worker processes",
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests when CODEBOX_SKIP_SLOW=1."""
    if os.environ.get("CODEBOX_SKIP_SLOW") != "1":
        return
    skip = pytest.mark.skip(reason="Spawns worker processes (CODEBOX_SKIP_SLOW=1)")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip)


class LoopbackWriter:
    """In-memory stand-in for a pipe: delivers written bytes to another endpoint on the next loop turn."""

    def __init__(self, target: Endpoint | None = None):
        self.target = target
        self.lines: list[dict] = []
        self.broken = False

    def write(self, data: bytes) -> None:
        if self.broken:
            raise BrokenPipeError("pipe closed")
        for raw in data.decode("utf-8").splitlines():
            self.lines.append(json.loads(raw))
        if self.target is not None:
            asyncio.get_running_loop().call_soon(self.target.feed, data)

    async def drain(self) -> None:
        await asyncio.sleep(0)


@pytest.fixture
def endpoint_pair():
    """Factory for two endpoints wired back to back."""

    def _make(**kwargs):
        a = Endpoint("a", **kwargs)
        b = Endpoint("b", **kwargs)
        a.attach(LoopbackWriter(b))
        b.attach(LoopbackWriter(a))
        return a, b

    return _make


@pytest.fixture
def recording_endpoint():
    """Endpoint whose outgoing frames are only recorded."""
    endpoint = Endpoint("rec")
    writer = LoopbackWriter()
    endpoint.attach(writer)
    return endpoint, writer
