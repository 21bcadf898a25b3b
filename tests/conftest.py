"""
Shared fixtures.

Router tests run against a real ConnectionRegistry and read what each
connection would have been sent straight off its queue.
"""
import asyncio
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from broker.broadcast.connection_registry import ConnectionRegistry
from broker.main import app
from broker.pending import PendingRequestTable, pending_requests
from broker.routing.request_router import RequestRouter


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def table() -> PendingRequestTable:
    return PendingRequestTable()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def request_router(table: PendingRequestTable, registry: ConnectionRegistry) -> RequestRouter:
    return RequestRouter(table, registry)


@pytest.fixture
def drain() -> Callable[[asyncio.Queue], list[dict]]:
    """Pop everything currently queued for one connection."""
    def _drain(q: asyncio.Queue) -> list[dict]:
        messages = []
        while not q.empty():
            messages.append(q.get_nowait())
        return messages
    return _drain


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    pending_requests.remove_where(lambda r: True)
