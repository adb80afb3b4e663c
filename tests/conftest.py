"""Shared fixtures."""

import pytest
import pytest_asyncio

from armlink.client.async_client import AsyncArmClient
from armlink.client.events import LinkEvent
from armlink.config import ConnectionConfig
from armlink.protocol.wire import Endpoint, NetworkInfo
from fakes import FakeTransport


@pytest.fixture
def network_info() -> NetworkInfo:
    return NetworkInfo(
        dealer=Endpoint(127, 0, 0, 1, 5556),
        sub=Endpoint(127, 0, 0, 1, 5557),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recorded():
    """Factory attaching an event recorder to a client."""

    def attach(client: AsyncArmClient) -> list[LinkEvent]:
        events: list[LinkEvent] = []
        client.events.add_listener(events.append)
        return events

    return attach


@pytest_asyncio.fixture
async def make_client(transport):
    """Factory for clients wired to the fake transport; closed on teardown."""
    clients: list[AsyncArmClient] = []

    def factory(**config) -> AsyncArmClient:
        conn = ConnectionConfig(host="127.0.0.1", port=5555, **config)
        client = AsyncArmClient(conn, transport=transport, ack_timeout_ms=50)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()
