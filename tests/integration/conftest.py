"""Integration test fixtures: a MockController on loopback and a client bound to it."""

import pytest_asyncio

from armlink.client.async_client import AsyncArmClient
from armlink.config import ConnectionConfig
from armlink.server.mock_controller import MockController


@pytest_asyncio.fixture
async def controller():
    async with MockController(host="127.0.0.1", rate_hz=100) as mock:
        yield mock


@pytest_asyncio.fixture
async def client(controller):
    """Client with short deadlines so link-loss paths finish quickly."""
    conn = ConnectionConfig(
        host=controller.host,
        port=controller.port,
        message_timeout_ms=200,
        max_consecutive_timeouts=3,
    )
    c = AsyncArmClient(conn, ack_timeout_ms=1000)
    yield c
    await c.close()
