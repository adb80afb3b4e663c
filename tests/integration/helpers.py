"""Helpers shared by the integration tests."""

import asyncio
from contextlib import aclosing

from armlink.client.async_client import AsyncArmClient


async def wait_for_state(client: AsyncArmClient, predicate=lambda s: True, timeout: float = 3.0):
    """Return the first streamed state matching ``predicate``."""

    async def _wait():
        async with aclosing(client.state_stream()) as states:
            async for state in states:
                if predicate(state):
                    return state

    return await asyncio.wait_for(_wait(), timeout)
