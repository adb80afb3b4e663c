"""
Outbound event channel of a link.

Collaborators either register a callback with :meth:`EventHub.add_listener`
or iterate :meth:`EventHub.stream`. Both see every event in emission order.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TypeAlias, Union

from ..config import TRACE
from ..protocol.types import ConnectionStatus, RobotArmState
from ..utils.errors import ArmLinkError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StateUpdate:
    state: RobotArmState


@dataclass(slots=True, frozen=True)
class LinkError:
    error: ArmLinkError

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass(slots=True, frozen=True)
class Connected:
    pass


@dataclass(slots=True, frozen=True)
class Disconnected:
    pass


@dataclass(slots=True, frozen=True)
class StatusChanged:
    status: ConnectionStatus
    error: str | None = None


LinkEvent: TypeAlias = Union[StateUpdate, LinkError, Connected, Disconnected, StatusChanged]

Listener: TypeAlias = Callable[[LinkEvent], None]

# Sentinel that ends stream() consumers
_CLOSED = object()

STREAM_QUEUE_SIZE = 256


def _offer(queue: asyncio.Queue, item: object) -> None:
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        # Drop oldest event if the consumer fell behind
        queue.get_nowait()
        queue.put_nowait(item)


class EventHub:
    """Fan-out of link events to callbacks and async consumers."""

    def __init__(self, max_queued: int = STREAM_QUEUE_SIZE) -> None:
        self._max_queued = max_queued
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue] = []
        self._closed = False

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def emit(self, event: LinkEvent) -> None:
        if self._closed:
            return
        logger.log(TRACE, "event: %s", event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed", listener)
        for queue in self._queues:
            _offer(queue, event)

    async def stream(self) -> AsyncIterator[LinkEvent]:
        """Async generator yielding every event emitted after it starts.

        Each consumer buffers at most ``max_queued`` events; a slow consumer
        loses the oldest ones. Terminates when :meth:`close` is called. A
        consumer that stops iterating early should close the generator
        (``contextlib.aclosing``) so its buffer is released.
        """
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queued)
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    break
                yield event
        finally:
            self._queues.remove(queue)

    def close(self) -> None:
        """Wake and end all stream consumers, drop all listeners."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            _offer(queue, _CLOSED)
        self._listeners.clear()
