"""
ZeroMQ socket factory for the controller link.

One asyncio context per process, shared by every client unless a custom one is
injected (tests substitute the whole transport with in-memory fakes).
"""

import logging

import zmq
import zmq.asyncio

logger = logging.getLogger(__name__)

# Global asyncio ZMQ context (one per process)
_GLOBAL_CONTEXT: zmq.asyncio.Context | None = None


def get_global_context() -> zmq.asyncio.Context:
    """Get the global asyncio ZMQ context, creating it on first use."""
    global _GLOBAL_CONTEXT
    if _GLOBAL_CONTEXT is None or _GLOBAL_CONTEXT.closed:
        _GLOBAL_CONTEXT = zmq.asyncio.Context()
    return _GLOBAL_CONTEXT


class ZmqTransport:
    """Creates the three socket kinds a link needs, already connected.

    Every socket is created with LINGER=0 so closing never blocks on unsent
    messages.
    """

    def __init__(self, context: zmq.asyncio.Context | None = None) -> None:
        self._context = context

    @property
    def context(self) -> zmq.asyncio.Context:
        return self._context or get_global_context()

    def _socket(self, kind: int, endpoint: str) -> zmq.asyncio.Socket:
        sock = self.context.socket(kind)
        sock.setsockopt(zmq.LINGER, 0)
        try:
            sock.connect(endpoint)
        except zmq.ZMQError:
            sock.close(linger=0)
            raise
        return sock

    def request_socket(self, endpoint: str) -> zmq.asyncio.Socket:
        """REQ socket for the one-shot discovery exchange."""
        return self._socket(zmq.REQ, endpoint)

    def dealer_socket(self, endpoint: str) -> zmq.asyncio.Socket:
        """DEALER socket for command requests and their responses."""
        return self._socket(zmq.DEALER, endpoint)

    def subscriber_socket(self, endpoint: str, topic: str = "") -> zmq.asyncio.Socket:
        """SUB socket for telemetry; an empty topic matches every message."""
        sock = self._socket(zmq.SUB, endpoint)
        sock.setsockopt_string(zmq.SUBSCRIBE, topic)
        logger.debug("Subscribed to %s (topic=%r)", endpoint, topic)
        return sock
