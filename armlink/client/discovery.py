"""
Discovery handshake.

A single REQ/REP round trip against the well-known rendezvous endpoint. The
reply names the DEALER endpoint used for commands and the PUB endpoint that
streams telemetry. The REQ socket lives only for the duration of one call.
"""

import logging

import zmq

from .. import config as cfg
from ..protocol.wire import NetworkInfo, decode_network_info
from ..utils.errors import ConnectError, DecodeError
from .transport import ZmqTransport

logger = logging.getLogger(__name__)


async def discover(
    transport: ZmqTransport,
    rendezvous: str,
    *,
    token: bytes = cfg.DISCOVERY_TOKEN,
    timeout_ms: int = cfg.MESSAGE_TIMEOUT_MS,
) -> NetworkInfo:
    """Resolve the dealer and subscriber endpoints from ``rendezvous``.

    Args:
        transport: Socket factory
        rendezvous: Rendezvous URI, e.g. ``tcp://10.0.0.2:5555``
        token: Literal request payload
        timeout_ms: Deadline for the reply

    Returns:
        NetworkInfo with dealer endpoint first, subscriber second.

    Raises:
        ConnectError: On transport failure, timeout or a malformed reply.
    """
    logger.debug("Discovery request to %s", rendezvous)
    try:
        sock = transport.request_socket(rendezvous)
    except zmq.ZMQError as e:
        raise ConnectError(f"Cannot open discovery socket to {rendezvous}: {e}") from e

    try:
        await sock.send(token)
        if not await sock.poll(timeout_ms, zmq.POLLIN):
            raise ConnectError(
                f"No discovery reply from {rendezvous} within {timeout_ms} ms"
            )
        reply = await sock.recv()
        info = decode_network_info(reply)
    except zmq.ZMQError as e:
        raise ConnectError(f"Discovery with {rendezvous} failed: {e}") from e
    except DecodeError as e:
        raise ConnectError(f"Malformed discovery reply from {rendezvous}: {e}") from e
    finally:
        sock.close(linger=0)

    logger.info(
        "Discovered endpoints: dealer=%s sub=%s", info.dealer.uri, info.sub.uri
    )
    return info
