"""
armlink-monitor: connect to a controller and print telemetry as JSON lines.

Optionally runs one named command (see CommandDispatcher) after connecting:

    armlink-monitor --host 10.0.0.2 --command enable --count 50
    armlink-monitor --command move_to_target --data '[0, -30, 45, 0, 60, 0]'
"""

import argparse
import asyncio
import logging
import sys

import msgspec

import armlink.config as cfg
from armlink.client.async_client import AsyncArmClient
from armlink.client.dispatcher import CommandDispatcher
from armlink.client.events import LinkError, StateUpdate, StatusChanged
from armlink.config import ConnectionConfig
from armlink.protocol.types import ConnectionStatus
from armlink.utils.errors import ConnectError
from armlink.utils.logs import add_log_arguments, setup_logging

logger = logging.getLogger("armlink.cli.monitor")

_encoder = msgspec.json.Encoder()


async def _monitor(args: argparse.Namespace) -> int:
    config = ConnectionConfig(
        host=args.host,
        port=args.port,
        topic=args.topic,
        message_timeout_ms=args.timeout_ms,
        max_consecutive_timeouts=args.max_timeouts,
    )
    async with AsyncArmClient(config) as client:
        dispatcher = CommandDispatcher(client)
        try:
            await client.connect()
        except ConnectError as e:
            logger.error(f"{e}")
            return 1

        if args.command:
            data = msgspec.json.decode(args.data) if args.data else None
            result = await dispatcher.execute(args.command, data)
            sys.stderr.write(_encoder.encode(result).decode() + "\n")
            if not result.ok:
                return 2

        received = 0
        async for event in client.events.stream():
            match event:
                case StateUpdate(state=state):
                    sys.stdout.write(_encoder.encode(state).decode() + "\n")
                    sys.stdout.flush()
                    received += 1
                    if args.count and received >= args.count:
                        return 0
                case LinkError():
                    logger.error(event.reason)
                case StatusChanged(status=ConnectionStatus.ERROR | ConnectionStatus.DISCONNECTED):
                    return 1
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Print armlink telemetry as JSON lines")
    parser.add_argument("--host", default=cfg.DEFAULT_HOST, help="Controller host")
    parser.add_argument("--port", type=int, default=cfg.DEFAULT_PORT, help="Rendezvous port")
    parser.add_argument("--topic", default=None, help="Telemetry topic filter")
    parser.add_argument(
        "--timeout-ms", type=int, default=cfg.MESSAGE_TIMEOUT_MS, help="Per-message timeout"
    )
    parser.add_argument(
        "--max-timeouts",
        type=int,
        default=cfg.MAX_CONSECUTIVE_TIMEOUTS,
        help="Consecutive timeouts before the link is considered lost",
    )
    parser.add_argument(
        "-n", "--count", type=int, default=0, help="Exit after N states (0 = run forever)"
    )
    parser.add_argument("--command", help="Named command to run after connecting")
    parser.add_argument("--data", help="JSON payload for --command")
    add_log_arguments(parser)
    args = parser.parse_args()

    setup_logging(args)

    try:
        return asyncio.run(_monitor(args))
    except KeyboardInterrupt:
        return 0
    except msgspec.DecodeError as e:
        logger.error(f"Invalid --data: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
