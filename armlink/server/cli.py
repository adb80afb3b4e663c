"""Command-line interface for the mock arm controller."""

import argparse
import asyncio
import logging
import signal

import zmq

import armlink.config as cfg
from armlink.server.mock_controller import MockController
from armlink.utils.logs import add_log_arguments, setup_logging

logger = logging.getLogger("armlink.server.cli")


async def _serve(controller: MockController) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    async with controller:
        await stop.wait()
        logger.info("Shutting down...")


def main() -> int:
    """Main entry point for the mock controller."""
    parser = argparse.ArgumentParser(description="armlink mock robot arm controller")
    parser.add_argument("--host", default=cfg.MOCK_BIND_HOST, help="IPv4 address to bind")
    parser.add_argument(
        "--port", type=int, default=cfg.DEFAULT_PORT, help="Rendezvous (discovery) port"
    )
    parser.add_argument(
        "--command-port", type=int, default=0, help="Command port (0 = pick a free port)"
    )
    parser.add_argument(
        "--telemetry-port", type=int, default=0, help="Telemetry port (0 = pick a free port)"
    )
    parser.add_argument(
        "--rate", type=float, default=cfg.MOCK_RATE_HZ, help="Telemetry rate in Hz"
    )
    parser.add_argument("--topic", default=None, help="Prefix telemetry with this topic frame")
    parser.add_argument(
        "--enabled", action="store_true", help="Start enabled (default: disabled)"
    )
    add_log_arguments(parser)
    args = parser.parse_args()

    setup_logging(args)

    if args.rate <= 0:
        logger.error("--rate must be positive")
        return 1

    controller = MockController(
        host=args.host,
        port=args.port,
        command_port=args.command_port,
        telemetry_port=args.telemetry_port,
        rate_hz=args.rate,
        topic=args.topic,
    )
    controller.enabled = bool(args.enabled)

    try:
        asyncio.run(_serve(controller))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except (OSError, zmq.ZMQError) as e:
        logger.error(f"Failed to start mock controller: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
