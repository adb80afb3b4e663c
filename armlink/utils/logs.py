"""Logging setup shared by the command-line entry points."""

import argparse
import logging

import armlink.config as cfg
from armlink.config import TRACE


def add_log_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )


def setup_logging(args: argparse.Namespace) -> int:
    """Configure the root logger from parsed CLI flags; returns the level.

    Precedence:
      1) Explicit --log-level
      2) Verbose / quiet flags
      3) Environment-driven TRACE (ARMLINK_TRACE=1 via TRACE_ENABLED)
      4) Default INFO
    """
    if args.log_level:
        if args.log_level == "TRACE":
            log_level = TRACE
            cfg.TRACE_ENABLED = True
        else:
            log_level = getattr(logging, args.log_level)
    elif args.verbose >= 3:
        log_level = TRACE
        cfg.TRACE_ENABLED = True
    elif args.verbose >= 2:
        log_level = logging.DEBUG
    elif args.verbose == 1:
        log_level = logging.INFO
    elif args.quiet:
        log_level = logging.WARNING
    elif cfg.TRACE_ENABLED:
        log_level = TRACE
    else:
        log_level = getattr(logging, cfg.LOG_LEVEL_DEFAULT)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # pyzmq's asyncio layer is chatty below INFO
    logging.getLogger("asyncio").setLevel(max(log_level, logging.INFO))
    return log_level
