"""CLI entry point for the Heliospectra light control agent."""
from __future__ import annotations

import logging
import os
import signal
import sys

from heliospectra.cli import build_parser, configure_logging, resolve_config
from heliospectra.control import ControlService
from heliospectra.errors import ConfigError
from heliospectra.hardware import create_interface

logger = logging.getLogger("heliospectra.agent")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = resolve_config(args, os.environ)
        interface = create_interface(config.device)
        service = ControlService(config, interface_factory=lambda: interface)
    except (ConfigError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    logger.info("hostTag: \t%s", config.metrics.host_tag)
    logger.info("groupTag: \t%s", config.metrics.group_tag)
    logger.info("address: \t%s", config.device.address)
    logger.info("file: \t%s", config.schedule.conditions_path or "")
    logger.info("interval: \t%ss", config.schedule.interval_s)
    logger.info("mode: \t%s (%s transport)", config.mode, config.device.transport)

    shutdown_requested = False

    def signal_handler(signum, frame):
        nonlocal shutdown_requested
        if not shutdown_requested:
            shutdown_requested = True
            logger.info("received signal %s, stopping", signum)
            service.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        service.run()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        service.request_stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
