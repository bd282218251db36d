"""
Command line entry point for dronectl.

usage:
    dronectl [--host HOST] [--port PORT] [--router-id ID] [--plain]

example:
    dronectl --host 127.0.0.1 --port 5760
    dronectl --config link.yaml --plain -v
    dronectl --simulate
"""

import asyncio
import logging
import sys
from argparse import ArgumentParser, Namespace
from typing import List, Optional

from . import __version__
from .app import run
from .log import LogComponent, LogLevel, configure_logging, get_logger
from .transport import TransportConfig


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure dronectl logging for a CLI run.

    Args:
        verbose: Enable debug (DEBUG level) logging
        quiet: Suppress most output (WARNING level only)
        log_file: Optional path to write logs to file

    Returns:
        The application logger
    """
    if verbose:
        level = LogLevel.DEBUG
    elif quiet:
        level = LogLevel.WARNING
    else:
        level = LogLevel.INFO

    configure_logging(
        level=level,
        console=True,
        colored=sys.stdout.isatty(),
        file=log_file,
    )

    # Suppress noisy gRPC logs from MAVSDK
    logging.getLogger("_cython.cygrpc").setLevel(logging.WARNING)
    logging.getLogger("grpc._cython.cygrpc").setLevel(logging.WARNING)

    return get_logger(LogComponent.APP)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="dronectl",
        description="dronectl - find one drone and fly it from the terminal",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config",
        help="path to a JSON or YAML file with link settings. "
        "Command line arguments override the file.",
    )

    link_grp = parser.add_argument_group("Link")
    link_grp.add_argument(
        "-H", "--host", help="MAVLink endpoint host (default: 127.0.0.1)"
    )
    link_grp.add_argument(
        "-p", "--port", type=int, help="MAVLink endpoint TCP port (default: 5760)"
    )
    link_grp.add_argument(
        "-i", "--router-id", dest="router_id", help="router identifier (default: ROUTER)"
    )
    link_grp.add_argument(
        "--mavsdk-port",
        type=int,
        dest="mavsdk_port",
        help="gRPC port for the embedded mavsdk_server (default: 50051)",
    )

    exec_grp = parser.add_argument_group("Execution Flags")
    exec_grp.add_argument(
        "--plain",
        help="line-mode console instead of the full-screen view",
        action="store_true",
    )
    exec_grp.add_argument(
        "--simulate",
        help="fly a simulated vehicle instead of connecting to MAVLink",
        action="store_true",
    )

    log_grp = parser.add_argument_group("Logging")
    log_grp.add_argument(
        "-v",
        "--verbose",
        help="enable debug logging (DEBUG level)",
        action="store_true",
    )
    log_grp.add_argument(
        "-q",
        "--quiet",
        help="suppress most output (WARNING level only)",
        action="store_true",
    )
    log_grp.add_argument(
        "--log-file",
        help="write logs to file in addition to console",
        dest="log_file",
    )
    return parser


def load_config(args: Namespace) -> TransportConfig:
    """Defaults, then the config file, then command line overrides."""
    config = TransportConfig.from_file(args.config) if args.config else TransportConfig()
    return config.with_overrides(
        host=args.host,
        port=args.port,
        router_id=args.router_id,
        mavsdk_port=args.mavsdk_port,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the dronectl CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(
        verbose=args.verbose,
        quiet=args.quiet,
        log_file=args.log_file,
    )

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logger.info(f"dronectl {__version__}")
    logger.debug(f"Python version: {sys.version}")
    logger.debug(f"Link: {config.address} (router {config.router_id}, mavsdk port {config.mavsdk_port})")

    try:
        exit_code = asyncio.run(
            run(config, plain=args.plain, simulate=args.simulate)
        )
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
