"""
=============================================================================
COMMAND LINE INTERFACE
=============================================================================

Run a standalone RCON server:

    python -m rconserver --password secret
    RCON_PASSWORD=secret python -m rconserver --port 27016 --ban 10.0.0.5

Every command received is logged. With --echo the server also replies to
each command with its own text, which is handy for checking a client.

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import ServerConfig, setup_logging
from .core import Client
from .server import RCONServer
from .signals import close_on_signals


logger = logging.getLogger("rconserver.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rconserver",
        description="Source RCON protocol server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m rconserver --password secret          # Defaults: 127.0.0.1:27015
  python -m rconserver -H 0.0.0.0 -p 27016 -P pw  # All interfaces, custom port
  python -m rconserver -P pw --ban 10.0.0.5       # Reject one client host
  python -m rconserver -P pw --echo               # Reply with each command
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: $RCON_HOST or 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: $RCON_PORT or 27015)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # ACCESS ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--password", "-P",
        default=None,
        help="RCON password (default: $RCON_PASSWORD; empty refuses all logins)"
    )

    parser.add_argument(
        "--ban",
        action="append",
        default=[],
        metavar="HOST",
        help="Client host to reject on connect (repeatable)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LIMIT ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--max-connections",
        type=int,
        default=None,
        help="Maximum concurrent sessions (default: unbounded)"
    )

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Close connections silent for this many seconds (default: never)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # BEHAVIOUR ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--echo",
        action="store_true",
        help="Reply to each command with its own text"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: $RCON_LOG_LEVEL or INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"rconserver {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then command-line overrides."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.password is not None:
        config.password = args.password
    if args.ban:
        config.ban_list = config.ban_list + args.ban
    if args.max_connections is not None:
        config.max_connections = args.max_connections
    if args.idle_timeout is not None:
        config.idle_timeout = args.idle_timeout
    if args.log_level is not None:
        config.log_level = args.log_level

    return config


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        config.validate()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level)

    server = RCONServer(config=config)

    @server.on_command
    def log_command(command: str, client: Client):
        logger.info(f"[{client.connection_id}] {client.address[0]}: {command}")
        if args.echo:
            client.reply(command)

    restore_signals = close_on_signals(server)
    try:
        server.listen_and_serve()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        restore_signals()

    return 0


if __name__ == "__main__":
    sys.exit(main())
