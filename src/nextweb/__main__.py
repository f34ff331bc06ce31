"""
=============================================================================
NEXTWEB CLI ENTRY POINT
=============================================================================

    # Run with ./config.toml
    python -m nextweb

    # Explicit server list
    python -m nextweb --config /etc/nextweb/config.toml

    # Handle connections of each server on 4-8 worker threads
    python -m nextweb --workers 4

    # Verbose diagnostics (stderr); access lines always go to stdout
    python -m nextweb --log-level DEBUG

Every option can also come from the environment (NEXTWEB_CONFIG,
NEXTWEB_WORKERS, NEXTWEB_LOG_LEVEL); command-line arguments win.

Exit status is 1 when configuration or binding fails at startup.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import LOG_LEVELS, AppSettings, ConfigError
from .server import NextWeb, setup_logging


def build_parser(defaults: AppSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nextweb",
        description="Minimal multi-server HTTP front-end: static files and reverse proxy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nextweb                              # Use ./config.toml
  nextweb --config servers.toml        # Explicit server list
  nextweb --workers 4                  # Parallel connections per server
        """,
    )

    parser.add_argument(
        "--config", "-c",
        default=defaults.config_path,
        help=f"Top-level server list (default: {defaults.config_path})",
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=defaults.workers,
        help="Worker threads per server; 0 handles connections serially (default: %(default)s)",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        type=str.upper,
        default=defaults.log_level.upper(),
        help="Diagnostic logging level (default: %(default)s)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"nextWeb {__version__}",
    )

    return parser


def main(argv=None) -> int:
    try:
        defaults = AppSettings.from_env()
    except ValueError as e:
        print(f"Error: invalid environment setting: {e}", file=sys.stderr)
        return 1

    args = build_parser(defaults).parse_args(argv)

    settings = AppSettings(
        config_path=args.config,
        log_level=args.log_level,
        workers=args.workers,
    )

    try:
        settings.validate()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level)

    try:
        NextWeb(settings).run()
    except ConfigError as e:
        print(f"Error: configuration: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
