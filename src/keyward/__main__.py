"""keyward entry point.

Subcommands:
  serve   Run the authorization server (default)
  sweep   Delete expired authorization codes and refresh tokens
  keygen  Print a fresh encryption key and JWT secret for the .env file
"""

import argparse
import logging
import secrets
import sqlite3
from importlib.metadata import version as get_version

from keyward.config import get_settings
from keyward.errors import ConfigurationError
from keyward.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_keygen() -> int:
    print(f"KEYWARD_ENCRYPTION_KEY={secrets.token_hex(32)}")
    print(f"KEYWARD_JWT_SECRET={secrets.token_urlsafe(48)}")
    print(f"KEYWARD_REGISTRATION_SECRET={secrets.token_urlsafe(24)}")
    return 0


def run_sweep() -> int:
    from keyward.api.oauth2.server import get_oauth_server

    try:
        removed = get_oauth_server().sweep_expired()
    except sqlite3.Error as e:
        logger.error("Sweep failed: %s", e)
        return 1
    print(f"Removed {removed} expired grant(s)")
    return 0


def run_serve(host: str | None, port: int | None, dev: bool) -> int:
    settings = get_settings()
    try:
        settings.check_secrets()
    except ConfigurationError as e:
        logger.error("Refusing to start: %s", e)
        return 2
    if not settings.registration_secret:
        logger.warning("KEYWARD_REGISTRATION_SECRET is unset; client registration is open")

    from keyward.api.serve import run_api_server

    run_api_server(
        host=host or settings.web_host,
        port=port or settings.web_port,
        dev=dev,
    )
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="OAuth authorization server that wraps an upstream API key",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  keyward keygen > .env              Generate key material
  keyward serve                      Start the server on 127.0.0.1:8888
  keyward serve --host 0.0.0.0       Listen on all interfaces
  keyward sweep                      Purge expired codes and refresh tokens
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "sweep", "keygen"],
        help="Subcommand (default: serve)",
    )
    parser.add_argument("--host", default=None, help="Host to bind (default: KEYWARD_WEB_HOST)")
    parser.add_argument(
        "--port", "-p", type=int, default=None, help="Port to bind (default: KEYWARD_WEB_PORT)"
    )
    parser.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {get_version('keyward')}",
    )

    args = parser.parse_args()
    setup_logging(level=args.log_level)

    try:
        if args.command == "keygen":
            exit_code = run_keygen()
        elif args.command == "sweep":
            exit_code = run_sweep()
        else:
            exit_code = run_serve(args.host, args.port, args.dev)
    except KeyboardInterrupt:
        logger.info("keyward stopped.")
        exit_code = 0
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
