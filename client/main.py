"""
Main entry point for the GPT Toolkit Client.

This module provides a command-line interface over the authenticated session
layer, for scripting and diagnosing login problems.
"""

import sys
import json
import asyncio
import argparse
import getpass
import logging
from typing import Optional

from client.config import ClientConfiguration
from client.auth.session_manager import SessionManager
from shared.exceptions import ToolkitError, ConfigurationError, error_message_for
from shared.logging_config import setup_logging, LogLevel, LogFormat

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_NOT_AUTHENTICATED = 2
EXIT_CONFIG_ERROR = 3
EXIT_CANCELLED = 130


def parse_arguments(argv: Optional[list] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="GPT Toolkit Client",
        epilog="""
Examples:
  %(prog)s login --email me@example.com   # Log in (prompts for password)
  %(prog)s whoami                         # Restore the saved session and show the user
  %(prog)s status --json                  # Show session state as JSON
  %(prog)s logout                         # Log out and forget the saved session
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override server URL")
    config_group.add_argument("--timeout", type=float, metavar="SECONDS",
                              help="Override request timeout")

    # Output and debug options
    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Print results as JSON")
    output_group.add_argument("--debug", action="store_true",
                              help="Enable debug logging")
    output_group.add_argument("--log-file", type=str, metavar="FILE",
                              help="Also write logs to FILE")

    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Log in with email and password")
    login_parser.add_argument("--email", required=True)
    login_parser.add_argument("--password", help="Password (prompted if omitted)")

    register_parser = subparsers.add_parser("register", help="Create an account and log in")
    register_parser.add_argument("--name", required=True)
    register_parser.add_argument("--email", required=True)
    register_parser.add_argument("--password", help="Password (prompted if omitted)")

    subparsers.add_parser("logout", help="Log out and delete the saved session")
    subparsers.add_parser("whoami", help="Restore the saved session and show the current user")
    subparsers.add_parser("refresh", help="Exchange the saved refresh token for new tokens")
    subparsers.add_parser("status", help="Show session state without contacting the server")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging from arguments and configuration."""
    try:
        level = LogLevel.DEBUG if args.debug else LogLevel(config.get_log_level())
    except ValueError:
        level = LogLevel.INFO
    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        max_file_size=config.get_config('logging.max_size', 10485760),
        backup_count=config.get_config('logging.backup_count', 3),
    )


def load_configuration(args) -> ClientConfiguration:
    config = ClientConfiguration(args.config)

    # Override configuration with command line arguments
    if args.server_url:
        config.set_override('server.url', args.server_url)
    if args.timeout is not None:
        config.set_override('server.timeout', args.timeout)

    config.validate()
    return config


def print_result(args, data: dict, text: str) -> None:
    if args.json:
        print(json.dumps(data))
    else:
        print(text)


async def run_command(args, session_manager: SessionManager) -> int:
    """Run one command against the session manager."""
    command = args.command

    if command in ("login", "register"):
        password = args.password or getpass.getpass("Password: ")
        if command == "login":
            user = await session_manager.login(args.email, password)
        else:
            user = await session_manager.register(args.name, args.email, password)
        print_result(args, user.to_dict(), f"✓ Logged in as {user.name} <{user.email}>")
        return EXIT_SUCCESS

    if command == "logout":
        await session_manager.logout()
        print_result(args, {'logged_out': True}, "✓ Logged out")
        return EXIT_SUCCESS

    if command == "whoami":
        user = await session_manager.load_current_user()
        if user is None:
            print_result(args, {'authenticated': False}, "Not logged in")
            return EXIT_NOT_AUTHENTICATED
        print_result(args, user.to_dict(), f"{user.name} <{user.email}> (id {user.id})")
        return EXIT_SUCCESS

    if command == "refresh":
        try:
            refreshed = await session_manager.refresh()
        except ToolkitError:
            # A rejected refresh token is dead; don't keep it around
            await session_manager.discard_session()
            raise
        if not refreshed:
            print_result(args, {'refreshed': False}, "Not logged in")
            return EXIT_NOT_AUTHENTICATED
        expires_at = session_manager.access_token_expires_at
        print_result(
            args,
            {'refreshed': True, 'expires_at': expires_at.isoformat() if expires_at else None},
            "✓ Tokens refreshed" + (f", access token expires {expires_at:%Y-%m-%d %H:%M:%S %Z}" if expires_at else "")
        )
        return EXIT_SUCCESS

    if command == "status":
        has_saved_session = session_manager.credential_store.read(session_manager.credential_key) is not None
        data = {
            'server_url': session_manager.api_client.base_url,
            'auth_state': session_manager.auth_state.value,
            'saved_session': has_saved_session,
        }
        print_result(
            args, data,
            f"Server: {data['server_url']}\n"
            f"Saved session: {'Yes' if has_saved_session else 'No'}"
        )
        return EXIT_SUCCESS

    raise ValueError(f"Unknown command: {command}")


async def run(args, config: ClientConfiguration) -> int:
    async with SessionManager.from_config(config) as session_manager:
        return await run_command(args, session_manager)


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = load_configuration(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(args, config)

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_CANCELLED
    except ToolkitError as e:
        logger.debug(f"{args.command} failed: {e.message}")
        print(f"✗ {error_message_for(e)}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
