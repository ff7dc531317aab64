"""
Main entry point for the Loyalty Dashboard client.

Command-line interface for logging in and out, inspecting the stored session
and issuing authenticated GET requests against the dashboard API.
"""

import sys
import argparse
import asyncio
import getpass
import json
import logging
from typing import Optional, List

from loyalty_shared.exceptions import (
    DashboardError, AuthenticationError, SessionExpiredError, NetworkError, ConfigurationError
)
from loyalty_shared.logging_config import LogLevel, LogFormat, setup_logging
from loyalty_client.api_client import LoyaltyAPIClient
from loyalty_client.config import ClientConfiguration
from loyalty_client.error_handling import describe_api_error, format_error_for_display

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_AUTH_FAILED = 2
EXIT_NETWORK_ERROR = 3
EXIT_CONFIG_ERROR = 4
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="loyalty-client",
        description="Loyalty Dashboard API client",
        epilog="""
Examples:
  %(prog)s --login owner@example.com       # Log in (password is prompted)
  %(prog)s --status                        # Show the stored session
  %(prog)s --get /businesses/42/branches   # Authenticated GET request
  %(prog)s --get /branches/42/7/stats --json
  %(prog)s --logout
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group()
    operation_group.add_argument("--login", type=str, metavar="EMAIL",
                                 help="Log in and store the session")
    operation_group.add_argument("--logout", action="store_true",
                                 help="End the session and clear stored tokens")
    operation_group.add_argument("--get", type=str, metavar="PATH",
                                 help="Send an authenticated GET request")
    operation_group.add_argument("--status", action="store_true",
                                 help="Show the stored session")
    operation_group.add_argument("--exit-codes", action="store_true",
                                 help="Describe exit codes and exit")

    parser.add_argument("--password", type=str, metavar="PASSWORD",
                        help="Password for --login (prompted when omitted)")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--api-url", type=str, metavar="URL",
                              help="Override API base URL")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results as JSON")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-error output")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to file")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    if args.password and not args.login:
        parser.error("--password can only be used with --login")

    return args


def configure_logging(args, config: Optional[ClientConfiguration] = None):
    """Configure logging based on command line arguments and configuration."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    elif args.quiet or args.json:
        log_level = LogLevel.ERROR
    else:
        log_level = LogLevel.WARNING

    log_format = LogFormat.DETAILED if args.debug else LogFormat.STANDARD
    log_file = args.log_file
    audit_file = None
    max_file_size = 10 * 1024 * 1024
    backup_count = 5

    if config is not None:
        try:
            log_format = LogFormat(config.get_log_format())
        except ValueError:
            logger.warning(f"Unknown log format in configuration: {config.get_log_format()}")
        log_file = log_file or config.get_log_file()
        audit_file = config.get_audit_log_file()
        max_file_size = config.get_log_max_size()
        backup_count = config.get_log_backup_count()

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        audit_file=audit_file,
        max_file_size=max_file_size,
        backup_count=backup_count
    )


def print_exit_code_help():
    """Print information about exit codes."""
    print("""
Exit Codes:
  0   - Success
  1   - Operation failed
  2   - Session expired or authentication failed
  3   - Network error
  4   - Configuration error
  130 - Cancelled by user (Ctrl+C)
    """)


def _print_result(args, data) -> None:
    if args.quiet:
        return
    if args.json or not isinstance(data, str):
        print(json.dumps(data, indent=2, default=str))
    else:
        print(data)


def _exit_code_for(error: Exception) -> int:
    if isinstance(error, (SessionExpiredError, AuthenticationError)):
        return EXIT_AUTH_FAILED
    if isinstance(error, NetworkError):
        return EXIT_NETWORK_ERROR
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG_ERROR
    return EXIT_FAILURE


async def run_operation(args, config: ClientConfiguration) -> int:
    """
    Run the requested operation against the API.

    Returns:
        Exit code
    """
    async with LoyaltyAPIClient.from_config(config) as client:
        client.add_session_expired_callback(
            lambda error: logger.warning(f"Session expired, log in again ({error.redirect_to})")
        )

        try:
            if args.login:
                password = args.password or getpass.getpass(f"Password for {args.login}: ")
                data = await client.login(args.login, password)
                user = data.get('user') if isinstance(data, dict) else None
                _print_result(args, user if args.json and user else f"Logged in as {args.login}")
                return EXIT_SUCCESS

            if args.logout:
                result = await client.logout()
                if args.json:
                    _print_result(args, result.to_dict())
                elif result.success:
                    _print_result(args, result.message or "Logged out")
                else:
                    print(f"Logout request failed, local session cleared: {result.error}", file=sys.stderr)
                return EXIT_SUCCESS if result.success else EXIT_FAILURE

            if args.get:
                data = await client.get(args.get)
                _print_result(args, data)
                return EXIT_SUCCESS

            status = await client.describe_session()
            if args.json:
                _print_result(args, status)
            elif status['authenticated']:
                expires = status['expires_at'] or "unknown"
                _print_result(args, f"Logged in (access token {status['access_token']}, expires {expires})")
            else:
                _print_result(args, "Not logged in")
            return EXIT_SUCCESS if status['authenticated'] else EXIT_AUTH_FAILED

        except DashboardError as e:
            if args.json:
                print(json.dumps(describe_api_error(e)))
            else:
                print(format_error_for_display(e), file=sys.stderr)
            return _exit_code_for(e)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)

        if args.exit_codes:
            print_exit_code_help()
            return EXIT_SUCCESS

        config = ClientConfiguration(args.config)
        if args.api_url:
            config.set_override('api.base_url', args.api_url)

        configure_logging(args, config)

        return asyncio.run(run_operation(args, config))

    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if not getattr(args, 'json', False):
            logger.exception("Fatal error in main")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
