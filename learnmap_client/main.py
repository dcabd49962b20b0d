"""
Command-line entry point for the LearnMap client.

Provides credential management and the learning/progress queries the map
front end performs, for scripting and troubleshooting.
"""

import sys
import json
import asyncio
import argparse
import logging
from typing import Any

from learnmap_shared.exceptions import (
    LearnMapError, AuthenticationError, NetworkError, ConfigurationError, handle_exception
)
from learnmap_shared.logging_config import AuditLogger, LogLevel, setup_logging, log_structured_error

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_AUTH_FAILED = 2
EXIT_NETWORK_FAILED = 3


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="learnmap",
        description="LearnMap client",
        epilog="""
Examples:
  %(prog)s --login ACCESS REFRESH   # Store a credential pair
  %(prog)s --status                 # Show whether a session is stored
  %(prog)s --modules --json         # List learning modules as JSON
  %(prog)s --complete LESSON_ID     # Mark a lesson complete
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--login", nargs=2, metavar=("ACCESS", "REFRESH"),
                                 help="Store an access/refresh credential pair")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Remove stored credentials")
    operation_group.add_argument("--status", action="store_true",
                                 help="Show session status")
    operation_group.add_argument("--modules", action="store_true",
                                 help="List learning modules")
    operation_group.add_argument("--lessons", metavar="MODULE_ID",
                                 help="List lessons of a module")
    operation_group.add_argument("--complete", metavar="LESSON_ID",
                                 help="Mark a lesson complete")
    operation_group.add_argument("--overview", action="store_true",
                                 help="Show dashboard overview")
    operation_group.add_argument("--progress", action="store_true",
                                 help="Show per-module progress")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Configuration file path")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Backend base URL")
    config_group.add_argument("--timeout", type=float, metavar="SECONDS",
                              help="Request timeout")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Print results as JSON")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Verbose logging")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Only log errors")
    output_group.add_argument("--log-file", type=str, metavar="FILE",
                              help="Write logs to file")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    return args


def configure_logging(args, config) -> None:
    if args.verbose:
        level = LogLevel.DEBUG
    elif args.quiet or args.json:
        level = LogLevel.ERROR
    else:
        level = config.get_log_level()

    setup_logging(
        log_level=level,
        log_format=config.get_log_format(),
        log_file=args.log_file or config.get_log_file(),
        audit_file=config.get_audit_file()
    )


def print_result(result: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, indent=2, default=str))
    elif isinstance(result, list):
        for item in result:
            if isinstance(item, dict):
                label = item.get('title') or item.get('name') or item.get('id')
                print(f"- {label}" if label is not None else f"- {json.dumps(item, default=str)}")
            else:
                print(f"- {item}")
    elif isinstance(result, dict):
        for key, value in result.items():
            print(f"{key}: {value}")
    elif result is not None:
        print(result)


def cli_navigator(login_url: str) -> None:
    """Tell the user where to log in instead of opening a browser."""
    print(f"Session expired. Log in again at {login_url}", file=sys.stderr)


async def run_operation(args, config) -> Any:
    from learnmap_client.api_client import create_client
    from learnmap_client.learning_api import ModulesAPI, ProgressAPI

    client = create_client(config, navigator=cli_navigator)

    if args.login:
        access_token, refresh_token = args.login
        client.store.set(access_token, refresh_token, source="cli")
        return {'authenticated': True}

    if args.logout:
        client.store.clear(reason="cli logout")
        return {'authenticated': False}

    if args.status:
        return {
            'authenticated': client.store.has_credentials(),
            'server_url': config.get_server_url(),
            'login_url': config.get_login_url(),
            'config_file': config.get_config_file_path()
        }

    async with client:
        modules_api = ModulesAPI(client)
        progress_api = ProgressAPI(client)

        if args.modules:
            return await modules_api.get_modules()
        if args.lessons:
            return await modules_api.get_module_lessons(args.lessons)
        if args.complete:
            return await modules_api.complete_lesson(args.complete)
        if args.overview:
            return await progress_api.get_dashboard_overview()
        if args.progress:
            return await progress_api.get_user_module_progress()

    return None


def main(argv=None) -> int:
    """Main entry point for the client."""
    from learnmap_client.config import ClientConfiguration

    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)
        if args.server_url:
            config.set_override('server.url', args.server_url)
        if args.timeout is not None:
            config.set_override('server.timeout', args.timeout)

        configure_logging(args, config)

        result = asyncio.run(run_operation(args, config))
        print_result(result, args.json)
        return EXIT_OK

    except AuthenticationError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_AUTH_FAILED
    except NetworkError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_NETWORK_FAILED
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except LearnMapError as e:
        log_structured_error(logger, e)
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        error = handle_exception(e, context={'operation': 'main'})
        AuditLogger().log_error(error)
        logger.exception("Fatal error in main")
        print(f"Fatal error: {error.message}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
