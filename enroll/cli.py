"""Command-line entry point for enroll.

Usage:
    enroll login [--no-browser] [--timeout SECONDS]
    enroll manage [--no-browser]
    enroll list
    enroll remove <name>

Logging goes to stderr and is controlled by LOG_LEVEL, DEBUG and JSON_LOGS.
Command output goes to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Optional, Sequence

from enroll.config import Config, load_config
from enroll.credentials.store import SQLiteCredentialStore
from enroll.credentials.validator import ApiCredentialValidator
from enroll.errors import EnrollmentError, SessionCancelled, StorageError
from enroll.server.browser import BrowserLauncher, NullBrowserLauncher
from enroll.server.enrollment import EnrollmentServer
from enroll.server.session import SessionMode, SetupResult
from enroll.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enroll",
        description="Store API credentials through a local browser page.",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Authenticate via browser")
    login.add_argument("--no-browser", action="store_true", help="Print the URL instead of opening a browser")
    login.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")

    manage = sub.add_parser("manage", help="Manage stored accounts in browser")
    manage.add_argument("--no-browser", action="store_true", help="Print the URL instead of opening a browser")

    sub.add_parser("list", help="List stored accounts")

    remove = sub.add_parser("remove", help="Remove a stored account")
    remove.add_argument("name")

    return parser


def _configure_logging_from_env() -> None:
    debug = os.getenv("DEBUG", "false").lower() == "true"
    log_level = os.getenv("LOG_LEVEL", "DEBUG" if debug else "WARNING")
    json_logs = os.getenv("JSON_LOGS", "false").lower() == "true"
    configure_logging(log_level=log_level, json_output=json_logs)


async def _run_session(
    config: Config,
    mode: SessionMode,
    no_browser: bool,
    timeout: Optional[float],
) -> SetupResult:
    server = EnrollmentServer(
        SQLiteCredentialStore(config.store.path),
        ApiCredentialValidator(config.api.base_url, config.api.timeout_s),
        mode=mode,
        config=config,
        launcher=NullBrowserLauncher() if no_browser else BrowserLauncher(),
    )
    session = asyncio.create_task(server.start(timeout=timeout))
    listening = asyncio.create_task(server.wait_until_listening())

    done, _ = await asyncio.wait({session, listening}, return_when=asyncio.FIRST_COMPLETED)
    if listening in done:
        print(f"Open {listening.result()} in your browser if it did not open automatically.")
        print("")
    else:
        listening.cancel()
    return await session


def cmd_login(config: Config, args: argparse.Namespace) -> int:
    print("Opening browser for authentication...")
    try:
        result = asyncio.run(_run_session(config, SessionMode.SETUP, args.no_browser, args.timeout))
    except EnrollmentError as exc:
        print(f"Authentication failed: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE

    print(f'Successfully authenticated as "{result.account_name}"')
    print("")
    print("List stored accounts with:")
    print("  enroll list")
    return EXIT_OK


def cmd_manage(config: Config, args: argparse.Namespace) -> int:
    print("Opening account manager in browser...")
    try:
        result = asyncio.run(_run_session(config, SessionMode.MANAGE, args.no_browser, None))
    except SessionCancelled:
        # Closing the manager without adding an account is a normal exit
        return EXIT_OK
    except EnrollmentError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE

    print(f'Added account "{result.account_name}"')
    return EXIT_OK


def cmd_list(config: Config, args: argparse.Namespace) -> int:
    store = SQLiteCredentialStore(config.store.path)
    try:
        credentials = asyncio.run(store.list())
    except StorageError as exc:
        print(f"Failed to list accounts: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE

    if not credentials:
        print("No accounts stored. Run 'enroll login' to add one.")
        return EXIT_OK
    for cred in credentials:
        created = cred.created_at.strftime("%Y-%m-%d") if cred.created_at else "-"
        print(f"{cred.name}\t{created}")
    return EXIT_OK


def cmd_remove(config: Config, args: argparse.Namespace) -> int:
    store = SQLiteCredentialStore(config.store.path)
    try:
        asyncio.run(store.delete(args.name))
    except StorageError as exc:
        print(f"Failed to remove account: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE
    print(f'Removed account "{args.name.strip().lower()}"')
    return EXIT_OK


_COMMANDS = {
    "login": cmd_login,
    "manage": cmd_manage,
    "list": cmd_list,
    "remove": cmd_remove,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments, load config and dispatch.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    _configure_logging_from_env()
    args = build_parser().parse_args(argv)
    config = load_config(args.config)

    try:
        return _COMMANDS[args.command](config, args)
    except KeyboardInterrupt:
        print("", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
