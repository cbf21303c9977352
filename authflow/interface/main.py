#!/usr/bin/env python3
"""
authflow command line interface

Commands:
  authflow login             Sign in with ChatGPT or an API key
  authflow status            Show the stored authentication mode
  authflow logout            Remove stored credentials
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console

from authflow.config import Config, ForcedLoginMethod, apply_saved_config


apply_saved_config()

from authflow.auth.credentials import (  # noqa: E402
    AuthMode,
    CredentialStore,
    CredentialStoreError,
)
from authflow.interface.onboarding import run_onboarding  # noqa: E402


logging.getLogger().setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _ensure_file_logger(home: Path) -> None:
    log_path = home / "log" / "authflow.log"

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.touch(exist_ok=True)
    except OSError:
        logger.exception("Failed to create log file at %s", log_path)
        return

    authflow_logger = logging.getLogger("authflow")
    if authflow_logger.level == logging.NOTSET or authflow_logger.level > logging.INFO:
        authflow_logger.setLevel(logging.INFO)

    resolved_path = str(log_path.resolve())
    for handler in authflow_logger.handlers:
        if (
            isinstance(handler, logging.FileHandler)
            and getattr(handler, "baseFilename", None) == resolved_path
        ):
            return

    try:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        logger.exception("Failed to attach log handler at %s", log_path)
        return

    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    authflow_logger.addHandler(file_handler)


_AUTH_MODE_LABELS = {
    AuthMode.CHATGPT: "[green]ChatGPT[/]",
    AuthMode.API_KEY: "[yellow]API Key[/]",
}


def cmd_status(store: CredentialStore) -> int:
    from rich.table import Table

    console = Console()
    info = store.describe()
    mode = info["auth_mode"]

    console.print()
    if mode is None:
        console.print("[bold red]Not signed in.[/]")
        console.print("  [cyan]authflow login[/]   # Sign in with ChatGPT or an API key")
        console.print()
        return 1

    table = Table(show_header=True, header_style="bold", show_lines=False, pad_edge=False)
    table.add_column("Mode", style="cyan")
    table.add_column("Account", style="white")
    table.add_column("Last refresh", style="dim")
    table.add_row(
        _AUTH_MODE_LABELS.get(mode, str(mode)),
        info["account_id"] or "-",
        info["last_refresh"] or "-",
    )
    console.print(table)
    console.print(f"[dim]Credentials: {info['path']}[/]")
    console.print()
    return 0


def cmd_logout(store: CredentialStore) -> int:
    console = Console()
    try:
        removed = store.logout()
    except CredentialStoreError as exc:
        console.print(f"[red]✗ Could not remove credentials: {exc.message}[/]")
        return 1
    if removed:
        console.print("[green]✓ Logged out[/]")
    else:
        console.print("[dim]No credentials to remove[/]")
    return 0


def cmd_login_with_api_key(store: CredentialStore) -> int:
    console = Console()
    if Config.get_forced_login_method() is ForcedLoginMethod.CHATGPT:
        console.print("[red]✗ API key login is disabled.[/]")
        return 1
    api_key = sys.stdin.read().strip()
    if not api_key:
        console.print("[red]✗ No API key provided on stdin[/]")
        return 1
    try:
        store.write_api_key(api_key)
    except CredentialStoreError as exc:
        console.print(f"[red]✗ Failed to save API key: {exc.message}[/]")
        return 1
    console.print("[green]✓ API key saved[/]")
    return 0


def cmd_login(store: CredentialStore) -> int:
    result = asyncio.run(run_onboarding())
    if result is None or result.action != "completed":
        Config.mark_onboarding_skipped()
        return 1
    Config.mark_onboarding_completed()
    return cmd_status(store)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="authflow",
        description="authflow - sign in with ChatGPT or an OpenAI API key",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  authflow login                     # Interactive sign-in
  authflow login --no-browser        # Print the sign-in URL instead of opening it
  printenv OPENAI_API_KEY | authflow login --with-api-key
  authflow status
  authflow logout
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    login_parser = subparsers.add_parser("login", help="Sign in interactively")
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Do not open a browser for ChatGPT sign-in",
    )
    login_parser.add_argument("--port", type=int, help="Local port for the sign-in callback")
    login_parser.add_argument(
        "--with-api-key",
        action="store_true",
        help="Read an API key from stdin and store it without the interactive UI",
    )

    subparsers.add_parser("status", help="Show the stored authentication mode")
    subparsers.add_parser("logout", help="Remove stored credentials")

    parser.add_argument("--config", type=str, help="Path to custom config file")

    return parser.parse_args(argv)


def apply_config_override(config_path: str) -> None:
    path = Path(config_path).expanduser()
    if not path.is_file():
        Console().print(f"[red]✗ Config file not found: {path}[/]")
        sys.exit(2)
    Config._config_file_override = path
    apply_saved_config(force=True)


def main(argv: list[str] | None = None) -> None:
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    args = parse_arguments(argv)
    if args.config:
        apply_config_override(args.config)

    home = Config.home_dir()
    _ensure_file_logger(home)
    store = CredentialStore(home)

    command = args.command
    if command is None:
        # Bare invocation only runs the sign-in step until it has been completed once.
        command = "login" if Config.is_onboarding_required() else "status"
    if command == "status":
        sys.exit(cmd_status(store))
    if command == "logout":
        sys.exit(cmd_logout(store))

    if getattr(args, "no_browser", False):
        os.environ["AUTHFLOW_OPEN_BROWSER"] = "false"
    if getattr(args, "port", None) is not None:
        os.environ["AUTHFLOW_LOGIN_PORT"] = str(args.port)
    if getattr(args, "with_api_key", False):
        sys.exit(cmd_login_with_api_key(store))
    sys.exit(cmd_login(store))


if __name__ == "__main__":
    main()
