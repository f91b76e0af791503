#!/usr/bin/env python3
"""
Command-line interface for steam_depot

Login, depot download, app tickets and token export. Configuration comes
from environment variables (SESSION_DIR, GAME_DIR, STEAM_REFRESH_TOKEN, ...).
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Callable

from steam_depot import constants
from steam_depot.config import ServiceConfig
from steam_depot.exceptions import SteamDepotError
from steam_depot.messages import Authenticator
from steam_depot.service import SteamDepotService
from steam_depot.storage import SessionStore
from steam_depot.utils import format_size


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


class ConsoleAuthenticator(Authenticator):
    """Answers Steam Guard prompts on the terminal."""

    def __init__(self, input_fn: Callable[[str], str] = input):
        self.input_fn = input_fn

    def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        if previous_code_was_incorrect:
            print("✗ The previous code was incorrect.")
        return self.input_fn("Enter the code from your Steam mobile app: ")

    def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        if previous_code_was_incorrect:
            print("✗ The previous code was incorrect.")
        return self.input_fn(f"Enter the code sent to {email}: ")

    def accept_device_confirmation(self) -> bool:
        print("\nConfirm this login:")
        print("  [1] Approve in the Steam mobile app")
        print("  [2] Enter a code instead")
        return self.input_fn("Choice [1]: ").strip() != "2"


def show_challenge(url: str) -> None:
    print("\nScan or open this URL with the Steam mobile app:")
    print(f"  {url}\n")


def login_interactive(service: SteamDepotService, input_fn: Callable[[str], str] = input,
                      password_fn: Callable[[str], str] = getpass.getpass) -> None:
    """Log in interactively, offering the saved session first."""
    print("=" * 80)
    print("STEAM AUTHENTICATION SETUP")
    print("=" * 80)

    existing = service.session_store.load()
    if existing is not None:
        print(f"\nFound existing session for: {existing.username}")
        answer = input_fn("Use existing session? [Y/n]: ").strip().lower()
        if answer not in ("n", "no"):
            try:
                service.auth.login_with_saved_session()
                return
            except SteamDepotError as e:
                print(f"✗ Saved session could not be used ({e}), a fresh login is needed")

    print("\nChoose authentication method:")
    print("  [1] Username & Password")
    print("  [2] QR Code (Steam Mobile App)")
    choice = input_fn("Choice [1]: ").strip()

    if choice == "2":
        service.auth.login_with_device_challenge(on_challenge=show_challenge)
    else:
        username = input_fn("Username: ").strip()
        password = password_fn("Password: ")
        service.auth.login_with_credentials(username, password, ConsoleAuthenticator(input_fn))

    print(f"✓ Logged in as {service.auth.username}")
    print(f"✓ Session saved to: {service.session_store.session_dir}")


def run_download(service: SteamDepotService, config: ServiceConfig) -> int:
    result = service.download(config.app_id, config.game_dir, config.target_os,
                              force=config.force_redownload)
    if result is None:
        print("✓ Game files are up to date")
    else:
        print(f"✓ Download complete: {result.total_files} files ({format_size(result.total_bytes)})")
    return 0


def cmd_setup(args, config: ServiceConfig) -> int:
    """Handle setup command: interactive login, then download."""
    with SteamDepotService.from_config(config) as service:
        login_interactive(service)
        return run_download(service, config)


def cmd_login(args, config: ServiceConfig) -> int:
    """Handle login command: interactive login that saves the session."""
    with SteamDepotService.from_config(config) as service:
        login_interactive(service)
    return 0


def cmd_download(args, config: ServiceConfig) -> int:
    """Handle download command."""
    with SteamDepotService.from_config(config) as service:
        service.login(config)
        return run_download(service, config)


def cmd_ticket(args, config: ServiceConfig) -> int:
    """Handle ticket command: print a base64 encrypted app ticket to stdout."""
    with SteamDepotService.from_config(config) as service:
        service.login(config)
        ticket = service.get_app_ticket(config.app_id)
    print(ticket.to_base64())
    return 0


def cmd_export_token(args, config: ServiceConfig) -> int:
    """Handle export-token command: print the saved session as JSON."""
    session = SessionStore(config.session_dir).load()
    if session is None:
        print("No saved session found. Run 'login' or 'setup' first.", file=sys.stderr)
        return 1
    print(json.dumps(session.to_json(), indent=2))
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Steam Depot - Steam authentication and depot downloader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Environment variables:\n"
               "  SESSION_DIR          Saved session directory (default: /data/steam-session)\n"
               "  GAME_DIR             Download destination (default: /data/game)\n"
               "  STEAM_APP_ID         Application id (default: 413150)\n"
               "  TARGET_OS            Depot platform (default: linux)\n"
               "  STEAM_REFRESH_TOKEN  Token used when no session is saved\n"
               "  STEAM_USERNAME       Username for the token or credentials\n"
               "  STEAM_PASSWORD       Password for credential-based auth\n"
               "  FORCE_REDOWNLOAD     Set to '1' to re-check every file\n"
               "  DOWNLOAD_WORKERS     Files downloaded in parallel (default: 1)\n\n"
               "Examples:\n"
               "  steam-depot setup          # First time: interactive login + download\n"
               "  steam-depot download       # Update the game files\n"
               "  steam-depot export-token > token.json"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--target-os",
        choices=constants.PLATFORMS,
        default=None,
        help="Depot platform (overrides TARGET_OS)"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-check every file even if the download marker is current"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("setup", help="Interactive login + download game").set_defaults(func=cmd_setup)
    subparsers.add_parser("login", help="Interactive login, saves session").set_defaults(func=cmd_login)
    subparsers.add_parser("download", help="Download/update game depot").set_defaults(func=cmd_download)
    subparsers.add_parser("ticket", help="Output encrypted app ticket to stdout").set_defaults(func=cmd_ticket)
    subparsers.add_parser("export-token", help="Export saved refresh token as JSON").set_defaults(
        func=cmd_export_token)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        config = ServiceConfig.from_env()
        if args.target_os:
            config.target_os = args.target_os
        if args.force:
            config.force_redownload = True
        return args.func(args, config)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    except SteamDepotError as e:
        logging.getLogger("steam_depot.cli").error(str(e))
        print(f"\n✗ Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n✗ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
