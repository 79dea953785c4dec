"""CLI entry point and argument parsing"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console

import settings
from auth import AuthClient
from auth.models import Session, SessionState
from cli import auth_handlers
from utils.logging_utils import configure_logging

console = Console()
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="logware-auth", description="Logware dashboard session client")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--api-url",
        default=None,
        help=f"Override the API base URL (default: {settings.API_BASE_URL})"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    login_parser = commands.add_parser("login", help="Sign in (with two-factor verification if required)")
    login_parser.add_argument("--email", "-e", default=None, help="Login e-mail (prompted if omitted)")

    commands.add_parser("logout", help="Sign out and clear stored tokens")
    commands.add_parser("status", help="Show session and token status")
    whoami_parser = commands.add_parser("whoami", help="Show the signed-in user")
    whoami_parser.add_argument("--refresh", action="store_true", help="Reload the user from the server")
    commands.add_parser("refresh", help="Refresh the access token now")

    forgot_parser = commands.add_parser("forgot-password", help="Request a password reset e-mail")
    forgot_parser.add_argument("--email", "-e", default=None, help="Account e-mail (prompted if omitted)")
    commands.add_parser("change-password", help="Change the password of the signed-in user")

    request_parser = commands.add_parser("request", help="Send an authenticated API request")
    request_parser.add_argument("method", help="HTTP method, e.g. GET")
    request_parser.add_argument("path", help="Path relative to the API base URL, e.g. /alerts")
    request_parser.add_argument("--data", default=None, help="JSON request body")

    return parser


def on_session_change(session: Session):
    """Session subscriber: report expiry and log every state change"""
    logger.debug(f"Session state: {session.state.value}")
    if session.state == SessionState.EXPIRED:
        console.print("[yellow]Session expired, please log in again[/yellow]")


async def run_command(args: argparse.Namespace) -> int:
    api_url = args.api_url or settings.API_BASE_URL
    async with AuthClient(api_url) as client:
        client.session.subscribe(on_session_change)

        if args.command == "login":
            return await auth_handlers.login(client, console, email=args.email)
        if args.command == "logout":
            return await auth_handlers.logout(client, console)
        if args.command == "status":
            return await auth_handlers.status(client, console)
        if args.command == "whoami":
            return await auth_handlers.whoami(client, console, reload=args.refresh)
        if args.command == "refresh":
            return await auth_handlers.refresh(client, console)
        if args.command == "forgot-password":
            return await auth_handlers.forgot_password(client, console, email=args.email)
        if args.command == "change-password":
            return await auth_handlers.change_password(client, console)
        if args.command == "request":
            return await auth_handlers.request(client, console, args.method, args.path, data=args.data)

    raise ValueError(f"Unknown command: {args.command}")


def main():
    """Entry point for the CLI"""
    args = build_parser().parse_args()

    if args.debug:
        configure_logging("debug", log_file=settings.DEBUG_LOG_FILE)
        logger.debug("===== CLI SESSION STARTED =====")
    else:
        configure_logging(settings.LOG_LEVEL)

    exit_code = 1
    try:
        exit_code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        console.print(f"\n[red]Fatal error:[/red] {e}")
        if args.debug:
            import traceback
            traceback.print_exc()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
