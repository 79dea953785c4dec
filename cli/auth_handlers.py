"""Command handlers for the CLI

Each handler takes the wired ``AuthClient`` and a rich console and returns a
process exit code.
"""

import json
from typing import Optional

from rich.prompt import Confirm, Prompt

from auth import AuthClient
from auth.errors import (
    AuthError,
    InvalidCredentials,
    MfaChallengeExpired,
    MfaInvalidCode,
    MfaRateLimited,
    NetworkError,
    SessionExpired,
    UnsupportedMfaMethod,
)
from auth.models import MFAMethod, MfaRequired
from cli.status_display import get_auth_status, show_session_status, show_user

RESEND_KEY = "r"
SWITCH_METHOD_KEY = "m"


async def restore(client: AuthClient, console) -> bool:
    """
    Resume the stored session

    Returns:
        True if a session is active afterwards
    """
    try:
        user = await client.session.restore_session()
    except NetworkError as e:
        console.print(f"[red]ERROR:[/red] Identity service unreachable: {e}")
        console.print("Stored tokens were kept, retry when the service is reachable")
        return False
    except AuthError as e:
        console.print(f"[red]ERROR:[/red] Could not restore session: {e}")
        return False
    return user is not None


async def login(client: AuthClient, console, email: Optional[str] = None) -> int:
    """
    Handle the login flow

    Args:
        client: AuthClient instance
        console: Rich console for output
        email: Pre-filled identifier (prompted if missing)
    """
    remembered = client.store.remembered_identifier()
    if not email:
        email = Prompt.ask("Email", default=remembered) if remembered else Prompt.ask("Email")
    password = Prompt.ask("Password", password=True)
    remember = Confirm.ask("Remember email on this machine?", default=remembered is not None)

    try:
        outcome = await client.session.login(email, password, remember=remember)
    except InvalidCredentials as e:
        console.print(f"[red]Login failed:[/red] {e.message}")
        for field, message in e.field_errors.items():
            console.print(f"  [yellow]{field}[/yellow]: {message}")
        if e.lock_until:
            console.print(f"Account locked until {e.lock_until}")
        return 1
    except AuthError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        return 1

    if isinstance(outcome, MfaRequired):
        return await complete_mfa(client, console, outcome)

    console.print(f"[green]Signed in as {client.session.user.email}[/green]")
    return 0


def _choose_method(client: AuthClient, console, offered) -> MFAMethod:
    choices = [m.value for m in (offered or MFAMethod)]
    current = client.session.session.mfa_challenge.method.value
    selected = Prompt.ask("Verification method", choices=choices, default=current if current in choices else choices[0])
    return MFAMethod(selected)


async def complete_mfa(client: AuthClient, console, required: MfaRequired) -> int:
    """
    Prompt for the second factor until verified, cancelled or expired

    Args:
        client: AuthClient instance
        console: Rich console for output
        required: Result of the login step
    """
    session = client.session
    console.print("\n[bold]Two-factor authentication required[/bold]")
    console.print(f"[dim]Enter the code, '{RESEND_KEY}' to resend it by SMS/e-mail, "
                  f"'{SWITCH_METHOD_KEY}' to switch method, empty to cancel[/dim]")

    while True:
        challenge = session.session.mfa_challenge
        if challenge is None:
            console.print("[red]Verification session ended, please log in again[/red]")
            return 1

        answer = Prompt.ask(f"Code ({challenge.method.value})", default="", show_default=False).strip()

        if not answer:
            session.cancel_mfa()
            console.print("Login cancelled")
            return 1

        if answer.lower() == SWITCH_METHOD_KEY:
            method = _choose_method(client, console, required.methods)
            session.select_mfa_method(method)
            if method.can_resend and Confirm.ask(f"Send a new code by {method.value}?", default=True):
                answer = RESEND_KEY
            else:
                continue

        if answer.lower() == RESEND_KEY:
            try:
                challenge = await session.resend_mfa_code()
                console.print(f"[green]A new code was sent by {challenge.method.value}[/green]")
            except UnsupportedMfaMethod as e:
                console.print(f"[yellow]{e}[/yellow]")
            except MfaRateLimited as e:
                console.print(f"[yellow]{e.message}[/yellow]")
                if e.retry_after:
                    console.print(f"Try again in {int(e.retry_after)}s")
            except MfaChallengeExpired as e:
                console.print(f"[red]{e.message}[/red]")
                return 1
            continue

        try:
            await session.verify_mfa(answer)
        except MfaInvalidCode as e:
            console.print(f"[red]{e.message}[/red]")
            if e.attempts_remaining is not None:
                console.print(f"{e.attempts_remaining} attempt(s) remaining")
            continue
        except MfaChallengeExpired as e:
            console.print(f"[red]{e.message}[/red]")
            return 1
        except AuthError as e:
            console.print(f"[red]ERROR:[/red] {e}")
            return 1

        console.print(f"[green]Signed in as {session.user.email}[/green]")
        return 0


async def logout(client: AuthClient, console) -> int:
    """Clear the local session and revoke it on the server"""
    if not client.store.has_tokens():
        console.print("Not signed in")
        return 0
    await client.session.logout()
    console.print("[green]Signed out[/green]")
    return 0


async def status(client: AuthClient, console) -> int:
    """Show session and token status"""
    await restore(client, console)
    info = client.session.status()
    auth_status, auth_detail = get_auth_status(info)
    console.print(f"Status: [{('green' if auth_status == 'VALID' else 'yellow')}]{auth_status}[/] ({auth_detail})")
    storage_path = getattr(client.store.kv, "path", None)
    show_session_status(info, str(storage_path) if storage_path else "(in memory)", console)
    return 0


async def whoami(client: AuthClient, console, reload: bool = False) -> int:
    """
    Show the signed-in user

    Args:
        client: AuthClient instance
        console: Rich console for output
        reload: Fetch the user from the server again instead of showing the restored one
    """
    if not await restore(client, console):
        console.print("Not signed in")
        return 1

    user = client.session.user
    if reload:
        try:
            user = await client.session.fetch_current_user()
        except AuthError as e:
            console.print(f"[red]ERROR:[/red] Could not load user: {e}")
            return 1
    show_user(user, console)
    return 0


async def refresh(client: AuthClient, console) -> int:
    """Refresh the token pair now"""
    if not await restore(client, console):
        console.print("[red]No session to refresh - please login first[/red]")
        return 1

    try:
        await client.session.refresh_now()
    except SessionExpired as e:
        console.print(f"[red]Token refresh failed:[/red] {e}")
        console.print("Please log in again")
        return 1

    auth_status, auth_detail = get_auth_status(client.session.status())
    console.print("[green]Token refreshed successfully![/green]")
    console.print(f"Status: [{('green' if auth_status == 'VALID' else 'yellow')}]{auth_status}[/] ({auth_detail})")
    return 0


async def request(client: AuthClient, console, method: str, path: str, data: Optional[str] = None) -> int:
    """
    Send an authenticated API request and print the response

    Args:
        client: AuthClient instance
        console: Rich console for output
        method: HTTP method
        path: Path relative to the API base URL
        data: Optional JSON request body
    """
    if not await restore(client, console):
        console.print("[red]Not signed in - please login first[/red]")
        return 1

    kwargs = {}
    if data:
        try:
            kwargs["json"] = json.loads(data)
        except json.JSONDecodeError as e:
            console.print(f"[red]ERROR:[/red] Request body is not valid JSON: {e}")
            return 1

    try:
        response = await client.http.request(method.upper(), path, **kwargs)
    except AuthError as e:
        console.print(f"[red]Request failed:[/red] {e}")
        return 1

    style = "green" if response.is_success else "red"
    console.print(f"[{style}]{response.status_code} {response.reason_phrase}[/]")
    try:
        console.print_json(data=response.json())
    except ValueError:
        console.print(response.text)
    return 0 if response.is_success else 1


async def forgot_password(client: AuthClient, console, email: Optional[str] = None) -> int:
    """Request a password reset e-mail"""
    if not email:
        remembered = client.store.remembered_identifier()
        email = Prompt.ask("Email", default=remembered) if remembered else Prompt.ask("Email")
    try:
        message = await client.session.forgot_password(email)
    except AuthError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        return 1
    console.print(f"[green]{message}[/green]")
    return 0


async def change_password(client: AuthClient, console) -> int:
    """Change the password of the signed-in user"""
    if not await restore(client, console):
        console.print("[red]Not signed in - please login first[/red]")
        return 1

    current = Prompt.ask("Current password", password=True)
    new = Prompt.ask("New password", password=True)
    if Prompt.ask("Repeat new password", password=True) != new:
        console.print("[red]Passwords do not match[/red]")
        return 1

    try:
        await client.session.change_password(current, new)
    except InvalidCredentials as e:
        console.print(f"[red]Password not changed:[/red] {e.message}")
        return 1
    except AuthError as e:
        console.print(f"[red]ERROR:[/red] {e}")
        return 1
    console.print("[green]Password changed[/green]")
    return 0
