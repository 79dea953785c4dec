"""Status display functionality for CLI"""

from typing import Any, Dict, Tuple

from rich.table import Table

from auth.models import User

STATE_STYLES = {
    "authenticated": "green",
    "refreshing": "yellow",
    "mfa_pending": "yellow",
    "authenticating": "yellow",
    "expired": "red",
    "anonymous": "red",
}


def get_auth_status(status: Dict[str, Any]) -> Tuple[str, str]:
    """
    Get authentication status and expiry info

    Args:
        status: Result of SessionManager.status()

    Returns:
        Tuple of (status, detail_message)
    """
    if not status["has_tokens"]:
        return "NO AUTH", "No tokens available"

    if status["is_expired"]:
        return "EXPIRED", f"Expired {status['time_until_expiry']}"

    if status["expires_at"]:
        return "VALID", f"Expires in {status['time_until_expiry']}"

    return "VALID", "Expiry unknown"


def show_session_status(status: Dict[str, Any], storage_path: str, console):
    """
    Display detailed session and token status

    Args:
        status: Result of SessionManager.status()
        storage_path: Where the credentials are stored
        console: Rich console for output
    """
    table = Table(title="Session Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    state = status["state"]
    table.add_row("State", f"[{STATE_STYLES.get(state, 'white')}]{state}[/]")
    table.add_row("User", status["user"] or "-")
    table.add_row("Has Tokens", "Yes" if status["has_tokens"] else "No")
    table.add_row("Is Expired", "Yes" if status["is_expired"] else "No")

    if status["expires_at"]:
        table.add_row("Expires At", status["expires_at"])
    if status["has_tokens"]:
        table.add_row("Time Until Expiry", status["time_until_expiry"])

    table.add_row("Remembered Email", status.get("remembered_identifier") or "-")
    table.add_row("Credential File", storage_path)

    console.print(table)


def show_user(user: User, console):
    """Display the signed-in user"""
    table = Table(title="Current User")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Name", user.name)
    table.add_row("Email", user.email)
    table.add_row("Role", user.role)
    table.add_row("Permissions", "all" if user.role == "admin" else (", ".join(user.permissions) or "-"))
    table.add_row("MFA Enabled", "Yes" if user.mfa_enabled else "No")
    table.add_row("Last Login", user.last_login or "-")
    table.add_row("Theme", user.preferences.theme)
    table.add_row("Language", user.preferences.language)
    table.add_row("Digest", user.preferences.notifications.digest)

    console.print(table)
