"""Client-side validation of login forms and MFA codes"""

import re
from typing import Dict

from .models import MFAMethod

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")

_NUMERIC_CODE = re.compile(r"^[0-9]{6}$")
_EMAIL_CODE = re.compile(r"^[A-Za-z0-9]{1,8}$")
_RECOVERY_CODE = re.compile(r"^\S{1,20}$")


def validate_credentials(email: str, password: str) -> Dict[str, str]:
    """Validate the login form

    Args:
        email: Identifier typed by the user
        password: Secret typed by the user

    Returns:
        Field name -> message for every invalid field (empty when valid)
    """
    errors: Dict[str, str] = {}
    email = (email or "").strip()
    if not email:
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.fullmatch(email):
        errors["email"] = "Invalid email address"
    if not password:
        errors["password"] = "Password is required"
    return errors


def normalize_mfa_code(method: MFAMethod, code: str) -> str:
    """Strip surrounding whitespace, plus inner spaces and hyphens for numeric codes"""
    code = (code or "").strip()
    if method in (MFAMethod.APP, MFAMethod.SMS):
        code = re.sub(r"[\s-]", "", code)
    return code


def validate_mfa_code(method: MFAMethod, code: str) -> bool:
    """Check that a code has the right shape for its method

    Args:
        method: MFA method the code belongs to
        code: Code as typed by the user

    Returns:
        True if the code may be sent to the server, False otherwise
    """
    code = normalize_mfa_code(method, code)
    if method in (MFAMethod.APP, MFAMethod.SMS):
        return _NUMERIC_CODE.match(code) is not None
    if method == MFAMethod.EMAIL:
        return _EMAIL_CODE.match(code) is not None
    return _RECOVERY_CODE.match(code) is not None


def mfa_code_hint(method: MFAMethod) -> str:
    """Field message shown when a code fails validation"""
    if method in (MFAMethod.APP, MFAMethod.SMS):
        return "Enter the 6-digit code"
    if method == MFAMethod.EMAIL:
        return "Enter the code from the email (up to 8 letters or digits)"
    return "Enter a recovery code (up to 20 characters)"
