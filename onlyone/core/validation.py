import re
from typing import Optional

from onlyone.core import state_machine as sm
from onlyone.core.errors import ValidationError
from onlyone.settings import settings

_USERNAME_DISALLOWED = re.compile(r"[^a-z0-9_]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# MM/DD/YYYY, years 1900-2099
_DOB_RE = re.compile(r"^(0[1-9]|1[0-2])/(0[1-9]|[12]\d|3[01])/(19|20)\d{2}$")


def normalize_username(value: str) -> str:
    """Lowercase and drop anything outside [a-z0-9_]. Idempotent."""
    return _USERNAME_DISALLOWED.sub("", (value or "").lower())


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match((value or "").strip()))


def validate_contact(method: str, value: str, *, strict_email: bool = False) -> str:
    """Shape check only; no server call. Returns the trimmed value."""
    value = (value or "").strip()
    if method not in sm.CONTACT_METHODS:
        raise ValidationError("contactMethod", "Choose phone or email")
    if not value:
        label = "phone number" if method == sm.METHOD_PHONE else "email"
        raise ValidationError("contactValue", f"Please enter your {label}")
    if method == sm.METHOD_EMAIL:
        ok = is_valid_email(value) if strict_email else "@" in value
        if not ok:
            raise ValidationError("contactValue", "Please enter a valid email")
    else:
        if sum(c.isdigit() for c in value) < settings.PHONE_MIN_LENGTH:
            raise ValidationError("contactValue", "Please enter a valid phone number")
    return value


def validate_name(field_name: str, value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(field_name, f"{label} is required")
    return value


def validate_username_format(value: str) -> str:
    username = normalize_username(value)
    if not username:
        raise ValidationError("username", "Username is required")
    if len(username) < settings.USERNAME_MIN_LENGTH:
        raise ValidationError(
            "username", f"Username must be at least {settings.USERNAME_MIN_LENGTH} characters"
        )
    return username


def validate_date_of_birth(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    if not _DOB_RE.match(value):
        raise ValidationError("dateOfBirth", "Invalid format (MM/DD/YYYY)")
    return value


def validate_password(password: str, confirm: str) -> str:
    if not (password or "").strip():
        raise ValidationError("password", "Password is required")
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            "password", f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters"
        )
    if not (confirm or "").strip():
        raise ValidationError("confirmPassword", "Please confirm your password")
    if password != confirm:
        raise ValidationError("confirmPassword", "Passwords do not match")
    return password
