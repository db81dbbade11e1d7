"""Master password policy.

Password verification and strength rules live apart from key derivation:
the KDF accepts any non-empty password, these rules decide which ones a
user may choose.
"""
import re

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^a-zA-Z0-9]")


def validate_master_password(password: str, min_length: int = 12) -> tuple[bool, list[str]]:
    """Check a candidate master password.

    Returns:
        (is_valid, errors) where errors lists every failed rule.
    """
    errors: list[str] = []
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters")
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    return not errors, errors


def calculate_password_strength(password: str) -> int:
    """Score a password from 0 to 100."""
    strength = 0
    if len(password) >= 8:
        strength += 20
    if len(password) >= 12:
        strength += 20
    if len(password) >= 16:
        strength += 10
    if _LOWER.search(password):
        strength += 10
    if _UPPER.search(password):
        strength += 10
    if _DIGIT.search(password):
        strength += 10
    if _SYMBOL.search(password):
        strength += 20
    return min(100, strength)
