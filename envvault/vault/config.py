"""
Vault Configuration — Server secret loading and validated settings.

Reads settings from environment variables:
    AUTH_SECRET = <server-only secret used by the server secret box>
    VAULT_PREVIOUS_AUTH_SECRETS = <comma-separated retired secrets>
    VAULT_AUTO_LOCK_MINUTES = <1..60>
    VAULT_ENFORCE_PASSWORD_POLICY = true|false
    VAULT_MIN_PASSWORD_LENGTH = <integer >= 8>

Security Note:
    Never log secret material. Only log counts and setting names.
"""
import os
import base64
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("envvault.vault")

MIN_AUTO_LOCK_MINUTES = 1
MAX_AUTO_LOCK_MINUTES = 60
DEFAULT_AUTO_LOCK_MINUTES = 5


def load_previous_secrets() -> list[str]:
    """Read retired server secrets from VAULT_PREVIOUS_AUTH_SECRETS.

    Returns:
        List of secrets, newest first, empty entries dropped.
    """
    raw = os.environ.get("VAULT_PREVIOUS_AUTH_SECRETS", "")
    previous = [item.strip() for item in raw.split(",") if item.strip()]
    if previous:
        logger.debug("Loaded %d previous server secret(s)", len(previous))
    return previous


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def generate_server_secret() -> str:
    """Generate a random 32-byte server secret and return it as base64.

    This is a utility for operators provisioning AUTH_SECRET.
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    auto_lock_minutes: int = Field(
        default=DEFAULT_AUTO_LOCK_MINUTES,
        ge=MIN_AUTO_LOCK_MINUTES,
        le=MAX_AUTO_LOCK_MINUTES,
    )
    server_secret: Optional[str] = Field(default=None, repr=False)
    previous_server_secrets: list[str] = Field(default_factory=list, repr=False)
    enforce_password_policy: bool = True
    min_password_length: int = Field(default=12, ge=8, le=128)

    @field_validator("server_secret")
    @classmethod
    def validate_server_secret(cls, v: Optional[str]) -> Optional[str]:
        """Reject an empty server secret; absence must be explicit (None)."""
        if v is not None and not v.strip():
            raise ValueError("server_secret cannot be blank")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        return cls(
            auto_lock_minutes=int(
                os.environ.get("VAULT_AUTO_LOCK_MINUTES", DEFAULT_AUTO_LOCK_MINUTES)
            ),
            server_secret=os.environ.get("AUTH_SECRET") or None,
            previous_server_secrets=load_previous_secrets(),
            enforce_password_policy=_env_bool("VAULT_ENFORCE_PASSWORD_POLICY", True),
            min_password_length=int(os.environ.get("VAULT_MIN_PASSWORD_LENGTH", 12)),
        )
