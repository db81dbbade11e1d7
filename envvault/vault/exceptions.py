"""
Vault Exceptions — the error taxonomy of the vault core.

Every failure surfaced by the vault is one of these classes. Errors coming
from ``cryptography`` or ``binascii`` are re-raised as the matching type
with the original exception chained.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class DecodeError(VaultError, ValueError):
    """Malformed base64 input."""


class InvalidSaltError(VaultError, ValueError):
    """Salt passed to key derivation has the wrong length."""


class InvalidKeyError(VaultError, ValueError):
    """Vault key passed to the field cipher has the wrong length."""


class IntegrityError(VaultError):
    """AEAD tag verification failed.

    Either the key is wrong (stale session, wrong password) or the
    ciphertext was tampered with or corrupted. Callers must not guess
    which one applies.
    """


class FramingError(VaultError, ValueError):
    """A server secret-box blob does not have the expected layout."""


class AuthenticationError(VaultError):
    """The supplied master password could not be confirmed."""


class SessionLockedError(VaultError):
    """A cryptographic call was routed through a session that is not unlocked."""


class UnlockSupersededError(SessionLockedError):
    """An unlock attempt was discarded because a newer attempt or a lock replaced it."""


class RotationCommitError(VaultError):
    """The persistence collaborator failed to commit a rotation bundle."""


class WeakPasswordError(VaultError, ValueError):
    """A new master password does not satisfy the password policy."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Master password rejected")
