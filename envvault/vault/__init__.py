"""Vault Core — Zero-knowledge encryption of environment variables.

Security Note (Threat Model):
    The vault key is derived on the client from the master password and
    lives only in the memory of an unlocked VaultSession. The server stores
    ciphertext, nonces and the public per-user salt. A memory dump of an
    unlocked client process can expose the key and decrypted values; this
    is an accepted limitation, bounded by the auto-lock timeout.
"""

from .codec import encode_base64, decode_base64
from .config import VaultConfig, generate_server_secret
from .crypto import (
    PBKDF2_ITERATIONS,
    derive_key,
    derive_key_async,
    generate_salt,
    encrypt_field,
    decrypt_field,
)
from .exceptions import (
    VaultError,
    DecodeError,
    InvalidSaltError,
    InvalidKeyError,
    IntegrityError,
    FramingError,
    AuthenticationError,
    SessionLockedError,
    UnlockSupersededError,
    RotationCommitError,
    WeakPasswordError,
)
from .models import (
    EncryptedField,
    EncryptedVariable,
    DecryptedVariable,
    RotationBundle,
    VariableOwner,
    VaultState,
    TransitionReason,
    Transition,
)
from .variables import encrypt_variable, decrypt_variable, encrypt_variables, decrypt_variables
from .server_box import ServerSecretBox
from .policy import validate_master_password, calculate_password_strength
from .storage import VaultStore, MemoryVaultStore, SqlVaultStore
from .key_rotation import reencrypt_vault, rotate_master_password
from .session_vault import VaultSession

__all__ = [
    "encode_base64",
    "decode_base64",
    "VaultConfig",
    "generate_server_secret",
    "PBKDF2_ITERATIONS",
    "derive_key",
    "derive_key_async",
    "generate_salt",
    "encrypt_field",
    "decrypt_field",
    "VaultError",
    "DecodeError",
    "InvalidSaltError",
    "InvalidKeyError",
    "IntegrityError",
    "FramingError",
    "AuthenticationError",
    "SessionLockedError",
    "UnlockSupersededError",
    "RotationCommitError",
    "WeakPasswordError",
    "EncryptedField",
    "EncryptedVariable",
    "DecryptedVariable",
    "RotationBundle",
    "VariableOwner",
    "VaultState",
    "TransitionReason",
    "Transition",
    "encrypt_variable",
    "decrypt_variable",
    "encrypt_variables",
    "decrypt_variables",
    "ServerSecretBox",
    "validate_master_password",
    "calculate_password_strength",
    "VaultStore",
    "MemoryVaultStore",
    "SqlVaultStore",
    "reencrypt_vault",
    "rotate_master_password",
    "VaultSession",
]
