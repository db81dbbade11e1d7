"""EnvVault.

Zero-knowledge storage of environment variables: encryption keys are
derived from the user's master password and never leave the client.
"""
from .version import __version__
from .data import DecryptedCache
from .vault import (
    VaultConfig,
    VaultSession,
    ServerSecretBox,
    MemoryVaultStore,
    SqlVaultStore,
    EncryptedVariable,
    DecryptedVariable,
    rotate_master_password,
)

__all__ = (
    "__version__",
    "DecryptedCache",
    "VaultConfig",
    "VaultSession",
    "ServerSecretBox",
    "MemoryVaultStore",
    "SqlVaultStore",
    "EncryptedVariable",
    "DecryptedVariable",
    "rotate_master_password",
)
