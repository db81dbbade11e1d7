"""
Server Secret Box — AEAD for data the backend itself must be able to read.

Used for auxiliary secrets such as two-factor (TOTP) seeds. This is a
different trust domain from the user vault: the key comes from a
server-held secret through scrypt, never from a master password through
PBKDF2.

Blob format (base64 of):
    [salt 16B][nonce 12B][auth_tag 16B][ciphertext ...]

Each blob carries its own salt so the server secret can rotate without
re-encrypting every blob at once; retired secrets stay readable through
``previous_secrets`` until ``reseal`` moves the blob to the current one.

Security Note:
    Never log the server secret, derived keys or plaintext.
"""
import os
import logging
from collections.abc import Iterable
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .codec import decode_base64, encode_base64
from .config import VaultConfig
from .exceptions import DecodeError, FramingError, IntegrityError
from .models import NONCE_SIZE, TAG_SIZE

logger = logging.getLogger("envvault.vault")

SALT_SIZE = 16
KEY_LENGTH = 32
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

_HEADER_SIZE = SALT_SIZE + NONCE_SIZE + TAG_SIZE


def derive_server_key(secret: str, salt: bytes) -> bytes:
    """Derive a 32-byte AES key from the server secret using scrypt."""
    kdf = Scrypt(
        salt=salt,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(secret.encode("utf-8"))


class ServerSecretBox:
    """Seal and open server-readable secrets.

    Args:
        secret: Current server secret.
        previous_secrets: Retired secrets still accepted by ``open``.
    """

    def __init__(self, secret: str, previous_secrets: Iterable[str] = ()):
        if not secret:
            raise RuntimeError("Server secret is not configured")
        self._secret = secret
        self._previous = [s for s in previous_secrets if s]

    @classmethod
    def from_config(cls, config: Optional[VaultConfig] = None) -> "ServerSecretBox":
        """Build a box from VaultConfig (defaults to environment).

        Raises:
            RuntimeError: If no server secret is configured.
        """
        config = config or VaultConfig.from_env()
        if config.server_secret is None:
            raise RuntimeError(
                "AUTH_SECRET is not configured; the server secret box is unavailable"
            )
        return cls(config.server_secret, config.previous_server_secrets)

    def seal(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under the current server secret.

        Returns:
            Base64 blob ``salt | nonce | tag | ciphertext``.
        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = derive_server_key(self._secret, salt)
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return encode_base64(salt + nonce + tag + ciphertext)

    @staticmethod
    def _split(blob: str) -> tuple[bytes, bytes, bytes, bytes]:
        try:
            raw = decode_base64(blob)
        except DecodeError as err:
            raise FramingError(f"Secret box blob is not valid base64: {err}") from err
        if len(raw) < _HEADER_SIZE:
            raise FramingError(
                f"Secret box blob too short: {len(raw)} bytes "
                f"(minimum {_HEADER_SIZE})"
            )
        salt = raw[:SALT_SIZE]
        nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
        tag = raw[SALT_SIZE + NONCE_SIZE:_HEADER_SIZE]
        ciphertext = raw[_HEADER_SIZE:]
        return salt, nonce, tag, ciphertext

    def _open_with(self, secret: str, salt: bytes, nonce: bytes, tag: bytes, ciphertext: bytes) -> bytes:
        key = derive_server_key(secret, salt)
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)

    def _open(self, blob: str) -> tuple[str, bool]:
        salt, nonce, tag, ciphertext = self._split(blob)
        for index, secret in enumerate([self._secret, *self._previous]):
            try:
                plaintext = self._open_with(secret, salt, nonce, tag, ciphertext)
            except InvalidTag:
                continue
            if index:
                logger.info("Secret box blob opened with previous secret #%d", index)
            try:
                return plaintext.decode("utf-8"), index == 0
            except UnicodeDecodeError as err:
                raise IntegrityError("Secret box plaintext is not valid UTF-8") from err
        raise IntegrityError("Secret box authentication failed")

    def open(self, blob: str) -> str:
        """Decrypt a blob produced by ``seal``.

        Raises:
            FramingError: If the blob is not base64 or shorter than its header.
            IntegrityError: If no known secret authenticates the blob.
        """
        plaintext, _ = self._open(blob)
        return plaintext

    def reseal(self, blob: str) -> str:
        """Re-encrypt a blob under the current secret.

        Blobs already sealed with the current secret are returned unchanged.
        """
        plaintext, current = self._open(blob)
        if current:
            return blob
        return self.seal(plaintext)
