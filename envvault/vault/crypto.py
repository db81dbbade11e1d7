"""
Vault Crypto Core — Master password key derivation and field encryption.

Implements the client side of the zero-knowledge vault:
- Key derivation: PBKDF2-HMAC-SHA256(master_password, salt, 100k) → AES-256 key
- Field layer: AES-GCM(key, random nonce) → [payload + GCM_tag 16B]

The iteration count and output length are part of the persisted format:
changing them makes every stored ciphertext undecryptable.

Security Note:
    Never log passwords, keys, salts, plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import asyncio
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import IntegrityError, InvalidKeyError, InvalidSaltError
from .models import NONCE_SIZE, SALT_SIZE, TAG_SIZE, EncryptedField

logger = logging.getLogger("envvault.vault")

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32  # AES-256


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Return a fresh random 16-byte salt."""
    return os.urandom(SALT_SIZE)


def derive_key(master_secret: str, salt: bytes) -> bytes:
    """Derive the 32-byte vault key from a master password.

    Args:
        master_secret: The user's master password.
        salt: Per-user 16-byte salt.

    Returns:
        32-byte AES-256 key.

    Raises:
        InvalidSaltError: If ``salt`` is not exactly 16 bytes.
        ValueError: If ``master_secret`` is empty.
    """
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_SIZE:
        size = len(salt) if isinstance(salt, (bytes, bytearray)) else type(salt).__name__
        raise InvalidSaltError(
            f"salt must be exactly {SALT_SIZE} bytes, got {size}"
        )
    if not master_secret:
        raise ValueError("Master password cannot be empty")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=bytes(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_secret.encode("utf-8"))


async def derive_key_async(master_secret: str, salt: bytes) -> bytes:
    """Run :func:`derive_key` in a worker thread."""
    return await asyncio.to_thread(derive_key, master_secret, salt)


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise InvalidKeyError(
            f"vault key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
        )
    return AESGCM(key)


def encrypt_field(plaintext: str, key: bytes) -> EncryptedField:
    """Encrypt a single text field with AES-256-GCM.

    A new random nonce is drawn on every call.

    Args:
        plaintext: Text to encrypt.
        key: 32-byte vault key.

    Returns:
        EncryptedField with ciphertext (tag appended) and nonce.
    """
    cipher = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
    return EncryptedField(ciphertext=ct, nonce=nonce)


def decrypt_field(field: EncryptedField, key: bytes) -> str:
    """Decrypt and authenticate a single text field.

    Raises:
        IntegrityError: On tag mismatch (wrong key or tampered data),
            truncated ciphertext or malformed nonce.
        InvalidKeyError: If ``key`` is not 32 bytes.
    """
    cipher = _cipher(key)
    if len(field.nonce) != NONCE_SIZE:
        raise IntegrityError(
            f"nonce must be {NONCE_SIZE} bytes, got {len(field.nonce)}"
        )
    if len(field.ciphertext) < TAG_SIZE:
        raise IntegrityError(
            f"ciphertext too short: {len(field.ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    try:
        plaintext = cipher.decrypt(field.nonce, field.ciphertext, None)
    except InvalidTag as err:
        raise IntegrityError("Authentication tag verification failed") from err
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise IntegrityError("Decrypted field is not valid UTF-8") from err


async def encrypt_field_async(plaintext: str, key: bytes) -> EncryptedField:
    return await asyncio.to_thread(encrypt_field, plaintext, key)


async def decrypt_field_async(field: EncryptedField, key: bytes) -> str:
    return await asyncio.to_thread(decrypt_field, field, key)
