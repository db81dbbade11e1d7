"""
Variable Codec — encrypt/decrypt key/value pairs as two independent fields.

The name and the value each get their own nonce and are processed
concurrently. A variable is either fully decrypted or the call fails;
a half-decrypted pair is never returned.
"""
import asyncio
from datetime import datetime
from typing import Optional
from collections.abc import Iterable

from .codec import encode_base64
from .crypto import decrypt_field_async, encrypt_field_async
from .models import DecryptedVariable, EncryptedVariable, VariableOwner


async def encrypt_variable(
    name: str,
    value: str,
    key: bytes,
    *,
    is_secret: bool = False,
    id: Optional[str] = None,
    owner: VariableOwner = VariableOwner.ENVIRONMENT,
    created_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
) -> EncryptedVariable:
    """Encrypt a name/value pair into its persisted record.

    Args:
        name: Variable name (e.g. ``DB_URL``).
        value: Variable value.
        key: 32-byte vault key.
        is_secret: UI hint only, stored in clear.
        id: Identity of an existing row, kept through re-encryption.
        owner: Container owning the row.

    Returns:
        EncryptedVariable with independent nonces for name and value.
    """
    key_field, value_field = await asyncio.gather(
        encrypt_field_async(name, key),
        encrypt_field_async(value, key),
    )
    return EncryptedVariable(
        id=id,
        key_encrypted=encode_base64(key_field.ciphertext),
        value_encrypted=encode_base64(value_field.ciphertext),
        iv_key=encode_base64(key_field.nonce),
        iv_value=encode_base64(value_field.nonce),
        is_secret=is_secret,
        owner=owner,
        created_at=created_at,
        updated_at=updated_at,
    )


async def decrypt_variable(ev: EncryptedVariable, key: bytes) -> DecryptedVariable:
    """Decrypt both fields of a persisted record.

    Raises:
        IntegrityError: If either field fails authentication.
    """
    name, value = await asyncio.gather(
        decrypt_field_async(ev.key_field, key),
        decrypt_field_async(ev.value_field, key),
    )
    return DecryptedVariable(
        id=ev.id,
        name=name,
        value=value,
        is_secret=ev.is_secret,
        owner=ev.owner,
        created_at=ev.created_at,
        updated_at=ev.updated_at,
    )


async def decrypt_variables(
    variables: Iterable[EncryptedVariable], key: bytes,
) -> list[DecryptedVariable]:
    """Decrypt many records concurrently; output order matches input order."""
    return list(
        await asyncio.gather(*(decrypt_variable(ev, key) for ev in variables))
    )


async def encrypt_variables(
    variables: Iterable[DecryptedVariable], key: bytes,
) -> list[EncryptedVariable]:
    """Encrypt many plaintext variables, keeping their identity and metadata."""
    return list(
        await asyncio.gather(*(
            encrypt_variable(
                dv.name,
                dv.value,
                key,
                is_secret=dv.is_secret,
                id=dv.id,
                owner=dv.owner,
                created_at=dv.created_at,
                updated_at=dv.updated_at,
            )
            for dv in variables
        ))
    )
