"""
Vault Records — persisted ciphertext shapes and their decrypted counterparts.

The persisted record is a fixed, versioned schema. Parsing is strict:
unknown or missing fields are rejected and scalar fields are not coerced.

Security Note:
    ``DecryptedVariable.value`` is excluded from ``repr`` so plaintext does
    not end up in logs or tracebacks by accident.
"""
from datetime import datetime
from enum import Enum
from typing import ClassVar, Literal, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from .codec import decode_base64

NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16  # 128-bit GCM tag
SALT_SIZE = 16  # 128-bit PBKDF2 salt

SCHEMA_VERSION = 1


class VariableOwner(str, Enum):
    """Container that owns a variable row."""

    ENVIRONMENT = "environment"
    GLOBAL = "global"


class EncryptedField(BaseModel):
    """A single AEAD output: ciphertext (tag appended) and its nonce."""

    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)

    ciphertext: bytes
    nonce: bytes


def _check_nonce(value: str) -> str:
    raw = decode_base64(value)
    if len(raw) != NONCE_SIZE:
        raise ValueError(
            f"nonce must decode to exactly {NONCE_SIZE} bytes, got {len(raw)}"
        )
    return value


def _check_ciphertext(value: str) -> str:
    raw = decode_base64(value)
    if len(raw) < TAG_SIZE:
        raise ValueError(
            f"ciphertext must decode to at least {TAG_SIZE} bytes, got {len(raw)}"
        )
    return value


class EncryptedVariable(BaseModel):
    """Persisted shape of an encrypted key/value pair.

    Field names serialize in camelCase (``keyEncrypted``, ``ivKey``, ...)
    and are transported and stored verbatim by the API layer.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    schema_version: ClassVar[int] = SCHEMA_VERSION

    id: Optional[StrictStr] = None
    key_encrypted: StrictStr
    value_encrypted: StrictStr
    iv_key: StrictStr
    iv_value: StrictStr
    is_secret: StrictBool = False
    owner: VariableOwner = VariableOwner.ENVIRONMENT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("iv_key", "iv_value")
    @classmethod
    def validate_nonce(cls, v: str) -> str:
        """Nonces must be base64 of exactly 12 bytes."""
        return _check_nonce(v)

    @field_validator("key_encrypted", "value_encrypted")
    @classmethod
    def validate_ciphertext(cls, v: str) -> str:
        """Ciphertexts must be base64 and long enough to carry a GCM tag."""
        return _check_ciphertext(v)

    @property
    def key_field(self) -> EncryptedField:
        return EncryptedField(
            ciphertext=decode_base64(self.key_encrypted),
            nonce=decode_base64(self.iv_key),
        )

    @property
    def value_field(self) -> EncryptedField:
        return EncryptedField(
            ciphertext=decode_base64(self.value_encrypted),
            nonce=decode_base64(self.iv_value),
        )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "EncryptedVariable":
        """Parse a single persisted record.

        Raises:
            pydantic.ValidationError: On unknown, missing or malformed fields.
            orjson.JSONDecodeError: If ``data`` is not JSON.
        """
        return cls.model_validate(orjson.loads(data))


class DecryptedVariable(BaseModel):
    """Plaintext name/value pair, held in memory only while unlocked."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Optional[str] = None
    name: str
    value: str = Field(repr=False)
    is_secret: bool = False
    owner: VariableOwner = VariableOwner.ENVIRONMENT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RotationBundle(BaseModel):
    """Result of a master password rotation.

    Carries the new salt and every re-encrypted row; the persistence
    collaborator must write it as a single atomic unit.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    version: Literal[1] = SCHEMA_VERSION
    new_salt: StrictStr
    reencrypted: list[EncryptedVariable] = Field(default_factory=list)

    @field_validator("new_salt")
    @classmethod
    def validate_salt(cls, v: str) -> str:
        raw = decode_base64(v)
        if len(raw) != SALT_SIZE:
            raise ValueError(
                f"newSalt must decode to exactly {SALT_SIZE} bytes, got {len(raw)}"
            )
        return v

    @property
    def salt(self) -> bytes:
        return decode_base64(self.new_salt)

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(by_alias=True, mode="json"))

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "RotationBundle":
        return cls.model_validate(orjson.loads(data))


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

class VaultState(str, Enum):
    """Lifecycle states of a vault session."""

    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


class TransitionReason(str, Enum):
    """Why a session changed state."""

    UNLOCK_STARTED = "unlock_started"
    UNLOCKED = "unlocked"
    UNLOCK_FAILED = "unlock_failed"
    ABANDONED = "abandoned"
    EXPLICIT = "explicit"
    TIMEOUT = "timeout"
    ROTATED = "rotated"
    TEARDOWN = "teardown"


class Transition(BaseModel):
    """Event emitted to session subscribers on every state change."""

    model_config = ConfigDict(frozen=True)

    previous: VaultState
    current: VaultState
    reason: TransitionReason
    generation: int

    @property
    def locked(self) -> bool:
        return self.current is VaultState.LOCKED
