"""
Vault Storage — persistence collaborators for ciphertext and salts.

The vault core never persists anything itself. It reads the user's salt
and encrypted rows through a ``VaultStore`` and hands rotation results back
as one ``RotationBundle`` that the store must apply atomically: the new
salt and every re-encrypted row land together, or nothing changes.

Two implementations are provided:
- ``MemoryVaultStore`` — in-process store for tests and single-process use.
- ``SqlVaultStore`` — asyncpg-compatible store; rotation runs in one
  transaction.

Security Note:
    Stores only ever see ciphertext, nonces and salts.
"""
import asyncio
import logging
import uuid
from typing import Any, Protocol, Union, runtime_checkable

from .codec import decode_base64, encode_base64
from .exceptions import InvalidSaltError
from .models import SALT_SIZE, EncryptedVariable, RotationBundle, VariableOwner

logger = logging.getLogger("envvault.vault")


@runtime_checkable
class VaultStore(Protocol):
    """Persistence interface consumed by the vault core."""

    async def fetch_salt(self) -> bytes:
        """Return the user's current 16-byte salt."""
        ...

    async def fetch_variables(self) -> list[EncryptedVariable]:
        """Return every encrypted row belonging to the user."""
        ...

    async def commit_rotation(self, bundle: RotationBundle) -> None:
        """Atomically replace the salt and every row listed in ``bundle``."""
        ...


def _salt_bytes(salt: Union[str, bytes]) -> bytes:
    raw = decode_base64(salt) if isinstance(salt, str) else bytes(salt)
    if len(raw) != SALT_SIZE:
        raise InvalidSaltError(f"salt must be exactly {SALT_SIZE} bytes, got {len(raw)}")
    return raw


class MemoryVaultStore:
    """In-memory ``VaultStore``.

    Rotation builds the complete new state first and swaps salt and rows in
    a single assignment, so readers never see a mix of old and new rows.
    """

    def __init__(self, salt: Union[str, bytes], variables: Union[list[EncryptedVariable], None] = None):
        self._salt = _salt_bytes(salt)
        self._rows: dict[str, EncryptedVariable] = {}
        self._lock = asyncio.Lock()
        for ev in variables or []:
            self.add(ev)

    def add(self, ev: EncryptedVariable) -> EncryptedVariable:
        """Insert or replace a row, assigning an id when it has none."""
        if ev.id is None:
            ev = ev.model_copy(update={"id": uuid.uuid4().hex})
        self._rows[ev.id] = ev
        return ev

    def remove(self, variable_id: str) -> None:
        del self._rows[variable_id]

    @property
    def salt(self) -> bytes:
        return self._salt

    @property
    def encryption_salt(self) -> str:
        """Salt as stored in the user record (base64)."""
        return encode_base64(self._salt)

    def snapshot(self) -> tuple[bytes, dict[str, EncryptedVariable]]:
        return self._salt, dict(self._rows)

    async def fetch_salt(self) -> bytes:
        return self._salt

    async def fetch_variables(self) -> list[EncryptedVariable]:
        return list(self._rows.values())

    async def commit_rotation(self, bundle: RotationBundle) -> None:
        """Apply a rotation bundle.

        Raises:
            ValueError: If the bundle does not cover exactly the stored rows.
        """
        async with self._lock:
            incoming = {ev.id: ev for ev in bundle.reencrypted}
            if None in incoming:
                raise ValueError("Rotation bundle contains a row without id")
            if set(incoming) != set(self._rows):
                missing = set(self._rows) - set(incoming)
                unknown = set(incoming) - set(self._rows)
                raise ValueError(
                    f"Rotation bundle does not match stored rows "
                    f"(missing={len(missing)}, unknown={len(unknown)})"
                )
            rows = {row_id: incoming[row_id] for row_id in self._rows}
            self._salt, self._rows = bundle.salt, rows
        logger.debug("Memory store committed rotation of %d row(s)", len(rows))


# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_SALT = """
SELECT encryption_salt FROM users WHERE id = $1
"""

_SELECT_VARIABLES = """
SELECT v.id, v.key_encrypted, v.value_encrypted, v.iv_key, v.iv_value,
       v.is_secret, v.created_at, v.updated_at
FROM variables v
JOIN environments e ON e.id = v.environment_id
JOIN projects p ON p.id = e.project_id
WHERE p.user_id = $1
ORDER BY v.id
"""

_SELECT_GLOBALS = """
SELECT id, key_encrypted, value_encrypted, iv_key, iv_value,
       is_secret, created_at, updated_at
FROM global_variables
WHERE user_id = $1
ORDER BY id
"""

_UPDATE_SALT = """
UPDATE users SET encryption_salt = $1, updated_at = NOW() WHERE id = $2
"""

_UPDATE_VARIABLE = """
UPDATE variables
SET key_encrypted = $1, value_encrypted = $2, iv_key = $3, iv_value = $4,
    updated_at = NOW()
WHERE id = $5 AND environment_id IN (
    SELECT e.id FROM environments e
    JOIN projects p ON p.id = e.project_id
    WHERE p.user_id = $6
)
"""

_UPDATE_GLOBAL = """
UPDATE global_variables
SET key_encrypted = $1, value_encrypted = $2, iv_key = $3, iv_value = $4,
    updated_at = NOW()
WHERE id = $5 AND user_id = $6
"""


def _row_to_variable(row: Any, owner: VariableOwner) -> EncryptedVariable:
    return EncryptedVariable(
        id=str(row["id"]),
        key_encrypted=row["key_encrypted"],
        value_encrypted=row["value_encrypted"],
        iv_key=row["iv_key"],
        iv_value=row["iv_value"],
        is_secret=bool(row["is_secret"]),
        owner=owner,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SqlVaultStore:
    """``VaultStore`` backed by an asyncpg-compatible connection pool.

    Args:
        db_pool: Pool exposing ``acquire()`` as an async context manager.
        user_id: Owner of the vault.
    """

    def __init__(self, db_pool: Any, user_id: Any):
        self._db = db_pool
        self._user_id = user_id

    async def fetch_salt(self) -> bytes:
        async with self._db.acquire() as conn:
            salt = await conn.fetchval(_SELECT_SALT, self._user_id)
        if salt is None:
            raise LookupError(f"Vault not set up for user={self._user_id}")
        return _salt_bytes(salt)

    async def fetch_variables(self) -> list[EncryptedVariable]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_VARIABLES, self._user_id)
            globals_ = await conn.fetch(_SELECT_GLOBALS, self._user_id)
        variables = [_row_to_variable(r, VariableOwner.ENVIRONMENT) for r in rows]
        variables.extend(_row_to_variable(r, VariableOwner.GLOBAL) for r in globals_)
        logger.debug(
            "Fetched %d variable(s) and %d global(s) for user=%s",
            len(rows), len(globals_), self._user_id,
        )
        return variables

    async def commit_rotation(self, bundle: RotationBundle) -> None:
        """Write the new salt and every re-encrypted row in one transaction.

        Raises:
            RuntimeError: If any row update does not touch exactly one row;
                the transaction is rolled back.
        """
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                status = await conn.execute(
                    _UPDATE_SALT, bundle.new_salt, self._user_id,
                )
                _expect_one(status, "users", self._user_id)
                for ev in bundle.reencrypted:
                    if ev.owner is VariableOwner.GLOBAL:
                        status = await conn.execute(
                            _UPDATE_GLOBAL,
                            ev.key_encrypted, ev.value_encrypted,
                            ev.iv_key, ev.iv_value, ev.id, self._user_id,
                        )
                    else:
                        status = await conn.execute(
                            _UPDATE_VARIABLE,
                            ev.key_encrypted, ev.value_encrypted,
                            ev.iv_key, ev.iv_value, ev.id, self._user_id,
                        )
                    _expect_one(status, ev.owner.value, ev.id)
                await tx.commit()
            except Exception:
                await tx.rollback()
                raise
        logger.info(
            "Rotation committed for user=%s: %d row(s)",
            self._user_id, len(bundle.reencrypted),
        )


def _expect_one(status: str, table: str, row_id: Any) -> None:
    """asyncpg returns a command tag such as ``UPDATE 1``."""
    if not status or status.split()[-1] != "1":
        raise RuntimeError(
            f"Expected to update one {table} row id={row_id}, got {status!r}"
        )
