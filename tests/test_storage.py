"""Tests for the vault persistence collaborators."""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from envvault.vault.codec import encode_base64
from envvault.vault.exceptions import InvalidSaltError
from envvault.vault.key_rotation import reencrypt_vault
from envvault.vault.models import RotationBundle, VariableOwner
from envvault.vault.storage import MemoryVaultStore, SqlVaultStore, VaultStore


# --- Fake asyncpg pool ---

class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def start(self):
        self.conn.log.append("BEGIN")

    async def commit(self):
        self.conn.log.append("COMMIT")

    async def rollback(self):
        self.conn.log.append("ROLLBACK")


class FakeConnection:
    def __init__(self, salt=None, variables=(), globals_=(), status="UPDATE 1"):
        self.salt = salt
        self.variables = list(variables)
        self.globals = list(globals_)
        self.status = status
        self.log = []
        self.executed = []

    def transaction(self):
        return FakeTransaction(self)

    async def fetchval(self, query, *args):
        return self.salt

    async def fetch(self, query, *args):
        if "global_variables" in query:
            return self.globals
        return self.variables

    async def execute(self, query, *args):
        self.executed.append((query, args))
        if callable(self.status):
            return self.status(query, args)
        return self.status


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def _row(ev, row_id):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return {
        "id": row_id,
        "key_encrypted": ev.key_encrypted,
        "value_encrypted": ev.value_encrypted,
        "iv_key": ev.iv_key,
        "iv_value": ev.iv_value,
        "is_secret": ev.is_secret,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def store(salt, sample_variables):
    return MemoryVaultStore(salt, sample_variables)


class TestMemoryVaultStore:
    def test_implements_protocol(self, store):
        assert isinstance(store, VaultStore)

    def test_invalid_salt(self):
        with pytest.raises(InvalidSaltError):
            MemoryVaultStore(b"short")

    def test_base64_salt(self, salt):
        assert MemoryVaultStore(encode_base64(salt)).salt == salt

    def test_add_assigns_id(self, salt, vault_key, make_var):
        store = MemoryVaultStore(salt)
        ev = store.add(make_var("A", "b", vault_key))
        assert ev.id
        assert store.snapshot()[1] == {ev.id: ev}

    def test_remove(self, store):
        store.remove("var-1")
        assert "var-1" not in store.snapshot()[1]

    @pytest.mark.asyncio
    async def test_fetch(self, store, salt, sample_variables):
        assert await store.fetch_salt() == salt
        assert await store.fetch_variables() == sample_variables

    @pytest.mark.asyncio
    async def test_commit_missing_row(self, store, password, new_password, salt, sample_variables):
        bundle = await reencrypt_vault(password, new_password, salt, sample_variables[:-1])
        before = store.snapshot()
        with pytest.raises(ValueError):
            await store.commit_rotation(bundle)
        assert store.snapshot() == before

    @pytest.mark.asyncio
    async def test_commit_unknown_row(self, store, password, new_password, salt, sample_variables, vault_key, make_var):
        extra = make_var("X", "y", vault_key, id="ghost")
        bundle = await reencrypt_vault(password, new_password, salt, sample_variables + [extra])
        with pytest.raises(ValueError):
            await store.commit_rotation(bundle)

    @pytest.mark.asyncio
    async def test_commit_row_without_id(self, salt, password, new_password, vault_key, make_var):
        store = MemoryVaultStore(salt)
        bundle = await reencrypt_vault(password, new_password, salt, [make_var("X", "y", vault_key)])
        with pytest.raises(ValueError):
            await store.commit_rotation(bundle)


class TestSqlVaultStore:
    @pytest.mark.asyncio
    async def test_fetch_salt(self, salt):
        store = SqlVaultStore(FakePool(FakeConnection(salt=encode_base64(salt))), "user-1")
        assert await store.fetch_salt() == salt

    @pytest.mark.asyncio
    async def test_fetch_salt_missing_user(self):
        store = SqlVaultStore(FakePool(FakeConnection()), "user-1")
        with pytest.raises(LookupError):
            await store.fetch_salt()

    @pytest.mark.asyncio
    async def test_fetch_variables_maps_owner(self, sample_variables):
        conn = FakeConnection(
            variables=[_row(sample_variables[0], 1), _row(sample_variables[1], 2)],
            globals_=[_row(sample_variables[3], 7)],
        )
        rows = await SqlVaultStore(FakePool(conn), "user-1").fetch_variables()
        assert [(ev.id, ev.owner) for ev in rows] == [
            ("1", VariableOwner.ENVIRONMENT),
            ("2", VariableOwner.ENVIRONMENT),
            ("7", VariableOwner.GLOBAL),
        ]
        assert rows[0].is_secret is True

    @pytest.mark.asyncio
    async def test_commit_rotation(self, password, new_password, salt, sample_variables):
        conn = FakeConnection()
        bundle = await reencrypt_vault(password, new_password, salt, sample_variables)
        await SqlVaultStore(FakePool(conn), "user-1").commit_rotation(bundle)
        assert conn.log == ["BEGIN", "COMMIT"]
        assert len(conn.executed) == 1 + len(sample_variables)
        query, args = conn.executed[0]
        assert "users" in query
        assert args == (bundle.new_salt, "user-1")
        global_updates = [q for q, _ in conn.executed if "global_variables" in q]
        assert len(global_updates) == 1
        assert all(args[-1] == "user-1" for _, args in conn.executed[1:])

    @pytest.mark.asyncio
    async def test_rollback_when_row_missing(self, password, new_password, salt, sample_variables):
        def status(query, args):
            if "UPDATE variables" in query and args[4] == "var-2":
                return "UPDATE 0"
            return "UPDATE 1"

        conn = FakeConnection(status=status)
        bundle = await reencrypt_vault(password, new_password, salt, sample_variables)
        with pytest.raises(RuntimeError):
            await SqlVaultStore(FakePool(conn), "user-1").commit_rotation(bundle)
        assert conn.log == ["BEGIN", "ROLLBACK"]
        # salt and var-1 were written before var-2 failed
        assert conn.executed[0][1] == (bundle.new_salt, "user-1")
        assert [args[4] for _, args in conn.executed[1:]] == ["var-1", "var-2"]

    @pytest.mark.asyncio
    async def test_rollback_when_salt_not_updated(self, password, new_password, salt, sample_variables):
        conn = FakeConnection(status="UPDATE 0")
        bundle = await reencrypt_vault(password, new_password, salt, sample_variables)
        with pytest.raises(RuntimeError):
            await SqlVaultStore(FakePool(conn), "user-1").commit_rotation(bundle)
        assert conn.log == ["BEGIN", "ROLLBACK"]
        assert len(conn.executed) == 1

    @pytest.mark.asyncio
    async def test_rollback_on_driver_error(self, salt):
        class BrokenConnection(FakeConnection):
            async def execute(self, query, *args):
                raise ConnectionError("lost")

        conn = BrokenConnection()
        bundle = RotationBundle(new_salt=encode_base64(salt))
        with pytest.raises(ConnectionError):
            await SqlVaultStore(FakePool(conn), "user-1").commit_rotation(bundle)
        assert conn.log == ["BEGIN", "ROLLBACK"]
