"""Shared fixtures for the vault test-suite."""
import pytest

from envvault.vault.codec import encode_base64
from envvault.vault.crypto import derive_key, encrypt_field
from envvault.vault.models import EncryptedVariable, VariableOwner


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_variable(
    name: str,
    value: str,
    key: bytes,
    id: str = None,
    is_secret: bool = False,
    owner: VariableOwner = VariableOwner.ENVIRONMENT,
) -> EncryptedVariable:
    """Synchronous twin of encrypt_variable, usable from plain fixtures."""
    key_field = encrypt_field(name, key)
    value_field = encrypt_field(value, key)
    return EncryptedVariable(
        id=id,
        key_encrypted=encode_base64(key_field.ciphertext),
        value_encrypted=encode_base64(value_field.ciphertext),
        iv_key=encode_base64(key_field.nonce),
        iv_value=encode_base64(value_field.nonce),
        is_secret=is_secret,
        owner=owner,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def password():
    return "Correct-Horse-42-Battery"


@pytest.fixture(scope="session")
def new_password():
    return "Brand-New-Vault-77-Secret"


@pytest.fixture(scope="session")
def wrong_password():
    return "Wrong-Guess-99-Password"


@pytest.fixture(scope="session")
def salt():
    return bytes(range(16))


@pytest.fixture(scope="session")
def vault_key(password, salt):
    return derive_key(password, salt)


@pytest.fixture(scope="session")
def wrong_key(wrong_password, salt):
    return derive_key(wrong_password, salt)


@pytest.fixture
def sample_variables(vault_key):
    """Three environment variables and one global, encrypted under vault_key."""
    return [
        make_variable("DB_URL", "postgres://x", vault_key, id="var-1", is_secret=True),
        make_variable("API_TOKEN", "tok_123", vault_key, id="var-2", is_secret=True),
        make_variable("DEBUG", "false", vault_key, id="var-3"),
        make_variable(
            "SENTRY_DSN", "https://k@sentry.example/1", vault_key,
            id="glob-1", owner=VariableOwner.GLOBAL,
        ),
    ]


PLAINTEXTS = {
    "var-1": ("DB_URL", "postgres://x"),
    "var-2": ("API_TOKEN", "tok_123"),
    "var-3": ("DEBUG", "false"),
    "glob-1": ("SENTRY_DSN", "https://k@sentry.example/1"),
}


@pytest.fixture
def plaintexts():
    return dict(PLAINTEXTS)


@pytest.fixture
def make_var():
    """Factory building an EncryptedVariable synchronously."""
    return make_variable
