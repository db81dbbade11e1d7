"""Tests for the persisted record schema."""
import orjson
import pytest
from pydantic import ValidationError

from envvault.vault.codec import encode_base64
from envvault.vault.models import (
    DecryptedVariable,
    EncryptedVariable,
    RotationBundle,
    VariableOwner,
)


@pytest.fixture
def record(make_var, vault_key):
    return make_var("DB_URL", "postgres://x", vault_key, id="var-1", is_secret=True)


class TestEncryptedVariable:
    def test_camel_case_serialization(self, record):
        data = record.to_dict()
        for name in ("keyEncrypted", "valueEncrypted", "ivKey", "ivValue", "isSecret"):
            assert name in data
        assert data["isSecret"] is True
        assert data["owner"] == "environment"

    def test_json_round_trip(self, record):
        assert EncryptedVariable.from_json(record.to_json()) == record

    def test_accepts_snake_case_in_python(self, record):
        copy = EncryptedVariable(
            key_encrypted=record.key_encrypted,
            value_encrypted=record.value_encrypted,
            iv_key=record.iv_key,
            iv_value=record.iv_value,
        )
        assert copy.is_secret is False
        assert copy.owner is VariableOwner.ENVIRONMENT

    def test_unknown_field_rejected(self, record):
        data = record.to_dict()
        data["plaintext"] = "oops"
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    @pytest.mark.parametrize("missing", ["keyEncrypted", "valueEncrypted", "ivKey", "ivValue"])
    def test_missing_field_rejected(self, record, missing):
        data = record.to_dict()
        del data[missing]
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    def test_is_secret_not_coerced(self, record):
        data = record.to_dict()
        data["isSecret"] = "true"
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    def test_nonce_length_enforced(self, record):
        data = record.to_dict()
        data["ivKey"] = encode_base64(b"\x00" * 16)
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    def test_short_ciphertext_rejected(self, record):
        data = record.to_dict()
        data["valueEncrypted"] = encode_base64(b"\x00" * 8)
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    def test_bad_base64_rejected(self, record):
        data = record.to_dict()
        data["keyEncrypted"] = "!!not-base64!!"
        with pytest.raises(ValidationError):
            EncryptedVariable.model_validate(data)

    def test_field_views(self, record):
        assert len(record.key_field.nonce) == 12
        assert len(record.value_field.nonce) == 12
        assert record.key_field.nonce != record.value_field.nonce

    def test_frozen(self, record):
        with pytest.raises(ValidationError):
            record.is_secret = False

    def test_global_owner(self, make_var, vault_key):
        ev = make_var("X", "y", vault_key, owner=VariableOwner.GLOBAL)
        parsed = EncryptedVariable.from_json(ev.to_json())
        assert parsed.owner is VariableOwner.GLOBAL


class TestDecryptedVariable:
    def test_repr_hides_value(self):
        dv = DecryptedVariable(name="DB_URL", value="postgres://secret")
        assert "postgres://secret" not in repr(dv)
        assert "DB_URL" in repr(dv)


class TestRotationBundle:
    def test_round_trip(self, record):
        bundle = RotationBundle(new_salt=encode_base64(b"\x01" * 16), reencrypted=[record])
        parsed = RotationBundle.from_json(bundle.to_json())
        assert parsed == bundle
        assert parsed.salt == b"\x01" * 16
        assert parsed.version == 1

    def test_json_shape(self, record):
        bundle = RotationBundle(new_salt=encode_base64(b"\x01" * 16), reencrypted=[record])
        data = orjson.loads(bundle.to_json())
        assert set(data) == {"version", "newSalt", "reencrypted"}

    def test_salt_length_enforced(self):
        with pytest.raises(ValidationError):
            RotationBundle(new_salt=encode_base64(b"\x01" * 8))

    def test_unknown_version_rejected(self):
        with pytest.raises(ValidationError):
            RotationBundle.model_validate(
                {"version": 2, "newSalt": encode_base64(b"\x01" * 16), "reencrypted": []}
            )
