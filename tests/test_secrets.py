import pytest

from autoseo.security.secrets import decrypt_secret, encrypt_secret, generate_master_key


def test_encrypt_decrypt_roundtrip():
    key_id, blob = encrypt_secret("supersecret", b"integration:test")
    assert key_id == "v1"
    assert "supersecret" not in blob
    assert decrypt_secret(blob, b"integration:test") == "supersecret"


def test_encrypt_decrypt_aad_mismatch():
    _, blob = encrypt_secret("supersecret", b"integration:test")
    with pytest.raises(Exception):
        decrypt_secret(blob, b"integration:other")


def test_missing_master_key(monkeypatch):
    monkeypatch.delenv("AUTOSEO_MASTER_KEY")
    with pytest.raises(ValueError, match="AUTOSEO_MASTER_KEY"):
        encrypt_secret("supersecret", b"integration:test")


def test_generated_master_key_is_usable(monkeypatch):
    monkeypatch.setenv("AUTOSEO_MASTER_KEY", generate_master_key())
    _, blob = encrypt_secret("value", b"aad")
    assert decrypt_secret(blob, b"aad") == "value"
