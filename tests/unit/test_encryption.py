"""
Test encryption service functionality.
"""

import pytest

from app.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_token,
    encrypt_token,
    generate_new_key,
    validate_encryption_config,
)


def test_basic_encryption_decryption():
    """Test that encryption and decryption work correctly."""
    token = "1//0refresh-token-example"

    encrypted = encrypt_token(token)

    assert encrypted != token
    assert decrypt_token(encrypted) == token


def test_decrypt_accepts_bytes():
    encrypted = encrypt_token("refresh-token")

    assert decrypt_token(encrypted.encode("ascii")) == "refresh-token"


def test_encryption_config_validation():
    """Test that encryption configuration is valid."""
    assert validate_encryption_config() is True


def test_empty_token_is_rejected():
    with pytest.raises(EncryptionError):
        encrypt_token("")


def test_tampered_token_is_rejected():
    encrypted = encrypt_token("refresh-token")
    tampered = encrypted[:-4] + ("AAAA" if not encrypted.endswith("AAAA") else "BBBB")

    with pytest.raises(EncryptionError):
        decrypt_token(tampered)


def test_token_from_other_key_is_rejected(monkeypatch):
    from app.services.infrastructure import encryption_service

    encrypted = encrypt_token("refresh-token")
    monkeypatch.setattr(encryption_service.settings, "ENCRYPTION_KEY", generate_new_key())

    with pytest.raises(EncryptionError):
        decrypt_token(encrypted)


def test_missing_key(monkeypatch):
    from app.services.infrastructure import encryption_service

    monkeypatch.setattr(encryption_service.settings, "ENCRYPTION_KEY", None)

    assert validate_encryption_config() is False
