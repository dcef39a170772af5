try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from brokerlink.services.credential_cipher import CredentialCipher


def test_credential_cipher_roundtrip() -> None:
    cipher = CredentialCipher(secret="super-secret-key")
    plaintext = "sensitive-token"

    encrypted = cipher.encrypt(plaintext)
    assert encrypted != plaintext

    decrypted = cipher.decrypt(encrypted)
    assert decrypted == plaintext


def test_credential_cipher_rejects_bad_ciphertext() -> None:
    cipher = CredentialCipher(secret="another-secret")

    with pytest.raises(ValueError):
        cipher.decrypt("not-valid")


def test_credential_cipher_requires_secret() -> None:
    with pytest.raises(ValueError):
        CredentialCipher(secret="")


def test_previous_secret_still_decrypts_and_rotates() -> None:
    old = CredentialCipher(secret="old-secret")
    encrypted = old.encrypt("refresh-token-value")

    current = CredentialCipher(secret="new-secret", previous_secrets=("old-secret",))
    assert current.decrypt(encrypted) == "refresh-token-value"

    rotated = current.rotate(encrypted)
    assert CredentialCipher(secret="new-secret").decrypt(rotated) == "refresh-token-value"
    with pytest.raises(ValueError):
        old.decrypt(rotated)
