"""Credential vault encryption, tamper detection and key rotation."""

import pytest

from tenantpay.common.errors import DecryptionError
from tenantpay.common.vault import CredentialVault


def test_encrypt_decrypt_round_trip(vault):
    token = vault.encrypt("sk_live_123")

    assert token != "sk_live_123"
    assert vault.decrypt(token) == "sk_live_123"


def test_same_plaintext_encrypts_differently(vault):
    assert vault.encrypt("secret") != vault.encrypt("secret")


def test_tampered_token_is_rejected(vault):
    token = vault.encrypt("secret")
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

    with pytest.raises(DecryptionError):
        vault.decrypt(tampered)


@pytest.mark.parametrize("ciphertext", ["", "not-a-token", None, 42])
def test_malformed_input_is_rejected(vault, ciphertext):
    with pytest.raises(DecryptionError):
        vault.decrypt(ciphertext)


def test_token_from_another_key_is_rejected(vault):
    other = CredentialVault([CredentialVault.generate_key()])

    with pytest.raises(DecryptionError):
        vault.decrypt(other.encrypt("secret"))


def test_rotation_keeps_old_tokens_readable():
    old_key = CredentialVault.generate_key()
    new_key = CredentialVault.generate_key()
    legacy_token = CredentialVault([old_key]).encrypt("secret")

    rotating = CredentialVault([new_key, old_key])
    assert rotating.decrypt(legacy_token) == "secret"

    rotated = rotating.rotate(legacy_token)
    assert CredentialVault([new_key]).decrypt(rotated) == "secret"


def test_rotate_rejects_unknown_token(vault):
    with pytest.raises(DecryptionError):
        vault.rotate("not-a-token")


def test_vault_requires_a_key():
    with pytest.raises(ValueError):
        CredentialVault([])
