"""Encrypt-at-rest for processor credentials.

Fernet tokens are authenticated, so tampering is detected on decrypt. Several
keys may be configured for rotation: the first key encrypts, every key is tried
on decrypt.
"""

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from tenantpay.common.errors import DecryptionError


class CredentialVault:
    """Symmetric encryption of processor API keys and secrets."""

    def __init__(self, keys: list[str]) -> None:
        if not keys:
            raise ValueError("at least one encryption key is required")
        self._fernet = MultiFernet([Fernet(key.encode("utf-8")) for key in keys])

    @classmethod
    def from_settings(cls, config) -> "CredentialVault":
        return cls(config.encryption_keys)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Return the plaintext, raising `DecryptionError` on malformed or tampered input."""

        if not isinstance(ciphertext, str) or not ciphertext:
            raise DecryptionError("credential ciphertext is empty or not a string")
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as exc:
            raise DecryptionError("credential ciphertext is malformed or was tampered with") from exc

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt an existing token under the primary key."""

        try:
            return self._fernet.rotate(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise DecryptionError("credential ciphertext is malformed or was tampered with") from exc
