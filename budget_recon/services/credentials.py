"""Encryption of stored Plaid access tokens."""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from budget_recon.config import settings

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """A stored credential could not be decrypted.

    The user has to reconnect the institution; retrying will not help.
    """

    needs_reconnect = True


class LegacyCredentialError(CredentialError):
    """Token was stored in plain text before encryption was introduced."""

    pass


class CredentialStore:
    """AES-256-GCM encryption for access tokens.

    Token layout (base64): salt(32) | iv(16) | tag(16) | ciphertext.
    Each token gets its own key, derived from the master key and its salt.
    """

    KEY_LENGTH = 32
    IV_LENGTH = 16
    TAG_LENGTH = 16
    SALT_LENGTH = 32
    MASTER_SALT = hashlib.sha256(b"plaid-token-salt").digest()
    LEGACY_PREFIX = "access-"

    def __init__(self, secret: str | None = None, iterations: int | None = None):
        secret = secret or settings.credential_secret
        if not secret:
            raise ValueError("credential_secret must be set for token encryption")
        self.iterations = iterations or settings.credential_kdf_iterations
        self._master_key = self._derive(secret.encode("utf-8"), self.MASTER_SALT)

    def _derive(self, material: bytes, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(material)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt an access token for storage."""
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        salt = os.urandom(self.SALT_LENGTH)
        iv = os.urandom(self.IV_LENGTH)
        key = self._derive(self._master_key, salt)

        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[: -self.TAG_LENGTH], sealed[-self.TAG_LENGTH :]

        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a stored access token.

        Raises:
            LegacyCredentialError: Token is an unencrypted legacy value
            CredentialError: Token is corrupted or was encrypted with another secret
        """
        if not token:
            raise CredentialError("Cannot decrypt empty token. Please reconnect your bank account.")

        if token.startswith(self.LEGACY_PREFIX):
            raise LegacyCredentialError(
                "Invalid access token format. Please reconnect your bank account."
            )

        try:
            combined = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError(
                "Failed to decrypt access token. Please reconnect your bank account."
            ) from e

        header = self.SALT_LENGTH + self.IV_LENGTH + self.TAG_LENGTH
        if len(combined) <= header:
            raise CredentialError(
                "Failed to decrypt access token. Please reconnect your bank account."
            )

        salt = combined[: self.SALT_LENGTH]
        iv = combined[self.SALT_LENGTH : self.SALT_LENGTH + self.IV_LENGTH]
        tag = combined[self.SALT_LENGTH + self.IV_LENGTH : header]
        ciphertext = combined[header:]

        key = self._derive(self._master_key, salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            logger.error("Access token failed authentication; it may be corrupted or tampered with")
            raise CredentialError(
                "Failed to decrypt access token. Please reconnect your bank account."
            ) from e

        return plaintext.decode("utf-8")
