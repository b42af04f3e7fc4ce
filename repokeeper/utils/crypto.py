"""
Encryption of repository credentials at rest.

Uses Fernet symmetric encryption with a key derived from the Flask
SECRET_KEY, so tokens and passwords are never stored in plaintext.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CredentialCipher:
    """
    Encrypts and decrypts repository credentials with SECRET_KEY.
    """

    def __init__(self, secret_key: str):
        """
        Initialize with Flask SECRET_KEY.

        Args:
            secret_key: Flask app SECRET_KEY
        """
        # SECRET_KEY is the secret, the salt only versions the derivation
        fixed_salt = b'repokeeper_credentials_salt_v1'

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=fixed_salt,
            iterations=100000,
        )

        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a credential.

        Args:
            plaintext: Credential in plaintext (empty values are not stored)

        Returns:
            Base64-encoded ciphertext, or None for empty input
        """
        if not plaintext:
            return None

        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return base64.urlsafe_b64encode(encrypted_bytes).decode()

    def decrypt(self, encrypted: Optional[str]) -> str:
        """
        Decrypt a stored credential.

        Args:
            encrypted: Base64-encoded ciphertext or None

        Returns:
            Plaintext credential, '' when nothing is stored

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails (wrong key or corrupted data)
        """
        if not encrypted:
            return ''

        encrypted_bytes = base64.urlsafe_b64decode(encrypted.encode())
        return self._fernet.decrypt(encrypted_bytes).decode()


def get_credential_cipher(app) -> CredentialCipher:
    """
    Create a CredentialCipher from Flask app config.

    Raises:
        RuntimeError: If SECRET_KEY not configured
    """
    secret_key = app.config.get('SECRET_KEY')

    if not secret_key:
        raise RuntimeError("SECRET_KEY not configured - cannot encrypt credentials")

    return CredentialCipher(secret_key)
