"""
Credential encryption/decryption service using Fernet symmetric encryption.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


def _get_fernet() -> Fernet:
    """Get Fernet instance from encryption key."""
    key = settings.ENCRYPTION_KEY

    # If key is not 32 bytes, derive a key using PBKDF2
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"lead_outreach_credentials_salt",
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        key = base64.urlsafe_b64encode(key.encode())

    return Fernet(key)


def encrypt_secret(secret: str) -> str:
    """
    Encrypt a provider credential for storage.

    Args:
        secret: Plain text credential

    Returns:
        Base64-encoded encrypted credential
    """
    fernet = _get_fernet()
    return fernet.encrypt(secret.encode()).decode()


def decrypt_secret(encrypted_secret: str) -> str:
    """
    Decrypt a stored provider credential.

    Raises:
        ValueError: if the ciphertext was not produced with the current key
    """
    fernet = _get_fernet()
    try:
        return fernet.decrypt(encrypted_secret.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Stored credential could not be decrypted.") from exc


def decrypt_optional(encrypted_secret: Optional[str]) -> Optional[str]:
    if not encrypted_secret:
        return None
    return decrypt_secret(encrypted_secret)