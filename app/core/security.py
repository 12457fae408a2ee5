"""
Security utilities for secret encryption, admin access tokens and passwords.

CRITICAL SECURITY REQUIREMENTS:
1. NEVER log webhook secrets, signatures or access tokens
2. ALWAYS encrypt webhook secrets before database storage
3. NEVER return secrets from the admin API (expose has_secret instead)
4. ALWAYS compare signatures in constant time (hmac.compare_digest)
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from cryptography.fernet import Fernet
from jose import jwt, JWTError

from app.core.config import settings

ACCESS_TOKEN_ALGORITHM = "HS256"


class SecretEncryption:
    """
    Symmetric encryption for webhook shared secrets using Fernet (AES-128-CBC + HMAC).

    The signature validator needs the plaintext secret to recompute HMACs,
    so secrets are encrypted (not hashed) at rest.
    """

    def __init__(self, encryption_key: str):
        """
        Initialize with encryption key.

        Key must be 44-character base64-encoded string.
        Generate with: Fernet.generate_key().decode()
        """
        self._fernet = Fernet(encryption_key.encode())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: Webhook secret or other sensitive string

        Returns:
            Base64-encoded encrypted string (safe for database storage)
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return encrypted_bytes.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext string.

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")

        decrypted_bytes = self._fernet.decrypt(ciphertext.encode())
        return decrypted_bytes.decode()


# Global encryption instance
secret_encryptor = SecretEncryption(settings.ENCRYPTION_KEY)


def encrypt_secret(secret: str) -> str:
    """
    Encrypt a webhook secret for database storage.

    Usage:
        setting.secret_key = encrypt_secret(payload.secret_key)
    """
    return secret_encryptor.encrypt(secret)


def decrypt_secret(encrypted_secret: str) -> str:
    """
    Decrypt a webhook secret from the database.

    WARNING: Never log the decrypted secret!
    """
    return secret_encryptor.decrypt(encrypted_secret)


def create_access_token(
    admin_id: str,
    role: str,
    expires_minutes: Optional[int] = None
) -> tuple[str, datetime]:
    """
    Create a signed admin access token.

    Args:
        admin_id: Admin UUID (stored as `sub`)
        role: Admin role at issue time (informational, re-read on each request)
        expires_minutes: Lifetime override (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        (token, expires_at)
    """
    now = datetime.utcnow()
    expires_at = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(admin_id),
        "role": role,
        "exp": expires_at,
        "iat": now,
        "jti": secrets.token_hex(8),
    }
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=ACCESS_TOKEN_ALGORITHM)
    return token, expires_at


def verify_access_token(token: str) -> Optional[dict]:
    """
    Verify and decode an admin access token.

    Returns:
        Decoded payload dict if valid, None if invalid/expired
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ACCESS_TOKEN_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def _prehash(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return hashlib.sha256(password.encode("utf-8")).hexdigest().encode("utf-8")


def hash_password(password: str) -> str:
    """Hash an admin password with bcrypt."""
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against its bcrypt hash. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def generate_encryption_key() -> str:
    """
    Generate new Fernet encryption key.

    Usage:
        key = generate_encryption_key()
        print(f"ENCRYPTION_KEY={key}")  # Add to .env

    WARNING: Never regenerate in production without re-encrypting
    existing webhook secrets first!
    """
    return Fernet.generate_key().decode()
