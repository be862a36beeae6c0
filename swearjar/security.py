"""
Security utilities: bearer-token verification and Fernet encryption.

Three concerns are handled here:

1. JWT VERIFICATION
   - Users sign in with the external identity provider (Supabase Auth), which
     issues an HS256-signed JWT. This service never issues tokens; it only
     verifies the signature, expiry and audience, and reads the user id from
     the standard "sub" claim.

2. FERNET ENCRYPTION (AES-128-CBC + HMAC-SHA256)
   - Used for encrypting bank access tokens at rest. Fernet provides
     authenticated encryption, so a tampered ciphertext fails to decrypt.
   - The key is loaded from environment variables, never hardcoded.

3. WEBHOOK SECRETS
   - The settlement adapter authenticates its callbacks with a shared secret,
     compared in constant time.
"""

import hmac
import uuid

from cryptography.fernet import Fernet
from jose import jwt

from swearjar.config import settings


# ---------------------------------------------------------------------------
# 1. JWT verification
# ---------------------------------------------------------------------------

def decode_access_token(token: str) -> dict:
    """
    Decode and verify a bearer token issued by the identity provider.

    Raises:
        JWTError: If the token is expired, tampered with, or has the wrong audience.

    Returns:
        The decoded payload dictionary (contains "sub", "exp", etc.).
    """
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


def user_id_from_token(token: str) -> uuid.UUID:
    """
    Return the user id carried in a verified token's "sub" claim.

    Raises:
        JWTError: If the token fails verification.
        ValueError: If "sub" is missing or not a UUID.
    """
    payload = decode_access_token(token)
    subject = payload.get("sub")
    if subject is None:
        raise ValueError("Token has no subject")
    return uuid.UUID(subject)


# ---------------------------------------------------------------------------
# 2. Fernet encryption (for bank access tokens at rest)
# ---------------------------------------------------------------------------

# Fernet keys are URL-safe base64-encoded 32-byte keys.
_fernet = Fernet(settings.BANK_TOKEN_ENCRYPTION_KEY.encode())


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string value for storage in a LargeBinary column."""
    return _fernet.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """
    Decrypt a Fernet-encrypted value back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or
            the encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext).decode()


# ---------------------------------------------------------------------------
# 3. Webhook secrets
# ---------------------------------------------------------------------------

def settlement_secret_matches(presented: str | None) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode(), settings.SETTLEMENT_WEBHOOK_SECRET.encode())
