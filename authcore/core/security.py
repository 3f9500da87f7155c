"""
Security utilities for JWT signing, secret hashing and random code generation.

Session tokens are RS256 JWTs signed with the configured private key and
verified against the published JSON Web Key Set, so verification needs no
store access. Credentials secrets are hashed with bcrypt (passlib).
One-time codes and refresh secrets are high-entropy or short-lived and are
stored as SHA-256 digests so they can be looked up by value.
"""

import hashlib
import hmac
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwk, jwt
from passlib.context import CryptContext

from authcore.core.config import settings

# Password hashing context (bcrypt)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

DIGITS = string.digits
ALPHANUMERIC = string.ascii_letters + string.digits


def hash_secret(secret: str) -> str:
    """
    Hash a credentials secret using bcrypt.

    Note: Bcrypt has a 72-byte limit. Longer secrets are truncated.
    """
    secret_bytes = secret.encode('utf-8')[:72]
    return pwd_context.hash(secret_bytes)


def verify_secret(plain_secret: str, hashed_secret: str) -> bool:
    """Verify a plain secret against a bcrypt hash."""
    secret_bytes = plain_secret.encode('utf-8')[:72]
    return pwd_context.verify(secret_bytes, hashed_secret)


def generate_code(length: int, alphabet: str = DIGITS) -> str:
    """
    Generate a cryptographically random code.

    Uses the secrets module so codes cannot be predicted.

    Args:
        length: Number of characters
        alphabet: Characters to draw from (digits for OTPs, alphanumerics for links)

    Returns:
        str: Random code, e.g. "482913"
    """
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token (refresh secrets, verifier ids)."""
    return secrets.token_urlsafe(nbytes)


def hash_code(code: str) -> str:
    """SHA-256 hex digest used to store and look up codes and refresh secrets."""
    return hashlib.sha256(code.encode('utf-8')).hexdigest()


def digests_match(a: str, b: str) -> bool:
    """Constant-time comparison of two digests."""
    return hmac.compare_digest(a, b)


def create_access_token(
    user_id: UUID,
    session_id: UUID,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed JWT bound to a user and a session.

    Args:
        user_id: Becomes the `sub` claim
        session_id: Becomes the `sid` claim
        expires_delta: Optional lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token as a string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": str(user_id),
        "sid": str(session_id),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(
        to_encode,
        settings.JWT_PRIVATE_KEY,
        algorithm=settings.JWT_ALGORITHM,
        headers={"kid": settings.JWT_KEY_ID},
    )


def get_jwks() -> Dict[str, Any]:
    """
    Public key set used to verify session tokens.

    Returns:
        {"keys": [<RSA public JWK>]}
    """
    key = jwk.construct(settings.JWT_PUBLIC_KEY, algorithm=settings.JWT_ALGORITHM).to_dict()
    key.update({"kid": settings.JWT_KEY_ID, "use": "sig", "alg": settings.JWT_ALGORITHM})
    return {"keys": [key]}


def decode_token(token: str) -> dict:
    """
    Decode and validate a session JWT against the public key set.

    Checks signature, expiration, issuer and audience.

    Args:
        token: The JWT token to decode

    Returns:
        Dictionary containing the token payload

    Raises:
        JWTError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            get_jwks(),
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
        return payload
    except JWTError:
        raise
