"""
Discovery endpoints for services verifying session tokens on their own.

- GET /.well-known/jwks.json: Public key set
- GET /.well-known/openid-configuration: Issuer and key set location
"""

from fastapi import APIRouter

from authcore.core.config import settings
from authcore.core.security import get_jwks

router = APIRouter(prefix="/.well-known", tags=["Discovery"])


@router.get("/jwks.json")
def jwks():
    """Public keys for RS256 access token verification."""
    return get_jwks()


@router.get("/openid-configuration")
def openid_configuration():
    issuer = settings.JWT_ISSUER.rstrip("/")
    return {
        "issuer": settings.JWT_ISSUER,
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "id_token_signing_alg_values_supported": [settings.JWT_ALGORITHM],
        "subject_types_supported": ["public"],
        "response_types_supported": ["code"],
    }
