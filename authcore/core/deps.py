"""
FastAPI dependencies for authentication.

These dependencies are used to protect endpoints and extract session context.
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from authcore.core.database import get_db
from authcore.core.exceptions import AuthError
from authcore.core.sessions import get_active_session
from authcore.core.signin import AuthConfig
from authcore.crud import user as user_crud
from authcore.models.auth_session import AuthSession
from authcore.models.user import User

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme (Authorization: Bearer <token>)
security = HTTPBearer()


def get_auth_config(request: Request) -> AuthConfig:
    """Provider registry and linking callbacks built at startup."""
    return request.app.state.auth_config


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> AuthSession:
    """
    Extract and validate the current session from the access token.

    This dependency:
    1. Extracts the Bearer token from Authorization header
    2. Verifies the JWT signature against the public key set
    3. Requires the session it names to still exist

    Raises:
        HTTPException 401: If token is invalid or the session has ended
    """
    try:
        return get_active_session(db, credentials.credentials)
    except AuthError as e:
        logger.info(f"Rejected access token: {type(e).__name__}: {e}")
        raise credentials_exception()


async def get_current_user(
    session: AuthSession = Depends(get_current_session),
    db: Session = Depends(get_db)
) -> User:
    """
    Fetch the user owning the current session.

    Raises:
        HTTPException 401: If the user no longer exists
    """
    user = user_crud.get_user(db, session.user_id)
    if user is None:
        raise credentials_exception()
    return user
