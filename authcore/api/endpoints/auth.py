"""
Authentication endpoints for code, credentials and session handling.

- POST /signin/code: Issue a one-time code (email magic link / phone OTP)
- POST /verify-code: Redeem a code and receive session tokens
- POST /signup/credentials: Create a credentials account
- POST /signin/credentials: Authenticate with a secret
- POST /refresh: Rotate a refresh token
- POST /signout: End the current session
- GET /me: Current session and user

Clients only ever see generic failure messages; the detailed error kind is
logged server-side.
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.orm import Session

from authcore.core import signin
from authcore.core.database import get_db
from authcore.core.deps import get_auth_config, get_current_session, get_current_user
from authcore.core.exceptions import (
    AccountAlreadyExistsError,
    AmbiguousLinkError,
    AuthError,
    ProviderConfigError,
)
from authcore.core.providers import Profile
from authcore.core.signin import AuthConfig, SignInResult
from authcore.core.sessions import SessionTokens
from authcore.models.auth_session import AuthSession
from authcore.models.user import User
from authcore.schemas.auth import (
    CodeSignInRequest,
    CredentialsSignInRequest,
    CredentialsSignUpRequest,
    SendCodeResponse,
    SessionResponse,
    TokenRefreshRequest,
    TokenResponse,
    UserResponse,
    VerifyCodeRequest,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


def to_http_error(e: AuthError, action: str) -> HTTPException:
    """Map an auth error to a response carrying only its public message."""
    if isinstance(e, AmbiguousLinkError):
        logger.error(f"{action} failed: {type(e).__name__}: {e}")
    else:
        logger.info(f"{action} failed: {type(e).__name__}: {e}")

    if isinstance(e, ProviderConfigError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.public_message)
    if isinstance(e, AccountAlreadyExistsError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Account already exists")
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=e.public_message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_response(tokens: SessionTokens, is_new_user=None) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.token,
        refresh_token=tokens.refresh_token,
        session_id=tokens.session_id,
        user_id=tokens.user_id,
        expires_at=tokens.expiration_time,
        is_new_user=is_new_user,
    )


def _signin_response(result: SignInResult) -> TokenResponse:
    if result.hook_error is not None:
        # Sign-in stands; the hook failure was logged by the linker
        logger.warning(f"Signed in user {result.user_id} despite post-hook failure")
    return _token_response(result.tokens, is_new_user=result.is_new_user)


@router.post("/signin/code", status_code=202, response_model=SendCodeResponse)
def request_code(
    request: CodeSignInRequest,
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Issue a one-time code and hand it to the provider's delivery channel.

    The previous unredeemed code for the same address stops working.
    """
    try:
        sent = signin.send_code(db, config, request.provider, request.identifier, verifier_id=request.verifier)
    except AuthError as e:
        raise to_http_error(e, "Code request")

    return SendCodeResponse(
        provider=sent.provider,
        expires_at=sent.expiration_time,
        expires_in_seconds=sent.expires_in_seconds,
    )


@router.post("/verify-code", response_model=TokenResponse)
def verify_code(
    request: VerifyCodeRequest,
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Redeem a one-time code and start a session.

    Every failure (wrong, expired, already used) answers with the same 401.
    """
    try:
        result = signin.sign_in_with_code(
            db,
            config,
            request.provider,
            request.code,
            identifier=request.identifier,
            verifier_id=request.verifier,
        )
    except AuthError as e:
        raise to_http_error(e, "Code verification")
    return _signin_response(result)


@router.post("/signup/credentials", status_code=201, response_model=TokenResponse)
def sign_up(
    request: CredentialsSignUpRequest,
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Create a credentials account and its user.

    Returns session tokens for immediate sign-in.
    """
    account_id = str(request.email)
    try:
        result = signin.sign_up_with_credentials(
            db,
            config,
            request.provider,
            account_id,
            request.secret,
            profile=Profile(email=account_id, name=request.name),
        )
    except AuthError as e:
        raise to_http_error(e, "Credentials sign-up")
    return _signin_response(result)


@router.post("/signin/credentials", response_model=TokenResponse)
def sign_in(
    request: CredentialsSignInRequest,
    db: Session = Depends(get_db),
    config: AuthConfig = Depends(get_auth_config)
):
    """Authenticate with an account id (email) and secret."""
    try:
        result = signin.sign_in_with_credentials(
            db,
            config,
            request.provider,
            str(request.email),
            request.secret,
        )
    except AuthError as e:
        raise to_http_error(e, "Credentials sign-in")
    return _signin_response(result)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: TokenRefreshRequest,
    db: Session = Depends(get_db)
):
    """
    Rotate a refresh token.

    The presented token stops working; presenting it again ends the session.
    """
    try:
        tokens = signin.refresh_session(db, request.refresh_token)
    except AuthError as e:
        raise to_http_error(e, "Token refresh")
    return _token_response(tokens)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    session: AuthSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """End the current session and its refresh tokens."""
    signin.sign_out(db, session.id)


@router.get("/me", response_model=SessionResponse)
def get_me(
    session: AuthSession = Depends(get_current_session),
    user: User = Depends(get_current_user)
):
    """Get the current session and its user."""
    return SessionResponse(
        session_id=session.id,
        expires_at=session.expiration_time,
        user=UserResponse.model_validate(user),
    )
