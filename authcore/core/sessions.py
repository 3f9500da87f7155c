"""
Session and token issuance.

A session row backs every signed access token (JWT with `sub` = user id and
`sid` = session id) and a single-use chain of refresh tokens. Refresh tokens
are handed out as "<token id>.<secret>"; only the SHA-256 of the secret is
stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

from jose import JWTError
from sqlalchemy.orm import Session

from authcore.core.config import settings
from authcore.core.database import utcnow
from authcore.core.exceptions import (
    InvalidRefreshTokenError,
    RefreshTokenReuseError,
    SessionNotFoundError,
)
from authcore.core.security import create_access_token, decode_token, digests_match, generate_token, hash_code
from authcore.models.auth_session import AuthSession
from authcore.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionTokens:
    session_id: UUID
    user_id: UUID
    token: str
    refresh_token: str
    expiration_time: datetime


def _issue_refresh_token(db: Session, session: AuthSession, parent_id: Optional[UUID] = None) -> str:
    """Add a refresh token row for `session`. Does not commit."""
    secret = generate_token()
    expiration_time = min(
        utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        session.expiration_time,
    )
    row = RefreshToken(
        session_id=session.id,
        parent_id=parent_id,
        secret_hash=hash_code(secret),
        expiration_time=expiration_time,
    )
    db.add(row)
    db.flush()
    return f"{row.id}.{secret}"


def _parse_refresh_token(refresh_token: str) -> Tuple[UUID, str]:
    if not isinstance(refresh_token, str):
        raise InvalidRefreshTokenError("Malformed refresh token")
    token_id, sep, secret = refresh_token.strip().partition(".")
    if not sep or not secret:
        raise InvalidRefreshTokenError("Malformed refresh token")
    try:
        return UUID(token_id), secret
    except ValueError:
        raise InvalidRefreshTokenError("Malformed refresh token")


def _delete_session(db: Session, session_id: UUID) -> int:
    """Delete a session and its refresh tokens. Does not commit."""
    db.query(RefreshToken).filter(RefreshToken.session_id == session_id).delete(synchronize_session=False)
    return db.query(AuthSession).filter(AuthSession.id == session_id).delete(synchronize_session=False)


def create_session(db: Session, user_id: UUID) -> SessionTokens:
    """
    Start a session for a signed-in user.

    Creates:
    1. Session row expiring after SESSION_EXPIRE_DAYS
    2. Signed access token bound to user and session
    3. First refresh token of the session's rotation chain

    Returns:
        SessionTokens
    """
    try:
        session = AuthSession(
            user_id=user_id,
            expiration_time=utcnow() + timedelta(days=settings.SESSION_EXPIRE_DAYS),
        )
        db.add(session)
        db.flush()

        refresh_token = _issue_refresh_token(db, session)
        tokens = SessionTokens(
            session_id=session.id,
            user_id=user_id,
            token=create_access_token(user_id, session.id),
            refresh_token=refresh_token,
            expiration_time=session.expiration_time,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Created session {tokens.session_id} for user {user_id}")
    return tokens


def refresh(db: Session, refresh_token: str) -> SessionTokens:
    """
    Rotate a refresh token and mint a new access token.

    The presented token is marked rotated with a conditional UPDATE; of two
    concurrent refreshes with the same token, only one succeeds.

    Raises:
        InvalidRefreshTokenError: Malformed, unknown, expired, or session gone
        RefreshTokenReuseError: Token was already rotated (session revoked
            when REVOKE_SESSION_ON_REFRESH_REUSE is on)
    """
    token_id, secret = _parse_refresh_token(refresh_token)

    row = db.query(RefreshToken).filter(RefreshToken.id == token_id).with_for_update().first()
    if row is None or not digests_match(row.secret_hash, hash_code(secret)):
        db.rollback()
        raise InvalidRefreshTokenError("Unknown refresh token")

    now = utcnow()
    session = db.query(AuthSession).filter(AuthSession.id == row.session_id).first()
    if session is None or now > session.expiration_time:
        if session is not None:
            _delete_session(db, session.id)
        db.commit()
        raise InvalidRefreshTokenError("Session has ended")

    if row.is_rotated:
        _handle_reuse(db, row)

    if now > row.expiration_time:
        db.delete(row)
        db.commit()
        raise InvalidRefreshTokenError("Refresh token has expired")

    try:
        rotated = db.query(RefreshToken).filter(
            RefreshToken.id == row.id,
            RefreshToken.rotated_at.is_(None)
        ).update({"rotated_at": now}, synchronize_session=False)
    except Exception:
        db.rollback()
        raise
    if rotated != 1:
        _handle_reuse(db, row)

    try:
        new_refresh_token = _issue_refresh_token(db, session, parent_id=row.id)
        tokens = SessionTokens(
            session_id=session.id,
            user_id=session.user_id,
            token=create_access_token(session.user_id, session.id),
            refresh_token=new_refresh_token,
            expiration_time=session.expiration_time,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Rotated refresh token for session {tokens.session_id}")
    return tokens


def _handle_reuse(db: Session, row: RefreshToken) -> None:
    """Reject a rotated token; optionally revoke the whole session."""
    session_id = row.session_id
    logger.warning(f"Refresh token reuse detected for session {session_id} (token {row.id})")
    if settings.REVOKE_SESSION_ON_REFRESH_REUSE:
        _delete_session(db, session_id)
        db.commit()
        logger.warning(f"Revoked session {session_id} after refresh token reuse")
    else:
        db.rollback()
    raise RefreshTokenReuseError("Refresh token was already used")


def invalidate_session(db: Session, session_id: UUID) -> bool:
    """
    Delete a session and its refresh tokens.

    Access tokens already issued stay cryptographically valid until they
    expire; use get_active_session where immediate revocation matters.

    Returns:
        bool: True if a session was deleted
    """
    try:
        deleted = _delete_session(db, session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if deleted:
        logger.info(f"Invalidated session {session_id}")
    return bool(deleted)


def invalidate_user_sessions(db: Session, user_id: UUID, except_session_id: Optional[UUID] = None) -> int:
    """
    Delete every session of a user, optionally keeping one.

    Returns:
        int: Number of sessions deleted
    """
    query = db.query(AuthSession.id).filter(AuthSession.user_id == user_id)
    if except_session_id is not None:
        query = query.filter(AuthSession.id != except_session_id)
    session_ids = [session_id for (session_id,) in query.all()]

    try:
        for session_id in session_ids:
            _delete_session(db, session_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Invalidated {len(session_ids)} session(s) for user {user_id}")
    return len(session_ids)


def verify_access_token(token: str) -> dict:
    """
    Verify an access token against the public key set, without store access.

    Raises:
        SessionNotFoundError: Bad signature, expired, or missing claims
    """
    try:
        claims = decode_token(token)
    except JWTError as e:
        raise SessionNotFoundError(f"Invalid access token: {e}")
    if not claims.get("sub") or not claims.get("sid"):
        raise SessionNotFoundError("Access token lacks subject or session claims")
    return claims


def get_active_session(db: Session, token: str) -> AuthSession:
    """
    Verify an access token and require its session to still exist.

    Raises:
        SessionNotFoundError
    """
    claims = verify_access_token(token)
    try:
        session_id = UUID(claims["sid"])
        user_id = UUID(claims["sub"])
    except ValueError:
        raise SessionNotFoundError("Malformed session claims")

    session = db.query(AuthSession).filter(
        AuthSession.id == session_id,
        AuthSession.user_id == user_id
    ).first()
    if session is None or utcnow() > session.expiration_time:
        raise SessionNotFoundError(f"Session {session_id} is no longer active")
    return session
