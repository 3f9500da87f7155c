"""
Garbage collection of expired auth rows.

Correctness never depends on this running: every expiry is also checked at
read time. The sweep only reclaims space and is scheduled by Celery beat.
"""

import logging
from datetime import timedelta
from typing import Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from authcore.core.config import settings
from authcore.core.database import utcnow
from authcore.models.auth_session import AuthSession
from authcore.models.refresh_token import RefreshToken
from authcore.models.spent_secret import SpentSecret
from authcore.models.verification_code import VerificationCode
from authcore.models.verifier import Verifier

logger = logging.getLogger(__name__)


def cleanup_expired_rows(db: Session) -> Dict[str, int]:
    """
    Delete expired codes, verifiers, sessions, refresh tokens and old tombstones.

    Args:
        db: Database session

    Returns:
        dict: Rows deleted per table
    """
    now = utcnow()
    spent_cutoff = now - timedelta(hours=settings.SPENT_SECRET_RETENTION_HOURS)

    try:
        expired_sessions = select(AuthSession.id).where(AuthSession.expiration_time < now)
        deleted = {
            "verification_codes": db.query(VerificationCode).filter(
                VerificationCode.expiration_time < now
            ).delete(synchronize_session=False),
            "refresh_tokens": db.query(RefreshToken).filter(
                (RefreshToken.expiration_time < now) | RefreshToken.session_id.in_(expired_sessions)
            ).delete(synchronize_session=False),
            "sessions": db.query(AuthSession).filter(
                AuthSession.expiration_time < now
            ).delete(synchronize_session=False),
            "verifiers": db.query(Verifier).filter(
                Verifier.expiration_time < now
            ).delete(synchronize_session=False),
            "spent_secrets": db.query(SpentSecret).filter(
                SpentSecret.spent_at < spent_cutoff
            ).delete(synchronize_session=False),
        }
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Expired auth rows deleted: {deleted}")
    return deleted
