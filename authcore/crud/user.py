"""
CRUD operations for users.

Lookups used by the account linker. None of these commit; callers own the
transaction boundary.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from authcore.core.database import utcnow
from authcore.core.providers import Profile
from authcore.models.user import User


def get_user(db: Session, user_id: UUID) -> Optional[User]:
    """Get user by id."""
    return db.query(User).filter(User.id == user_id).first()


def find_by_verified_email(db: Session, email: str) -> List[User]:
    """
    Users holding `email` as a verified address.

    The partial unique index keeps this at zero or one row; the list is
    returned so callers can detect a broken invariant instead of guessing.
    """
    return db.query(User).filter(
        User.email == email,
        User.email_verification_time.isnot(None)
    ).all()


def find_by_verified_phone(db: Session, phone: str) -> List[User]:
    """Users holding `phone` as a verified number. See find_by_verified_email."""
    return db.query(User).filter(
        User.phone == phone,
        User.phone_verification_time.isnot(None)
    ).all()


def create_user(db: Session, profile: Profile, trusted: bool) -> User:
    """
    Create a user from profile claims.

    Args:
        db: Database session
        profile: Normalized profile
        trusted: Whether the email/phone claims are verified by policy

    Returns:
        User: The new (flushed) user
    """
    now = utcnow()
    user = User(
        name=profile.name,
        image=profile.image,
        email=profile.email,
        email_verification_time=now if trusted and profile.email else None,
        phone=profile.phone,
        phone_verification_time=now if trusted and profile.phone else None,
    )
    db.add(user)
    db.flush()
    return user


def merge_profile(db: Session, user: User, profile: Profile, trusted: bool) -> User:
    """
    Merge profile claims into an existing user without changing its identity.

    Fills empty fields only. A trusted claim marks the matching address
    verified unless another user already holds it verified.
    """
    if profile.name and not user.name:
        user.name = profile.name
    if profile.image and not user.image:
        user.image = profile.image
    if profile.email and not user.email:
        user.email = profile.email
    if profile.phone and not user.phone:
        user.phone = profile.phone

    if trusted:
        now = utcnow()
        if profile.email and user.email == profile.email and user.email_verification_time is None:
            if not find_by_verified_email(db, profile.email):
                user.email_verification_time = now
        if profile.phone and user.phone == profile.phone and user.phone_verification_time is None:
            if not find_by_verified_phone(db, profile.phone):
                user.phone_verification_time = now

    db.flush()
    return user


def mark_contact_verified(
    db: Session,
    user_id: UUID,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    verified_at: Optional[datetime] = None,
) -> Optional[User]:
    """
    Mark a user's email and/or phone verified after a code redemption.

    Only applies to the address the user actually holds, and only while no
    other user holds it verified; otherwise it stays unverified.
    """
    user = get_user(db, user_id)
    if not user:
        return None

    verified_at = verified_at or utcnow()
    if email and user.email == email and user.email_verification_time is None:
        if not find_by_verified_email(db, email):
            user.email_verification_time = verified_at
    if phone and user.phone == phone and user.phone_verification_time is None:
        if not find_by_verified_phone(db, phone):
            user.phone_verification_time = verified_at
    db.flush()
    return user
