"""
User model: the canonical identity the application cares about.

A user is created by the account linker (or a custom linking callback) and
owns any number of accounts. This core never deletes users.
"""

import uuid
from sqlalchemy import Column, String, Index, Uuid, text
from sqlalchemy.orm import relationship
from authcore.core.database import Base, UTCDateTime, utcnow


class User(Base):
    """
    Canonical user identity.

    An email or phone counts as verified once its *_verification_time is set.
    At most one user may hold a given verified email (or verified phone); the
    partial unique indexes below make concurrent trusted sign-ins for the same
    address serialize in the database instead of creating duplicates.
    Unverified copies of an address (from untrusted providers) may repeat.
    """
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Profile
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)

    # Contact claims and their verification timestamps
    email = Column(String, nullable=True, index=True)
    email_verification_time = Column(UTCDateTime(timezone=True), nullable=True)
    phone = Column(String, nullable=True, index=True)
    phone_verification_time = Column(UTCDateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(timezone=True), nullable=True, onupdate=utcnow)

    # Relationships
    accounts = relationship("Account", back_populates="user")

    __table_args__ = (
        Index(
            "uq_users_verified_email", "email", unique=True,
            postgresql_where=text("email_verification_time IS NOT NULL"),
            sqlite_where=text("email_verification_time IS NOT NULL"),
        ),
        Index(
            "uq_users_verified_phone", "phone", unique=True,
            postgresql_where=text("phone_verification_time IS NOT NULL"),
            sqlite_where=text("phone_verification_time IS NOT NULL"),
        ),
    )

    @property
    def email_verified(self) -> bool:
        return self.email_verification_time is not None

    @property
    def phone_verified(self) -> bool:
        return self.phone_verification_time is not None

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', email_verified={self.email_verified})>"
