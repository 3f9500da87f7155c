"""
Session model: one authenticated client lifetime.

Created at successful sign-in; deleted on sign-out, revocation or expiry.
Issued JWTs stay valid until their own `exp`; handlers that need immediate
revocation check that the session row still exists.
"""

import uuid
from sqlalchemy import Column, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from authcore.core.database import Base, UTCDateTime, utcnow


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    creation_time = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    expiration_time = Column(UTCDateTime(timezone=True), nullable=False)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<AuthSession(id={self.id}, user_id={self.user_id}, expiration_time={self.expiration_time})>"
