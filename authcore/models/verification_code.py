"""
Verification code model for email (magic link), phone (OTP) and credentials
flows.

Only the SHA-256 digest of a code is stored. A row is live until it is
redeemed, superseded by a newer code for the same provider + identifier, or
found expired; in each case the row is deleted.
"""

import uuid
from sqlalchemy import Column, String, ForeignKey, Index, Uuid
from authcore.core.database import Base, UTCDateTime, utcnow


class VerificationCode(Base):
    """
    One-time code.

    - `identifier` is the account reference the code was issued for (email
      address or phone number); `account_id` is set when that account
      already existed at issue time
    - `email` / `phone` are the contacts marked verified on redemption
    - `verifier_id` binds the code to the browser that requested it
    """
    __tablename__ = "auth_verification_codes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    provider = Column(String, nullable=False)
    identifier = Column(String, nullable=False)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("auth_accounts.id", ondelete="CASCADE"), nullable=True)

    code_hash = Column(String(64), nullable=False)

    # Contacts verified by a successful redemption
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    verifier_id = Column(Uuid(as_uuid=True), ForeignKey("auth_verifiers.id", ondelete="SET NULL"), nullable=True)

    expiration_time = Column(UTCDateTime(timezone=True), nullable=False)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_auth_verification_codes_code_provider", "code_hash", "provider"),
        Index("uq_auth_verification_codes_provider_identifier", "provider", "identifier", unique=True),
        Index("ix_auth_verification_codes_expiration_time", "expiration_time"),
    )

    def __repr__(self):
        return f"<VerificationCode(provider={self.provider}, identifier={self.identifier}, expiration_time={self.expiration_time})>"
