"""
Verification code engine.

Issues and redeems one-time codes for email (magic link), phone (OTP) and
credentials flows, and verifiers for OAuth state / PKCE round trips.

Lifecycle of a code: Issued -> Redeemed | Expired | Invalidated, all terminal.
- At most one live code per provider + identifier; issuing a new one
  invalidates the old
- Expiry is checked lazily at redemption time; the periodic sweep only
  reclaims space
- Redemption deletes the row with a conditional DELETE inside the
  transaction, so of two concurrent redeemers exactly one sees rowcount 1
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from authcore.core.config import settings
from authcore.core.database import run_in_transaction, utcnow
from authcore.core.exceptions import (
    CodeAlreadyUsedError,
    CodeExpiredError,
    CodeNotFoundError,
    MalformedCodeError,
)
from authcore.core.providers import ProviderType, Profile
from authcore.core.security import generate_code, hash_code
from authcore.crud import account as account_crud
from authcore.crud import user as user_crud
from authcore.models.spent_secret import SpentReason, SpentSecret
from authcore.models.verification_code import VerificationCode
from authcore.models.verifier import Verifier

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 256
VERIFIER_SCOPE = "verifier"


@dataclass(frozen=True)
class IssuedCode:
    code: str
    provider: str
    identifier: str
    expiration_time: datetime
    expires_in_seconds: int


@dataclass(frozen=True)
class RedeemedCode:
    """What the account linker needs after a successful redemption."""
    provider: str
    identifier: str
    account_id: Optional[UUID]
    profile: Profile


def validate_code_format(code) -> str:
    """
    Reject empty or malformed codes before touching the store.

    Raises:
        MalformedCodeError
    """
    if not isinstance(code, str):
        raise MalformedCodeError("Code must be a string")
    code = code.strip()
    if not code or len(code) > MAX_CODE_LENGTH or any(c.isspace() for c in code):
        raise MalformedCodeError("Empty or malformed code")
    return code


def _tombstone(db: Session, scope: str, secret_hash: str, reason: SpentReason, identifier: Optional[str] = None) -> None:
    db.add(SpentSecret(scope=scope, secret_hash=secret_hash, identifier=identifier, reason=reason))


def _is_spent(db: Session, scope: str, secret_hash: str, identifier: Optional[str] = None) -> bool:
    query = db.query(SpentSecret).filter(
        SpentSecret.scope == scope,
        SpentSecret.secret_hash == secret_hash
    )
    if identifier is not None:
        query = query.filter(SpentSecret.identifier == identifier)
    return query.first() is not None


def _contacts_for(provider, identifier: str):
    """Which contact a redemption verifies: phone providers verify numbers, all others emails."""
    if provider.type is ProviderType.PHONE:
        return None, identifier
    return identifier, None


def invalidate_codes(db: Session, provider_id: str, identifier: str) -> int:
    """
    Invalidate every live code for provider + identifier.

    Does not commit.

    Returns:
        int: Number of codes invalidated
    """
    live = db.query(VerificationCode).filter(
        VerificationCode.provider == provider_id,
        VerificationCode.identifier == identifier
    ).all()
    for row in live:
        _tombstone(db, provider_id, row.code_hash, SpentReason.INVALIDATED, identifier)
        db.delete(row)
    db.flush()
    return len(live)


def issue_code(
    db: Session,
    provider,
    identifier: str,
    ttl: Optional[timedelta] = None,
    verifier_id: Optional[UUID] = None,
) -> IssuedCode:
    """
    Issue a one-time code for provider + identifier.

    - Invalidates any previous unredeemed code for the same pair
    - Generates a random code (provider's generate_code, else its alphabet/length)
    - Stores only the SHA-256 digest with expiration = now + ttl

    Delivery is the caller's job, after this commits.

    Args:
        db: Database session
        provider: Code-issuing provider config
        identifier: Account reference (email address or phone number)
        ttl: Lifetime (default: provider max_age_seconds, else settings)
        verifier_id: Optional verifier the redemption must present

    Returns:
        IssuedCode: Contains the plain code, which is never stored
    """
    if not identifier or not identifier.strip():
        raise MalformedCodeError("Cannot issue a code without an identifier")

    if ttl is None:
        if provider.max_age_seconds:
            ttl = timedelta(seconds=provider.max_age_seconds)
        else:
            ttl = timedelta(minutes=settings.VERIFICATION_CODE_EXPIRE_MINUTES)

    def replace_live_code():
        invalidated = invalidate_codes(db, provider.id, identifier)

        if provider.generate_code:
            code = provider.generate_code()
        else:
            code = generate_code(provider.code_length, provider.code_alphabet)
        code = validate_code_format(code)

        existing_account = account_crud.get_by_provider_account(db, provider.id, identifier)
        email, phone = _contacts_for(provider, identifier)
        expiration_time = utcnow() + ttl

        db.add(VerificationCode(
            provider=provider.id,
            identifier=identifier,
            account_id=existing_account.id if existing_account else None,
            code_hash=hash_code(code),
            email=email,
            phone=phone,
            verifier_id=verifier_id,
            expiration_time=expiration_time,
        ))
        db.flush()
        return code, expiration_time, invalidated

    # The unique (provider, identifier) index rejects a concurrent reissue; the loser re-runs and supersedes it
    code, expiration_time, invalidated = run_in_transaction(
        db, replace_live_code, attempts=settings.LINK_TRANSACTION_ATTEMPTS
    )

    if invalidated:
        logger.info(f"Invalidated {invalidated} previous {provider.id} code(s) before reissue")
    logger.info(f"Issued {provider.id} verification code (expires {expiration_time.isoformat()})")

    return IssuedCode(
        code=code,
        provider=provider.id,
        identifier=identifier,
        expiration_time=expiration_time,
        expires_in_seconds=int(ttl.total_seconds()),
    )


def redeem_code(
    db: Session,
    provider,
    code: str,
    identifier: Optional[str] = None,
    verifier_id: Optional[UUID] = None,
) -> RedeemedCode:
    """
    Redeem a code exactly once.

    Security checks:
    - Code must be well formed (checked before any lookup)
    - Code must exist for this provider (and identifier, when given)
    - Code bound to a verifier must be redeemed with that verifier
    - Code must not be expired (an expired row is deleted)
    - Only one concurrent redemption can delete the row

    On success the bound verifier is consumed and, if the account already
    exists, its user's email/phone is marked verified.

    Returns:
        RedeemedCode: Account reference and the verified profile to apply

    Raises:
        MalformedCodeError, CodeNotFoundError, CodeExpiredError, CodeAlreadyUsedError
    """
    code = validate_code_format(code)
    code_hash = hash_code(code)

    query = db.query(VerificationCode).filter(
        VerificationCode.code_hash == code_hash,
        VerificationCode.provider == provider.id
    )
    if identifier is not None:
        query = query.filter(VerificationCode.identifier == identifier)
    rows = query.with_for_update().all()

    if not rows:
        spent = _is_spent(db, provider.id, code_hash, identifier)
        db.rollback()
        if spent:
            raise CodeAlreadyUsedError("Code was already redeemed or superseded")
        raise CodeNotFoundError("No matching code")

    if len(rows) > 1:
        # Short codes can collide across identifiers; the caller must say whose code it is
        db.rollback()
        raise CodeNotFoundError("Code is ambiguous without an identifier")

    row = rows[0]

    if row.verifier_id is not None and row.verifier_id != verifier_id:
        db.rollback()
        logger.warning(f"{provider.id} code redeemed without its bound verifier")
        raise CodeNotFoundError("Code was issued to a different client")

    now = utcnow()
    if now > row.expiration_time:
        db.delete(row)
        db.commit()
        raise CodeExpiredError("Code has expired")

    try:
        deleted = db.query(VerificationCode).filter(
            VerificationCode.id == row.id
        ).delete(synchronize_session=False)
        if deleted != 1:
            raise CodeAlreadyUsedError("Code was redeemed concurrently")

        _tombstone(db, provider.id, code_hash, SpentReason.REDEEMED, row.identifier)

        if row.verifier_id is not None:
            db.query(Verifier).filter(Verifier.id == row.verifier_id).delete(synchronize_session=False)
            _tombstone(db, VERIFIER_SCOPE, hash_code(str(row.verifier_id)), SpentReason.CONSUMED)

        account_id = row.account_id
        if account_id is not None:
            account = account_crud.get_account(db, account_id)
            if account is not None:
                user_crud.mark_contact_verified(db, account.user_id, email=row.email, phone=row.phone, verified_at=now)
            else:
                account_id = None

        result = RedeemedCode(
            provider=provider.id,
            identifier=row.identifier,
            account_id=account_id,
            profile=Profile(
                email=row.email,
                email_verified=row.email is not None,
                phone=row.phone,
                phone_verified=row.phone is not None,
            ),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Redeemed {provider.id} verification code")
    return result


def create_verifier(db: Session, ttl: Optional[timedelta] = None) -> Verifier:
    """
    Start an OAuth / magic-link round trip.

    Returns:
        Verifier: Its id travels with the client; it is consumed exactly once
    """
    ttl = ttl or timedelta(minutes=settings.VERIFIER_EXPIRE_MINUTES)
    verifier = Verifier(expiration_time=utcnow() + ttl)
    db.add(verifier)
    db.commit()
    db.refresh(verifier)
    return verifier


def _live_verifier(db: Session, verifier_id: UUID) -> Verifier:
    verifier = db.query(Verifier).filter(Verifier.id == verifier_id).with_for_update().first()
    if verifier is None:
        spent = _is_spent(db, VERIFIER_SCOPE, hash_code(str(verifier_id)))
        db.rollback()
        if spent:
            raise CodeAlreadyUsedError("Verifier was already consumed")
        raise CodeNotFoundError("Unknown verifier")

    if utcnow() > verifier.expiration_time:
        db.delete(verifier)
        db.commit()
        raise CodeExpiredError("Verifier has expired")
    return verifier


def sign_verifier(db: Session, verifier_id: UUID, signature: str) -> Verifier:
    """
    Bind the OAuth state / PKCE value to a verifier.

    A verifier is signed once; the callback must present the same signature.
    """
    if not signature:
        raise MalformedCodeError("Empty verifier signature")

    verifier = _live_verifier(db, verifier_id)
    if verifier.signature is not None:
        db.rollback()
        raise CodeAlreadyUsedError("Verifier is already signed")

    verifier.signature = signature
    db.commit()
    db.refresh(verifier)
    return verifier


def consume_verifier(db: Session, verifier_id: UUID, signature: Optional[str] = None) -> Verifier:
    """
    Consume a verifier exactly once.

    Args:
        db: Database session
        verifier_id: Verifier id presented by the client
        signature: Required when the verifier was signed; must match

    Raises:
        CodeNotFoundError, CodeExpiredError, CodeAlreadyUsedError
    """
    verifier = _live_verifier(db, verifier_id)

    if verifier.signature is not None and verifier.signature != signature:
        db.rollback()
        logger.warning(f"Verifier {verifier_id} presented with a mismatched signature")
        raise CodeNotFoundError("Verifier signature mismatch")

    try:
        # Codes bound to this verifier cannot be redeemed any more
        bound = db.query(VerificationCode).filter(VerificationCode.verifier_id == verifier_id).all()
        for row in bound:
            _tombstone(db, row.provider, row.code_hash, SpentReason.INVALIDATED, row.identifier)
            db.delete(row)
        db.flush()

        deleted = db.query(Verifier).filter(Verifier.id == verifier_id).delete(synchronize_session=False)
        if deleted != 1:
            raise CodeAlreadyUsedError("Verifier was consumed concurrently")

        _tombstone(db, VERIFIER_SCOPE, hash_code(str(verifier_id)), SpentReason.CONSUMED)
        db.expunge(verifier)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return verifier
