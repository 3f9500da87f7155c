"""
Account linking: resolve a sign-in attempt to one canonical user.

The whole find-or-create decision runs in a single transaction against the
identity store. Concurrent sign-ins for the same trusted address are
serialized by the unique indexes on accounts and verified contacts: the
losing transaction fails its insert, is rolled back, and re-runs, at which
point it sees the winner's rows and links to them.

Customization is injected, never subclassed:
- create_or_update_user(db, CreateOrUpdateUserArgs) -> user id | None
- after_user_created_or_updated(db, AfterUserArgs) -> None
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from authcore.core.config import settings
from authcore.core.database import run_in_transaction
from authcore.core.exceptions import (
    AccountAlreadyExistsError,
    AmbiguousLinkError,
    AuthorizationError,
    PostHookError,
)
from authcore.core.providers import AuthMethod, Profile, ProviderRegistry, SignInAttempt
from authcore.core.trust import is_trusted
from authcore.crud import account as account_crud
from authcore.crud import user as user_crud
from authcore.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateOrUpdateUserArgs:
    """What a custom linking callback decides on."""
    existing_user_id: Optional[UUID]
    existing_account_id: Optional[UUID]
    profile: Profile
    provider: str
    type: AuthMethod
    trusted: bool


@dataclass(frozen=True)
class AfterUserArgs:
    user_id: UUID
    existing_user_id: Optional[UUID]


CreateOrUpdateUser = Callable[[Session, CreateOrUpdateUserArgs], Optional[UUID]]
AfterUserCreatedOrUpdated = Callable[[Session, AfterUserArgs], None]


@dataclass
class LinkingCallbacks:
    create_or_update_user: Optional[CreateOrUpdateUser] = None
    after_user_created_or_updated: Optional[AfterUserCreatedOrUpdated] = None


@dataclass
class LinkResult:
    user_id: UUID
    account_id: UUID
    is_new_user: bool
    existing_user_id: Optional[UUID] = None
    hook_error: Optional[PostHookError] = None


def find_unique_verified_user(db: Session, profile: Profile) -> Optional[UUID]:
    """
    The single user already holding the profile's email and/or phone verified.

    Raises:
        AmbiguousLinkError: The claims point at more than one user
    """
    matches = set()
    if profile.email:
        matches.update(user.id for user in user_crud.find_by_verified_email(db, profile.email))
    if profile.phone:
        matches.update(user.id for user in user_crud.find_by_verified_phone(db, profile.phone))

    if len(matches) > 1:
        logger.error(f"Verified contact claims match {len(matches)} distinct users: {sorted(str(m) for m in matches)}")
        raise AmbiguousLinkError("Verified email/phone matches more than one user")
    return next(iter(matches), None)


def _resolve_with_callback(
    db: Session,
    callback: CreateOrUpdateUser,
    args: CreateOrUpdateUserArgs,
) -> Tuple[UUID, bool]:
    """
    Ask create_or_update_user for the user.

    Returns:
        The chosen user id, and whether the callback inserted that user
    """
    inserted = set()

    def track_inserted_user(session, instance):
        if isinstance(instance, User):
            inserted.add(instance.id)

    event.listen(db, "pending_to_persistent", track_inserted_user)
    try:
        user_id = callback(db, args)
        db.flush()
    finally:
        event.remove(db, "pending_to_persistent", track_inserted_user)

    if user_id is None:
        raise AuthorizationError(f"Sign-in with {args.provider} rejected by create_or_update_user")
    if user_crud.get_user(db, user_id) is None:
        raise AuthorizationError(f"create_or_update_user returned unknown user {user_id}")
    return user_id, user_id in inserted


def _link_once(
    db: Session,
    registry: ProviderRegistry,
    callbacks: LinkingCallbacks,
    attempt: SignInAttempt,
    secret_hash: Optional[str] = None,
) -> LinkResult:
    provider = registry.get(attempt.provider)
    trusted = is_trusted(provider, attempt.auth_method_type)
    profile = attempt.profile

    account = account_crud.get_by_provider_account(db, provider.id, attempt.provider_account_id)

    if account is not None:
        if secret_hash is not None:
            raise AccountAlreadyExistsError(f"{provider.id} account already exists")

        # Returning user: identity is fixed by the account
        existing_user_id = account.user_id
        if callbacks.create_or_update_user:
            user_id, _ = _resolve_with_callback(db, callbacks.create_or_update_user, CreateOrUpdateUserArgs(
                existing_user_id=existing_user_id,
                existing_account_id=account.id,
                profile=profile,
                provider=provider.id,
                type=attempt.auth_method_type,
                trusted=trusted,
            ))
            if user_id != existing_user_id:
                logger.warning(
                    f"create_or_update_user returned {user_id} for account {account.id} "
                    f"owned by {existing_user_id}; keeping the existing owner"
                )
        else:
            user = user_crud.get_user(db, existing_user_id)
            user_crud.merge_profile(db, user, profile, trusted)
        return LinkResult(
            user_id=existing_user_id,
            account_id=account.id,
            is_new_user=False,
            existing_user_id=existing_user_id,
        )

    existing_user_id = find_unique_verified_user(db, profile) if trusted else None

    if callbacks.create_or_update_user:
        user_id, is_new_user = _resolve_with_callback(db, callbacks.create_or_update_user, CreateOrUpdateUserArgs(
            existing_user_id=existing_user_id,
            existing_account_id=None,
            profile=profile,
            provider=provider.id,
            type=attempt.auth_method_type,
            trusted=trusted,
        ))
    elif existing_user_id is not None:
        user = user_crud.get_user(db, existing_user_id)
        user_crud.merge_profile(db, user, profile, trusted)
        user_id = existing_user_id
        is_new_user = False
    else:
        user_id = user_crud.create_user(db, profile, trusted).id
        is_new_user = True

    account = account_crud.create_account(
        db, user_id, provider.id, attempt.provider_account_id,
        secret_hash=secret_hash,
        provider_data=attempt.provider_data,
    )
    return LinkResult(
        user_id=user_id,
        account_id=account.id,
        is_new_user=is_new_user,
        existing_user_id=existing_user_id,
    )


def _run_after_user_hook(db: Session, hook: AfterUserCreatedOrUpdated, result: LinkResult) -> None:
    """
    Run the post-hook in its own transaction.

    The identity transaction is already committed; a failing hook only loses
    its own writes and is reported on the result.
    """
    try:
        hook(db, AfterUserArgs(user_id=result.user_id, existing_user_id=result.existing_user_id))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"after_user_created_or_updated failed for user {result.user_id}: {e}", exc_info=True)
        result.hook_error = PostHookError(result.user_id, e)


def link_account(
    db: Session,
    registry: ProviderRegistry,
    attempt: SignInAttempt,
    callbacks: Optional[LinkingCallbacks] = None,
    secret_hash: Optional[str] = None,
) -> LinkResult:
    """
    Map an incoming (provider, provider_account_id, profile) to a user.

    1. Existing account -> its user (profile merged, identity unchanged)
    2. Trusted claim -> link to the single user holding the verified
       email/phone, or create one with it verified
    3. Untrusted claim -> always a new user
    4. A configured create_or_update_user callback makes the decision instead
    5. after_user_created_or_updated runs afterwards in its own transaction

    Args:
        db: Database session
        registry: Configured providers
        attempt: Normalized sign-in record
        callbacks: Optional customization
        secret_hash: Hashed credentials secret stored on a newly created account

    Returns:
        LinkResult

    Raises:
        ProviderConfigError: Unknown or misconfigured provider
        AmbiguousLinkError: Trusted claims match more than one user
        AuthorizationError: The custom callback rejected the sign-in
        AccountAlreadyExistsError: secret_hash given for an existing account
    """
    callbacks = callbacks or LinkingCallbacks()

    result = run_in_transaction(
        db,
        lambda: _link_once(db, registry, callbacks, attempt, secret_hash),
        attempts=settings.LINK_TRANSACTION_ATTEMPTS,
    )

    if result.is_new_user:
        logger.info(f"Created user {result.user_id} via {attempt.provider} ({attempt.auth_method_type.value})")
    else:
        logger.info(f"Linked {attempt.provider} account {result.account_id} to user {result.user_id}")

    if callbacks.after_user_created_or_updated:
        _run_after_user_hook(db, callbacks.after_user_created_or_updated, result)

    return result
