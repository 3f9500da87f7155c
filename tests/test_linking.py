"""
Unit tests for account linking.

Tests:
- Trusted sign-ins converge on one user per verified email
- Untrusted sign-ins never merge
- Returning accounts keep their user
- Ambiguous trusted claims are rejected
- Custom linking callbacks and the post-hook
- Concurrent trusted sign-ins create a single user
"""

import threading
import uuid

import pytest

from authcore.core.database import utcnow
from authcore.core.exceptions import (
    AmbiguousLinkError,
    AuthorizationError,
    PostHookError,
    ProviderConfigError,
)
from authcore.core.linking import LinkingCallbacks, link_account
from authcore.crud import user as user_crud
from authcore.models.account import Account
from authcore.models.user import User


def create_verified_user(db, email=None, phone=None):
    user = User(
        email=email,
        email_verification_time=utcnow() if email else None,
        phone=phone,
        phone_verification_time=utcnow() if phone else None,
    )
    db.add(user)
    db.commit()
    return user


class TestTrustedLinking:
    """Trusted claims link to the existing verified user"""

    def test_first_sign_in_creates_verified_user(self, db_session, registry, oauth_attempt):
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com", name="Sara"))

        assert result.is_new_user is True
        assert result.existing_user_id is None
        user = db_session.query(User).one()
        assert user.id == result.user_id
        assert user.name == "Sara"
        assert user.email_verified is True

    def test_same_email_across_providers_is_one_user(self, db_session, registry, oauth_attempt):
        first = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))
        second = link_account(db_session, registry, oauth_attempt("google", "g-1", email="Sara@X.com"))

        assert second.user_id == first.user_id
        assert second.is_new_user is False
        assert second.existing_user_id == first.user_id
        assert db_session.query(User).count() == 1
        assert db_session.query(Account).count() == 2

    def test_links_to_user_with_verified_phone(self, db_session, registry, oauth_attempt):
        user = create_verified_user(db_session, phone="+15550102030")

        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", phone="+1 555 010 2030"))

        assert result.user_id == user.id
        assert db_session.query(User).count() == 1

    def test_unverified_copy_is_not_linked(self, db_session, registry, oauth_attempt):
        untrusted = link_account(db_session, registry, oauth_attempt("untrusted-oauth", "u-1", email="sara@x.com"))
        trusted = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))

        assert trusted.user_id != untrusted.user_id
        assert trusted.is_new_user is True
        assert db_session.query(User).count() == 2

    def test_unknown_provider(self, db_session, registry, oauth_attempt):
        with pytest.raises(ProviderConfigError):
            link_account(db_session, registry, oauth_attempt("gitlab", "gl-1", email="sara@x.com"))

        assert db_session.query(User).count() == 0


class TestUntrustedLinking:
    """Untrusted claims always produce a new user"""

    def test_identical_emails_never_merge(self, db_session, registry, oauth_attempt):
        first = link_account(db_session, registry, oauth_attempt("untrusted-oauth", "u-1", email="sara@x.com"))
        second = link_account(db_session, registry, oauth_attempt("untrusted-oauth", "u-2", email="sara@x.com"))

        assert first.user_id != second.user_id
        assert first.is_new_user and second.is_new_user
        assert db_session.query(User).count() == 2

    def test_untrusted_does_not_join_verified_user(self, db_session, registry, oauth_attempt):
        verified = create_verified_user(db_session, email="sara@x.com")

        result = link_account(db_session, registry, oauth_attempt("untrusted-oauth", "u-1", email="sara@x.com"))

        assert result.user_id != verified.id
        new_user = user_crud.get_user(db_session, result.user_id)
        assert new_user.email == "sara@x.com"
        assert new_user.email_verified is False


class TestReturningAccount:
    """An existing account fixes the user"""

    def test_returning_account_keeps_user(self, db_session, registry, oauth_attempt):
        first = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))
        again = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))

        assert again.user_id == first.user_id
        assert again.account_id == first.account_id
        assert again.is_new_user is False
        assert db_session.query(Account).count() == 1

    def test_profile_merged_without_identity_change(self, db_session, registry, oauth_attempt):
        first = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))
        again = link_account(
            db_session, registry,
            oauth_attempt("github", "gh-1", email="other@x.com", name="Sara", image="https://img/sara.png")
        )

        assert again.user_id == first.user_id
        user = user_crud.get_user(db_session, first.user_id)
        assert user.name == "Sara"
        assert user.image == "https://img/sara.png"
        assert user.email == "sara@x.com"


class TestAmbiguousClaims:
    """Claims pointing at two different users"""

    def test_email_and_phone_of_different_users(self, db_session, registry, oauth_attempt):
        create_verified_user(db_session, email="sara@x.com")
        create_verified_user(db_session, phone="+15550102030")

        with pytest.raises(AmbiguousLinkError):
            link_account(
                db_session, registry,
                oauth_attempt("github", "gh-1", email="sara@x.com", phone="+15550102030")
            )

        assert db_session.query(Account).count() == 0
        assert db_session.query(User).count() == 2


class TestCreateOrUpdateUserCallback:
    """Custom linking decisions"""

    def test_callback_decides_user(self, db_session, registry, oauth_attempt):
        chosen = create_verified_user(db_session, email="chosen@x.com")
        seen = []

        def choose(db, args):
            seen.append(args)
            return chosen.id

        callbacks = LinkingCallbacks(create_or_update_user=choose)
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert result.user_id == chosen.id
        assert result.is_new_user is False
        assert seen[0].existing_user_id is None
        assert seen[0].trusted is True
        assert seen[0].provider == "github"
        account = db_session.query(Account).one()
        assert account.user_id == chosen.id

    def test_callback_receives_trusted_match(self, db_session, registry, oauth_attempt):
        existing = create_verified_user(db_session, email="sara@x.com")
        seen = []

        def keep(db, args):
            seen.append(args)
            return args.existing_user_id

        callbacks = LinkingCallbacks(create_or_update_user=keep)
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert seen[0].existing_user_id == existing.id
        assert result.user_id == existing.id
        assert result.is_new_user is False

    def test_callback_creating_user(self, db_session, registry, oauth_attempt):
        def create(db, args):
            return args.existing_user_id or user_crud.create_user(db, args.profile, args.trusted).id

        callbacks = LinkingCallbacks(create_or_update_user=create)
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert result.is_new_user is True
        assert db_session.query(User).count() == 1

    def test_callback_returning_untrusted_user_is_not_new(self, db_session, registry, oauth_attempt):
        earlier = link_account(db_session, registry, oauth_attempt("untrusted-oauth", "u-1", email="sara@x.com"))

        callbacks = LinkingCallbacks(create_or_update_user=lambda db, args: earlier.user_id)
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert result.user_id == earlier.user_id
        assert result.existing_user_id is None
        assert result.is_new_user is False

    def test_callback_rejection_leaves_no_rows(self, db_session, registry, oauth_attempt):
        def reject(db, args):
            user_crud.create_user(db, args.profile, args.trusted)
            return None

        callbacks = LinkingCallbacks(create_or_update_user=reject)
        with pytest.raises(AuthorizationError):
            link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert db_session.query(User).count() == 0
        assert db_session.query(Account).count() == 0

    def test_callback_returning_unknown_user(self, db_session, registry, oauth_attempt):
        callbacks = LinkingCallbacks(create_or_update_user=lambda db, args: uuid.uuid4())

        with pytest.raises(AuthorizationError):
            link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert db_session.query(Account).count() == 0

    def test_returning_account_keeps_owner(self, db_session, registry, oauth_attempt):
        first = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"))
        other = create_verified_user(db_session, email="other@x.com")

        callbacks = LinkingCallbacks(create_or_update_user=lambda db, args: other.id)
        again = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert again.user_id == first.user_id
        assert db_session.query(Account).one().user_id == first.user_id


class TestAfterUserHook:
    """Post-hook runs after the identity commit"""

    def test_hook_called_with_user(self, db_session, registry, oauth_attempt):
        calls = []
        callbacks = LinkingCallbacks(after_user_created_or_updated=lambda db, args: calls.append(args))

        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert len(calls) == 1
        assert calls[0].user_id == result.user_id
        assert calls[0].existing_user_id is None
        assert result.hook_error is None

    def test_hook_failure_keeps_identity(self, db_session, registry, oauth_attempt):
        def failing_hook(db, args):
            db.add(User(name="written by hook"))
            db.flush()
            raise RuntimeError("profile service unavailable")

        callbacks = LinkingCallbacks(after_user_created_or_updated=failing_hook)
        result = link_account(db_session, registry, oauth_attempt("github", "gh-1", email="sara@x.com"), callbacks)

        assert isinstance(result.hook_error, PostHookError)
        assert result.hook_error.user_id == result.user_id
        assert isinstance(result.hook_error.cause, RuntimeError)
        assert db_session.query(User).count() == 1
        assert db_session.query(User).one().id == result.user_id
        assert db_session.query(Account).count() == 1


class TestConcurrentSignIns:
    """Two sign-ins for the same new trusted email"""

    def test_lost_race_links_to_winner(self, file_session_factory, registry, oauth_attempt, monkeypatch):
        real_find = user_crud.find_by_verified_email
        winner_id = uuid.uuid4()
        raced = []

        def find_after_competitor_commits(db, email):
            if not raced:
                raced.append(email)
                # The competing sign-in commits between our read and our insert
                other = file_session_factory()
                try:
                    other.add(User(id=winner_id, email=email, email_verification_time=utcnow()))
                    other.commit()
                finally:
                    other.close()
                return []
            return real_find(db, email)

        monkeypatch.setattr("authcore.crud.user.find_by_verified_email", find_after_competitor_commits)

        db = file_session_factory()
        try:
            result = link_account(db, registry, oauth_attempt("github", "gh-1", email="race@x.com"))

            assert raced == ["race@x.com"]
            assert result.user_id == winner_id
            assert result.is_new_user is False
            assert db.query(User).count() == 1
            assert db.query(Account).one().user_id == winner_id
        finally:
            db.close()

    def test_parallel_sign_ins_create_one_user(self, serialized_session_factory, registry, oauth_attempt):
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def sign_in(provider, subject):
            db = serialized_session_factory()
            try:
                barrier.wait()
                results.append(link_account(db, registry, oauth_attempt(provider, subject, email="race@x.com")))
            except Exception as e:
                errors.append(e)
            finally:
                db.close()

        threads = [
            threading.Thread(target=sign_in, args=("github", "gh-1")),
            threading.Thread(target=sign_in, args=("google", "g-1")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert len(results) == 2
        assert results[0].user_id == results[1].user_id
        assert sorted(r.is_new_user for r in results) == [False, True]

        db = serialized_session_factory()
        try:
            assert db.query(User).count() == 1
            assert db.query(Account).count() == 2
        finally:
            db.close()
