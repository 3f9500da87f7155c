"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown (in-memory and file-backed SQLite)
- Provider configuration with a capturing code sender
- FastAPI test client
"""

import os

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _generate_key_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


# Settings are read on first import of authcore
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = _generate_key_pair()
os.environ["JWT_PRIVATE_KEY"] = TEST_PRIVATE_KEY
os.environ["JWT_PUBLIC_KEY"] = TEST_PUBLIC_KEY
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
os.environ["JSON_LOGS"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from authcore import models  # noqa: E402,F401
from authcore.core.database import Base, get_db  # noqa: E402
from authcore.core.deps import get_auth_config  # noqa: E402
from authcore.core.linking import LinkingCallbacks  # noqa: E402
from authcore.core.providers import (  # noqa: E402
    AuthMethod,
    CredentialsProviderConfig,
    EmailProviderConfig,
    OAuthProviderConfig,
    PhoneProviderConfig,
    Profile,
    ProviderRegistry,
    SignInAttempt,
)
from authcore.core.signin import AuthConfig  # noqa: E402
from main import app  # noqa: E402


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    """
    Create a fresh database session for each test.
    Drops every table after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def _file_engine(path, serialized=False):
    file_engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    if serialized:
        @event.listens_for(file_engine, "connect")
        def disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(file_engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=file_engine)
    return file_engine


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory on a file-backed SQLite database.

    Each session gets its own connection, so a test can commit from a second
    session in the middle of another session's transaction.
    """
    file_engine = _file_engine(tmp_path / "auth.db")
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


@pytest.fixture
def serialized_session_factory(tmp_path):
    """
    Session factory whose transactions start with BEGIN IMMEDIATE.

    Concurrent writers from different threads wait for each other's commit
    instead of failing with "database is locked".
    """
    file_engine = _file_engine(tmp_path / "auth-serialized.db", serialized=True)

    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


@pytest.fixture
def sent_codes():
    """Verification requests handed to delivery channels, in order."""
    return []


@pytest.fixture
def registry(sent_codes):
    return ProviderRegistry([
        EmailProviderConfig(id="resend", send_verification_request=sent_codes.append),
        PhoneProviderConfig(id="sms", send_verification_request=sent_codes.append),
        OAuthProviderConfig(id="github"),
        OAuthProviderConfig(id="google"),
        OAuthProviderConfig(id="untrusted-oauth", allow_dangerous_email_account_linking=False),
        CredentialsProviderConfig(id="password", send_verification_request=sent_codes.append),
        CredentialsProviderConfig(id="password-verified", email_verified=True),
    ])


@pytest.fixture
def auth_config(registry):
    return AuthConfig(registry=registry, callbacks=LinkingCallbacks())


@pytest.fixture
def client(db_session, auth_config):
    """
    FastAPI test client with overridden database and provider dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_config] = lambda: auth_config

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


class FakeOAuthAdapter:
    """Provider adapter returning a fixed verified profile."""

    def __init__(self, provider_id: str, subject: str, provider_data=None, **profile):
        self.provider_id = provider_id
        self.subject = subject
        self.provider_data = provider_data
        self.profile = Profile(**profile)
        self.calls = []

    def verified_attempt(self, params):
        self.calls.append(dict(params))
        return SignInAttempt(
            provider=self.provider_id,
            provider_account_id=self.subject,
            profile=self.profile,
            auth_method_type=AuthMethod.OAUTH,
            provider_data=self.provider_data,
        )


@pytest.fixture
def oauth_adapter():
    """Factory for fake OAuth adapters."""
    return FakeOAuthAdapter


@pytest.fixture
def oauth_attempt():
    """Factory for OAuth sign-in attempts."""
    def make(provider: str, subject: str, email=None, **profile):
        return SignInAttempt(
            provider=provider,
            provider_account_id=subject,
            profile=Profile(email=email, email_verified=email is not None, **profile),
            auth_method_type=AuthMethod.OAUTH,
        )
    return make
