"""
Provider configuration, validation and the normalized sign-in record.

Every provider adapter (GitHub, Google, an email sender, an SMS gateway,
a password form) is reduced to one of four config types here. The account
linker and the code engine are written against these configs and the
`SignInAttempt` record only, never against a concrete adapter.
"""

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Mapping, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

from authcore.core.exceptions import ProviderConfigError
from authcore.core.security import ALPHANUMERIC, DIGITS

logger = logging.getLogger(__name__)

PROVIDER_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")
MIN_CODE_LENGTH = 6


class AuthMethod(str, enum.Enum):
    """How the identity claim in a sign-in attempt was established."""
    OAUTH = "oauth"
    EMAIL = "email"  # Magic link
    PHONE = "phone"  # OTP
    CREDENTIALS = "credentials"


class ProviderType(str, enum.Enum):
    OAUTH = "oauth"
    EMAIL = "email"
    PHONE = "phone"
    CREDENTIALS = "credentials"


class Profile(BaseModel):
    """Profile claims produced by a provider adapter or a redeemed code."""
    name: Optional[str] = None
    image: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    phone: Optional[str] = None
    phone_verified: bool = False

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        """Emails compare case-insensitively; blank means absent."""
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = re.sub(r"[\s()-]", "", v)
        return v or None


class SignInAttempt(BaseModel):
    """Normalized inbound record from a provider adapter."""
    provider: str
    provider_account_id: str
    profile: Profile = Field(default_factory=Profile)
    auth_method_type: AuthMethod
    # Stored on the account when it is first created (e.g. granted scopes)
    provider_data: Optional[Dict[str, Any]] = None

    @field_validator("provider_account_id")
    @classmethod
    def require_account_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("provider_account_id must not be empty")
        return v


class ProviderAdapter(Protocol):
    """
    Capability implemented by each provider adapter: turn callback parameters
    into a verified sign-in attempt (e.g. exchange an OAuth code and fetch the
    user profile).
    """
    provider_id: str

    def verified_attempt(self, params: Mapping[str, Any]) -> SignInAttempt:
        ...


@dataclass(frozen=True)
class VerificationRequest:
    """What a delivery channel needs to send a code. Handed over after commit."""
    provider: str
    identifier: str
    code: str
    expires_in_seconds: int


@dataclass(frozen=True)
class ProviderConfig:
    id: str

    type: ClassVar[ProviderType]

    def validate(self) -> None:
        if not isinstance(self.id, str) or not PROVIDER_ID_PATTERN.match(self.id):
            raise ProviderConfigError(f"Invalid provider id: {self.id!r}")


@dataclass(frozen=True)
class OAuthProviderConfig(ProviderConfig):
    """OAuth / OIDC provider. Its email claim is trusted unless linking is disabled."""
    allow_dangerous_email_account_linking: bool = True

    type: ClassVar[ProviderType] = ProviderType.OAUTH

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.allow_dangerous_email_account_linking, bool):
            raise ProviderConfigError(
                f"Provider {self.id}: allow_dangerous_email_account_linking must be a boolean"
            )


@dataclass(frozen=True)
class _CodeProviderConfig(ProviderConfig):
    max_age_seconds: Optional[int] = None
    code_length: int = 6
    code_alphabet: str = DIGITS
    generate_code: Optional[Callable[[], str]] = None
    send_verification_request: Optional[Callable[[VerificationRequest], None]] = None

    def validate(self) -> None:
        super().validate()
        if self.max_age_seconds is not None and (
            isinstance(self.max_age_seconds, bool)
            or not isinstance(self.max_age_seconds, int)
            or self.max_age_seconds <= 0
        ):
            raise ProviderConfigError(f"Provider {self.id}: max_age_seconds must be a positive integer")
        if not isinstance(self.code_length, int) or self.code_length < MIN_CODE_LENGTH:
            raise ProviderConfigError(f"Provider {self.id}: code_length must be at least {MIN_CODE_LENGTH}")
        if not self.code_alphabet or len(set(self.code_alphabet)) < 2:
            raise ProviderConfigError(f"Provider {self.id}: code_alphabet needs at least two distinct characters")


@dataclass(frozen=True)
class EmailProviderConfig(_CodeProviderConfig):
    """Magic link / email code provider. Long alphanumeric codes by default."""
    code_length: int = 32
    code_alphabet: str = ALPHANUMERIC

    type: ClassVar[ProviderType] = ProviderType.EMAIL


@dataclass(frozen=True)
class PhoneProviderConfig(_CodeProviderConfig):
    """SMS OTP provider. Six digit codes by default."""

    type: ClassVar[ProviderType] = ProviderType.PHONE


@dataclass(frozen=True)
class CredentialsProviderConfig(_CodeProviderConfig):
    """
    Password / secret provider.

    `email_verified` declares that the application verifies the email before
    creating the account, which makes the email claim trusted for linking.
    """
    email_verified: bool = False

    type: ClassVar[ProviderType] = ProviderType.CREDENTIALS

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.email_verified, bool):
            raise ProviderConfigError(f"Provider {self.id}: email_verified must be a boolean")


PROVIDER_CLASSES = {
    ProviderType.OAUTH: OAuthProviderConfig,
    ProviderType.EMAIL: EmailProviderConfig,
    ProviderType.PHONE: PhoneProviderConfig,
    ProviderType.CREDENTIALS: CredentialsProviderConfig,
}

CODE_PROVIDER_TYPES = (ProviderType.EMAIL, ProviderType.PHONE, ProviderType.CREDENTIALS)


def provider_from_entry(entry: Mapping[str, Any]) -> ProviderConfig:
    """
    Build a provider config from a settings entry, e.g.
    {"id": "github", "type": "oauth", "allow_dangerous_email_account_linking": false}.

    Raises:
        ProviderConfigError: Unknown type or unexpected options
    """
    if not isinstance(entry, Mapping):
        raise ProviderConfigError(f"Provider entry must be a mapping, got {type(entry).__name__}")

    options = dict(entry)
    raw_type = options.pop("type", None)
    try:
        provider_type = ProviderType(raw_type)
    except ValueError:
        raise ProviderConfigError(f"Unknown provider type {raw_type!r} for provider {options.get('id')!r}")

    try:
        return PROVIDER_CLASSES[provider_type](**options)
    except TypeError as e:
        raise ProviderConfigError(f"Invalid options for provider {options.get('id')!r}: {e}")


class ProviderRegistry:
    """
    Validated set of configured providers, keyed by id.

    Construction validates every config, so a misconfiguration surfaces at
    startup rather than on the first sign-in.
    """

    def __init__(self, providers: Iterable[ProviderConfig]):
        self._providers: Dict[str, ProviderConfig] = {}
        for provider in providers:
            if not isinstance(provider, ProviderConfig):
                raise ProviderConfigError(f"Not a provider config: {provider!r}")
            provider.validate()
            if provider.id in self._providers:
                raise ProviderConfigError(f"Duplicate provider id: {provider.id}")
            self._providers[provider.id] = provider
        logger.info(f"Configured auth providers: {', '.join(sorted(self._providers)) or '(none)'}")

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any]]) -> "ProviderRegistry":
        return cls(provider_from_entry(entry) for entry in entries)

    def get(self, provider_id: str) -> ProviderConfig:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ProviderConfigError(f"Unknown provider: {provider_id!r}")

    def get_code_provider(self, provider_id: str) -> _CodeProviderConfig:
        """Provider that can issue verification codes (email, phone, credentials)."""
        provider = self.get(provider_id)
        if provider.type not in CODE_PROVIDER_TYPES:
            raise ProviderConfigError(f"Provider {provider_id} does not issue verification codes")
        return provider

    def ids(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)
