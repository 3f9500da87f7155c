from pydantic_settings import BaseSettings
from typing import Any, Dict, List, Optional, Union
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "authcore"

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "auth_db"

    # Full URL override (e.g. sqlite:///./auth.db for local runs and tests)
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (for the Celery maintenance worker)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # JWT Settings (RS256 - PEM encoded key pair)
    JWT_PRIVATE_KEY: str = ""
    JWT_PUBLIC_KEY: str = ""
    JWT_KEY_ID: str = "authcore-1"
    JWT_ALGORITHM: str = "RS256"
    JWT_ISSUER: str = "http://localhost:8000"
    JWT_AUDIENCE: str = "authcore"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Session Settings
    SESSION_EXPIRE_DAYS: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    REVOKE_SESSION_ON_REFRESH_REUSE: bool = True

    # Verification code / verifier lifetimes
    VERIFICATION_CODE_EXPIRE_MINUTES: int = 15
    VERIFIER_EXPIRE_MINUTES: int = 15
    SPENT_SECRET_RETENTION_HOURS: int = 24

    # Account linking
    LINK_TRANSACTION_ATTEMPTS: int = 3

    # Provider configuration - can be set as JSON string in .env
    AUTH_PROVIDERS: Union[List[Dict[str, Any]], str] = [
        {"id": "email", "type": "email"},
        {"id": "password", "type": "credentials"},
    ]

    @field_validator("AUTH_PROVIDERS", mode="before")
    @classmethod
    def parse_auth_providers(cls, v: Union[List[Dict[str, Any]], str]) -> List[Dict[str, Any]]:
        """Parse provider entries from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # Comma separated "id:type" pairs, e.g. "email:email,github:oauth"
                entries = []
                for item in v.split(","):
                    if not item.strip():
                        continue
                    provider_id, _, provider_type = item.strip().partition(":")
                    entries.append({"id": provider_id, "type": provider_type or provider_id})
                return entries
        return v

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
