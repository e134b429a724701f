"""Application configuration loaded from environment variables.

Settings for the database, session and OAuth state cookies, verification
token lifetimes, password hashing cost, OAuth providers, transactional
email, and at-rest encryption. Uses pydantic-settings for validation and
.env file support.
"""

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
_INSECURE_DEFAULT_PASSWORD = "gatekeep_dev_password"  # nosec B105

# Minimum length for STATE_SECRET (256 bits = 32 bytes)
_MIN_STATE_SECRET_LENGTH = 32

# One week, matching the default session lifetime
_DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "gatekeep"
    database_user: str = "gatekeep_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Sessions
    session_ttl_seconds: int = _DEFAULT_SESSION_TTL_SECONDS
    session_cookie_name: str = "session"
    session_cookie_path: str = "/"
    session_cookie_domain: str = ""
    session_cookie_secure: bool = True

    # HMAC key for OAuth state tokens
    state_secret: SecretStr = SecretStr("")

    # Verification token lifetimes
    email_verify_ttl_seconds: int = 24 * 60 * 60
    magic_link_ttl_seconds: int = 15 * 60
    password_reset_ttl_seconds: int = 60 * 60

    # Argon2id cost parameters
    password_memory_kib: int = 64 * 1024
    password_iterations: int = 3
    password_parallelism: int = 4

    # OAuth providers
    github_client_id: str = ""
    github_client_secret: SecretStr = SecretStr("")
    google_client_id: str = ""
    google_client_secret: SecretStr = SecretStr("")

    # Email
    email_from: str = "noreply@gatekeep.dev"
    resend_api_key: SecretStr = SecretStr("")
    email_timeout_seconds: float = 30.0
    email_max_attempts: int = 3
    email_backoff_seconds: float = 0.5
    email_failure_threshold: int = 5
    email_reset_timeout_seconds: float = 30.0

    # Fernet key for provider access tokens at rest
    encryption_key: SecretStr = SecretStr("")

    # Shared key for the admin routes (X-Admin-Key header)
    admin_api_key: SecretStr = SecretStr("")

    # Frontend URL (OAuth callbacks redirect back here)
    frontend_url: str = "http://localhost:3000"

    # Backend URL (magic links and verification links hit the API directly)
    backend_url: str = "http://localhost:8000"

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate lifetimes, dispatcher tunables and production secrets.

        Checks:
        - TTLs and email dispatcher tunables must be positive (all environments)
        - Database password must not be the default in production
        - STATE_SECRET must be >= 32 chars in production
        - ENCRYPTION_KEY and ADMIN_API_KEY must be set in production
        - Session cookies must be Secure in production
        """
        positive = {
            "SESSION_TTL_SECONDS": self.session_ttl_seconds,
            "EMAIL_VERIFY_TTL_SECONDS": self.email_verify_ttl_seconds,
            "MAGIC_LINK_TTL_SECONDS": self.magic_link_ttl_seconds,
            "PASSWORD_RESET_TTL_SECONDS": self.password_reset_ttl_seconds,
            "EMAIL_TIMEOUT_SECONDS": self.email_timeout_seconds,
            "EMAIL_MAX_ATTEMPTS": self.email_max_attempts,
            "EMAIL_FAILURE_THRESHOLD": self.email_failure_threshold,
            "EMAIL_RESET_TIMEOUT_SECONDS": self.email_reset_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)
        if self.email_backoff_seconds < 0:
            msg = (
                "EMAIL_BACKOFF_SECONDS cannot be negative. "
                f"Got: {self.email_backoff_seconds}"
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if len(self.state_secret.get_secret_value()) < _MIN_STATE_SECRET_LENGTH:
                msg = (
                    f"STATE_SECRET must be at least {_MIN_STATE_SECRET_LENGTH} "
                    'characters. Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

            if not self.encryption_key.get_secret_value():
                msg = (
                    "ENCRYPTION_KEY must be set in production. Generate with: "
                    'python -c "from cryptography.fernet import Fernet; '
                    'print(Fernet.generate_key().decode())"'
                )
                raise ValueError(msg)

            if not self.admin_api_key.get_secret_value():
                msg = "ADMIN_API_KEY must be set in production."
                raise ValueError(msg)

            if not self.session_cookie_secure:
                msg = "SESSION_COOKIE_SECURE must be true in production."
                raise ValueError(msg)

        return self


settings = Settings()
