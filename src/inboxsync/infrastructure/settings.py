"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, ValidationError, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from inboxsync.domain.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "inboxsync"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    sync_api_token: SecretStr | None = None

    # Mailbox
    mail_transport: Literal["imap", "pop3"] = "imap"
    mail_host: str = ""
    mail_port: int | None = None
    mail_use_ssl: bool = True
    mail_username: str = ""
    mail_password: SecretStr = Field(default=SecretStr(""))
    mail_folder: str = "INBOX"
    mailbox_timeout_seconds: float = Field(default=30.0, gt=0)

    # Store
    store_backend: Literal["sqlite", "postgres"] = "sqlite"
    sqlite_db_path: str = "data/inboxsync.db"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: SecretStr = Field(default=SecretStr("postgres"))
    postgres_db: str = "inboxsync"
    postgres_connect_timeout: int = Field(default=10, ge=1)

    # Sync policy
    sync_selection: Literal["since-watermark", "explicit-ids", "full-scan-capped"] = "since-watermark"
    sync_disposition: str = "flag:\\Seen"
    sync_max_messages: int = Field(default=50, ge=1)
    body_max_length: int = Field(default=5000, ge=1)
    sender_sentinel: str = Field(default="unknown", min_length=1)
    subject_sentinel: str = Field(default="no subject", min_length=1)

    # Worker
    poll_interval_minutes: int = Field(default=5, ge=1)

    @computed_field
    @property
    def postgres_dsn(self) -> str:
        """Construct PostgreSQL connection string."""
        password = self.postgres_password.get_secret_value()
        return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def resolved_mail_port(self) -> int:
        """Explicit port, or the protocol default for the transport and SSL mode."""
        if self.mail_port is not None:
            return self.mail_port
        if self.mail_transport == "pop3":
            return 995 if self.mail_use_ssl else 110
        return 993 if self.mail_use_ssl else 143

    def require_mailbox(self) -> None:
        """Fail fast when the mailbox cannot possibly be reached."""
        missing = [
            name
            for name, value in (
                ("MAIL_HOST", self.mail_host),
                ("MAIL_USERNAME", self.mail_username),
                ("MAIL_PASSWORD", self.mail_password.get_secret_value()),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required mailbox settings: {', '.join(missing)}")


def load_settings() -> Settings:
    """Build settings, reporting validation problems as ConfigError."""
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
