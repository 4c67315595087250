"""Application configuration using pydantic-settings."""

import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, PLAID_ENVIRONMENTS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the system keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them. Secrets are read for the configured ``PLAID_ENVIRONMENT``
    (process environment first, then the ``.env`` file, then the default).
    """

    def _plaid_environment(self) -> str | None:
        env = os.environ.get("PLAID_ENVIRONMENT")
        if env is None:
            env_file = self.config.get("env_file")
            if isinstance(env_file, str) and Path(env_file).is_file():
                env = dotenv_values(env_file).get("PLAID_ENVIRONMENT")
        if env is None:
            env = self.settings_cls.model_fields["PLAID_ENVIRONMENT"].default
        env = env.lower()
        return env if env in PLAID_ENVIRONMENTS else None

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name, self._plaid_environment())
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./clientlink.db"
    DATABASE_TIMEOUT_SECONDS: float = 15.0

    # Plaid credentials and Hosted Link options
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"
    PLAID_WEBHOOK_URL: str = ""
    PLAID_CLIENT_NAME: str = "CPA Client Portal"
    PLAID_TIMEOUT_SECONDS: float = 30.0
    PLAID_LINK_URL_LIFETIME_SECONDS: int = 14400

    # Access token encryption
    ENCRYPTION_KEY_NAME: str = "plaid_access_token_v1"

    # Webhook ingestion and sync
    WEBHOOK_DEDUP_WINDOW_SECONDS: int = 60
    INITIAL_SYNC_ON_LINK: bool = True
    TRANSACTION_SYNC_MAX_RETRIES: int = 3

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("WEBHOOK_DEDUP_WINDOW_SECONDS", "TRANSACTION_SYNC_MAX_RETRIES")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
