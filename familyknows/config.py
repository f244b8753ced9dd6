"""
Configuration and settings for the backup service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str, env_name: str) -> AliasChoices:
    # Accept both the field name (for kwargs) and the environment variable.
    return AliasChoices(name, env_name)


class Settings(BaseSettings):
    """Environment-backed settings for the backup service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Remote data service (any SQLAlchemy URL; Postgres expected)
    database_url: Optional[str] = Field(
        default=None, validation_alias=_env("database_url", "DATABASE_URL")
    )

    # Google OAuth2
    google_client_id: Optional[str] = Field(
        default=None, validation_alias=_env("google_client_id", "GOOGLE_CLIENT_ID")
    )
    google_client_secret: Optional[str] = Field(
        default=None,
        validation_alias=_env("google_client_secret", "GOOGLE_CLIENT_SECRET"),
    )
    google_redirect_uri: str = Field(
        default="familyknows://auth/callback",
        validation_alias=_env("google_redirect_uri", "GOOGLE_REDIRECT_URI"),
    )
    google_scopes: list[str] = Field(
        default=[
            "openid",
            "profile",
            "email",
            "https://www.googleapis.com/auth/drive.file",
        ]
    )
    google_auth_endpoint: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth"
    )
    google_token_endpoint: str = Field(default="https://oauth2.googleapis.com/token")
    google_revoke_endpoint: str = Field(default="https://oauth2.googleapis.com/revoke")
    google_userinfo_endpoint: str = Field(
        default="https://www.googleapis.com/oauth2/v2/userinfo"
    )

    # Google Drive
    drive_api_base: str = Field(default="https://www.googleapis.com/drive/v3")
    drive_upload_base: str = Field(
        default="https://www.googleapis.com/upload/drive/v3"
    )
    backup_folder_name: str = Field(
        default="FamilyKnows Backups",
        validation_alias=_env("backup_folder_name", "FAMILYKNOWS_BACKUP_FOLDER"),
    )
    backup_file_prefix: str = Field(default="FamilyKnows")

    # Behaviour
    request_timeout: float = Field(
        default=30.0,
        validation_alias=_env("request_timeout", "FAMILYKNOWS_REQUEST_TIMEOUT"),
    )
    restore_concurrency: int = Field(
        default=4,
        ge=1,
        validation_alias=_env(
            "restore_concurrency", "FAMILYKNOWS_RESTORE_CONCURRENCY"
        ),
    )
    refresh_expired_tokens: bool = Field(
        default=False,
        validation_alias=_env(
            "refresh_expired_tokens", "FAMILYKNOWS_REFRESH_EXPIRED_TOKENS"
        ),
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=_env(
            "use_in_memory_backends", "FAMILYKNOWS_USE_IN_MEMORY_BACKENDS"
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
