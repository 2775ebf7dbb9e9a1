from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OriginSettings(BaseSettings):
    """Configuration for the object-storage origin."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    bucket: str = Field(
        default="",
        validation_alias=AliasChoices("BUCKET_EDGE_BUCKET", "B2_BUCKET"),
    )
    bucket_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BUCKET_EDGE_BUCKET_ID", "B2_BUCKET_ID"),
    )
    domain: str = Field(
        default="f000.backblazeb2.com",
        validation_alias=AliasChoices("BUCKET_EDGE_DOMAIN", "B2_DOMAIN"),
    )
    scheme: Literal["http", "https"] = Field(
        default="https",
        validation_alias="BUCKET_EDGE_ORIGIN_SCHEME",
    )
    key_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BUCKET_EDGE_KEY_ID", "B2_KEY_ID"),
    )
    key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BUCKET_EDGE_KEY", "B2_KEY"),
    )
    auth_endpoint: str = Field(
        default="https://api.backblazeb2.com/b2api/v2/b2_authorize_account",
        validation_alias=AliasChoices("BUCKET_EDGE_AUTH_ENDPOINT", "B2_AUTH_ENDPOINT"),
    )
    listing_page_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        validation_alias="BUCKET_EDGE_LISTING_PAGE_SIZE",
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        validation_alias="BUCKET_EDGE_TIMEOUT",
    )
    read_timeout: float = Field(
        default=300.0,
        gt=0,
        validation_alias="BUCKET_EDGE_READ_TIMEOUT",
    )

    @field_validator("domain", mode="before")
    @classmethod
    def _strip_domain(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @property
    def bucket_path(self) -> str:
        """Path prefix under which the origin serves the bucket's objects."""
        return f"/file/{self.bucket}"

    @property
    def origin_base(self) -> str:
        return f"{self.scheme}://{self.domain}"

    @property
    def listing_enabled(self) -> bool:
        """Check if the credentials needed for the index page are configured."""
        return bool(self.bucket_id and self.key_id and self.key)


class CacheSettings(BaseSettings):
    """Configuration for the shared response cache."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    backend: Literal["memory", "s3", "none"] = Field(
        default="memory",
        validation_alias="BUCKET_EDGE_CACHE_BACKEND",
    )
    endpoint: str = Field(
        default="http://127.0.0.1:9000",
        validation_alias="BUCKET_EDGE_CACHE_ENDPOINT",
    )
    access_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices(
            "BUCKET_EDGE_CACHE_ACCESS_KEY",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices(
            "BUCKET_EDGE_CACHE_SECRET_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias="BUCKET_EDGE_CACHE_SESSION_TOKEN",
    )
    region: str = Field(
        default="us-east-1",
        validation_alias="BUCKET_EDGE_CACHE_REGION",
    )
    bucket_location: str = Field(
        default="us-east-1",
        validation_alias="BUCKET_EDGE_CACHE_BUCKET_LOCATION",
    )
    bucket_name: str = Field(
        default="bucket-edge-cache",
        validation_alias="BUCKET_EDGE_CACHE_BUCKET",
    )
    max_object_size: int = Field(
        default=50 * 1024 * 1024,
        ge=0,
        validation_alias="BUCKET_EDGE_CACHE_MAX_OBJECT_SIZE",
    )
    memory_max_bytes: int = Field(
        default=256 * 1024 * 1024,
        ge=0,
        validation_alias="BUCKET_EDGE_CACHE_MEMORY_MAX_BYTES",
    )

    @field_validator("backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


def load_origin_settings_from_env() -> OriginSettings:
    """Load origin settings from environment variables.

    Returns:
        OriginSettings instance populated from environment variables.
    """
    return OriginSettings()


def load_cache_settings_from_env() -> CacheSettings:
    """Load cache settings from environment variables.

    Returns:
        CacheSettings instance populated from environment variables.
    """
    return CacheSettings()
