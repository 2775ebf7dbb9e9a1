"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest
from bucket_edge import CacheSettings, OriginSettings
from bucket_edge.cache import MemoryResponseCache, NullResponseCache, S3ResponseCache, build_cache
from bucket_edge.settings import load_cache_settings_from_env, load_origin_settings_from_env
from pydantic import ValidationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "B2_BUCKET",
        "B2_BUCKET_ID",
        "B2_DOMAIN",
        "B2_KEY",
        "B2_KEY_ID",
        "B2_AUTH_ENDPOINT",
        "BUCKET_EDGE_BUCKET",
        "BUCKET_EDGE_DOMAIN",
        "BUCKET_EDGE_CACHE_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)


class TestOriginSettings:
    """Test OriginSettings configuration."""

    def test_default_settings(self):
        settings = OriginSettings()
        assert settings.scheme == "https"
        assert settings.domain == "f000.backblazeb2.com"
        assert settings.auth_endpoint.endswith("/b2_authorize_account")
        assert settings.listing_enabled is False

    def test_load_from_legacy_env(self, monkeypatch):
        """The historical B2_* variables are honoured."""
        monkeypatch.setenv("B2_BUCKET", "photos")
        monkeypatch.setenv("B2_BUCKET_ID", "abc")
        monkeypatch.setenv("B2_DOMAIN", "f002.backblazeb2.com/")
        monkeypatch.setenv("B2_KEY_ID", "kid")
        monkeypatch.setenv("B2_KEY", "secret")

        settings = load_origin_settings_from_env()

        assert settings.bucket == "photos"
        assert settings.domain == "f002.backblazeb2.com"
        assert settings.bucket_path == "/file/photos"
        assert settings.origin_base == "https://f002.backblazeb2.com"
        assert settings.listing_enabled is True

    def test_project_env_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("BUCKET_EDGE_BUCKET", "primary")
        monkeypatch.setenv("B2_BUCKET", "legacy")
        assert load_origin_settings_from_env().bucket == "primary"

    def test_rejects_unknown_scheme(self):
        with pytest.raises(ValidationError):
            OriginSettings(scheme="ftp")

    def test_rejects_oversized_listing_page(self):
        with pytest.raises(ValidationError):
            OriginSettings(listing_page_size=20000)


class TestCacheSettings:
    """Test CacheSettings configuration and adapter selection."""

    def test_default_backend_is_memory(self):
        settings = CacheSettings()
        assert settings.backend == "memory"
        assert isinstance(build_cache(settings), MemoryResponseCache)

    def test_backend_from_env_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("BUCKET_EDGE_CACHE_BACKEND", " NONE ")
        settings = load_cache_settings_from_env()
        assert settings.backend == "none"
        assert isinstance(build_cache(settings), NullResponseCache)

    def test_s3_backend(self):
        cache = build_cache(CacheSettings(backend="s3"))
        assert isinstance(cache, S3ResponseCache)

    def test_size_limits_from_env(self, monkeypatch):
        monkeypatch.setenv("BUCKET_EDGE_CACHE_MAX_OBJECT_SIZE", "1024")
        monkeypatch.setenv("BUCKET_EDGE_CACHE_MEMORY_MAX_BYTES", "4096")
        settings = load_cache_settings_from_env()
        assert settings.max_object_size == 1024
        assert settings.memory_max_bytes == 4096
        cache = build_cache(settings)
        assert isinstance(cache, MemoryResponseCache)
        assert cache._max_bytes == 4096

    def test_default_size_limits(self):
        settings = CacheSettings()
        assert settings.max_object_size == 50 * 1024 * 1024
        assert settings.memory_max_bytes == 256 * 1024 * 1024

    def test_rejects_unknown_backend(self):
        with pytest.raises(ValidationError):
            CacheSettings(backend="redis")
