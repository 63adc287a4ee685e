"""Tests for livedeck.config and backend selection."""

from __future__ import annotations

import pytest

from livedeck.config import DEFAULT_TOKEN_TTL, Settings
from livedeck.errors import ConfigurationError
from livedeck.memory_backend import MemoryBackend
from livedeck.redis_backend import RedisBackend
from livedeck.state import create_backend


class TestSettings:

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.backend == "memory"
        assert settings.port == 3000
        assert settings.heartbeat_interval == 15.0
        assert settings.reaction_ttl == 5.0
        assert settings.token_ttl == DEFAULT_TOKEN_TTL
        assert settings.control_secret is None

    def test_frozen(self) -> None:
        settings = Settings()
        with pytest.raises(AttributeError):
            settings.port = 1  # type: ignore[misc]

    def test_unknown_backend(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown backend"):
            Settings(backend="postgres")

    def test_non_positive_heartbeat(self) -> None:
        with pytest.raises(ConfigurationError):
            Settings(heartbeat_interval=0)


class TestFromEnv:

    def test_empty_environment_gives_defaults(self) -> None:
        assert Settings.from_env({}) == Settings()

    def test_reads_variables(self) -> None:
        settings = Settings.from_env({
            "SERVER_HOST": "127.0.0.1",
            "PORT": "8080",
            "LIVEDECK_BACKEND": "REDIS",
            "REDIS_URL": "redis://cache:6379/0",
            "LIVEDECK_CONTROL_SECRET": "s3cret",
            "LIVEDECK_HEARTBEAT_SECONDS": "5",
            "LIVEDECK_REACTION_TTL_SECONDS": "2.5",
        })
        assert settings.host == "127.0.0.1"
        assert settings.port == 8080
        assert settings.backend == "redis"
        assert settings.redis_url == "redis://cache:6379/0"
        assert settings.control_secret == "s3cret"
        assert settings.heartbeat_interval == 5.0
        assert settings.reaction_ttl == 2.5

    def test_kv_url_fallback(self) -> None:
        settings = Settings.from_env({"KV_URL": "redis://kv:6379"})
        assert settings.redis_url == "redis://kv:6379"

    def test_redis_url_wins_over_kv_url(self) -> None:
        settings = Settings.from_env({"REDIS_URL": "redis://a", "KV_URL": "redis://b"})
        assert settings.redis_url == "redis://a"

    def test_empty_secret_means_unset(self) -> None:
        assert Settings.from_env({"LIVEDECK_CONTROL_SECRET": ""}).control_secret is None


class TestCreateBackend:

    def test_memory(self) -> None:
        assert isinstance(create_backend(Settings()), MemoryBackend)

    def test_redis(self) -> None:
        backend = create_backend(Settings(backend="redis", redis_url="redis://localhost:6379"))
        assert isinstance(backend, RedisBackend)

    def test_redis_without_url(self) -> None:
        with pytest.raises(ConfigurationError, match="REDIS_URL"):
            create_backend(Settings(backend="redis"))
