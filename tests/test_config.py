"""Tests for application settings."""

from billing.core.config import Settings


class TestDatabaseSettings:
    """Test database pool settings."""

    def test_pool_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_POOL_SIZE", raising=False)
        monkeypatch.delenv("DATABASE_MAX_OVERFLOW", raising=False)

        settings = Settings()

        assert settings.database_pool_size == 10
        assert settings.database_max_overflow == 20

    def test_pool_from_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_POOL_SIZE", "4")
        monkeypatch.setenv("DATABASE_MAX_OVERFLOW", "0")

        settings = Settings()

        assert settings.database_pool_size == 4
        assert settings.database_max_overflow == 0
