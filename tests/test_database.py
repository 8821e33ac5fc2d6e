"""Tests for engine option selection in app.database."""
from app.config import Settings
from app.database import engine_options, normalize_database_url


def test_postgres_url_uses_asyncpg():
    assert (
        normalize_database_url("postgresql://u:p@db:5432/courtside")
        == "postgresql+asyncpg://u:p@db:5432/courtside"
    )
    assert normalize_database_url("sqlite+aiosqlite://") == "sqlite+aiosqlite://"


def test_pool_sizing_from_settings():
    settings = Settings(DATABASE_URL="postgresql+asyncpg://db/courtside", DB_POOL_SIZE=3)
    options = engine_options(settings.DATABASE_URL, settings)
    assert options["pool_size"] == 3
    assert options["max_overflow"] == settings.DB_MAX_OVERFLOW
    assert options["pool_pre_ping"] is True


def test_sqlite_skips_pool_sizing():
    settings = Settings(DATABASE_URL="sqlite+aiosqlite://", LOG_LEVEL="debug")
    assert engine_options(settings.DATABASE_URL, settings) == {"echo": True}
