"""Shared pytest fixtures for Courtside tests.

Service and API tests run against a throwaway SQLite database (aiosqlite).
Every transaction opens with ``BEGIN IMMEDIATE`` so concurrent writers
serialize the way row locks make them serialize on PostgreSQL.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CLOUD_SQL_USE_UNIX_SOCKET", "false")

import uuid
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base
from app.models.user import PlayerProfile, User
from app.schemas.matching import CandidateProfile

# Seoul City Hall; ~0.009 degrees of latitude is 1 km.
BASE_LAT = 37.5665
BASE_LON = 126.9780
KM_PER_DEG_LAT = 111.195


def lat_offset_km(km: float) -> float:
    return BASE_LAT + km / KM_PER_DEG_LAT


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'courtside_test.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_player(db_session):
    """Factory inserting a ``User`` with a ``PlayerProfile``; returns the user."""

    async def _make_player(
        name: str | None = None,
        ntrp_level: float | None = 4.0,
        distance_km: float | None = 0.0,
        location_privacy: bool = False,
        gender: str | None = "male",
        age: int | None = 30,
        play_types: list[str] | None = None,
        preferred_times: list[str] | None = None,
        playing_frequency: str | None = "regular",
        is_active: bool = True,
        last_login_at: datetime | None = None,
    ) -> User:
        name = name or f"player-{uuid.uuid4().hex[:8]}"
        user = User(
            email=f"{name}@courtside.test",
            display_name=name,
            is_active=is_active,
            last_login_at=last_login_at or datetime.now(timezone.utc),
        )
        db_session.add(user)
        await db_session.flush()

        birth_date = date(date.today().year - age, 1, 1) if age is not None else None

        db_session.add(
            PlayerProfile(
                user_id=user.id,
                ntrp_level=ntrp_level,
                playing_frequency=playing_frequency,
                play_types=play_types or ["singles"],
                preferred_times=preferred_times or ["evening"],
                latitude=lat_offset_km(distance_km) if distance_km is not None else None,
                longitude=BASE_LON if distance_km is not None else None,
                location_privacy=location_privacy,
                gender=gender,
                birth_date=birth_date,
            )
        )
        await db_session.flush()
        return user

    return _make_player


@pytest.fixture
def candidate():
    """Factory for in-memory ``CandidateProfile`` snapshots."""

    def _candidate(**overrides) -> CandidateProfile:
        fields = {
            "user_id": uuid.uuid4(),
            "display_name": "candidate",
            "ntrp_level": 4.0,
            "playing_frequency": "regular",
            "play_types": ["singles"],
            "preferred_times": ["evening"],
            "latitude": BASE_LAT,
            "longitude": BASE_LON,
            "gender": "male",
            "age": 30,
            "overall_reputation": 100.0,
            "last_login_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }
        distance_km = overrides.pop("distance_km", None)
        if distance_km is not None:
            fields["latitude"] = lat_offset_km(distance_km)
        fields.update(overrides)
        return CandidateProfile(**fields)

    return _candidate
