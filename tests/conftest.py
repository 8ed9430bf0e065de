import os
import sys
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("AVAILABILITY_CACHE_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))

from hive_booking.core.availability_cache import availability_cache
from hive_booking.core.rate_limiter import rate_limiter
from hive_booking.core.security import create_access_token
from hive_booking.db.base import Base
from hive_booking.db.models import AvailabilityBlock, TherapistProfile, User, UserRole
from hive_booking.db.session import get_db
from hive_booking.main import app

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def next_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A date on ``weekday`` (0 = Monday) at least a week from today."""
    today = datetime.now(UTC).date()
    return today + timedelta(days=(weekday - today.weekday()) % 7 + 7 * weeks_ahead)


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rate_limiter.reset()
    availability_cache.reset()


@pytest.fixture()
def db_session() -> Session:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client() -> TestClient:
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_therapist(db_session: Session):
    def factory(
        email: str = "therapist@example.com",
        display_name: str = "Dr Hive",
        weekly: dict[int, list[tuple[int, int]]] | None = None,
        timezone: str = "Europe/London",
    ) -> TherapistProfile:
        user = User(email=email, full_name=display_name, role=UserRole.THERAPIST.value)
        db_session.add(user)
        db_session.flush()
        profile = TherapistProfile(user_id=user.id, display_name=display_name, timezone=timezone)
        db_session.add(profile)
        db_session.flush()
        for day_of_week, blocks in (weekly or {}).items():
            for start_minute, end_minute in blocks:
                db_session.add(
                    AvailabilityBlock(
                        therapist_id=profile.id,
                        day_of_week=day_of_week,
                        start_minute=start_minute,
                        end_minute=end_minute,
                    )
                )
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return factory


@pytest.fixture()
def make_user(db_session: Session):
    def factory(email: str = "client@example.com", role: UserRole = UserRole.CLIENT) -> User:
        user = User(email=email, full_name=email.split("@")[0], role=role.value)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def auth_headers():
    def factory(user: User) -> dict[str, str]:
        token = create_access_token(subject=str(user.id), extra_claims={"role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture()
def monday() -> date:
    return next_weekday(0)
