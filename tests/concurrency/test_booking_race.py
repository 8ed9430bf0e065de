from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from threading import Barrier

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from hive_booking.core.config import settings
from hive_booking.core.exceptions import SlotConflictError
from hive_booking.db.base import Base
from hive_booking.db.models import Appointment, AvailabilityBlock, TherapistProfile, User, UserRole
from hive_booking.services.booking_service import reserve_appointment


def _next_monday():
    today = datetime.now(UTC).date()
    return today + timedelta(days=(0 - today.weekday()) % 7 + 7)


def _seed(SessionLocal, client_count: int) -> tuple[int, list[int]]:
    seed_session = SessionLocal()
    therapist_user = User(email="race-therapist@example.com", role=UserRole.THERAPIST.value)
    clients = [User(email=f"race-client-{index}@example.com", role=UserRole.CLIENT.value) for index in range(client_count)]
    seed_session.add_all([therapist_user, *clients])
    seed_session.flush()
    profile = TherapistProfile(user_id=therapist_user.id, display_name="Race Therapist")
    seed_session.add(profile)
    seed_session.flush()
    seed_session.add(
        AvailabilityBlock(therapist_id=profile.id, day_of_week=0, start_minute=9 * 60, end_minute=17 * 60)
    )
    seed_session.commit()
    therapist_id = profile.id
    client_ids = [client.id for client in clients]
    seed_session.close()
    return therapist_id, client_ids


@pytest.fixture()
def race_session_factory(tmp_path):
    db_file = tmp_path / "race.db"
    engine = create_engine(f"sqlite+pysqlite:///{db_file}", connect_args={"check_same_thread": False})
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    original_attempts = settings.store_retry_attempts
    settings.store_retry_attempts = 10
    try:
        yield SessionLocal
    finally:
        settings.store_retry_attempts = original_attempts
        engine.dispose()


def _run_race(SessionLocal, therapist_id, requests):
    session_date = _next_monday()
    barrier = Barrier(len(requests))

    def attempt(request) -> str:
        client_id, start_minute, duration = request
        session = SessionLocal()
        try:
            barrier.wait()
            reserve_appointment(
                db=session,
                therapist_id=therapist_id,
                client_id=client_id,
                session_date=session_date,
                start_minute=start_minute,
                duration_minutes=duration,
            )
            return "created"
        except SlotConflictError:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        return list(pool.map(attempt, requests))


@pytest.mark.concurrent
def test_two_parallel_reservations_for_same_slot_only_one_succeeds(race_session_factory):
    therapist_id, client_ids = _seed(race_session_factory, client_count=2)

    results = _run_race(
        race_session_factory,
        therapist_id,
        [(client_ids[0], 14 * 60, 50), (client_ids[1], 14 * 60, 50)],
    )

    assert sorted(results) == ["conflict", "created"]
    check = race_session_factory()
    total = check.scalar(select(func.count()).select_from(Appointment))
    check.close()
    assert total == 1


@pytest.mark.concurrent
def test_parallel_overlapping_reservations_never_double_book(race_session_factory):
    therapist_id, client_ids = _seed(race_session_factory, client_count=4)
    requests = [
        (client_ids[0], 10 * 60, 60),
        (client_ids[1], 10 * 60 + 30, 60),
        (client_ids[2], 9 * 60 + 45, 60),
        (client_ids[3], 10 * 60 + 15, 30),
    ]

    results = _run_race(race_session_factory, therapist_id, requests)

    assert results.count("created") == 1
    check = race_session_factory()
    booked = check.scalars(select(Appointment)).all()
    check.close()
    assert len(booked) == 1
