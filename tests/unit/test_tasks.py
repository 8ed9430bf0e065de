from datetime import UTC, date, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hive_booking.db.base import Base
from hive_booking.db.models import Appointment, AppointmentStatus, PaymentStatus, TherapistProfile, User, UserRole
from hive_booking.services.booking_service import (
    PAYMENT_TIMEOUT_REASON,
    complete_finished_appointments,
    release_unpaid_appointments,
    send_upcoming_reminders,
)
from hive_booking.services.notifications import NotificationDispatcher

# 12:00 UTC on a winter day is 12:00 in London.
NOW = datetime(2031, 1, 15, 12, 0, tzinfo=UTC)
TODAY = date(2031, 1, 15)


class ReminderRecorder(NotificationDispatcher):
    def __init__(self) -> None:
        self.reminded: list[int] = []

    def appointment_booked(self, appointment):
        pass

    def appointment_cancelled(self, appointment):
        pass

    def appointment_reminder(self, appointment):
        self.reminded.append(appointment.id)


def _build_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return TestSession()


def _seed_therapist_and_client(db: Session) -> tuple[TherapistProfile, User]:
    therapist_user = User(email="task-therapist@example.com", role=UserRole.THERAPIST.value)
    client = User(email="task-client@example.com", role=UserRole.CLIENT.value)
    db.add_all([therapist_user, client])
    db.flush()
    profile = TherapistProfile(user_id=therapist_user.id, display_name="Therapist")
    db.add(profile)
    db.flush()
    return profile, client


def _appointment(profile, client, start_minute, status, payment_status, created_at=NOW, day=TODAY):
    return Appointment(
        therapist_id=profile.id,
        client_id=client.id,
        date=day,
        start_minute=start_minute,
        duration_minutes=50,
        status=status.value,
        payment_status=payment_status.value,
        created_at=created_at,
    )


def test_complete_finished_appointments_only_touches_ended_sessions():
    db = _build_session()
    profile, client = _seed_therapist_and_client(db)
    finished = _appointment(profile, client, 10 * 60, AppointmentStatus.CONFIRMED, PaymentStatus.PAID)
    running = _appointment(profile, client, 11 * 60 + 30, AppointmentStatus.CONFIRMED, PaymentStatus.PAID)
    yesterday = _appointment(
        profile, client, 15 * 60, AppointmentStatus.CONFIRMED, PaymentStatus.PAID, day=TODAY - timedelta(days=1)
    )
    db.add_all([finished, running, yesterday])
    db.commit()

    completed = complete_finished_appointments(db=db, now=NOW)

    assert completed == 2
    assert db.get(Appointment, finished.id).status == AppointmentStatus.COMPLETED.value
    assert db.get(Appointment, yesterday.id).status == AppointmentStatus.COMPLETED.value
    assert db.get(Appointment, running.id).status == AppointmentStatus.CONFIRMED.value
    db.close()


def test_release_unpaid_appointments_frees_stale_pending_slots():
    db = _build_session()
    profile, client = _seed_therapist_and_client(db)
    stale = _appointment(
        profile, client, 15 * 60, AppointmentStatus.PENDING, PaymentStatus.UNPAID, created_at=NOW - timedelta(hours=2)
    )
    fresh = _appointment(
        profile, client, 16 * 60, AppointmentStatus.PENDING, PaymentStatus.UNPAID, created_at=NOW - timedelta(minutes=5)
    )
    db.add_all([stale, fresh])
    db.commit()

    released = release_unpaid_appointments(db=db, now=NOW)

    assert released == 1
    stale_row = db.get(Appointment, stale.id)
    assert stale_row.status == AppointmentStatus.CANCELLED.value
    assert stale_row.cancellation_reason == PAYMENT_TIMEOUT_REASON
    assert db.get(Appointment, fresh.id).status == AppointmentStatus.PENDING.value
    db.close()


def test_send_upcoming_reminders_notifies_once_within_window():
    db = _build_session()
    profile, client = _seed_therapist_and_client(db)
    soon = _appointment(profile, client, 13 * 60, AppointmentStatus.CONFIRMED, PaymentStatus.PAID)
    later = _appointment(profile, client, 17 * 60, AppointmentStatus.CONFIRMED, PaymentStatus.PAID)
    pending = _appointment(profile, client, 12 * 60 + 30, AppointmentStatus.PENDING, PaymentStatus.UNPAID)
    db.add_all([soon, later, pending])
    db.commit()
    recorder = ReminderRecorder()

    first_run = send_upcoming_reminders(db=db, now=NOW, notifier=recorder)
    second_run = send_upcoming_reminders(db=db, now=NOW, notifier=recorder)

    assert first_run == 1
    assert second_run == 0
    assert recorder.reminded == [soon.id]
    db.close()
