from datetime import UTC, date, datetime

import pytest

from hive_booking.core.exceptions import InvalidTransitionError
from hive_booking.db.models import Appointment, AppointmentStatus

NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)


def _appointment(status: AppointmentStatus) -> Appointment:
    return Appointment(
        therapist_id=1,
        client_id=2,
        date=date(2031, 3, 3),
        start_minute=14 * 60,
        duration_minutes=50,
        status=status.value,
    )


def test_pending_moves_to_confirmed_then_completed():
    appointment = _appointment(AppointmentStatus.PENDING)

    appointment.transition_to(AppointmentStatus.CONFIRMED, now=NOW)
    appointment.transition_to(AppointmentStatus.COMPLETED, now=NOW)

    assert appointment.status == "completed"
    assert appointment.confirmed_at == NOW
    assert appointment.completed_at == NOW


@pytest.mark.parametrize("status", [AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED])
def test_active_appointments_can_be_cancelled(status):
    appointment = _appointment(status)

    appointment.cancel(reason="client request", now=NOW)

    assert appointment.status == "cancelled"
    assert appointment.cancelled_at == NOW
    assert appointment.cancellation_reason == "client request"
    assert appointment.is_active is False


@pytest.mark.parametrize(
    "current, target",
    [
        (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING),
    ],
)
def test_illegal_transitions_raise(current, target):
    appointment = _appointment(current)

    with pytest.raises(InvalidTransitionError) as exc_info:
        appointment.transition_to(target, now=NOW)

    assert appointment.status == current.value
    assert exc_info.value.status_code == 409


def test_derived_times():
    appointment = _appointment(AppointmentStatus.PENDING)

    assert appointment.end_minute == 14 * 60 + 50
    assert appointment.time_label == "14:00"
    assert appointment.starts_at == datetime(2031, 3, 3, 14, 0)
    assert appointment.ends_at == datetime(2031, 3, 3, 14, 50)
