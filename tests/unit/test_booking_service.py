from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from hive_booking.core.config import settings
from hive_booking.core.exceptions import (
    BookingValidationError,
    InvalidTransitionError,
    NotFoundError,
    SlotConflictError,
)
from hive_booking.db.models import Appointment, AppointmentStatus, PaymentStatus, TherapistProfile, UserRole
from hive_booking.services.booking_service import (
    IDEMPOTENCY_KEY_REUSE_REASON,
    OUTSIDE_AVAILABILITY_REASON,
    SLOT_UNAVAILABLE_REASON,
    cancel_appointment,
    confirm_appointment,
    reserve_appointment,
)
from hive_booking.services.notifications import NotificationDispatcher
from hive_booking.services.payments import RecordingPaymentGateway

WORKDAY = {day: [(9 * 60, 17 * 60)] for day in range(7)}


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.events: list[tuple[str, int]] = []

    def appointment_booked(self, appointment):
        self.events.append(("booked", appointment.id))

    def appointment_cancelled(self, appointment):
        self.events.append(("cancelled", appointment.id))

    def appointment_reminder(self, appointment):
        self.events.append(("reminder", appointment.id))


class BrokenDispatcher(RecordingDispatcher):
    def appointment_booked(self, appointment):
        raise RuntimeError("smtp down")


def _count(db) -> int:
    return db.scalar(select(func.count()).select_from(Appointment))


def test_reserve_creates_pending_unpaid_appointment(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    dispatcher = RecordingDispatcher()

    appointment = reserve_appointment(
        db_session, therapist.id, client.id, monday, 14 * 60, 50, notifier=dispatcher
    )

    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.payment_status == PaymentStatus.UNPAID.value
    assert appointment.time_label == "14:00"
    assert dispatcher.events == [("booked", appointment.id)]


def test_reserve_confirms_immediately_when_payment_not_required(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    original = settings.payment_required
    settings.payment_required = False
    try:
        appointment = reserve_appointment(db_session, therapist.id, client.id, monday, 9 * 60, 50)
    finally:
        settings.payment_required = original

    assert appointment.status == AppointmentStatus.CONFIRMED.value
    assert appointment.payment_status == PaymentStatus.NOT_REQUIRED.value
    assert appointment.confirmed_at is not None


def test_overlapping_reservation_conflicts_and_writes_nothing(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    first_client = make_user("first@example.com")
    second_client = make_user("second@example.com")
    reserve_appointment(db_session, therapist.id, first_client.id, monday, 14 * 60, 50)
    version_before = db_session.get(TherapistProfile, therapist.id).booking_version

    with pytest.raises(SlotConflictError) as exc_info:
        reserve_appointment(db_session, therapist.id, second_client.id, monday, 14 * 60 + 30, 50)

    assert exc_info.value.conflict_reason == SLOT_UNAVAILABLE_REASON
    assert exc_info.value.alternatives
    assert {"date": monday.isoformat(), "time": "14:30"} not in exc_info.value.alternatives
    assert _count(db_session) == 1
    db_session.expire_all()
    assert db_session.get(TherapistProfile, therapist.id).booking_version == version_before


def test_back_to_back_sessions_are_allowed(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    reserve_appointment(db_session, therapist.id, client.id, monday, 14 * 60, 50)

    follow_up = reserve_appointment(db_session, therapist.id, client.id, monday, 14 * 60 + 50, 50)

    assert follow_up.time_label == "14:50"
    assert _count(db_session) == 2


def test_cancelled_slot_can_be_booked_again(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    first = reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 60)
    cancel_appointment(db_session, first.id, reason="changed plans")

    second = reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 60)

    assert second.id != first.id


def test_slot_outside_weekly_hours_conflicts(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly={0: [(9 * 60, 12 * 60)]})
    client = make_user()

    with pytest.raises(SlotConflictError) as exc_info:
        reserve_appointment(db_session, therapist.id, client.id, monday, 11 * 60 + 30, 60)

    assert exc_info.value.conflict_reason == OUTSIDE_AVAILABILITY_REASON
    assert _count(db_session) == 0


@pytest.mark.parametrize(
    "start_minute, duration",
    [(10 * 60, 10), (10 * 60, 300), (23 * 60 + 30, 60)],
)
def test_invalid_requests_are_rejected(db_session, make_therapist, make_user, monday, start_minute, duration):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()

    with pytest.raises(BookingValidationError):
        reserve_appointment(db_session, therapist.id, client.id, monday, start_minute, duration)
    assert _count(db_session) == 0


def test_past_and_far_future_dates_are_rejected(db_session, make_therapist, make_user):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    today = datetime.now(UTC).date()

    with pytest.raises(BookingValidationError):
        reserve_appointment(db_session, therapist.id, client.id, today - timedelta(days=3), 10 * 60, 50)
    with pytest.raises(BookingValidationError):
        reserve_appointment(
            db_session,
            therapist.id,
            client.id,
            today + timedelta(days=settings.booking_horizon_days + 2),
            10 * 60,
            50,
        )


def test_unknown_parties_are_rejected(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    other_therapist_user = make_user("admin@example.com", role=UserRole.ADMIN)

    with pytest.raises(BookingValidationError):
        reserve_appointment(db_session, 999, other_therapist_user.id, monday, 10 * 60, 50)
    with pytest.raises(BookingValidationError):
        reserve_appointment(db_session, therapist.id, 999, monday, 10 * 60, 50)
    with pytest.raises(BookingValidationError):
        reserve_appointment(db_session, therapist.id, other_therapist_user.id, monday, 10 * 60, 50)


def test_idempotency_key_replays_original_appointment(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    dispatcher = RecordingDispatcher()

    first = reserve_appointment(
        db_session, therapist.id, client.id, monday, 10 * 60, 50, idempotency_key="abc", notifier=dispatcher
    )
    replay = reserve_appointment(
        db_session, therapist.id, client.id, monday, 10 * 60, 50, idempotency_key="abc", notifier=dispatcher
    )

    assert replay.id == first.id
    assert _count(db_session) == 1
    assert len(dispatcher.events) == 1


def test_idempotency_key_reuse_for_other_slot_conflicts(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 50, idempotency_key="abc")

    with pytest.raises(SlotConflictError) as exc_info:
        reserve_appointment(db_session, therapist.id, client.id, monday, 12 * 60, 50, idempotency_key="abc")

    assert exc_info.value.conflict_reason == IDEMPOTENCY_KEY_REUSE_REASON
    assert exc_info.value.alternatives == []
    assert _count(db_session) == 1


def test_notification_failure_keeps_the_appointment(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()

    appointment = reserve_appointment(
        db_session, therapist.id, client.id, monday, 10 * 60, 50, notifier=BrokenDispatcher()
    )

    assert appointment.id is not None
    assert _count(db_session) == 1


def test_confirm_charges_unpaid_appointment(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    gateway = RecordingPaymentGateway()
    appointment = reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 50)

    confirmed = confirm_appointment(db_session, appointment.id, payment_reference="pi_123", gateway=gateway)

    assert confirmed.status == AppointmentStatus.CONFIRMED.value
    assert confirmed.payment_status == PaymentStatus.PAID.value
    assert confirmed.payment_reference == "pi_123"
    assert gateway.charges == [(appointment.id, "pi_123")]


def test_cancel_refunds_paid_appointment(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    gateway = RecordingPaymentGateway()
    dispatcher = RecordingDispatcher()
    appointment = reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 50)
    confirm_appointment(db_session, appointment.id, gateway=gateway)

    cancelled = cancel_appointment(
        db_session, appointment.id, reason="ill", notifier=dispatcher, gateway=gateway
    )

    assert cancelled.status == AppointmentStatus.CANCELLED.value
    assert cancelled.payment_status == PaymentStatus.REFUNDED.value
    assert cancelled.cancellation_reason == "ill"
    assert len(gateway.refunds) == 1
    assert dispatcher.events == [("cancelled", appointment.id)]


def test_cancelled_appointment_cannot_be_confirmed_or_cancelled_again(
    db_session, make_therapist, make_user, monday
):
    therapist = make_therapist(weekly=WORKDAY)
    client = make_user()
    appointment = reserve_appointment(db_session, therapist.id, client.id, monday, 10 * 60, 50)
    cancel_appointment(db_session, appointment.id)

    with pytest.raises(InvalidTransitionError):
        confirm_appointment(db_session, appointment.id)
    with pytest.raises(InvalidTransitionError):
        cancel_appointment(db_session, appointment.id)


def test_missing_appointment_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        cancel_appointment(db_session, 404)
    with pytest.raises(NotFoundError):
        confirm_appointment(db_session, 404)


def test_sequential_reservations_never_overlap(db_session, make_therapist, make_user, monday):
    therapist = make_therapist(weekly={0: [(9 * 60, 13 * 60)]})
    client = make_user()
    attempts = [(9 * 60, 50), (9 * 60 + 30, 30), (9 * 60 + 50, 40), (10 * 60, 60), (10 * 60 + 30, 50), (12 * 60, 60)]

    for start_minute, duration in attempts:
        try:
            reserve_appointment(db_session, therapist.id, client.id, monday, start_minute, duration)
        except SlotConflictError:
            pass

    booked = sorted(
        (item.start_minute, item.end_minute)
        for item in db_session.scalars(select(Appointment).where(Appointment.therapist_id == therapist.id))
    )
    assert booked == [(540, 590), (590, 630), (630, 680), (720, 780)]
    for (_, end), (next_start, _) in zip(booked, booked[1:]):
        assert end <= next_start
