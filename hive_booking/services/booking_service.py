import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hive_booking.core.availability_cache import availability_cache
from hive_booking.core.config import settings
from hive_booking.core.exceptions import BookingValidationError, NotFoundError, SlotConflictError
from hive_booking.core.metrics import BOOKING_ATTEMPTS
from hive_booking.db.models import (
    Appointment,
    AppointmentStatus,
    PaymentStatus,
    TherapistProfile,
    User,
    UserRole,
)
from hive_booking.db.retry import run_with_store_retry
from hive_booking.services.availability_service import (
    MINUTES_PER_DAY,
    format_minute,
    intervals_overlap,
    load_active_appointments,
    load_blocked_intervals,
    load_day_blocks,
    resolve_timezone,
    suggest_alternatives,
    to_local_naive,
    validate_duration,
)
from hive_booking.services.notifications import NotificationDispatcher, dispatch_safely, notification_dispatcher
from hive_booking.services.payments import PaymentGateway, payment_gateway

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_REASON = "This time slot is no longer available"
OUTSIDE_AVAILABILITY_REASON = "The therapist is not available at this time"
IDEMPOTENCY_KEY_REUSE_REASON = "Idempotency key already used with another slot"
PAYMENT_TIMEOUT_REASON = "payment_timeout"


def _is_postgresql_session(db: Session) -> bool:
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _get_appointment_by_idempotency_key(db: Session, client_id: int, idempotency_key: str) -> Appointment | None:
    return db.scalar(
        select(Appointment).where(
            Appointment.client_id == client_id,
            Appointment.idempotency_key == idempotency_key,
        )
    )


def _replay_or_conflict(
    existing: Appointment,
    therapist_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
) -> Appointment:
    same_request = (
        existing.therapist_id == therapist_id
        and existing.date == session_date
        and existing.start_minute == start_minute
        and existing.duration_minutes == duration_minutes
    )
    if not same_request:
        raise SlotConflictError(IDEMPOTENCY_KEY_REUSE_REASON, suggest_alternatives=False)
    return existing


def _validate_request(
    db: Session,
    therapist_id: int,
    client_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
    local_now: datetime,
) -> None:
    validate_duration(duration_minutes)
    if not 0 <= start_minute < MINUTES_PER_DAY:
        raise BookingValidationError("Start time must be within the day")
    if start_minute + duration_minutes > MINUTES_PER_DAY:
        raise BookingValidationError("Session must end on the day it starts")

    client = db.get(User, client_id)
    if client is None or not client.is_active:
        raise BookingValidationError("Client not found")
    if client.role != UserRole.CLIENT.value:
        raise BookingValidationError("Only client accounts can book sessions")

    starts_at = datetime.combine(session_date, datetime.min.time()) + timedelta(minutes=start_minute)
    if starts_at <= local_now:
        raise BookingValidationError("Cannot book a session in the past")
    if session_date > local_now.date() + timedelta(days=settings.booking_horizon_days):
        raise BookingValidationError(
            f"Sessions can be booked at most {settings.booking_horizon_days} days ahead"
        )
    if settings.weekday_only_booking and session_date.weekday() >= 5:
        raise BookingValidationError("Sessions can only be booked on weekdays")


def _lock_conflict_domain(db: Session, therapist_id: int, session_date: date) -> None:
    """Serialize reservations for one therapist and date until the transaction ends.

    PostgreSQL waits on a transaction-scoped advisory lock keyed by
    (therapist, date), so bookings on other dates proceed in parallel. Other
    dialects take the database write lock through the booking_version bump.
    """
    if _is_postgresql_session(db):
        db.execute(select(func.pg_advisory_xact_lock(therapist_id, session_date.toordinal())))
        return
    db.execute(
        update(TherapistProfile)
        .where(TherapistProfile.id == therapist_id)
        .values(booking_version=TherapistProfile.booking_version + 1)
        .execution_options(synchronize_session=False)
    )


def _ensure_slot_free(
    db: Session,
    therapist_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
) -> None:
    end_minute = start_minute + duration_minutes
    blocks = load_day_blocks(db, therapist_id, session_date)
    if not any(block.start_minute <= start_minute and end_minute <= block.end_minute for block in blocks):
        raise SlotConflictError(OUTSIDE_AVAILABILITY_REASON)

    for appointment in load_active_appointments(db, therapist_id, session_date):
        if intervals_overlap(start_minute, end_minute, appointment.start_minute, appointment.end_minute):
            raise SlotConflictError(SLOT_UNAVAILABLE_REASON)

    for interval in load_blocked_intervals(db, therapist_id, session_date):
        if intervals_overlap(start_minute, end_minute, interval.start_minute, interval.end_minute):
            raise SlotConflictError(SLOT_UNAVAILABLE_REASON)


def _reserve_once(
    db: Session,
    therapist_id: int,
    client_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
    idempotency_key: str | None,
    current_time: datetime,
) -> tuple[Appointment, bool]:
    try:
        if idempotency_key:
            existing = _get_appointment_by_idempotency_key(db, client_id, idempotency_key)
            if existing:
                return _replay_or_conflict(existing, therapist_id, session_date, start_minute, duration_minutes), False

        _lock_conflict_domain(db, therapist_id, session_date)
        _ensure_slot_free(db, therapist_id, session_date, start_minute, duration_minutes)

        appointment = Appointment(
            therapist_id=therapist_id,
            client_id=client_id,
            date=session_date,
            start_minute=start_minute,
            duration_minutes=duration_minutes,
            idempotency_key=idempotency_key,
            created_at=current_time,
        )
        if settings.payment_required:
            appointment.status = AppointmentStatus.PENDING.value
            appointment.payment_status = PaymentStatus.UNPAID.value
        else:
            appointment.status = AppointmentStatus.CONFIRMED.value
            appointment.payment_status = PaymentStatus.NOT_REQUIRED.value
            appointment.confirmed_at = current_time
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment, True
    except SlotConflictError:
        db.rollback()
        raise
    except IntegrityError:
        db.rollback()
        if idempotency_key:
            existing = _get_appointment_by_idempotency_key(db, client_id, idempotency_key)
            if existing:
                return _replay_or_conflict(existing, therapist_id, session_date, start_minute, duration_minutes), False
        raise SlotConflictError(SLOT_UNAVAILABLE_REASON) from None


def _alternatives_payload(
    db: Session,
    therapist_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
    now: datetime,
) -> list[dict[str, str]]:
    slots = suggest_alternatives(db, therapist_id, session_date, start_minute, duration_minutes, now)
    return [{"date": slot.slot_date.isoformat(), "time": slot.label} for slot in slots]


def reserve_appointment(
    db: Session,
    therapist_id: int,
    client_id: int,
    session_date: date,
    start_minute: int,
    duration_minutes: int,
    idempotency_key: str | None = None,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
) -> Appointment:
    """Atomically book a session, or raise ``SlotConflictError``.

    A rejected attempt never leaves a row behind. Replaying an idempotency
    key returns the appointment created by the first request.
    """
    current_time = now or datetime.now(UTC)
    therapist = db.get(TherapistProfile, therapist_id)
    if therapist is None:
        BOOKING_ATTEMPTS.labels(outcome="invalid").inc()
        raise BookingValidationError("Therapist not found")

    local_now = to_local_naive(current_time, resolve_timezone(therapist.timezone))
    try:
        _validate_request(db, therapist_id, client_id, session_date, start_minute, duration_minutes, local_now)
    except BookingValidationError:
        BOOKING_ATTEMPTS.labels(outcome="invalid").inc()
        raise

    try:
        appointment, created = run_with_store_retry(
            db,
            lambda: _reserve_once(
                db,
                therapist_id,
                client_id,
                session_date,
                start_minute,
                duration_minutes,
                idempotency_key,
                current_time,
            ),
        )
    except SlotConflictError as exc:
        BOOKING_ATTEMPTS.labels(outcome="conflict").inc()
        logger.info(
            "booking_conflict therapist_id=%s date=%s time=%s reason=%s",
            therapist_id,
            session_date,
            format_minute(start_minute),
            exc.conflict_reason,
        )
        if exc.suggest_alternatives:
            exc.alternatives = _alternatives_payload(
                db, therapist_id, session_date, start_minute, duration_minutes, current_time
            )
        raise

    if not created:
        BOOKING_ATTEMPTS.labels(outcome="replayed").inc()
        return appointment

    BOOKING_ATTEMPTS.labels(outcome="created").inc()
    availability_cache.invalidate(therapist_id, session_date)
    logger.info(
        "booking_created appointment_id=%s therapist_id=%s client_id=%s date=%s time=%s",
        appointment.id,
        therapist_id,
        client_id,
        session_date,
        appointment.time_label,
    )
    dispatch_safely((notifier or notification_dispatcher).appointment_booked, appointment)
    return appointment


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found")
    return appointment


def cancel_appointment(
    db: Session,
    appointment_id: int,
    reason: str | None = None,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
    gateway: PaymentGateway | None = None,
) -> Appointment:
    current_time = now or datetime.now(UTC)
    appointment = db.scalar(select(Appointment).where(Appointment.id == appointment_id).with_for_update())
    if appointment is None:
        raise NotFoundError("Appointment not found")

    try:
        appointment.cancel(reason=reason, now=current_time)
        if appointment.payment_status == PaymentStatus.PAID.value:
            (gateway or payment_gateway).refund(appointment)
            appointment.payment_status = PaymentStatus.REFUNDED.value
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appointment)
    availability_cache.invalidate(appointment.therapist_id, appointment.date)
    logger.info("appointment_cancelled appointment_id=%s reason=%s", appointment.id, reason)
    dispatch_safely((notifier or notification_dispatcher).appointment_cancelled, appointment)
    return appointment


def confirm_appointment(
    db: Session,
    appointment_id: int,
    payment_reference: str | None = None,
    now: datetime | None = None,
    gateway: PaymentGateway | None = None,
) -> Appointment:
    current_time = now or datetime.now(UTC)
    appointment = db.scalar(select(Appointment).where(Appointment.id == appointment_id).with_for_update())
    if appointment is None:
        raise NotFoundError("Appointment not found")

    try:
        appointment.transition_to(AppointmentStatus.CONFIRMED, now=current_time)
        if appointment.payment_status == PaymentStatus.UNPAID.value:
            appointment.payment_reference = (gateway or payment_gateway).charge(appointment, payment_reference)
            appointment.payment_status = PaymentStatus.PAID.value
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appointment)
    availability_cache.invalidate(appointment.therapist_id, appointment.date)
    logger.info("appointment_confirmed appointment_id=%s", appointment.id)
    return appointment


def _local_clock(therapist: TherapistProfile, current_time: datetime) -> datetime:
    return to_local_naive(current_time, resolve_timezone(therapist.timezone))


def _appointments_around(
    db: Session,
    statuses: tuple[str, ...],
    current_time: datetime,
    days_after: int = 1,
) -> list[tuple[Appointment, TherapistProfile]]:
    # Local dates run at most one day ahead of UTC.
    today = current_time.astimezone(UTC).date() if current_time.tzinfo else current_time.date()
    return db.execute(
        select(Appointment, TherapistProfile)
        .join(TherapistProfile, Appointment.therapist_id == TherapistProfile.id)
        .where(
            Appointment.status.in_(statuses),
            Appointment.date <= today + timedelta(days=days_after),
        )
        .order_by(Appointment.date, Appointment.start_minute)
    ).all()


def complete_finished_appointments(db: Session, now: datetime | None = None) -> int:
    current_time = now or datetime.now(UTC)
    finished = [
        appointment
        for appointment, therapist in _appointments_around(db, (AppointmentStatus.CONFIRMED.value,), current_time)
        if appointment.ends_at <= _local_clock(therapist, current_time)
    ]
    for appointment in finished:
        appointment.transition_to(AppointmentStatus.COMPLETED, now=current_time)

    if finished:
        db.commit()
        logger.info("appointments_completed count=%s", len(finished))
    return len(finished)


def release_unpaid_appointments(
    db: Session,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
) -> int:
    """Cancel pending appointments whose payment window has lapsed, freeing their slots."""
    current_time = now or datetime.now(UTC)
    cutoff = current_time - timedelta(minutes=settings.pending_payment_timeout_minutes)
    stale = db.scalars(
        select(Appointment).where(
            Appointment.status == AppointmentStatus.PENDING.value,
            Appointment.payment_status == PaymentStatus.UNPAID.value,
            Appointment.created_at <= cutoff,
        )
    ).all()

    for appointment in stale:
        appointment.cancel(reason=PAYMENT_TIMEOUT_REASON, now=current_time)

    if not stale:
        return 0

    db.commit()
    for appointment in stale:
        availability_cache.invalidate(appointment.therapist_id, appointment.date)
        dispatch_safely((notifier or notification_dispatcher).appointment_cancelled, appointment)
    logger.info("appointments_released count=%s", len(stale))
    return len(stale)


def find_appointments_to_remind(db: Session, now: datetime | None = None) -> list[Appointment]:
    current_time = now or datetime.now(UTC)
    lookahead = timedelta(minutes=settings.reminder_lookahead_minutes)
    due = []
    for appointment, therapist in _appointments_around(db, (AppointmentStatus.CONFIRMED.value,), current_time):
        if appointment.reminder_sent_at is not None:
            continue
        local_clock = _local_clock(therapist, current_time)
        if local_clock <= appointment.starts_at < local_clock + lookahead:
            due.append(appointment)
    return due


def send_upcoming_reminders(
    db: Session,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
) -> int:
    current_time = now or datetime.now(UTC)
    due = find_appointments_to_remind(db, now=current_time)
    sent = 0
    for appointment in due:
        if dispatch_safely((notifier or notification_dispatcher).appointment_reminder, appointment):
            appointment.reminder_sent_at = current_time
            sent += 1
    if sent:
        db.commit()
    return sent
