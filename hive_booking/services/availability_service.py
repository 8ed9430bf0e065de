import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from hive_booking.core.availability_cache import availability_cache
from hive_booking.core.config import settings
from hive_booking.core.exceptions import BookingValidationError, NotFoundError
from hive_booking.core.metrics import AVAILABILITY_QUERIES
from hive_booking.db.models import ACTIVE_STATUSES, Appointment, AvailabilityBlock, BlockedPeriod, TherapistProfile
from hive_booking.db.retry import run_with_store_retry

MINUTES_PER_DAY = 24 * 60

REASON_PAST = "past"
REASON_WEEKEND = "weekend"
REASON_BOOKED = "booked"
BLOCKED_REASON_PREFIX = "blocked: "


@dataclass(frozen=True)
class TimeBlock:
    start_minute: int
    end_minute: int


@dataclass(frozen=True)
class BusyInterval:
    start_minute: int
    end_minute: int
    reason: str = REASON_BOOKED


@dataclass(frozen=True)
class Slot:
    slot_date: date
    start_minute: int
    duration_minutes: int
    is_available: bool
    conflict_reason: str | None = None

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def label(self) -> str:
        return format_minute(self.start_minute)

    def to_cache(self) -> dict[str, Any]:
        return {
            "date": self.slot_date.isoformat(),
            "start": self.start_minute,
            "duration": self.duration_minutes,
            "available": self.is_available,
            "reason": self.conflict_reason,
        }

    @classmethod
    def from_cache(cls, payload: dict[str, Any]) -> "Slot":
        return cls(
            slot_date=date.fromisoformat(payload["date"]),
            start_minute=payload["start"],
            duration_minutes=payload["duration"],
            is_available=payload["available"],
            conflict_reason=payload["reason"],
        )


def format_minute(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def parse_time_label(value: str) -> int:
    """Convert "HH:MM" to minute-of-day; "24:00" is accepted as end of day."""
    try:
        hours_text, minutes_text = value.split(":")
        hours, minutes = int(hours_text), int(minutes_text)
    except ValueError:
        raise BookingValidationError(f"Invalid time '{value}', expected HH:MM") from None

    if (hours, minutes) == (24, 0):
        return MINUTES_PER_DAY
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise BookingValidationError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    # Half-open: a session ending at 14:50 does not touch one starting at 14:50.
    return start_a < end_b and start_b < end_a


def find_overlapping_blocks(blocks: Sequence[TimeBlock]) -> tuple[TimeBlock, TimeBlock] | None:
    ordered = sorted(blocks, key=lambda block: block.start_minute)
    for previous, current in zip(ordered, ordered[1:]):
        if intervals_overlap(previous.start_minute, previous.end_minute, current.start_minute, current.end_minute):
            return previous, current
    return None


def discretize_block(block: TimeBlock, slot_duration_minutes: int) -> list[int]:
    starts = []
    cursor = block.start_minute
    while cursor + slot_duration_minutes <= block.end_minute:
        starts.append(cursor)
        cursor += slot_duration_minutes
    return starts


def resolve_timezone(name: str | None) -> ZoneInfo:
    return ZoneInfo(name or settings.business_timezone)


def local_now(tz: ZoneInfo) -> datetime:
    """Current wall-clock time in ``tz`` as a naive datetime."""
    return datetime.now(UTC).astimezone(tz).replace(tzinfo=None)


def to_local_naive(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(tz).replace(tzinfo=None)


def project_blocked_periods(periods: Iterable[BlockedPeriod], target_date: date) -> list[BusyInterval]:
    """Clip blackout periods to the minutes they cover on ``target_date``."""
    day_start = datetime.combine(target_date, time.min)
    day_end = day_start + timedelta(days=1)
    projected = []
    for period in periods:
        start = max(period.start_at, day_start)
        end = min(period.end_at, day_end)
        if start >= end:
            continue
        projected.append(
            BusyInterval(
                start_minute=int((start - day_start).total_seconds() // 60),
                end_minute=math.ceil((end - day_start).total_seconds() / 60),
                reason=f"{BLOCKED_REASON_PREFIX}{period.title}",
            )
        )
    return projected


def build_day_slots(
    blocks: Sequence[TimeBlock],
    booked: Sequence[BusyInterval],
    blocked: Sequence[BusyInterval],
    target_date: date,
    slot_duration_minutes: int,
    now: datetime,
    weekday_only: bool = False,
) -> list[Slot]:
    """Discretize the day's availability blocks and mark each candidate slot.

    ``now`` is a naive wall-clock datetime in the same zone as the blocks.
    Unavailable slots are kept in the result with the first matching reason,
    checked in the order past, weekend, booked, blocked.
    """
    is_weekend = target_date.weekday() >= 5
    day_start = datetime.combine(target_date, time.min)
    slots: list[Slot] = []
    for block in sorted(blocks, key=lambda item: item.start_minute):
        for start in discretize_block(block, slot_duration_minutes):
            end = start + slot_duration_minutes
            reason: str | None = None
            if day_start + timedelta(minutes=start) <= now:
                reason = REASON_PAST
            elif weekday_only and is_weekend:
                reason = REASON_WEEKEND
            elif any(intervals_overlap(start, end, item.start_minute, item.end_minute) for item in booked):
                reason = REASON_BOOKED
            else:
                for item in blocked:
                    if intervals_overlap(start, end, item.start_minute, item.end_minute):
                        reason = item.reason
                        break
            slots.append(
                Slot(
                    slot_date=target_date,
                    start_minute=start,
                    duration_minutes=slot_duration_minutes,
                    is_available=reason is None,
                    conflict_reason=reason,
                )
            )
    return slots


def expire_past_slots(slots: Sequence[Slot], now: datetime) -> list[Slot]:
    """Mark slots that started at or before ``now`` as past; used for cached lists."""
    refreshed = []
    for slot in slots:
        starts_at = datetime.combine(slot.slot_date, time.min) + timedelta(minutes=slot.start_minute)
        if starts_at <= now and slot.conflict_reason != REASON_PAST:
            slot = replace(slot, is_available=False, conflict_reason=REASON_PAST)
        refreshed.append(slot)
    return refreshed


def get_therapist(db: Session, therapist_id: int) -> TherapistProfile | None:
    return db.scalar(select(TherapistProfile).where(TherapistProfile.id == therapist_id))


def load_day_blocks(db: Session, therapist_id: int, target_date: date) -> list[TimeBlock]:
    rows = db.scalars(
        select(AvailabilityBlock)
        .where(
            AvailabilityBlock.therapist_id == therapist_id,
            AvailabilityBlock.day_of_week == target_date.weekday(),
        )
        .order_by(AvailabilityBlock.start_minute)
    ).all()
    return [TimeBlock(start_minute=row.start_minute, end_minute=row.end_minute) for row in rows]


def load_active_appointments(db: Session, therapist_id: int, target_date: date) -> list[Appointment]:
    return list(
        db.scalars(
            select(Appointment)
            .where(
                Appointment.therapist_id == therapist_id,
                Appointment.date == target_date,
                Appointment.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Appointment.start_minute)
        ).all()
    )


def load_booked_intervals(db: Session, therapist_id: int, target_date: date) -> list[BusyInterval]:
    return [
        BusyInterval(start_minute=item.start_minute, end_minute=item.end_minute)
        for item in load_active_appointments(db, therapist_id, target_date)
    ]


def load_blocked_intervals(db: Session, therapist_id: int, target_date: date) -> list[BusyInterval]:
    day_start = datetime.combine(target_date, time.min)
    periods = db.scalars(
        select(BlockedPeriod)
        .where(
            BlockedPeriod.therapist_id == therapist_id,
            BlockedPeriod.start_at < day_start + timedelta(days=1),
            BlockedPeriod.end_at > day_start,
        )
        .order_by(BlockedPeriod.start_at)
    ).all()
    return project_blocked_periods(periods, target_date)


def validate_duration(slot_duration_minutes: int) -> None:
    if not (
        settings.min_session_duration_minutes
        <= slot_duration_minutes
        <= settings.max_session_duration_minutes
    ):
        raise BookingValidationError(
            f"Session duration must be between {settings.min_session_duration_minutes} "
            f"and {settings.max_session_duration_minutes} minutes"
        )


def _therapist_now(therapist: TherapistProfile, now: datetime | None) -> datetime:
    tz = resolve_timezone(therapist.timezone)
    return to_local_naive(now, tz) if now is not None else local_now(tz)


def _compute_slots(
    db: Session,
    therapist: TherapistProfile,
    target_date: date,
    slot_duration_minutes: int,
    now: datetime,
) -> list[Slot]:
    blocks = load_day_blocks(db, therapist.id, target_date)
    if not blocks:
        return []
    return build_day_slots(
        blocks=blocks,
        booked=load_booked_intervals(db, therapist.id, target_date),
        blocked=load_blocked_intervals(db, therapist.id, target_date),
        target_date=target_date,
        slot_duration_minutes=slot_duration_minutes,
        now=now,
        weekday_only=settings.weekday_only_booking,
    )


def get_available_slots(
    db: Session,
    therapist_id: int,
    target_date: date,
    slot_duration_minutes: int,
    now: datetime | None = None,
) -> list[Slot]:
    validate_duration(slot_duration_minutes)

    def load() -> list[Slot]:
        therapist = get_therapist(db, therapist_id)
        if therapist is None:
            if settings.strict_unknown_therapist:
                raise NotFoundError("Therapist not found")
            return []

        current = _therapist_now(therapist, now)
        if target_date < current.date():
            raise BookingValidationError("Date must not be in the past")

        # Explicit clocks bypass the cache so callers can evaluate other instants.
        use_cache = now is None
        generation = None
        if use_cache:
            cached = availability_cache.get(therapist_id, target_date, slot_duration_minutes)
            if cached is not None:
                AVAILABILITY_QUERIES.labels(cache="hit").inc()
                return expire_past_slots([Slot.from_cache(item) for item in cached], current)
            generation = availability_cache.generation(therapist_id, target_date)

        slots = _compute_slots(db, therapist, target_date, slot_duration_minutes, current)
        AVAILABILITY_QUERIES.labels(cache="miss").inc()
        if use_cache:
            availability_cache.set(
                therapist_id,
                target_date,
                slot_duration_minutes,
                [slot.to_cache() for slot in slots],
                generation=generation,
            )
        return slots

    return run_with_store_retry(db, load)


def suggest_alternatives(
    db: Session,
    therapist_id: int,
    target_date: date,
    start_minute: int,
    duration_minutes: int,
    now: datetime | None = None,
) -> list[Slot]:
    """Available slots of the same length near the requested one.

    Searches the requested day and the following days, skipping the
    requested start itself. An aware ``now`` is converted to the therapist's
    zone; a naive one is taken as wall-clock time there already.
    """
    therapist = get_therapist(db, therapist_id)
    if therapist is None:
        return []

    current = _therapist_now(therapist, now)
    suggestions: list[Slot] = []
    for offset in range(settings.alternative_search_days):
        day = target_date + timedelta(days=offset)
        for slot in _compute_slots(db, therapist, day, duration_minutes, current):
            if not slot.is_available:
                continue
            if day == target_date and slot.start_minute == start_minute:
                continue
            suggestions.append(slot)
            if len(suggestions) >= settings.alternative_suggestion_limit:
                return suggestions
    return suggestions
