import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from hive_booking.core.availability_cache import availability_cache
from hive_booking.core.exceptions import BookingValidationError, NotFoundError
from hive_booking.db.models import AvailabilityBlock, BlockedPeriod, TherapistProfile
from hive_booking.services.availability_service import (
    TimeBlock,
    find_overlapping_blocks,
    format_minute,
    resolve_timezone,
    to_local_naive,
)

logger = logging.getLogger(__name__)


@dataclass
class DaySchedule:
    day_of_week: int
    enabled: bool = True
    blocks: list[TimeBlock] = field(default_factory=list)


def get_therapist_or_404(db: Session, therapist_id: int) -> TherapistProfile:
    therapist = db.get(TherapistProfile, therapist_id)
    if therapist is None:
        raise NotFoundError("Therapist not found")
    return therapist


def _validate_day(day: DaySchedule) -> None:
    if not 0 <= day.day_of_week <= 6:
        raise BookingValidationError(f"Invalid day of week {day.day_of_week}")
    for block in day.blocks:
        if not 0 <= block.start_minute < block.end_minute <= 24 * 60:
            raise BookingValidationError(
                f"Block {format_minute(block.start_minute)}-{format_minute(block.end_minute)} "
                "must start before it ends"
            )
    overlap = find_overlapping_blocks(day.blocks)
    if overlap is not None:
        first, second = overlap
        raise BookingValidationError(
            f"Blocks {format_minute(first.start_minute)}-{format_minute(first.end_minute)} and "
            f"{format_minute(second.start_minute)}-{format_minute(second.end_minute)} overlap"
        )


def get_weekly_availability(db: Session, therapist_id: int) -> list[DaySchedule]:
    get_therapist_or_404(db, therapist_id)
    rows = db.scalars(
        select(AvailabilityBlock)
        .where(AvailabilityBlock.therapist_id == therapist_id)
        .order_by(AvailabilityBlock.day_of_week, AvailabilityBlock.start_minute)
    ).all()

    days = [DaySchedule(day_of_week=day, enabled=False) for day in range(7)]
    for row in rows:
        day = days[row.day_of_week]
        day.enabled = True
        day.blocks.append(TimeBlock(start_minute=row.start_minute, end_minute=row.end_minute))
    return days


def replace_weekly_availability(db: Session, therapist_id: int, days: list[DaySchedule]) -> list[DaySchedule]:
    """Replace the therapist's whole weekly schedule.

    Days not listed keep no blocks, as do days with ``enabled`` off. Existing
    appointments are left untouched even if they fall outside the new hours.
    """
    get_therapist_or_404(db, therapist_id)
    if len({day.day_of_week for day in days}) != len(days):
        raise BookingValidationError("Each day of week may appear only once")
    for day in days:
        _validate_day(day)

    db.execute(delete(AvailabilityBlock).where(AvailabilityBlock.therapist_id == therapist_id))
    for day in days:
        if not day.enabled:
            continue
        for block in day.blocks:
            db.add(
                AvailabilityBlock(
                    therapist_id=therapist_id,
                    day_of_week=day.day_of_week,
                    start_minute=block.start_minute,
                    end_minute=block.end_minute,
                )
            )
    db.commit()

    availability_cache.invalidate(therapist_id)
    logger.info(
        "weekly_availability_replaced therapist_id=%s blocks=%s",
        therapist_id,
        sum(len(day.blocks) for day in days if day.enabled),
    )
    return get_weekly_availability(db, therapist_id)


def list_blocked_periods(
    db: Session,
    therapist_id: int,
    limit: int = 20,
    offset: int = 0,
) -> list[BlockedPeriod]:
    get_therapist_or_404(db, therapist_id)
    return list(
        db.scalars(
            select(BlockedPeriod)
            .where(BlockedPeriod.therapist_id == therapist_id)
            .order_by(BlockedPeriod.start_at, BlockedPeriod.id)
            .limit(limit)
            .offset(offset)
        ).all()
    )


def add_blocked_period(
    db: Session,
    therapist_id: int,
    start_at: datetime,
    end_at: datetime,
    title: str,
) -> BlockedPeriod:
    therapist = get_therapist_or_404(db, therapist_id)
    tz = resolve_timezone(therapist.timezone)
    local_start = to_local_naive(start_at, tz)
    local_end = to_local_naive(end_at, tz)
    if local_start >= local_end:
        raise BookingValidationError("Blocked period must start before it ends")

    period = BlockedPeriod(
        therapist_id=therapist_id,
        start_at=local_start,
        end_at=local_end,
        title=title.strip(),
    )
    db.add(period)
    db.commit()
    db.refresh(period)

    availability_cache.invalidate(therapist_id)
    logger.info("blocked_period_added therapist_id=%s period_id=%s", therapist_id, period.id)
    return period


def remove_blocked_period(db: Session, therapist_id: int, period_id: int) -> None:
    period = db.scalar(
        select(BlockedPeriod).where(
            BlockedPeriod.id == period_id,
            BlockedPeriod.therapist_id == therapist_id,
        )
    )
    if period is None:
        raise NotFoundError("Blocked period not found")

    db.delete(period)
    db.commit()
    availability_cache.invalidate(therapist_id)
