from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from hive_booking.api.deps import require_schedule_manager
from hive_booking.api.pagination import LimitParam, OffsetParam
from hive_booking.db.models import User
from hive_booking.db.session import get_db
from hive_booking.schemas.schedule import (
    BlockedPeriodCreateRequest,
    BlockedPeriodResponse,
    DayAvailabilityPayload,
    TimeBlockPayload,
    WeeklyAvailabilityRequest,
    WeeklyAvailabilityResponse,
)
from hive_booking.services.availability_service import TimeBlock, format_minute, parse_time_label
from hive_booking.services.schedule_service import (
    DaySchedule,
    add_blocked_period,
    get_therapist_or_404,
    get_weekly_availability,
    list_blocked_periods,
    remove_blocked_period,
    replace_weekly_availability,
)

router = APIRouter(prefix="/therapists", tags=["therapists"])


def _to_response(therapist_id: int, timezone: str, days: list[DaySchedule]) -> WeeklyAvailabilityResponse:
    return WeeklyAvailabilityResponse(
        therapist_id=therapist_id,
        timezone=timezone,
        days=[
            DayAvailabilityPayload(
                day_of_week=day.day_of_week,
                enabled=day.enabled,
                blocks=[
                    TimeBlockPayload(start=format_minute(block.start_minute), end=format_minute(block.end_minute))
                    for block in day.blocks
                ],
            )
            for day in days
        ],
    )


@router.get(
    "/{therapist_id}/availability",
    response_model=WeeklyAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def read_weekly_availability(
    therapist_id: int,
    _: User = Depends(require_schedule_manager),
    db: Session = Depends(get_db),
) -> WeeklyAvailabilityResponse:
    days = get_weekly_availability(db, therapist_id)
    therapist = get_therapist_or_404(db, therapist_id)
    return _to_response(therapist_id, therapist.timezone, days)


@router.put(
    "/{therapist_id}/availability",
    response_model=WeeklyAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def update_weekly_availability(
    therapist_id: int,
    payload: WeeklyAvailabilityRequest,
    _: User = Depends(require_schedule_manager),
    db: Session = Depends(get_db),
) -> WeeklyAvailabilityResponse:
    days = [
        DaySchedule(
            day_of_week=day.day_of_week,
            enabled=day.enabled,
            blocks=[
                TimeBlock(start_minute=parse_time_label(block.start), end_minute=parse_time_label(block.end))
                for block in day.blocks
            ],
        )
        for day in payload.days
    ]
    saved = replace_weekly_availability(db, therapist_id, days)
    therapist = get_therapist_or_404(db, therapist_id)
    return _to_response(therapist_id, therapist.timezone, saved)


@router.get(
    "/{therapist_id}/blocked-periods",
    response_model=list[BlockedPeriodResponse],
    status_code=status.HTTP_200_OK,
)
def read_blocked_periods(
    therapist_id: int,
    limit: LimitParam = 20,
    offset: OffsetParam = 0,
    _: User = Depends(require_schedule_manager),
    db: Session = Depends(get_db),
) -> list[BlockedPeriodResponse]:
    periods = list_blocked_periods(db, therapist_id, limit=limit, offset=offset)
    return [BlockedPeriodResponse.model_validate(period) for period in periods]


@router.post(
    "/{therapist_id}/blocked-periods",
    response_model=BlockedPeriodResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_blocked_period(
    therapist_id: int,
    payload: BlockedPeriodCreateRequest,
    _: User = Depends(require_schedule_manager),
    db: Session = Depends(get_db),
) -> BlockedPeriodResponse:
    period = add_blocked_period(
        db,
        therapist_id,
        start_at=payload.start_at,
        end_at=payload.end_at,
        title=payload.title,
    )
    return BlockedPeriodResponse.model_validate(period)


@router.delete("/{therapist_id}/blocked-periods/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_period(
    therapist_id: int,
    period_id: int,
    _: User = Depends(require_schedule_manager),
    db: Session = Depends(get_db),
) -> Response:
    remove_blocked_period(db, therapist_id, period_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
