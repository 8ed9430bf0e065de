import datetime as dt
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from hive_booking.core.config import settings
from hive_booking.db.session import get_db
from hive_booking.schemas.availability import AvailabilityResponse, SlotResponse
from hive_booking.services.availability_service import get_available_slots

router = APIRouter(tags=["availability"])


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def get_availability(
    therapist_id: Annotated[int, Query(alias="therapistId", gt=0)],
    target_date: Annotated[dt.date, Query(alias="date")],
    duration: Annotated[int | None, Query(gt=0)] = None,
    db: Session = Depends(get_db),
) -> AvailabilityResponse:
    duration_minutes = duration or settings.default_slot_duration_minutes
    slots = get_available_slots(
        db=db,
        therapist_id=therapist_id,
        target_date=target_date,
        slot_duration_minutes=duration_minutes,
    )
    return AvailabilityResponse(
        therapist_id=therapist_id,
        date=target_date,
        duration_minutes=duration_minutes,
        slots=[
            SlotResponse(
                time=slot.label,
                is_available=slot.is_available,
                conflict_reason=slot.conflict_reason,
            )
            for slot in slots
        ],
    )
