import datetime as dt

from hive_booking.schemas.common import CamelModel


class SlotResponse(CamelModel):
    time: str
    is_available: bool
    conflict_reason: str | None = None


class AvailabilityResponse(CamelModel):
    therapist_id: int
    date: dt.date
    duration_minutes: int
    slots: list[SlotResponse]
