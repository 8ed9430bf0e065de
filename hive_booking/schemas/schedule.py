import datetime as dt

from pydantic import Field, model_validator

from hive_booking.schemas.common import BLOCK_END_PATTERN, TIME_LABEL_PATTERN, CamelModel


class TimeBlockPayload(CamelModel):
    start: str = Field(pattern=TIME_LABEL_PATTERN)
    end: str = Field(pattern=BLOCK_END_PATTERN)


class DayAvailabilityPayload(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    enabled: bool = True
    blocks: list[TimeBlockPayload] = Field(default_factory=list)


class WeeklyAvailabilityRequest(CamelModel):
    days: list[DayAvailabilityPayload]

    @model_validator(mode="after")
    def check_unique_days(self) -> "WeeklyAvailabilityRequest":
        seen = [day.day_of_week for day in self.days]
        if len(seen) != len(set(seen)):
            raise ValueError("Each day of week may appear only once")
        return self


class WeeklyAvailabilityResponse(CamelModel):
    therapist_id: int
    timezone: str
    days: list[DayAvailabilityPayload]


class BlockedPeriodCreateRequest(CamelModel):
    start_at: dt.datetime
    end_at: dt.datetime
    title: str = Field(min_length=1, max_length=120)

    @model_validator(mode="after")
    def check_interval(self) -> "BlockedPeriodCreateRequest":
        if self.start_at >= self.end_at:
            raise ValueError("startAt must be before endAt")
        return self


class BlockedPeriodResponse(CamelModel):
    id: int
    therapist_id: int
    start_at: dt.datetime
    end_at: dt.datetime
    title: str
    created_at: dt.datetime
