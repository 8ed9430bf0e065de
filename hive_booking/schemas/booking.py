import datetime as dt

from pydantic import Field

from hive_booking.db.models import Appointment
from hive_booking.schemas.common import TIME_LABEL_PATTERN, CamelModel


class BookingCreateRequest(CamelModel):
    therapist_id: int = Field(gt=0)
    client_id: int = Field(gt=0)
    date: dt.date
    time: str = Field(pattern=TIME_LABEL_PATTERN)
    duration_minutes: int = Field(gt=0)


class CancelRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=255)


class ConfirmRequest(CamelModel):
    payment_reference: str | None = Field(default=None, max_length=128)


class AppointmentResponse(CamelModel):
    id: int
    therapist_id: int
    client_id: int
    date: dt.date
    time: str
    duration_minutes: int
    status: str
    payment_status: str
    created_at: dt.datetime
    confirmed_at: dt.datetime | None = None
    cancelled_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    cancellation_reason: str | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            therapist_id=appointment.therapist_id,
            client_id=appointment.client_id,
            date=appointment.date,
            time=appointment.time_label,
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
            payment_status=appointment.payment_status,
            created_at=appointment.created_at,
            confirmed_at=appointment.confirmed_at,
            cancelled_at=appointment.cancelled_at,
            completed_at=appointment.completed_at,
            cancellation_reason=appointment.cancellation_reason,
        )
