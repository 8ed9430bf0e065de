import datetime as dt
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, SmallInteger, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hive_booking.core.exceptions import InvalidTransitionError
from hive_booking.db.base import Base


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


# Appointments in these states hold their interval; no two may overlap.
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    AppointmentStatus.PENDING.value: frozenset(
        {AppointmentStatus.CONFIRMED.value, AppointmentStatus.CANCELLED.value}
    ),
    AppointmentStatus.CONFIRMED.value: frozenset(
        {AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value}
    ),
    AppointmentStatus.CANCELLED.value: frozenset(),
    AppointmentStatus.COMPLETED.value: frozenset(),
}


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint("client_id", "idempotency_key", name="uq_appointments_client_idempotency_key"),
        Index("ix_appointments_therapist_date", "therapist_id", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    therapist_id: Mapped[int] = mapped_column(
        ForeignKey("therapist_profiles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_minute: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value
    )
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    confirmed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_sent_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    therapist = relationship("TherapistProfile", back_populates="appointments")
    client = relationship("User", back_populates="appointments")

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def time_label(self) -> str:
        return f"{self.start_minute // 60:02d}:{self.start_minute % 60:02d}"

    @property
    def starts_at(self) -> dt.datetime:
        """Naive wall-clock start in the therapist's timezone."""
        return dt.datetime.combine(self.date, dt.time.min) + dt.timedelta(minutes=self.start_minute)

    @property
    def ends_at(self) -> dt.datetime:
        return self.starts_at + dt.timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def transition_to(self, target: AppointmentStatus, now: dt.datetime | None = None) -> None:
        if target.value not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(current=self.status, target=target.value)

        moment = now or dt.datetime.now(dt.UTC)
        self.status = target.value
        if target is AppointmentStatus.CONFIRMED:
            self.confirmed_at = moment
        elif target is AppointmentStatus.CANCELLED:
            self.cancelled_at = moment
        elif target is AppointmentStatus.COMPLETED:
            self.completed_at = moment

    def cancel(self, reason: str | None = None, now: dt.datetime | None = None) -> None:
        self.transition_to(AppointmentStatus.CANCELLED, now=now)
        self.cancellation_reason = reason
