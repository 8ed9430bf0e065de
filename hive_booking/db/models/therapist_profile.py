from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hive_booking.db.base import Base


class TherapistProfile(Base):
    __tablename__ = "therapist_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Europe/London")
    # Bumped inside every reservation transaction; the row write serializes
    # concurrent bookings for the same therapist.
    booking_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    user = relationship("User", back_populates="therapist_profile")
    availability_blocks = relationship("AvailabilityBlock", back_populates="therapist", cascade="all, delete-orphan")
    blocked_periods = relationship("BlockedPeriod", back_populates="therapist", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="therapist")
