from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, SmallInteger, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hive_booking.db.base import Base


class AvailabilityBlock(Base):
    """One recurring weekly window; all blocks of a therapist form the weekly availability."""

    __tablename__ = "availability_blocks"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_blocks_day_of_week"),
        CheckConstraint(
            "start_minute >= 0 AND start_minute < end_minute AND end_minute <= 1440",
            name="ck_availability_blocks_interval",
        ),
        Index("ix_availability_blocks_therapist_day", "therapist_id", "day_of_week"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    therapist_id: Mapped[int] = mapped_column(
        ForeignKey("therapist_profiles.id", ondelete="CASCADE"), nullable=False
    )
    # 0 = Monday, matching date.weekday()
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_minute: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    end_minute: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    therapist = relationship("TherapistProfile", back_populates="availability_blocks")
