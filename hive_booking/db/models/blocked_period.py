from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hive_booking.db.base import Base


class BlockedPeriod(Base):
    __tablename__ = "blocked_periods"
    __table_args__ = (CheckConstraint("start_at < end_at", name="ck_blocked_periods_interval"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    therapist_id: Mapped[int] = mapped_column(
        ForeignKey("therapist_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Wall-clock times in the therapist's timezone.
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    therapist = relationship("TherapistProfile", back_populates="blocked_periods")
