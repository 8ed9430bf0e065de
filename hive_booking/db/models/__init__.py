from hive_booking.db.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    PaymentStatus,
)
from hive_booking.db.models.availability_block import AvailabilityBlock
from hive_booking.db.models.blocked_period import BlockedPeriod
from hive_booking.db.models.therapist_profile import TherapistProfile
from hive_booking.db.models.user import User, UserRole

__all__ = [
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentStatus",
    "AvailabilityBlock",
    "BlockedPeriod",
    "PaymentStatus",
    "TherapistProfile",
    "User",
    "UserRole",
]
