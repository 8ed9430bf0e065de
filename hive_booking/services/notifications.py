import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from hive_booking.db.models import Appointment

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Outbound messages about appointment lifecycle events."""

    @abstractmethod
    def appointment_booked(self, appointment: Appointment) -> None:
        raise NotImplementedError

    @abstractmethod
    def appointment_cancelled(self, appointment: Appointment) -> None:
        raise NotImplementedError

    @abstractmethod
    def appointment_reminder(self, appointment: Appointment) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    def appointment_booked(self, appointment: Appointment) -> None:
        logger.info(
            "notify_appointment_booked appointment_id=%s therapist_id=%s client_id=%s date=%s time=%s",
            appointment.id,
            appointment.therapist_id,
            appointment.client_id,
            appointment.date,
            appointment.time_label,
        )

    def appointment_cancelled(self, appointment: Appointment) -> None:
        logger.info(
            "notify_appointment_cancelled appointment_id=%s reason=%s",
            appointment.id,
            appointment.cancellation_reason,
        )

    def appointment_reminder(self, appointment: Appointment) -> None:
        logger.info(
            "notify_appointment_reminder appointment_id=%s date=%s time=%s",
            appointment.id,
            appointment.date,
            appointment.time_label,
        )


def dispatch_safely(send: Callable[[Appointment], None], appointment: Appointment) -> bool:
    """Deliver a notification after commit; a failure is logged and never raised."""
    try:
        send(appointment)
    except Exception:
        logger.exception("notification_failed appointment_id=%s", appointment.id)
        return False
    return True


notification_dispatcher: NotificationDispatcher = LoggingNotificationDispatcher()
