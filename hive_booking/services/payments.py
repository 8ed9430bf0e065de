import logging
from abc import ABC, abstractmethod
from uuid import uuid4

from hive_booking.db.models import Appointment

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    @abstractmethod
    def charge(self, appointment: Appointment, reference: str | None = None) -> str:
        """Collect the session fee and return the provider's payment reference."""
        raise NotImplementedError

    @abstractmethod
    def refund(self, appointment: Appointment) -> None:
        raise NotImplementedError


class RecordingPaymentGateway(PaymentGateway):
    """Accepts every charge and keeps a record of calls in memory."""

    def __init__(self) -> None:
        self.charges: list[tuple[int, str]] = []
        self.refunds: list[tuple[int, str | None]] = []

    def charge(self, appointment: Appointment, reference: str | None = None) -> str:
        payment_reference = reference or f"pay_{uuid4().hex[:16]}"
        self.charges.append((appointment.id, payment_reference))
        logger.info("payment_charged appointment_id=%s reference=%s", appointment.id, payment_reference)
        return payment_reference

    def refund(self, appointment: Appointment) -> None:
        self.refunds.append((appointment.id, appointment.payment_reference))
        logger.info(
            "payment_refunded appointment_id=%s reference=%s",
            appointment.id,
            appointment.payment_reference,
        )


payment_gateway: PaymentGateway = RecordingPaymentGateway()
