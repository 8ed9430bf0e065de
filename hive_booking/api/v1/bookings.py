from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from hive_booking.api.deps import get_current_user, get_notification_dispatcher, get_payment_gateway, require_roles
from hive_booking.core.config import settings
from hive_booking.core.rate_limiter import rate_limiter
from hive_booking.db.models import Appointment, TherapistProfile, User, UserRole
from hive_booking.db.session import get_db
from hive_booking.schemas.booking import (
    AppointmentResponse,
    BookingCreateRequest,
    CancelRequest,
    ConfirmRequest,
)
from hive_booking.services.availability_service import parse_time_label
from hive_booking.services.booking_service import (
    cancel_appointment,
    confirm_appointment,
    get_appointment,
    reserve_appointment,
)
from hive_booking.services.calendar_service import build_appointment_calendar_ics
from hive_booking.services.notifications import NotificationDispatcher
from hive_booking.services.payments import PaymentGateway

router = APIRouter(tags=["bookings"])


def _rate_limit_or_raise(request: Request, response: Response, client_id: int) -> None:
    client_ip = request.client.host if request.client else "unknown"
    allowed, retry_after = rate_limiter.allow(
        key=f"book:{client_ip}:{client_id}",
        limit=settings.booking_max_attempts,
        window_seconds=settings.booking_rate_limit_window_seconds,
    )
    if not allowed:
        response.headers["Retry-After"] = str(retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )


def _normalize_idempotency_key(idempotency_key: str | None) -> str | None:
    if idempotency_key is None:
        return None
    normalized = idempotency_key.strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header must not be empty",
        )
    if len(normalized) > 128:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header is too long (max 128 characters)",
        )
    return normalized


def _get_accessible_appointment(db: Session, appointment_id: int, current_user: User) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if current_user.role == UserRole.ADMIN.value or appointment.client_id == current_user.id:
        return appointment

    therapist = db.scalar(select(TherapistProfile).where(TherapistProfile.id == appointment.therapist_id))
    if therapist and therapist.user_id == current_user.id:
        return appointment
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")


@router.post("/book", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_session(
    payload: BookingCreateRequest,
    request: Request,
    response: Response,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> AppointmentResponse:
    _rate_limit_or_raise(request=request, response=response, client_id=payload.client_id)
    appointment = reserve_appointment(
        db=db,
        therapist_id=payload.therapist_id,
        client_id=payload.client_id,
        session_date=payload.date,
        start_minute=parse_time_label(payload.time),
        duration_minutes=payload.duration_minutes,
        idempotency_key=_normalize_idempotency_key(idempotency_key),
        notifier=notifier,
    )
    return AppointmentResponse.from_appointment(appointment)


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse, status_code=status.HTTP_200_OK)
def get_appointment_by_id(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppointmentResponse:
    appointment = _get_accessible_appointment(db, appointment_id, current_user)
    return AppointmentResponse.from_appointment(appointment)


@router.patch(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
)
def cancel_existing_appointment(
    appointment_id: int,
    payload: CancelRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> AppointmentResponse:
    _get_accessible_appointment(db, appointment_id, current_user)
    appointment = cancel_appointment(
        db=db,
        appointment_id=appointment_id,
        reason=payload.reason if payload else None,
        notifier=notifier,
        gateway=gateway,
    )
    return AppointmentResponse.from_appointment(appointment)


@router.post(
    "/appointments/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
)
def confirm_existing_appointment(
    appointment_id: int,
    payload: ConfirmRequest | None = None,
    current_user: User = Depends(require_roles(UserRole.CLIENT, UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> AppointmentResponse:
    _get_accessible_appointment(db, appointment_id, current_user)
    appointment = confirm_appointment(
        db=db,
        appointment_id=appointment_id,
        payment_reference=payload.payment_reference if payload else None,
        gateway=gateway,
    )
    return AppointmentResponse.from_appointment(appointment)


@router.get("/appointments/{appointment_id}/calendar.ics", status_code=status.HTTP_200_OK)
def download_appointment_calendar_file(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    appointment = _get_accessible_appointment(db, appointment_id, current_user)
    therapist = appointment.therapist
    ics_content = build_appointment_calendar_ics(
        appointment_id=appointment.id,
        local_start=appointment.starts_at,
        local_end=appointment.ends_at,
        therapist_timezone=therapist.timezone,
        therapist_display_name=therapist.display_name,
        client_email=appointment.client.email,
        appointment_status=appointment.status,
    )
    filename = f"appointment-{appointment.id}.ics"
    return Response(
        content=ics_content,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
