from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from hive_booking.core.security import decode_access_token
from hive_booking.db.models import TherapistProfile, User, UserRole
from hive_booking.db.session import get_db
from hive_booking.services.notifications import NotificationDispatcher, notification_dispatcher
from hive_booking.services.payments import PaymentGateway, payment_gateway

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    unauthorized_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized_exc
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload.get("sub", ""))
    except (ValueError, TypeError):
        raise unauthorized_exc

    user = db.scalar(select(User).where(User.id == user_id))
    if not user or not user.is_active:
        raise unauthorized_exc
    return user


def require_roles(*roles: UserRole | str) -> Callable[[User], User]:
    allowed_roles = {role.value if isinstance(role, UserRole) else role for role in roles}

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return current_user

    return checker


def require_schedule_manager(
    therapist_id: int,
    current_user: User = Depends(require_roles(UserRole.THERAPIST, UserRole.ADMIN)),
    db: Session = Depends(get_db),
) -> User:
    """Only the therapist who owns the schedule, or an admin, may change it."""
    if current_user.role == UserRole.ADMIN.value:
        return current_user

    profile = db.scalar(select(TherapistProfile).where(TherapistProfile.user_id == current_user.id))
    if profile is None or profile.id != therapist_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
    return current_user


def get_notification_dispatcher() -> NotificationDispatcher:
    return notification_dispatcher


def get_payment_gateway() -> PaymentGateway:
    return payment_gateway
