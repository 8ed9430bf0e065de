from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import EmailStr, Field

from hive_booking.db.models import User, UserRole
from hive_booking.schemas.common import CamelModel


class _UserBase(CamelModel):
    id: int
    email: EmailStr
    full_name: str | None = None
    is_active: bool
    created_at: datetime


class ClientUserResponse(_UserBase):
    role: Literal["client"] = "client"


class TherapistUserResponse(_UserBase):
    role: Literal["therapist"] = "therapist"
    therapist_id: int | None = None
    display_name: str | None = None
    timezone: str | None = None


class AdminUserResponse(_UserBase):
    role: Literal["admin"] = "admin"


UserResponse = Annotated[
    Union[ClientUserResponse, TherapistUserResponse, AdminUserResponse],
    Field(discriminator="role"),
]


def build_user_response(user: User) -> ClientUserResponse | TherapistUserResponse | AdminUserResponse:
    base = {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "is_active": user.is_active,
        "created_at": user.created_at,
    }
    if user.role == UserRole.THERAPIST.value:
        profile = user.therapist_profile
        return TherapistUserResponse(
            **base,
            therapist_id=profile.id if profile else None,
            display_name=profile.display_name if profile else None,
            timezone=profile.timezone if profile else None,
        )
    if user.role == UserRole.ADMIN.value:
        return AdminUserResponse(**base)
    return ClientUserResponse(**base)
