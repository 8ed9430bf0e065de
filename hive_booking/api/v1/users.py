from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from hive_booking.api.deps import get_current_user, require_roles
from hive_booking.api.pagination import LimitParam, OffsetParam
from hive_booking.db.models import User, UserRole
from hive_booking.db.session import get_db
from hive_booking.schemas.user import UserResponse, build_user_response

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
def get_me(current_user: User = Depends(get_current_user)):
    return build_user_response(current_user)


@router.get("", response_model=list[UserResponse], status_code=status.HTTP_200_OK)
def list_users(
    _: User = Depends(require_roles(UserRole.ADMIN)),
    limit: LimitParam = 20,
    offset: OffsetParam = 0,
    db: Session = Depends(get_db),
):
    users = db.scalars(select(User).order_by(User.id).limit(limit).offset(offset)).all()
    return [build_user_response(user) for user in users]
