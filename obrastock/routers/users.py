from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from obrastock.db import get_session
from obrastock.deps import require_permission
from obrastock.models import User, utcnow
from obrastock.schemas import UserRead, UserUpdate
from obrastock.services.store import get_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserRead])
def list_users(
    session: Session = Depends(get_session),
    _user: User = Depends(require_permission("manage_users")),
):
    return session.exec(select(User).order_by(User.id.asc())).all()


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    body: UserUpdate,
    session: Session = Depends(get_session),
    _user: User = Depends(require_permission("manage_users")),
):
    user = get_user(session, user_id)
    changes = body.model_dump(exclude_unset=True)
    # role / is_active 不允许置空；worksite 置空 = 回到公共池
    for field in ("role", "is_active"):
        if changes.get(field) is None:
            changes.pop(field, None)
    if "role" in changes:
        changes["role"] = changes["role"].value

    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = utcnow()

    session.add(user)
    session.commit()
    session.refresh(user)
    return user
