from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError

from obrastock.config import settings
from obrastock.db import get_session
from obrastock.deps import require_user
from obrastock.error import Conflict, _auth_401
from obrastock.models import User, utcnow
from obrastock.schemas import Role, Token, UserCreate, UserRead
from obrastock.security import create_access_token, hash_password, verify_password
from obrastock.services.store import find_user_by_email, find_user_by_username

ADMIN_USERNAME = "admin"

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/setup", response_model=UserRead, status_code=201)
def setup_admin(session: Session = Depends(get_session)):
    # 只在系统里还没有任何 admin 角色的账号时可用
    if session.exec(select(User).where(User.role == Role.admin.value)).first():
        raise Conflict("系统已初始化", code="ALREADY_SETUP")
    if find_user_by_username(session, ADMIN_USERNAME):
        raise Conflict("用户名已存在", code="USERNAME_EXISTS")

    admin = User(
        username=ADMIN_USERNAME,
        email=settings.initial_admin_email,
        password_hash=hash_password(settings.initial_admin_password),
        role=Role.admin.value,
        worksite=settings.initial_admin_worksite,
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


@router.post("/register", response_model=UserRead, status_code=201)
def register(data: UserCreate, session: Session = Depends(get_session)):
    # 1) admin 留给 /auth/setup，再查一遍重复，给友好提示
    if data.username.strip().lower() == ADMIN_USERNAME:
        raise Conflict("该用户名为系统保留", code="USERNAME_RESERVED")
    if find_user_by_username(session, data.username):
        raise Conflict("用户名已存在", code="USERNAME_EXISTS")
    if find_user_by_email(session, data.email):
        raise Conflict("邮箱已被使用", code="EMAIL_EXISTS")

    # 2) 新注册一律是 operator，角色由管理员在 /users 里调整
    user = User(
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        role=Role.operator.value,
        worksite=data.worksite,
    )
    session.add(user)

    # 3) 并发下的 unique 冲突兜底
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("用户名或邮箱已存在", code="USERNAME_EXISTS")

    session.refresh(user)
    return user


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    user = find_user_by_username(session, form_data.username)
    if (not user) or (not user.is_active) or (not verify_password(form_data.password, user.password_hash)):
        raise _auth_401("INVALID_CREDENTIALS", "用户名或密码错误")

    user.last_login = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)

    token = create_access_token(user.username, role=user.role)
    return {"access_token": token, "token_type": "bearer", "user": user}


@router.get("/me", response_model=UserRead)
def me(user: User = Depends(require_user)):
    return user
