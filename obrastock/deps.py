from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlmodel import Session

from obrastock.db import get_session
from obrastock.models import User
from obrastock.security import decode_token, has_permission
from obrastock.services.store import find_user_by_username
from obrastock.error import _auth_401, _forbidden_403

# ✅ auto_error=False，让我们接管“没带token”的错误格式
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def require_user(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    # 1) 没带 token
    if not token:
        raise _auth_401("NOT_AUTHENTICATED", "未登录或登录已失效，请重新登录")

    # 2) token 无效 / 过期 / secret_key 不一致
    try:
        username = decode_token(token)
    except (JWTError, ValueError):
        raise _auth_401("INVALID_TOKEN", "Token 无效或已过期，请重新登录")

    # 3) 用户被删 / 被停用
    user = find_user_by_username(session, username)
    if not user:
        raise _auth_401("USER_NOT_FOUND", "用户不存在或已被删除")
    if not user.is_active:
        raise _auth_401("USER_INACTIVE", "账号已停用")

    return user


def require_permission(permission: str):
    """按角色权限表放行，例：Depends(require_permission("delete"))"""

    def checker(user: User = Depends(require_user)) -> User:
        if not has_permission(user.role, permission):
            raise _forbidden_403(permission)
        return user

    checker.__name__ = f"require_{permission}"
    return checker
