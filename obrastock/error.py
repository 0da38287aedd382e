from fastapi import HTTPException


class InventoryError(Exception):
    """业务错误基类：带 kind(code) 和可读 message，由 main 里的 handler 转成 JSON。"""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class BadRequest(InventoryError):
    pass


class NotFound(InventoryError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(InventoryError):
    status_code = 409
    code = "CONFLICT"


class InvalidState(InventoryError):
    status_code = 409
    code = "INVALID_STATE"


class InsufficientStock(InventoryError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"


def _auth_401(code: str, message: str) -> HTTPException:
    # ✅ 保留 WWW-Authenticate，符合 Bearer 规范
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_403(permission: str) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"code": "FORBIDDEN", "message": f"没有权限：{permission}"},
    )
