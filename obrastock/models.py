from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # 库里统一存 UTC-naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: str = Field(default="operator")  # admin / manager / operator
    worksite: Optional[str] = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Tool(SQLModel, table=True):
    __tablename__ = "tools"
    __table_args__ = (
        CheckConstraint("total_quantity >= 0", name="ck_tools_total_non_negative"),
        CheckConstraint("available_quantity >= 0", name="ck_tools_available_non_negative"),
        CheckConstraint("available_quantity <= total_quantity", name="ck_tools_available_le_total"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    code: str = Field(index=True, unique=True)
    category: str = Field(index=True)

    total_quantity: int = Field(default=0)
    available_quantity: int = Field(default=0)  # 只由借还/出入库改动

    unit_price: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    entry_type: str = Field(default="purchase")  # purchase / transfer
    origin_worksite: Optional[str] = Field(default=None, index=True)  # None = 公共池
    notes: Optional[str] = None

    is_active: bool = Field(default=True)  # False = 已停用（软删除）
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Loan(SQLModel, table=True):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_loans_quantity_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tool_id: int = Field(foreign_key="tools.id", index=True)

    borrower_name: str
    borrower_team: Optional[str] = None
    borrower_contact: Optional[str] = None

    quantity: int = Field(default=1)  # 创建后不可改
    loan_date: datetime = Field(default_factory=utcnow)
    expected_return_date: datetime
    actual_return_date: Optional[datetime] = None
    status: str = Field(default="active", index=True)  # active / returned
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class InventoryMovement(SQLModel, table=True):
    __tablename__ = "inventory_movements"

    id: Optional[int] = Field(default=None, primary_key=True)
    tool_id: int = Field(foreign_key="tools.id", index=True)

    type: str = Field(index=True)  # entry / exit / loan / return / transfer
    quantity: int                   # 带符号：+入 / -出

    description: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    loan_id: Optional[int] = Field(default=None, foreign_key="loans.id", index=True)
    origin_worksite: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)
