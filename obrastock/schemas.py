from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from obrastock.models import as_utc_naive


class Role(str, Enum):
    admin = "admin"
    manager = "manager"
    operator = "operator"


class EntryType(str, Enum):
    purchase = "purchase"
    transfer = "transfer"


class LoanStatus(str, Enum):
    active = "active"
    returned = "returned"


class MovementType(str, Enum):
    entry = "entry"
    exit = "exit"
    loan = "loan"
    ret = "return"
    transfer = "transfer"


class StockAction(str, Enum):
    entry = "entry"
    exit = "exit"


# ---------- users / auth ----------

class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=3, max_length=120)
    password: str = Field(..., min_length=1)
    worksite: Optional[str] = None


class UserRead(BaseModel):
    id: int
    username: str
    email: str
    role: Role
    worksite: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class UserUpdate(BaseModel):
    role: Optional[Role] = None
    worksite: Optional[str] = None
    is_active: Optional[bool] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Optional[UserRead] = None


# ---------- tools ----------

class ToolCreate(BaseModel):
    name: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=50)
    category: str = Field(..., min_length=1)
    total_quantity: int = Field(0, ge=0, le=100000)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    entry_type: EntryType = EntryType.purchase
    origin_worksite: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _transfer_needs_origin(self):
        if self.entry_type == EntryType.transfer and not (self.origin_worksite or "").strip():
            raise ValueError("调拨入库必须填写 origin_worksite（来源工地）")
        return self


class ToolUpdate(BaseModel):
    # 只允许改描述性字段；数量走 /quantity 或借还
    name: Optional[str] = Field(None, min_length=1)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    category: Optional[str] = Field(None, min_length=1)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    notes: Optional[str] = None


class ToolRead(BaseModel):
    id: int
    name: str
    code: str
    category: str
    total_quantity: int
    available_quantity: int
    unit_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    entry_type: EntryType
    origin_worksite: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ToolWithLoanInfo(ToolRead):
    current_loans: int = 0
    overdue_loans: int = 0


class StockAdjust(BaseModel):
    action: StockAction = Field(..., description="entry=入库 / exit=出库报废")
    quantity: int = Field(..., ge=1, le=100000)
    note: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"action": "entry", "quantity": 5, "note": "补货5"},
                {"action": "exit", "quantity": 1, "note": "损坏报废"},
            ]
        }
    }


# ---------- loans ----------

class LoanCreate(BaseModel):
    tool_id: int = Field(..., ge=1)
    borrower_name: str = Field(..., min_length=1)
    borrower_team: Optional[str] = None
    borrower_contact: Optional[str] = None
    quantity: int = Field(1, ge=1)
    loan_date: Optional[datetime] = None
    expected_return_date: datetime
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _return_after_loan(self):
        if self.loan_date is not None:
            if as_utc_naive(self.expected_return_date) < as_utc_naive(self.loan_date):
                raise ValueError("expected_return_date 不能早于 loan_date")
        return self


class LoanRead(BaseModel):
    id: int
    tool_id: int
    borrower_name: str
    borrower_team: Optional[str] = None
    borrower_contact: Optional[str] = None
    quantity: int
    loan_date: datetime
    expected_return_date: datetime
    actual_return_date: Optional[datetime] = None
    status: LoanStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LoanWithToolInfo(LoanRead):
    tool_name: Optional[str] = None
    tool_code: Optional[str] = None
    is_overdue: bool = False
    days_overdue: int = 0


# ---------- movements / dashboard ----------

class MovementRead(BaseModel):
    id: int
    tool_id: int
    type: MovementType
    quantity: int
    description: Optional[str] = None
    user_id: Optional[int] = None
    loan_id: Optional[int] = None
    origin_worksite: Optional[str] = None
    created_at: datetime


class DashboardStats(BaseModel):
    total_tools: int
    lent_tools: int
    low_stock_count: int
    overdue_returns: int
