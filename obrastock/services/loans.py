import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional

from sqlmodel import Session

from obrastock.error import BadRequest, InsufficientStock, InvalidState
from obrastock.models import Loan, User, as_utc_naive, utcnow
from obrastock.schemas import LoanCreate, LoanStatus, MovementType
from obrastock.services.ledger import build_description, record_movement
from obrastock.services.store import get_loan, get_tool, lock_tool

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_tool_locks: dict[int, threading.Lock] = {}


@contextmanager
def tool_lock(tool_id: int) -> Iterator[None]:
    """同一个工具的“读数量-校验-写数量-写流水-提交”串行执行。"""
    with _locks_guard:
        lock = _tool_locks.setdefault(tool_id, threading.Lock())
    with lock:
        yield


def is_overdue(loan: Loan, now: Optional[datetime] = None) -> bool:
    # 已归还的永远不算逾期（哪怕当初是晚还的）
    if loan.status != LoanStatus.active.value:
        return False
    now = as_utc_naive(now) or utcnow()
    return now > as_utc_naive(loan.expected_return_date)


def days_overdue(loan: Loan, now: Optional[datetime] = None) -> int:
    now = as_utc_naive(now) or utcnow()
    if not is_overdue(loan, now):
        return 0
    return (now - as_utc_naive(loan.expected_return_date)) // timedelta(days=1)


def create_loan(
    session: Session,
    data: LoanCreate,
    user: Optional[User] = None,
    now: Optional[datetime] = None,
) -> Loan:
    now = as_utc_naive(now) or utcnow()
    # 先确认工具存在，不存在的 id 不进锁表
    get_tool(session, data.tool_id)

    with tool_lock(data.tool_id):
        tool = lock_tool(session, data.tool_id)
        if not tool.is_active:
            raise InvalidState("工具已停用，不能借出", code="TOOL_RETIRED")
        if data.quantity < 1:
            raise BadRequest("借出数量必须 >= 1", code="INVALID_QUANTITY")
        if tool.available_quantity < data.quantity:
            logger.warning(
                "loan rejected: tool=%s available=%s requested=%s",
                tool.id, tool.available_quantity, data.quantity,
            )
            raise InsufficientStock(
                f"库存不足：可用 {tool.available_quantity}，要借 {data.quantity}"
            )

        loan = Loan(
            tool_id=tool.id,
            borrower_name=data.borrower_name.strip(),
            borrower_team=data.borrower_team,
            borrower_contact=data.borrower_contact,
            quantity=data.quantity,
            loan_date=as_utc_naive(data.loan_date) or now,
            expected_return_date=as_utc_naive(data.expected_return_date),
            status=LoanStatus.active.value,
            actual_return_date=None,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        session.add(loan)
        session.flush()  # 生成 loan.id

        tool.available_quantity -= data.quantity
        tool.updated_at = now
        session.add(tool)

        record_movement(
            session,
            tool_id=tool.id,
            type=MovementType.loan,
            quantity=-data.quantity,
            description=build_description(MovementType.loan, data.quantity, loan.borrower_name),
            user_id=user.id if user else None,
            loan_id=loan.id,
            origin_worksite=user.worksite if user else None,
        )

        session.commit()

    session.refresh(loan)
    logger.info("loan %s created: tool=%s qty=%s borrower=%s", loan.id, loan.tool_id, loan.quantity, loan.borrower_name)
    return loan


def return_loan(
    session: Session,
    loan_id: int,
    user: Optional[User] = None,
    now: Optional[datetime] = None,
) -> Loan:
    now = as_utc_naive(now) or utcnow()
    loan = get_loan(session, loan_id)

    with tool_lock(loan.tool_id):
        # 拿到锁之后再读一次，防止并发重复归还
        session.refresh(loan)
        if loan.status == LoanStatus.returned.value:
            logger.warning("loan %s already returned at %s", loan.id, loan.actual_return_date)
            raise InvalidState("该借用已归还，不能重复归还", code="LOAN_ALREADY_RETURNED")

        tool = lock_tool(session, loan.tool_id)

        loan.status = LoanStatus.returned.value
        loan.actual_return_date = now
        loan.updated_at = now
        session.add(loan)

        # 按借出时的数量原样还回去
        tool.available_quantity += loan.quantity
        tool.updated_at = now
        session.add(tool)

        record_movement(
            session,
            tool_id=tool.id,
            type=MovementType.ret,
            quantity=loan.quantity,
            description=build_description(MovementType.ret, loan.quantity, loan.borrower_name),
            user_id=user.id if user else None,
            loan_id=loan.id,
            origin_worksite=user.worksite if user else None,
        )

        session.commit()

    session.refresh(loan)
    logger.info("loan %s returned: tool=%s qty=%s", loan.id, loan.tool_id, loan.quantity)
    return loan
