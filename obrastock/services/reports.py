"""
只读汇总：工具借用数、借用展示信息、首页统计。

工地过滤规则：origin_worksite 为空的工具属于公共池，所有工地都能看到；
借用跟着它的工具走。每次读取都现算，不缓存。
"""
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from obrastock.config import settings
from obrastock.models import Loan, Tool, utcnow
from obrastock.schemas import DashboardStats, LoanStatus, LoanWithToolInfo, ToolWithLoanInfo
from obrastock.services.loans import days_overdue, is_overdue

LOW_STOCK_THRESHOLD = 2


def in_scope(tool: Optional[Tool], worksite: Optional[str]) -> bool:
    if not worksite:
        return True
    if tool is None:
        return False
    return tool.origin_worksite is None or tool.origin_worksite == worksite


def decorate_tool(tool: Tool, loans: Iterable[Loan], now: Optional[datetime] = None) -> ToolWithLoanInfo:
    now = now or utcnow()
    active = [
        loan for loan in loans
        if loan.tool_id == tool.id and loan.status == LoanStatus.active.value
    ]
    return ToolWithLoanInfo(
        **tool.model_dump(),
        current_loans=len(active),
        overdue_loans=sum(1 for loan in active if is_overdue(loan, now)),
    )


def decorate_loan(loan: Loan, tool: Optional[Tool], now: Optional[datetime] = None) -> LoanWithToolInfo:
    now = now or utcnow()
    return LoanWithToolInfo(
        **loan.model_dump(),
        tool_name=tool.name if tool else None,
        tool_code=tool.code if tool else None,
        is_overdue=is_overdue(loan, now),
        days_overdue=days_overdue(loan, now),
    )


def dashboard_stats(
    tools: Iterable[Tool],
    loans: Iterable[Loan],
    now: Optional[datetime] = None,
    threshold: int = LOW_STOCK_THRESHOLD,
) -> DashboardStats:
    """tools / loans 必须是已经按工地过滤过的。"""
    now = now or utcnow()
    tools = list(tools)
    active = [loan for loan in loans if loan.status == LoanStatus.active.value]

    return DashboardStats(
        total_tools=sum(t.total_quantity for t in tools),
        lent_tools=sum(loan.quantity for loan in active),
        low_stock_count=sum(1 for t in tools if t.available_quantity <= threshold),
        overdue_returns=sum(1 for loan in active if is_overdue(loan, now)),
    )


def _scoped_loans(session: Session, worksite: Optional[str], status: Optional[LoanStatus] = None):
    """返回 (借用列表, {tool_id: Tool})，借用已按工地过滤。"""
    tools_by_id = {t.id: t for t in session.exec(select(Tool)).all()}

    stmt = select(Loan)
    if status is not None:
        stmt = stmt.where(Loan.status == status.value)
    loans = session.exec(stmt.order_by(Loan.id.asc())).all()

    scoped = [loan for loan in loans if in_scope(tools_by_id.get(loan.tool_id), worksite)]
    return scoped, tools_by_id


def list_tools(
    session: Session,
    worksite: Optional[str] = None,
    *,
    q: Optional[str] = None,
    category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[ToolWithLoanInfo]:
    now = now or utcnow()
    stmt = select(Tool).where(Tool.is_active == True)  # noqa: E712
    if q:
        stmt = stmt.where(or_(Tool.name.contains(q), Tool.code.contains(q), Tool.category.contains(q)))
    if category:
        stmt = stmt.where(Tool.category == category)
    tools = [t for t in session.exec(stmt.order_by(Tool.id.asc())).all() if in_scope(t, worksite)]

    active = session.exec(select(Loan).where(Loan.status == LoanStatus.active.value)).all()
    loans_by_tool: dict[int, list[Loan]] = defaultdict(list)
    for loan in active:
        loans_by_tool[loan.tool_id].append(loan)

    return [decorate_tool(t, loans_by_tool[t.id], now) for t in tools]


def get_tool_info(session: Session, tool: Tool, now: Optional[datetime] = None) -> ToolWithLoanInfo:
    loans = session.exec(
        select(Loan).where(Loan.tool_id == tool.id, Loan.status == LoanStatus.active.value)
    ).all()
    return decorate_tool(tool, loans, now)


def list_loans(
    session: Session,
    worksite: Optional[str] = None,
    *,
    status: Optional[LoanStatus] = None,
    now: Optional[datetime] = None,
) -> list[LoanWithToolInfo]:
    now = now or utcnow()
    loans, tools_by_id = _scoped_loans(session, worksite, status)
    return [decorate_loan(loan, tools_by_id.get(loan.tool_id), now) for loan in loans]


def list_active_loans(session: Session, worksite: Optional[str] = None, now: Optional[datetime] = None):
    return list_loans(session, worksite, status=LoanStatus.active, now=now)


def list_overdue_loans(session: Session, worksite: Optional[str] = None, now: Optional[datetime] = None):
    return [info for info in list_active_loans(session, worksite, now) if info.is_overdue]


def get_dashboard_stats(
    session: Session,
    worksite: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DashboardStats:
    loans, tools_by_id = _scoped_loans(session, worksite)
    tools = [t for t in tools_by_id.values() if t.is_active and in_scope(t, worksite)]
    return dashboard_stats(tools, loans, now, threshold=settings.low_stock_threshold)
