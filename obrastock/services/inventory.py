import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from obrastock.error import Conflict, InsufficientStock, InvalidState
from obrastock.models import Loan, Tool, User, utcnow
from obrastock.schemas import EntryType, LoanStatus, MovementType, StockAction, ToolCreate, ToolUpdate
from obrastock.services.ledger import build_description, record_movement
from obrastock.services.loans import tool_lock
from obrastock.services.store import find_tool_by_code, get_tool, lock_tool

logger = logging.getLogger(__name__)


def _code_taken(code: str) -> Conflict:
    return Conflict(f"工具编码已存在：{code}", code="TOOL_CODE_EXISTS")


def create_tool(session: Session, data: ToolCreate, user: Optional[User] = None) -> Tool:
    code = data.code.strip()
    if find_tool_by_code(session, code):
        raise _code_taken(code)

    is_transfer = data.entry_type == EntryType.transfer
    # 调拨入库保留来源工地；采购入库归到当前用户的工地（没有工地 = 公共池）
    origin = data.origin_worksite.strip() if is_transfer else (user.worksite if user else None)

    now = utcnow()
    tool = Tool(
        name=data.name.strip(),
        code=code,
        category=data.category.strip(),
        total_quantity=data.total_quantity,
        available_quantity=data.total_quantity,
        unit_price=data.unit_price,
        supplier=data.supplier,
        purchase_date=data.purchase_date,
        entry_type=data.entry_type.value,
        origin_worksite=origin,
        notes=data.notes,
        created_at=now,
        updated_at=now,
    )
    session.add(tool)
    try:
        session.flush()  # 生成 tool.id，同时兜底 unique 冲突
    except IntegrityError:
        session.rollback()
        raise _code_taken(code)

    if tool.total_quantity > 0:
        mv_type = MovementType.transfer if is_transfer else MovementType.entry
        subject = f"{origin} - {tool.name}" if is_transfer else tool.name
        record_movement(
            session,
            tool_id=tool.id,
            type=mv_type,
            quantity=tool.total_quantity,
            description=build_description(mv_type, tool.total_quantity, subject),
            user_id=user.id if user else None,
            origin_worksite=origin,
        )

    session.commit()
    session.refresh(tool)
    logger.info("tool %s registered: code=%s qty=%s entry=%s", tool.id, tool.code, tool.total_quantity, tool.entry_type)
    return tool


def update_tool(session: Session, tool_id: int, data: ToolUpdate) -> Tool:
    tool = get_tool(session, tool_id)
    changes = data.model_dump(exclude_unset=True)
    # 这几列 NOT NULL，传 null 当作不修改
    for field in ("name", "code", "category"):
        if changes.get(field, "") is None:
            changes.pop(field)

    new_code = changes.get("code")
    if new_code is not None:
        new_code = new_code.strip()
        changes["code"] = new_code
        other = find_tool_by_code(session, new_code)
        if other and other.id != tool.id:
            raise _code_taken(new_code)

    for field, value in changes.items():
        setattr(tool, field, value)
    tool.updated_at = utcnow()
    session.add(tool)

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        # 只有编码被别的工具抢先占用才算冲突，其余约束错误原样抛出
        if new_code is not None:
            other = find_tool_by_code(session, new_code)
            if other and other.id != tool_id:
                raise _code_taken(new_code)
        raise
    session.refresh(tool)
    return tool


def adjust_stock(
    session: Session,
    tool_id: int,
    action: StockAction,
    quantity: int,
    note: Optional[str] = None,
    user: Optional[User] = None,
) -> Tool:
    """入库加总量和可用量；出库（报废/调出）两者一起减，借出中的不能出库。"""
    get_tool(session, tool_id)
    with tool_lock(tool_id):
        tool = lock_tool(session, tool_id)
        if not tool.is_active:
            raise InvalidState("工具已停用", code="TOOL_RETIRED")

        if action == StockAction.entry:
            signed = quantity
        else:
            if quantity > tool.available_quantity:
                logger.warning(
                    "exit rejected: tool=%s available=%s requested=%s",
                    tool.id, tool.available_quantity, quantity,
                )
                raise InsufficientStock(
                    f"库存不足：可用 {tool.available_quantity}，要出库 {quantity}"
                )
            signed = -quantity

        old_total = tool.total_quantity
        tool.total_quantity += signed
        tool.available_quantity += signed
        tool.updated_at = utcnow()
        session.add(tool)

        mv_type = MovementType.entry if action == StockAction.entry else MovementType.exit
        record_movement(
            session,
            tool_id=tool.id,
            type=mv_type,
            quantity=signed,
            description=build_description(
                mv_type, quantity, f"{tool.name}（{old_total}->{tool.total_quantity}）", note
            ),
            user_id=user.id if user else None,
            origin_worksite=user.worksite if user else tool.origin_worksite,
        )
        session.commit()

    session.refresh(tool)
    logger.info("tool %s stock %s %s -> total=%s", tool.id, action.value, quantity, tool.total_quantity)
    return tool


def count_active_loans(session: Session, tool_id: int) -> int:
    stmt = select(Loan).where(Loan.tool_id == tool_id, Loan.status == LoanStatus.active.value)
    return len(session.exec(stmt).all())


def retire_tool(session: Session, tool_id: int) -> Tool:
    """软删除：有未归还借用时不允许；历史借用和流水保持引用完整。"""
    get_tool(session, tool_id)
    with tool_lock(tool_id):
        tool = lock_tool(session, tool_id)
        if not tool.is_active:
            raise InvalidState("工具已停用", code="TOOL_RETIRED")

        active = count_active_loans(session, tool_id)
        if active:
            raise InvalidState(f"还有 {active} 笔借用未归还，不能删除", code="TOOL_HAS_ACTIVE_LOANS")

        tool.is_active = False
        tool.updated_at = utcnow()
        session.add(tool)
        session.commit()

    session.refresh(tool)
    logger.info("tool %s retired: code=%s", tool.id, tool.code)
    return tool
