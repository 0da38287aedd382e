"""
库存流水（审计账）：只追加，不修改，不删除。

数量符号约定：负数 = 出库（借出 / 报废出库），正数 = 入库（新建入库 / 归还 / 调拨入库）。
流水不参与推算库存，Tool.available_quantity 是直接维护的计数器。
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_
from sqlmodel import Session, select

from obrastock.error import BadRequest
from obrastock.models import InventoryMovement
from obrastock.schemas import MovementType


def record_movement(
    session: Session,
    tool_id: int,
    type: MovementType,
    quantity: int,
    description: Optional[str] = None,
    user_id: Optional[int] = None,
    loan_id: Optional[int] = None,
    origin_worksite: Optional[str] = None,
) -> InventoryMovement:
    # 不 commit：由调用方的事务一起提交
    mv = InventoryMovement(
        tool_id=tool_id,
        type=type.value,
        quantity=quantity,
        description=description,
        user_id=user_id,
        loan_id=loan_id,
        origin_worksite=origin_worksite,
    )
    session.add(mv)
    session.flush()
    return mv


def build_description(type: MovementType, quantity: int, subject: str, note: Optional[str] = None) -> str:
    note_clean = (note or "").strip()
    if note_clean:
        return note_clean

    if type == MovementType.loan:
        return f"借出给 {subject}（{quantity}）"
    if type == MovementType.ret:
        return f"{subject} 归还（{quantity}）"
    if type == MovementType.transfer:
        return f"调拨入库：来自 {subject}"
    if type == MovementType.exit:
        return f"出库 {quantity} - {subject}"
    return f"入库 +{quantity} - {subject}"


def _get_zone(tz_str: Optional[str]) -> Optional[ZoneInfo]:
    tz_str = (tz_str or "").strip()
    if not tz_str:
        return None
    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError):
        raise BadRequest(f"tz 不合法：{tz_str}（例：America/Sao_Paulo / UTC）")


def parse_dt_or_date(s: str, *, is_end: bool, assume_tz: Optional[ZoneInfo]) -> datetime:
    """
    支持 "YYYY-MM-DD" 和 ISO datetime（可带 Z / +08:00）。
    纯日期：start=当天00:00，end=次日00:00（左闭右开）。
    不带时区时按 assume_tz，再没有就按 UTC；返回 UTC-naive。
    """
    s = (s or "").strip()
    if not s:
        raise BadRequest("start/end 不能为空")

    tz = assume_tz or timezone.utc

    if len(s) == 10 and s[4] == "-" and s[7] == "-":
        try:
            d = date.fromisoformat(s)
        except ValueError:
            raise BadRequest(f"日期格式错误：{s}，应为 YYYY-MM-DD")
        local_dt = datetime(d.year, d.month, d.day, tzinfo=tz)
        if is_end:
            local_dt = local_dt + timedelta(days=1)
        return local_dt.astimezone(timezone.utc).replace(tzinfo=None)

    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        raise BadRequest(f"时间格式错误：{s}，例：2026-01-12T08:30:00Z")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def list_movements(
    session: Session,
    worksite: Optional[str] = None,
    *,
    tool_id: Optional[int] = None,
    type: Optional[MovementType] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    tz: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
) -> list[InventoryMovement]:
    stmt = select(InventoryMovement)

    if worksite:
        # origin_worksite 为空的流水属于公共池，各工地都能看到
        stmt = stmt.where(
            or_(
                InventoryMovement.origin_worksite == worksite,
                InventoryMovement.origin_worksite.is_(None),
            )
        )
    if tool_id is not None:
        stmt = stmt.where(InventoryMovement.tool_id == tool_id)
    if type is not None:
        stmt = stmt.where(InventoryMovement.type == type.value)

    zone = _get_zone(tz)
    start_dt = parse_dt_or_date(start, is_end=False, assume_tz=zone) if start else None
    end_dt = parse_dt_or_date(end, is_end=True, assume_tz=zone) if end else None
    if start_dt is not None and end_dt is not None and start_dt >= end_dt:
        raise BadRequest("start 必须早于 end")
    if start_dt is not None:
        stmt = stmt.where(InventoryMovement.created_at >= start_dt)
    if end_dt is not None:
        stmt = stmt.where(InventoryMovement.created_at < end_dt)

    # 账本顺序 = 插入顺序
    stmt = stmt.order_by(InventoryMovement.id.asc()).offset(offset).limit(limit)
    return list(session.exec(stmt).all())
