from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from obrastock.db import get_session
from obrastock.deps import require_permission
from obrastock.models import User
from obrastock.schemas import MovementRead, MovementType
from obrastock.services.ledger import list_movements

router = APIRouter(prefix="/movements", tags=["movements"])


@router.get("", response_model=list[MovementRead])
def read_movements(
    tool_id: Optional[int] = Query(None, ge=1, description="按工具ID过滤（可选）"),
    type: Optional[MovementType] = Query(None, description="按流水类型过滤（可选）"),
    tz: Optional[str] = Query(None, description="时区（可选），例：America/Sao_Paulo / UTC。start/end 不带时区时按它解释"),
    start: Optional[str] = Query(None, description="开始时间/日期，例：2026-01-12 或 2026-01-12T08:30:00"),
    end: Optional[str] = Query(None, description="结束时间/日期（左闭右开）"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("read")),
):
    return list_movements(
        session,
        user.worksite,
        tool_id=tool_id,
        type=type,
        start=start,
        end=end,
        tz=tz,
        limit=limit,
        offset=offset,
    )
