from datetime import datetime
import io
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.table import Table, TableStyleInfo
from sqlmodel import Session

from obrastock.db import get_session
from obrastock.deps import require_permission
from obrastock.error import _forbidden_403
from obrastock.models import User
from obrastock.schemas import EntryType, StockAdjust, ToolCreate, ToolRead, ToolUpdate, ToolWithLoanInfo
from obrastock.security import has_permission
from obrastock.services import inventory, reports
from obrastock.services.store import get_tool

router = APIRouter(prefix="/tools", tags=["tools"])


@router.post("", response_model=ToolRead, status_code=201)
def create_tool(
        data: ToolCreate,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("write")),
):
    # 调拨入库需要 manage_transfers
    if data.entry_type == EntryType.transfer and not has_permission(user.role, "manage_transfers"):
        raise _forbidden_403("manage_transfers")
    return inventory.create_tool(session, data, user=user)


@router.get("", response_model=list[ToolWithLoanInfo])
def list_tools(
        q: Optional[str] = None,
        category: Optional[str] = None,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("read")),
):
    return reports.list_tools(session, user.worksite, q=q, category=category)


@router.get("/export.xlsx")
def export_tools_xlsx(
    q: Optional[str] = None,
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("read")),
):
    tools = reports.list_tools(session, user.worksite, q=q)

    header = ["ID", "编码", "名称", "类别", "总数", "可用", "借出中", "逾期", "来源工地", "更新时间"]

    wb = Workbook()
    ws = wb.active
    ws.title = "工具台账"

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="DDDDDD")
    header_align = Alignment(horizontal="center", vertical="center")

    ws.append(header)
    ws.row_dimensions[1].height = 26
    for col in range(1, len(header) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_align

    for t in tools:
        ws.append([
            t.id,
            t.code,
            t.name,
            t.category,
            t.total_quantity,
            t.available_quantity,
            t.current_loans,
            t.overdue_loans,
            t.origin_worksite or "公共",
            t.updated_at,
        ])

    data_end_row = 1 + len(tools)
    ws.freeze_panes = "A2"

    for r in range(2, data_end_row + 1):
        for c in (5, 6, 7, 8):
            ws.cell(row=r, column=c).number_format = "0"
        ws.cell(row=r, column=10).number_format = "yyyy-mm-dd hh:mm:ss"

    col_widths = {"A": 8, "B": 14, "C": 24, "D": 14, "E": 8, "F": 8, "G": 8, "H": 8, "I": 24, "J": 20}
    for k, w in col_widths.items():
        ws.column_dimensions[k].width = w

    table = Table(displayName="ToolInventory", ref=f"A1:J{max(1, data_end_row)}")
    table.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium9",
        showFirstColumn=False,
        showLastColumn=False,
        showRowStripes=True,
        showColumnStripes=False,
    )
    if tools:
        # 只有表头时 Excel 会认为表格范围非法
        ws.add_table(table)

    ws.append([])
    ws.append(["导出时间", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])

    buf = io.BytesIO()
    wb.save(buf)

    quoted = quote("工具台账.xlsx")
    headers = {
        "Content-Disposition": f"attachment; filename=\"tools.xlsx\"; filename*=UTF-8''{quoted}"
    }
    return Response(
        content=buf.getvalue(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )


@router.get("/{tool_id}", response_model=ToolWithLoanInfo)
def read_tool(
        tool_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission("read")),
):
    return reports.get_tool_info(session, get_tool(session, tool_id))


@router.patch("/{tool_id}", response_model=ToolRead)
def update_tool(
        tool_id: int,
        body: ToolUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission("write")),
):
    return inventory.update_tool(session, tool_id, body)


@router.patch("/{tool_id}/quantity", response_model=ToolRead)
def adjust_tool_quantity(
    tool_id: int,
    body: StockAdjust,
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("write")),
):
    return inventory.adjust_stock(session, tool_id, body.action, body.quantity, note=body.note, user=user)


@router.delete("/{tool_id}", response_model=ToolRead)
def delete_tool(
        tool_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission("delete")),
):
    return inventory.retire_tool(session, tool_id)
