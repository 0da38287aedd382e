from fastapi import APIRouter, Depends
from sqlmodel import Session

from obrastock.db import get_session
from obrastock.deps import require_permission
from obrastock.models import Tool, User
from obrastock.schemas import LoanCreate, LoanRead, LoanWithToolInfo
from obrastock.services import loans, reports
from obrastock.services.store import get_loan

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=list[LoanWithToolInfo])
def list_loans(
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("read")),
):
    return reports.list_loans(session, user.worksite)


@router.get("/active", response_model=list[LoanWithToolInfo])
def list_active_loans(
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("read")),
):
    return reports.list_active_loans(session, user.worksite)


@router.get("/overdue", response_model=list[LoanWithToolInfo])
def list_overdue_loans(
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("read")),
):
    return reports.list_overdue_loans(session, user.worksite)


@router.get("/{loan_id}", response_model=LoanWithToolInfo)
def read_loan(
        loan_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission("read")),
):
    loan = get_loan(session, loan_id)
    return reports.decorate_loan(loan, session.get(Tool, loan.tool_id))


@router.post("", response_model=LoanRead, status_code=201)
def create_loan(
        data: LoanCreate,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("write")),
):
    return loans.create_loan(session, data, user=user)


@router.patch("/{loan_id}/return", response_model=LoanRead)
def return_loan(
        loan_id: int,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission("write")),
):
    return loans.return_loan(session, loan_id, user=user)
