from fastapi import APIRouter, Depends
from sqlmodel import Session

from obrastock.db import get_session
from obrastock.deps import require_permission
from obrastock.models import User
from obrastock.schemas import DashboardStats
from obrastock.services.reports import get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
def dashboard_stats(
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("read")),
):
    return get_dashboard_stats(session, user.worksite)
