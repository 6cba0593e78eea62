# app/routers/stats.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from app.models import User
from app.dependencies import get_session, require_permission
from app.services import stats as stats_service
from app.utils.permissions import Permission

router = APIRouter(tags=["reports"])

can_read = require_permission(Permission.REPORTS_READ)

@router.get("/api/stats")
async def overview(user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Dashboard totals, this month's movements and the six-month trend."""
    return stats_service.overview(session)

@router.get("/api/stats/time-range")
async def time_range(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    return stats_service.time_range(session, start_date, end_date)
