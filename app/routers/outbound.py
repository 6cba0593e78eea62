# app/routers/outbound.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from app.models import User
from app.dependencies import get_session, require_permission
from app.schemas import BoxOutboundRequest, OutboundRequest
from app.services import inventory as inventory_service
from app.services.outbound import commit_box_outbound, commit_outbound
from app.services.spreadsheet import csv_stream
from app.utils.permissions import Permission

router = APIRouter(tags=["outbound"])

can_create = require_permission(Permission.OUTBOUND_CREATE)
can_empty_box = require_permission(Permission.OUTBOUND_BOX)
can_read = require_permission(Permission.OUTBOUND_READ)

@router.post("/api/outbound")
async def create_outbound(
    data: OutboundRequest,
    user: User = Depends(can_create),
    session: Session = Depends(get_session)
):
    """Takes the selected tubes out of storage; all of them or none."""
    count = commit_outbound(session, data.cell_ids, reason=data.reason, operator=data.operator or user.name)
    return {"success": True, "count": count}

@router.post("/api/outbound/box")
async def create_box_outbound(
    data: BoxOutboundRequest,
    user: User = Depends(can_empty_box),
    session: Session = Depends(get_session)
):
    """Empties a whole box."""
    count = commit_box_outbound(session, data.box_id, reason=data.reason, operator=data.operator or user.name)
    return {"success": True, "count": count}

@router.get("/api/outbound")
async def list_outbound(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    return inventory_service.list_outbound_records(session, search=search, page=page, page_size=page_size)

@router.get("/api/outbound/export")
async def export_outbound_csv(
    search: Optional[str] = None,
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    """Generates a CSV export of the outbound records."""
    return StreamingResponse(
        csv_stream(inventory_service.OUTBOUND_EXPORT_HEADER, inventory_service.outbound_export_rows(session, search)),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=outbound_records.csv"}
    )
