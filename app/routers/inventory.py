# app/routers/inventory.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlmodel import Session

# Import models, dependencies, and utilities
from app.models import User
from app.dependencies import get_session, require_permission
from app.errors import InvalidInput
from app.schemas import CellBatchUpdate, dump
from app.services import inventory as inventory_service
from app.services.spreadsheet import csv_stream
from app.utils.permissions import Permission

router = APIRouter(tags=["inventory"])

can_read = require_permission(Permission.INVENTORY_READ)
can_edit = require_permission(Permission.INBOUND_CREATE)

@router.get("/api/batches")
async def list_batches(
    search: Optional[str] = None,
    cell_type: Optional[str] = Query(None, alias="cellType"),
    status: str = "all",
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    """Batches with tube counts and locations, filterable by text, type and status."""
    if status not in inventory_service.BATCH_STATUSES:
        raise InvalidInput(f"status must be one of {', '.join(inventory_service.BATCH_STATUSES)}")
    return inventory_service.list_batches(
        session, search=search, cell_type=cell_type, status=status, page=page, page_size=page_size
    )

@router.put("/api/batches/{batch_id}")
async def update_batch(
    batch_id: int,
    data: CellBatchUpdate,
    user: User = Depends(can_edit),
    session: Session = Depends(get_session)
):
    return dump(inventory_service.update_batch(session, batch_id, data))

@router.get("/api/cell-types")
async def list_cell_types(user: User = Depends(can_read), session: Session = Depends(get_session)):
    return inventory_service.list_cell_types(session)

@router.get("/api/inventory/export")
async def export_inventory_csv(user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Generates a CSV export of every stored tube."""
    return StreamingResponse(
        csv_stream(inventory_service.INVENTORY_EXPORT_HEADER, inventory_service.inventory_export_rows(session)),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=inventory_export.csv"}
    )
