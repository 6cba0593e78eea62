# app/routers/inbound.py
import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlmodel import Session

from app.models import User
from app.dependencies import get_session, require_permission
from app.schemas import (
    BatchRowsRequest, BulkCommitResult, CellBatchCreate, UploadValidationResult, ValidationErrorItem, ValidationResult, dump
)
from app.services import inventory as inventory_service
from app.services.inbound import commit_batch, commit_rows
from app.services.locations import load_storage_snapshot
from app.services.spreadsheet import build_template_workbook, csv_stream, parse_spreadsheet
from app.services.storage import list_locations
from app.services.validation import BatchRowValidator
from app.utils.permissions import Permission
from app.utils.security import validate_spreadsheet_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["inbound"])

can_create = require_permission(Permission.INBOUND_CREATE)
can_read = require_permission(Permission.INBOUND_READ)
can_batch = require_permission(Permission.INBOUND_BATCH)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

NO_ROWS = ValidationErrorItem(row=0, message="no rows to validate")

def _validate(session: Session, rows) -> ValidationResult:
    if not rows:
        return ValidationResult(success=False, errors=[NO_ROWS], message="no rows to validate")

    snapshot = load_storage_snapshot(session, {r.freezer_name.strip() for r in rows})
    errors = BatchRowValidator(snapshot).validate(rows)
    if errors:
        return ValidationResult(
            success=False,
            errors=errors,
            message=f"{len(errors)} problems found in {len({e.row for e in errors})} rows"
        )
    return ValidationResult(success=True, message=f"{len(rows)} rows passed validation")

# --- SINGLE INBOUND ---

@router.post("/api/inbound", status_code=201)
async def create_inbound(
    data: CellBatchCreate,
    user: User = Depends(can_create),
    session: Session = Depends(get_session)
):
    """Stores one batch of tubes at the given positions."""
    batch, cells = commit_batch(session, data, operator=user.name)
    return dump(batch, cells=[dump(c) for c in cells])

@router.get("/api/inbound")
async def list_inbound(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    return inventory_service.list_inbound_records(session, search=search, page=page, page_size=page_size)

@router.get("/api/inbound/export")
async def export_inbound_csv(
    search: Optional[str] = None,
    user: User = Depends(can_read),
    session: Session = Depends(get_session)
):
    """Generates a CSV export of the inbound records."""
    return StreamingResponse(
        csv_stream(inventory_service.INBOUND_EXPORT_HEADER, inventory_service.inbound_export_rows(session, search)),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=inbound_records.csv"}
    )

# --- BULK INBOUND ---

@router.post("/api/inbound/batch/validate", response_model=ValidationResult)
async def validate_batch(
    data: BatchRowsRequest,
    user: User = Depends(can_batch),
    session: Session = Depends(get_session)
):
    """Checks every proposed row and reports every problem; nothing is stored."""
    return _validate(session, data.rows)

@router.post("/api/inbound/batch/commit", response_model=BulkCommitResult)
async def commit_batch_rows(
    data: BatchRowsRequest,
    user: User = Depends(can_batch),
    session: Session = Depends(get_session)
):
    """
    Re-validates the rows and, when they are all clean, stores them one
    row per transaction.
    """
    result = _validate(session, data.rows)
    if not result.success:
        return BulkCommitResult(success=False, errors=result.errors)

    results = commit_rows(session, data.rows, operator=user.name)
    return BulkCommitResult(success=all(r.success for r in results), results=results)

@router.post("/api/inbound/batch/upload", response_model=UploadValidationResult)
async def upload_batch(
    file: UploadFile = File(...),
    user: User = Depends(can_batch),
    session: Session = Depends(get_session)
):
    """Parses an uploaded .xlsx/.csv sheet and validates its rows."""
    ext = validate_spreadsheet_upload(file)
    content = await file.read()
    rows = parse_spreadsheet(content, ext)
    result = _validate(session, rows)
    logger.info(f"Upload {file.filename} by {user.email}: {len(rows)} rows, {len(result.errors)} errors")
    return UploadValidationResult(**result.model_dump(), rows=rows)

@router.get("/api/inbound/template")
async def download_template(user: User = Depends(can_batch), session: Session = Depends(get_session)):
    """The bulk inbound workbook template with a sheet listing every box."""
    content = build_template_workbook(list_locations(session))
    return Response(
        content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=batch_inbound_template_{date.today().isoformat()}.xlsx"}
    )
