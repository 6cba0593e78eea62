# app/routers/storage.py
import qrcode
from io import BytesIO
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlmodel import Session

# Import models, dependencies, and utilities
from app.models import Box, User
from app.dependencies import get_session, require_permission
from app.errors import NotFound
from app.schemas import BoxIn, FreezerIn, RackIn, dump
from app.services import storage as storage_service
from app.services.spreadsheet import csv_stream
from app.utils.permissions import Permission
from app.config import BASE_URL

router = APIRouter(tags=["storage"])

can_read = require_permission(Permission.INVENTORY_READ)
can_manage = require_permission(Permission.STORAGE_MANAGE)

# --- FREEZERS ---

@router.get("/api/freezers")
async def list_freezers(user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Freezers with nested racks and boxes and their stored tube counts."""
    return storage_service.list_freezers(session)

@router.post("/api/freezers", status_code=201)
async def create_freezer(data: FreezerIn, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    return dump(storage_service.create_freezer(session, data))

@router.put("/api/freezers/{freezer_id}")
async def update_freezer(
    freezer_id: int,
    data: FreezerIn,
    user: User = Depends(can_manage),
    session: Session = Depends(get_session)
):
    return dump(storage_service.update_freezer(session, freezer_id, data))

@router.delete("/api/freezers/{freezer_id}")
async def delete_freezer(freezer_id: int, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    """Deletes a freezer and everything in it; refused while it holds stored tubes."""
    storage_service.delete_freezer(session, freezer_id)
    return {"success": True}

# --- RACKS ---

@router.post("/api/racks", status_code=201)
async def create_rack(data: RackIn, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    return dump(storage_service.create_rack(session, data))

@router.put("/api/racks/{rack_id}")
async def update_rack(rack_id: int, data: RackIn, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    return dump(storage_service.update_rack(session, rack_id, data))

@router.delete("/api/racks/{rack_id}")
async def delete_rack(rack_id: int, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    storage_service.delete_rack(session, rack_id)
    return {"success": True}

# --- BOXES ---

@router.post("/api/boxes", status_code=201)
async def create_box(data: BoxIn, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    return dump(storage_service.create_box(session, data))

@router.get("/api/boxes/{box_id}")
async def get_box(box_id: int, user: User = Depends(can_read), session: Session = Depends(get_session)):
    """The box grid: size, location path and every stored tube."""
    return storage_service.get_box_detail(session, box_id)

@router.put("/api/boxes/{box_id}")
async def update_box(box_id: int, data: BoxIn, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    return dump(storage_service.update_box(session, box_id, data))

@router.delete("/api/boxes/{box_id}")
async def delete_box(box_id: int, user: User = Depends(can_manage), session: Session = Depends(get_session)):
    storage_service.delete_box(session, box_id)
    return {"success": True}

@router.get("/api/boxes/{box_id}/export")
async def export_box_csv(box_id: int, user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Generates a CSV export of the tubes stored in one box."""
    rows = storage_service.box_export_rows(session, box_id)
    return StreamingResponse(
        csv_stream(["位置", "细胞编号", "细胞名称", "细胞类型", "代次", "冻存日期", "操作人"], rows),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=box_{box_id}_export.csv"}
    )

@router.get("/api/boxes/{box_id}/qrcode")
async def generate_qr(box_id: int, user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Generates a QR code PNG pointing to the box detail deep-link, for printed labels."""
    if not session.get(Box, box_id):
        raise NotFound("box not found")

    full_url = f"{BASE_URL}/api/boxes/{box_id}"
    qr = qrcode.QRCode(box_size=10, border=4)
    qr.add_data(full_url)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf)
    buf.seek(0)
    return StreamingResponse(buf, media_type="image/png")

# --- LOCATIONS ---

@router.get("/api/locations")
async def list_locations(user: User = Depends(can_read), session: Session = Depends(get_session)):
    """Flat list of every box with its "Freezer → Rack → Box" path and fill level."""
    return [
        {
            "boxId": loc["box_id"],
            "freezerName": loc["freezer_name"],
            "rackName": loc["rack_name"],
            "boxName": loc["box_name"],
            "rows": loc["rows"],
            "cols": loc["cols"],
            "size": loc["size"],
            "storedCount": loc["stored_count"],
            "path": loc["path"],
        }
        for loc in storage_service.list_locations(session)
    ]
