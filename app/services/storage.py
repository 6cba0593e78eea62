# app/services/storage.py
"""
Freezer / rack / box management and read models of the storage hierarchy.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, or_, select

from app.errors import InvalidInput, NotFound, PositionConflict, StorageNotEmpty
from app.models import Box, Cell, CellBatch, CellStatus, Freezer, Rack
from app.schemas import BoxIn, FreezerIn, RackIn, dump
from app.services.locations import box_path
from app.services.positions import format_position

logger = logging.getLogger(__name__)


def stored_counts(session: Session, box_ids: Optional[Iterable[int]] = None) -> Dict[int, int]:
    """box id -> number of stored tubes."""
    query = (
        select(Cell.box_id, func.count(Cell.id))
        .where(Cell.status == CellStatus.STORED)
        .group_by(Cell.box_id)
    )
    if box_ids is not None:
        query = query.where(Cell.box_id.in_(list(box_ids)))
    return {box_id: count for box_id, count in session.exec(query).all()}


def _count_stored_below(session: Session, *conditions) -> int:
    query = select(func.count(Cell.id)).join(Box, Cell.box_id == Box.id).join(Rack, Box.rack_id == Rack.id)
    return session.exec(query.where(Cell.status == CellStatus.STORED, *conditions)).one()


def _purge_boxes(session: Session, box_ids: List[int]):
    """Deletes removed-tube records and then the boxes themselves."""
    if not box_ids:
        return
    session.execute(delete(Cell).where(Cell.box_id.in_(box_ids)))
    session.execute(delete(Box).where(Box.id.in_(box_ids)))


# --- FREEZERS ---

def list_freezers(session: Session) -> List[dict]:
    """Every freezer with its racks and boxes, newest first, plus stored counts."""
    counts = stored_counts(session)
    result = []
    for freezer in session.exec(select(Freezer).order_by(Freezer.created_at.desc(), Freezer.id.desc())).all():
        racks = []
        for rack in sorted(freezer.racks, key=lambda r: (r.created_at, r.id), reverse=True):
            boxes = [
                dump(b, stored_count=counts.get(b.id, 0))
                for b in sorted(rack.boxes, key=lambda b: (b.created_at, b.id), reverse=True)
            ]
            racks.append(dump(rack, boxes=boxes, stored_count=sum(b["storedCount"] for b in boxes)))
        result.append(dump(freezer, racks=racks, stored_count=sum(r["storedCount"] for r in racks)))
    return result


def create_freezer(session: Session, data: FreezerIn) -> Freezer:
    freezer = Freezer(**data.model_dump())
    session.add(freezer)
    session.commit()
    session.refresh(freezer)
    logger.info(f"Created freezer '{freezer.name}' ({freezer.id})")
    return freezer


def update_freezer(session: Session, freezer_id: int, data: FreezerIn) -> Freezer:
    freezer = session.get(Freezer, freezer_id)
    if not freezer:
        raise NotFound("freezer not found")
    for key, value in data.model_dump().items():
        setattr(freezer, key, value)
    session.add(freezer)
    session.commit()
    session.refresh(freezer)
    return freezer


def delete_freezer(session: Session, freezer_id: int):
    """Deletes a freezer with its racks and boxes; refused while tubes are stored in it."""
    if not session.get(Freezer, freezer_id):
        raise NotFound("freezer not found")

    stored = _count_stored_below(session, Rack.freezer_id == freezer_id)
    if stored:
        raise StorageNotEmpty(
            f"this freezer still holds {stored} stored cells, remove them before deleting it", stored
        )

    box_ids = session.exec(
        select(Box.id).join(Rack, Box.rack_id == Rack.id).where(Rack.freezer_id == freezer_id)
    ).all()
    _purge_boxes(session, list(box_ids))
    session.execute(delete(Rack).where(Rack.freezer_id == freezer_id))
    session.execute(delete(Freezer).where(Freezer.id == freezer_id))
    session.commit()
    logger.info(f"Deleted freezer {freezer_id} ({len(box_ids)} boxes)")


# --- RACKS ---

def create_rack(session: Session, data: RackIn) -> Rack:
    if data.freezer_id is None:
        raise InvalidInput("freezer is required")
    if not session.get(Freezer, data.freezer_id):
        raise NotFound("freezer not found")
    rack = Rack(**data.model_dump())
    session.add(rack)
    session.commit()
    session.refresh(rack)
    logger.info(f"Created rack '{rack.name}' in freezer {rack.freezer_id}")
    return rack


def update_rack(session: Session, rack_id: int, data: RackIn) -> Rack:
    rack = session.get(Rack, rack_id)
    if not rack:
        raise NotFound("rack not found")
    if data.freezer_id is not None and data.freezer_id != rack.freezer_id:
        if not session.get(Freezer, data.freezer_id):
            raise NotFound("freezer not found")
        rack.freezer_id = data.freezer_id
    rack.name = data.name
    rack.capacity = data.capacity
    rack.remark = data.remark
    session.add(rack)
    session.commit()
    session.refresh(rack)
    return rack


def delete_rack(session: Session, rack_id: int):
    if not session.get(Rack, rack_id):
        raise NotFound("rack not found")

    stored = _count_stored_below(session, Rack.id == rack_id)
    if stored:
        raise StorageNotEmpty(
            f"this rack still holds {stored} stored cells, remove them before deleting it", stored
        )

    box_ids = session.exec(select(Box.id).where(Box.rack_id == rack_id)).all()
    _purge_boxes(session, list(box_ids))
    session.execute(delete(Rack).where(Rack.id == rack_id))
    session.commit()
    logger.info(f"Deleted rack {rack_id}")


# --- BOXES ---

def create_box(session: Session, data: BoxIn) -> Box:
    if data.rack_id is None:
        raise InvalidInput("rack is required")
    if not session.get(Rack, data.rack_id):
        raise NotFound("rack not found")
    box = Box(**data.model_dump())
    session.add(box)
    session.commit()
    session.refresh(box)
    logger.info(f"Created box '{box.name}' ({box.rows}x{box.cols}) in rack {box.rack_id}")
    return box


def update_box(session: Session, box_id: int, data: BoxIn) -> Box:
    """Renames or resizes a box. A box cannot shrink below a stored tube."""
    box = session.get(Box, box_id)
    if not box:
        raise NotFound("box not found")

    outside = session.exec(
        select(Cell.position_row, Cell.position_col).where(
            Cell.box_id == box_id,
            Cell.status == CellStatus.STORED,
            or_(Cell.position_row > data.rows, Cell.position_col > data.cols)
        )
    ).all()
    if outside:
        labels = ", ".join(sorted(format_position(r, c) for r, c in outside))
        raise PositionConflict(f"cannot resize to {data.rows}×{data.cols}: positions {labels} hold stored cells")

    if data.rack_id is not None and data.rack_id != box.rack_id:
        if not session.get(Rack, data.rack_id):
            raise NotFound("rack not found")
        box.rack_id = data.rack_id
    box.name = data.name
    box.rows = data.rows
    box.cols = data.cols
    box.remark = data.remark
    session.add(box)
    session.commit()
    session.refresh(box)
    return box


def delete_box(session: Session, box_id: int):
    if not session.get(Box, box_id):
        raise NotFound("box not found")

    stored = _count_stored_below(session, Box.id == box_id)
    if stored:
        raise StorageNotEmpty(
            f"this box still holds {stored} stored cells, remove them before deleting it", stored
        )

    _purge_boxes(session, [box_id])
    session.commit()
    logger.info(f"Deleted box {box_id}")


def get_box_detail(session: Session, box_id: int) -> dict:
    """The box with its location and every stored tube, ordered by position."""
    box = session.get(Box, box_id)
    if not box:
        raise NotFound("box not found")

    stored = session.exec(
        select(Cell, CellBatch)
        .join(CellBatch, Cell.batch_id == CellBatch.id)
        .where(Cell.box_id == box_id, Cell.status == CellStatus.STORED)
        .order_by(Cell.position_row, Cell.position_col)
    ).all()

    cells = [
        dump(
            cell, exclude={"batch_id", "box_id"},
            position=format_position(cell.position_row, cell.position_col),
            batch=dump(batch, exclude={"created_at", "updated_at"})
        )
        for cell, batch in stored
    ]
    return dump(
        box,
        path=box_path(box),
        rack=dump(box.rack),
        freezer=dump(box.rack.freezer),
        stored_count=len(cells),
        cells=cells
    )


def box_export_rows(session: Session, box_id: int) -> List[list]:
    """CSV rows for one box: position, tube code and batch details."""
    detail = get_box_detail(session, box_id)
    return [
        [
            c["position"], c["code"], c["batch"]["name"], c["batch"]["cellType"],
            c["batch"]["passage"], c["batch"]["freezeDate"], c["batch"]["operator"]
        ]
        for c in detail["cells"]
    ]


def list_locations(session: Session) -> List[dict]:
    """Flat list of every box with its path and fill level, by freezer name."""
    counts = stored_counts(session)
    rows = session.exec(
        select(Freezer, Rack, Box)
        .join(Rack, Rack.freezer_id == Freezer.id)
        .join(Box, Box.rack_id == Rack.id)
        .order_by(Freezer.name, Rack.name, Box.name, Box.id)
    ).all()
    return [
        {
            "box_id": box.id,
            "freezer_name": freezer.name,
            "rack_name": rack.name,
            "box_name": box.name,
            "rows": box.rows,
            "cols": box.cols,
            "size": f"{box.rows}×{box.cols}",
            "stored_count": counts.get(box.id, 0),
            "path": f"{freezer.name} → {rack.name} → {box.name}",
        }
        for freezer, rack, box in rows
    ]
