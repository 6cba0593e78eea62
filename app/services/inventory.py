# app/services/inventory.py
"""
Read models over batches, tubes and the operation log.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, col, or_, select

from app.errors import NotFound
from app.models import Box, Cell, CellBatch, CellStatus, Freezer, OperationKind, OperationLog, Rack
from app.schemas import CellBatchUpdate, dump
from app.services.positions import format_position

BATCH_STATUSES = ("all", "stored", "removed", "partial")


def batch_status(stored: int, removed: int) -> str:
    if stored and removed:
        return "partial"
    return "stored" if stored else "removed"


def _paginate(items: list, page: int, page_size: int) -> list:
    page, page_size = max(page, 1), max(page_size, 1)
    return items[(page - 1) * page_size: page * page_size]


def _located_cells(session: Session, batch_ids: List[int]) -> Dict[int, List[Tuple[Cell, str]]]:
    """batch id -> [(tube, "F → R → B")], tubes ordered by position."""
    if not batch_ids:
        return {}
    rows = session.exec(
        select(Cell, Freezer.name, Rack.name, Box.name)
        .join(Box, Cell.box_id == Box.id)
        .join(Rack, Box.rack_id == Rack.id)
        .join(Freezer, Rack.freezer_id == Freezer.id)
        .where(Cell.batch_id.in_(batch_ids))
        .order_by(Cell.position_row, Cell.position_col)
    ).all()
    grouped = defaultdict(list)
    for cell, freezer_name, rack_name, box_name in rows:
        grouped[cell.batch_id].append((cell, f"{freezer_name} → {rack_name} → {box_name}"))
    return grouped


def list_batches(
    session: Session,
    search: Optional[str] = None,
    cell_type: Optional[str] = None,
    status: str = "all",
    page: int = 1,
    page_size: int = 20
) -> dict:
    """
    Batches newest first with stored/removed counts. The status filter
    depends on tube counts, so pagination happens after filtering.
    """
    query = select(CellBatch).order_by(CellBatch.created_at.desc(), CellBatch.id.desc())
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            col(CellBatch.name).like(pattern),
            col(CellBatch.cell_type).like(pattern),
            col(CellBatch.batch_code).like(pattern)
        ))
    if cell_type and cell_type != "all":
        query = query.where(CellBatch.cell_type == cell_type)

    batches = session.exec(query).all()
    cells_by_batch = _located_cells(session, [b.id for b in batches])

    items = []
    for batch in batches:
        cells = cells_by_batch.get(batch.id, [])
        stored = [(c, path) for c, path in cells if c.status == CellStatus.STORED]
        removed_count = len(cells) - len(stored)
        current = batch_status(len(stored), removed_count)
        if status == "stored" and not stored:
            continue
        if status == "removed" and stored:
            continue
        if status == "partial" and current != "partial":
            continue

        shown = stored or cells
        items.append(dump(
            batch,
            stored_count=len(stored),
            removed_count=removed_count,
            status=current,
            locations="; ".join(dict.fromkeys(path for _, path in shown)),
            positions=", ".join(format_position(c.position_row, c.position_col) for c, _ in shown),
            cells=[
                dump(c, exclude={"batch_id"}, position=format_position(c.position_row, c.position_col), path=path)
                for c, path in cells
            ]
        ))

    return {
        "batches": _paginate(items, page, page_size),
        "total": len(items),
        "page": page,
        "pageSize": page_size,
    }


def list_cell_types(session: Session) -> List[str]:
    return list(session.exec(select(CellBatch.cell_type).distinct().order_by(CellBatch.cell_type)).all())


def update_batch(session: Session, batch_id: int, data: CellBatchUpdate) -> CellBatch:
    """Edits batch metadata; identity fields cannot change once tubes exist."""
    batch = session.get(CellBatch, batch_id)
    if not batch:
        raise NotFound("batch not found")
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(batch, key, value)
    batch.updated_at = datetime.now()
    session.add(batch)
    session.commit()
    session.refresh(batch)
    return batch


# --- OPERATION RECORDS ---

def _record_filters(query, kind: OperationKind, search: Optional[str]):
    query = query.where(OperationLog.operation == kind)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(col(CellBatch.name).like(pattern), col(CellBatch.cell_type).like(pattern)))
    return query


def _with_location(query):
    return (
        query.join(CellBatch, OperationLog.batch_id == CellBatch.id, isouter=True)
        .join(Cell, OperationLog.cell_id == Cell.id, isouter=True)
        .join(Box, Cell.box_id == Box.id, isouter=True)
        .join(Rack, Box.rack_id == Rack.id, isouter=True)
        .join(Freezer, Rack.freezer_id == Freezer.id, isouter=True)
    )


def _page(query, page: int, page_size: int):
    page, page_size = max(page, 1), max(page_size, 1)
    return (
        query.order_by(OperationLog.created_at.desc(), OperationLog.id.desc())
        .offset((page - 1) * page_size).limit(page_size)
    )


def list_inbound_records(session: Session, search: Optional[str] = None, page: int = 1, page_size: int = 20) -> dict:
    """Inbound log entries, newest first, each with its batch summary."""
    def joined(query):
        return _record_filters(
            query.join(CellBatch, OperationLog.batch_id == CellBatch.id), OperationKind.INBOUND, search
        )

    total = session.exec(joined(select(func.count(OperationLog.id)))).one()
    rows = session.exec(_page(joined(select(OperationLog, CellBatch)), page, page_size)).all()

    records = [
        dump(log, batch=dump(batch, exclude={"created_at", "updated_at"}))
        for log, batch in rows
    ]
    return {"records": records, "total": total, "page": page, "pageSize": page_size}


def list_outbound_records(session: Session, search: Optional[str] = None, page: int = 1, page_size: int = 20) -> dict:
    """Outbound log entries, newest first, with the tube's batch and former location."""
    def joined(query):
        return _record_filters(_with_location(query), OperationKind.OUTBOUND, search)

    total = session.exec(joined(select(func.count(OperationLog.id)))).one()
    rows = session.exec(_page(joined(select(OperationLog, CellBatch, Cell, Box, Rack, Freezer)), page, page_size)).all()

    records = []
    for log, batch, cell, box, rack, freezer in rows:
        records.append(dump(
            log,
            cell_name=batch.name if batch else None,
            cell_type=batch.cell_type if batch else None,
            passage=batch.passage if batch else None,
            position=format_position(cell.position_row, cell.position_col) if cell else None,
            # Tube records of deleted boxes are purged; the log entry keeps no location then
            location=f"{freezer.name} → {rack.name} → {box.name}" if cell else None
        ))
    return {"records": records, "total": total, "page": page, "pageSize": page_size}


# --- CSV EXPORT ROWS ---

INVENTORY_EXPORT_HEADER = ["批次编号", "细胞名称", "细胞类型", "代次", "冻存日期", "位置", "存储路径", "细胞编号", "操作人"]
INBOUND_EXPORT_HEADER = ["入库时间", "批次编号", "细胞名称", "细胞类型", "代次", "数量", "冻存日期", "操作人", "备注"]
OUTBOUND_EXPORT_HEADER = ["出库时间", "细胞名称", "细胞类型", "代次", "位置", "存储路径", "出库原因", "操作人"]


def inventory_export_rows(session: Session) -> List[list]:
    """One row per stored tube."""
    rows = session.exec(
        select(Cell, CellBatch, Freezer.name, Rack.name, Box.name)
        .join(CellBatch, Cell.batch_id == CellBatch.id)
        .join(Box, Cell.box_id == Box.id)
        .join(Rack, Box.rack_id == Rack.id)
        .join(Freezer, Rack.freezer_id == Freezer.id)
        .where(Cell.status == CellStatus.STORED)
        .order_by(Freezer.name, Rack.name, Box.name, Cell.position_row, Cell.position_col)
    ).all()
    return [
        [
            batch.batch_code, batch.name, batch.cell_type, batch.passage, batch.freeze_date.isoformat(),
            format_position(cell.position_row, cell.position_col),
            f"{freezer_name} → {rack_name} → {box_name}", cell.code, batch.operator
        ]
        for cell, batch, freezer_name, rack_name, box_name in rows
    ]


def inbound_export_rows(session: Session, search: Optional[str] = None) -> List[list]:
    records = list_inbound_records(session, search=search, page=1, page_size=1_000_000)["records"]
    return [
        [
            r["createdAt"].strftime("%Y-%m-%d %H:%M:%S"), r["batch"]["batchCode"], r["batch"]["name"],
            r["batch"]["cellType"], r["batch"]["passage"], r["quantity"],
            r["batch"]["freezeDate"].isoformat(), r["operator"], r["remark"]
        ]
        for r in records
    ]


def outbound_export_rows(session: Session, search: Optional[str] = None) -> List[list]:
    records = list_outbound_records(session, search=search, page=1, page_size=1_000_000)["records"]
    return [
        [
            r["createdAt"].strftime("%Y-%m-%d %H:%M:%S"), r["cellName"], r["cellType"], r["passage"],
            r["position"], r["location"], r["reason"], r["operator"]
        ]
        for r in records
    ]
