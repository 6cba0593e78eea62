# app/services/locations.py
"""
Read-only occupancy snapshot of the storage hierarchy.

The bulk validator works against one snapshot taken before it starts so a
whole spreadsheet is judged against a single point in time.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlmodel import Session, select

from app.models import Box, Cell, CellBatch, CellStatus, Freezer, Rack


@dataclass
class BoxSnapshot:
    id: int
    name: str
    rows: int
    cols: int
    # (row, col) -> name of the batch whose tube is stored there
    stored: Dict[Tuple[int, int], str] = field(default_factory=dict)

    def occupant(self, row: int, col: int) -> Optional[str]:
        return self.stored.get((row, col))

    def contains(self, row: int, col: int) -> bool:
        return 1 <= row <= self.rows and 1 <= col <= self.cols


@dataclass
class RackSnapshot:
    id: int
    name: str
    boxes: List[BoxSnapshot] = field(default_factory=list)

    def find_box(self, name: str) -> Optional[BoxSnapshot]:
        return next((b for b in self.boxes if b.name == name), None)


@dataclass
class FreezerSnapshot:
    id: int
    name: str
    racks: List[RackSnapshot] = field(default_factory=list)

    def find_rack(self, name: str) -> Optional[RackSnapshot]:
        return next((r for r in self.racks if r.name == name), None)


@dataclass
class StorageSnapshot:
    freezers: Dict[str, FreezerSnapshot] = field(default_factory=dict)

    def lookup_freezer_by_name(self, name: str) -> Optional[FreezerSnapshot]:
        return self.freezers.get(name)


def load_storage_snapshot(session: Session, freezer_names: Optional[Iterable[str]] = None) -> StorageSnapshot:
    """
    Loads freezers (all of them, or only the named ones) with their racks,
    boxes and currently stored tubes, one query per level.
    """
    query = select(Freezer).order_by(Freezer.id)
    if freezer_names is not None:
        names = {n for n in freezer_names if n}
        if not names:
            return StorageSnapshot()
        query = query.where(Freezer.name.in_(sorted(names)))

    snapshot = StorageSnapshot()
    freezers = session.exec(query).all()
    if not freezers:
        return snapshot

    racks_by_id: Dict[int, RackSnapshot] = {}
    freezer_by_id: Dict[int, FreezerSnapshot] = {}
    for f in freezers:
        # Duplicate freezer names resolve to the first one created
        if f.name in snapshot.freezers:
            continue
        fs = FreezerSnapshot(id=f.id, name=f.name)
        snapshot.freezers[f.name] = fs
        freezer_by_id[f.id] = fs

    racks = session.exec(
        select(Rack).where(Rack.freezer_id.in_(list(freezer_by_id))).order_by(Rack.id)
    ).all()
    for r in racks:
        rs = RackSnapshot(id=r.id, name=r.name)
        freezer_by_id[r.freezer_id].racks.append(rs)
        racks_by_id[r.id] = rs

    boxes_by_id: Dict[int, BoxSnapshot] = {}
    if racks_by_id:
        boxes = session.exec(
            select(Box).where(Box.rack_id.in_(list(racks_by_id))).order_by(Box.id)
        ).all()
        for b in boxes:
            bs = BoxSnapshot(id=b.id, name=b.name, rows=b.rows, cols=b.cols)
            racks_by_id[b.rack_id].boxes.append(bs)
            boxes_by_id[b.id] = bs

    if boxes_by_id:
        stored = session.exec(
            select(Cell.box_id, Cell.position_row, Cell.position_col, CellBatch.name)
            .join(CellBatch, Cell.batch_id == CellBatch.id)
            .where(Cell.box_id.in_(list(boxes_by_id)), Cell.status == CellStatus.STORED)
        ).all()
        for box_id, row, col, batch_name in stored:
            boxes_by_id[box_id].stored[(row, col)] = batch_name

    return snapshot


def box_path(box: Box) -> str:
    """Human readable "Freezer → Rack → Box" path."""
    return f"{box.rack.freezer.name} → {box.rack.name} → {box.name}"
