# app/services/inbound.py
"""
Inbound commit: one CellBatch, its tubes and one audit entry per row.

Validation is advisory. The occupancy check is repeated here inside the
write transaction, and the partial unique index on stored positions makes
the final call when two requests race for the same slot.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.errors import InvalidInput, InventoryError, NotFound, PositionConflict
from app.models import Box, Cell, CellBatch, CellStatus, Freezer, OperationKind, Rack
from app.schemas import CellBatchCreate, ProposedInboundRow, RowCommitResult
from app.services.positions import GridPosition, format_position, parse_position
from app.services.validation import parse_freeze_date
from app.utils.logging import log_operation

logger = logging.getLogger(__name__)


def resolve_box(
    session: Session,
    box_id: Optional[int] = None,
    freezer_name: Optional[str] = None,
    rack_name: Optional[str] = None,
    box_name: Optional[str] = None
) -> Box:
    """Finds the target box by id, or by its freezer/rack/box name path."""
    if box_id is not None:
        box = session.get(Box, box_id)
        if not box:
            raise NotFound(f"box {box_id} does not exist")
        return box

    if not (freezer_name and rack_name and box_name):
        raise InvalidInput("a storage location is required")

    # Duplicate names resolve to the earliest created, level by level, as in the storage snapshot
    freezer = session.exec(
        select(Freezer).where(Freezer.name == freezer_name).order_by(Freezer.id)
    ).first()
    if not freezer:
        raise NotFound(f"freezer '{freezer_name}' does not exist")

    rack = session.exec(
        select(Rack).where(Rack.freezer_id == freezer.id, Rack.name == rack_name).order_by(Rack.id)
    ).first()
    if not rack:
        raise NotFound(f"rack '{rack_name}' does not exist in freezer '{freezer_name}'")

    box = session.exec(
        select(Box).where(Box.rack_id == rack.id, Box.name == box_name).order_by(Box.id)
    ).first()
    if not box:
        raise NotFound(f"box '{box_name}' does not exist in rack '{rack_name}' of freezer '{freezer_name}'")
    return box


def _parse_positions(labels: Sequence[str], box: Box, quantity: int) -> List[GridPosition]:
    if not labels:
        raise InvalidInput("positions are required")
    if len(labels) != quantity:
        raise InvalidInput(f"quantity is {quantity} but {len(labels)} positions were given")

    positions = [parse_position(label) for label in labels]
    if len(set(positions)) != len(positions):
        raise InvalidInput("the same position was given more than once")

    outside = [str(p) for p in positions if p.row > box.rows or p.col > box.cols]
    if outside:
        raise InvalidInput(
            f"positions {', '.join(outside)} are outside the box (box size: {box.rows}行×{box.cols}列)"
        )
    return positions


def _occupied(session: Session, box_id: int, positions: Sequence[GridPosition]) -> List[str]:
    wanted = set(positions)
    stored = session.exec(
        select(Cell.position_row, Cell.position_col)
        .where(Cell.box_id == box_id, Cell.status == CellStatus.STORED)
    ).all()
    return sorted(format_position(r, c) for r, c in stored if (r, c) in wanted)


def commit_batch(session: Session, data: CellBatchCreate, operator: Optional[str] = None) -> Tuple[CellBatch, List[Cell]]:
    """
    Creates the batch and one stored tube per position, all or nothing.
    Raises an InventoryError subclass when the request cannot be stored.
    """
    box = resolve_box(session, data.box_id, data.freezer_name, data.rack_name, data.box_name)
    positions = _parse_positions(data.positions, box, data.total_quantity)

    taken = _occupied(session, box.id, positions)
    if taken:
        raise PositionConflict(f"positions already occupied: {', '.join(taken)}")

    operator = data.operator or operator
    now = datetime.now()
    try:
        batch = CellBatch(
            batch_code=data.batch_code,
            name=data.name.strip(),
            cell_type=data.cell_type.strip(),
            passage=data.passage.strip(),
            total_quantity=data.total_quantity,
            freeze_date=data.freeze_date,
            freeze_medium=data.freeze_medium,
            donor_info=data.donor_info,
            culture_info=data.culture_info,
            operator=operator,
            remark=data.remark,
            created_at=now,
            updated_at=now
        )
        session.add(batch)
        session.flush()

        cells = []
        for index, pos in enumerate(positions, start=1):
            cell = Cell(
                code=f"{data.code}-{index}" if data.code else None,
                position_row=pos.row,
                position_col=pos.col,
                status=CellStatus.STORED,
                batch_id=batch.id,
                box_id=box.id,
                created_at=now,
                updated_at=now
            )
            session.add(cell)
            cells.append(cell)
        session.flush()

        log_operation(
            session, OperationKind.INBOUND, batch.total_quantity,
            operator=operator, batch_id=batch.id, remark="cell inbound"
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning(f"Inbound race lost for box {box.id}: positions {[str(p) for p in positions]}")
        raise PositionConflict("positions were taken by another request, reload and try again")
    except SQLAlchemyError:
        session.rollback()
        raise

    for cell in cells:
        session.refresh(cell)
    session.refresh(batch)
    logger.info(f"Stored batch '{batch.name}' ({batch.total_quantity} tubes) in box {box.id}")
    return batch, cells


def row_to_batch(row: ProposedInboundRow) -> CellBatchCreate:
    """Turns a validated spreadsheet row into a single-batch inbound request."""
    freeze_date = parse_freeze_date(row.freeze_date)
    if freeze_date is None:
        raise InvalidInput(f"freeze date '{row.freeze_date}' is not a valid date (YYYY-MM-DD)")
    if row.quantity < 1:
        raise InvalidInput("quantity must be at least 1")
    return CellBatchCreate(
        name=row.name,
        cell_type=row.cell_type,
        passage=row.passage,
        total_quantity=row.quantity,
        freeze_date=freeze_date,
        positions=row.positions,
        freezer_name=row.freezer_name.strip(),
        rack_name=row.rack_name.strip(),
        box_name=row.box_name.strip(),
        freeze_medium=row.freeze_medium,
        donor_info=row.donor_info,
        operator=row.operator,
        remark=row.remark
    )


def commit_rows(session: Session, rows: Sequence[ProposedInboundRow], operator: Optional[str] = None) -> List[RowCommitResult]:
    """
    Commits each row in its own transaction. A failing row is reported in
    its result and never undoes rows committed before it.
    """
    results: List[RowCommitResult] = []
    for row in rows:
        try:
            batch, _ = commit_batch(session, row_to_batch(row), operator)
            results.append(RowCommitResult(row=row.row_num, success=True, batch_id=batch.id))
        except InventoryError as exc:
            session.rollback()
            results.append(RowCommitResult(row=row.row_num, success=False, error=exc.message))
        except Exception:
            session.rollback()
            logger.exception(f"Bulk inbound row {row.row_num} failed")
            results.append(RowCommitResult(row=row.row_num, success=False, error="storing this row failed, please retry"))

    stored = sum(1 for r in results if r.success)
    logger.info(f"Bulk inbound stored {stored} of {len(results)} rows")
    return results
