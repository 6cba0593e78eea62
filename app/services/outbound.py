# app/services/outbound.py
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.errors import InvalidInput, NotFound, PartialOutbound
from app.models import Box, Cell, CellStatus, OperationKind
from app.utils.logging import log_operation

logger = logging.getLogger(__name__)


def commit_outbound(
    session: Session,
    cell_ids: Iterable[int],
    reason: Optional[str] = None,
    operator: Optional[str] = None
) -> int:
    """
    Removes the given tubes from storage in one transaction and returns how
    many were removed. Either every requested tube is still stored and all
    of them go, or nothing changes and PartialOutbound is raised.
    """
    ids = sorted(set(cell_ids))
    if not ids:
        raise InvalidInput("select at least one cell")

    now = datetime.now()
    try:
        # The status condition makes the flip atomic against concurrent outbound requests
        result = session.execute(
            update(Cell)
            .where(Cell.id.in_(ids), Cell.status == CellStatus.STORED)
            .values(status=CellStatus.REMOVED, updated_at=now)
        )
        if result.rowcount != len(ids):
            session.rollback()
            raise PartialOutbound(requested=len(ids), available=result.rowcount)

        removed = session.exec(select(Cell.id, Cell.batch_id).where(Cell.id.in_(ids))).all()
        for cell_id, batch_id in removed:
            log_operation(
                session, OperationKind.OUTBOUND, 1,
                operator=operator, batch_id=batch_id, cell_id=cell_id,
                reason=reason, remark="cell outbound"
            )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    logger.info(f"Outbound removed {len(ids)} cells (reason={reason!r}, by={operator})")
    return len(ids)


def commit_box_outbound(
    session: Session,
    box_id: int,
    reason: Optional[str] = None,
    operator: Optional[str] = None
) -> int:
    """Removes every stored tube of a box."""
    if not session.get(Box, box_id):
        raise NotFound(f"box {box_id} does not exist")

    ids = session.exec(
        select(Cell.id).where(Cell.box_id == box_id, Cell.status == CellStatus.STORED)
    ).all()
    if not ids:
        raise InvalidInput("this box holds no stored cells")
    return commit_outbound(session, ids, reason=reason, operator=operator)
