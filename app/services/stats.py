# app/services/stats.py
"""
Dashboard numbers and per-freezer / per-operator movement reports.
"""
from collections import defaultdict
from datetime import date, datetime, time
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from app.errors import InvalidInput
from app.models import Box, Cell, CellBatch, CellStatus, Freezer, OperationKind, OperationLog, Rack, User

TREND_MONTHS = 6


def _month_start(day: date, months_back: int = 0) -> datetime:
    index = day.year * 12 + (day.month - 1) - months_back
    return datetime(index // 12, index % 12 + 1, 1)


def _count(session: Session, query) -> int:
    return session.exec(query).one() or 0


def freezer_movements(session: Session, start: datetime, end: Optional[datetime] = None) -> List[dict]:
    """
    Tubes put into and taken out of each freezer in [start, end]. Inbound
    counts tubes of batches created in the window, outbound sums outbound
    log quantities. Freezers without movement are left out.
    """
    inbound_query = (
        select(Freezer.id, func.count(Cell.id))
        .join(Rack, Rack.freezer_id == Freezer.id)
        .join(Box, Box.rack_id == Rack.id)
        .join(Cell, Cell.box_id == Box.id)
        .join(CellBatch, Cell.batch_id == CellBatch.id)
        .where(CellBatch.created_at >= start)
        .group_by(Freezer.id)
    )
    outbound_query = (
        select(Freezer.id, func.sum(OperationLog.quantity))
        .join(Rack, Rack.freezer_id == Freezer.id)
        .join(Box, Box.rack_id == Rack.id)
        .join(Cell, Cell.box_id == Box.id)
        .join(OperationLog, OperationLog.cell_id == Cell.id)
        .where(OperationLog.operation == OperationKind.OUTBOUND, OperationLog.created_at >= start)
        .group_by(Freezer.id)
    )
    if end is not None:
        inbound_query = inbound_query.where(CellBatch.created_at <= end)
        outbound_query = outbound_query.where(OperationLog.created_at <= end)

    inbound = dict(session.exec(inbound_query).all())
    outbound = dict(session.exec(outbound_query).all())

    stats = []
    for freezer_id, name in session.exec(select(Freezer.id, Freezer.name).order_by(Freezer.id)).all():
        entry = {"freezerName": name, "inbound": inbound.get(freezer_id, 0), "outbound": outbound.get(freezer_id, 0) or 0}
        if entry["inbound"] or entry["outbound"]:
            stats.append(entry)
    return stats


def operator_movements(session: Session, start: datetime, end: Optional[datetime] = None) -> List[dict]:
    """Tubes moved per operator name in [start, end], busiest first."""
    inbound_query = (
        select(CellBatch.operator, func.sum(CellBatch.total_quantity))
        .where(CellBatch.operator.is_not(None), CellBatch.created_at >= start)
        .group_by(CellBatch.operator)
    )
    outbound_query = (
        select(OperationLog.operator, func.sum(OperationLog.quantity))
        .where(
            OperationLog.operation == OperationKind.OUTBOUND,
            OperationLog.operator.is_not(None),
            OperationLog.created_at >= start
        )
        .group_by(OperationLog.operator)
    )
    if end is not None:
        inbound_query = inbound_query.where(CellBatch.created_at <= end)
        outbound_query = outbound_query.where(OperationLog.created_at <= end)

    totals = defaultdict(lambda: {"inbound": 0, "outbound": 0})
    for name, quantity in session.exec(inbound_query).all():
        totals[name]["inbound"] = quantity or 0
    for name, quantity in session.exec(outbound_query).all():
        totals[name]["outbound"] = quantity or 0

    stats = [{"userName": name, **counts} for name, counts in totals.items()]
    stats.sort(key=lambda s: s["inbound"] + s["outbound"], reverse=True)
    return stats


def overview(session: Session, today: Optional[date] = None) -> dict:
    """Everything the dashboard shows, as of today."""
    today = today or date.today()
    month_start = _month_start(today)

    stored = _count(session, select(func.count(Cell.id)).where(Cell.status == CellStatus.STORED))
    removed = _count(session, select(func.count(Cell.id)).where(Cell.status == CellStatus.REMOVED))

    inbound_tubes = _count(session, select(func.sum(CellBatch.total_quantity)).where(CellBatch.created_at >= month_start))
    outbound_tubes = _count(session, select(func.sum(OperationLog.quantity)).where(
        OperationLog.operation == OperationKind.OUTBOUND, OperationLog.created_at >= month_start
    ))

    by_type = session.exec(
        select(CellBatch.cell_type, func.count(Cell.id))
        .join(Cell, Cell.batch_id == CellBatch.id)
        .where(Cell.status == CellStatus.STORED)
        .group_by(CellBatch.cell_type)
    ).all()
    cell_type_stats = sorted(({"type": t, "count": c} for t, c in by_type), key=lambda s: s["count"], reverse=True)

    monthly_inbound, monthly_outbound = [], []
    for months_back in range(TREND_MONTHS - 1, -1, -1):
        start, end = _month_start(today, months_back), _month_start(today, months_back - 1)
        label = start.strftime("%Y-%m")
        monthly_inbound.append({"month": label, "count": _count(session, select(func.count(CellBatch.id)).where(
            CellBatch.created_at >= start, CellBatch.created_at < end
        ))})
        monthly_outbound.append({"month": label, "count": _count(session, select(func.count(OperationLog.id)).where(
            OperationLog.operation == OperationKind.OUTBOUND,
            OperationLog.created_at >= start,
            OperationLog.created_at < end
        ))})

    return {
        "freezerCount": _count(session, select(func.count(Freezer.id))),
        "storedCells": stored,
        "removedCells": removed,
        "totalCells": stored + removed,
        "userCount": _count(session, select(func.count(User.id))),
        "batchCount": _count(session, select(func.count(CellBatch.id))),
        "inboundThisMonth": inbound_tubes,
        "outboundThisMonth": outbound_tubes,
        "cellTypeStats": cell_type_stats,
        "monthlyInbound": monthly_inbound,
        "monthlyOutbound": monthly_outbound,
        "freezerMonthStats": freezer_movements(session, month_start),
        "userMonthStats": operator_movements(session, month_start),
    }


def parse_range(start_date: Optional[str], end_date: Optional[str]) -> Tuple[datetime, datetime]:
    """Both dates required (YYYY-MM-DD); the end date counts to the end of that day."""
    if not start_date or not end_date:
        raise InvalidInput("startDate and endDate are required")
    try:
        start = datetime.combine(date.fromisoformat(start_date), time.min)
        end = datetime.combine(date.fromisoformat(end_date), time.max)
    except ValueError:
        raise InvalidInput("dates must be formatted as YYYY-MM-DD")
    return start, end


def time_range(session: Session, start_date: Optional[str], end_date: Optional[str]) -> dict:
    start, end = parse_range(start_date, end_date)
    return {
        "startDate": start.date().isoformat(),
        "endDate": end.date().isoformat(),
        "freezerStats": freezer_movements(session, start, end),
        "userStats": operator_movements(session, start, end),
    }
