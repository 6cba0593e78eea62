# app/services/validation.py
"""
Bulk inbound validation.

Every row of a submitted spreadsheet is checked in one pass and every
defect is reported, so an operator can fix the whole sheet in one round
trip. Within a row the checks stop early per category: a row with missing
basic fields gets no location checks, and a row whose location or tube
count is wrong gets no per-position checks.
"""
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from app.errors import InvalidPositionFormat
from app.schemas import ProposedInboundRow, ValidationErrorItem
from app.services.locations import BoxSnapshot, StorageSnapshot
from app.services.positions import parse_position

logger = logging.getLogger(__name__)

# (freezer name, rack name, box name, row, col)
ClaimKey = Tuple[str, str, str, int, int]

REQUIRED_TEXT_FIELDS = (
    ("name", "name", "cell name is required"),
    ("cell_type", "cellType", "cell type is required"),
    ("passage", "passage", "passage is required"),
    ("freeze_date", "freezeDate", "freeze date is required"),
    ("freezer_name", "freezerName", "freezer name is required"),
    ("rack_name", "rackName", "rack name is required"),
    ("box_name", "boxName", "box name is required"),
)


def parse_freeze_date(value: str) -> Optional[date]:
    """ISO dates only; the spreadsheet parser normalises Excel dates beforehand."""
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


class BatchRowValidator:
    """Validates proposed inbound rows against one storage snapshot."""

    def __init__(self, snapshot: StorageSnapshot):
        self.snapshot = snapshot

    def validate(self, rows: Sequence[ProposedInboundRow]) -> List[ValidationErrorItem]:
        errors: List[ValidationErrorItem] = []
        # Positions claimed by earlier rows of this same submission
        claimed: Dict[ClaimKey, ProposedInboundRow] = {}

        for row in rows:
            if self._check_required_fields(row, errors):
                continue

            box = self._resolve_box(row, errors)
            if box is None:
                continue

            if len(row.positions) != row.quantity:
                errors.append(ValidationErrorItem(
                    row=row.row_num,
                    field="positions",
                    message=f"quantity is {row.quantity} but {len(row.positions)} positions were given",
                    value=f"quantity: {row.quantity}, positions: {len(row.positions)}"
                ))
                continue

            self._check_positions(row, box, claimed, errors)

        # sort() is stable, so errors within a row keep their discovery order
        errors.sort(key=lambda e: e.row)
        if errors:
            logger.info(f"Bulk inbound validation found {len(errors)} errors in {len(rows)} rows")
        return errors

    def _check_required_fields(self, row: ProposedInboundRow, errors: List[ValidationErrorItem]) -> bool:
        """Records every missing field; returns True when the row is unusable."""
        failed = False
        for attr, field_name, message in REQUIRED_TEXT_FIELDS:
            if not (getattr(row, attr) or "").strip():
                errors.append(ValidationErrorItem(row=row.row_num, field=field_name, message=message))
                failed = True

        if row.freeze_date.strip() and parse_freeze_date(row.freeze_date) is None:
            errors.append(ValidationErrorItem(
                row=row.row_num,
                field="freezeDate",
                message=f"freeze date '{row.freeze_date}' is not a valid date (YYYY-MM-DD)",
                value=row.freeze_date
            ))
            failed = True

        if row.quantity < 1:
            errors.append(ValidationErrorItem(row=row.row_num, field="quantity", message="quantity must be at least 1"))
            failed = True

        # Checked here rather than as a count mismatch so an empty list always reads the same
        if not row.positions:
            errors.append(ValidationErrorItem(row=row.row_num, field="positions", message="positions are required"))
            failed = True

        return failed

    def _resolve_box(self, row: ProposedInboundRow, errors: List[ValidationErrorItem]) -> Optional[BoxSnapshot]:
        freezer_name = row.freezer_name.strip()
        rack_name = row.rack_name.strip()
        box_name = row.box_name.strip()

        freezer = self.snapshot.lookup_freezer_by_name(freezer_name)
        if freezer is None:
            errors.append(ValidationErrorItem(
                row=row.row_num,
                field="freezerName",
                message=f"freezer '{freezer_name}' does not exist",
                value=freezer_name
            ))
            return None

        rack = freezer.find_rack(rack_name)
        if rack is None:
            errors.append(ValidationErrorItem(
                row=row.row_num,
                field="rackName",
                message=f"rack '{rack_name}' does not exist in freezer '{freezer_name}'",
                value=f"{freezer_name} → {rack_name}"
            ))
            return None

        box = rack.find_box(box_name)
        if box is None:
            errors.append(ValidationErrorItem(
                row=row.row_num,
                field="boxName",
                message=f"box '{box_name}' does not exist in rack '{rack_name}' of freezer '{freezer_name}'",
                value=f"{freezer_name} → {rack_name} → {box_name}"
            ))
            return None

        return box

    def _check_positions(
        self,
        row: ProposedInboundRow,
        box: BoxSnapshot,
        claimed: Dict[ClaimKey, ProposedInboundRow],
        errors: List[ValidationErrorItem]
    ):
        location = (row.freezer_name.strip(), row.rack_name.strip(), row.box_name.strip())

        for label in row.positions:
            try:
                pos = parse_position(label)
            except InvalidPositionFormat as exc:
                errors.append(ValidationErrorItem(row=row.row_num, field="positions", message=exc.message, value=label))
                continue

            if not box.contains(pos.row, pos.col):
                errors.append(ValidationErrorItem(
                    row=row.row_num,
                    field="positions",
                    message=f"position '{label}' is outside the box (box size: {box.rows}行×{box.cols}列)",
                    value=label
                ))
                continue

            occupant = box.occupant(pos.row, pos.col)
            if occupant is not None:
                errors.append(ValidationErrorItem(
                    row=row.row_num,
                    field="positions",
                    message=f"position {label} is already occupied (stored batch: {occupant})",
                    value=label
                ))
                continue

            key: ClaimKey = (*location, pos.row, pos.col)
            earlier = claimed.get(key)
            if earlier is not None:
                errors.append(ValidationErrorItem(
                    row=row.row_num,
                    field="positions",
                    message=f"position {label} duplicates row {earlier.row_num} of this batch (cell: {earlier.name})",
                    value=label
                ))
                continue

            claimed[key] = row


def validate_rows(rows: Sequence[ProposedInboundRow], snapshot: StorageSnapshot) -> List[ValidationErrorItem]:
    """Returns every defect found in rows; an empty list means the batch may be committed."""
    return BatchRowValidator(snapshot).validate(rows)
