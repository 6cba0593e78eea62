# app/services/positions.py
"""
Grid position labels.

A box row is a letter (A = row 1 ... Z = row 26) and a column is a
1-based number, so "C12" is row 3, column 12.
"""
import re
from typing import List, NamedTuple

from app.errors import InvalidPositionFormat

MAX_ROWS = 26

_LABEL_RE = re.compile(r"^([A-Z])([0-9]+)$")
# Spreadsheet cells separate labels with commas, semicolons (ASCII or full-width) or whitespace
_SEPARATOR_RE = re.compile(r"[,，;；\s]+")


class GridPosition(NamedTuple):
    row: int
    col: int

    def __str__(self) -> str:
        return format_position(self.row, self.col)


def parse_position(label: str) -> GridPosition:
    """Parses "A1"-style labels; raises InvalidPositionFormat on anything else."""
    match = _LABEL_RE.match(label.strip().upper())
    if not match:
        raise InvalidPositionFormat(label)

    letter, digits = match.groups()
    # "A01" does not round-trip through format_position
    if digits.startswith("0"):
        raise InvalidPositionFormat(label)

    row = ord(letter) - 64
    col = int(digits)
    if row < 1 or row > MAX_ROWS or col < 1:
        raise InvalidPositionFormat(label)
    return GridPosition(row, col)


def format_position(row: int, col: int) -> str:
    if row < 1 or row > MAX_ROWS:
        raise ValueError(f"row {row} cannot be written as a letter")
    if col < 1:
        raise ValueError(f"column must be positive, got {col}")
    return f"{chr(64 + row)}{col}"


def split_position_labels(text: str) -> List[str]:
    """Splits a free-text position cell ("A1, A2;A3") into uppercase labels."""
    if not text:
        return []
    return [token.strip().upper() for token in _SEPARATOR_RE.split(text) if token.strip()]
