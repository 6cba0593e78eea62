# app/models.py
from enum import Enum
from typing import Optional, List
from datetime import date, datetime
from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel, Relationship

# --- ENUMERATIONS ---

class UserRole(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"

class CellStatus(str, Enum):
    STORED = "stored"
    REMOVED = "removed"

class OperationKind(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"

# --- AUTH MODELS ---

class User(SQLModel, table=True):
    """Laboratory account; the role decides which operations are allowed."""
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    hashed_password: str
    role: str = Field(default=UserRole.VIEWER)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    last_active: Optional[datetime] = None

# --- STORAGE HIERARCHY MODELS ---

class Freezer(SQLModel, table=True):
    """A physical storage unit like a -80C freezer or a liquid nitrogen tank."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    location: Optional[str] = None
    temperature: Optional[str] = None
    capacity: Optional[int] = None
    remark: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    racks: List["Rack"] = Relationship(back_populates="freezer")

class Rack(SQLModel, table=True):
    """A rack inside a freezer. Names are unique only within the freezer."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    capacity: Optional[int] = None
    remark: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    freezer_id: int = Field(foreign_key="freezer.id", index=True)
    freezer: Optional[Freezer] = Relationship(back_populates="racks")
    boxes: List["Box"] = Relationship(back_populates="rack")

class Box(SQLModel, table=True):
    """A grid-based container (rows x cols) holding cryo tubes."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    rows: int = Field(default=10)
    cols: int = Field(default=10)
    remark: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    rack_id: int = Field(foreign_key="rack.id", index=True)
    rack: Optional[Rack] = Relationship(back_populates="boxes")
    cells: List["Cell"] = Relationship(back_populates="box")

# --- SAMPLE MODELS ---

class CellBatch(SQLModel, table=True):
    """A group of identical tubes frozen together in one inbound operation."""
    __tablename__ = "cell_batch"

    id: Optional[int] = Field(default=None, primary_key=True)
    batch_code: Optional[str] = Field(default=None, index=True)
    name: str = Field(index=True)
    cell_type: str = Field(index=True)
    passage: str
    total_quantity: int
    freeze_date: date
    freeze_medium: Optional[str] = None
    donor_info: Optional[str] = None
    culture_info: Optional[str] = None
    operator: Optional[str] = None
    remark: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now, index=True)
    updated_at: datetime = Field(default_factory=datetime.now)

    cells: List["Cell"] = Relationship(back_populates="batch")
    logs: List["OperationLog"] = Relationship(back_populates="batch")

class Cell(SQLModel, table=True):
    """One physical tube occupying one grid position of a box."""
    # At most one stored tube per grid position; removed tubes keep their history.
    __table_args__ = (
        Index(
            "ix_cell_stored_position",
            "box_id", "position_row", "position_col",
            unique=True,
            sqlite_where=text("status = 'stored'"),
            postgresql_where=text("status = 'stored'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: Optional[str] = None
    position_row: int
    position_col: int
    status: str = Field(default=CellStatus.STORED, index=True)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    batch_id: int = Field(foreign_key="cell_batch.id", index=True)
    batch: Optional[CellBatch] = Relationship(back_populates="cells")

    box_id: int = Field(foreign_key="box.id", index=True)
    box: Optional[Box] = Relationship(back_populates="cells")

    logs: List["OperationLog"] = Relationship(back_populates="cell")

# --- AUDIT MODELS ---

class OperationLog(SQLModel, table=True):
    """Append-only trail of inbound and outbound operations."""
    __tablename__ = "operation_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    operation: str = Field(index=True)
    quantity: int = Field(default=1)
    operator: Optional[str] = None
    reason: Optional[str] = None
    remark: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now, index=True)

    batch_id: Optional[int] = Field(default=None, foreign_key="cell_batch.id", index=True)
    batch: Optional[CellBatch] = Relationship(back_populates="logs")

    # Removed tubes may be purged with their box; the log entry survives.
    cell_id: Optional[int] = Field(default=None, foreign_key="cell.id", ondelete="SET NULL", index=True)
    cell: Optional[Cell] = Relationship(back_populates="logs")
