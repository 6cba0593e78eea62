# app/schemas.py
from datetime import date
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class ApiModel(BaseModel):
    """Request/response bodies: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

def dump(obj: Optional[BaseModel], exclude=None, **extra) -> dict:
    """Serialises a table model for a JSON response with camelCase keys."""
    data = obj.model_dump(exclude=exclude) if obj is not None else {}
    data.update(extra)
    return {to_camel(k): v for k, v in data.items()}

# --- BULK INBOUND ---

class ProposedInboundRow(ApiModel):
    """One spreadsheet row awaiting validation. Never persisted."""
    row_num: int = 0
    name: str = ""
    cell_type: str = ""
    passage: str = ""
    quantity: int = 0
    freeze_date: str = ""
    freezer_name: str = ""
    rack_name: str = ""
    box_name: str = ""
    positions: List[str] = Field(default_factory=list)
    freeze_medium: Optional[str] = None
    donor_info: Optional[str] = None
    operator: Optional[str] = None
    remark: Optional[str] = None

class ValidationErrorItem(ApiModel):
    row: int
    field: Optional[str] = None
    message: str
    value: Optional[str] = None

class ValidationResult(ApiModel):
    success: bool
    errors: List[ValidationErrorItem] = Field(default_factory=list)
    message: Optional[str] = None

class UploadValidationResult(ValidationResult):
    """Validation of an uploaded sheet, echoing the parsed rows for review."""
    rows: List[ProposedInboundRow] = Field(default_factory=list)

class BatchRowsRequest(ApiModel):
    rows: List[ProposedInboundRow] = Field(default_factory=list)

class RowCommitResult(ApiModel):
    row: int
    success: bool
    batch_id: Optional[int] = None
    error: Optional[str] = None

class BulkCommitResult(ApiModel):
    success: bool
    results: List[RowCommitResult] = Field(default_factory=list)
    errors: List[ValidationErrorItem] = Field(default_factory=list)

# --- SINGLE INBOUND ---

class CellBatchCreate(ApiModel):
    """
    A manually entered batch. The box is named either by id or by the
    freezer/rack/box name path used in spreadsheets.
    """
    name: str
    cell_type: str
    passage: str
    total_quantity: int = Field(ge=1)
    freeze_date: date
    positions: List[str]
    box_id: Optional[int] = None
    freezer_name: Optional[str] = None
    rack_name: Optional[str] = None
    box_name: Optional[str] = None
    batch_code: Optional[str] = None
    code: Optional[str] = None
    freeze_medium: Optional[str] = None
    donor_info: Optional[str] = None
    culture_info: Optional[str] = None
    operator: Optional[str] = None
    remark: Optional[str] = None

class CellBatchUpdate(ApiModel):
    """Metadata edits; identity fields (name, type, passage, quantity) are fixed."""
    batch_code: Optional[str] = None
    freeze_medium: Optional[str] = None
    donor_info: Optional[str] = None
    culture_info: Optional[str] = None
    operator: Optional[str] = None
    remark: Optional[str] = None

# --- OUTBOUND ---

class OutboundRequest(ApiModel):
    cell_ids: List[int]
    reason: Optional[str] = None
    operator: Optional[str] = None

class BoxOutboundRequest(ApiModel):
    box_id: int
    reason: Optional[str] = None
    operator: Optional[str] = None

# --- STORAGE ---

class FreezerIn(ApiModel):
    name: str = Field(min_length=1)
    location: Optional[str] = None
    temperature: Optional[str] = None
    capacity: Optional[int] = None
    remark: Optional[str] = None

class RackIn(ApiModel):
    name: str = Field(min_length=1)
    freezer_id: Optional[int] = None
    capacity: Optional[int] = None
    remark: Optional[str] = None

class BoxIn(ApiModel):
    name: str = Field(min_length=1)
    rack_id: Optional[int] = None
    rows: int = Field(default=10, ge=1, le=26)
    cols: int = Field(default=10, ge=1)
    remark: Optional[str] = None

# --- USERS & AUTH ---

class LoginRequest(ApiModel):
    email: str
    password: str

class ChangePasswordRequest(ApiModel):
    old_password: str
    new_password: str

class UserCreate(ApiModel):
    email: str
    name: str
    password: str
    role: str = "viewer"

class UserUpdate(ApiModel):
    email: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
