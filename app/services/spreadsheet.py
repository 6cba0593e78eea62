# app/services/spreadsheet.py
"""
Spreadsheet I/O for bulk inbound and exports.

Uploaded sheets use a fixed column schema. Headers are the Chinese labels
of the downloadable template (a trailing "*" marks required columns and is
ignored); the camelCase field names are accepted as well.
"""
import csv
import io
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from app.errors import InvalidInput
from app.schemas import ProposedInboundRow
from app.services.positions import split_position_labels

logger = logging.getLogger(__name__)

TEMPLATE_SHEET = "入库模板"
LOCATION_SHEET = "存储位置参考"

# field -> accepted header labels
COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    "name": ("细胞名称", "name"),
    "cell_type": ("细胞类型", "cellType"),
    "passage": ("代次", "passage"),
    "quantity": ("数量", "冻存数量(管)", "quantity"),
    "freeze_date": ("冻存日期", "freezeDate"),
    "freezer_name": ("冰箱名称", "freezerName"),
    "rack_name": ("架子名称", "rackName"),
    "box_name": ("盒子名称", "boxName"),
    "positions": ("位置", "positions"),
    "freeze_medium": ("冻存液", "freezeMedium"),
    "donor_info": ("供体信息", "donorInfo"),
    "operator": ("操作人", "operator"),
    "remark": ("备注", "remark"),
}

TEMPLATE_COLUMNS = [
    ("细胞名称*", 12), ("细胞类型*", 12), ("代次*", 8), ("数量*", 8),
    ("冻存日期*", 12), ("冰箱名称*", 15), ("架子名称*", 12), ("盒子名称*", 12),
    ("位置*", 15), ("冻存液", 20), ("供体信息", 12), ("操作人", 10), ("备注", 20),
]
LOCATION_COLUMNS = [
    ("冰箱名称", 15), ("架子名称", 12), ("盒子名称", 12),
    ("盒子规格", 10), ("已存数量", 10), ("存储路径", 40),
]

# Day zero of Excel's 1900 date system, shifted for its 1900 leap year bug
EXCEL_EPOCH = date(1899, 12, 30)


def _header_key(label: Any) -> str:
    return str(label or "").strip().rstrip("*").strip()


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _date_text(value: Any) -> str:
    """Normalises real dates, Excel serial numbers and date strings to YYYY-MM-DD."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()

    text = _text(value)
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    # Left as typed; the validator reports it
    return text


def _quantity(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return 0
    return int(number) if number.is_integer() else 0


def records_to_rows(records: Iterable[Dict[str, Any]]) -> List[ProposedInboundRow]:
    """
    Maps header-keyed records to proposed inbound rows. The n-th record
    (0-based) becomes sheet row n + 2, counting the header row.
    """
    rows = []
    for index, record in enumerate(records):
        if not record or not any(_text(v) for v in record.values()):
            continue

        by_header = {_header_key(k): v for k, v in record.items()}

        def get(field_name: str) -> Any:
            for label in COLUMN_ALIASES[field_name]:
                value = by_header.get(label)
                if _text(value):
                    return value
            return None

        name = _text(get("name"))
        cell_type = _text(get("cell_type"))
        freezer_name = _text(get("freezer_name"))
        # A repeated header row inside the data
        if name.rstrip("*") == "细胞名称":
            continue
        if not (name or cell_type or freezer_name):
            continue

        rows.append(ProposedInboundRow(
            row_num=index + 2,
            name=name,
            cell_type=cell_type,
            passage=_text(get("passage")),
            quantity=_quantity(_text(get("quantity"))),
            freeze_date=_date_text(get("freeze_date")),
            freezer_name=freezer_name,
            rack_name=_text(get("rack_name")),
            box_name=_text(get("box_name")),
            positions=split_position_labels(_text(get("positions"))),
            freeze_medium=_text(get("freeze_medium")) or None,
            donor_info=_text(get("donor_info")) or None,
            operator=_text(get("operator")) or None,
            remark=_text(get("remark")) or None
        ))
    return rows


def read_xlsx_records(content: bytes) -> List[Dict[str, Any]]:
    """Reads the first worksheet into header-keyed records."""
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise InvalidInput(f"could not read the Excel file: {exc}")
    try:
        values = list(wb.worksheets[0].values)
    finally:
        wb.close()

    if not values:
        return []
    headers = [_text(h) for h in values[0]]
    return [
        {h: v for h, v in zip(headers, row) if h}
        for row in values[1:]
    ]


def read_csv_records(content: bytes) -> List[Dict[str, Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise InvalidInput("CSV files must be UTF-8 encoded")
    return list(csv.DictReader(io.StringIO(text)))


def parse_spreadsheet(content: bytes, ext: str) -> List[ProposedInboundRow]:
    """Parses an uploaded .xlsx or .csv bulk inbound sheet."""
    if ext == ".xlsx":
        records = read_xlsx_records(content)
    elif ext == ".csv":
        records = read_csv_records(content)
    else:
        raise InvalidInput(f"File type '{ext}' not allowed. Use .xlsx or .csv")

    rows = records_to_rows(records)
    logger.info(f"Parsed {len(rows)} inbound rows from {ext} upload ({len(records)} sheet rows)")
    return rows


# --- TEMPLATE & EXPORTS ---

def _write_sheet(ws, columns, data: Iterable[Sequence[Any]]):
    ws.append([label for label, _ in columns])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for idx, (_, width) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width
    for row in data:
        ws.append(list(row))


def build_template_workbook(locations: Sequence[Dict[str, Any]]) -> bytes:
    """
    Builds the bulk inbound template: one example row pointing at the first
    known box, plus a reference sheet listing every box.
    """
    first: Optional[Dict[str, Any]] = locations[0] if locations else None
    example = [
        "HEK293", "贴壁细胞", "P5", 3, "2024-01-15",
        first["freezer_name"] if first else "1号冰箱",
        first["rack_name"] if first else "A架",
        first["box_name"] if first else "盒子1",
        "A1,A2,A3", "10% DMSO + 90% FBS", "人源", "张医生", "示例备注",
    ]

    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET
    _write_sheet(ws, TEMPLATE_COLUMNS, [example])

    _write_sheet(wb.create_sheet(LOCATION_SHEET), LOCATION_COLUMNS, (
        [loc["freezer_name"], loc["rack_name"], loc["box_name"], loc["size"], loc["stored_count"], loc["path"]]
        for loc in locations
    ))

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def csv_stream(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> io.BytesIO:
    """Renders rows as a CSV file ready for a StreamingResponse."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])

    mem = io.BytesIO()
    # BOM so Excel opens the Chinese columns as UTF-8
    mem.write(output.getvalue().encode('utf-8-sig'))
    mem.seek(0)
    return mem
