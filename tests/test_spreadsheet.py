# tests/test_spreadsheet.py
import io
from datetime import datetime

import pytest
from openpyxl import Workbook, load_workbook

from app.errors import InvalidInput
from app.services.spreadsheet import (
    LOCATION_SHEET, TEMPLATE_SHEET, build_template_workbook, csv_stream, parse_spreadsheet, records_to_rows
)

CHINESE_RECORD = {
    "细胞名称*": "HEK293", "细胞类型*": "贴壁细胞", "代次*": "P5", "数量*": 2,
    "冻存日期*": "2024-01-15", "冰箱名称*": "F1", "架子名称*": "R1", "盒子名称*": "B1",
    "位置*": "a1，A2", "冻存液": "10% DMSO", "供体信息": "", "操作人": "张医生", "备注": None,
}

LOCATIONS = [{
    "box_id": 1, "freezer_name": "F1", "rack_name": "R1", "box_name": "B1",
    "rows": 5, "cols": 5, "size": "5×5", "stored_count": 3, "path": "F1 → R1 → B1",
}]

def xlsx_bytes(rows):
    wb = Workbook()
    for row in rows:
        wb.active.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()

def test_chinese_headers_map_to_fields():
    [row] = records_to_rows([CHINESE_RECORD])
    assert row.row_num == 2
    assert row.name == "HEK293"
    assert row.quantity == 2
    assert row.positions == ["A1", "A2"]
    assert row.freeze_medium == "10% DMSO"
    assert row.donor_info is None
    assert row.operator == "张医生"

def test_camel_case_headers_are_accepted():
    [row] = records_to_rows([{
        "name": "CHO", "cellType": "Suspension", "passage": "P2", "quantity": "1",
        "freezeDate": "2024/02/03", "freezerName": "F1", "rackName": "R1", "boxName": "B1", "positions": "C3",
    }])
    assert row.cell_type == "Suspension"
    assert row.freeze_date == "2024-02-03"
    assert row.positions == ["C3"]

def test_row_numbers_count_skipped_rows():
    records = [{}, {"细胞名称": "", "备注": "only a remark"}, dict(CHINESE_RECORD)]
    assert [r.row_num for r in records_to_rows(records)] == [4]

def test_repeated_header_rows_are_skipped():
    echo = {key: key for key in CHINESE_RECORD}
    assert records_to_rows([echo, CHINESE_RECORD])[0].row_num == 3

@pytest.mark.parametrize("raw,expected", [
    (45306, "2024-01-15"),
    (45306.0, "2024-01-15"),
    (datetime(2024, 1, 15, 9, 30), "2024-01-15"),
    ("2024.01.15", "2024-01-15"),
    ("15th Jan", "15th Jan"),
])
def test_freeze_date_normalisation(raw, expected):
    [row] = records_to_rows([dict(CHINESE_RECORD, **{"冻存日期*": raw})])
    assert row.freeze_date == expected

@pytest.mark.parametrize("raw,expected", [("3", 3), (3.0, 3), ("2.5", 0), ("many", 0), ("", 0)])
def test_quantity_parsing(raw, expected):
    [row] = records_to_rows([dict(CHINESE_RECORD, **{"数量*": raw})])
    assert row.quantity == expected

def test_parse_csv_upload():
    content = (
        "细胞名称*,细胞类型*,代次*,数量*,冻存日期*,冰箱名称*,架子名称*,盒子名称*,位置*\n"
        "HeLa,贴壁细胞,P3,2,2024-01-15,F1,R1,B1,\"B1,B2\"\n"
    ).encode("utf-8-sig")
    [row] = parse_spreadsheet(content, ".csv")
    assert row.name == "HeLa"
    assert row.positions == ["B1", "B2"]

def test_parse_xlsx_upload():
    content = xlsx_bytes([
        ["细胞名称*", "细胞类型*", "代次*", "数量*", "冻存日期*", "冰箱名称*", "架子名称*", "盒子名称*", "位置*"],
        ["HeLa", "贴壁细胞", "P3", 1, datetime(2024, 1, 15), "F1", "R1", "B1", "E5"],
        [None] * 9,
    ])
    [row] = parse_spreadsheet(content, ".xlsx")
    assert row.quantity == 1
    assert row.freeze_date == "2024-01-15"
    assert row.positions == ["E5"]

def test_unreadable_xlsx_is_invalid_input():
    with pytest.raises(InvalidInput):
        parse_spreadsheet(b"not a workbook", ".xlsx")

def test_non_utf8_csv_is_invalid_input():
    with pytest.raises(InvalidInput):
        parse_spreadsheet("细胞名称".encode("gbk"), ".csv")

def test_unknown_extension_is_rejected():
    with pytest.raises(InvalidInput):
        parse_spreadsheet(b"a,b", ".xls")

def test_template_workbook_round_trips_through_the_parser():
    content = build_template_workbook(LOCATIONS)

    wb = load_workbook(io.BytesIO(content))
    assert wb.sheetnames == [TEMPLATE_SHEET, LOCATION_SHEET]
    assert [c.value for c in wb[LOCATION_SHEET][2]] == ["F1", "R1", "B1", "5×5", 3, "F1 → R1 → B1"]

    [example] = parse_spreadsheet(content, ".xlsx")
    assert (example.freezer_name, example.rack_name, example.box_name) == ("F1", "R1", "B1")
    assert example.positions == ["A1", "A2", "A3"]
    assert example.quantity == 3

def test_template_without_boxes_still_has_an_example():
    [example] = parse_spreadsheet(build_template_workbook([]), ".xlsx")
    assert example.name == "HEK293"

def test_csv_stream_writes_bom_and_blanks_nones():
    stream = csv_stream(["名称", "备注"], [["HeLa", None]])
    data = stream.getvalue()
    assert data.startswith(b"\xef\xbb\xbf")
    assert data.decode("utf-8-sig").splitlines() == ["名称,备注", "HeLa,"]

# --- API ---

def test_upload_endpoint_validates_rows(client, storage, admin_headers):
    content = (
        "细胞名称*,细胞类型*,代次*,数量*,冻存日期*,冰箱名称*,架子名称*,盒子名称*,位置*\n"
        "HeLa,贴壁细胞,P3,1,2024-01-15,F1,R1,B1,A1\n"
        "CHO,悬浮细胞,P2,1,2024-01-15,F9,R1,B1,A2\n"
    ).encode("utf-8-sig")
    response = client.post(
        "/api/inbound/batch/upload", headers=admin_headers,
        files={"file": ("cells.csv", content, "text/csv")}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert [r["rowNum"] for r in body["rows"]] == [2, 3]
    assert [(e["row"], e["field"]) for e in body["errors"]] == [(3, "freezerName")]

def test_upload_rejects_other_file_types(client, admin_headers):
    response = client.post(
        "/api/inbound/batch/upload", headers=admin_headers,
        files={"file": ("cells.txt", b"hello", "text/plain")}
    )
    assert response.status_code == 400
    assert ".txt" in response.json()["error"]

def test_template_download(client, storage, admin_headers):
    response = client.get("/api/inbound/template", headers=admin_headers)
    assert response.status_code == 200
    assert "attachment" in response.headers["content-disposition"]
    wb = load_workbook(io.BytesIO(response.content))
    assert wb[LOCATION_SHEET]["A2"].value == "F1"
