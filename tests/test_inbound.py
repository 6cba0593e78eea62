# tests/test_inbound.py
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.errors import InvalidInput, InvalidPositionFormat, NotFound, PositionConflict
from app.models import Box, Cell, CellBatch, Freezer, OperationLog, Rack
from app.schemas import CellBatchCreate, ProposedInboundRow
from app.services.inbound import commit_batch, commit_rows
from app.services.locations import load_storage_snapshot
from app.services.validation import validate_rows

def batch_request(**overrides):
    data = dict(
        name="HEK293",
        cell_type="Adherent",
        passage="P5",
        total_quantity=2,
        freeze_date=date(2024, 1, 15),
        positions=["A1", "A2"],
        freezer_name="F1",
        rack_name="R1",
        box_name="B1",
    )
    data.update(overrides)
    return CellBatchCreate(**data)

def proposed_row(row_num, positions, **overrides):
    data = dict(
        row_num=row_num, name=f"line-{row_num}", cell_type="Adherent", passage="P3",
        quantity=len(positions), freeze_date="2024-02-01",
        freezer_name="F1", rack_name="R1", box_name="B1", positions=positions,
    )
    data.update(overrides)
    return ProposedInboundRow(**data)

# --- SINGLE BATCH ---

def test_commit_creates_batch_cells_and_one_log(session, storage):
    batch, cells = commit_batch(session, batch_request(code="HEK"), operator="alice")

    assert batch.id is not None
    assert batch.operator == "alice"
    assert [(c.position_row, c.position_col) for c in cells] == [(1, 1), (1, 2)]
    assert [c.code for c in cells] == ["HEK-1", "HEK-2"]
    assert all(c.status == "stored" for c in cells)

    logs = session.exec(select(OperationLog)).all()
    assert len(logs) == 1
    assert logs[0].operation == "inbound"
    assert logs[0].quantity == 2
    assert logs[0].batch_id == batch.id
    assert logs[0].remark == "cell inbound"

def test_commit_by_box_id(session, storage):
    batch, cells = commit_batch(
        session, batch_request(freezer_name=None, rack_name=None, box_name=None, box_id=storage.box.id)
    )
    assert all(c.box_id == storage.box.id for c in cells)

def test_request_operator_wins_over_caller(session, storage):
    batch, _ = commit_batch(session, batch_request(operator="bob"), operator="alice")
    assert batch.operator == "bob"

def test_occupied_position_is_rejected_and_nothing_is_written(session, storage):
    commit_batch(session, batch_request(total_quantity=1, positions=["A1"]))

    with pytest.raises(PositionConflict) as exc:
        commit_batch(session, batch_request(name="HeLa", positions=["A2", "A1"]))
    assert "A1" in exc.value.message

    assert len(session.exec(select(CellBatch)).all()) == 1
    assert len(session.exec(select(Cell)).all()) == 1

def test_removed_cell_frees_its_position(session, storage):
    _, cells = commit_batch(session, batch_request(total_quantity=1, positions=["A1"]))
    cells[0].status = "removed"
    session.add(cells[0])
    session.commit()

    _, again = commit_batch(session, batch_request(total_quantity=1, positions=["A1"]))
    assert again[0].position_row == 1

@pytest.mark.parametrize("overrides,error", [
    ({"positions": ["A1"]}, InvalidInput),
    ({"positions": ["A1", "A1"]}, InvalidInput),
    ({"positions": ["A1", "F1"]}, InvalidInput),
    ({"positions": ["A1", "1A"]}, InvalidPositionFormat),
    ({"box_name": "Nope"}, NotFound),
    ({"freezer_name": "Ghost"}, NotFound),
])
def test_invalid_requests(session, storage, overrides, error):
    with pytest.raises(error):
        commit_batch(session, batch_request(**overrides))
    assert session.exec(select(CellBatch)).first() is None

def test_unique_index_rejects_two_stored_tubes_in_one_slot(session, storage):
    batch, _ = commit_batch(session, batch_request(total_quantity=1, positions=["C3"]))
    session.add(Cell(position_row=3, position_col=3, batch_id=batch.id, box_id=storage.box.id))
    with pytest.raises(IntegrityError):
        session.commit()
    session.rollback()

# --- BULK ---

def test_commit_rows_isolates_failures(session, storage):
    commit_batch(session, batch_request(total_quantity=1, positions=["E5"]))
    rows = [
        proposed_row(2, ["A1", "A2"]),
        proposed_row(3, ["E5"]),  # taken since validation
        proposed_row(4, ["B1"]),
    ]

    results = commit_rows(session, rows, operator="alice")

    assert [(r.row, r.success) for r in results] == [(2, True), (3, False), (4, True)]
    assert "E5" in results[1].error
    assert results[0].batch_id is not None
    names = {b.name for b in session.exec(select(CellBatch)).all()}
    assert names == {"HEK293", "line-2", "line-4"}

def test_commit_rows_reports_bad_dates(session, storage):
    results = commit_rows(session, [proposed_row(2, ["A1"], freeze_date="yesterday")])
    assert results[0].success is False
    assert "yesterday" in results[0].error

def test_commit_records_timestamps(session, storage):
    batch, cells = commit_batch(session, batch_request())
    session.expire_all()
    assert session.get(CellBatch, batch.id).created_at is not None
    assert session.get(Cell, cells[0].id).created_at is not None

# --- DUPLICATE NAMES ---

def add_freezer(session, name="F1"):
    freezer = Freezer(name=name)
    session.add(freezer)
    session.commit()
    session.refresh(freezer)
    return freezer

def add_box(session, freezer, rack_name="R1", box_name="B1"):
    rack = Rack(name=rack_name, freezer_id=freezer.id)
    session.add(rack)
    session.commit()
    session.refresh(rack)
    box = Box(name=box_name, rows=5, cols=5, rack_id=rack.id)
    session.add(box)
    session.commit()
    session.refresh(box)
    return box

def validate_then_commit(session, rows):
    """Runs the bulk flow and returns the box id the validator checked against."""
    snapshot = load_storage_snapshot(session, {"F1"})
    assert validate_rows(rows, snapshot) == []
    checked = snapshot.lookup_freezer_by_name("F1").find_rack("R1").find_box("B1").id
    results = commit_rows(session, rows)
    assert [r.success for r in results] == [True] * len(rows)
    return checked

def test_duplicate_freezer_names_commit_into_validated_box(session):
    first = add_freezer(session)
    second = add_freezer(session)
    # the later freezer's rack gets the lower rack id
    add_box(session, second)
    expected = add_box(session, first)

    checked = validate_then_commit(session, [proposed_row(2, ["A1"])])

    assert checked == expected.id
    assert session.exec(select(Cell)).one().box_id == expected.id

def test_duplicate_rack_names_commit_into_validated_box(session):
    freezer = add_freezer(session)
    expected = add_box(session, freezer)
    add_box(session, freezer)
    # a name twin in another freezer must not be picked either
    add_box(session, add_freezer(session, "F2"))

    checked = validate_then_commit(session, [proposed_row(2, ["A1", "A2"]), proposed_row(3, ["B1"])])

    assert checked == expected.id
    assert {c.box_id for c in session.exec(select(Cell)).all()} == {expected.id}

def test_occupancy_follows_the_resolved_box(session):
    freezer = add_freezer(session)
    expected = add_box(session, freezer)
    twin = add_box(session, freezer)
    # a stored tube in the twin box does not block the resolved one
    commit_batch(session, batch_request(total_quantity=1, positions=["A1"], box_name=None,
                                        freezer_name=None, rack_name=None, box_id=twin.id))

    validate_then_commit(session, [proposed_row(2, ["A1"])])

    boxes = [c.box_id for c in session.exec(select(Cell).order_by(Cell.id)).all()]
    assert boxes == [twin.id, expected.id]

# --- API ---

def test_inbound_endpoint(client, storage, operator_headers):
    response = client.post("/api/inbound", headers=operator_headers, json={
        "name": "HEK293", "cellType": "Adherent", "passage": "P5", "totalQuantity": 2,
        "freezeDate": "2024-01-15", "positions": ["a1", "A2"], "boxId": storage.box.id,
    })
    assert response.status_code == 201
    body = response.json()
    assert body["operator"] == "Operator"
    assert [c["positionCol"] for c in body["cells"]] == [1, 2]

def test_inbound_conflict_returns_409(client, storage, operator_headers):
    payload = {
        "name": "HEK293", "cellType": "Adherent", "passage": "P5", "totalQuantity": 1,
        "freezeDate": "2024-01-15", "positions": ["A1"], "boxId": storage.box.id,
    }
    assert client.post("/api/inbound", headers=operator_headers, json=payload).status_code == 201
    response = client.post("/api/inbound", headers=operator_headers, json=payload)
    assert response.status_code == 409
    assert "A1" in response.json()["error"]

def test_batch_validate_endpoint(client, storage, admin_headers):
    rows = [
        {"rowNum": 2, "name": "HeLa", "cellType": "Adherent", "passage": "P2", "quantity": 1,
         "freezeDate": "2024-01-15", "freezerName": "F1", "rackName": "R1", "boxName": "B1", "positions": ["A1"]},
        {"rowNum": 3, "name": "CHO", "cellType": "Suspension", "passage": "P4", "quantity": 1,
         "freezeDate": "2024-01-15", "freezerName": "F1", "rackName": "R1", "boxName": "B1", "positions": ["A1"]},
    ]
    response = client.post("/api/inbound/batch/validate", headers=admin_headers, json={"rows": rows})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert [e["row"] for e in body["errors"]] == [3]
    assert "HeLa" in body["errors"][0]["message"]

def test_batch_validate_rejects_empty_batch(client, admin_headers):
    body = client.post("/api/inbound/batch/validate", headers=admin_headers, json={"rows": []}).json()
    assert body["success"] is False
    assert body["errors"] == [{"row": 0, "field": None, "message": "no rows to validate", "value": None}]

def test_batch_commit_endpoint(client, session, storage, admin_headers):
    rows = [
        {"rowNum": 2, "name": "HeLa", "cellType": "Adherent", "passage": "P2", "quantity": 2,
         "freezeDate": "2024-01-15", "freezerName": "F1", "rackName": "R1", "boxName": "B1",
         "positions": ["A1", "A2"], "operator": "carol"},
    ]
    body = client.post("/api/inbound/batch/commit", headers=admin_headers, json={"rows": rows}).json()
    assert body["success"] is True
    assert body["results"][0]["row"] == 2
    assert body["results"][0]["batchId"] is not None
    batch = session.exec(select(CellBatch)).one()
    assert batch.operator == "carol"

def test_batch_commit_refuses_invalid_rows(client, session, storage, admin_headers):
    rows = [{"rowNum": 2, "name": "HeLa", "cellType": "Adherent", "passage": "P2", "quantity": 1,
             "freezeDate": "2024-01-15", "freezerName": "Ghost", "rackName": "R1", "boxName": "B1",
             "positions": ["A1"]}]
    body = client.post("/api/inbound/batch/commit", headers=admin_headers, json={"rows": rows}).json()
    assert body["success"] is False
    assert body["results"] == []
    assert body["errors"][0]["field"] == "freezerName"
    assert session.exec(select(CellBatch)).first() is None

def test_bulk_inbound_needs_batch_permission(client, storage, operator_headers):
    response = client.post("/api/inbound/batch/validate", headers=operator_headers, json={"rows": []})
    assert response.status_code == 403

def test_inbound_records_list(client, storage, operator_headers):
    client.post("/api/inbound", headers=operator_headers, json={
        "name": "HEK293", "cellType": "Adherent", "passage": "P5", "totalQuantity": 1,
        "freezeDate": "2024-01-15", "positions": ["B2"], "boxId": storage.box.id,
    })
    body = client.get("/api/inbound", headers=operator_headers).json()
    assert body["total"] == 1
    assert body["records"][0]["quantity"] == 1
    assert body["records"][0]["batch"]["name"] == "HEK293"

    export = client.get("/api/inbound/export", headers=operator_headers)
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "HEK293" in export.content.decode("utf-8-sig")
