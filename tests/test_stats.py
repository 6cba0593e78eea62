# tests/test_stats.py
from datetime import date, datetime

import pytest

from app.errors import InvalidInput
from app.schemas import CellBatchCreate
from app.services.inbound import commit_batch
from app.services.outbound import commit_outbound
from app.services.stats import _month_start, overview, parse_range

@pytest.fixture
def movements(session, storage):
    """alice stores 3 HeLa and 1 CHO tube today; bob takes one HeLa tube out."""
    _, hela = commit_batch(session, CellBatchCreate(
        name="HeLa", cell_type="Adherent", passage="P3", total_quantity=3, freeze_date=date(2024, 1, 15),
        positions=["A1", "A2", "A3"], box_id=storage.box.id
    ), operator="alice")
    commit_batch(session, CellBatchCreate(
        name="CHO", cell_type="Suspension", passage="P2", total_quantity=1, freeze_date=date(2024, 1, 15),
        positions=["B1"], box_id=storage.box.id
    ), operator="alice")
    commit_outbound(session, [hela[0].id], operator="bob")

@pytest.mark.parametrize("day,back,expected", [
    (date(2024, 5, 20), 0, datetime(2024, 5, 1)),
    (date(2024, 5, 20), 5, datetime(2023, 12, 1)),
    (date(2024, 1, 31), 1, datetime(2023, 12, 1)),
    (date(2024, 12, 2), -1, datetime(2025, 1, 1)),
])
def test_month_start(day, back, expected):
    assert _month_start(day, back) == expected

def test_overview_totals(session, movements):
    stats = overview(session)

    assert stats["freezerCount"] == 1
    assert stats["storedCells"] == 3
    assert stats["removedCells"] == 1
    assert stats["totalCells"] == 4
    assert stats["batchCount"] == 2
    assert stats["inboundThisMonth"] == 4
    assert stats["outboundThisMonth"] == 1
    assert stats["cellTypeStats"] == [{"type": "Adherent", "count": 2}, {"type": "Suspension", "count": 1}]

def test_overview_trend_covers_six_months(session, movements):
    stats = overview(session)
    months = [m["month"] for m in stats["monthlyInbound"]]
    assert len(months) == 6
    assert months[-1] == date.today().strftime("%Y-%m")
    assert months == sorted(months)
    assert stats["monthlyInbound"][-1]["count"] == 2
    assert stats["monthlyOutbound"][-1]["count"] == 1
    assert all(m["count"] == 0 for m in stats["monthlyInbound"][:-1])

def test_overview_movements(session, movements):
    stats = overview(session)
    assert stats["freezerMonthStats"] == [{"freezerName": "F1", "inbound": 4, "outbound": 1}]
    assert stats["userMonthStats"] == [
        {"userName": "alice", "inbound": 4, "outbound": 0},
        {"userName": "bob", "inbound": 0, "outbound": 1},
    ]

def test_overview_of_an_empty_inventory(session):
    stats = overview(session)
    assert stats["storedCells"] == 0
    assert stats["inboundThisMonth"] == 0
    assert stats["freezerMonthStats"] == []

def test_parse_range_extends_to_end_of_day():
    start, end = parse_range("2024-01-01", "2024-01-31")
    assert start == datetime(2024, 1, 1)
    assert (end.date(), end.hour, end.minute) == (date(2024, 1, 31), 23, 59)

@pytest.mark.parametrize("start,end", [(None, "2024-01-31"), ("2024-01-01", ""), ("2024/01/01", "2024-01-31")])
def test_parse_range_rejects_bad_input(start, end):
    with pytest.raises(InvalidInput):
        parse_range(start, end)

# --- API ---

def test_stats_endpoint(client, movements, viewer_headers):
    body = client.get("/api/stats", headers=viewer_headers).json()
    assert body["storedCells"] == 3
    assert body["userCount"] == 1

def test_time_range_endpoint(client, movements, viewer_headers):
    today = date.today().isoformat()
    body = client.get("/api/stats/time-range", headers=viewer_headers,
                      params={"startDate": today, "endDate": today}).json()
    assert body["startDate"] == today
    assert body["freezerStats"] == [{"freezerName": "F1", "inbound": 4, "outbound": 1}]
    assert body["userStats"][0]["userName"] == "alice"

    past = client.get("/api/stats/time-range", headers=viewer_headers,
                      params={"startDate": "2000-01-01", "endDate": "2000-12-31"}).json()
    assert past["freezerStats"] == []
    assert past["userStats"] == []

def test_time_range_needs_both_dates(client, viewer_headers):
    response = client.get("/api/stats/time-range", headers=viewer_headers, params={"startDate": "2024-01-01"})
    assert response.status_code == 400
    assert response.json() == {"error": "startDate and endDate are required"}
