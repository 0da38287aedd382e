from datetime import datetime, timedelta, timezone


def _due(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def test_ledger_records_every_lifecycle_event(client, login):
    h = login("u1", worksite="North")

    tool = client.post(
        "/tools", json={"name": "Broca", "code": "BRO-1", "category": "bits", "total_quantity": 3}, headers=h
    ).json()
    loan = client.post(
        "/loans", json={"tool_id": tool["id"], "borrower_name": "Pedro", "quantity": 2, "expected_return_date": _due(2)}, headers=h
    ).json()
    client.patch(f"/loans/{loan['id']}/return", headers=h)

    r = client.get("/movements", headers=h)
    assert r.status_code == 200
    items = r.json()
    assert [(m["type"], m["quantity"]) for m in items] == [("entry", 3), ("loan", -2), ("return", 2)]
    assert [m["id"] for m in items] == sorted(m["id"] for m in items)
    assert items[1]["loan_id"] == loan["id"]
    assert items[2]["loan_id"] == loan["id"]
    assert all(m["origin_worksite"] == "North" for m in items)
    assert "Pedro" in items[1]["description"]

    loans_only = client.get("/movements?type=loan", headers=h).json()
    assert len(loans_only) == 1


def test_movements_scoped_by_worksite(client, login):
    north = login("n1", worksite="North")
    south = login("s1", worksite="South")

    client.post("/tools", json={"name": "a", "code": "N-1", "category": "c", "total_quantity": 1}, headers=north)
    client.post("/tools", json={"name": "b", "code": "S-1", "category": "c", "total_quantity": 1}, headers=south)

    n_items = client.get("/movements", headers=north).json()
    assert len(n_items) == 1
    assert n_items[0]["origin_worksite"] == "North"


def test_movements_time_range(client, login):
    h = login("u2")
    client.post("/tools", json={"name": "a", "code": "T-1", "category": "c", "total_quantity": 1}, headers=h)

    today = datetime.now(timezone.utc).date()
    r = client.get(f"/movements?start={today.isoformat()}&end={today.isoformat()}&tz=UTC", headers=h)
    assert r.status_code == 200
    assert len(r.json()) == 1

    past = today - timedelta(days=10)
    r2 = client.get(f"/movements?end={past.isoformat()}", headers=h)
    assert r2.json() == []


def test_movements_bad_range(client, login):
    h = login("u3")
    r = client.get("/movements?start=2026-02-01&end=2026-01-01", headers=h)
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "BAD_REQUEST"

    r2 = client.get("/movements?tz=Mars/Olympus", headers=h)
    assert r2.status_code == 400

    r3 = client.get("/movements?start=yesterday", headers=h)
    assert r3.status_code == 400
