#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_routes
    ~~~~~~~~~~~~~~~~~

    HTTP surface: status codes and error bodies for circulation requests.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
from decimal import Decimal
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from kitabu.app import app
from kitabu.core import db as database
from kitabu.core.circulation import CirculationEngine, CopyLocks
from kitabu.core.fines import FineSchedule
from kitabu.core.models import Book, Borrower, BorrowerKind
from kitabu.core.registry import CopyRegistry
from kitabu.routes.api import get_db, get_engine

API = "/v1/api"


@pytest.fixture
def client(clock):
    database.Base.metadata.drop_all(database.engine)
    database.Base.metadata.create_all(database.engine)

    def engine_override(db=Depends(get_db)):
        return CirculationEngine(db, schedule=FineSchedule.load(db), clock=clock,
                                 locks=CopyLocks())

    app.dependency_overrides[get_engine] = engine_override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    database.session.remove()


@pytest.fixture
def seeded(client):
    db = database.session
    book = Book(title="The River and the Source", book_code="BK1")
    db.add(book)
    db.flush()
    registry = CopyRegistry(db)
    codes = [registry.add_copy(book, n, 2025).tracking_code for n in (1, 2, 3)]
    people = [Borrower(name="Akinyi", reference_number="ADM0001"),
              Borrower(name="Baraka", reference_number="ADM0002"),
              Borrower(name="Mr. Kamau", kind=BorrowerKind.STAFF, reference_number="TSC0001"),
              Borrower(name="Former", reference_number="ADM0003", active=False)]
    db.add_all(people)
    db.commit()
    ids = [p.id for p in people]
    database.session.remove()
    return codes, ids


def _issue(client, code, borrower_id, **extra):
    return client.post(f"{API}/loans", json={"tracking_code": code, "borrower_id": borrower_id, **extra})


def test_issue_and_lookup(client, seeded):
    codes, ids = seeded
    resp = _issue(client, codes[0], ids[0])
    assert resp.status_code == 201
    body = resp.json()
    assert body["tracking_code"] == "BK1/001/25"
    assert body["due_date"] == "2024-01-15"

    copy = client.get(f"{API}/copies", params={"tracking_code": "bk1/001/25"}).json()
    assert copy["status"] == "borrowed"
    assert copy["current_loan_id"] == body["loan_id"]

    loan = client.get(f"{API}/loans/{body['loan_id']}").json()
    assert loan["borrower_ids"] == [ids[0]]
    assert loan["status"] == "active"


def test_issue_conflicts(client, seeded):
    codes, ids = seeded
    _issue(client, codes[0], ids[0])
    resp = _issue(client, codes[0], ids[1])
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "CopyUnavailableError"


def test_inactive_borrower_override(client, seeded):
    codes, ids = seeded
    resp = _issue(client, codes[0], ids[3])
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "BorrowerInactiveError"
    assert _issue(client, codes[0], ids[3], allow_inactive=True).status_code == 201


def test_bad_and_unknown_codes(client, seeded):
    resp = client.post(f"{API}/returns", json={"tracking_code": "not-a-code"})
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "InvalidTrackingCodeError"

    resp = client.post(f"{API}/returns", json={"tracking_code": "ZZ/999/25"})
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "UnknownTrackingCodeError"

    assert client.get(f"{API}/loans/999").status_code == 404


def test_unknown_condition_is_rejected(client, seeded):
    codes, _ = seeded
    resp = client.post(f"{API}/returns", json={"tracking_code": codes[0],
                                               "condition_at_return": "shredded"})
    assert resp.status_code == 422


def test_overdue_return_and_payment(client, seeded, clock):
    codes, ids = seeded
    _issue(client, codes[0], ids[0])
    clock.today = datetime.date(2024, 1, 20)

    resp = client.post(f"{API}/returns", json={"tracking_code": codes[0],
                                               "condition_at_return": "fair"})
    assert resp.status_code == 200
    receipt = resp.json()
    assert receipt["overdue_days"] == 5
    assert Decimal(str(receipt["fine_amount"])) == Decimal("100")

    summary = client.get(f"{API}/borrowers/{ids[0]}/fines").json()
    assert Decimal(str(summary["outstanding"])) == Decimal("100")
    fine_id = summary["fines"][0]["id"]

    assert client.post(f"{API}/fines/{fine_id}/pay", json={}).json()["status"] == "paid"
    resp = client.post(f"{API}/fines/{fine_id}/clear", json={"reason": "oops"})
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "FineNotPayableError"


def test_theft_flow(client, seeded):
    codes, ids = seeded
    _issue(client, codes[1], ids[0])
    accused = _issue(client, codes[2], ids[1]).json()

    resp = client.post(f"{API}/returns", json={
        "tracking_code": codes[1], "borrower_id": ids[1], "resolve_theft": False})
    receipt = resp.json()
    assert receipt["theft_case_id"] is not None
    assert receipt["accused_loan_id"] == accused["loan_id"]
    assert Decimal(str(receipt["theft_fine_amount"])) == Decimal("800")

    cases = client.get(f"{API}/theft-cases").json()
    assert [c["id"] for c in cases] == [receipt["theft_case_id"]]
    case_url = f"{API}/theft-cases/{receipt['theft_case_id']}"

    resolved = client.post(f"{case_url}/resolve", json={"action": "waive"}).json()
    assert resolved["status"] == "resolved"
    again = client.post(f"{case_url}/resolve", json={"action": "collect"})
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "CaseAlreadyResolvedError"
    assert client.post(f"{case_url}/close", json={"notes": "done"}).json()["status"] == "closed"
    assert client.get(f"{API}/theft-cases").json() == []


def test_group_loan_and_lost_found(client, seeded):
    codes, ids = seeded
    resp = client.post(f"{API}/loans/group", json={"tracking_code": codes[0],
                                                   "borrower_ids": [ids[0], ids[2]]})
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "InvalidGroupMemberError"

    loan = client.post(f"{API}/loans/group", json={"tracking_code": codes[0],
                                                   "borrower_ids": [ids[0], ids[1]]}).json()
    assert loan["is_group"]
    lost = client.post(f"{API}/loans/{loan['loan_id']}/lost", json={}).json()
    assert lost["is_lost"]
    resp = client.post(f"{API}/loans/group/{loan['loan_id']}/return",
                       json={"tracking_code": codes[0]})
    assert resp.status_code == 409

    found = client.post(f"{API}/copies/found", json={"tracking_code": codes[0]}).json()
    assert len(found["cleared_fine_ids"]) == 2
    assert client.get(f"{API}/copies", params={"tracking_code": codes[0]}).json()["status"] == "available"


def test_back_dated_return(client, seeded):
    codes, ids = seeded
    _issue(client, codes[0], ids[0], borrowed_date="2023-12-20", due_date="2024-01-03")
    resp = client.post(f"{API}/returns", json={"tracking_code": codes[0],
                                               "returned_date": "2023-12-19"})
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "InvalidDueDateError"

    resp = client.post(f"{API}/returns", json={"tracking_code": codes[0],
                                               "returned_date": "2024-01-05"})
    assert resp.json()["overdue_days"] == 2
