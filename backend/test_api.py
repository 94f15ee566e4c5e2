"""HTTP surface: status codes and payload shapes over a real SQLite file."""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from settlement.api.deps import get_db
from settlement.main import app


@pytest.fixture
def api(session_factory, db, tenant, branch, client):
    # Fixture data is committed; release the fixture session before requests take the write lock
    db.close()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    http = TestClient(app)
    http.headers.update({"X-Tenant-ID": tenant.id, "X-User-ID": "cashier-1"})
    yield http
    app.dependency_overrides.clear()


def _money(value) -> Decimal:
    return Decimal(str(value))


def _issued_invoice(api, client, amount="100"):
    resp = api.post(
        "/invoices",
        json={
            "client_id": client.id,
            "issue": True,
            "items": [{"description": "Monthly service", "quantity": "1", "unit_price": amount}],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(api):
    resp = api.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_missing_or_unknown_tenant(api):
    assert api.get("/invoices", headers={"X-Tenant-ID": ""}).status_code == 401
    assert api.get("/invoices", headers={"X-Tenant-ID": "nope"}).status_code == 403


def test_invoice_payment_flow(api, client):
    inv = _issued_invoice(api, client)
    assert inv["status"] == "issued"
    assert len(inv["items"]) == 1

    resp = api.post(
        f"/invoices/{inv['id']}/payments",
        json={
            "payment_session_id": "checkout-42",
            "payments": [
                {"amount": "60", "payment_method": "cash"},
                {"amount": "40", "payment_method": "card"},
            ],
        },
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["invoice_status"] == "paid"
    assert _money(body["outstanding_amount"]) == Decimal("0")
    assert len(body["entry_ids"]) == 2

    summary = api.get(f"/invoices/{inv['id']}/payments").json()
    assert summary["is_paid"] is True
    assert [p["payment_method"] for p in summary["payments"]] == ["cash", "card"]
    assert api.get(f"/invoices/{inv['id']}").json()["payment_method"] == "mixed"

    entries = api.get(f"/ledger/clients/{client.id}/entries").json()
    assert [_money(e["amount"]) for e in entries] == [Decimal("100"), Decimal("-60"), Decimal("-40")]
    assert _money(api.get(f"/ledger/clients/{client.id}/balance").json()["balance"]) == Decimal("0")


def test_overpayment_is_400_with_details(api, client):
    inv = _issued_invoice(api, client)
    resp = api.post(
        f"/invoices/{inv['id']}/payments",
        json={"payment_session_id": "ps-150", "payments": [{"amount": "150", "payment_method": "cash"}]},
    )
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert "exceeds outstanding" in detail["error"]
    assert _money(detail["outstanding_amount"]) == Decimal("100")
    assert api.get(f"/ledger/clients/{client.id}/entries").json()[-1]["entry_type"] == "invoice"


def test_payment_schema_rejects_non_positive(api, client):
    inv = _issued_invoice(api, client)
    resp = api.post(
        f"/invoices/{inv['id']}/payments",
        json={"payment_session_id": "ps-0", "payments": [{"amount": "0", "payment_method": "cash"}]},
    )
    assert resp.status_code == 422


def test_unknown_invoice_is_404(api):
    assert api.get("/invoices/does-not-exist").status_code == 404


def test_cancel_keeps_row_and_draft_delete(api, client):
    draft = api.post(
        "/invoices",
        json={"client_id": client.id, "items": [{"description": "Quote", "quantity": "2", "unit_price": "5"}]},
    ).json()
    assert draft["status"] == "draft"
    assert _money(draft["total_amount"]) == Decimal("10")

    assert api.post(f"/invoices/{draft['id']}/cancel", json={"reason": "client declined"}).json()["status"] == "cancelled"
    assert api.post(f"/invoices/{draft['id']}/cancel").status_code == 400
    assert api.delete(f"/invoices/{draft['id']}").status_code == 400

    other = api.post(
        "/invoices",
        json={"client_id": client.id, "items": [{"description": "Quote", "quantity": "1", "unit_price": "5"}]},
    ).json()
    assert api.delete(f"/invoices/{other['id']}").status_code == 204
    assert api.get(f"/invoices/{other['id']}").status_code == 404


def test_charged_invoice_cannot_be_deleted(api, client):
    inv = _issued_invoice(api, client)
    assert api.delete(f"/invoices/{inv['id']}").status_code == 400


def test_manual_credit_and_drift(api, client):
    _issued_invoice(api, client, amount="80")
    resp = api.post(
        "/ledger/entries",
        json={"client_id": client.id, "entry_type": "credit", "amount": "-30", "description": "returned goods"},
    )
    assert resp.status_code == 201, resp.text
    assert _money(resp.json()["balance_after"]) == Decimal("50")
    assert resp.json()["metadata"] == {}

    assert api.get("/ledger/balances/drift").json() == []
    rebuilt = api.post("/ledger/balances/rebuild").json()
    assert [_money(r["balance"]) for r in rebuilt] == [Decimal("50")]


def test_manual_entry_sign_is_enforced(api, client):
    resp = api.post("/ledger/entries", json={"client_id": client.id, "entry_type": "credit", "amount": "30"})
    assert resp.status_code == 400


def test_pos_day(api, client, branch):
    # the fixture branch has no drawer yet
    opened = api.post("/pos/sessions", json={"branch_id": branch.id, "opening_cash": "500"})
    assert opened.status_code == 201, opened.text
    session_id = opened.json()["id"]

    dup = api.post("/pos/sessions", json={"branch_id": branch.id, "opening_cash": "0"})
    assert dup.status_code == 409

    for amount in ("100", "120", "100"):
        sale = api.post(
            "/pos/sales",
            json={
                "session_id": session_id,
                "payment_method": "cash",
                "items": [{"name": "Item", "unit_price": amount}],
            },
        )
        assert sale.status_code == 201, sale.text
        assert sale.json()["status"] == "paid"

    assert _money(api.get(f"/pos/sessions/{session_id}/expected-cash").json()["expected_cash"]) == Decimal("820")
    assert api.get("/pos/sessions/open", params={"branch_id": branch.id}).json()["id"] == session_id

    closed = api.post(f"/pos/sessions/{session_id}/close", json={"actual_cash": "810"}).json()
    assert closed["status"] == "closed"
    assert _money(closed["expected_cash"]) == Decimal("820")
    assert _money(closed["cash_variance"]) == Decimal("-10")

    summary = api.get(f"/pos/sessions/{session_id}/summary").json()
    assert summary["invoice_count"] == 3

    late = api.post(
        "/pos/sales",
        json={"session_id": session_id, "payment_method": "cash", "items": [{"name": "Late", "unit_price": "5"}]},
    )
    assert late.status_code == 409
    assert api.post(f"/pos/sessions/{session_id}/reconcile").json()["status"] == "reconciled"


def test_debt_sale_without_client_is_400(api, branch):
    session_id = api.post("/pos/sessions", json={"branch_id": branch.id}).json()["id"]
    resp = api.post(
        "/pos/sales",
        json={"session_id": session_id, "payment_method": "debt", "items": [{"name": "Tab", "unit_price": "5"}]},
    )
    assert resp.status_code == 400
