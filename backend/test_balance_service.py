"""Balance cache: follows the ledger, rebuildable from it."""
from decimal import Decimal

from settlement.models.balance import CustomerBalance
from settlement.models.ledger import EntryType
from settlement.services import balance_service, ledger_service, payment_service


def test_missing_row_reads_as_zero(db, tenant, client):
    assert balance_service.get_balance_row(db, tenant.id, client.id) is None
    assert balance_service.get_balance(db, tenant.id, client.id) == Decimal("0")


def test_lock_balance_creates_row_once(db, tenant, client):
    first = balance_service.lock_balance(db, tenant.id, client.id)
    second = balance_service.lock_balance(db, tenant.id, client.id)
    db.commit()
    assert first is second
    assert first.currency == "SAR"
    assert db.query(CustomerBalance).count() == 1


def test_manual_entries_move_the_cache(db, tenant, client):
    payment_service.post_manual_entry(db, tenant.id, client.id, EntryType.ADJUSTMENT, Decimal("80"))
    payment_service.post_manual_entry(db, tenant.id, client.id, EntryType.CREDIT, Decimal("-25"))

    assert balance_service.get_balance(db, tenant.id, client.id) == Decimal("55.00")
    assert ledger_service.sum_for_client(db, tenant.id, client.id) == Decimal("55.00")


def test_drift_detected_and_repaired(db, tenant, client):
    payment_service.post_manual_entry(db, tenant.id, client.id, EntryType.ADJUSTMENT, Decimal("40"))
    balance_service.upsert_balance(db, tenant.id, client.id, Decimal("999"))
    db.commit()

    drift = balance_service.find_drift(db, tenant.id)
    assert drift == [(client.id, Decimal("999.00"), Decimal("40.00"))]

    rows = balance_service.rebuild_tenant_balances(db, tenant.id, auto_commit=True)
    assert [r.client_id for r in rows] == [client.id]
    assert balance_service.get_balance(db, tenant.id, client.id) == Decimal("40.00")
    assert balance_service.find_drift(db, tenant.id) == []


def test_rebuild_single_client_without_postings(db, tenant, client):
    row = balance_service.rebuild_balance(db, tenant.id, client.id, auto_commit=True)
    assert row.balance == Decimal("0")
