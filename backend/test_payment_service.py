"""
Payment poster: split tender, overpayment, walk-in rejection, retry safety,
and the cache == ledger invariant after every posting.
"""
import threading
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from settlement.core.exceptions import (
    EmptyPaymentBatchError,
    InvalidAmountError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    OverpaymentError,
    PaymentSessionConflictError,
    PostingStorageError,
    WalkInInvoiceError,
)
from settlement.models.client import Client
from settlement.models.invoice import InvoiceStatus, PaymentMethod
from settlement.models.ledger import EntryType, LedgerEntry
from settlement.models.tenant import Tenant
from settlement.services import balance_service, invoice_service, ledger_service, payment_service
from settlement.services.invoice_service import LineItem
from settlement.services.payment_service import PaymentInput


def _issued(db, tenant, client, amount="100"):
    inv = invoice_service.create_invoice(
        db, tenant.id, [LineItem("Service", Decimal("1"), Decimal(amount))], client_id=client.id if client else None
    )
    db.commit()
    return payment_service.issue_and_charge(db, inv.id, tenant.id, "clerk")


def _assert_cache_matches_ledger(db, tenant, client):
    assert balance_service.get_balance(db, tenant.id, client.id) == ledger_service.sum_for_client(
        db, tenant.id, client.id
    )


def _payment_entries(db, inv):
    return ledger_service.list_for_reference(db, "invoice", inv.id, entry_type=EntryType.PAYMENT)


def test_split_tender_posts_one_entry_per_method(db, tenant, client):
    inv = _issued(db, tenant, client)
    result = payment_service.post_payments(
        db,
        inv.id,
        tenant.id,
        [PaymentInput(Decimal("60"), "cash"), PaymentInput(Decimal("40"), "card", reference="auth-7781")],
        payment_session_id="checkout-1",
    )

    entries = _payment_entries(db, inv)
    assert [e.amount for e in entries] == [Decimal("-60.00"), Decimal("-40.00")]
    assert [e.balance_after for e in entries] == [Decimal("40.00"), Decimal("0.00")]
    assert entries[1].entry_metadata == {"reference": "auth-7781"}
    assert result.invoice_status == InvoiceStatus.PAID
    assert result.paid_amount == Decimal("100.00")
    assert result.outstanding_amount == Decimal("0")
    assert result.entry_ids == [e.id for e in entries]

    db.refresh(inv)
    assert inv.status == InvoiceStatus.PAID
    assert inv.payment_method == PaymentMethod.MIXED
    assert inv.payment_received_at is not None
    _assert_cache_matches_ledger(db, tenant, client)


def test_partial_then_paid(db, tenant, client):
    inv = _issued(db, tenant, client)
    first = payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("30"), "cash")], "ps-a")
    assert first.invoice_status == InvoiceStatus.PARTIAL
    assert first.outstanding_amount == Decimal("70.00")
    _assert_cache_matches_ledger(db, tenant, client)

    second = payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("70"), "cash")], "ps-b")
    assert second.invoice_status == InvoiceStatus.PAID
    assert second.paid_amount >= first.paid_amount
    db.refresh(inv)
    # same method across the invoice's lifetime
    assert inv.payment_method == PaymentMethod.CASH
    _assert_cache_matches_ledger(db, tenant, client)


def test_method_marker_spans_batches(db, tenant, client):
    inv = _issued(db, tenant, client)
    payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("50"), "cash")], "ps-1")
    payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("50"), "transfer")], "ps-2")
    db.refresh(inv)
    assert inv.payment_method == PaymentMethod.MIXED


def test_overpayment_rejected_without_side_effects(db, tenant, client):
    inv = _issued(db, tenant, client)
    balance_before = balance_service.get_balance(db, tenant.id, client.id)

    with pytest.raises(OverpaymentError) as exc_info:
        payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("150"), "cash")], "ps-over")

    assert exc_info.value.details["outstanding_amount"] == Decimal("100.00")
    assert _payment_entries(db, inv) == []
    assert balance_service.get_balance(db, tenant.id, client.id) == balance_before
    db.refresh(inv)
    assert inv.status == InvoiceStatus.ISSUED


def test_epsilon_absorbs_rounding(db, tenant, client):
    inv = _issued(db, tenant, client, amount="100")
    result = payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("100.01"), "cash")], "ps-eps")
    assert result.invoice_status == InvoiceStatus.PAID


def test_rejected_batch_is_idempotent(db, tenant, client):
    inv = _issued(db, tenant, client)
    bad = [PaymentInput(Decimal("20"), "cash"), PaymentInput(Decimal("0"), "card")]
    for _ in range(3):
        with pytest.raises(InvalidAmountError):
            payment_service.post_payments(db, inv.id, tenant.id, bad, "ps-bad")
    assert _payment_entries(db, inv) == []
    assert ledger_service.list_for_payment_session(db, tenant.id, "ps-bad") == []


def test_empty_batch_rejected(db, tenant, client):
    inv = _issued(db, tenant, client)
    with pytest.raises(EmptyPaymentBatchError):
        payment_service.post_payments(db, inv.id, tenant.id, [], "ps-empty")


def test_walk_in_invoice_rejected(db, tenant):
    inv = _issued(db, tenant, None)
    with pytest.raises(WalkInInvoiceError):
        payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("10"), "cash")], "ps-walk")
    assert db.query(LedgerEntry).count() == 0


def test_wrong_tenant_is_not_found(db, tenant, client):
    inv = _issued(db, tenant, client)
    with pytest.raises(InvoiceNotFoundError):
        payment_service.post_payments(db, inv.id, "other-tenant", [PaymentInput(Decimal("10"), "cash")], "ps-x")


def test_draft_and_cancelled_do_not_accept_payments(db, tenant, client):
    draft = invoice_service.create_invoice(
        db, tenant.id, [LineItem("Service", Decimal("1"), Decimal("10"))], client_id=client.id, auto_commit=True
    )
    with pytest.raises(InvalidTransitionError):
        payment_service.post_payments(db, draft.id, tenant.id, [PaymentInput(Decimal("5"), "cash")], "ps-d")

    inv = _issued(db, tenant, client)
    invoice_service.cancel_invoice(db, inv.id, tenant.id, auto_commit=True)
    with pytest.raises(InvalidTransitionError):
        payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("5"), "cash")], "ps-c")


def test_retry_with_same_session_id_replays(db, tenant, client):
    inv = _issued(db, tenant, client)
    batch = [PaymentInput(Decimal("60"), "cash"), PaymentInput(Decimal("40"), "card")]
    original = payment_service.post_payments(db, inv.id, tenant.id, batch, "checkout-retry")
    replay = payment_service.post_payments(db, inv.id, tenant.id, batch, "checkout-retry")

    assert replay.replayed
    assert replay.entry_ids == original.entry_ids
    assert replay.invoice_status == InvoiceStatus.PAID
    assert len(_payment_entries(db, inv)) == 2
    _assert_cache_matches_ledger(db, tenant, client)


def test_reused_session_id_with_different_batch_conflicts(db, tenant, client):
    inv = _issued(db, tenant, client)
    payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("10"), "cash")], "checkout-dup")
    with pytest.raises(PaymentSessionConflictError):
        payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("25"), "cash")], "checkout-dup")
    assert len(_payment_entries(db, inv)) == 1


def test_balance_replay_matches_after_mixed_activity(db, tenant, client):
    a = _issued(db, tenant, client, amount="100")
    b = _issued(db, tenant, client, amount="250")
    payment_service.post_payments(db, a.id, tenant.id, [PaymentInput(Decimal("100"), "cash")], "ps-a1")
    payment_service.post_payments(db, b.id, tenant.id, [PaymentInput(Decimal("75.50"), "card")], "ps-b1")
    payment_service.post_manual_entry(db, tenant.id, client.id, EntryType.CREDIT, Decimal("-20"), "goodwill")

    _assert_cache_matches_ledger(db, tenant, client)
    assert balance_service.get_balance(db, tenant.id, client.id) == Decimal("154.50")
    assert balance_service.find_drift(db, tenant.id) == []
    rebuilt = balance_service.rebuild_balance(db, tenant.id, client.id, auto_commit=True)
    assert rebuilt.balance == Decimal("154.50")


def test_storage_failure_reports_committed_entries(db, tenant, client, monkeypatch):
    inv = _issued(db, tenant, client)

    def broken_apply(*args, **kwargs):
        raise OperationalError("UPDATE invoices", {}, Exception("disk I/O error"))

    monkeypatch.setattr(invoice_service, "apply_settlement", broken_apply)
    with pytest.raises(PostingStorageError) as exc_info:
        payment_service.post_payments(db, inv.id, tenant.id, [PaymentInput(Decimal("40"), "cash")], "ps-io")

    assert exc_info.value.committed_entry_ids == []
    assert _payment_entries(db, inv) == []
    _assert_cache_matches_ledger(db, tenant, client)


def test_concurrent_checkouts_cannot_overpay(engine, tenant, client, db):
    inv = _issued(db, tenant, client)
    db.close()

    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    barrier = threading.Barrier(2)
    outcomes = []

    def checkout():
        session = Session()
        try:
            barrier.wait()
            payment_service.post_payments(
                session, inv.id, tenant.id, [PaymentInput(Decimal("60"), "cash")], str(uuid.uuid4())
            )
            outcomes.append("posted")
        except OverpaymentError:
            outcomes.append("rejected")
        finally:
            session.close()

    threads = [threading.Thread(target=checkout) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["posted", "rejected"]
    check = Session()
    try:
        assert invoice_service.paid_amount(check, invoice_service.get_invoice(check, inv.id, tenant.id)) == Decimal("60.00")
        _assert_cache_matches_ledger(check, tenant, client)
    finally:
        check.close()


def test_swapped_methods_under_same_session_id_conflict(db, tenant, client):
    inv = _issued(db, tenant, client)
    payment_service.post_payments(
        db, inv.id, tenant.id, [PaymentInput(Decimal("60"), "cash"), PaymentInput(Decimal("40"), "card")], "swap-1"
    )
    with pytest.raises(PaymentSessionConflictError):
        payment_service.post_payments(
            db, inv.id, tenant.id, [PaymentInput(Decimal("60"), "card"), PaymentInput(Decimal("40"), "cash")], "swap-1"
        )
    assert [e.payment_method for e in _payment_entries(db, inv)] == ["cash", "card"]


def test_payment_session_ids_are_scoped_per_tenant(db, tenant, client):
    other_tenant = Tenant(name="Second Shop")
    db.add(other_tenant)
    db.flush()
    other_client = Client(tenant_id=other_tenant.id, name="Omar Saleh")
    db.add(other_client)
    db.commit()

    ours = _issued(db, tenant, client)
    theirs = _issued(db, other_tenant, other_client)
    payment_service.post_payments(db, ours.id, tenant.id, [PaymentInput(Decimal("30"), "cash")], "pos-1")

    result = payment_service.post_payments(
        db, theirs.id, other_tenant.id, [PaymentInput(Decimal("25"), "card")], "pos-1"
    )
    assert not result.replayed
    assert result.invoice_status == InvoiceStatus.PARTIAL
    assert [e.reference_id for e in ledger_service.list_for_payment_session(db, other_tenant.id, "pos-1")] == [
        theirs.id
    ]

    # a conflicting retry by the second tenant only sees its own invoice
    with pytest.raises(PaymentSessionConflictError) as exc_info:
        payment_service.post_payments(
            db, theirs.id, other_tenant.id, [PaymentInput(Decimal("10"), "card")], "pos-1"
        )
    assert exc_info.value.details == {"invoice_id": theirs.id, "payment_session_id": "pos-1"}
    assert ours.id not in str(exc_info.value.details)
