"""Tests for payment reconciliation."""

from datetime import datetime, timezone

import pytest

from p2pramp.errors import ValidationError
from p2pramp.platforms import currency_hash, get_platform, parse_payment
from p2pramp.reconciler import PaymentReconciler, ReconcileStatus
from p2pramp.types import (
    Deposit,
    DepositView,
    Intent,
    IntentView,
    PaymentRecord,
    PaymentRecordSet,
    Range,
)

INTENT_TIME = int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
NOW = INTENT_TIME + 600
PAYEE = "alice-venmo"


def _make_intent_view(amount: int = 95_238_095, rate: int = 1_050_000_000_000_000_000, currency: str = "USD") -> IntentView:
    deposit = Deposit(
        depositor="0x0000000000000000000000000000000000001111",
        deposit_amount=1_000 * 10**6,
        remaining_deposit_amount=1_000 * 10**6,
        outstanding_intent_amount=amount,
        intent_hashes=["0xintent"],
        intent_amount_range=Range(10**6, 500 * 10**6),
        token="0x0000000000000000000000000000000000002222",
        accepting_intents=True,
    )
    intent = Intent(
        owner="0x0000000000000000000000000000000000005555",
        to="0x0000000000000000000000000000000000006666",
        deposit_id=1,
        amount=amount,
        timestamp=INTENT_TIME,
        payment_verifier="0x0000000000000000000000000000000000003333",
        fiat_currency=currency_hash(currency),
        conversion_rate=rate,
    )
    view = DepositView(deposit=deposit, available_liquidity=1_000 * 10**6 - amount, deposit_id=1, verifiers=[])
    return IntentView(intent=intent, deposit=view, intent_hash="0xintent")


def _venmo(amount: str = "- $100.00", date: str = "2025-01-01T09:00:00", recipient: str = PAYEE, payment_id: str = "1"):
    return PaymentRecord(amount=amount, date=date, recipient=recipient, payment_id=payment_id)


def _make_reconciler(platform: str = "venmo", payee: str = PAYEE) -> PaymentReconciler:
    return PaymentReconciler(get_platform(platform), payee, token_decimals=6, clock=lambda: NOW)


def _record_set(records, version: int = 1, expires_at: float = NOW + 300, platform: str = "venmo"):
    return PaymentRecordSet(platform=platform, records=records, expires_at=expires_at, version=version)


def test_exact_and_over_payment_valid():
    reconciler = _make_reconciler()
    view = _make_intent_view()
    # required fiat floors to 99.999999
    assert reconciler.required_fiat_amount(view) == 99_999_999
    assert reconciler.is_payment_valid(_venmo("- $100.00"), view)
    assert reconciler.is_payment_valid(_venmo("- $150.00"), view)


@pytest.mark.parametrize("amount", ["- $99.99", "- $1.00", "- $0.00"])
def test_underpayment_rejected(amount):
    assert not _make_reconciler().is_payment_valid(_venmo(amount), _make_intent_view())


def test_received_payment_rejected():
    assert not _make_reconciler().is_payment_valid(_venmo("+ $100.00"), _make_intent_view())


def test_payment_before_intent_rejected():
    record = _venmo(date="2024-12-31T23:59:59")
    assert not _make_reconciler().is_payment_valid(record, _make_intent_view())


def test_payment_at_intent_time_accepted():
    record = _venmo(date="2025-01-01T00:00:00")
    assert _make_reconciler().is_payment_valid(record, _make_intent_view())


def test_wrong_recipient_rejected():
    assert not _make_reconciler().is_payment_valid(_venmo(recipient="mallory"), _make_intent_view())


def test_wrong_currency_rejected():
    # Venmo always reports USD
    view = _make_intent_view(currency="EUR")
    assert not _make_reconciler().is_payment_valid(_venmo(), view)


def test_unparsed_recipient_passes():
    """Zelle exports cannot identify the recipient, so that check is skipped."""
    record = PaymentRecord(amount="100.00", date="2025-01-02", recipient="Alice Smith")
    reconciler = _make_reconciler("zelle", payee="alice@example.com")
    assert reconciler.is_payment_valid(record, _make_intent_view())


def test_unparseable_metadata_falls_through():
    """A record whose fields cannot be read is not rejected on them."""
    record = PaymentRecord(amount="- $100.00", date=None, recipient=None)
    reconciler = _make_reconciler()
    # no date and no recipient parsed: only amount and currency are checked
    assert reconciler.is_payment_valid(record, _make_intent_view())


def test_single_valid_record_auto_selected_once_per_version():
    reconciler = _make_reconciler()
    view = _make_intent_view()
    records = [_venmo(payment_id="a"), _venmo("- $5.00", payment_id="b"), _venmo("+ $100.00", payment_id="c")]

    first = reconciler.load(_record_set(records, version=1), view)
    assert first.auto_selected
    assert first.selected.payment_id == "a"
    assert reconciler.status == ReconcileStatus.AUTO_SELECTED

    # Same set delivered again: no second auto-selection
    again = reconciler.load(_record_set(records, version=1), view)
    assert not again.auto_selected
    assert again.selected.payment_id == "a"

    refreshed = reconciler.load(_record_set(records, version=2), view)
    assert refreshed.auto_selected


def test_no_auto_select_during_manual_review():
    reconciler = _make_reconciler()
    view = _make_intent_view()
    records = [_venmo(payment_id="a")]
    reconciler.load(_record_set(records, version=1), view)
    reconciler.select(records[0])

    result = reconciler.load(_record_set(records, version=2), view)
    assert not result.auto_selected
    assert reconciler.status == ReconcileStatus.SELECTED


def test_several_valid_records_shown_none_picked():
    reconciler = _make_reconciler()
    records = [_venmo(payment_id="a"), _venmo("- $120.00", payment_id="b")]
    result = reconciler.load(_record_set(records), _make_intent_view())

    assert [r.payment_id for r in result.records] == ["a", "b"]
    assert result.selected is None
    assert not result.auto_selected
    assert reconciler.status == ReconcileStatus.AWAITING_SELECTION


def test_no_valid_records_shows_sent_payments():
    reconciler = _make_reconciler()
    records = [_venmo("- $1.00", payment_id="a"), _venmo("+ $100.00", payment_id="b")]
    result = reconciler.load(_record_set(records), _make_intent_view())
    assert result.valid == []
    assert [r.payment_id for r in result.records] == ["a"]


def test_reverse_order_platform():
    reconciler = _make_reconciler("monzo", payee="alice-monzo")
    view = _make_intent_view(currency="GBP")
    records = [
        PaymentRecord(amount="-10000", currency="GBP", date="2025-01-01T10:00:00", recipient="alice-monzo",
                      payment_id="older", metadata={"recipientName": "Alice"}),
        PaymentRecord(amount="-12000", currency="GBP", date="2025-01-01T11:00:00", recipient="alice-monzo",
                      payment_id="newer", metadata={"recipientName": "Alice"}),
    ]
    result = reconciler.load(_record_set(records, platform="monzo"), view)
    assert [r.payment_id for r in result.records] == ["newer", "older"]


def test_expiry_buffer():
    reconciler = _make_reconciler()
    reconciler.load(_record_set([_venmo()], expires_at=NOW + 100), _make_intent_view())

    assert reconciler.can_generate_proof(now=NOW + 69)
    assert not reconciler.can_generate_proof(now=NOW + 70)
    assert reconciler.tick(now=NOW + 70) == ReconcileStatus.PAYMENTS_EXPIRED


def test_expired_set_blocks_verification():
    reconciler = _make_reconciler()
    reconciler.load(_record_set([_venmo()], expires_at=NOW + 100), _make_intent_view())
    assert reconciler.selected_for_verification(now=NOW).payment_id == "1"

    with pytest.raises(ValidationError):
        reconciler.selected_for_verification(now=NOW + 95)


def test_expired_on_arrival_does_not_auto_select():
    reconciler = _make_reconciler()
    result = reconciler.load(_record_set([_venmo()], expires_at=NOW + 10), _make_intent_view())
    assert not result.auto_selected
    assert reconciler.status == ReconcileStatus.PAYMENTS_EXPIRED


def test_unreadable_date_still_checks_amount():
    # one cent sent with an unreadable date is still an underpayment
    record = PaymentRecord(amount="-1", date="not-a-date", currency="USD", recipient=PAYEE, payment_id="a")
    reconciler = _make_reconciler("revolut", payee=PAYEE)
    view = _make_intent_view()

    parsed = parse_payment(get_platform("revolut"), record)
    assert parsed.parsed_amount and parsed.amount == "0.01"
    assert not parsed.parsed_date
    assert parsed.parsed_currency and parsed.parsed_recipient_id

    assert not reconciler.is_payment_valid(record, view)
    result = reconciler.load(_record_set([record], platform="revolut"), view)
    assert not result.auto_selected
    assert result.selected is None


def test_unreadable_date_alone_is_skipped():
    record = PaymentRecord(amount="-10000", date="not-a-date", currency="USD", recipient=PAYEE)
    assert _make_reconciler("revolut").is_payment_valid(record, _make_intent_view())


def test_selection_dropped_when_record_leaves_set():
    reconciler = _make_reconciler()
    view = _make_intent_view()
    first = reconciler.load(_record_set([_venmo(payment_id="a")], version=1), view)
    assert first.selected.payment_id == "a"

    records = [_venmo(payment_id="b"), _venmo("- $120.00", payment_id="c")]
    result = reconciler.load(_record_set(records, version=2), view)
    assert result.selected is None
    assert reconciler.selected is None
    assert reconciler.status == ReconcileStatus.AWAITING_SELECTION
    with pytest.raises(ValidationError):
        reconciler.selected_for_verification(now=NOW)


def test_manual_selection_kept_while_record_present():
    reconciler = _make_reconciler()
    view = _make_intent_view()
    a, b = _venmo(payment_id="a"), _venmo("- $120.00", payment_id="b")
    reconciler.load(_record_set([a, b], version=1), view)
    reconciler.select(b)

    result = reconciler.load(_record_set([a, b], version=2), view)
    assert result.selected is b
    assert reconciler.status == ReconcileStatus.SELECTED


def test_tick_before_load_is_no_payments():
    assert _make_reconciler().tick(now=NOW) == ReconcileStatus.NO_PAYMENTS


def test_tick_keeps_status_until_deadline():
    reconciler = _make_reconciler()
    reconciler.load(_record_set([_venmo()], expires_at=NOW + 100), _make_intent_view())

    assert reconciler.tick(now=NOW) == ReconcileStatus.AUTO_SELECTED
    assert reconciler.tick(now=NOW + 69) == ReconcileStatus.AUTO_SELECTED
    assert reconciler.tick(now=NOW + 70) == ReconcileStatus.PAYMENTS_EXPIRED
    # stays expired until a fresh set is loaded
    assert reconciler.tick(now=NOW + 1) == ReconcileStatus.PAYMENTS_EXPIRED

    reconciler.load(_record_set([_venmo()], version=2, expires_at=NOW + 300), _make_intent_view())
    assert reconciler.tick(now=NOW) == ReconcileStatus.AUTO_SELECTED
