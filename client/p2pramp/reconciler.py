"""
Payment reconciliation

Decides which captured payment, if any, proves payment for an open intent.
A field the platform parser could not read is not held against a record:
partial evidence falls through to manual selection instead of being rejected.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .conversion import fiat_from_token_amount
from .errors import ValidationError
from .platforms import PlatformConfig, currency_from_hash, parse_payment, subject_text
from .types import IntentView, PaymentRecord, PaymentRecordSet
from .units import token_units

logger = logging.getLogger(__name__)

PROOF_BUFFER_SECONDS = 30


class ReconcileStatus(str, Enum):
    NO_PAYMENTS = "no_payments"
    AWAITING_SELECTION = "awaiting_selection"
    AUTO_SELECTED = "auto_selected"
    SELECTED = "selected"
    PAYMENTS_EXPIRED = "payments_expired"


@dataclass
class ReconcileResult:
    """What to show for one record set."""

    records: list[PaymentRecord] = field(default_factory=list)  # shown to the user, platform order
    valid: list[PaymentRecord] = field(default_factory=list)
    selected: Optional[PaymentRecord] = None
    auto_selected: bool = False


def _epoch_seconds(iso_date: str) -> float:
    return datetime.fromisoformat(iso_date).timestamp()


class PaymentReconciler:
    """Matches captured payments against one intent.

    ``payee_details`` is the raw payee identifier registered for the deposit's
    platform (the on-chain value is only its hash).
    """

    def __init__(
        self,
        platform: PlatformConfig,
        payee_details: str,
        token_decimals: int = 6,
        buffer_seconds: int = PROOF_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.platform = platform
        self.payee_details = payee_details
        self.token_decimals = token_decimals
        self.buffer_seconds = buffer_seconds
        self._clock = clock

        self.record_set: Optional[PaymentRecordSet] = None
        self.status = ReconcileStatus.NO_PAYMENTS
        self.selected: Optional[PaymentRecord] = None
        self.manual_review = False
        self._auto_selected_version: Optional[int] = None

    def required_fiat_amount(self, intent_view: IntentView) -> int:
        intent = intent_view.intent
        return fiat_from_token_amount(intent.amount, intent.conversion_rate, self.token_decimals)

    def is_sent_payment(self, record: PaymentRecord) -> bool:
        return subject_text(self.platform, record) != ""

    def is_payment_valid(self, record: PaymentRecord, intent_view: IntentView) -> bool:
        if not self.is_sent_payment(record):
            return False

        intent = intent_view.intent
        parsed = parse_payment(self.platform, record)

        if parsed.parsed_amount:
            try:
                paid = token_units(parsed.amount, self.token_decimals)
            except ValidationError:
                logger.warning(f"Unreadable payment amount {parsed.amount!r}")
                return False
            if paid < self.required_fiat_amount(intent_view):
                return False

        if parsed.parsed_currency:
            required = currency_from_hash(intent.fiat_currency)
            if required is None or parsed.currency != required.currency_code:
                return False

        if parsed.parsed_date:
            try:
                paid_at = _epoch_seconds(parsed.date)
            except ValueError:
                return False
            if paid_at < intent.timestamp:
                return False

        if parsed.parsed_recipient_id and parsed.recipient_id != self.payee_details:
            return False

        return True

    def load(self, record_set: PaymentRecordSet, intent_view: IntentView) -> ReconcileResult:
        """Filter a fresh (or re-delivered) record set and auto-select when unambiguous.

        A single valid record is auto-selected once per record set version and
        only while no manual review is open. Several valid records are all
        shown and none is picked.
        """
        previous = self.record_set
        self.record_set = record_set
        records = record_set.records

        # a selection only survives a new version if the record is still there
        if previous is not None and previous.version != record_set.version and self.selected not in records:
            if self.selected is not None:
                logger.info(f"Selected payment dropped from set version {record_set.version}")
            self.selected = None
            self.manual_review = False
        reverse = self.platform.verification.reverse_transaction_history_order

        valid = [r for r in records if self.is_payment_valid(r, intent_view)]
        if reverse:
            valid.reverse()

        if valid:
            shown = valid
        else:
            sent = [r for r in records if self.is_sent_payment(r)]
            shown = list(sent or records)
            if reverse:
                shown.reverse()

        result = ReconcileResult(records=shown, valid=valid)

        if not records:
            self.status = ReconcileStatus.NO_PAYMENTS
            return result

        if self.is_expired():
            self.status = ReconcileStatus.PAYMENTS_EXPIRED
            return result

        if (
            len(valid) == 1
            and not self.manual_review
            and self._auto_selected_version != record_set.version
        ):
            self._auto_selected_version = record_set.version
            self.selected = valid[0]
            self.status = ReconcileStatus.AUTO_SELECTED
            result.selected = valid[0]
            result.auto_selected = True
            logger.info(f"Auto-selected {self.platform.platform_id} payment (set version {record_set.version})")
        elif self.selected is None:
            self.status = ReconcileStatus.AWAITING_SELECTION
        else:
            result.selected = self.selected

        return result

    def select(self, record: PaymentRecord):
        """Manual choice from the shown records."""
        if self.record_set is None or record not in self.record_set.records:
            raise ValidationError("Selected payment is not in the current record set", field="payment")
        self.manual_review = True
        self.selected = record
        self.status = ReconcileStatus.SELECTED

    def expires_at(self) -> Optional[float]:
        """When proof generation must have started by, buffer applied."""
        if self.record_set is None:
            return None
        return self.record_set.expires_at - self.buffer_seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        deadline = self.expires_at()
        if deadline is None:
            return False
        return (self._clock() if now is None else now) >= deadline

    def can_generate_proof(self, now: Optional[float] = None) -> bool:
        return self.record_set is not None and not self.is_expired(now)

    def tick(self, now: Optional[float] = None) -> ReconcileStatus:
        """Run by the 1 second expiry checker."""
        if self.record_set is not None and self.is_expired(now):
            if self.status != ReconcileStatus.PAYMENTS_EXPIRED:
                logger.info(f"{self.platform.platform_id} payment records expired, refresh required")
            self.status = ReconcileStatus.PAYMENTS_EXPIRED
        return self.status

    def selected_for_verification(self, now: Optional[float] = None) -> PaymentRecord:
        """The record to hand to the prover; expired sets must be refreshed first."""
        if self.is_expired(now):
            self.status = ReconcileStatus.PAYMENTS_EXPIRED
            raise ValidationError("Payment records expired, refresh to continue", field="payments")
        if self.selected is None:
            raise ValidationError("No payment selected", field="payment")
        return self.selected
