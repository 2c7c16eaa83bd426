"""
Deposit and intent lifecycle state machines

Every state-mutating transaction goes through a ``TransactionWriter`` whose
should-configure latch is cleared immediately before the wallet is asked to
sign and is only re-armed by a fresh user action. There are no locks: one
logical action never has two transactions in flight.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from .errors import (
    ContractError,
    ErrorCode,
    P2PRampError,
    ValidationError,
    parse_contract_error,
    wrap_error,
)
from .platforms import CURRENCIES, currency_hash, get_platform
from .store import StateStore
from .types import (
    DepositView,
    IntentSignalRequest,
    IntentView,
    PaymentRecord,
    PostDepositDetailsRequest,
    Quote,
)
from .units import rate_from_readable, token_units

logger = logging.getLogger(__name__)

Refresh = Callable[[], Awaitable[Any]]


def deposit_key(deposit_id: int) -> str:
    return f"deposit:{deposit_id}"


def intent_key(owner: str) -> str:
    return f"intent:{owner.lower()}"


async def _run_refreshes(refreshes: Iterable[Refresh]):
    for refresh in refreshes:
        try:
            await refresh()
        except P2PRampError as e:
            # The transaction already succeeded; a failed refetch is picked up by the next poll
            logger.warning(f"Refresh after transaction failed: {e}")


# ---------------------------------------------------------------------------
# Transaction writer
# ---------------------------------------------------------------------------


class TxStatus(str, Enum):
    IDLE = "idle"
    SIGNING = "signing"
    MINING = "mining"
    SUCCESS = "success"
    FAILED = "failed"


class TransactionWriter:
    """Sign -> mine for one kind of transaction."""

    def __init__(
        self,
        name: str,
        send: Callable[..., Awaitable[str]],
        wait_for_receipt: Callable[[str], Awaitable[dict]],
    ):
        self.name = name
        self._send = send
        self._wait_for_receipt = wait_for_receipt
        self.should_configure = False
        self.status = TxStatus.IDLE
        self.tx_hash: Optional[str] = None
        self.error: Optional[ContractError] = None

    @property
    def in_flight(self) -> bool:
        return self.status in (TxStatus.SIGNING, TxStatus.MINING)

    def arm(self):
        """Fresh user action: allow exactly one submission."""
        if self.in_flight:
            raise ValidationError(f"{self.name} transaction already in progress", field=self.name)
        self.should_configure = True

    def reset(self):
        if not self.in_flight:
            self.status = TxStatus.IDLE
            self.tx_hash = None
            self.error = None

    async def write(self, *args, **kwargs) -> str:
        """Submit and wait for the receipt. Contract errors are never retried."""
        if not self.should_configure:
            raise ValidationError(f"{self.name} transaction is not configured", field=self.name)
        self.should_configure = False

        self.error = None
        self.status = TxStatus.SIGNING
        try:
            self.tx_hash = await self._send(*args, **kwargs)
            self.status = TxStatus.MINING
            receipt = await self._wait_for_receipt(self.tx_hash)
        except Exception as e:
            self.status = TxStatus.FAILED
            self.error = parse_contract_error(e)
            logger.error(f"{self.name} failed: {self.error.message}")
            raise self.error from e

        if receipt.get("status") != 1:
            self.status = TxStatus.FAILED
            self.error = ContractError(
                f"{self.name} transaction reverted: {self.tx_hash}",
                code=ErrorCode.TRANSACTION_FAILED,
                details={"tx_hash": self.tx_hash},
            )
            raise self.error

        self.status = TxStatus.SUCCESS
        logger.info(f"{self.name} mined: {self.tx_hash}")
        return self.tx_hash


# ---------------------------------------------------------------------------
# Deposit creation
# ---------------------------------------------------------------------------


class DepositStatus(str, Enum):
    MISSING_AMOUNTS = "missing_amounts"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MIN_DEPOSIT_THRESHOLD_NOT_MET = "min_deposit_threshold_not_met"
    MISSING_MIN_MAX_AMOUNTS = "missing_min_max_amounts"
    MAX_PER_ORDER_GREATER_THAN_DEPOSIT_AMOUNT = "max_per_order_greater_than_deposit_amount"
    MIN_PER_ORDER_GREATER_THAN_MAX_PER_ORDER = "min_per_order_greater_than_max_per_order"
    MIN_PER_ORDER_LESS_THAN_MINIMUM_AMOUNT = "min_per_order_less_than_minimum_amount"
    MISSING_PLATFORMS = "missing_platforms"
    MISSING_PAYEE_DETAILS = "missing_payee_details"
    INVALID_PLATFORM_CURRENCY_RATES = "invalid_platform_currency_rates"
    VALIDATE_PAYEE_DETAILS = "validate_payee_details"
    POSTING_PAYEE_DETAILS = "posting_payee_details"
    INVALID_PAYEE_DETAILS = "invalid_payee_details"
    APPROVAL_REQUIRED = "approval_required"
    TRANSACTION_SIGNING = "transaction_signing"
    TRANSACTION_MINING = "transaction_mining"
    VALID = "valid"
    TRANSACTION_SUCCEEDED = "transaction_succeeded"


@dataclass
class PlatformDepositInput:
    """One payment platform the maker accepts."""

    platform: str
    verifier_address: str
    payee_details: str = ""
    currency_rates: dict[str, str] = field(default_factory=dict)  # ISO code -> human rate, e.g. "1.05"
    hashed_onchain_id: str = ""

    def parsed_rates(self) -> dict[str, int]:
        rates = {}
        for code, rate in self.currency_rates.items():
            try:
                value = rate_from_readable(rate)
            except ValidationError:
                continue
            if value > 0:
                rates[code] = value
        return rates


class DepositCreationFlow:
    """Maker flow: inputs -> payee details -> approve -> createDeposit."""

    def __init__(
        self,
        api,
        escrow,
        owner: str,
        gating_service: str,
        token_decimals: int = 6,
        min_deposit_amount: int = 1_000_000,
        approval_settle_seconds: float = 2.0,
        on_success: Iterable[Refresh] = (),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = api
        self.escrow = escrow
        self.owner = owner
        self.gating_service = gating_service
        self.token_decimals = token_decimals
        self.min_deposit_amount = min_deposit_amount
        self.approval_settle_seconds = approval_settle_seconds
        self.on_success = list(on_success)
        self._sleep = sleep

        self.amount: Optional[int] = None
        self.min_per_order: Optional[int] = None
        self.max_per_order: Optional[int] = None
        self.platforms: list[PlatformDepositInput] = []

        self.balance: Optional[int] = None
        self.allowance: Optional[int] = None

        self.is_in_approval_flow = False
        self.posting_payee_details = False
        self.payee_details_error: Optional[str] = None

        self.approve_writer = TransactionWriter("approve", escrow.approve, escrow.wait_for_receipt)
        self.deposit_writer = TransactionWriter("createDeposit", escrow.create_deposit, escrow.wait_for_receipt)

    def _units(self, value: str, name: str) -> Optional[int]:
        if value is None or str(value).strip() == "":
            return None
        try:
            return token_units(value, self.token_decimals)
        except ValidationError:
            raise ValidationError(f"Invalid {name}: {value!r}", field=name) from None

    def set_inputs(
        self,
        amount: str = "",
        min_per_order: str = "",
        max_per_order: str = "",
        platforms: Optional[list[PlatformDepositInput]] = None,
    ):
        """New user input. Clears sticky failures; changed payee details must be posted again."""
        self.amount = self._units(amount, "amount")
        self.min_per_order = self._units(min_per_order, "minPerOrder")
        self.max_per_order = self._units(max_per_order, "maxPerOrder")

        previous = {(p.platform, p.payee_details): p.hashed_onchain_id for p in self.platforms}
        self.platforms = list(platforms or [])
        for p in self.platforms:
            if not p.hashed_onchain_id:
                p.hashed_onchain_id = previous.get((p.platform, p.payee_details), "")

        self.payee_details_error = None
        self.deposit_writer.reset()

    async def refresh_balances(self):
        self.balance = await self.escrow.balance_of(self.owner)
        self.allowance = await self.escrow.allowance(self.owner)
        self._settle_approval()

    def _settle_approval(self):
        if self.is_in_approval_flow and self.allowance is not None and self.amount is not None:
            if self.allowance >= self.amount:
                self.is_in_approval_flow = False
                self.approve_writer.reset()

    @property
    def status(self) -> DepositStatus:
        if self.deposit_writer.status == TxStatus.SUCCESS:
            return DepositStatus.TRANSACTION_SUCCEEDED

        if not self.amount or self.balance is None or self.allowance is None:
            return DepositStatus.MISSING_AMOUNTS
        if self.amount > self.balance:
            return DepositStatus.INSUFFICIENT_BALANCE
        if self.amount < self.min_deposit_amount:
            return DepositStatus.MIN_DEPOSIT_THRESHOLD_NOT_MET

        if self.min_per_order is None or self.max_per_order is None:
            return DepositStatus.MISSING_MIN_MAX_AMOUNTS
        if self.max_per_order > self.amount:
            return DepositStatus.MAX_PER_ORDER_GREATER_THAN_DEPOSIT_AMOUNT
        if self.min_per_order > self.max_per_order:
            return DepositStatus.MIN_PER_ORDER_GREATER_THAN_MAX_PER_ORDER
        if self.min_per_order < self.min_deposit_amount:
            return DepositStatus.MIN_PER_ORDER_LESS_THAN_MINIMUM_AMOUNT

        if not self.platforms:
            return DepositStatus.MISSING_PLATFORMS
        if any(not p.payee_details.strip() for p in self.platforms):
            return DepositStatus.MISSING_PAYEE_DETAILS
        if any(not p.parsed_rates() for p in self.platforms):
            return DepositStatus.INVALID_PLATFORM_CURRENCY_RATES

        if self.payee_details_error:
            return DepositStatus.INVALID_PAYEE_DETAILS
        if self.posting_payee_details:
            return DepositStatus.POSTING_PAYEE_DETAILS
        if any(not p.hashed_onchain_id for p in self.platforms):
            return DepositStatus.VALIDATE_PAYEE_DETAILS

        for writer in (self.approve_writer, self.deposit_writer):
            if writer.status == TxStatus.SIGNING:
                return DepositStatus.TRANSACTION_SIGNING
            if writer.status == TxStatus.MINING:
                return DepositStatus.TRANSACTION_MINING

        if self.amount > self.allowance:
            # Allowance reads lag the mined approval on some RPC nodes
            if self.is_in_approval_flow and self.approve_writer.status == TxStatus.SUCCESS:
                return DepositStatus.TRANSACTION_MINING
            return DepositStatus.APPROVAL_REQUIRED

        return DepositStatus.VALID

    def _require(self, *allowed: DepositStatus) -> DepositStatus:
        status = self.status
        if status not in allowed:
            raise ValidationError(f"Cannot continue from {status.value}", field="depositStatus")
        return status

    async def post_payee_details(self):
        """Validate and post every platform's payee details; safe to retry."""
        self._require(DepositStatus.VALIDATE_PAYEE_DETAILS)
        self.posting_payee_details = True
        try:
            for p in self.platforms:
                if p.hashed_onchain_id:
                    continue
                config = get_platform(p.platform)
                deposit_data = config.deposit.get_deposit_data(p.payee_details.strip())

                validation = await self.api.validate_payee_details(p.platform, deposit_data)
                if not validation.is_valid:
                    self.payee_details_error = config.deposit.payee_detail_validation_failure_message
                    logger.info(f"Payee details rejected for {p.platform}")
                    return

                posted = await self.api.post_deposit_details(
                    PostDepositDetailsRequest(depositData=deposit_data, processorName=p.platform)
                )
                p.hashed_onchain_id = posted.response_object.hashed_onchain_id
        finally:
            self.posting_payee_details = False

    async def approve(self) -> str:
        self._require(DepositStatus.APPROVAL_REQUIRED)
        self.approve_writer.arm()
        self.is_in_approval_flow = True
        try:
            tx_hash = await self.approve_writer.write(self.amount)
        except ContractError:
            self.is_in_approval_flow = False
            raise

        await self._sleep(self.approval_settle_seconds)
        self.allowance = await self.escrow.allowance(self.owner)
        self._settle_approval()
        return tx_hash

    def _deposit_args(self) -> tuple:
        verifiers = [p.verifier_address for p in self.platforms]
        verifier_data = [(self.gating_service, p.hashed_onchain_id, b"") for p in self.platforms]
        currencies = [
            [(currency_hash(code), rate) for code, rate in p.parsed_rates().items()]
            for p in self.platforms
        ]
        return (self.amount, (self.min_per_order, self.max_per_order), verifiers, verifier_data, currencies)

    async def create_deposit(self) -> str:
        self._require(DepositStatus.VALID)
        self.deposit_writer.arm()
        tx_hash = await self.deposit_writer.write(*self._deposit_args())
        await _run_refreshes([self.refresh_balances, *self.on_success])
        return tx_hash


# ---------------------------------------------------------------------------
# Intent signaling
# ---------------------------------------------------------------------------


class SignalIntentStatus(str, Enum):
    DEFAULT = "default"
    INVALID_AMOUNT = "invalid_amount"
    EXCEEDS_ORDER_COUNT = "exceeds_order_count"
    CREATE_ORDER = "create_order"
    FETCHING_SIGNED_INTENT = "fetching_signed_intent"
    FAILED_TO_FETCH_SIGNED_INTENT = "failed_to_fetch_signed_intent"
    TRANSACTION_SIGNING = "transaction_signing"
    TRANSACTION_MINING = "transaction_mining"
    TRANSACTION_FAILED = "transaction_failed"
    DONE = "done"


class SignalIntentFlow:
    """Taker flow: validate quote -> fetch gating signature -> signalIntent."""

    def __init__(
        self,
        api,
        escrow,
        chain_id: int,
        token_decimals: int = 6,
        on_success: Iterable[Refresh] = (),
    ):
        self.api = api
        self.escrow = escrow
        self.chain_id = chain_id
        self.token_decimals = token_decimals
        self.on_success = list(on_success)

        self._status = SignalIntentStatus.DEFAULT
        self.invalid_reason: Optional[str] = None
        self.error: Optional[P2PRampError] = None
        self.signed_quote: Optional[Quote] = None
        self.writer = TransactionWriter("signalIntent", escrow.signal_intent, escrow.wait_for_receipt)

    @property
    def status(self) -> SignalIntentStatus:
        if self.writer.status == TxStatus.SIGNING:
            return SignalIntentStatus.TRANSACTION_SIGNING
        if self.writer.status == TxStatus.MINING:
            return SignalIntentStatus.TRANSACTION_MINING
        return self._status

    def _invalid(self, reason: str) -> SignalIntentStatus:
        self.invalid_reason = reason
        self._status = SignalIntentStatus.INVALID_AMOUNT
        return self._status

    def validate(self, quote: Quote, deposit: DepositView, has_open_intent: bool = False) -> SignalIntentStatus:
        """Decide whether an order may be created for ``quote``."""
        self.invalid_reason = None
        amount = quote.usdc_amount

        if amount <= 0:
            return self._invalid("Amount must be greater than zero")

        platform = get_platform(quote.platform)
        min_fiat = token_units(platform.min_fiat_amount, self.token_decimals)
        if quote.fiat_amount < min_fiat:
            return self._invalid(f"Minimum order is {platform.min_fiat_amount}")

        if amount > max(0, deposit.available_liquidity):
            return self._invalid("Order exceeds available liquidity")

        amount_range = deposit.deposit.intent_amount_range
        if amount < amount_range.min or amount > amount_range.max:
            return self._invalid("Order is outside the deposit's per-order limits")

        if has_open_intent:
            self._status = SignalIntentStatus.EXCEEDS_ORDER_COUNT
            return self._status

        self._status = SignalIntentStatus.CREATE_ORDER
        return self._status

    async def _fetch_signed_intent(self, quote: Quote, recipient: str):
        request = IntentSignalRequest(
            processorName=quote.platform,
            depositId=str(quote.deposit_id),
            tokenAmount=str(quote.usdc_amount),
            payeeDetails=quote.hashed_onchain_id,
            toAddress=recipient,
            fiatCurrencyCode=quote.fiat_currency,
            chainId=str(self.chain_id),
        )
        response = await self.api.signal_intent(request)
        return response.response_object

    async def create_order(self, quotes: list[Quote], recipient: str) -> str:
        """Fetch a gating signature (falling back through ``quotes``) and signal the intent.

        The blockchain transaction is never retried; the user re-triggers.
        """
        if self.status in (
            SignalIntentStatus.FETCHING_SIGNED_INTENT,
            SignalIntentStatus.TRANSACTION_SIGNING,
            SignalIntentStatus.TRANSACTION_MINING,
        ):
            raise ValidationError("Order already in progress", field="intent")
        if self._status != SignalIntentStatus.CREATE_ORDER or not quotes:
            raise ValidationError("Order is not ready to be created", field="amount")

        self.writer.arm()
        self.error = None
        self._status = SignalIntentStatus.FETCHING_SIGNED_INTENT

        signed = None
        for quote in quotes:
            try:
                signed = await self._fetch_signed_intent(quote, recipient)
                self.signed_quote = quote
                break
            except Exception as e:
                error = wrap_error(e)
                logger.warning(f"Signed intent failed for deposit {quote.deposit_id}: {error.message}")
                self.error = error

        if signed is None:
            self.writer.should_configure = False
            self._status = SignalIntentStatus.FAILED_TO_FETCH_SIGNED_INTENT
            raise self.error or ValidationError("No quotes available", field="amount")

        try:
            tx_hash = await self.writer.write(
                int(signed.deposit_id),
                int(signed.token_amount),
                signed.recipient_address,
                signed.verifier_address,
                signed.currency_code_hash,
                signed.gating_service_signature,
            )
        except ContractError as e:
            self.error = e
            self._status = SignalIntentStatus.TRANSACTION_FAILED
            raise

        self._status = SignalIntentStatus.DONE
        await _run_refreshes(self.on_success)
        return tx_hash

    def reset(self):
        """Start over after a terminal state."""
        self.writer.reset()
        self._status = SignalIntentStatus.DEFAULT
        self.invalid_reason = None
        self.error = None
        self.signed_quote = None


# ---------------------------------------------------------------------------
# Narrow transaction flows
# ---------------------------------------------------------------------------


class TransactionFlow:
    """Config inputs -> sign -> mine -> refetch on success."""

    name = "transaction"

    def __init__(self, send: Callable[..., Awaitable[str]], escrow, on_success: Iterable[Refresh] = ()):
        self.writer = TransactionWriter(self.name, send, escrow.wait_for_receipt)
        self.on_success = list(on_success)

    @property
    def status(self) -> TxStatus:
        return self.writer.status

    async def _submit(self, *args) -> str:
        self.writer.arm()
        tx_hash = await self.writer.write(*args)
        await _run_refreshes(self.on_success)
        return tx_hash


class UpdateConversionRateFlow(TransactionFlow):
    name = "updateDepositConversionRate"

    def __init__(self, escrow, on_success: Iterable[Refresh] = ()):
        super().__init__(escrow.update_conversion_rate, escrow, on_success)

    async def submit(self, deposit_id: int, verifier: str, currency_code: str, rate: str) -> str:
        if currency_code not in CURRENCIES:
            raise ValidationError(f"Unsupported currency: {currency_code}", field="currency")
        conversion_rate = rate_from_readable(rate)
        if conversion_rate == 0:
            raise ValidationError("Conversion rate must be greater than zero", field="conversionRate")
        return await self._submit(deposit_id, verifier, currency_hash(currency_code), conversion_rate)


class WithdrawDepositFlow(TransactionFlow):
    name = "withdrawDeposit"

    def __init__(self, escrow, on_success: Iterable[Refresh] = ()):
        super().__init__(escrow.withdraw_deposit, escrow, on_success)

    async def submit(self, deposit_id: int) -> str:
        return await self._submit(deposit_id)


class CancelIntentFlow(TransactionFlow):
    name = "cancelIntent"

    def __init__(self, escrow, on_success: Iterable[Refresh] = ()):
        super().__init__(escrow.cancel_intent, escrow, on_success)

    async def submit(self, intent_hash: str) -> str:
        return await self._submit(intent_hash)


class ReleaseFundsToPayerFlow(TransactionFlow):
    """Depositor confirms an off-chain payment and releases the intent's funds."""

    name = "releaseFundsToPayer"

    def __init__(self, escrow, on_success: Iterable[Refresh] = ()):
        super().__init__(escrow.release_funds_to_payer, escrow, on_success)

    async def submit(self, intent_hash: str) -> str:
        return await self._submit(intent_hash)


# ---------------------------------------------------------------------------
# Payment completion
# ---------------------------------------------------------------------------


class Prover(Protocol):
    """Browser extension / mobile SDK that turns a captured payment into a submitted proof."""

    async def prove(self, intent_view: IntentView, record: PaymentRecord) -> Any: ...


class CompletionStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    GENERATING_PROOF = "generating_proof"
    AWAITING_FULFILLMENT = "awaiting_fulfillment"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class PaymentCompletion:
    """Hands the selected payment to the prover and watches the intent clear on chain."""

    def __init__(
        self,
        escrow,
        prover: Prover,
        store: StateStore,
        intent_expiration_seconds: int = 86400,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.escrow = escrow
        self.prover = prover
        self.store = store
        self.intent_expiration_seconds = intent_expiration_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

        self.status = CompletionStatus.AWAITING_PAYMENT
        self.error: Optional[P2PRampError] = None
        self.cancel_eligible = False

    def expires_at(self, intent_view: IntentView) -> int:
        return intent_view.intent.timestamp + self.intent_expiration_seconds

    async def complete(self, intent_view: IntentView, record: PaymentRecord) -> CompletionStatus:
        if self.status in (CompletionStatus.GENERATING_PROOF, CompletionStatus.AWAITING_FULFILLMENT):
            raise ValidationError("Payment verification already in progress", field="payment")

        self.error = None
        self.status = CompletionStatus.GENERATING_PROOF
        try:
            await self.prover.prove(intent_view, record)
        except Exception as e:
            self.error = wrap_error(e)
            self.status = CompletionStatus.FAILED
            logger.error(f"Proof generation failed for {intent_view.intent_hash}: {self.error.message}")
            raise self.error from e

        self.status = CompletionStatus.AWAITING_FULFILLMENT
        return await self.wait_for_fulfillment(intent_view)

    async def _read_deposit(self, deposit_id: int) -> Optional[DepositView]:
        key = deposit_key(deposit_id)
        generation = self.store.begin_request(key)
        views = await self.escrow.get_deposits([deposit_id])
        if not views:
            return None
        self.store.apply(key, views[0], generation)
        return views[0]

    async def wait_for_fulfillment(self, intent_view: IntentView) -> CompletionStatus:
        """Poll until the intent leaves the deposit's open intents or expires."""
        intent_hash = intent_view.intent_hash.lower()
        deposit_id = intent_view.intent.deposit_id

        while True:
            if self._clock() >= self.expires_at(intent_view):
                self.expire(intent_view)
                return self.status

            deposit = await self._read_deposit(deposit_id)
            open_hashes = {h.lower() for h in deposit.deposit.intent_hashes} if deposit else set()
            if intent_hash not in open_hashes:
                self.status = CompletionStatus.COMPLETED
                self.store.set(intent_key(intent_view.intent.owner), None)
                logger.info(f"Intent {intent_view.intent_hash} fulfilled")
                return self.status

            await self._sleep(self.poll_interval)

    def expire(self, intent_view: IntentView):
        """Mark the intent expired and hand its amount back to the deposit's available liquidity."""
        self.status = CompletionStatus.EXPIRED
        self.cancel_eligible = True

        key = deposit_key(intent_view.intent.deposit_id)
        view: DepositView = self.store.get(key) or intent_view.deposit
        deposit = view.deposit
        outstanding = max(0, deposit.outstanding_intent_amount - intent_view.intent.amount)
        released = replace(
            deposit,
            outstanding_intent_amount=outstanding,
            intent_hashes=[h for h in deposit.intent_hashes if h.lower() != intent_view.intent_hash.lower()],
        )
        self.store.set(key, replace(view, deposit=released, available_liquidity=released.available_liquidity))
        self.store.set(intent_key(intent_view.intent.owner), None)
        logger.info(f"Intent {intent_view.intent_hash} expired, liquidity released")
