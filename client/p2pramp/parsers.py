"""Parsing of raw escrow structs into typed views.

Pure functions, no I/O. Raw input is whatever the escrow or the indexer hands
back: plain dicts with numeric fields as ints, decimal strings or 0x-prefixed
hex strings.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from .errors import ParseError
from .types import (
    CurrencyRate,
    Deposit,
    DepositView,
    Intent,
    IntentView,
    Range,
    VerificationData,
    Verifier,
)

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1

_DECIMAL_RE = re.compile(r"[0-9]+")
_HEX_RE = re.compile(r"0[xX][0-9a-fA-F]+")


def to_uint(value: Any, field: str) -> int:
    """Parse an unsigned 256-bit integer without losing precision."""
    if isinstance(value, bool):
        raise ParseError(f"Invalid numeric value for {field}: {value!r}", field=field)
    if isinstance(value, int):
        result = value
    elif value is None:
        raise ParseError(f"Missing numeric field: {field}", field=field)
    else:
        text = str(value).strip()
        if _HEX_RE.fullmatch(text):
            result = int(text[2:], 16)
        elif _DECIMAL_RE.fullmatch(text):
            result = int(text, 10)
        else:
            raise ParseError(f"Invalid numeric value for {field}: {value!r}", field=field)

    if result < 0 or result > UINT256_MAX:
        raise ParseError(f"Value out of uint256 range for {field}: {value!r}", field=field)
    return result


def _require(raw: Mapping, key: str, field: str | None = None) -> Any:
    value = raw.get(key) if isinstance(raw, Mapping) else None
    if value is None or value == "":
        raise ParseError(f"Missing required field: {field or key}", field=field or key)
    return value


def to_plain(value: Any) -> Any:
    """Turn web3 decoded structs (named tuples, AttributeDicts) into plain dicts and lists."""
    if hasattr(value, "_asdict"):
        return {k: to_plain(v) for k, v in value._asdict().items()}
    if isinstance(value, Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


def parse_deposit(raw: Mapping) -> Deposit:
    """Parse a raw Deposit struct."""
    depositor = _require(raw, "depositor")
    token = _require(raw, "token")
    amount_range = _require(raw, "intentAmountRange")

    deposit = Deposit(
        depositor=depositor,
        deposit_amount=to_uint(raw.get("amount"), "amount"),
        remaining_deposit_amount=to_uint(raw.get("remainingDeposits"), "remainingDeposits"),
        outstanding_intent_amount=to_uint(raw.get("outstandingIntentAmount"), "outstandingIntentAmount"),
        intent_hashes=list(raw.get("intentHashes") or []),
        intent_amount_range=Range(
            min=to_uint(amount_range.get("min"), "intentAmountRange.min"),
            max=to_uint(amount_range.get("max"), "intentAmountRange.max"),
        ),
        token=token,
        accepting_intents=raw.get("acceptingIntents"),
    )

    if deposit.remaining_deposit_amount > deposit.deposit_amount:
        raise ParseError(
            f"remainingDeposits {deposit.remaining_deposit_amount} exceeds amount {deposit.deposit_amount}",
            field="remainingDeposits",
        )
    return deposit


def _parse_currencies(raw_currencies: list, verifier: str) -> list[CurrencyRate]:
    currencies = []
    for raw in raw_currencies or []:
        try:
            currencies.append(
                CurrencyRate(
                    code=_require(raw, "code", "currencies.code"),
                    conversion_rate=to_uint(raw.get("conversionRate"), "currencies.conversionRate"),
                )
            )
        except ParseError as e:
            # One bad currency must not take the rest of the verifier down with it
            logger.warning(f"Skipping currency on verifier {verifier}: {e}")
    return currencies


def parse_verifiers(raw_verifiers: list) -> list[Verifier]:
    """Parse the verifiers attached to a deposit."""
    verifiers = []
    for raw in raw_verifiers or []:
        address = _require(raw, "verifier")
        data = raw.get("verificationData") or {}
        verifiers.append(
            Verifier(
                verifier=address,
                verification_data=VerificationData(
                    intent_gating_service=data.get("intentGatingService", ""),
                    payee_details=data.get("payeeDetails", ""),
                    data=data.get("data", ""),
                ),
                currencies=_parse_currencies(raw.get("currencies"), address),
            )
        )
    return verifiers


def parse_deposit_view(raw: Mapping) -> DepositView:
    """Parse a deposit view. ``availableLiquidity`` comes from upstream, floored at zero."""
    deposit = parse_deposit(_require(raw, "deposit"))
    available = raw.get("availableLiquidity")
    available_liquidity = deposit.available_liquidity if available is None else to_uint(available, "availableLiquidity")

    return DepositView(
        deposit=deposit,
        available_liquidity=max(0, available_liquidity),
        deposit_id=to_uint(raw.get("depositId"), "depositId"),
        verifiers=parse_verifiers(raw.get("verifiers")),
    )


def parse_intent(raw: Mapping) -> Intent:
    return Intent(
        owner=_require(raw, "owner"),
        to=_require(raw, "to"),
        deposit_id=to_uint(raw.get("depositId"), "depositId"),
        amount=to_uint(raw.get("amount"), "amount"),
        timestamp=to_uint(raw.get("timestamp"), "timestamp"),
        payment_verifier=_require(raw, "paymentVerifier"),
        fiat_currency=raw.get("fiatCurrency", ""),
        conversion_rate=to_uint(raw.get("conversionRate"), "conversionRate"),
    )


def parse_intent_view(raw: Mapping) -> IntentView:
    """Parse an intent together with the deposit view it draws from."""
    return IntentView(
        intent=parse_intent(_require(raw, "intent")),
        deposit=parse_deposit_view(_require(raw, "deposit")),
        intent_hash=raw.get("intentHash", ""),
    )
