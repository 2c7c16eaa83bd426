"""
Payment platform and currency registry.

One table keyed by platform id holds everything the reconciler and the
lifecycle need to know about a platform: the currencies it settles in, the
minimum order size, how captured payment metadata is parsed and how payee
details are posted to the backend.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from web3 import Web3

from .types import ParsedPayment, PaymentRecord
from .units import format_units

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Currencies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CurrencyData:
    currency_code: str
    currency_name: str
    currency_symbol: str
    country_code: str
    currency_code_hash: str


def currency_keccak256(code: str) -> str:
    """Hash a currency code the way the escrow stores it (keccak256 of the UTF-8 bytes)."""
    return Web3.to_hex(Web3.keccak(text=code))


_CURRENCIES = [
    ("AED", "United Arab Emirates Dirham", "د.إ", "ae"),
    ("ARS", "Argentine Peso", "$", "ar"),
    ("AUD", "Australian Dollar", "A$", "au"),
    ("CAD", "Canadian Dollar", "C$", "ca"),
    ("CHF", "Swiss Franc", "Fr", "ch"),
    ("CNY", "Chinese Yuan", "¥", "cn"),
    ("EUR", "Euro", "€", "eu"),
    ("GBP", "British Pound", "£", "gb"),
    ("HKD", "Hong Kong Dollar", "HK$", "hk"),
    ("IDR", "Indonesian Rupiah", "Rp", "id"),
    ("ILS", "Israeli New Shekel", "₪", "il"),
    ("INR", "Indian Rupee", "₹", "in"),
    ("JPY", "Japanese Yen", "¥", "jp"),
    ("MXN", "Mexican Peso", "$", "mx"),
    ("NZD", "New Zealand Dollar", "NZ$", "nz"),
    ("PLN", "Polish Zloty", "zł", "pl"),
    ("SGD", "Singapore Dollar", "S$", "sg"),
    ("THB", "Thai Baht", "฿", "th"),
    ("TRY", "Turkish Lira", "₺", "tr"),
    ("USD", "United States Dollar", "$", "us"),
    ("ZAR", "South African Rand", "R", "za"),
]

CURRENCIES: dict[str, CurrencyData] = {
    code: CurrencyData(code, name, symbol, country, currency_keccak256(code))
    for code, name, symbol, country in _CURRENCIES
}

_CURRENCY_BY_HASH = {data.currency_code_hash.lower(): data for data in CURRENCIES.values()}


def currency_from_hash(currency_code_hash: str) -> Optional[CurrencyData]:
    return _CURRENCY_BY_HASH.get((currency_code_hash or "").lower())


def currency_hash(code: str) -> str:
    return CURRENCIES[code].currency_code_hash


# ---------------------------------------------------------------------------
# Metadata parsing helpers
# ---------------------------------------------------------------------------

FieldParser = Callable[[PaymentRecord], str]

_FIELD_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


def _cents_to_amount(value, negate: bool = False) -> str:
    """Integer minor units (possibly negative, possibly a string) to a major-unit string."""
    cents = int(str(value).strip())
    if negate:
        cents = -cents
    return format_units(cents, 2)


def _utc_iso(value: str) -> str:
    """Normalise a timestamp string to ISO-8601 UTC; naive timestamps are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def _normalise_localized_amount(text: str) -> str:
    """Handle "1,005.10", "1.005,10", "54,02" and "1 950" style amounts."""
    text = re.sub(r"\s+", "", text)
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if "," in text:
        whole, _, fraction = text.rpartition(",")
        if len(fraction) == 3:
            return text.replace(",", "")
        return f"{whole.replace(',', '')}.{fraction}"
    return text


def _record_date(record: PaymentRecord) -> str:
    return _utc_iso(record.date) if record.date else ""


def _record_recipient(record: PaymentRecord) -> str:
    return record.recipient or ""


def _record_currency(record: PaymentRecord) -> str:
    return record.currency or ""


def _fixed_currency(code: str) -> FieldParser:
    return lambda record: code


@dataclass(frozen=True)
class MetadataParser:
    """Reads each payment field on its own.

    A field that fails to parse is reported as unparsed without affecting the
    others, so an unreadable date never hides an underpaid amount.
    """

    amount: FieldParser
    date: FieldParser = _record_date
    recipient: FieldParser = _record_recipient
    currency: FieldParser = _record_currency
    recipient_identifies_payee: bool = True

    def _read(self, name: str, parser: FieldParser, record: PaymentRecord) -> str:
        try:
            return parser(record)
        except _FIELD_ERRORS as e:
            logger.warning(f"Could not parse payment {name} {getattr(record, name, None)!r}: {e}")
            return ""

    def __call__(self, record: PaymentRecord) -> ParsedPayment:
        amount = self._read("amount", self.amount, record)
        date = self._read("date", self.date, record)
        recipient = self._read("recipient", self.recipient, record)
        currency = self._read("currency", self.currency, record)
        return ParsedPayment(
            amount=amount,
            parsed_amount=amount != "",
            date=date,
            parsed_date=date != "",
            recipient_id=recipient,
            parsed_recipient_id=self.recipient_identifies_payee and recipient != "",
            currency=currency,
            parsed_currency=currency != "",
        )


# Venmo: amount "- $12.34", date is naive UTC, always USD
def _venmo_amount(record: PaymentRecord) -> str:
    return re.sub(r"[^0-9.]", "", record.amount or "")


def _venmo_subject(record: PaymentRecord) -> str:
    parts = (record.amount or "").split(" ")
    if parts[0] == "-" and len(parts) > 1:
        return f"Sent {parts[1]} to {record.recipient}"
    return ""


# Cash App: amount in cents, no sign to tell sent from received
def _cashapp_amount(record: PaymentRecord) -> str:
    return _cents_to_amount(record.amount)


def _cashapp_subject(record: PaymentRecord) -> str:
    return f"Transfer of ${_cents_to_amount(record.amount)} to {record.recipient}"


# Revolut and Monzo: signed minor units, negative means sent
def _signed_minor_units_amount(record: PaymentRecord) -> str:
    return _cents_to_amount(record.amount, negate=True)


def _revolut_subject(record: PaymentRecord) -> str:
    if int(str(record.amount)) >= 0:
        return ""
    symbol = CURRENCIES[record.currency].currency_symbol if record.currency in CURRENCIES else ""
    return f"Sent {symbol}{_cents_to_amount(record.amount, negate=True)} to {record.recipient}"


def _monzo_subject(record: PaymentRecord) -> str:
    recipient_name = record.metadata.get("recipientName")
    if int(str(record.amount)) >= 0 or not recipient_name:
        return ""
    symbol = CURRENCIES[record.currency].currency_symbol if record.currency in CURRENCIES else ""
    return f"Sent {symbol}{_cents_to_amount(record.amount, negate=True)} to {recipient_name}"


# Wise: amount "1 950 EUR" with localized separators
def _wise_split(record: PaymentRecord) -> tuple[list[str], str]:
    parts = (record.amount or "").split(" ")
    currency = parts.pop() if len(parts) > 1 else (record.currency or "")
    return parts, currency


def _wise_amount(record: PaymentRecord) -> str:
    parts, _ = _wise_split(record)
    return _normalise_localized_amount("".join(parts))


def _wise_currency(record: PaymentRecord) -> str:
    return _wise_split(record)[1]


def _strip_tags(text: str) -> str:
    return re.sub(r"<[^>]*>?", "", text)


def _wise_subject(record: PaymentRecord) -> str:
    return f"Sent {_strip_tags(record.amount or '')} to {_strip_tags(record.recipient or '')}"


# Zelle: bank exports, recipient is a display name that cannot be matched
def _zelle_amount(record: PaymentRecord) -> str:
    return (record.amount or "").replace("$", "").replace(",", "")


def _zelle_date(record: PaymentRecord) -> str:
    date = record.date or ""
    if len(date) == 10:  # "2025-05-04", end of day
        date = f"{date}T23:59:59"
    return _utc_iso(date) if date else ""


def _zelle_subject(record: PaymentRecord) -> str:
    if not record.amount or not record.recipient:
        return ""
    return f"Transfer of ${record.amount} to {record.recipient}"


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationConfig:
    action_type: str
    action_platform: str
    parse_metadata: Callable[[PaymentRecord], ParsedPayment]
    get_subject_text: Callable[[PaymentRecord], str]
    reverse_transaction_history_order: bool = False
    num_payments_fetched: int = 10
    total_proofs: int = 1


@dataclass(frozen=True)
class DepositConfig:
    payee_detail_key: str
    payee_detail_validation_failure_message: str

    def get_deposit_data(self, payee_details: str, telegram_username: str = "") -> dict[str, str]:
        return {self.payee_detail_key: payee_details, "telegramUsername": telegram_username}

    def get_payee_detail(self, data: dict[str, str]) -> str:
        return data.get(self.payee_detail_key, "")


@dataclass(frozen=True)
class PlatformConfig:
    platform_id: str
    platform_name: str
    currencies: tuple[str, ...]
    min_fiat_amount: str
    locale: str
    verification: VerificationConfig
    deposit: DepositConfig


PLATFORMS: dict[str, PlatformConfig] = {
    "venmo": PlatformConfig(
        platform_id="venmo",
        platform_name="Venmo",
        currencies=("USD",),
        min_fiat_amount="0.1",
        locale="en-US",
        verification=VerificationConfig(
            action_type="transfer_venmo",
            action_platform="venmo",
            parse_metadata=MetadataParser(_venmo_amount, currency=_fixed_currency("USD")),
            get_subject_text=_venmo_subject,
        ),
        deposit=DepositConfig(
            payee_detail_key="venmoUsername",
            payee_detail_validation_failure_message="Make sure there are no typos in your username. Do not include the @",
        ),
    ),
    "cashapp": PlatformConfig(
        platform_id="cashapp",
        platform_name="Cash App",
        currencies=("USD",),
        min_fiat_amount="0.1",
        locale="en-US",
        verification=VerificationConfig(
            action_type="transfer_cashapp",
            action_platform="cashapp",
            parse_metadata=MetadataParser(_cashapp_amount),
            get_subject_text=_cashapp_subject,
            num_payments_fetched=15,
        ),
        deposit=DepositConfig(
            payee_detail_key="cashtag",
            payee_detail_validation_failure_message="Make sure there are no typos in your Cashtag. Do not include the $",
        ),
    ),
    "revolut": PlatformConfig(
        platform_id="revolut",
        platform_name="Revolut",
        currencies=("USD", "EUR", "GBP", "SGD", "NZD", "AUD", "CAD", "HKD", "MXN", "CHF", "ZAR", "THB", "TRY", "PLN", "AED", "CNY", "JPY", "IDR", "ILS"),
        min_fiat_amount="0.1",
        locale="en-GB",
        verification=VerificationConfig(
            action_type="transfer_revolut",
            action_platform="revolut",
            parse_metadata=MetadataParser(_signed_minor_units_amount),
            get_subject_text=_revolut_subject,
            num_payments_fetched=20,
        ),
        deposit=DepositConfig(
            payee_detail_key="revolutUsername",
            payee_detail_validation_failure_message="Make sure there are no typos in your Revtag. Do not include the @",
        ),
    ),
    "wise": PlatformConfig(
        platform_id="wise",
        platform_name="Wise",
        currencies=("USD", "CNY", "EUR", "GBP", "AUD", "NZD", "CAD", "AED", "CHF", "ZAR", "SGD", "ILS", "HKD", "JPY", "PLN", "TRY", "IDR", "INR", "THB", "MXN"),
        min_fiat_amount="0.1",
        locale="en-US",
        verification=VerificationConfig(
            action_type="transfer_wise",
            action_platform="wise",
            parse_metadata=MetadataParser(_wise_amount, currency=_wise_currency),
            get_subject_text=_wise_subject,
        ),
        deposit=DepositConfig(
            payee_detail_key="wisetag",
            payee_detail_validation_failure_message="Make sure there are no typos in your Wisetag. Do not include the @",
        ),
    ),
    "monzo": PlatformConfig(
        platform_id="monzo",
        platform_name="Monzo",
        currencies=("GBP",),
        min_fiat_amount="0.1",
        locale="en-GB",
        verification=VerificationConfig(
            action_type="transfer_monzo",
            action_platform="monzo",
            parse_metadata=MetadataParser(_signed_minor_units_amount),
            get_subject_text=_monzo_subject,
            reverse_transaction_history_order=True,
        ),
        deposit=DepositConfig(
            payee_detail_key="monzoMeUsername",
            payee_detail_validation_failure_message="Make sure there are no typos in your Monzo.me username",
        ),
    ),
    "zelle": PlatformConfig(
        platform_id="zelle",
        platform_name="Zelle",
        currencies=("USD",),
        min_fiat_amount="0.1",
        locale="en-US",
        verification=VerificationConfig(
            action_type="transfer_zelle",
            action_platform="zelle",
            parse_metadata=MetadataParser(
                _zelle_amount, date=_zelle_date, currency=_fixed_currency("USD"), recipient_identifies_payee=False
            ),
            get_subject_text=_zelle_subject,
        ),
        deposit=DepositConfig(
            payee_detail_key="zelleEmail",
            payee_detail_validation_failure_message="Make sure there are no typos in your email or phone number",
        ),
    ),
}


def get_platform(platform_id: str) -> PlatformConfig:
    try:
        return PLATFORMS[platform_id]
    except KeyError:
        raise KeyError(f"Unknown payment platform: {platform_id}") from None


def parse_payment(platform: PlatformConfig, record: PaymentRecord) -> ParsedPayment:
    """Run the platform parser; each field it cannot read is reported as unparsed."""
    return platform.verification.parse_metadata(record)


def subject_text(platform: PlatformConfig, record: PaymentRecord) -> str:
    try:
        return platform.verification.get_subject_text(record)
    except (ValueError, TypeError, KeyError):
        return ""


def platform_for_verifier(verifier_address: str, verifier_addresses: dict[str, str]) -> Optional[str]:
    """Map an on-chain verifier address to its platform id."""
    for platform_id, address in verifier_addresses.items():
        if address.lower() == (verifier_address or "").lower():
            return platform_id
    return None
