"""Escrow structs, quotes and backend wire models."""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Range:
    min: int
    max: int


@dataclass(frozen=True)
class Deposit:
    """Maker deposit matching the escrow's Deposit struct."""

    depositor: str  # address
    deposit_amount: int
    remaining_deposit_amount: int
    outstanding_intent_amount: int
    intent_hashes: list[str]
    intent_amount_range: Range
    token: str  # address
    accepting_intents: bool

    @property
    def available_liquidity(self) -> int:
        return max(0, self.remaining_deposit_amount - self.outstanding_intent_amount)


@dataclass(frozen=True)
class VerificationData:
    intent_gating_service: str  # address
    payee_details: str  # hashed onchain id
    data: str


@dataclass(frozen=True)
class CurrencyRate:
    code: str  # keccak256 of the currency code
    conversion_rate: int  # fiat per token, 18 decimals


@dataclass(frozen=True)
class Verifier:
    """A payment platform attached to a deposit."""

    verifier: str  # address
    verification_data: VerificationData
    currencies: list[CurrencyRate]

    def rate_for(self, currency_hash: str) -> Optional[int]:
        for currency in self.currencies:
            if currency.code.lower() == currency_hash.lower():
                return currency.conversion_rate
        return None


@dataclass(frozen=True)
class DepositView:
    deposit: Deposit
    available_liquidity: int
    deposit_id: int
    verifiers: list[Verifier]

    def verifier_for(self, verifier_address: str) -> Optional[Verifier]:
        for verifier in self.verifiers:
            if verifier.verifier.lower() == verifier_address.lower():
                return verifier
        return None


@dataclass(frozen=True)
class Intent:
    """Taker intent matching the escrow's Intent struct."""

    owner: str  # address
    to: str  # address
    deposit_id: int
    amount: int
    timestamp: int  # seconds
    payment_verifier: str  # address
    fiat_currency: str  # keccak256 of the currency code
    conversion_rate: int


@dataclass(frozen=True)
class IntentView:
    intent: Intent
    deposit: DepositView
    intent_hash: str


@dataclass(frozen=True)
class TokenInfo:
    """Payout asset a taker can receive."""

    ticker: str
    address: Optional[str]  # ZERO_ADDRESS for native assets, None when unknown
    chain_id: int
    decimals: int
    is_native: bool = False


@dataclass
class Quote:
    """Ephemeral quote; re-derive whenever the source deposit or rate changes."""

    deposit_id: int
    hashed_onchain_id: str
    fiat_amount: int
    usdc_amount: int
    usdc_to_fiat_rate: str
    output_token_amount: int = 0
    output_token_decimals: int = 6
    output_token_formatted: str = ""
    conversion_rate: int = 0
    payment_verifier: str = ""
    platform: str = ""
    fiat_currency: str = ""

    # Bridge-specific
    output_token_amount_in_usd: Optional[str] = None
    gas_fees_in_usd: Optional[str] = None
    app_fee_in_usd: Optional[str] = None
    relayer_fee_in_usd: Optional[str] = None
    relayer_gas_fees_in_usd: Optional[str] = None
    relayer_service_fees_in_usd: Optional[str] = None
    usdc_to_token_rate: Optional[str] = None
    time_estimate: Optional[str] = None


@dataclass(frozen=True)
class PaymentRecord:
    """Payment captured by the browser extension or mobile SDK."""

    amount: Optional[str] = None
    date: Optional[str] = None
    currency: Optional[str] = None
    recipient: Optional[str] = None
    payment_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentRecordSet:
    """One batch of captured payments for a platform."""

    platform: str
    records: list[PaymentRecord]
    expires_at: float  # unix seconds
    version: int = 0


@dataclass(frozen=True)
class ParsedPayment:
    amount: str = ""
    parsed_amount: bool = False
    date: str = ""
    parsed_date: bool = False
    recipient_id: str = ""
    parsed_recipient_id: bool = False
    currency: str = ""
    parsed_currency: bool = False


# ---------------------------------------------------------------------------
# Backend wire models
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuoteRequest(_WireModel):
    """Quote request as callers build it; ``amount`` is sent as exactFiatAmount or exactTokenAmount."""

    payment_platforms: list[str] = Field(alias="paymentPlatforms")
    fiat_currency: str = Field(alias="fiatCurrency")
    user: str
    recipient: str
    destination_chain_id: int = Field(alias="destinationChainId")
    destination_token: str = Field(alias="destinationToken")
    amount: str
    is_exact_fiat: Optional[bool] = Field(default=None, alias="isExactFiat")
    quotes_to_return: Optional[Any] = Field(default=None, alias="quotesToReturn")
    referrer: Optional[str] = None


class QuoteIntent(_WireModel):
    deposit_id: str = Field(alias="depositId")
    processor_name: str = Field(default="", alias="processorName")
    amount: str = ""
    to_address: str = Field(default="", alias="toAddress")
    payee_details: str = Field(default="", alias="payeeDetails")
    processor_intent_data: dict[str, Any] = Field(default_factory=dict, alias="processorIntentData")
    fiat_currency_code: str = Field(default="", alias="fiatCurrencyCode")
    chain_id: str = Field(default="", alias="chainId")


class RawQuote(_WireModel):
    fiat_amount: str = Field(default="0", alias="fiatAmount")
    fiat_amount_formatted: str = Field(default="", alias="fiatAmountFormatted")
    token_amount: str = Field(alias="tokenAmount")
    token_amount_formatted: str = Field(default="", alias="tokenAmountFormatted")
    payment_method: str = Field(default="", alias="paymentMethod")
    payee_address: str = Field(default="", alias="payeeAddress")
    conversion_rate: str = Field(alias="conversionRate")
    intent: QuoteIntent


class QuoteResponseObject(_WireModel):
    fiat: dict[str, Any] = Field(default_factory=dict)
    token: dict[str, Any] = Field(default_factory=dict)
    quotes: list[RawQuote] = Field(default_factory=list)
    fees: dict[str, Any] = Field(default_factory=dict)


class QuoteResponse(_WireModel):
    success: bool
    message: str = ""
    response_object: QuoteResponseObject = Field(alias="responseObject")
    status_code: int = Field(default=200, alias="statusCode")


class IntentSignalRequest(_WireModel):
    processor_name: str = Field(alias="processorName")
    deposit_id: str = Field(alias="depositId")
    token_amount: str = Field(alias="tokenAmount")
    payee_details: str = Field(alias="payeeDetails")
    to_address: str = Field(alias="toAddress")
    fiat_currency_code: str = Field(alias="fiatCurrencyCode")
    chain_id: str = Field(alias="chainId")


class SignedIntent(_WireModel):
    deposit_id: str = Field(alias="depositId")
    token_amount: str = Field(alias="tokenAmount")
    recipient_address: str = Field(alias="recipientAddress")
    verifier_address: str = Field(alias="verifierAddress")
    currency_code_hash: str = Field(alias="currencyCodeHash")
    gating_service_signature: str = Field(alias="gatingServiceSignature")


class SignalIntentResponse(_WireModel):
    success: bool
    message: str = ""
    response_object: SignedIntent = Field(alias="responseObject")
    status_code: int = Field(default=200, alias="statusCode")


class PostDepositDetailsRequest(_WireModel):
    deposit_data: dict[str, str] = Field(alias="depositData")
    processor_name: str = Field(alias="processorName")


class DepositDetails(_WireModel):
    id: Optional[int] = None
    processor_name: str = Field(default="", alias="processorName")
    deposit_data: dict[str, str] = Field(default_factory=dict, alias="depositData")
    hashed_onchain_id: str = Field(alias="hashedOnchainId")


class PostDepositDetailsResponse(_WireModel):
    success: bool
    message: str = ""
    response_object: DepositDetails = Field(alias="responseObject")
    status_code: int = Field(default=200, alias="statusCode")


class GetPayeeDetailsResponse(PostDepositDetailsResponse):
    pass


class ValidatePayeeDetailsResponse(_WireModel):
    success: bool
    message: str = ""
    response_object: dict[str, Any] = Field(default_factory=dict, alias="responseObject")
    status_code: int = Field(default=200, alias="statusCode")

    @property
    def is_valid(self) -> bool:
        return bool(self.response_object.get("isValid", self.success))
