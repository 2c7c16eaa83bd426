"""Fixed-point fiat/token conversion and local quote aggregation."""

from dataclasses import dataclass
from typing import Any, Optional

from .errors import ValidationError
from .platforms import currency_hash
from .types import DepositView, Quote
from .units import PRECISION, format_units, rate_to_readable, token_units

QUOTES_TO_RETURN_MESSAGE = "quotesToReturn must be a positive integer"


def _check_decimals(token_decimals: int):
    if token_decimals < 0:
        raise ValidationError(f"Invalid token decimals: {token_decimals}", field="tokenDecimals")


def fiat_from_token_amount(token_amount: int, conversion_rate: int, token_decimals: int) -> int:
    """Fiat owed for ``token_amount``, in the token's decimal scale.

    Floors, so the payer is never asked for more fiat than the tokens are worth.
    """
    _check_decimals(token_decimals)
    return token_amount * conversion_rate // PRECISION


def token_from_fiat_amount(fiat_amount: int, conversion_rate: int, token_decimals: int) -> int:
    """Tokens bought by ``fiat_amount`` (token decimal scale) at ``conversion_rate``.

    Floors in the maker's favour: the taker never receives more than the fiat is worth.
    """
    _check_decimals(token_decimals)
    if conversion_rate <= 0:
        raise ValidationError("Conversion rate must be positive", field="conversionRate")
    return fiat_amount * PRECISION // conversion_rate


def validate_quotes_to_return(quotes_to_return: Any):
    """``None`` means "server default"; anything else must be an int >= 1."""
    if quotes_to_return is None:
        return
    if isinstance(quotes_to_return, bool) or not isinstance(quotes_to_return, int) or quotes_to_return < 1:
        raise ValidationError(QUOTES_TO_RETURN_MESSAGE, field="quotesToReturn")


@dataclass
class LocalQuoteRequest:
    """Sizing request for quoting against deposits already read from chain."""

    platform: str
    verifier_address: str
    fiat_currency: str  # ISO code
    amount: str  # human-readable, in fiat when exact-fiat else in tokens
    token_decimals: int = 6
    is_exact_fiat: Optional[bool] = None
    quotes_to_return: Any = None


def _size_quote(view: DepositView, request: LocalQuoteRequest, exact_fiat: bool) -> Optional[Quote]:
    deposit = view.deposit
    if not deposit.accepting_intents:
        return None

    verifier = view.verifier_for(request.verifier_address)
    if verifier is None:
        return None
    fiat_hash = currency_hash(request.fiat_currency)
    rate = verifier.rate_for(fiat_hash)
    if not rate:
        return None

    requested = token_units(request.amount, request.token_decimals)
    if exact_fiat:
        fiat_amount = requested
        token_amount = token_from_fiat_amount(fiat_amount, rate, request.token_decimals)
    else:
        token_amount = requested
        fiat_amount = fiat_from_token_amount(token_amount, rate, request.token_decimals)

    liquidity = max(0, view.available_liquidity)
    amount_range = deposit.intent_amount_range
    if token_amount == 0 or token_amount > liquidity:
        return None
    if token_amount < amount_range.min or token_amount > amount_range.max:
        return None

    return Quote(
        deposit_id=view.deposit_id,
        hashed_onchain_id=verifier.verification_data.payee_details,
        fiat_amount=fiat_amount,
        usdc_amount=token_amount,
        usdc_to_fiat_rate=rate_to_readable(rate),
        output_token_amount=token_amount,
        output_token_decimals=request.token_decimals,
        output_token_formatted=format_units(token_amount, request.token_decimals, 2),
        conversion_rate=rate,
        payment_verifier=verifier.verifier,
        platform=request.platform,
        fiat_currency=fiat_hash,
    )


def aggregate_quotes(deposits: list[DepositView], request: LocalQuoteRequest) -> list[Quote]:
    """Quote ``request`` against every eligible deposit, best rate for the taker first."""
    validate_quotes_to_return(request.quotes_to_return)
    exact_fiat = request.is_exact_fiat is not False

    candidates = []
    for view in deposits:
        quote = _size_quote(view, request, exact_fiat)
        if quote is not None:
            candidates.append((quote, view.available_liquidity))

    # Lowest fiat per token wins; deeper liquidity breaks ties
    candidates.sort(key=lambda c: (c[0].conversion_rate, -c[1], c[0].deposit_id))
    quotes = [quote for quote, _ in candidates]
    if request.quotes_to_return is not None:
        quotes = quotes[: request.quotes_to_return]
    return quotes
