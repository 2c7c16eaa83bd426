"""Backend quote pipeline with cross-chain / cross-token resolution."""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp

from .errors import NetworkError, ParseError, ValidationError, parse_api_error
from .platforms import CURRENCIES
from .types import Quote, QuoteRequest, RawQuote, TokenInfo
from .units import format_units, rate_to_readable, token_units

logger = logging.getLogger(__name__)

QUOTE_DEFAULT_ADDRESS = "0x1234567890123456789012345678901234567890"
NO_ROUTES = "No routes found"


@dataclass(frozen=True)
class BridgePriceRequest:
    user: str
    recipient: str
    origin_chain_id: int
    destination_chain_id: int
    origin_currency: str
    destination_currency: str
    amount: str
    trade_type: str = "EXACT_INPUT"


@dataclass(frozen=True)
class BridgePrice:
    amount_out: int
    amount_formatted: str = ""
    amount_usd: Optional[str] = None
    fees_usd: dict[str, Any] = field(default_factory=dict)  # gas, app, relayer, relayerGas, relayerService
    rate: Optional[str] = None
    time_estimate: Optional[int] = None


class BridgePriceProvider(Protocol):
    """Relay/Bungee style price source. Returns None when it has no route."""

    async def get_price(self, request: BridgePriceRequest) -> Optional[BridgePrice]: ...


class RelayBridge:
    """Bridge prices from the Relay quote API."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str = "https://api.relay.link"):
        self.session = session
        self.base_url = base_url.rstrip("/")

    async def get_price(self, request: BridgePriceRequest) -> Optional[BridgePrice]:
        body = {
            "user": request.user,
            "recipient": request.recipient,
            "originChainId": request.origin_chain_id,
            "destinationChainId": request.destination_chain_id,
            "originCurrency": request.origin_currency,
            "destinationCurrency": request.destination_currency,
            "amount": request.amount,
            "tradeType": request.trade_type,
        }
        try:
            async with self.session.post(f"{self.base_url}/quote", json=body) as resp:
                if not 200 <= resp.status < 300:
                    raise parse_api_error(resp.status, resp.reason, await resp.text(), str(resp.url))
                data = await resp.json()
        except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
            raise ParseError(f"Invalid JSON from bridge: {e}", field="body") from e
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
            raise NetworkError("Failed to reach bridge", details={"error": str(e)}) from e

        details = data.get("details") or {}
        currency_out = details.get("currencyOut") or {}
        if not currency_out.get("amount"):
            return None

        fees = data.get("fees") or {}
        return BridgePrice(
            amount_out=int(currency_out["amount"]),
            amount_formatted=currency_out.get("amountFormatted", ""),
            amount_usd=currency_out.get("amountUsd"),
            fees_usd={name: (fee or {}).get("amountUsd") for name, fee in fees.items()},
            rate=details.get("rate"),
            time_estimate=details.get("timeEstimate"),
        )


def _usd(value: Any, places: int) -> Optional[str]:
    # Display only
    if value is None:
        return None
    return f"{float(value):.{places}f}"


def has_bridge_address(token: TokenInfo) -> bool:
    """A payout asset is bridgeable iff its address is set; the zero address marks native assets."""
    return token.address is not None and token.address != ""


def is_escrow_asset(token: TokenInfo, escrow_token: TokenInfo) -> bool:
    return (
        token.chain_id == escrow_token.chain_id
        and (token.address or "").lower() == (escrow_token.address or "").lower()
    )


async def resolve_cross_asset_quote(
    quote: Quote,
    destination_token: TokenInfo,
    escrow_token: TokenInfo,
    bridge: BridgePriceProvider,
    user: Optional[str] = None,
    recipient: Optional[str] = None,
) -> Optional[Quote]:
    """Fill a quote's output side for ``destination_token``.

    Returns None when the asset cannot be priced (missing address, no
    route, bridge failure).
    """
    if is_escrow_asset(destination_token, escrow_token):
        return replace(
            quote,
            output_token_amount=quote.usdc_amount,
            output_token_decimals=escrow_token.decimals,
            output_token_formatted=format_units(quote.usdc_amount, escrow_token.decimals, 2),
            output_token_amount_in_usd=format_units(quote.usdc_amount, escrow_token.decimals, 2),
        )

    if not has_bridge_address(destination_token):
        logger.error(f"Invalid token address for {destination_token.ticker}")
        return None

    request = BridgePriceRequest(
        user=user or QUOTE_DEFAULT_ADDRESS,
        recipient=recipient or QUOTE_DEFAULT_ADDRESS,
        origin_chain_id=escrow_token.chain_id,
        destination_chain_id=destination_token.chain_id,
        origin_currency=escrow_token.address,
        destination_currency=destination_token.address,
        amount=str(quote.usdc_amount),
    )

    try:
        price = await bridge.get_price(request)
    except Exception as e:
        # No route is an everyday answer for exotic pairs, not an error
        if NO_ROUTES not in str(e):
            logger.error(f"Bridge price lookup failed for {destination_token.ticker}: {e}")
        return None

    if price is None:
        return None

    fees = price.fees_usd
    return replace(
        quote,
        output_token_amount=price.amount_out,
        output_token_decimals=destination_token.decimals,
        output_token_formatted=price.amount_formatted or format_units(price.amount_out, destination_token.decimals, 6),
        output_token_amount_in_usd=_usd(price.amount_usd, 2),
        gas_fees_in_usd=_usd(fees.get("gas"), 4),
        app_fee_in_usd=_usd(fees.get("app"), 4),
        relayer_fee_in_usd=_usd(fees.get("relayer"), 4),
        relayer_gas_fees_in_usd=_usd(fees.get("relayerGas"), 4),
        relayer_service_fees_in_usd=_usd(fees.get("relayerService"), 4),
        usdc_to_token_rate=price.rate,
        time_estimate=str(price.time_estimate) if price.time_estimate is not None else None,
    )


class QuoteService:
    """Fetches quotes from the backend and prices them in the requested payout asset."""

    def __init__(
        self,
        api,
        bridge: BridgePriceProvider,
        escrow_token: TokenInfo,
        quotes_to_return: Optional[int] = None,
    ):
        self.api = api
        self.bridge = bridge
        self.escrow_token = escrow_token
        self.quotes_to_return = quotes_to_return

    def _to_quote(self, raw: RawQuote, request: QuoteRequest) -> Quote:
        decimals = self.escrow_token.decimals
        if request.is_exact_fiat is not False:
            fiat_amount = token_units(request.amount, decimals)
        else:
            fiat_amount = int(raw.fiat_amount or 0)
        rate = int(raw.conversion_rate)
        currency = CURRENCIES.get(request.fiat_currency)
        return Quote(
            deposit_id=int(raw.intent.deposit_id),
            hashed_onchain_id=raw.intent.payee_details,
            fiat_amount=fiat_amount,
            usdc_amount=int(raw.token_amount),
            usdc_to_fiat_rate=rate_to_readable(rate),
            conversion_rate=rate,
            platform=raw.intent.processor_name or raw.payment_method,
            fiat_currency=currency.currency_code_hash if currency else "",
        )

    async def fetch_quotes(self, request: QuoteRequest, destination_token: TokenInfo) -> list[Quote]:
        """Quotes that could be priced, in backend order (best first)."""
        if request.quotes_to_return is None and self.quotes_to_return is not None:
            request = request.model_copy(update={"quotes_to_return": self.quotes_to_return})
        response = await self.api.get_quote(request)
        raw_quotes = response.response_object.quotes
        if not raw_quotes:
            raise ValidationError("No quotes available", field="amount")

        results = await asyncio.gather(
            *(
                resolve_cross_asset_quote(
                    self._to_quote(raw, request),
                    destination_token,
                    self.escrow_token,
                    self.bridge,
                    user=request.user,
                    recipient=request.recipient,
                )
                for raw in raw_quotes
            ),
            return_exceptions=True,
        )

        quotes = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Error processing quote: {result}")
            elif result is not None:
                quotes.append(result)

        if not quotes:
            raise ValidationError("No quotes available", field="amount")
        return quotes


class QuoteFetcher:
    """Debounced quote fetching where newer input supersedes older requests.

    A request still waiting out its debounce is cancelled by the next one; a
    response that arrives after a newer request started is discarded.
    """

    def __init__(
        self,
        service: QuoteService,
        debounce: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.service = service
        self.debounce = debounce
        self._sleep = sleep
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    async def _run(self, generation: int, request: QuoteRequest, destination_token: TokenInfo):
        await self._sleep(self.debounce)
        if generation != self._generation:
            return None
        quotes = await self.service.fetch_quotes(request, destination_token)
        if generation != self._generation:
            logger.debug(f"Discarding quotes for superseded request {generation}")
            return None
        return quotes

    async def request(self, request: QuoteRequest, destination_token: TokenInfo) -> Optional[list[Quote]]:
        """Returns the quotes, or None if a newer request superseded this one."""
        self._generation += 1
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

        task = asyncio.ensure_future(self._run(self._generation, request, destination_token))
        self._pending = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise
