"""
API Client - curator backend communication

Every call goes through ``with_retry``: transport failures and rate limits are
retried, everything else surfaces immediately.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import aiohttp
import pydantic

from .conversion import validate_quotes_to_return
from .errors import APIError, ErrorCode, NetworkError, ParseError, parse_api_error
from .types import (
    GetPayeeDetailsResponse,
    IntentSignalRequest,
    PostDepositDetailsRequest,
    PostDepositDetailsResponse,
    QuoteRequest,
    QuoteResponse,
    SignalIntentResponse,
    ValidatePayeeDetailsResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=pydantic.BaseModel)


def is_retryable(error: Exception) -> bool:
    if isinstance(error, NetworkError):
        return True
    return isinstance(error, APIError) and error.code == ErrorCode.RATE_LIMIT


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``fn`` up to ``max_retries`` times.

    Network errors wait a fixed ``delay``; rate limits back off
    exponentially (``delay * 2**attempt``).
    """
    for attempt in range(max_retries):
        try:
            return await fn()
        except (NetworkError, APIError) as e:
            if not is_retryable(e) or attempt == max_retries - 1:
                raise
            wait = delay * 2**attempt if isinstance(e, APIError) else delay
            logger.warning(f"Retrying after {e.code.value} (attempt {attempt + 1}/{max_retries}, wait {wait}s)")
            await sleep(wait)

    raise ValueError("max_retries must be at least 1")


class APIClient:
    """
    Curator backend client

    Handles:
    - quote requests (exact fiat / exact token)
    - signed intent requests for the gating service
    - posting and reading hashed payee details
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session
        self._sleep = sleep

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        """Initialize HTTP session"""
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
        logger.info("API client connected")

    async def close(self):
        """Close HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("API client closed")

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authenticated:
            headers["x-api-key"] = self.api_key
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Dict[str, Any]:
        """Make one HTTP request, classifying failures for the retry policy."""
        if self.session is None:
            await self.connect()

        url = f"{self.base_url}{endpoint}"

        async def attempt() -> Dict[str, Any]:
            try:
                async with self.session.request(
                    method,
                    url,
                    json=data,
                    params=params,
                    headers=self._headers(authenticated),
                ) as resp:
                    if not 200 <= resp.status < 300:
                        text = await resp.text()
                        raise parse_api_error(resp.status, resp.reason, text, url)
                    return await resp.json()
            except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
                raise ParseError(f"Invalid JSON from {endpoint}: {e}", field="body") from e
            except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    "Failed to connect to API server",
                    details={"endpoint": endpoint, "error": str(e)},
                ) from e

        return await with_retry(attempt, self.max_retries, self.retry_delay, self._sleep)

    @staticmethod
    def _parse(model: Type[M], data: Any, endpoint: str) -> M:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise ParseError(f"Unexpected response from {endpoint}: {e.error_count()} invalid field(s)", field="body") from e

    # =======================
    # Endpoints
    # =======================

    async def get_quote(self, request: QuoteRequest) -> QuoteResponse:
        """POST /quote/exact-fiat or /quote/exact-token."""
        validate_quotes_to_return(request.quotes_to_return)

        is_exact_fiat = request.is_exact_fiat is not False
        endpoint = f"/quote/{'exact-fiat' if is_exact_fiat else 'exact-token'}"

        body = request.model_dump(
            by_alias=True,
            exclude={"amount", "is_exact_fiat", "quotes_to_return"},
            exclude_none=True,
        )
        body["exactFiatAmount" if is_exact_fiat else "exactTokenAmount"] = request.amount

        params = {"quotesToReturn": request.quotes_to_return} if request.quotes_to_return else None
        data = await self._request("POST", endpoint, data=body, params=params, authenticated=False)
        return self._parse(QuoteResponse, data, endpoint)

    async def signal_intent(self, request: IntentSignalRequest) -> SignalIntentResponse:
        """POST /verify/intent - returns the gating service signature."""
        data = await self._request("POST", "/verify/intent", data=request.model_dump(by_alias=True))
        return self._parse(SignalIntentResponse, data, "/verify/intent")

    async def post_deposit_details(self, request: PostDepositDetailsRequest) -> PostDepositDetailsResponse:
        """POST /makers/create - stores raw payee details, returns their hashed onchain id."""
        data = await self._request("POST", "/makers/create", data=request.model_dump(by_alias=True))
        return self._parse(PostDepositDetailsResponse, data, "/makers/create")

    async def get_payee_details(self, platform: str, hashed_onchain_id: str) -> GetPayeeDetailsResponse:
        """GET /makers/{platform}/{hashedOnchainId}."""
        data = await self._request("GET", f"/makers/{platform}/{hashed_onchain_id}")
        return self._parse(GetPayeeDetailsResponse, data, f"/makers/{platform}")

    async def validate_payee_details(self, platform: str, deposit_data: Dict[str, str]) -> ValidatePayeeDetailsResponse:
        """POST /makers/validate - checks the payee details exist on the platform."""
        data = await self._request(
            "POST",
            "/makers/validate",
            data={"processorName": platform, "depositData": deposit_data},
        )
        return self._parse(ValidatePayeeDetailsResponse, data, "/makers/validate")
