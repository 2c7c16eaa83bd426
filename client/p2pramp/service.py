"""Settlement API (FastAPI)."""

import logging
import time
from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import P2PRampError, ParseError, ValidationError, describe_error, http_status_for
from .lifecycle import deposit_key, intent_key
from .platforms import PLATFORMS, PlatformConfig, get_platform, platform_for_verifier
from .reconciler import PROOF_BUFFER_SECONDS, PaymentReconciler, ReconcileStatus
from .store import StateStore
from .types import IntentView, PaymentRecord, PaymentRecordSet, Quote, QuoteRequest, TokenInfo

logger = logging.getLogger(__name__)


class TokenModel(BaseModel):
    ticker: str
    address: Optional[str] = None
    chain_id: int
    decimals: int
    is_native: bool = False

    def to_token_info(self) -> TokenInfo:
        return TokenInfo(
            ticker=self.ticker,
            address=self.address,
            chain_id=self.chain_id,
            decimals=self.decimals,
            is_native=self.is_native,
        )


class QuotesRequest(BaseModel):
    quote: QuoteRequest
    destination_token: TokenModel


class PaymentRecordModel(BaseModel):
    amount: Optional[str] = None
    date: Optional[str] = None
    currency: Optional[str] = None
    recipient: Optional[str] = None
    payment_id: Optional[str] = None
    metadata: dict[str, Any] = {}

    def to_record(self) -> PaymentRecord:
        return PaymentRecord(
            amount=self.amount,
            date=self.date,
            currency=self.currency,
            recipient=self.recipient,
            payment_id=self.payment_id,
            metadata=dict(self.metadata),
        )


class PaymentsRequest(BaseModel):
    """A captured record set for the intent."""

    expires_at: float
    version: int = 0
    platform: Optional[str] = None
    records: list[PaymentRecordModel]


def _jsonable(value: Any) -> Any:
    # Big integers go out as strings so JavaScript clients keep full precision
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _record_json(record: PaymentRecord) -> dict:
    return asdict(record)


class SettlementService:
    """Read models and payment reconciliation for one account."""

    def __init__(
        self,
        escrow,
        api,
        quote_service,
        store: StateStore,
        verifier_addresses: dict[str, str] | None = None,
        token_decimals: int = 6,
        proof_buffer_seconds: int = PROOF_BUFFER_SECONDS,
    ):
        self.escrow = escrow
        self.api = api
        self.quote_service = quote_service
        self.store = store
        self.verifier_addresses = verifier_addresses or {}
        self.token_decimals = token_decimals
        self.proof_buffer_seconds = proof_buffer_seconds
        self.reconcilers: dict[str, PaymentReconciler] = {}

    async def fetch_quotes(self, request: QuotesRequest) -> list[Quote]:
        return await self.quote_service.fetch_quotes(request.quote, request.destination_token.to_token_info())

    async def refresh_intent(self, owner: str) -> Optional[IntentView]:
        """Re-read the account's open intent; a response to a superseded read is dropped."""
        key = intent_key(owner)
        generation = self.store.begin_request(key)
        view = await self.escrow.get_account_intent(owner)
        self.store.apply(key, view, generation)

        current = self.store.get(key)
        for intent_hash in list(self.reconcilers):
            if current is None or intent_hash.lower() != current.intent_hash.lower():
                logger.info(f"Dropping payment state for closed intent {intent_hash}")
                del self.reconcilers[intent_hash]
        return current

    async def get_deposit(self, deposit_id: int):
        key = deposit_key(deposit_id)
        generation = self.store.begin_request(key)
        views = await self.escrow.get_deposits([deposit_id])
        if not views:
            raise ValidationError(f"Deposit {deposit_id} not found", field="depositId")
        self.store.apply(key, views[0], generation)
        return views[0]

    async def get_intent(self, intent_hash: str) -> IntentView:
        views = await self.escrow.get_intents([intent_hash])
        if not views:
            raise ValidationError(f"Intent {intent_hash} not found", field="intentHash")
        return views[0]

    def _platform_id(self, intent_view: IntentView, requested: Optional[str]) -> str:
        platform_id = platform_for_verifier(intent_view.intent.payment_verifier, self.verifier_addresses)
        platform_id = platform_id or requested
        if platform_id not in PLATFORMS:
            raise ValidationError("Unknown payment platform for intent", field="platform")
        return platform_id

    async def resolve_payee_details(self, intent_view: IntentView, platform: PlatformConfig) -> str:
        """The raw payee id behind the hashed one registered with the intent's verifier."""
        verifier = intent_view.deposit.verifier_for(intent_view.intent.payment_verifier)
        if verifier is None:
            raise ValidationError("Intent verifier is not registered on its deposit", field="paymentVerifier")

        response = await self.api.get_payee_details(platform.platform_id, verifier.verification_data.payee_details)
        payee_details = platform.deposit.get_payee_detail(response.response_object.deposit_data)
        if not payee_details:
            raise ParseError(
                f"Payee details for {platform.platform_id} are missing {platform.deposit.payee_detail_key}",
                field="depositData",
            )
        return payee_details

    async def reconcile(self, intent_hash: str, request: PaymentsRequest) -> dict:
        try:
            intent_view = await self.get_intent(intent_hash)
        except ValidationError:
            self.reconcilers.pop(intent_hash, None)
            raise
        platform = get_platform(self._platform_id(intent_view, request.platform))

        reconciler = self.reconcilers.get(intent_hash)
        if reconciler is None or reconciler.platform is not platform:
            payee_details = await self.resolve_payee_details(intent_view, platform)
            reconciler = PaymentReconciler(
                platform,
                payee_details,
                token_decimals=self.token_decimals,
                buffer_seconds=self.proof_buffer_seconds,
            )
            self.reconcilers[intent_hash] = reconciler

        record_set = PaymentRecordSet(
            platform=platform.platform_id,
            records=[r.to_record() for r in request.records],
            expires_at=request.expires_at,
            version=request.version,
        )
        result = reconciler.load(record_set, intent_view)
        return {
            "status": reconciler.status.value,
            "required_fiat_amount": str(reconciler.required_fiat_amount(intent_view)),
            "records": [_record_json(r) for r in result.records],
            "valid_count": len(result.valid),
            "selected": _record_json(result.selected) if result.selected else None,
            "auto_selected": result.auto_selected,
            "can_generate_proof": reconciler.can_generate_proof(),
        }

    def tick(self, now: Optional[float] = None) -> dict[str, ReconcileStatus]:
        """Expire record sets that ran past their proof deadline."""
        return {intent_hash: reconciler.tick(now) for intent_hash, reconciler in self.reconcilers.items()}


def create_app(service: SettlementService, config=None) -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(title="p2pramp settlement client", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(P2PRampError)
    async def handle_error(request: Request, error: P2PRampError):
        description = describe_error(error)
        return JSONResponse(
            status_code=http_status_for(error),
            content={
                "error": description.message,
                "code": error.code.value,
                "kind": error.kind.value,
                "action": description.action,
            },
        )

    @app.post("/quotes")
    async def get_quotes(request: QuotesRequest):
        quotes = await service.fetch_quotes(request)
        return [_jsonable(asdict(q)) for q in quotes]

    @app.get("/deposits/{deposit_id}")
    async def get_deposit(deposit_id: int):
        return _jsonable(asdict(await service.get_deposit(deposit_id)))

    @app.get("/intents/{intent_hash}")
    async def get_intent(intent_hash: str):
        return _jsonable(asdict(await service.get_intent(intent_hash)))

    @app.post("/intents/{intent_hash}/payments")
    async def reconcile_payments(intent_hash: str, request: PaymentsRequest):
        return await service.reconcile(intent_hash, request)

    @app.get("/config")
    def get_config():
        if config is None:
            return {"error": "Config not available"}
        return {
            "chain_id": config.chain_id,
            "escrow_address": config.escrow_address,
            "usdc_address": config.usdc_address,
            "api_base_url": config.api_base_url,
            "verifier_addresses": config.verifier_addresses,
            "server_time": int(time.time()),
        }

    return app
