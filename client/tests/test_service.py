"""Tests for the settlement HTTP API."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from p2pramp.errors import ValidationError
from p2pramp.lifecycle import intent_key
from p2pramp.platforms import currency_hash
from p2pramp.reconciler import ReconcileStatus
from p2pramp.service import SettlementService, create_app
from p2pramp.store import StateStore
from p2pramp.types import (
    CurrencyRate,
    Deposit,
    DepositView,
    GetPayeeDetailsResponse,
    Intent,
    IntentView,
    Quote,
    Range,
    VerificationData,
    Verifier,
)

OWNER = "0x0000000000000000000000000000000000005555"
VENMO_VERIFIER = "0x0000000000000000000000000000000000003333"
GATE = "0x0000000000000000000000000000000000004444"
HASHED_PAYEE = "0xpayee"
INTENT_TIME = 1_735_689_600


def _make_deposit_view(deposit_id=1):
    deposit = Deposit(
        depositor="0x0000000000000000000000000000000000001111",
        deposit_amount=2**200,
        remaining_deposit_amount=1_000 * 10**6,
        outstanding_intent_amount=95_238_095,
        intent_hashes=["0xintent"],
        intent_amount_range=Range(10**6, 500 * 10**6),
        token="0x0000000000000000000000000000000000002222",
        accepting_intents=True,
    )
    verifier = Verifier(
        verifier=VENMO_VERIFIER,
        verification_data=VerificationData(intent_gating_service=GATE, payee_details=HASHED_PAYEE, data="0x"),
        currencies=[CurrencyRate(code=currency_hash("USD"), conversion_rate=1_050_000_000_000_000_000)],
    )
    return DepositView(deposit=deposit, available_liquidity=deposit.available_liquidity,
                       deposit_id=deposit_id, verifiers=[verifier])


def _make_intent_view():
    intent = Intent(
        owner=OWNER,
        to="0x0000000000000000000000000000000000006666",
        deposit_id=1,
        amount=95_238_095,
        timestamp=INTENT_TIME,
        payment_verifier=VENMO_VERIFIER,
        fiat_currency=currency_hash("USD"),
        conversion_rate=1_050_000_000_000_000_000,
    )
    return IntentView(intent=intent, deposit=_make_deposit_view(), intent_hash="0xintent")


class FakeEscrow:
    def __init__(self):
        self.deposits = {1: _make_deposit_view()}
        self.intents = {"0xintent": _make_intent_view()}

    async def get_deposits(self, ids):
        return [self.deposits[i] for i in ids if i in self.deposits]

    async def get_intents(self, hashes):
        return [self.intents[h] for h in hashes if h in self.intents]

    async def get_account_intent(self, owner):
        return self.intents.get("0xintent")


class FakeMakerAPI:
    def __init__(self, deposit_data=None):
        self.deposit_data = {"venmoUsername": "alice-venmo"} if deposit_data is None else deposit_data
        self.lookups = []

    async def get_payee_details(self, platform, hashed_onchain_id):
        self.lookups.append((platform, hashed_onchain_id))
        return GetPayeeDetailsResponse(
            success=True,
            responseObject={
                "processorName": platform,
                "depositData": self.deposit_data,
                "hashedOnchainId": hashed_onchain_id,
            },
        )


class FakeQuoteService:
    def __init__(self, quotes=None):
        self.quotes = quotes or []

    async def fetch_quotes(self, request, token):
        if not self.quotes:
            raise ValidationError("No quotes available", field="amount")
        return self.quotes


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def api():
    return FakeMakerAPI()


@pytest.fixture
def client(store, api):
    quote = Quote(
        deposit_id=1,
        hashed_onchain_id="0xpayee",
        fiat_amount=100_000_000,
        usdc_amount=95_238_095,
        usdc_to_fiat_rate="1.0500",
        platform="venmo",
    )
    service = SettlementService(FakeEscrow(), api, FakeQuoteService([quote]), store, {"venmo": VENMO_VERIFIER})
    return TestClient(create_app(service))


def _payments(records, version=1, **kwargs):
    body = {
        "expires_at": time.time() + 3600,
        "version": version,
        "records": records,
    }
    body.update(kwargs)
    return body


def test_deposit_amounts_are_strings(client):
    response = client.get("/deposits/1")
    assert response.status_code == 200
    body = response.json()
    assert body["deposit_id"] == "1"
    assert body["deposit"]["deposit_amount"] == str(2**200)
    assert body["deposit"]["accepting_intents"] is True
    assert body["available_liquidity"] == str(1_000 * 10**6 - 95_238_095)


def test_unknown_deposit_maps_to_400(client):
    response = client.get("/deposits/99")
    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation"
    assert body["code"] == "VALIDATION_ERROR"
    assert body["error"] == "Deposit 99 not found"


def test_quotes(client):
    response = client.post("/quotes", json={
        "quote": {
            "paymentPlatforms": ["venmo"],
            "fiatCurrency": "USD",
            "user": OWNER,
            "recipient": OWNER,
            "destinationChainId": 8453,
            "destinationToken": "0x0000000000000000000000000000000000002222",
            "amount": "100",
        },
        "destination_token": {"ticker": "USDC", "address": "0x0000000000000000000000000000000000002222",
                              "chain_id": 8453, "decimals": 6},
    })
    assert response.status_code == 200
    quotes = response.json()
    assert quotes[0]["usdc_amount"] == "95238095"
    assert quotes[0]["usdc_to_fiat_rate"] == "1.0500"


def test_single_valid_payment_auto_selected(client):
    records = [
        {"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo", "payment_id": "a"},
        {"amount": "- $10.00", "date": "2025-01-02T11:00:00", "recipient": "alice-venmo", "payment_id": "b"},
    ]
    first = client.post("/intents/0xintent/payments", json=_payments(records)).json()
    assert first["status"] == "auto_selected"
    assert first["auto_selected"] is True
    assert first["selected"]["payment_id"] == "a"
    assert first["required_fiat_amount"] == "99999999"
    assert first["valid_count"] == 1
    assert first["can_generate_proof"] is True

    again = client.post("/intents/0xintent/payments", json=_payments(records)).json()
    assert again["auto_selected"] is False
    assert again["selected"]["payment_id"] == "a"


def test_expired_payments(client):
    records = [{"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo"}]
    body = client.post("/intents/0xintent/payments", json=_payments(records, expires_at=time.time() + 10)).json()
    assert body["status"] == "payments_expired"
    assert body["can_generate_proof"] is False


def test_unknown_intent(client):
    response = client.post("/intents/0xmissing/payments", json=_payments([]))
    assert response.status_code == 400


def test_refresh_intent_writes_store(store):
    service = SettlementService(FakeEscrow(), FakeMakerAPI(), FakeQuoteService(), store)
    view = asyncio.run(service.refresh_intent(OWNER))
    assert view.intent_hash == "0xintent"
    assert store.get(intent_key(OWNER)) is view


def test_config_unavailable(client):
    assert client.get("/config").json() == {"error": "Config not available"}


def test_payee_resolved_from_deposit_verifier(client, api):
    records = [{"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo"}]
    client.post("/intents/0xintent/payments", json=_payments(records))
    client.post("/intents/0xintent/payments", json=_payments(records, version=2))
    # looked up once per intent
    assert api.lookups == [("venmo", HASHED_PAYEE)]


def test_payment_to_other_payee_not_valid(store):
    api = FakeMakerAPI({"venmoUsername": "bob-venmo"})
    service = SettlementService(FakeEscrow(), api, FakeQuoteService(), store, {"venmo": VENMO_VERIFIER})
    records = [{"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo"}]
    body = TestClient(create_app(service)).post("/intents/0xintent/payments", json=_payments(records)).json()
    assert body["valid_count"] == 0
    assert body["selected"] is None


def test_missing_payee_key_is_parse_error(store):
    service = SettlementService(FakeEscrow(), FakeMakerAPI({}), FakeQuoteService(), store, {"venmo": VENMO_VERIFIER})
    response = TestClient(create_app(service)).post("/intents/0xintent/payments", json=_payments([]))
    assert response.status_code == 502
    assert response.json()["kind"] == "parse"


def test_closed_intent_state_dropped(store):
    escrow = FakeEscrow()
    service = SettlementService(escrow, FakeMakerAPI(), FakeQuoteService(), store, {"venmo": VENMO_VERIFIER})
    client = TestClient(create_app(service))
    records = [{"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo"}]
    client.post("/intents/0xintent/payments", json=_payments(records))
    assert set(service.reconcilers) == {"0xintent"}

    asyncio.run(service.refresh_intent(OWNER))
    assert set(service.reconcilers) == {"0xintent"}

    escrow.intents.clear()
    asyncio.run(service.refresh_intent(OWNER))
    assert service.reconcilers == {}


def test_reconciler_dropped_when_intent_gone(store):
    escrow = FakeEscrow()
    service = SettlementService(escrow, FakeMakerAPI(), FakeQuoteService(), store, {"venmo": VENMO_VERIFIER})
    client = TestClient(create_app(service))
    client.post("/intents/0xintent/payments", json=_payments([]))
    assert "0xintent" in service.reconcilers

    escrow.intents.clear()
    assert client.post("/intents/0xintent/payments", json=_payments([])).status_code == 400
    assert service.reconcilers == {}


def test_tick_expires_loaded_sets(store):
    service = SettlementService(FakeEscrow(), FakeMakerAPI(), FakeQuoteService(), store,
                                {"venmo": VENMO_VERIFIER}, proof_buffer_seconds=60)
    client = TestClient(create_app(service))
    records = [{"amount": "- $100.00", "date": "2025-01-02T10:00:00", "recipient": "alice-venmo"}]
    expires_at = time.time() + 100
    body = client.post("/intents/0xintent/payments", json=_payments(records, expires_at=expires_at)).json()
    assert body["status"] == "auto_selected"

    assert service.tick(now=expires_at - 61) == {"0xintent": ReconcileStatus.AUTO_SELECTED}
    assert service.tick(now=expires_at - 60) == {"0xintent": ReconcileStatus.PAYMENTS_EXPIRED}
