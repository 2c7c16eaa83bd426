"""Tests for client wiring and the background loops."""

import asyncio

from p2pramp.config import Config
from p2pramp.main import SettlementClient

OWNER = "0x0000000000000000000000000000000000005555"


class FakeEscrow:
    account = object()
    address = OWNER

    async def approve(self, amount):
        return "0xapprove"

    async def create_deposit(self, *args):
        return "0xcreateDeposit"

    async def signal_intent(self, *args):
        return "0xsignalIntent"

    async def wait_for_receipt(self, tx_hash):
        return {"status": 1}


def _make_client(**overrides) -> SettlementClient:
    config = Config(escrow_address="0x0000000000000000000000000000000000007777",
                    usdc_address="0x0000000000000000000000000000000000002222")
    for name, value in overrides.items():
        setattr(config, name, value)
    client = SettlementClient(config)
    client._escrow = FakeEscrow()
    return client


def test_service_uses_configured_decimals_and_buffer():
    client = _make_client(usdc_decimals=18, proof_buffer_seconds=45, verifier_addresses={"venmo": "0x1"})
    service = client.settlement_service(api=object(), quote_service=object())
    assert service.token_decimals == 18
    assert service.proof_buffer_seconds == 45
    assert service.verifier_addresses == {"venmo": "0x1"}
    assert service.store is client.store


def test_quote_pipeline_uses_configured_counts():
    client = _make_client(quotes_to_return=7, quote_debounce_seconds=0.25)
    quote_service = client.quote_service(api=object(), bridge_session=object())
    assert quote_service.quotes_to_return == 7
    assert quote_service.escrow_token.address == client.config.usdc_address
    assert client.quote_fetcher(quote_service).debounce == 0.25


def test_flows_use_configured_limits():
    client = _make_client(
        gating_service_address="0x0000000000000000000000000000000000004444",
        min_deposit_amount=5_000_000,
        approval_settle_seconds=3.0,
        intent_expiration_seconds=3600,
        chain_id=84532,
    )
    deposit = client.deposit_flow(api=object())
    assert deposit.owner == OWNER
    assert deposit.gating_service == "0x0000000000000000000000000000000000004444"
    assert deposit.min_deposit_amount == 5_000_000
    assert deposit.approval_settle_seconds == 3.0

    assert client.signal_intent_flow(api=object()).chain_id == 84532
    assert client.payment_completion(prover=object()).intent_expiration_seconds == 3600


class FlakyService:
    """Fails every refresh with a different unexpected error, then stops the client."""

    def __init__(self, client, errors):
        self.client = client
        self.errors = list(errors)
        self.refreshes = 0
        self.ticks = 0

    async def refresh_intent(self, owner):
        self.refreshes += 1
        error = self.errors.pop(0)
        if not self.errors:
            self.client.running = False
        raise error

    def tick(self):
        self.ticks += 1
        if self.ticks == 3:
            self.client.running = False
        return {}


def test_poll_loop_survives_unexpected_errors():
    client = _make_client(poll_interval_seconds=0)
    service = FlakyService(client, [ValueError("bad hex"), ConnectionError("reset"), KeyError("intentHash")])
    client.running = True
    asyncio.run(client._poll_loop(service))
    assert service.refreshes == 3


def test_expiry_loop_ticks_until_stopped():
    client = _make_client(expiry_check_interval=0)
    service = FlakyService(client, [])
    client.running = True
    asyncio.run(client._expiry_loop(service))
    assert service.ticks == 3
