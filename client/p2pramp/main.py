"""Main orchestrator: serve the settlement API and keep the account's read models fresh."""

import asyncio
import logging

import aiohttp
import uvicorn
from web3 import Web3

from .api import APIClient
from .config import Config
from .errors import P2PRampError
from .escrow import EscrowClient
from .lifecycle import DepositCreationFlow, PaymentCompletion, Prover, SignalIntentFlow, intent_key
from .quotes import QuoteFetcher, QuoteService, RelayBridge
from .service import SettlementService, create_app
from .store import StateStore
from .types import TokenInfo
from .units import format_units

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


class SettlementClient:
    """Main client orchestrator."""

    def __init__(self, config: Config):
        self.config = config
        self.store = StateStore()
        self.running = False

        # Web3 connection (lazy)
        self._w3 = None
        self._escrow = None

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.config.rpc_url))
        return self._w3

    @property
    def escrow(self) -> EscrowClient:
        if self._escrow is None:
            self._escrow = EscrowClient(
                self.w3,
                self.config.escrow_address,
                self.config.usdc_address,
                self.config.private_key,
            )
        return self._escrow

    @property
    def escrow_token(self) -> TokenInfo:
        return TokenInfo(
            ticker="USDC",
            address=self.config.usdc_address,
            chain_id=self.config.chain_id,
            decimals=self.config.usdc_decimals,
        )

    def api_client(self) -> APIClient:
        return APIClient(
            self.config.api_base_url,
            api_key=self.config.api_key,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay_seconds,
        )

    def quote_service(self, api: APIClient, bridge_session: aiohttp.ClientSession) -> QuoteService:
        return QuoteService(
            api,
            RelayBridge(bridge_session, self.config.relay_api_url),
            self.escrow_token,
            quotes_to_return=self.config.quotes_to_return,
        )

    def quote_fetcher(self, quote_service: QuoteService) -> QuoteFetcher:
        return QuoteFetcher(quote_service, debounce=self.config.quote_debounce_seconds)

    def settlement_service(self, api: APIClient, quote_service: QuoteService) -> SettlementService:
        return SettlementService(
            self.escrow,
            api,
            quote_service,
            self.store,
            self.config.verifier_addresses,
            token_decimals=self.config.usdc_decimals,
            proof_buffer_seconds=self.config.proof_buffer_seconds,
        )

    # =======================
    # Flows
    # =======================

    def deposit_flow(self, api: APIClient, on_success=()) -> DepositCreationFlow:
        return DepositCreationFlow(
            api,
            self.escrow,
            self.escrow.address,
            self.config.gating_service_address,
            token_decimals=self.config.usdc_decimals,
            min_deposit_amount=self.config.min_deposit_amount,
            approval_settle_seconds=self.config.approval_settle_seconds,
            on_success=on_success,
        )

    def signal_intent_flow(self, api: APIClient, on_success=()) -> SignalIntentFlow:
        return SignalIntentFlow(
            api,
            self.escrow,
            self.config.chain_id,
            token_decimals=self.config.usdc_decimals,
            on_success=on_success,
        )

    def payment_completion(self, prover: Prover) -> PaymentCompletion:
        return PaymentCompletion(
            self.escrow,
            prover,
            self.store,
            intent_expiration_seconds=self.config.intent_expiration_seconds,
            poll_interval=self.config.poll_interval_seconds,
        )

    # =======================
    # Background loops
    # =======================

    async def _poll_loop(self, service: SettlementService):
        """Background loop that refreshes the account's open intent."""
        if self.escrow.account is None:
            logger.info("No private key configured, intent polling disabled")
            return

        owner = self.escrow.address
        while self.running:
            try:
                view = await service.refresh_intent(owner)
                if view is not None:
                    logger.debug(f"Open intent {view.intent_hash} on deposit {view.intent.deposit_id}")
            except P2PRampError as e:
                logger.error(f"Intent refresh failed: {e.message}")
            except Exception:
                logger.exception("Intent refresh failed")
            await asyncio.sleep(self.config.poll_interval_seconds)

    async def _expiry_loop(self, service: SettlementService):
        """Marks payment record sets expired once their proof window closes."""
        while self.running:
            service.tick()
            await asyncio.sleep(self.config.expiry_check_interval)

    async def serve(self):
        """Run the API server and the background loops until the server exits."""
        self.running = True
        async with self.api_client() as api, aiohttp.ClientSession() as bridge_session:
            service = self.settlement_service(api, self.quote_service(api, bridge_session))
            app = create_app(service, config=self.config)

            server = uvicorn.Server(
                uvicorn.Config(app, host=self.config.api_host, port=self.config.api_port, log_level="info")
            )
            loops = [
                asyncio.create_task(self._poll_loop(service)),
                asyncio.create_task(self._expiry_loop(service)),
            ]
            try:
                await server.serve()
            finally:
                self.running = False
                for task in loops:
                    task.cancel()

    def start(self):
        """Start the client (blocks)."""
        logger.info(
            f"p2pramp client starting on {self.config.api_host}:{self.config.api_port}"
        )
        asyncio.run(self.serve())

    def stop(self):
        """Stop the polling loop."""
        self.running = False


def main():
    """Entry point."""
    import argparse
    from pathlib import Path

    from dotenv import load_dotenv

    # Load .env from project root (one level above client/)
    env_path = Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)

    parser = argparse.ArgumentParser(description="p2pramp settlement client")
    parser.add_argument("--check", action="store_true", help="Read the account's deposits and intent, then exit")
    parser.add_argument("--rpc", default=None, help="RPC URL (overrides .env)")
    parser.add_argument("--port", type=int, default=None, help="API port")
    args = parser.parse_args()

    config = Config()
    if args.rpc:
        config.rpc_url = args.rpc
    if args.port:
        config.api_port = args.port

    logger.info("Config loaded:")
    logger.info(f"  RPC:      {config.rpc_url[:40]}...")
    logger.info(f"  API:      {config.api_base_url}")
    logger.info(f"  Escrow:   {config.escrow_address}")
    logger.info(f"  USDC:     {config.usdc_address}")
    logger.info(f"  Chain ID: {config.chain_id}")

    client = SettlementClient(config)
    if args.check:
        asyncio.run(_run_check(client))
    else:
        client.start()


async def _run_check(client: SettlementClient):
    """Print the configured account's escrow state."""
    w3 = client.w3
    if not w3.is_connected():
        logger.error(f"Cannot connect to {client.config.rpc_url}")
        return

    logger.info(f"Connected to chain {w3.eth.chain_id}, block {w3.eth.block_number}")
    escrow = client.escrow
    owner = escrow.address
    decimals = client.config.usdc_decimals

    balance = await escrow.balance_of(owner)
    allowance = await escrow.allowance(owner)
    logger.info(f"Account {owner}: balance={format_units(balance, decimals, 2)} allowance={format_units(allowance, decimals, 2)}")

    for view in await escrow.get_account_deposits(owner):
        logger.info(
            f"Deposit {view.deposit_id}: available={format_units(view.available_liquidity, decimals, 2)} "
            f"open intents={len(view.deposit.intent_hashes)} accepting={view.deposit.accepting_intents}"
        )

    intent = await escrow.get_account_intent(owner)
    client.store.set(intent_key(owner), intent)
    if intent is None:
        logger.info("No open intent")
    else:
        logger.info(
            f"Open intent {intent.intent_hash}: deposit={intent.intent.deposit_id} "
            f"amount={format_units(intent.intent.amount, decimals, 2)}"
        )


if __name__ == "__main__":
    main()
