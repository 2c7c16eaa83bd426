"""Configuration for the p2pramp settlement client."""

import os
from dataclasses import dataclass, field


def _parse_mapping(text: str) -> dict[str, str]:
    mapping = {}
    for item in text.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            mapping[key.strip()] = value.strip()
    return mapping

@dataclass
class Config:
    """Client configuration."""

    # RPC
    rpc_url: str = field(default_factory=lambda: os.getenv("RPC_URL", "http://127.0.0.1:8545"))

    # Curator backend
    api_base_url: str = field(
        default_factory=lambda: os.getenv("API_BASE_URL", "https://api.zkp2p.xyz/v1")
    )
    api_key: str = field(default_factory=lambda: os.getenv("API_KEY", ""))

    # Contract addresses
    escrow_address: str = field(default_factory=lambda: os.getenv("ESCROW_ADDRESS", ""))
    usdc_address: str = field(default_factory=lambda: os.getenv("USDC_ADDRESS", ""))
    usdc_decimals: int = 6
    gating_service_address: str = field(default_factory=lambda: os.getenv("GATING_SERVICE_ADDRESS", ""))

    # Payment verifier per platform, "venmo=0x...,revolut=0x..."
    verifier_addresses: dict[str, str] = field(
        default_factory=lambda: _parse_mapping(os.getenv("VERIFIER_ADDRESSES", ""))
    )

    # Bridge
    relay_api_url: str = field(default_factory=lambda: os.getenv("RELAY_API_URL", "https://api.relay.link"))

    # Account key (for signing transactions)
    private_key: str = field(default_factory=lambda: os.getenv("PRIVATE_KEY", ""))

    # Retry policy
    max_retries: int = 3
    retry_delay_seconds: float = 1.0

    # Quotes
    quote_debounce_seconds: float = 0.5
    quotes_to_return: int = 5

    # Payment verification
    proof_buffer_seconds: int = 30  # records expire this much earlier than the server says
    expiry_check_interval: float = 1.0
    intent_expiration_seconds: int = 86400

    # Deposits (token base units, 6 decimals)
    min_deposit_amount: int = 1_000_000
    approval_settle_seconds: float = 2.0

    # Polling
    poll_interval_seconds: int = 5

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Chain (8453 = Base, 84532 = Base Sepolia, 31337 = Anvil)
    chain_id: int = field(default_factory=lambda: int(os.getenv("CHAIN_ID", "8453")))
