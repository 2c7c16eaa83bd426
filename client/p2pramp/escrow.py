"""Escrow and ERC-20 access via web3 transactions."""

import asyncio
import logging
from typing import Any, Callable

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError

from .errors import NetworkError, parse_contract_error
from .parsers import parse_deposit_view, parse_intent_view, to_plain
from .types import DepositView, IntentView

logger = logging.getLogger(__name__)

# Transactions have no client-side timeout; this only bounds the web3 poll
_RECEIPT_TIMEOUT = 365 * 24 * 3600


def _tuple(name: str, components: list, array: bool = False) -> dict:
    return {
        "name": name,
        "type": "tuple[]" if array else "tuple",
        "components": components,
    }


def _param(name: str, type_: str) -> dict:
    return {"name": name, "type": type_}


RANGE = [_param("min", "uint256"), _param("max", "uint256")]

DEPOSIT = [
    _param("depositor", "address"),
    _param("token", "address"),
    _param("amount", "uint256"),
    _tuple("intentAmountRange", RANGE),
    _param("acceptingIntents", "bool"),
    _param("remainingDeposits", "uint256"),
    _param("outstandingIntentAmount", "uint256"),
    _param("intentHashes", "bytes32[]"),
]

VERIFICATION_DATA = [
    _param("intentGatingService", "address"),
    _param("payeeDetails", "string"),
    _param("data", "bytes"),
]

CURRENCY = [_param("code", "bytes32"), _param("conversionRate", "uint256")]

VERIFIER = [
    _param("verifier", "address"),
    _tuple("verificationData", VERIFICATION_DATA),
    _tuple("currencies", CURRENCY, array=True),
]

DEPOSIT_VIEW = [
    _param("depositId", "uint256"),
    _tuple("deposit", DEPOSIT),
    _param("availableLiquidity", "uint256"),
    _tuple("verifiers", VERIFIER, array=True),
]

INTENT = [
    _param("owner", "address"),
    _param("to", "address"),
    _param("depositId", "uint256"),
    _param("amount", "uint256"),
    _param("timestamp", "uint256"),
    _param("paymentVerifier", "address"),
    _param("fiatCurrency", "bytes32"),
    _param("conversionRate", "uint256"),
]

INTENT_VIEW = [
    _param("intentHash", "bytes32"),
    _tuple("intent", INTENT),
    _tuple("deposit", DEPOSIT_VIEW),
]


def _fn(name: str, inputs: list, outputs: list, mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


ESCROW_ABI = [
    _fn("getAccountDeposits", [_param("_account", "address")], [_tuple("", DEPOSIT_VIEW, array=True)], "view"),
    _fn("getDepositFromIds", [_param("_depositIds", "uint256[]")], [_tuple("", DEPOSIT_VIEW, array=True)], "view"),
    _fn("getAccountIntent", [_param("_account", "address")], [_tuple("", INTENT_VIEW)], "view"),
    _fn("getIntents", [_param("_intentHashes", "bytes32[]")], [_tuple("", INTENT_VIEW, array=True)], "view"),
    _fn(
        "createDeposit",
        [
            _param("_token", "address"),
            _param("_amount", "uint256"),
            _tuple("_intentAmountRange", RANGE),
            _param("_verifiers", "address[]"),
            _tuple("_verifierData", VERIFICATION_DATA, array=True),
            {"name": "_currencies", "type": "tuple[][]", "components": CURRENCY},
        ],
        [],
    ),
    _fn(
        "signalIntent",
        [
            _param("_depositId", "uint256"),
            _param("_amount", "uint256"),
            _param("_to", "address"),
            _param("_verifier", "address"),
            _param("_fiatCurrency", "bytes32"),
            _param("_gatingServiceSignature", "bytes"),
        ],
        [],
    ),
    _fn("cancelIntent", [_param("_intentHash", "bytes32")], []),
    _fn("releaseFundsToPayer", [_param("_intentHash", "bytes32")], []),
    _fn("withdrawDeposit", [_param("_depositId", "uint256")], []),
    _fn(
        "updateDepositConversionRate",
        [
            _param("_depositId", "uint256"),
            _param("_verifier", "address"),
            _param("_fiatCurrency", "bytes32"),
            _param("_newConversionRate", "uint256"),
        ],
        [],
    ),
]

ERC20_ABI = [
    _fn("allowance", [_param("owner", "address"), _param("spender", "address")], [_param("", "uint256")], "view"),
    _fn("balanceOf", [_param("account", "address")], [_param("", "uint256")], "view"),
    _fn("approve", [_param("spender", "address"), _param("amount", "uint256")], [_param("", "bool")]),
]


def _bytes32(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x")).rjust(32, b"\0")


class EscrowClient:
    """Reads escrow views and sends escrow / ERC-20 transactions for one account.

    web3 calls block, so every public method runs them in a worker thread.
    """

    def __init__(self, w3: Web3, escrow_address: str, token_address: str, private_key: str = ""):
        self.w3 = w3
        self.private_key = private_key
        self.account = Account.from_key(private_key) if private_key else None

        self.escrow = w3.eth.contract(
            address=Web3.to_checksum_address(escrow_address), abi=ESCROW_ABI, decode_tuples=True
        )
        self.token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    @property
    def address(self) -> str:
        if self.account is None:
            raise RuntimeError("No private key configured")
        return self.account.address

    # =======================
    # Reads
    # =======================

    async def _read(self, name: str, call: Callable[[], Any]) -> Any:
        """Run a view call; reverts become ContractError, anything else NetworkError."""
        try:
            return await asyncio.to_thread(call)
        except ContractLogicError as e:
            raise parse_contract_error(e) from e
        except Exception as e:
            raise NetworkError(f"{name} call failed", details={"error": str(e)}) from e

    async def get_account_deposits(self, owner: str) -> list[DepositView]:
        raw = await self._read(
            "getAccountDeposits",
            self.escrow.functions.getAccountDeposits(Web3.to_checksum_address(owner)).call,
        )
        return [parse_deposit_view(to_plain(view)) for view in raw]

    async def get_deposits(self, deposit_ids: list[int]) -> list[DepositView]:
        raw = await self._read("getDepositFromIds", self.escrow.functions.getDepositFromIds(list(deposit_ids)).call)
        return [parse_deposit_view(to_plain(view)) for view in raw]

    async def get_intents(self, intent_hashes: list[str]) -> list[IntentView]:
        hashes = [_bytes32(h) for h in intent_hashes]
        raw = await self._read("getIntents", self.escrow.functions.getIntents(hashes).call)
        return [parse_intent_view(to_plain(view)) for view in raw]

    async def get_account_intent(self, owner: str) -> IntentView | None:
        """The account's open intent, or None when it has none."""
        raw = await self._read(
            "getAccountIntent",
            self.escrow.functions.getAccountIntent(Web3.to_checksum_address(owner)).call,
        )
        view = to_plain(raw)
        if int(view["intentHash"], 16) == 0:
            return None
        return parse_intent_view(view)

    async def allowance(self, owner: str) -> int:
        return await self._read(
            "allowance",
            self.token.functions.allowance(Web3.to_checksum_address(owner), self.escrow.address).call,
        )

    async def balance_of(self, owner: str) -> int:
        return await self._read("balanceOf", self.token.functions.balanceOf(Web3.to_checksum_address(owner)).call)

    # =======================
    # Writes
    # =======================

    def _send(self, fn) -> str:
        """Build, sign, and submit a transaction. Returns tx hash."""
        tx = fn.build_transaction({
            "from": self.address,
            "nonce": self.w3.eth.get_transaction_count(self.address),
            "gasPrice": self.w3.eth.gas_price,
        })
        signed_tx = self.w3.eth.account.sign_transaction(tx, self.private_key)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        logger.info(f"Sent {fn.fn_name}: {tx_hash.hex()}")
        return tx_hash.hex()

    async def approve(self, amount: int) -> str:
        return await asyncio.to_thread(self._send, self.token.functions.approve(self.escrow.address, amount))

    async def create_deposit(
        self,
        amount: int,
        intent_amount_range: tuple[int, int],
        verifiers: list[str],
        verifier_data: list[tuple[str, str, bytes]],
        currencies: list[list[tuple[str, int]]],
    ) -> str:
        fn = self.escrow.functions.createDeposit(
            self.token.address,
            amount,
            intent_amount_range,
            [Web3.to_checksum_address(v) for v in verifiers],
            [(Web3.to_checksum_address(gate), payee, data) for gate, payee, data in verifier_data],
            [[(_bytes32(code), rate) for code, rate in rates] for rates in currencies],
        )
        return await asyncio.to_thread(self._send, fn)

    async def signal_intent(
        self,
        deposit_id: int,
        amount: int,
        to: str,
        verifier: str,
        currency_code_hash: str,
        gating_service_signature: str,
    ) -> str:
        fn = self.escrow.functions.signalIntent(
            deposit_id,
            amount,
            Web3.to_checksum_address(to),
            Web3.to_checksum_address(verifier),
            _bytes32(currency_code_hash),
            bytes.fromhex(gating_service_signature.removeprefix("0x")),
        )
        return await asyncio.to_thread(self._send, fn)

    async def cancel_intent(self, intent_hash: str) -> str:
        return await asyncio.to_thread(self._send, self.escrow.functions.cancelIntent(_bytes32(intent_hash)))

    async def release_funds_to_payer(self, intent_hash: str) -> str:
        """Depositor releases an intent's funds without an on-chain proof."""
        return await asyncio.to_thread(self._send, self.escrow.functions.releaseFundsToPayer(_bytes32(intent_hash)))

    async def withdraw_deposit(self, deposit_id: int) -> str:
        return await asyncio.to_thread(self._send, self.escrow.functions.withdrawDeposit(deposit_id))

    async def update_conversion_rate(
        self, deposit_id: int, verifier: str, currency_code_hash: str, conversion_rate: int
    ) -> str:
        fn = self.escrow.functions.updateDepositConversionRate(
            deposit_id,
            Web3.to_checksum_address(verifier),
            _bytes32(currency_code_hash),
            conversion_rate,
        )
        return await asyncio.to_thread(self._send, fn)

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """Wait indefinitely for the transaction to be mined."""
        receipt = await asyncio.to_thread(
            self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=_RECEIPT_TIMEOUT
        )
        return dict(receipt)
