"""
Error taxonomy shared by every layer of the client.

Each error carries a kind tag (which family it belongs to) and a stable
machine-readable code. Handling sites switch on ``error.kind`` instead of
walking an isinstance chain; ``describe_error`` and ``http_status_for`` are
the exhaustive mappings.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from eth_abi import decode


class ErrorKind(str, Enum):
    NETWORK = "network"
    API = "api"
    CONTRACT = "contract"
    VALIDATION = "validation"
    PARSE = "parse"
    UNKNOWN = "unknown"


class ErrorCode(str, Enum):
    # Network errors
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"

    # API errors
    API_ERROR = "API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"

    # Contract errors
    CONTRACT_ERROR = "CONTRACT_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"

    # Local errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class P2PRampError(Exception):
    """Base error"""

    kind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class NetworkError(P2PRampError):
    """No response was received"""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.NETWORK_ERROR, details)


class APIError(P2PRampError):
    """Non-2xx response from the backend"""

    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: ErrorCode = ErrorCode.API_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.status = status


class ContractError(P2PRampError):
    """Signing, broadcast or execution failure of an escrow transaction"""

    kind = ErrorKind.CONTRACT

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONTRACT_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.reason = reason


class ValidationError(P2PRampError):
    """Local precondition failure. Never retried, never sent over the wire."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, {"field": field})
        self.field = field


class ParseError(P2PRampError):
    """Malformed on-chain or wire data"""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, ErrorCode.PARSE_ERROR, {"field": field})
        self.field = field


class UnknownError(P2PRampError):
    kind = ErrorKind.UNKNOWN


@dataclass(frozen=True)
class ErrorDescription:
    """What the user sees for a terminal failure."""

    message: str
    action: str  # "retry" or "start_over"


RETRY = "retry"
START_OVER = "start_over"

_MAX_RAW_MESSAGE = 200
_ERROR_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)


def wrap_error(error: BaseException) -> P2PRampError:
    """Return ``error`` unchanged if it is already classified, else wrap it."""
    if isinstance(error, P2PRampError):
        return error
    return UnknownError(str(error) or error.__class__.__name__, details={"type": type(error).__name__})


def parse_api_error(
    status: int,
    reason: Optional[str] = None,
    text: Optional[str] = None,
    url: Optional[str] = None,
) -> APIError:
    """Build an APIError from a failed HTTP response.

    Message preference: JSON ``error``/``message`` field, the raw body if it
    is short, and the HTTP status text as a last resort.
    """
    message = f"Request failed: {reason or status}"

    if text:
        try:
            body = json.loads(text)
        except ValueError:
            if len(text) < _MAX_RAW_MESSAGE:
                message = text
        else:
            if isinstance(body, dict) and (body.get("error") or body.get("message")):
                message = str(body.get("error") or body.get("message"))

    code = ErrorCode.API_ERROR
    if status == 429:
        message = "Too many requests. Please try again later."
        code = ErrorCode.RATE_LIMIT
    elif status == 404:
        code = ErrorCode.NOT_FOUND

    return APIError(message, status=status, code=code, details={"url": url})


def _decode_revert_data(data: Any) -> Optional[str]:
    if isinstance(data, str) and data.startswith("0x"):
        try:
            data = bytes.fromhex(data[2:])
        except ValueError:
            return None
    if not isinstance(data, (bytes, bytearray)) or not data.startswith(_ERROR_SELECTOR):
        return None
    try:
        (reason,) = decode(["string"], bytes(data[4:]))
    except Exception:
        return None
    return reason


def parse_contract_error(error: BaseException) -> ContractError:
    """Translate a signing-library exception into a ContractError.

    Prefers an explicit revert reason; insufficient funds/balance get their
    own code so the UI can say so.
    """
    if isinstance(error, ContractError):
        return error

    text = str(error)
    if "insufficient funds" in text or "insufficient balance" in text:
        return ContractError(
            "Insufficient balance for transaction",
            reason=ErrorCode.INSUFFICIENT_BALANCE.value,
            code=ErrorCode.INSUFFICIENT_BALANCE,
        )

    message = "Transaction failed"
    reason = None

    # web3 ContractLogicError carries the decoded reason as its message and the raw revert data
    revert_message = getattr(error, "message", None)
    revert_data = getattr(error, "data", None)
    decoded = _decode_revert_data(revert_data)

    if decoded:
        reason = decoded
        message = f"Transaction reverted: {reason}"
    elif isinstance(revert_message, str) and revert_message.startswith("execution reverted"):
        reason = revert_message.removeprefix("execution reverted").lstrip(": ") or None
        message = f"Transaction reverted: {reason}" if reason else "Transaction reverted"
    elif isinstance(revert_data, dict) and revert_data.get("message"):
        reason = revert_data["message"]
        message = f"Transaction failed: {reason}"

    details = {"type": type(error).__name__}
    tx_hash = getattr(error, "transaction_hash", None)
    if tx_hash:
        details["tx_hash"] = tx_hash
    return ContractError(message, reason=reason, details=details)


def describe_error(error: P2PRampError) -> ErrorDescription:
    """Human-readable message plus the follow-up action for a terminal failure."""
    kind = error.kind
    if kind == ErrorKind.NETWORK:
        return ErrorDescription("Unable to reach the server. Check your connection and try again.", RETRY)
    if kind == ErrorKind.API:
        return ErrorDescription(error.message, RETRY)
    if kind == ErrorKind.CONTRACT:
        if error.code == ErrorCode.INSUFFICIENT_BALANCE:
            return ErrorDescription("Insufficient balance for transaction", START_OVER)
        return ErrorDescription(error.message, START_OVER)
    if kind == ErrorKind.VALIDATION:
        return ErrorDescription(error.message, RETRY)
    if kind == ErrorKind.PARSE:
        return ErrorDescription(f"Received malformed data: {error.message}", RETRY)
    if kind == ErrorKind.UNKNOWN:
        return ErrorDescription(f"An unknown error occurred: {error.message}", START_OVER)
    raise AssertionError(f"Unhandled error kind: {kind}")


def http_status_for(error: P2PRampError) -> int:
    """HTTP status the service surface answers with for an error."""
    kind = error.kind
    if kind == ErrorKind.NETWORK:
        return 503
    if kind == ErrorKind.API:
        return error.status if error.status and error.status >= 400 else 502
    if kind == ErrorKind.CONTRACT:
        return 409
    if kind == ErrorKind.VALIDATION:
        return 400
    if kind == ErrorKind.PARSE:
        return 502
    if kind == ErrorKind.UNKNOWN:
        return 500
    raise AssertionError(f"Unhandled error kind: {kind}")
