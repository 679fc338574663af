"""Exception hierarchy for qvdao-chain.

All wallet and transaction errors inherit from WalletError, enabling:
- Consistent error handling for the REST/WebSocket facade
- Structured error payloads with machine-readable error codes
- Mapping of raw EIP-1193 provider errors onto typed exceptions

Usage:
    from qvdao_chain.exceptions import WalletError, classify_provider_error

    try:
        await provider.request("eth_requestAccounts")
    except Exception as e:
        raise classify_provider_error(e)
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WALLET_LOCKED = "WALLET_LOCKED"
    USER_REJECTED = "USER_REJECTED"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    WRONG_NETWORK = "WRONG_NETWORK"
    NETWORK_SWITCH_TIMEOUT = "NETWORK_SWITCH_TIMEOUT"
    NETWORK_ADD_REJECTED = "NETWORK_ADD_REJECTED"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_HASH = "INVALID_HASH"
    INVALID_INPUT = "INVALID_INPUT"
    UNPREDICTABLE_GAS = "UNPREDICTABLE_GAS"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    ALREADY_CONFIRMED = "ALREADY_CONFIRMED"
    NETWORK_ERROR = "NETWORK_ERROR"


# EIP-1193 / JSON-RPC provider error codes
USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902
INTERNAL_ERROR_CODE = -32603
RESOURCE_UNAVAILABLE_CODE = -32002


class WalletError(Exception):
    """Base exception for all wallet client errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: ErrorCode = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a facade response payload."""
        result = {
            "error": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Wallet & Connection Errors
# =============================================================================

class WalletUnavailable(WalletError):
    """No wallet provider is present."""

    error_code = ErrorCode.WALLET_NOT_FOUND

    def __init__(self, message: str = "Wallet provider not found") -> None:
        super().__init__(message)


class WalletNotConnected(WalletError):
    """Operation requires a connected wallet."""

    error_code = ErrorCode.WALLET_NOT_CONNECTED

    def __init__(self, message: str = "Wallet not connected") -> None:
        super().__init__(message)


class UserRejected(WalletError):
    """The user explicitly declined the request (code 4001)."""

    error_code = ErrorCode.USER_REJECTED

    def __init__(self, message: str = "Request rejected by user") -> None:
        super().__init__(message)


class WalletLocked(WalletError):
    """The wallet is locked or already has a pending request (code -32002)."""

    error_code = ErrorCode.WALLET_LOCKED

    def __init__(self, message: str = "Wallet is locked. Please unlock and try again.") -> None:
        super().__init__(message)


class TooManyAttempts(WalletError):
    """Connect retry budget exhausted within the cooldown window."""

    error_code = ErrorCode.TOO_MANY_ATTEMPTS

    def __init__(self, attempts: int, retry_after_seconds: float) -> None:
        super().__init__(
            "Too many connection attempts. Please wait a moment.",
            details={
                "attempts": attempts,
                "retry_after_seconds": round(retry_after_seconds, 3),
            },
        )
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds


# =============================================================================
# Network Errors
# =============================================================================

class NetworkSwitchTimeout(WalletError):
    """The wallet did not report the target chain in time."""

    error_code = ErrorCode.NETWORK_SWITCH_TIMEOUT

    def __init__(self, target_chain_id: int, attempts: int) -> None:
        super().__init__(
            f"Network switch timeout: chain {target_chain_id} not observed "
            f"after {attempts} attempts",
            details={"target_chain_id": target_chain_id, "attempts": attempts},
        )
        self.target_chain_id = target_chain_id


class WrongNetwork(WalletError):
    """The wallet is on a chain other than the target chain."""

    error_code = ErrorCode.WRONG_NETWORK

    def __init__(self, chain_id: Optional[int], target_chain_id: int) -> None:
        super().__init__(
            f"Wallet is on chain {chain_id}, switch to chain {target_chain_id} first",
            details={"chain_id": chain_id, "target_chain_id": target_chain_id},
        )
        self.chain_id = chain_id
        self.target_chain_id = target_chain_id


class NetworkAddRejected(UserRejected):
    """The user declined registering the target network."""

    error_code = ErrorCode.NETWORK_ADD_REJECTED

    def __init__(self, message: str = "Network addition rejected by user") -> None:
        super().__init__(message)


class ProviderUnavailable(WalletError):
    """Generic RPC or transport fault."""

    error_code = ErrorCode.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        rpc_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        if rpc_code is not None:
            details["rpc_code"] = rpc_code
        super().__init__(message, details=details)
        self.rpc_code = rpc_code


# =============================================================================
# Input Validation Errors
# =============================================================================

class InvalidAddress(WalletError):
    """Malformed or checksum-invalid address."""

    error_code = ErrorCode.INVALID_ADDRESS

    def __init__(self, address: Any, field: Optional[str] = None) -> None:
        details: dict[str, Any] = {"address": str(address)}
        if field:
            details["field"] = field
        super().__init__(f"Invalid address: {address!r}", details=details)
        self.address = address


class InvalidHash(WalletError):
    """Malformed transaction hash."""

    error_code = ErrorCode.INVALID_HASH

    def __init__(self, tx_hash: Any) -> None:
        super().__init__(
            f"Invalid transaction hash: {tx_hash!r}",
            details={"tx_hash": str(tx_hash)},
        )
        self.tx_hash = tx_hash


class InvalidInput(WalletError):
    """A contract call argument is out of range or of the wrong type."""

    error_code = ErrorCode.INVALID_INPUT

    def __init__(self, field: str, message: str, value: Any = None) -> None:
        super().__init__(
            f"{field}: {message}",
            details={"field": field, "value": repr(value)},
        )
        self.field = field
        self.value = value


# =============================================================================
# Gas & Transaction Errors
# =============================================================================

class UnpredictableGas(WalletError):
    """The provider could not simulate the call to estimate gas."""

    error_code = ErrorCode.UNPREDICTABLE_GAS

    def __init__(self, reason: Optional[str] = None) -> None:
        message = (
            "Transaction may fail: unpredictable gas limit. "
            "Check contract state and parameters."
        )
        super().__init__(message, details={"reason": reason} if reason else None)
        self.reason = reason


class ConfirmationTimeout(WalletError):
    """Required confirmations not reached before the timeout."""

    error_code = ErrorCode.CONFIRMATION_TIMEOUT

    def __init__(self, tx_hash: str, timeout_seconds: float, required_confirmations: int) -> None:
        super().__init__(
            f"Transaction confirmation timeout for {tx_hash} after {timeout_seconds}s",
            details={
                "tx_hash": tx_hash,
                "timeout_seconds": timeout_seconds,
                "required_confirmations": required_confirmations,
            },
        )
        self.tx_hash = tx_hash


class TransactionReverted(WalletError):
    """The receipt reports failure status."""

    error_code = ErrorCode.TRANSACTION_REVERTED

    def __init__(self, tx_hash: str, receipt: Optional[dict[str, Any]] = None) -> None:
        details: dict[str, Any] = {"tx_hash": tx_hash}
        if receipt and receipt.get("blockNumber") is not None:
            details["block_number"] = receipt.get("blockNumber")
        super().__init__(f"Transaction {tx_hash} failed or was reverted", details=details)
        self.tx_hash = tx_hash
        self.receipt = receipt


class TransactionNotFound(WalletError):
    """The transaction to replace cannot be located."""

    error_code = ErrorCode.TRANSACTION_NOT_FOUND

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"Transaction {tx_hash} not found", details={"tx_hash": tx_hash})
        self.tx_hash = tx_hash


class AlreadyConfirmed(WalletError):
    """The transaction to replace is already mined."""

    error_code = ErrorCode.ALREADY_CONFIRMED

    def __init__(self, tx_hash: str, block_number: Optional[int] = None) -> None:
        super().__init__(
            f"Transaction {tx_hash} already confirmed",
            details={"tx_hash": tx_hash, "block_number": block_number},
        )
        self.tx_hash = tx_hash


# =============================================================================
# Error Mapping Utilities
# =============================================================================

def classify_provider_error(
    error: BaseException,
    method: Optional[str] = None,
) -> WalletError:
    """Convert a raw provider/transport error to the matching WalletError.

    Errors that are already classified are returned unchanged. Provider errors
    are classified by their EIP-1193 code; anything else is a network fault.

    Example:
        try:
            accounts = await provider.request("eth_requestAccounts")
        except Exception as e:
            raise classify_provider_error(e, method="eth_requestAccounts")
    """
    if isinstance(error, WalletError):
        return error

    # Local import: provider depends on this module
    from .provider import ProviderRPCError

    if isinstance(error, ProviderRPCError):
        if error.code == USER_REJECTED_CODE:
            return UserRejected()
        if error.code == RESOURCE_UNAVAILABLE_CODE:
            return WalletLocked()
        if error.code == INTERNAL_ERROR_CODE:
            return ProviderUnavailable(
                "Internal wallet error. Please try again.",
                method=method,
                rpc_code=error.code,
            )
        return ProviderUnavailable(error.message, method=method, rpc_code=error.code)

    if isinstance(error, httpx.TimeoutException):
        return ProviderUnavailable(f"RPC request timed out: {error}", method=method)

    if isinstance(error, httpx.HTTPError):
        return ProviderUnavailable(f"RPC transport failed: {error}", method=method)

    message = str(error) or error.__class__.__name__
    if "metamask" in message.lower():
        return WalletUnavailable(message)

    return ProviderUnavailable(f"RPC call failed: {message}", method=method)
