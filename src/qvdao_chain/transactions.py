"""
Transaction submission and confirmation tracking.

Features:
- Confirmation wait raced against a timeout, with optional progress polling
- Speed-up and cancel replacement of pending transactions
- Bounded newest-first history and success/gas metrics
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from .address import AddressCodec
from .config import TransactionMonitorConfig
from .connection import ConnectionManager
from .events import EventChannel, WalletEvent
from .exceptions import (
    USER_REJECTED_CODE,
    AlreadyConfirmed,
    ConfirmationTimeout,
    TransactionNotFound,
    TransactionReverted,
    UserRejected,
    WalletError,
    WalletNotConnected,
    WalletUnavailable,
    classify_provider_error,
)
from .gas import GasEstimator, scale_wei, to_gwei
from .logging_utils import WalletLogger
from .provider import PROVIDER_FAILURES, ProviderRPCError, WalletProvider, to_int

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], Any]


class TransactionStatus(str, Enum):
    """Lifecycle of a tracked transaction."""
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ReplacementAction(str, Enum):
    """How a pending transaction is replaced."""
    SPEED_UP = "speed_up"
    CANCEL = "cancel"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ReplacementAction"]:
        if isinstance(value, str) and value.lower().replace("-", "").replace("_", "") == "speedup":
            return cls.SPEED_UP
        return None


@dataclass
class PendingTransaction:
    """A transaction awaiting a terminal status."""
    hash: str
    submitted_at: float
    required_confirmations: int = 1
    status: TransactionStatus = TransactionStatus.SUBMITTED
    operation: Optional[str] = None


@dataclass(frozen=True)
class TransactionHistoryEntry:
    """A confirmed transaction."""
    hash: str
    receipt: Dict[str, Any]
    timestamp: float
    confirmations: int


@dataclass
class TransactionMetrics:
    """Counters over confirmed and failed transactions."""
    transaction_count: int = 0
    failed_transactions: int = 0
    average_gas_used: float = 0.0

    @property
    def success_rate(self) -> float:
        total = self.transaction_count + self.failed_transactions
        if total == 0:
            return 0.0
        return self.transaction_count / total * 100

    def record_gas_used(self, gas_used: int) -> None:
        count = max(1, self.transaction_count)
        self.average_gas_used = (self.average_gas_used * (count - 1) + gas_used) / count


@dataclass(frozen=True)
class ReplacementResult:
    """Outcome of a speed-up or cancel."""
    old_hash: str
    new_hash: str
    action: ReplacementAction
    gas_price_wei: int

    @property
    def gas_price_gwei(self) -> Decimal:
        return to_gwei(self.gas_price_wei)


class TransactionMonitor:
    """
    Submits transactions through the wallet and tracks them to completion.

    The signer is the address of the connected session; nothing here writes
    to the connection state.
    """

    def __init__(
        self,
        provider: Optional[WalletProvider],
        connection: ConnectionManager,
        gas_estimator: GasEstimator,
        config: Optional[TransactionMonitorConfig] = None,
        wallet_logger: Optional[WalletLogger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._provider = provider
        self._connection = connection
        self._gas = gas_estimator
        self._config = config or TransactionMonitorConfig()
        self._wallet_logger = wallet_logger
        self._clock = clock

        self._pending: Dict[str, PendingTransaction] = {}
        self._history: Deque[TransactionHistoryEntry] = deque(maxlen=self._config.history_size)
        self._metrics = TransactionMetrics()
        self.events: EventChannel[WalletEvent] = EventChannel("transactions")

    @property
    def pending_transactions(self) -> Dict[str, PendingTransaction]:
        return dict(self._pending)

    def is_pending(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._pending

    @property
    def metrics(self) -> TransactionMetrics:
        return self._metrics

    def _require_provider(self) -> WalletProvider:
        if self._provider is None:
            raise WalletUnavailable("Provider not available")
        return self._provider

    def _require_signer(self) -> str:
        address = self._connection.address
        if not self._connection.is_connected or address is None:
            raise WalletNotConnected("Signer not available")
        self._connection.require_target_network()
        return address

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def send_transaction(
        self,
        tx: Dict[str, Any],
        operation: Optional[str] = None,
    ) -> str:
        """
        Submit a transaction from the connected account.

        Args:
            tx: Transaction descriptor (to/data/value/gas/gasPrice)
            operation: Contract operation name used for timeouts and logs

        Returns:
            Transaction hash
        """
        request = dict(tx)
        request["from"] = self._require_signer()
        if request.get("to") is not None:
            request["to"] = AddressCodec.to_checksum(request["to"], field="to")
        return await self._submit(request, operation)

    async def _submit(self, request: Dict[str, Any], operation: Optional[str]) -> str:
        provider = self._require_provider()
        try:
            tx_hash = await provider.request("eth_sendTransaction", [request])
        except ProviderRPCError as e:
            if e.code == USER_REJECTED_CODE:
                raise UserRejected("Transaction rejected by user") from e
            raise classify_provider_error(e, method="eth_sendTransaction") from e
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_sendTransaction") from e

        tx_hash = AddressCodec.require_tx_hash(tx_hash)
        self._pending[tx_hash] = PendingTransaction(
            hash=tx_hash,
            submitted_at=self._clock(),
            operation=operation,
        )
        if self._wallet_logger is not None:
            gas_price = request.get("gasPrice")
            self._wallet_logger.log_transaction_submitted(
                tx_hash,
                request.get("from"),
                request.get("to"),
                operation=operation,
                gas_price_wei=to_int(gas_price) if gas_price is not None else None,
            )
        return tx_hash

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def wait_for_transaction(
        self,
        tx_hash: str,
        required_confirmations: int = 1,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
        operation: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Wait until a transaction reaches the required confirmations.

        Args:
            tx_hash: Transaction hash
            required_confirmations: Blocks including the inclusion block
            timeout: Seconds before giving up (default per operation)
            on_progress: Called with {confirmations, required, progress_percent}
            operation: Contract operation name used to pick the default timeout

        Returns:
            The transaction receipt

        Raises:
            InvalidHash: Malformed hash, before any provider call
            ConfirmationTimeout: Confirmations not reached in time
            TransactionReverted: Receipt reports failure
        """
        tx_hash = AddressCodec.require_tx_hash(tx_hash)
        provider = self._require_provider()
        required = max(1, required_confirmations)
        existing = self._pending.get(tx_hash)
        if timeout is None:
            timeout = self._config.timeout_for(operation or (existing.operation if existing else None))

        pending = existing or PendingTransaction(
            hash=tx_hash,
            submitted_at=self._clock(),
            operation=operation,
        )
        pending.required_confirmations = required
        self._pending[tx_hash] = pending

        progress_task: Optional[asyncio.Task] = None
        if on_progress is not None:
            progress_task = asyncio.create_task(
                self._report_progress(provider, tx_hash, required, on_progress)
            )

        try:
            receipt, confirmations = await asyncio.wait_for(
                self._wait_for_confirmations(provider, tx_hash, required),
                timeout,
            )
        except asyncio.TimeoutError:
            pending.status = TransactionStatus.TIMED_OUT
            self._record_failure(tx_hash, f"confirmation timeout after {timeout}s")
            raise ConfirmationTimeout(tx_hash, timeout, required) from None
        except (WalletError, ValueError) + PROVIDER_FAILURES as e:
            pending.status = TransactionStatus.FAILED
            self._record_failure(tx_hash, str(e))
            if isinstance(e, WalletError):
                raise
            raise classify_provider_error(e, method="eth_getTransactionReceipt") from e
        finally:
            if progress_task is not None:
                progress_task.cancel()
                await asyncio.gather(progress_task, return_exceptions=True)
            self._pending.pop(tx_hash, None)

        if _receipt_failed(receipt):
            pending.status = TransactionStatus.FAILED
            self._record_failure(tx_hash, "reverted")
            raise TransactionReverted(tx_hash, receipt)

        pending.status = TransactionStatus.CONFIRMED
        self._record_success(tx_hash, receipt, confirmations)
        return receipt

    async def _wait_for_confirmations(
        self,
        provider: WalletProvider,
        tx_hash: str,
        required: int,
    ) -> Tuple[Dict[str, Any], int]:
        while True:
            observed = await self._check_receipt(provider, tx_hash)
            if observed is not None:
                receipt, confirmations = observed
                if _receipt_failed(receipt) or confirmations >= required:
                    return receipt, confirmations
            await asyncio.sleep(self._config.receipt_poll_interval_seconds)

    async def _check_receipt(
        self,
        provider: WalletProvider,
        tx_hash: str,
    ) -> Optional[Tuple[Dict[str, Any], int]]:
        receipt = await provider.request("eth_getTransactionReceipt", [tx_hash])
        if not receipt or receipt.get("blockNumber") is None:
            return None
        current_block = to_int(await provider.request("eth_blockNumber"))
        confirmations = max(0, current_block - to_int(receipt["blockNumber"]) + 1)
        return receipt, confirmations

    async def _report_progress(
        self,
        provider: WalletProvider,
        tx_hash: str,
        required: int,
        on_progress: ProgressCallback,
    ) -> None:
        while True:
            await asyncio.sleep(self._config.progress_poll_interval_seconds)
            try:
                observed = await self._check_receipt(provider, tx_hash)
                if observed is None:
                    continue
                confirmations = observed[1]
                result = on_progress({
                    "confirmations": confirmations,
                    "required": required,
                    "progress_percent": min(100.0, confirmations / required * 100),
                })
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                # Progress reporting never affects the wait outcome
                logger.debug(f"Progress poll for {tx_hash} failed: {e}")

    def _record_failure(self, tx_hash: str, reason: str) -> None:
        self._metrics.failed_transactions += 1
        logger.warning(f"Transaction {tx_hash} failed: {reason}")
        if self._wallet_logger is not None:
            self._wallet_logger.log_transaction_failed(tx_hash, reason)

    def _record_success(self, tx_hash: str, receipt: Dict[str, Any], confirmations: int) -> None:
        self._metrics.transaction_count += 1
        gas_used = to_int(receipt.get("gasUsed"))
        self._metrics.record_gas_used(gas_used)

        entry = TransactionHistoryEntry(
            hash=tx_hash,
            receipt=receipt,
            timestamp=self._clock(),
            confirmations=confirmations,
        )
        self._history.appendleft(entry)

        block_number = receipt.get("blockNumber")
        if self._wallet_logger is not None:
            self._wallet_logger.log_transaction_confirmed(
                tx_hash,
                to_int(block_number) if block_number is not None else None,
                confirmations,
                gas_used,
            )
        self.events.emit(WalletEvent.TRANSACTION_ADDED, entry=entry)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        tx_hash = AddressCodec.require_tx_hash(tx_hash)
        provider = self._require_provider()
        try:
            return await provider.request("eth_getTransactionByHash", [tx_hash])
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_getTransactionByHash") from e

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        tx_hash = AddressCodec.require_tx_hash(tx_hash)
        provider = self._require_provider()
        try:
            return await provider.request("eth_getTransactionReceipt", [tx_hash])
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_getTransactionReceipt") from e

    # ------------------------------------------------------------------
    # Replacement
    # ------------------------------------------------------------------

    async def replace_transaction(
        self,
        tx_hash: str,
        action: Union[ReplacementAction, str] = ReplacementAction.SPEED_UP,
        gas_price_multiplier: Union[str, Decimal, float, None] = None,
    ) -> ReplacementResult:
        """
        Speed up or cancel a pending transaction by resubmitting its nonce.

        The new gas price is the old one times the multiplier, floored to
        whole wei.

        Raises:
            TransactionNotFound: The node does not know the transaction
            AlreadyConfirmed: The transaction is already mined
        """
        action = ReplacementAction(action)
        signer = self._require_signer()
        gas_config = self._gas.config
        if gas_price_multiplier is None:
            gas_price_multiplier = gas_config.replacement_multiplier

        tx = await self.get_transaction(tx_hash)
        if not tx:
            raise TransactionNotFound(tx_hash)
        if tx.get("blockNumber") is not None:
            raise AlreadyConfirmed(tx_hash, to_int(tx["blockNumber"]))

        if tx.get("gasPrice") is not None:
            old_gas_price = to_int(tx["gasPrice"])
        else:
            old_gas_price = await self._gas.get_gas_price()
        new_gas_price = scale_wei(old_gas_price, gas_price_multiplier)
        nonce = hex(to_int(tx["nonce"]))

        if action is ReplacementAction.CANCEL:
            request = {
                "from": signer,
                "to": signer,
                "value": "0x0",
                "nonce": nonce,
                "gas": hex(gas_config.cancel_gas_limit),
                "gasPrice": hex(new_gas_price),
            }
        else:
            request = {
                "from": signer,
                "to": tx.get("to"),
                "data": tx.get("input") or tx.get("data") or "0x",
                "value": tx.get("value") or "0x0",
                "nonce": nonce,
                "gasPrice": hex(new_gas_price),
            }
            if tx.get("gas") is not None:
                request["gas"] = tx["gas"]

        logger.info(
            f"Replacing {tx_hash} ({action.value}) at nonce {to_int(nonce)}: "
            f"gas price {old_gas_price} -> {new_gas_price} wei"
        )
        new_hash = await self._submit(request, operation=f"replace_{action.value}")

        return ReplacementResult(
            old_hash=tx_hash.lower(),
            new_hash=new_hash,
            action=action,
            gas_price_wei=new_gas_price,
        )

    # ------------------------------------------------------------------
    # History / metrics
    # ------------------------------------------------------------------

    def get_transaction_history(self, limit: Optional[int] = None) -> List[TransactionHistoryEntry]:
        """Newest-first history, at most `limit` entries (default 50)."""
        if limit is None:
            limit = self._config.default_history_limit
        return list(self._history)[:max(0, limit)]

    def clear_history(self) -> None:
        self._history.clear()
        self.events.emit(WalletEvent.HISTORY_CLEARED)

    def clear_pending(self) -> None:
        self._pending.clear()

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self._metrics
        return {
            "transaction_count": metrics.transaction_count,
            "failed_transactions": metrics.failed_transactions,
            "average_gas_used": metrics.average_gas_used,
            "pending_transactions": len(self._pending),
            "history_size": len(self._history),
            "success_rate": f"{metrics.success_rate:.2f}%",
        }


def _receipt_failed(receipt: Optional[Dict[str, Any]]) -> bool:
    if not receipt:
        return True
    status = receipt.get("status")
    return status is not None and to_int(status) == 0
