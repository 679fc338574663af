"""
Logging utilities for wallet operations.

Features:
- Connection and transaction lifecycle logging
- Structured payloads passed through `extra=`
- Address masking for shared log sinks
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """Attach a stream handler to the package logger."""
    package_logger = logging.getLogger("qvdao_chain")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        package_logger.addHandler(handler)
    return package_logger


def mask_address(address: Optional[str]) -> Optional[str]:
    """Mask middle portion of address for privacy."""
    if not address or len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


@dataclass
class TransactionLog:
    """Log entry for a submitted transaction."""
    tx_hash: str
    from_address: Optional[str]
    to_address: Optional[str]
    operation: Optional[str]
    submitted_at: float
    status: str = "submitted"
    block_number: Optional[int] = None
    confirmations: int = 0
    gas_used: Optional[int] = None
    gas_price_wei: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self, mask_addresses: bool = False, include_gas_price: bool = True) -> Dict[str, Any]:
        data = {
            "tx_hash": self.tx_hash,
            "from_address": mask_address(self.from_address) if mask_addresses else self.from_address,
            "to_address": mask_address(self.to_address) if mask_addresses else self.to_address,
            "operation": self.operation,
            "submitted_at": self.submitted_at,
            "status": self.status,
            "block_number": self.block_number,
            "confirmations": self.confirmations,
            "gas_used": self.gas_used,
            "error": self.error,
        }
        if include_gas_price:
            data["gas_price_wei"] = self.gas_price_wei
        return data


class WalletLogger:
    """
    Lifecycle logger for wallet sessions.

    Records connection changes and transaction submit/confirm/fail lines at
    the levels configured in LoggingConfig.
    """

    def __init__(
        self,
        name: str = "qvdao_chain.wallet",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._transactions: Dict[str, TransactionLog] = {}
        self._max_history = 1000

    def _get_level(self, level_str: str) -> int:
        return getattr(logging, level_str.upper(), logging.INFO)

    def _address(self, address: Optional[str]) -> Optional[str]:
        return mask_address(address) if self._config.mask_addresses else address

    @staticmethod
    def format_log_data(data: Dict[str, Any]) -> str:
        """Serialize a payload for single-line sinks."""
        def convert(obj):
            if isinstance(obj, Decimal):
                return str(obj)
            if isinstance(obj, Enum):
                return obj.value
            return obj

        return json.dumps({k: convert(v) for k, v in data.items()}, default=str)

    def log_connected(self, address: str, chain_id: int, connection_time_ms: float) -> None:
        self._logger.log(
            self._get_level(self._config.connection_level),
            f"Wallet connected: {self._address(address)} on chain {chain_id} "
            f"in {connection_time_ms:.0f}ms",
            extra={"connection": {"chain_id": chain_id, "connection_time_ms": connection_time_ms}},
        )

    def log_disconnected(self) -> None:
        self._logger.log(self._get_level(self._config.connection_level), "Wallet disconnected")

    def log_account_changed(self, address: str) -> None:
        self._logger.log(
            self._get_level(self._config.connection_level),
            f"Active account changed: {self._address(address)}",
        )

    def log_network_changed(self, chain_id: int, is_correct_network: bool) -> None:
        level = self._config.connection_level if is_correct_network else "WARNING"
        self._logger.log(
            self._get_level(level),
            f"Network changed to {chain_id} (correct network: {is_correct_network})",
        )

    def log_error(self, error_code: str, message: str) -> None:
        self._logger.log(
            self._get_level(self._config.error_level),
            f"Wallet error [{error_code}]: {message}",
            extra={"error": {"error_code": error_code, "message": message}},
        )

    def log_transaction_submitted(
        self,
        tx_hash: str,
        from_address: Optional[str],
        to_address: Optional[str],
        operation: Optional[str] = None,
        gas_price_wei: Optional[int] = None,
    ) -> None:
        """Log transaction submission."""
        entry = TransactionLog(
            tx_hash=tx_hash,
            from_address=from_address,
            to_address=to_address,
            operation=operation,
            submitted_at=time.time(),
            gas_price_wei=gas_price_wei,
        )
        self._transactions[tx_hash] = entry
        if len(self._transactions) > self._max_history:
            oldest = next(iter(self._transactions))
            del self._transactions[oldest]

        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Transaction submitted: {tx_hash}" + (f" ({operation})" if operation else ""),
            extra={"transaction": self._payload(entry)},
        )

    def log_transaction_confirmed(
        self,
        tx_hash: str,
        block_number: Optional[int],
        confirmations: int,
        gas_used: Optional[int],
    ) -> None:
        """Log transaction confirmation."""
        entry = self._transactions.get(tx_hash)
        if entry is not None:
            entry.status = "confirmed"
            entry.block_number = block_number
            entry.confirmations = confirmations
            entry.gas_used = gas_used

        self._logger.log(
            self._get_level(self._config.transaction_level),
            f"Transaction confirmed: {tx_hash} in block {block_number} "
            f"with {confirmations} confirmations",
            extra={"transaction": self._payload(entry) if entry else {}},
        )

    def log_transaction_failed(self, tx_hash: str, error: str) -> None:
        """Log transaction failure."""
        entry = self._transactions.get(tx_hash)
        if entry is not None:
            entry.status = "failed"
            entry.error = error

        self._logger.log(
            self._get_level(self._config.error_level),
            f"Transaction failed: {tx_hash} - {error}",
            extra={"transaction": self._payload(entry) if entry else {}},
        )

    def _payload(self, entry: TransactionLog) -> Dict[str, Any]:
        return entry.to_dict(
            mask_addresses=self._config.mask_addresses,
            include_gas_price=self._config.log_gas_prices,
        )

    def get_transaction_log(self, tx_hash: str) -> Optional[TransactionLog]:
        return self._transactions.get(tx_hash)

    def get_transaction_logs(self, status: Optional[str] = None) -> List[TransactionLog]:
        logs = list(self._transactions.values())
        if status is not None:
            logs = [entry for entry in logs if entry.status == status]
        return logs
