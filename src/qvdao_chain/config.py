"""
Configuration management for qvdao-chain.

Provides centralized configuration for:
- The single target network the wallet must operate on
- Connection retry budget
- Network switch polling
- Gas estimation buffers and price tiers
- Transaction confirmation timeouts and history bounds
- Balance cache TTL
- Governance call input bounds
- Logging configuration
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "QVDAO_CHAIN_"


@dataclass(frozen=True)
class NativeCurrency:
    """Native currency metadata registered with the wallet."""
    name: str = "CORE"
    symbol: str = "CORE"
    decimals: int = 18

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "symbol": self.symbol, "decimals": self.decimals}


@dataclass(frozen=True)
class NetworkTarget:
    """The one chain the client is allowed to operate on."""
    chain_id: int
    name: str
    rpc_url: str
    explorer_url: str = ""
    native_currency: NativeCurrency = field(default_factory=NativeCurrency)

    @property
    def hex_chain_id(self) -> str:
        return hex(self.chain_id)


@dataclass
class ConnectionConfig:
    """Configuration for the connect retry budget."""
    max_attempts: int = 3
    cooldown_seconds: float = 60.0


@dataclass
class NetworkSwitchConfig:
    """Configuration for waiting on a wallet network switch."""
    max_attempts: int = 12
    delay_seconds: float = 0.5


@dataclass
class GasEstimationConfig:
    """Configuration for gas estimation."""
    # Buffer settings
    buffer_percent: int = 20  # Add 20% to estimated gas

    # Multipliers over the node gas price, kept as strings for exact ratios
    tier_multipliers: Dict[str, str] = field(default_factory=lambda: {
        "slow": "0.9",
        "standard": "1.0",
        "fast": "1.2",
        "instant": "1.5",
    })
    default_speed: str = "standard"

    # Replacement transactions
    replacement_multiplier: Decimal = Decimal("1.2")
    cancel_gas_limit: int = 21_000


@dataclass
class TransactionMonitorConfig:
    """Configuration for transaction confirmation tracking."""
    default_timeout_seconds: float = 30.0
    receipt_poll_interval_seconds: float = 1.0
    progress_poll_interval_seconds: float = 1.5
    history_size: int = 100
    default_history_limit: int = 50

    # Per-operation confirmation timeouts
    operation_timeouts: Dict[str, float] = field(default_factory=lambda: {
        "join_dao": 60.0,
        "create_proposal": 45.0,
        "cast_vote": 30.0,
        "delegate": 30.0,
    })

    def timeout_for(self, operation: Optional[str]) -> float:
        """Get the confirmation timeout for a named contract operation."""
        if operation is None:
            return self.default_timeout_seconds
        return self.operation_timeouts.get(operation, self.default_timeout_seconds)


@dataclass
class BalanceCacheConfig:
    """Configuration for the balance cache."""
    ttl_seconds: float = 30.0
    # Read the balance in the background once a connection is established
    prefetch_on_connect: bool = True


@dataclass
class GovernanceLimitsConfig:
    """Local bounds checked before a governance call reaches the wallet."""
    min_membership_fee_wei: int = 10**16  # 0.01 CORE
    max_membership_fee_wei: int = 10 * 10**18
    title_min_length: int = 3
    title_max_length: int = 100
    description_min_length: int = 10
    description_max_length: int = 2000
    min_vote_credits: int = 1
    max_vote_credits: int = 100


@dataclass
class EventBridgeConfig:
    """Configuration for contract log polling."""
    log_poll_interval_seconds: float = 5.0
    default_lookback_blocks: int = 1000


@dataclass
class LoggingConfig:
    """Configuration for wallet operation logging."""
    connection_level: str = "INFO"
    transaction_level: str = "INFO"
    error_level: str = "ERROR"

    # Sensitive data handling
    mask_addresses: bool = False
    log_gas_prices: bool = True


@dataclass
class QVDaoChainConfig:
    """
    Master configuration for qvdao-chain.

    Supports loading from environment variables with prefix QVDAO_CHAIN_.
    """
    network: NetworkTarget
    contract_address: str = ""

    # Component configurations
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    network_switch: NetworkSwitchConfig = field(default_factory=NetworkSwitchConfig)
    gas_estimation: GasEstimationConfig = field(default_factory=GasEstimationConfig)
    transactions: TransactionMonitorConfig = field(default_factory=TransactionMonitorConfig)
    balance_cache: BalanceCacheConfig = field(default_factory=BalanceCacheConfig)
    governance_limits: GovernanceLimitsConfig = field(default_factory=GovernanceLimitsConfig)
    event_bridge: EventBridgeConfig = field(default_factory=EventBridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Global settings
    http_timeout_seconds: float = 30.0


def _get_env(key: str, default: Any = None, prefix: str = ENV_PREFIX) -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {ENV_PREFIX}{key}={value!r}")
        return default


def _get_env_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {ENV_PREFIX}{key}={value!r}")
        return default


# Core Testnet 2, the chain the governance contract is deployed on
CORE_TESTNET2 = NetworkTarget(
    chain_id=1115,
    name="Core Testnet 2",
    rpc_url="https://rpc.test2.btcs.network",
    explorer_url="https://scan.test2.btcs.network",
    native_currency=NativeCurrency(name="CORE", symbol="CORE", decimals=18),
)

DEFAULT_CONTRACT_ADDRESS = "0xFFBf051CaD6374c7d2A7C1D0Fff510daD95874bC"


def build_default_config() -> QVDaoChainConfig:
    """Build default configuration with environment variable overrides."""
    network = NetworkTarget(
        chain_id=_get_env_int("CHAIN_ID", CORE_TESTNET2.chain_id),
        name=_get_env("NETWORK_NAME", CORE_TESTNET2.name),
        rpc_url=_get_env("RPC_URL", CORE_TESTNET2.rpc_url),
        explorer_url=_get_env("EXPLORER_URL", CORE_TESTNET2.explorer_url),
        native_currency=NativeCurrency(
            name=_get_env("CURRENCY_NAME", CORE_TESTNET2.native_currency.name),
            symbol=_get_env("CURRENCY_SYMBOL", CORE_TESTNET2.native_currency.symbol),
            decimals=_get_env_int("CURRENCY_DECIMALS", CORE_TESTNET2.native_currency.decimals),
        ),
    )

    return QVDaoChainConfig(
        network=network,
        contract_address=_get_env("CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
        connection=ConnectionConfig(
            max_attempts=_get_env_int("MAX_CONNECTION_ATTEMPTS", 3),
            cooldown_seconds=_get_env_float("CONNECTION_COOLDOWN_SECONDS", 60.0),
        ),
        balance_cache=BalanceCacheConfig(
            ttl_seconds=_get_env_float("BALANCE_TTL_SECONDS", 30.0),
        ),
        http_timeout_seconds=_get_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
    )


# Global configuration instance
_global_config: Optional[QVDaoChainConfig] = None


def get_config() -> QVDaoChainConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[QVDaoChainConfig]) -> None:
    """Set (or reset, with None) the global configuration instance."""
    global _global_config
    _global_config = config
