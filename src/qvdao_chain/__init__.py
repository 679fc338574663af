"""Wallet connection and transaction lifecycle client exports."""

from .address import AddressCodec, ZERO_ADDRESS
from .balance import (
    BalanceCache,
    BalanceCacheEntry,
    TokenBalance,
    TokenBalanceResult,
    format_ether,
    format_units,
)
from .config import (
    CORE_TESTNET2,
    GovernanceLimitsConfig,
    NativeCurrency,
    NetworkTarget,
    QVDaoChainConfig,
    build_default_config,
    get_config,
    set_config,
)
from .connection import ConnectionManager, ConnectionState, ConnectionStatus
from .contract import (
    ContractEvent,
    DaoAnalytics,
    DelegationInfo,
    GovernanceContract,
    MemberInfo,
    ProposalInfo,
    ProposalStatus,
)
from .event_bridge import EventBridge
from .events import EventChannel, Notification, ProviderEvent, WalletEvent
from .exceptions import (
    AlreadyConfirmed,
    ConfirmationTimeout,
    ErrorCode,
    InvalidAddress,
    InvalidHash,
    InvalidInput,
    NetworkAddRejected,
    NetworkSwitchTimeout,
    ProviderUnavailable,
    TooManyAttempts,
    TransactionNotFound,
    TransactionReverted,
    UnpredictableGas,
    UserRejected,
    WalletError,
    WalletLocked,
    WalletNotConnected,
    WalletUnavailable,
    WrongNetwork,
    classify_provider_error,
)
from .gas import GasEstimate, GasEstimator, GasPriceTiers, TransactionCost, scale_wei
from .logging_utils import WalletLogger, mask_address, setup_logging
from .network import NetworkManager
from .provider import HTTPWalletProvider, ProviderRPCError, WalletProvider
from .session import WalletSession
from .transactions import (
    PendingTransaction,
    ReplacementAction,
    ReplacementResult,
    TransactionHistoryEntry,
    TransactionMetrics,
    TransactionMonitor,
    TransactionStatus,
)

__all__ = [
    "AddressCodec",
    "ZERO_ADDRESS",
    "BalanceCache",
    "BalanceCacheEntry",
    "TokenBalance",
    "TokenBalanceResult",
    "format_ether",
    "format_units",
    "CORE_TESTNET2",
    "GovernanceLimitsConfig",
    "NativeCurrency",
    "NetworkTarget",
    "QVDaoChainConfig",
    "build_default_config",
    "get_config",
    "set_config",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "ContractEvent",
    "DaoAnalytics",
    "DelegationInfo",
    "GovernanceContract",
    "MemberInfo",
    "ProposalInfo",
    "ProposalStatus",
    "EventBridge",
    "EventChannel",
    "Notification",
    "ProviderEvent",
    "WalletEvent",
    "AlreadyConfirmed",
    "ConfirmationTimeout",
    "ErrorCode",
    "InvalidAddress",
    "InvalidHash",
    "InvalidInput",
    "NetworkAddRejected",
    "NetworkSwitchTimeout",
    "ProviderUnavailable",
    "TooManyAttempts",
    "TransactionNotFound",
    "TransactionReverted",
    "UnpredictableGas",
    "UserRejected",
    "WalletError",
    "WalletLocked",
    "WalletNotConnected",
    "WalletUnavailable",
    "WrongNetwork",
    "classify_provider_error",
    "GasEstimate",
    "GasEstimator",
    "GasPriceTiers",
    "TransactionCost",
    "scale_wei",
    "WalletLogger",
    "mask_address",
    "setup_logging",
    "NetworkManager",
    "HTTPWalletProvider",
    "ProviderRPCError",
    "WalletProvider",
    "WalletSession",
    "PendingTransaction",
    "ReplacementAction",
    "ReplacementResult",
    "TransactionHistoryEntry",
    "TransactionMetrics",
    "TransactionMonitor",
    "TransactionStatus",
]
