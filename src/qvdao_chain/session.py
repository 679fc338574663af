"""
Wallet session.

Explicitly constructed owner of the provider, configuration and every
component. Wires notification channels between them and tears everything
down on close().

Usage:
    session = WalletSession(provider=provider)
    if await session.connect():
        tx_hash = await session.cast_vote(proposal_id=1, credits=4, support=True)
        receipt = await session.wait_for_transaction(tx_hash)
    await session.close()
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .address import AddressCodec
from .balance import BalanceCache, TokenBalanceResult
from .config import QVDaoChainConfig, get_config
from .connection import ConnectionManager
from .contract import ContractEvent, DaoAnalytics, DelegationInfo, GovernanceContract, ProposalInfo
from .event_bridge import EventBridge
from .events import Notification, WalletEvent
from .exceptions import (
    USER_REJECTED_CODE,
    UserRejected,
    WalletNotConnected,
    WalletUnavailable,
    classify_provider_error,
)
from .gas import GasEstimator
from .logging_utils import WalletLogger
from .network import NetworkManager
from .provider import PROVIDER_FAILURES, HTTPWalletProvider, ProviderRPCError, WalletProvider
from .transactions import ProgressCallback, TransactionMonitor

logger = logging.getLogger(__name__)

_EIP712_DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)


class WalletSession:
    """One wallet session and all of its components."""

    def __init__(
        self,
        config: Optional[QVDaoChainConfig] = None,
        provider: Optional[WalletProvider] = None,
        owns_provider: bool = False,
    ):
        self.config = config or get_config()
        self.provider = provider
        self._owns_provider = owns_provider
        self._closed = False

        self.wallet_logger = WalletLogger(config=self.config.logging)
        self.event_bridge = EventBridge(provider, self.config.event_bridge)
        self.network = NetworkManager(provider, self.config.network, self.config.network_switch)
        self.connection = ConnectionManager(
            provider,
            self.network,
            self.config.connection,
            event_bridge=self.event_bridge,
        )
        self.gas = GasEstimator(provider, self.config.gas_estimation)
        self.balances = BalanceCache(provider, self.connection.state, self.config.balance_cache)
        self.transactions = TransactionMonitor(
            provider,
            self.connection,
            self.gas,
            self.config.transactions,
            wallet_logger=self.wallet_logger,
        )
        self.contract: Optional[GovernanceContract] = None
        if self.config.contract_address:
            self.contract = GovernanceContract(
                self.config.contract_address,
                provider,
                limits=self.config.governance_limits,
            )

        self._unsubscribes: List[Callable[[], None]] = self.balances.bind(self.connection.events)
        self._unsubscribes.append(
            self.connection.events.subscribe(WalletEvent.DISCONNECTED, self._on_disconnected)
        )
        self._unsubscribes.append(self.connection.events.subscribe(None, self._log_connection_event))
        self.event_bridge.attach()

    @classmethod
    def from_private_key(
        cls,
        private_key: str,
        config: Optional[QVDaoChainConfig] = None,
    ) -> "WalletSession":
        """Build a session signing locally against the configured RPC node."""
        config = config or get_config()
        provider = HTTPWalletProvider.from_private_key(
            config.network.rpc_url,
            private_key,
            networks={config.network.chain_id: config.network.rpc_url},
            timeout_seconds=config.http_timeout_seconds,
        )
        return cls(config=config, provider=provider, owns_provider=True)

    async def __aenter__(self) -> "WalletSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Notification wiring
    # ------------------------------------------------------------------

    def _on_disconnected(self, notification: Notification) -> None:
        self.transactions.clear_history()

    def _log_connection_event(self, notification: Notification) -> None:
        data = notification.data
        event = notification.event
        if event is WalletEvent.CONNECTED:
            self.wallet_logger.log_connected(data["address"], data["chain_id"], data["connection_time"])
        elif event is WalletEvent.DISCONNECTED:
            self.wallet_logger.log_disconnected()
        elif event is WalletEvent.ACCOUNT_CHANGED:
            self.wallet_logger.log_account_changed(data["address"])
        elif event is WalletEvent.NETWORK_CHANGED:
            self.wallet_logger.log_network_changed(data["chain_id"], data["is_correct_network"])
        elif event is WalletEvent.ERROR:
            self.wallet_logger.log_error(data["error_code"], data["error"])

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def address(self) -> Optional[str]:
        return self.connection.address

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    async def connect(self) -> bool:
        return await self.connection.connect()

    async def switch_network(self) -> bool:
        """Move a connected wallet back onto the target chain."""
        return await self.connection.switch_network()

    async def check_connection(self) -> bool:
        return await self.connection.check_connection()

    async def verify_connection(self) -> bool:
        return await self.connection.verify_connection()

    def disconnect(self) -> None:
        self.connection.disconnect()

    async def get_balance(self, fresh: bool = False) -> str:
        return await self.balances.get_balance(fresh=fresh)

    async def get_multiple_token_balances(
        self,
        token_addresses: List[str],
        owner: Optional[str] = None,
    ) -> List[TokenBalanceResult]:
        return await self.balances.get_multiple_token_balances(token_addresses, owner)

    def clear_caches(self) -> None:
        self.balances.clear()

    # ------------------------------------------------------------------
    # Chain reads
    # ------------------------------------------------------------------

    async def get_block_number(self) -> int:
        return await self.network.get_block_number()

    async def get_block(
        self,
        block_number: Union[int, str] = "latest",
        include_transactions: bool = False,
    ) -> Optional[Dict[str, Any]]:
        return await self.network.get_block(block_number, include_transactions)

    async def is_contract(self, address: str) -> bool:
        return await self.network.is_contract(address)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _require_provider(self) -> WalletProvider:
        if self.provider is None:
            raise WalletUnavailable("Provider not available")
        return self.provider

    def _require_signer(self) -> str:
        if not self.connection.is_connected or self.connection.address is None:
            raise WalletNotConnected("Signer not available")
        return self.connection.address

    async def _sign_request(self, method: str, params: List[Any]) -> str:
        provider = self._require_provider()
        try:
            return await provider.request(method, params)
        except ProviderRPCError as e:
            if e.code == USER_REJECTED_CODE:
                raise UserRejected("Signature rejected by user") from e
            raise classify_provider_error(e, method=method) from e
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method=method) from e

    async def sign_message(self, message: str) -> str:
        """Sign a text message with personal_sign."""
        if not isinstance(message, str):
            raise TypeError("Message must be a string")
        signer = self._require_signer()
        return await self._sign_request("personal_sign", [Web3.to_hex(text=message), signer])

    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        value: Dict[str, Any],
        primary_type: Optional[str] = None,
    ) -> str:
        """Sign EIP-712 structured data with eth_signTypedData_v4."""
        signer = self._require_signer()
        if primary_type is None:
            primary_type = next(name for name in types if name != "EIP712Domain")

        all_types = dict(types)
        all_types.setdefault(
            "EIP712Domain",
            [{"name": name, "type": kind} for name, kind in _EIP712_DOMAIN_FIELDS if name in domain],
        )
        typed_data = {
            "types": all_types,
            "domain": domain,
            "primaryType": primary_type,
            "message": value,
        }
        return await self._sign_request("eth_signTypedData_v4", [signer, json.dumps(typed_data)])

    @staticmethod
    def verify_message(message: str, signature: str) -> str:
        """Recover the checksummed signer of a personal_sign signature."""
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        return AddressCodec.to_checksum(recovered)

    # ------------------------------------------------------------------
    # Governance writes
    # ------------------------------------------------------------------

    def _require_contract(self) -> GovernanceContract:
        if self.contract is None:
            raise ValueError("No governance contract address configured")
        return self.contract

    async def _send_contract_transaction(self, descriptor: Dict[str, Any], operation: str) -> str:
        signer = self._require_signer()
        self.connection.require_target_network()
        tx = dict(descriptor)
        tx["from"] = signer
        estimate = await self.gas.estimate_gas(tx)
        tx["gas"] = hex(estimate.with_buffer)
        tx_hash = await self.transactions.send_transaction(tx, operation=operation)
        logger.info(f"{operation} submitted: {tx_hash}")
        return tx_hash

    async def join_dao(self, stake_wei: int) -> str:
        contract = self._require_contract()
        return await self._send_contract_transaction(contract.join_dao(stake_wei), "join_dao")

    async def create_proposal(self, title: str, description: str) -> str:
        contract = self._require_contract()
        return await self._send_contract_transaction(
            contract.create_proposal(title, description), "create_proposal"
        )

    async def cast_vote(self, proposal_id: int, credits: int, support: bool) -> str:
        contract = self._require_contract()
        return await self._send_contract_transaction(
            contract.cast_quadratic_vote(proposal_id, credits, support), "cast_vote"
        )

    async def delegate(self, delegate_address: str) -> str:
        contract = self._require_contract()
        return await self._send_contract_transaction(contract.delegate(delegate_address), "delegate")

    # ------------------------------------------------------------------
    # Governance reads
    # ------------------------------------------------------------------

    async def get_proposal(self, proposal_id: int) -> ProposalInfo:
        return await self._require_contract().get_proposal(proposal_id)

    async def get_proposals(self) -> List[ProposalInfo]:
        return await self._require_contract().get_proposals()

    async def get_delegation_info(self, address: Optional[str] = None) -> DelegationInfo:
        """Delegation state of the given address, or of the connected account."""
        if address is None:
            address = self._require_signer()
        return await self._require_contract().get_delegation_info(address)

    async def get_analytics(self) -> DaoAnalytics:
        return await self._require_contract().get_analytics()

    def parse_receipt_logs(self, receipt: Optional[Dict[str, Any]]) -> List[ContractEvent]:
        return self._require_contract().parse_receipt_logs(receipt)

    async def wait_for_transaction(
        self,
        tx_hash: str,
        required_confirmations: int = 1,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        return await self.transactions.wait_for_transaction(
            tx_hash,
            required_confirmations=required_confirmations,
            timeout=timeout,
            on_progress=on_progress,
        )

    # ------------------------------------------------------------------
    # Status / teardown
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.transactions.get_metrics()
        metrics["cache_size"] = len(self.balances)
        metrics["connection_time_ms"] = self.connection.connection_time_ms
        return metrics

    async def close(self) -> None:
        """Stop watchers, drop subscriptions, disconnect and clear all state."""
        if self._closed:
            return
        self._closed = True

        await self.balances.close()
        await self.event_bridge.cleanup()
        self.connection.unbind()
        self.connection.disconnect()
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

        self.balances.clear()
        self.transactions.clear_history()
        self.transactions.clear_pending()

        if self._owns_provider and isinstance(self.provider, HTTPWalletProvider):
            await self.provider.close()
        logger.info("Wallet session closed")
