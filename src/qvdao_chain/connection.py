"""
Wallet connection state machine.

Features:
- Connect/disconnect lifecycle with a single in-flight connect attempt
- Bounded retry budget with a cooldown window
- Target network reconciliation before a connection is declared
- Silent session restore and foreground re-verification
- Account/chain/disconnect notifications from the provider

States: DISCONNECTED -> CONNECTING -> CONNECTED, with the side transition
CONNECTED -> NETWORK_MISMATCH -> SWITCHING -> CONNECTED | DISCONNECTED.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .address import AddressCodec
from .config import ConnectionConfig
from .events import EventChannel, Notification, ProviderEvent, WalletEvent
from .exceptions import (
    ProviderUnavailable,
    TooManyAttempts,
    WalletError,
    WalletNotConnected,
    WalletUnavailable,
    WrongNetwork,
    classify_provider_error,
)
from .provider import PROVIDER_FAILURES, WalletProvider, to_int

if TYPE_CHECKING:
    from .event_bridge import EventBridge
    from .network import NetworkManager

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Connection state machine states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    NETWORK_MISMATCH = "network_mismatch"
    SWITCHING = "switching"


@dataclass
class ConnectionState:
    """Connection identity. Mutated only by ConnectionManager."""
    address: Optional[str] = None
    chain_id: Optional[int] = None
    is_connected: bool = False
    is_connecting: bool = False
    connection_attempts: int = 0
    last_connection_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConnectionManager:
    """
    Owns the connect/disconnect state machine for one wallet session.

    Other components read the ConnectionState by reference and observe
    changes through `events`; none of them write to it.
    """

    def __init__(
        self,
        provider: Optional[WalletProvider],
        network: "NetworkManager",
        config: Optional[ConnectionConfig] = None,
        event_bridge: Optional["EventBridge"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._provider = provider
        self._network = network
        self._config = config or ConnectionConfig()
        self._clock = clock
        self._state = ConnectionState()
        self._status = ConnectionStatus.DISCONNECTED
        self.connection_time_ms: float = 0.0
        self.events: EventChannel[WalletEvent] = EventChannel("connection")
        self._bridge_unsubscribes: List[Callable[[], None]] = []
        # Bumped by disconnect(); an in-flight connect or switch that sees a
        # different value on resumption abandons its result
        self._generation = 0

        if event_bridge is not None:
            self.bind(event_bridge)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def address(self) -> Optional[str]:
        return self._state.address

    @property
    def chain_id(self) -> Optional[int]:
        return self._state.chain_id

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def target_chain_id(self) -> int:
        return self._network.target.chain_id

    def require_target_network(self) -> None:
        """Raise WrongNetwork unless connected on the target chain."""
        if self._status in (ConnectionStatus.NETWORK_MISMATCH, ConnectionStatus.SWITCHING):
            raise WrongNetwork(self._state.chain_id, self.target_chain_id)

    def bind(self, event_bridge: "EventBridge") -> None:
        """Consume provider notifications forwarded by the bridge."""
        channel = event_bridge.events
        self._bridge_unsubscribes = [
            channel.subscribe(ProviderEvent.ACCOUNTS_CHANGED, self._on_accounts_changed),
            channel.subscribe(ProviderEvent.CHAIN_CHANGED, self._on_chain_changed),
            channel.subscribe(ProviderEvent.DISCONNECT, self._on_provider_disconnect),
            channel.subscribe(ProviderEvent.MESSAGE, self._on_message),
        ]

    def unbind(self) -> None:
        for unsubscribe in self._bridge_unsubscribes:
            unsubscribe()
        self._bridge_unsubscribes = []

    def is_wallet_available(self) -> bool:
        return self._provider is not None

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Connect to the wallet and reconcile the network.

        Returns:
            True when connected, False when another attempt is in flight or
            the attempt failed (an ERROR notification is emitted)

        Raises:
            WalletUnavailable: No provider is configured
            TooManyAttempts: Retry budget exhausted inside the cooldown window
        """
        start = self._clock()
        state = self._state

        if state.is_connecting or self._status is ConnectionStatus.SWITCHING:
            logger.warning("Connection attempt already in progress")
            return False

        if state.is_connected:
            if self._status is ConnectionStatus.NETWORK_MISMATCH:
                return await self.switch_network()
            logger.info("Already connected")
            return True

        if self._provider is None:
            error = WalletUnavailable(
                "Wallet provider not found. Please install a wallet extension."
            )
            self._emit_error(error)
            raise error

        if state.connection_attempts >= self._config.max_attempts:
            since = start - (state.last_connection_time or 0.0)
            if since < self._config.cooldown_seconds:
                error = TooManyAttempts(
                    attempts=state.connection_attempts,
                    retry_after_seconds=self._config.cooldown_seconds - since,
                )
                self._emit_error(error)
                raise error
            logger.info("Connection cooldown elapsed, resetting attempt counter")
            state.connection_attempts = 0

        state.is_connecting = True
        state.connection_attempts += 1
        state.last_connection_time = start
        self._status = ConnectionStatus.CONNECTING
        generation = self._generation

        try:
            address, chain_id = await self._establish()
        except (WalletError,) + PROVIDER_FAILURES as e:
            state.is_connecting = False
            self._status = ConnectionStatus.DISCONNECTED
            if generation != self._generation:
                logger.info("Connection attempt aborted by disconnect")
                return False
            self._emit_error(classify_provider_error(e))
            return False
        except BaseException:
            state.is_connecting = False
            self._status = ConnectionStatus.DISCONNECTED
            raise

        state.is_connecting = False
        if generation != self._generation:
            self._status = ConnectionStatus.DISCONNECTED
            logger.info("Connection attempt aborted by disconnect")
            return False

        state.address = address
        state.chain_id = chain_id
        state.is_connected = True
        state.connection_attempts = 0
        self._status = ConnectionStatus.CONNECTED
        self.connection_time_ms = (self._clock() - start) * 1000

        logger.info(
            f"Wallet connected: {address} on chain {chain_id} "
            f"in {self.connection_time_ms:.0f}ms"
        )
        self.events.emit(
            WalletEvent.CONNECTED,
            address=address,
            chain_id=chain_id,
            connection_time=self.connection_time_ms,
        )
        return True

    async def _establish(self) -> Tuple[str, int]:
        """Request accounts and reconcile the chain; no state is written here."""
        provider = self._provider
        accounts = await provider.request("eth_requestAccounts")
        if not accounts:
            raise ProviderUnavailable(
                "No accounts returned from provider.",
                method="eth_requestAccounts",
            )

        address = AddressCodec.to_checksum(accounts[0], field="account")
        chain_id = await self._network.get_chain_id()

        if not self._network.is_correct_network(chain_id):
            logger.info(
                f"Wallet on chain {chain_id}, target is {self._network.target.chain_id}"
            )
            self._status = ConnectionStatus.SWITCHING
            await self._network.switch_network()
            chain_id = await self._network.get_chain_id()

        return address, chain_id

    async def switch_network(self) -> bool:
        """
        Bring a connected wallet back onto the target chain.

        Returns:
            True when the wallet reports the target chain, False when a switch
            is already in flight or the switch failed. A failed switch emits
            an ERROR notification and disconnects.

        Raises:
            WalletNotConnected: No wallet is connected
        """
        state = self._state
        if not state.is_connected:
            raise WalletNotConnected()
        if self._status is ConnectionStatus.SWITCHING:
            logger.warning("Network switch already in progress")
            return False
        if self._network.is_correct_network(state.chain_id):
            self._status = ConnectionStatus.CONNECTED
            return True

        self._status = ConnectionStatus.SWITCHING
        generation = self._generation
        try:
            await self._network.switch_network()
            chain_id = await self._network.get_chain_id()
        except (WalletError,) + PROVIDER_FAILURES as e:
            if generation != self._generation:
                return False
            self._emit_error(classify_provider_error(e))
            self.disconnect()
            return False

        if generation != self._generation:
            logger.info("Network switch abandoned after disconnect")
            return False

        self._status = ConnectionStatus.CONNECTED
        if chain_id != state.chain_id:
            # The wallet did not announce the switch with chainChanged
            state.chain_id = chain_id
            self.events.emit(WalletEvent.NETWORK_CHANGED, chain_id=chain_id, is_correct_network=True)
        logger.info(f"Wallet back on target chain {chain_id}")
        return True

    async def check_connection(self) -> bool:
        """Restore an already-authorized session without prompting."""
        if self._provider is None:
            return False
        try:
            accounts = await self._provider.request("eth_accounts")
        except (WalletError,) + PROVIDER_FAILURES as e:
            logger.error(f"check_connection failed: {e}")
            return False
        if accounts:
            return await self.connect()
        return False

    async def verify_connection(self) -> bool:
        """Re-validate accounts and chain against local state."""
        if not self._state.is_connected or self._provider is None:
            return False
        try:
            chain_id = to_int(await self._provider.request("eth_chainId"))
            accounts = await self._provider.request("eth_accounts")
        except (WalletError,) + PROVIDER_FAILURES as e:
            logger.error(f"verify_connection failed: {e}")
            self.disconnect()
            return False

        current = AddressCodec.get_checksum_address(accounts[0]) if accounts else None
        if current is None or current != self._state.address or chain_id != self._state.chain_id:
            logger.warning(
                f"Wallet state changed while away (account={current}, chain={chain_id}), "
                f"disconnecting"
            )
            self.disconnect()
            return False
        return True

    def disconnect(self) -> None:
        """Reset connection identity. Idempotent.

        While a connect is in flight the attempt is aborted instead; the
        connect call itself releases the in-flight marker when it resumes.
        """
        state = self._state
        if state.is_connecting:
            self._generation += 1
            logger.info("Disconnect requested while connecting, aborting the attempt")
            return
        if not state.is_connected and state.address is None:
            return

        # Retry bookkeeping survives a disconnect
        self._generation += 1
        state.address = None
        state.chain_id = None
        state.is_connected = False
        self._status = ConnectionStatus.DISCONNECTED

        logger.info("Wallet disconnected")
        self.events.emit(WalletEvent.DISCONNECTED)

    # ------------------------------------------------------------------
    # Provider notifications
    # ------------------------------------------------------------------

    def _on_accounts_changed(self, notification: Notification) -> None:
        accounts = notification.data.get("accounts") or []
        if not accounts:
            self.disconnect()
            return
        if not self._state.is_connected:
            logger.debug("Ignoring accountsChanged while disconnected")
            return

        address = AddressCodec.get_checksum_address(accounts[0])
        if address is None:
            logger.error(f"Invalid account from provider: {accounts[0]!r}")
            return
        if address != self._state.address:
            self._state.address = address
            logger.info(f"Active account changed to {address}")
            self.events.emit(WalletEvent.ACCOUNT_CHANGED, address=address)

    def _on_chain_changed(self, notification: Notification) -> None:
        raw = notification.data.get("chain_id")
        try:
            chain_id = to_int(raw)
        except (TypeError, ValueError):
            logger.error(f"Invalid chainId from provider: {raw!r}")
            return
        if not self._state.is_connected:
            logger.debug("Ignoring chainChanged while disconnected")
            return

        self._state.chain_id = chain_id
        is_correct = self._network.is_correct_network(chain_id)
        # An in-flight switch settles the status itself
        if self._status is not ConnectionStatus.SWITCHING:
            self._status = ConnectionStatus.CONNECTED if is_correct else ConnectionStatus.NETWORK_MISMATCH
        logger.info(f"Chain changed to {chain_id} (correct network: {is_correct})")
        self.events.emit(
            WalletEvent.NETWORK_CHANGED,
            chain_id=chain_id,
            is_correct_network=is_correct,
        )

    def _on_provider_disconnect(self, notification: Notification) -> None:
        logger.warning(f"Provider disconnected: {notification.data.get('error')}")
        self.disconnect()

    def _on_message(self, notification: Notification) -> None:
        self.events.emit(WalletEvent.MESSAGE, message=notification.data.get("message"))

    def _emit_error(self, error: WalletError) -> None:
        logger.error(f"Wallet error [{error.error_code.value}]: {error.message}")
        self.events.emit(
            WalletEvent.ERROR,
            error=error.message,
            error_code=error.error_code.value,
            exception=error,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_wallet_capabilities(self) -> Dict[str, Any]:
        provider = self._provider
        if provider is None:
            return {"supported": False}
        return {
            "supported": True,
            "metamask": bool(getattr(provider, "is_metamask", False)),
            "coinbase": bool(getattr(provider, "is_coinbase_wallet", False)),
            "trustwallet": bool(getattr(provider, "is_trust", False)),
            "version": getattr(provider, "version", "unknown"),
            "methods": [
                "eth_accounts",
                "eth_requestAccounts",
                "wallet_switchEthereumChain",
                "wallet_addEthereumChain",
                "personal_sign",
                "eth_signTypedData_v4",
            ],
        }

    def get_connection_status(self) -> Dict[str, Any]:
        state = self._state
        return {
            "status": self._status.value,
            "is_connected": state.is_connected,
            "is_connecting": state.is_connecting,
            "address": state.address,
            "chain_id": state.chain_id,
            "network_info": self._network.get_network_info(state.chain_id),
            "wallet_available": self.is_wallet_available(),
            "connection_attempts": state.connection_attempts,
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "address": self._state.address,
            "chain_id": self._state.chain_id,
            "is_connected": self._state.is_connected,
            "last_connection_time": self._state.last_connection_time,
        }

    def import_state(self, data: Dict[str, Any]) -> None:
        """Restore retry bookkeeping from an exported snapshot.

        Identity (address/chain) is only ever established by connect(); a
        snapshot is restored through check_connection().
        """
        if data.get("last_connection_time"):
            self._state.last_connection_time = float(data["last_connection_time"])
