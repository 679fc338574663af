"""
Provider notification and contract log bridge.

Subscribes once to the raw EIP-1193 notifications and re-emits them as typed
ProviderEvent notifications. Also queries and polls governance contract logs.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import EventBridgeConfig
from .contract import GOVERNANCE_EVENTS, ContractEvent, GovernanceContract
from .events import EventChannel, ProviderEvent
from .exceptions import WalletError, WalletUnavailable, classify_provider_error
from .provider import PROVIDER_FAILURES, WalletProvider, to_int

logger = logging.getLogger(__name__)

BlockTag = Union[int, str]


def _block_param(block: BlockTag) -> str:
    return hex(block) if isinstance(block, int) else block


class EventBridge:
    """Forwards provider notifications and contract events to subscribers."""

    def __init__(
        self,
        provider: Optional[WalletProvider],
        config: Optional[EventBridgeConfig] = None,
    ):
        self._provider = provider
        self._config = config or EventBridgeConfig()
        self._attached_to: Optional[WalletProvider] = None
        self._listeners: Dict[str, Any] = {
            ProviderEvent.ACCOUNTS_CHANGED.value: self._handle_accounts_changed,
            ProviderEvent.CHAIN_CHANGED.value: self._handle_chain_changed,
            ProviderEvent.DISCONNECT.value: self._handle_disconnect,
            ProviderEvent.MESSAGE.value: self._handle_message,
        }
        self._watchers: List[asyncio.Task] = []
        self.events: EventChannel[ProviderEvent] = EventChannel("event_bridge")

    @property
    def is_attached(self) -> bool:
        return self._attached_to is not None

    def attach(self) -> bool:
        """Subscribe to the provider's notifications. Idempotent."""
        if self._provider is None:
            return False
        if self._attached_to is self._provider:
            return True
        for name, listener in self._listeners.items():
            self._provider.on(name, listener)
        self._attached_to = self._provider
        logger.debug("Attached provider notification listeners")
        return True

    def detach(self) -> None:
        provider = self._attached_to
        if provider is None:
            return
        for name, listener in self._listeners.items():
            provider.remove_listener(name, listener)
        self._attached_to = None
        logger.debug("Detached provider notification listeners")

    # ------------------------------------------------------------------
    # Provider notifications
    # ------------------------------------------------------------------

    def _handle_accounts_changed(self, accounts: Optional[List[str]] = None) -> None:
        self.events.emit(ProviderEvent.ACCOUNTS_CHANGED, accounts=list(accounts or []))

    def _handle_chain_changed(self, chain_id: Any = None) -> None:
        self.events.emit(ProviderEvent.CHAIN_CHANGED, chain_id=chain_id)

    def _handle_disconnect(self, error: Any = None) -> None:
        self.events.emit(ProviderEvent.DISCONNECT, error=error)

    def _handle_message(self, message: Any = None) -> None:
        self.events.emit(ProviderEvent.MESSAGE, message=message)

    # ------------------------------------------------------------------
    # Contract logs
    # ------------------------------------------------------------------

    def _require_provider(self) -> WalletProvider:
        if self._provider is None:
            raise WalletUnavailable("Provider not available")
        return self._provider

    async def _block_number(self) -> int:
        provider = self._require_provider()
        try:
            return to_int(await provider.request("eth_blockNumber"))
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_blockNumber") from e

    async def _get_logs(
        self,
        contract: GovernanceContract,
        topics: List[Any],
        from_block: BlockTag,
        to_block: BlockTag,
    ) -> List[ContractEvent]:
        provider = self._require_provider()
        params = {
            "address": contract.address,
            "topics": topics,
            "fromBlock": _block_param(from_block),
            "toBlock": _block_param(to_block),
        }
        try:
            logs = await provider.request("eth_getLogs", [params])
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_getLogs") from e

        decoded = []
        for raw in logs or []:
            event = contract.decode_log(raw)
            if event is not None:
                decoded.append(event)
        return decoded

    async def get_contract_events(
        self,
        contract: GovernanceContract,
        event_name: str,
        from_block: Optional[BlockTag] = None,
        to_block: BlockTag = "latest",
    ) -> List[ContractEvent]:
        """
        Query past governance events.

        Args:
            contract: Governance contract adapter
            event_name: Event to query, e.g. "ProposalCreated"
            from_block: First block (default: the last 1000 blocks)
            to_block: Last block or tag
        """
        topic = contract.event_topic(event_name)
        if from_block is None:
            current = await self._block_number()
            from_block = max(0, current - self._config.default_lookback_blocks)
        return await self._get_logs(contract, [topic], from_block, to_block)

    def watch_contract_events(
        self,
        contract: GovernanceContract,
        event_names: Optional[Iterable[str]] = None,
        poll_interval: Optional[float] = None,
    ) -> asyncio.Task:
        """Start polling for new governance events, emitted as CONTRACT_EVENT."""
        names = list(event_names) if event_names is not None else list(GOVERNANCE_EVENTS)
        topics = [contract.event_topic(name) for name in names]
        interval = poll_interval if poll_interval is not None else self._config.log_poll_interval_seconds

        task = asyncio.create_task(self._poll_logs(contract, topics, interval))
        self._watchers.append(task)
        task.add_done_callback(self._on_watcher_done)
        logger.info(f"Watching {', '.join(names)} on {contract.address}")
        return task

    def _on_watcher_done(self, task: asyncio.Task) -> None:
        if task in self._watchers:
            self._watchers.remove(task)

    async def _poll_logs(
        self,
        contract: GovernanceContract,
        topics: List[str],
        interval: float,
    ) -> None:
        last_block = await self._block_number()
        while True:
            await asyncio.sleep(interval)
            try:
                current = await self._block_number()
                if current <= last_block:
                    continue
                events = await self._get_logs(contract, [topics], last_block + 1, current)
                last_block = current
            except WalletUnavailable:
                raise
            except WalletError as e:
                logger.warning(f"Contract log poll failed: {e}")
                continue

            for event in events:
                self.events.emit(ProviderEvent.CONTRACT_EVENT, event=event)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    async def stop_watchers(self) -> None:
        watchers = list(self._watchers)
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        self._watchers.clear()

    async def cleanup(self) -> None:
        """Stop watchers, remove provider listeners and all subscribers."""
        await self.stop_watchers()
        self.detach()
        self.events.clear()
