"""
Account balance cache.

Balances are cached per (address, chain_id) for a fixed TTL and dropped
wholesale whenever the connection reports an account change, a chain change
or a disconnect.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_abi import decode, encode
from web3 import Web3

from .address import AddressCodec
from .config import BalanceCacheConfig
from .connection import ConnectionState
from .events import EventChannel, Notification, WalletEvent
from .exceptions import WalletError, WalletNotConnected, classify_provider_error
from .provider import PROVIDER_FAILURES, WalletProvider, to_int

logger = logging.getLogger(__name__)

_BALANCE_OF_SELECTOR = Web3.keccak(text="balanceOf(address)")[:4]
_DECIMALS_SELECTOR = Web3.keccak(text="decimals()")[:4]
_SYMBOL_SELECTOR = Web3.keccak(text="symbol()")[:4]
_NAME_SELECTOR = Web3.keccak(text="name()")[:4]


@dataclass(frozen=True)
class BalanceCacheEntry:
    """Cached native balance."""
    amount: str  # decimal string in ether units
    wei: int
    timestamp: float


@dataclass(frozen=True)
class TokenBalance:
    """ERC-20 balance of an account."""
    token_address: str
    balance: str
    raw: int
    decimals: int
    symbol: str
    name: str


@dataclass(frozen=True)
class TokenBalanceResult:
    """Outcome of one read in a multi-token balance query."""
    token_address: str
    balance: Optional[TokenBalance] = None
    error: Optional[WalletError] = None

    @property
    def success(self) -> bool:
        return self.error is None


class BalanceCache:
    """TTL-keyed cache of native balances for the connected account."""

    def __init__(
        self,
        provider: Optional[WalletProvider],
        state: ConnectionState,
        config: Optional[BalanceCacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._state = state
        self._config = config or BalanceCacheConfig()
        self._clock = clock
        self._entries: Dict[Tuple[str, int], BalanceCacheEntry] = {}
        self._prefetch_task: Optional[asyncio.Task] = None
        self.events: EventChannel[WalletEvent] = EventChannel("balance")

    def bind(self, connection_events: EventChannel[WalletEvent]) -> List[Callable[[], None]]:
        """Invalidate on account, chain and disconnect notifications.

        With prefetch enabled, a CONNECTED or ACCOUNT_CHANGED notification also
        starts a background fresh read.
        """
        unsubscribes = [
            connection_events.subscribe(event, self._on_invalidating_event)
            for event in (
                WalletEvent.ACCOUNT_CHANGED,
                WalletEvent.NETWORK_CHANGED,
                WalletEvent.DISCONNECTED,
            )
        ]
        if self._config.prefetch_on_connect:
            unsubscribes.extend(
                connection_events.subscribe(event, self._on_prefetch_event)
                for event in (WalletEvent.CONNECTED, WalletEvent.ACCOUNT_CHANGED)
            )
        return unsubscribes

    def _on_invalidating_event(self, notification: Notification) -> None:
        logger.debug(f"Clearing balance cache on {notification.event.value}")
        self.clear()

    def _on_prefetch_event(self, notification: Notification) -> None:
        self.cancel_prefetch()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, skipping balance prefetch on {notification.event.value}")
            return
        self._prefetch_task = loop.create_task(self._prefetch())

    async def _prefetch(self) -> None:
        try:
            await self.get_balance(fresh=True)
        except WalletError as e:
            # The next foreground read reports the failure
            logger.debug(f"Balance prefetch failed: {e}")

    def cancel_prefetch(self) -> None:
        if self._prefetch_task is not None and not self._prefetch_task.done():
            self._prefetch_task.cancel()
        self._prefetch_task = None

    async def close(self) -> None:
        """Cancel a background prefetch and drop every entry."""
        task = self._prefetch_task
        self.cancel_prefetch()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_balance(self, fresh: bool = False) -> str:
        """
        Get the connected account's native balance in ether units.

        Args:
            fresh: Bypass the cache and read the latest block

        Returns:
            Balance as a decimal string
        """
        if self._provider is None or not self._state.is_connected or not self._state.address:
            raise WalletNotConnected()

        key = (self._state.address, self._state.chain_id or 0)
        cached = self._entries.get(key)
        now = self._clock()
        if not fresh and cached and now - cached.timestamp < self._config.ttl_seconds:
            return cached.amount

        block_tag = "latest" if fresh else "pending"
        try:
            raw = to_int(await self._provider.request("eth_getBalance", [key[0], block_tag]))
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_getBalance") from e

        amount = format_ether(raw)
        if key != (self._state.address, self._state.chain_id or 0):
            # Account or chain changed while the read was in flight
            return amount
        self._entries[key] = BalanceCacheEntry(amount=amount, wei=raw, timestamp=self._clock())
        logger.debug(f"Balance for {key[0]} on chain {key[1]}: {amount}")
        return amount

    def get_cached(self, address: str, chain_id: int) -> Optional[BalanceCacheEntry]:
        return self._entries.get((address, chain_id))

    def clear(self) -> None:
        self._entries.clear()
        self.events.emit(WalletEvent.CACHE_CLEARED)

    async def get_token_balance(
        self,
        token_address: str,
        owner: Optional[str] = None,
    ) -> TokenBalance:
        """Read an ERC-20 balance for the connected (or given) account."""
        if self._provider is None:
            raise WalletNotConnected("Provider not available")

        owner = owner if owner is not None else self._state.address
        owner = AddressCodec.to_checksum(owner, field="owner")
        token = AddressCodec.to_checksum(token_address, field="token_address")

        raw = decode(
            ["uint256"],
            await self._eth_call(token, _BALANCE_OF_SELECTOR + encode(["address"], [owner])),
        )[0]
        decimals = decode(["uint8"], await self._eth_call(token, _DECIMALS_SELECTOR))[0]
        symbol = decode(["string"], await self._eth_call(token, _SYMBOL_SELECTOR))[0]
        name = decode(["string"], await self._eth_call(token, _NAME_SELECTOR))[0]

        return TokenBalance(
            token_address=token,
            balance=format_units(raw, decimals),
            raw=raw,
            decimals=decimals,
            symbol=symbol,
            name=name,
        )

    async def get_multiple_token_balances(
        self,
        token_addresses: List[str],
        owner: Optional[str] = None,
    ) -> List[TokenBalanceResult]:
        """Read several ERC-20 balances concurrently; failures are reported per token."""
        results = await asyncio.gather(
            *(self.get_token_balance(token, owner) for token in token_addresses),
            return_exceptions=True,
        )
        outcome: List[TokenBalanceResult] = []
        for token, result in zip(token_addresses, results):
            if isinstance(result, WalletError):
                logger.debug(f"Token balance read for {token} failed: {result}")
                outcome.append(TokenBalanceResult(token_address=token, error=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome.append(TokenBalanceResult(token_address=token, balance=result))
        return outcome

    async def _eth_call(self, to: str, data: bytes) -> bytes:
        try:
            result = await self._provider.request(
                "eth_call", [{"to": to, "data": Web3.to_hex(data)}, "latest"]
            )
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_call") from e
        return Web3.to_bytes(hexstr=result)


def format_units(raw: Any, decimals: int) -> str:
    """Format an integer amount with the given decimals, without float rounding."""
    with localcontext() as ctx:
        ctx.prec = 80
        value = Decimal(int(raw)).scaleb(-decimals)
        return format(value.normalize(), "f")


def format_ether(wei: Any) -> str:
    return format_units(wei, 18)
