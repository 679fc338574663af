"""
Pytest configuration for qvdao-chain tests.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

from qvdao_chain.config import (  # noqa: E402
    CORE_TESTNET2,
    NetworkSwitchConfig,
    QVDaoChainConfig,
    TransactionMonitorConfig,
    set_config,
)
from qvdao_chain.provider import ProviderRPCError, WalletProvider, to_int  # noqa: E402

ACCOUNT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
OTHER_ACCOUNT = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
CONTRACT = "0xFFBf051CaD6374c7d2A7C1D0Fff510daD95874bC"
TX_HASH = "0x" + "ab" * 32


class FakeWalletProvider(WalletProvider):
    """
    Scripted in-memory EIP-1193 wallet.

    - `responses[method]` fixes a result
    - `errors[method]` raises on every call
    - `handlers[method]` computes a result from params (may be async)
    - `gate` blocks eth_requestAccounts until set
    """

    is_metamask = True
    version = "fake-1.0"

    def __init__(
        self,
        accounts: Optional[List[str]] = None,
        chain_id: int = CORE_TESTNET2.chain_id,
        known_chains: Optional[List[int]] = None,
    ):
        self.accounts = list(accounts) if accounts is not None else [ACCOUNT]
        self.chain_id = chain_id
        self.known_chains = set(known_chains or [chain_id])
        self.added_chains: List[Dict[str, Any]] = []
        self.calls: List[Tuple[str, List[Any]]] = []
        self.responses: Dict[str, Any] = {}
        self.errors: Dict[str, BaseException] = {}
        self.handlers: Dict[str, Callable[[List[Any]], Any]] = {}
        self.gate: Optional[asyncio.Event] = None
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        params = list(params or [])
        self.calls.append((method, params))

        if method in self.errors:
            raise self.errors[method]
        if method in self.handlers:
            result = self.handlers[method](params)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        if method in self.responses:
            return self.responses[method]

        if method == "eth_requestAccounts":
            if self.gate is not None:
                await self.gate.wait()
            return list(self.accounts)
        if method == "eth_accounts":
            return list(self.accounts)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "wallet_switchEthereumChain":
            target = to_int(params[0]["chainId"])
            if target not in self.known_chains:
                raise ProviderRPCError(4902, f"Unrecognized chain ID {hex(target)}")
            self.chain_id = target
            self.emit("chainChanged", hex(target))
            return None
        if method == "wallet_addEthereumChain":
            self.added_chains.append(params[0])
            self.known_chains.add(to_int(params[0]["chainId"]))
            return None

        raise ProviderRPCError(-32601, f"Method {method} not supported")

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def params_for(self, method: str) -> List[List[Any]]:
        return [params for name, params in self.calls if name == method]

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(*args)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))


@pytest.fixture
def provider():
    """Wallet already on the target chain with one account."""
    return FakeWalletProvider()


@pytest.fixture
def target():
    return CORE_TESTNET2


@pytest.fixture
def fast_switch_config():
    """Network switch polling without real delays."""
    return NetworkSwitchConfig(max_attempts=3, delay_seconds=0)


@pytest.fixture
def fast_tx_config():
    """Confirmation polling with short intervals."""
    return TransactionMonitorConfig(
        receipt_poll_interval_seconds=0.01,
        progress_poll_interval_seconds=0.01,
    )


@pytest.fixture
def chain_config(fast_switch_config, fast_tx_config):
    config = QVDaoChainConfig(
        network=CORE_TESTNET2,
        contract_address=CONTRACT,
        network_switch=fast_switch_config,
        transactions=fast_tx_config,
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return TX_HASH
