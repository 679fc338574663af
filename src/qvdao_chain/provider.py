"""
Wallet provider boundary.

Features:
- EIP-1193 shaped provider port (request + notification subscription)
- Typed provider RPC errors carrying the numeric error code
- HTTP provider backed by a JSON-RPC node and a local signing account,
  used when the client runs server side without a browser wallet
"""
from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .exceptions import UNRECOGNIZED_CHAIN_CODE

logger = logging.getLogger(__name__)

ProviderListener = Callable[..., Any]

# Notification names emitted by EIP-1193 providers
PROVIDER_NOTIFICATIONS = ("accountsChanged", "chainChanged", "disconnect", "message")

UNAUTHORIZED_CODE = 4100


class ProviderRPCError(Exception):
    """Error returned by a wallet provider or JSON-RPC node."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


# Failures a provider call may raise before classification
PROVIDER_FAILURES = (ProviderRPCError, httpx.HTTPError)


class WalletProvider(ABC):
    """Abstract interface for EIP-1193 wallet providers."""

    is_metamask: bool = False
    is_coinbase_wallet: bool = False
    is_trust: bool = False
    version: str = "unknown"

    @abstractmethod
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Send a JSON-RPC request through the wallet."""
        pass

    @abstractmethod
    def on(self, event: str, listener: ProviderListener) -> None:
        """Subscribe to a provider notification."""
        pass

    @abstractmethod
    def remove_listener(self, event: str, listener: ProviderListener) -> None:
        """Remove a previously registered listener."""
        pass


def to_int(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string or int)."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Cannot parse quantity: {value!r}")


class HTTPWalletProvider(WalletProvider):
    """
    Wallet provider over a JSON-RPC node with a local signing account.

    Account requests return the configured account, signing methods are served
    locally with eth_account, and every other method is forwarded to the node.
    Network switching is limited to chains registered through
    wallet_addEthereumChain or the constructor.
    """

    def __init__(
        self,
        rpc_url: str,
        account: Optional[LocalAccount] = None,
        networks: Optional[Dict[int, str]] = None,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc_url = rpc_url
        self._account = account
        self._networks: Dict[int, str] = dict(networks or {})
        self._timeout = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._request_id = 0
        self._chain_id: Optional[int] = None
        self._listeners: Dict[str, List[ProviderListener]] = {}

    @classmethod
    def from_private_key(
        cls,
        rpc_url: str,
        private_key: str,
        **kwargs: Any,
    ) -> "HTTPWalletProvider":
        """Build a provider signing with the given private key."""
        return cls(rpc_url, account=Account.from_key(private_key), **kwargs)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def _call(self, method: str, params: List[Any]) -> Any:
        """Forward a JSON-RPC call to the node."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        client = await self._get_client()
        start_time = time.time()
        response = await client.post(
            self._rpc_url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        latency_ms = (time.time() - start_time) * 1000
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"]
            logger.debug(f"RPC {method} returned error {error} in {latency_ms:.0f}ms")
            raise ProviderRPCError(
                code=error.get("code", -32000),
                message=error.get("message", str(error)),
                data=error.get("data"),
            )

        logger.debug(f"RPC {method} to {self._rpc_url} succeeded in {latency_ms:.0f}ms")
        return result.get("result")

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        params = list(params or [])

        if method in ("eth_requestAccounts", "eth_accounts"):
            if self._account is None:
                if method == "eth_requestAccounts":
                    raise ProviderRPCError(UNAUTHORIZED_CODE, "No signing account configured")
                return []
            return [self._account.address]

        if method == "eth_chainId":
            return hex(await self._get_chain_id())

        if method == "wallet_switchEthereumChain":
            return await self._switch_chain(to_int(params[0]["chainId"]))

        if method == "wallet_addEthereumChain":
            return self._add_chain(params[0])

        if method == "eth_sendTransaction":
            return await self._send_transaction(params[0])

        if method == "personal_sign":
            account = self._require_account()
            signed = account.sign_message(encode_defunct(hexstr=params[0]))
            return Web3.to_hex(signed.signature)

        if method == "eth_signTypedData_v4":
            account = self._require_account()
            typed_data = params[1]
            if isinstance(typed_data, str):
                typed_data = json.loads(typed_data)
            signed = account.sign_typed_data(full_message=typed_data)
            return Web3.to_hex(signed.signature)

        return await self._call(method, params)

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise ProviderRPCError(UNAUTHORIZED_CODE, "No signing account configured")
        return self._account

    async def _get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = to_int(await self._call("eth_chainId", []))
        return self._chain_id

    async def _switch_chain(self, chain_id: int) -> None:
        current = await self._get_chain_id()
        if chain_id == current:
            return None

        rpc_url = self._networks.get(chain_id)
        if rpc_url is None:
            raise ProviderRPCError(
                UNRECOGNIZED_CHAIN_CODE,
                f"Unrecognized chain ID {hex(chain_id)}. Try adding the chain first.",
            )

        self._rpc_url = rpc_url
        self._chain_id = None
        observed = await self._get_chain_id()
        logger.info(f"Switched provider to chain {observed} at {rpc_url}")
        self.emit("chainChanged", hex(observed))
        return None

    def _add_chain(self, chain: Dict[str, Any]) -> None:
        rpc_urls = chain.get("rpcUrls") or []
        if not rpc_urls:
            raise ProviderRPCError(-32602, "rpcUrls is required")
        chain_id = to_int(chain["chainId"])
        self._networks[chain_id] = rpc_urls[0]
        logger.info(f"Registered chain {chain_id} ({chain.get('chainName')}) at {rpc_urls[0]}")
        return None

    async def _send_transaction(self, tx: Dict[str, Any]) -> str:
        account = self._require_account()
        sender = tx.get("from")
        if sender and sender.lower() != account.address.lower():
            raise ProviderRPCError(UNAUTHORIZED_CODE, f"Account {sender} is not available")

        unsigned: Dict[str, Any] = {
            "chainId": await self._get_chain_id(),
            "value": to_int(tx.get("value", 0)),
            "data": tx.get("data") or tx.get("input") or "0x",
        }
        if tx.get("to"):
            unsigned["to"] = Web3.to_checksum_address(tx["to"])

        if tx.get("nonce") is not None:
            unsigned["nonce"] = to_int(tx["nonce"])
        else:
            unsigned["nonce"] = to_int(
                await self._call("eth_getTransactionCount", [account.address, "pending"])
            )

        if tx.get("gasPrice") is not None:
            unsigned["gasPrice"] = to_int(tx["gasPrice"])
        else:
            unsigned["gasPrice"] = to_int(await self._call("eth_gasPrice", []))

        if tx.get("gas") is not None:
            unsigned["gas"] = to_int(tx["gas"])
        else:
            estimate_params = {k: v for k, v in tx.items() if k in ("to", "data", "value")}
            estimate_params["from"] = account.address
            unsigned["gas"] = to_int(await self._call("eth_estimateGas", [estimate_params]))

        signed = account.sign_transaction(unsigned)
        return await self._call("eth_sendRawTransaction", [Web3.to_hex(signed.raw_transaction)])

    def on(self, event: str, listener: ProviderListener) -> None:
        self._listeners.setdefault(event, [])
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: ProviderListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, *args: Any) -> None:
        """Deliver a notification to the registered listeners."""
        for listener in list(self._listeners.get(event, [])):
            listener(*args)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        self.emit("disconnect", {"code": 1000, "message": "Provider closed"})
