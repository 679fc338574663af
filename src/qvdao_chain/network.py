"""
Target network enforcement.

Keeps the wallet on the one chain the governance contract lives on: requests a
switch, registers the chain when the wallet does not know it, and waits for the
provider to report the new chain id.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from .address import AddressCodec
from .config import NetworkSwitchConfig, NetworkTarget
from .exceptions import (
    INTERNAL_ERROR_CODE,
    UNRECOGNIZED_CHAIN_CODE,
    USER_REJECTED_CODE,
    NetworkAddRejected,
    NetworkSwitchTimeout,
    ProviderUnavailable,
    UserRejected,
    WalletUnavailable,
    classify_provider_error,
)
from .provider import PROVIDER_FAILURES, ProviderRPCError, WalletProvider, to_int

logger = logging.getLogger(__name__)


class NetworkManager:
    """Ensures the wallet operates on the configured target chain."""

    def __init__(
        self,
        provider: Optional[WalletProvider],
        target: NetworkTarget,
        config: Optional[NetworkSwitchConfig] = None,
    ):
        self._provider = provider
        self._target = target
        self._config = config or NetworkSwitchConfig()

    @property
    def target(self) -> NetworkTarget:
        return self._target

    def _require_provider(self) -> WalletProvider:
        if self._provider is None:
            raise WalletUnavailable()
        return self._provider

    async def get_chain_id(self) -> int:
        """Read the chain id currently reported by the wallet."""
        provider = self._require_provider()
        try:
            return to_int(await provider.request("eth_chainId"))
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_chainId") from e

    def is_correct_network(self, chain_id: Optional[int]) -> bool:
        return chain_id is not None and chain_id == self._target.chain_id

    async def _read(self, method: str, params: Optional[List[Any]] = None) -> Any:
        provider = self._require_provider()
        try:
            return await provider.request(method, params or [])
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method=method) from e

    async def get_block_number(self) -> int:
        """Get current block number."""
        return to_int(await self._read("eth_blockNumber"))

    async def get_block(
        self,
        block_number: Union[int, str] = "latest",
        include_transactions: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Get block by number or tag."""
        if isinstance(block_number, int):
            block_number = hex(block_number)
        return await self._read("eth_getBlockByNumber", [block_number, include_transactions])

    async def is_contract(self, address: str) -> bool:
        """True when code is deployed at the address; malformed addresses are not contracts."""
        checksummed = AddressCodec.get_checksum_address(address)
        if checksummed is None:
            return False
        code = await self._read("eth_getCode", [checksummed, "latest"])
        return bool(code) and code not in ("0x", "0x0")

    async def switch_network(self) -> None:
        """
        Ask the wallet to switch to the target chain.

        Falls back to registering the chain when the wallet reports it unknown,
        then polls the reported chain id until the switch is observed.

        Raises:
            UserRejected: The user declined the switch
            NetworkAddRejected: The user declined registering the chain
            NetworkSwitchTimeout: The target chain was not observed in time
        """
        provider = self._require_provider()
        target = self._target

        logger.info(f"Requesting switch to {target.name} ({target.chain_id})")
        try:
            await provider.request(
                "wallet_switchEthereumChain",
                [{"chainId": target.hex_chain_id}],
            )
        except ProviderRPCError as e:
            if e.code in (UNRECOGNIZED_CHAIN_CODE, INTERNAL_ERROR_CODE):
                logger.info(f"Wallet does not know chain {target.chain_id}, adding it")
                await self.add_network()
                # Wallets switch after a successful add; some need a second request
                if await self.get_chain_id() != target.chain_id:
                    await self._request_switch_after_add(provider)
            elif e.code == USER_REJECTED_CODE:
                raise UserRejected("Network switch rejected by user") from e
            else:
                raise classify_provider_error(e, method="wallet_switchEthereumChain") from e

        await self.wait_for_network_switch(target.chain_id)
        logger.info(f"Wallet is on {target.name} ({target.chain_id})")

    async def _request_switch_after_add(self, provider: WalletProvider) -> None:
        try:
            await provider.request(
                "wallet_switchEthereumChain",
                [{"chainId": self._target.hex_chain_id}],
            )
        except ProviderRPCError as e:
            if e.code == USER_REJECTED_CODE:
                raise UserRejected("Network switch rejected by user") from e
            raise classify_provider_error(e, method="wallet_switchEthereumChain") from e

    async def wait_for_network_switch(
        self,
        target_chain_id: int,
        max_attempts: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ) -> None:
        """Poll the wallet's chain id until it reports the target."""
        attempts = max_attempts if max_attempts is not None else self._config.max_attempts
        delay = delay_seconds if delay_seconds is not None else self._config.delay_seconds

        for attempt in range(attempts):
            if await self.get_chain_id() == target_chain_id:
                return
            logger.debug(
                f"Waiting for chain {target_chain_id} "
                f"(attempt {attempt + 1}/{attempts})"
            )
            await asyncio.sleep(delay)

        raise NetworkSwitchTimeout(target_chain_id, attempts)

    async def add_network(self) -> None:
        """Ask the wallet to register the target chain."""
        provider = self._require_provider()
        target = self._target

        if not target.chain_id or not target.rpc_url or not target.name:
            raise ValueError("Invalid network config for adding chain")

        try:
            await provider.request("wallet_addEthereumChain", [self.get_add_chain_params()])
        except ProviderRPCError as e:
            if e.code == USER_REJECTED_CODE:
                raise NetworkAddRejected() from e
            raise ProviderUnavailable(
                f"Failed to add network {target.name}: {e.message}",
                method="wallet_addEthereumChain",
                rpc_code=e.code,
            ) from e

        logger.info(f"Registered {target.name} ({target.chain_id}) with the wallet")

    def get_add_chain_params(self) -> Dict[str, Any]:
        target = self._target
        return {
            "chainId": target.hex_chain_id,
            "chainName": target.name,
            "rpcUrls": [target.rpc_url],
            "blockExplorerUrls": [target.explorer_url] if target.explorer_url else [],
            "nativeCurrency": target.native_currency.to_dict(),
        }

    def get_network_info(self, chain_id: Optional[int]) -> Dict[str, Any]:
        return {
            "chain_id": chain_id,
            "name": self._target.name,
            "rpc_url": self._target.rpc_url,
            "explorer": self._target.explorer_url,
            "is_correct_network": self.is_correct_network(chain_id),
            "hex_chain_id": hex(chain_id) if chain_id else None,
        }

    def get_explorer_url(self, address: str) -> str:
        if not self._target.explorer_url:
            return ""
        return f"{self._target.explorer_url}/address/{address}"

    def get_transaction_explorer_url(self, tx_hash: str) -> str:
        if not self._target.explorer_url:
            return ""
        return f"{self._target.explorer_url}/tx/{tx_hash}"

    def get_token_explorer_url(self, token_address: str) -> str:
        if not self._target.explorer_url:
            return ""
        return f"{self._target.explorer_url}/token/{token_address}"
