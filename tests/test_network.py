"""
Tests for qvdao_chain.network.

Tests cover:
- Switching to the target chain
- Adding an unknown chain (4902 / -32603) then switching
- User rejection and switch timeouts
- Network info and explorer helpers
- Block and contract-code reads
"""
from __future__ import annotations

import pytest

from conftest import ACCOUNT, CONTRACT, FakeWalletProvider
from qvdao_chain.config import NetworkSwitchConfig
from qvdao_chain.exceptions import (
    NetworkAddRejected,
    NetworkSwitchTimeout,
    ProviderUnavailable,
    UserRejected,
    WalletUnavailable,
)
from qvdao_chain.network import NetworkManager
from qvdao_chain.provider import ProviderRPCError


class TestSwitchNetwork:
    """Tests for NetworkManager.switch_network."""

    @pytest.mark.asyncio
    async def test_switch_to_known_chain(self, target, fast_switch_config):
        provider = FakeWalletProvider(chain_id=1, known_chains=[1, target.chain_id])
        manager = NetworkManager(provider, target, fast_switch_config)

        await manager.switch_network()

        assert provider.chain_id == target.chain_id
        assert provider.call_count("wallet_addEthereumChain") == 0

    @pytest.mark.asyncio
    async def test_unknown_chain_is_added_then_switched(self, target, fast_switch_config):
        """Wallet on chain 1 answers 4902; the chain is added with the configured RPC URL."""
        provider = FakeWalletProvider(chain_id=1, known_chains=[1])
        manager = NetworkManager(provider, target, fast_switch_config)

        await manager.switch_network()

        assert provider.call_count("wallet_addEthereumChain") == 1
        added = provider.added_chains[0]
        assert added["chainId"] == hex(1115)
        assert added["rpcUrls"] == ["https://rpc.test2.btcs.network"]
        assert added["blockExplorerUrls"] == ["https://scan.test2.btcs.network"]
        assert added["nativeCurrency"] == {"name": "CORE", "symbol": "CORE", "decimals": 18}
        assert provider.chain_id == 1115

    @pytest.mark.asyncio
    async def test_internal_error_also_triggers_add(self, target, fast_switch_config):
        provider = FakeWalletProvider(chain_id=1, known_chains=[1])
        attempts = []

        def switch(params):
            attempts.append(params)
            if len(attempts) == 1:
                raise ProviderRPCError(-32603, "Unrecognized chain")
            provider.chain_id = target.chain_id

        provider.handlers["wallet_switchEthereumChain"] = switch
        manager = NetworkManager(provider, target, fast_switch_config)

        await manager.switch_network()

        assert provider.call_count("wallet_addEthereumChain") == 1
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_user_rejects_switch(self, target, fast_switch_config):
        provider = FakeWalletProvider(chain_id=1)
        provider.errors["wallet_switchEthereumChain"] = ProviderRPCError(4001, "User rejected")
        manager = NetworkManager(provider, target, fast_switch_config)

        with pytest.raises(UserRejected) as exc_info:
            await manager.switch_network()
        assert not isinstance(exc_info.value, NetworkAddRejected)

    @pytest.mark.asyncio
    async def test_user_rejects_add(self, target, fast_switch_config):
        provider = FakeWalletProvider(chain_id=1, known_chains=[1])
        provider.errors["wallet_addEthereumChain"] = ProviderRPCError(4001, "User rejected")
        manager = NetworkManager(provider, target, fast_switch_config)

        with pytest.raises(NetworkAddRejected):
            await manager.switch_network()

    @pytest.mark.asyncio
    async def test_add_failure_is_classified(self, target, fast_switch_config):
        provider = FakeWalletProvider(chain_id=1, known_chains=[1])
        provider.errors["wallet_addEthereumChain"] = ProviderRPCError(-32602, "bad params")
        manager = NetworkManager(provider, target, fast_switch_config)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await manager.switch_network()
        assert exc_info.value.details["rpc_code"] == -32602

    @pytest.mark.asyncio
    async def test_switch_timeout(self, target):
        """A wallet that accepts the switch but never reports the chain times out."""
        provider = FakeWalletProvider(chain_id=1)
        provider.handlers["wallet_switchEthereumChain"] = lambda params: None
        manager = NetworkManager(provider, target, NetworkSwitchConfig(max_attempts=4, delay_seconds=0))

        with pytest.raises(NetworkSwitchTimeout) as exc_info:
            await manager.switch_network()

        assert exc_info.value.target_chain_id == target.chain_id
        assert provider.call_count("eth_chainId") == 4

    @pytest.mark.asyncio
    async def test_no_provider(self, target):
        with pytest.raises(WalletUnavailable):
            await NetworkManager(None, target).switch_network()


class TestNetworkInfo:
    """Tests for info and explorer helpers."""

    @pytest.mark.asyncio
    async def test_get_chain_id(self, target, provider):
        assert await NetworkManager(provider, target).get_chain_id() == 1115

    def test_is_correct_network(self, target):
        manager = NetworkManager(None, target)
        assert manager.is_correct_network(1115)
        assert not manager.is_correct_network(1)
        assert not manager.is_correct_network(None)

    def test_network_info(self, target):
        info = NetworkManager(None, target).get_network_info(1)
        assert info["is_correct_network"] is False
        assert info["hex_chain_id"] == "0x1"
        assert info["name"] == "Core Testnet 2"

    def test_explorer_urls(self, target, sample_tx_hash):
        manager = NetworkManager(None, target)
        assert manager.get_transaction_explorer_url(sample_tx_hash) == (
            f"https://scan.test2.btcs.network/tx/{sample_tx_hash}"
        )
        assert manager.get_explorer_url("0xabc").endswith("/address/0xabc")
        assert manager.get_token_explorer_url("0xabc").endswith("/token/0xabc")


class TestChainReads:
    """Tests for block and code reads."""

    @pytest.mark.asyncio
    async def test_get_block_number(self, target, provider):
        provider.responses["eth_blockNumber"] = hex(4_321)
        assert await NetworkManager(provider, target).get_block_number() == 4_321

    @pytest.mark.asyncio
    async def test_get_block_by_number_is_hex_encoded(self, target, provider):
        provider.responses["eth_getBlockByNumber"] = {"number": hex(5), "timestamp": hex(1_700_000_000)}

        block = await NetworkManager(provider, target).get_block(5)

        assert block["number"] == hex(5)
        assert provider.params_for("eth_getBlockByNumber") == [[hex(5), False]]

    @pytest.mark.asyncio
    async def test_get_latest_block_with_transactions(self, target, provider):
        provider.responses["eth_getBlockByNumber"] = None
        assert await NetworkManager(provider, target).get_block(include_transactions=True) is None
        assert provider.params_for("eth_getBlockByNumber") == [["latest", True]]

    @pytest.mark.asyncio
    async def test_block_read_failure_classified(self, target, provider):
        provider.errors["eth_blockNumber"] = ProviderRPCError(-32000, "header not found")
        with pytest.raises(ProviderUnavailable):
            await NetworkManager(provider, target).get_block_number()

    @pytest.mark.asyncio
    async def test_is_contract(self, target, provider):
        provider.handlers["eth_getCode"] = lambda params: "0x6080" if params[0] == CONTRACT else "0x"
        network = NetworkManager(provider, target)

        assert await network.is_contract(CONTRACT.lower()) is True
        assert await network.is_contract(ACCOUNT) is False
        assert provider.params_for("eth_getCode")[0] == [CONTRACT, "latest"]

    @pytest.mark.asyncio
    async def test_malformed_address_is_not_a_contract(self, target, provider):
        assert await NetworkManager(provider, target).is_contract("0xnotanaddress") is False
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_chain_reads_need_provider(self, target):
        with pytest.raises(WalletUnavailable):
            await NetworkManager(None, target).get_block_number()
