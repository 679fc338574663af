"""
Tests for qvdao_chain.provider.

Uses the pytest-httpx `httpx_mock` fixture as the JSON-RPC node behind
HTTPWalletProvider.
"""
from __future__ import annotations

import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from conftest import OTHER_ACCOUNT, TX_HASH
from qvdao_chain.provider import HTTPWalletProvider, ProviderRPCError, to_int

RPC_URL = "https://rpc.example.test"
OTHER_RPC_URL = "https://rpc2.example.test"
PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def rpc_node(results):
    """Build an httpx_mock callback answering by JSON-RPC method name."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        result = results[payload["method"]]
        if isinstance(result, dict) and "error" in result:
            body = {"jsonrpc": "2.0", "id": payload["id"], "error": result["error"]}
        else:
            body = {"jsonrpc": "2.0", "id": payload["id"], "result": result}
        return httpx.Response(200, json=body)

    return handler


def sent_payloads(httpx_mock):
    return [json.loads(request.content) for request in httpx_mock.get_requests()]


@pytest.fixture
def account():
    return Account.from_key(PRIVATE_KEY)


class TestToInt:
    def test_quantities(self):
        assert to_int("0x45b") == 1115
        assert to_int("42") == 42
        assert to_int(7) == 7
        assert to_int(None) == 0

    def test_rejects_other_types(self):
        with pytest.raises(ValueError):
            to_int(1.5)


class TestForwarding:
    """Tests for JSON-RPC forwarding."""

    @pytest.mark.asyncio
    async def test_forwards_unknown_methods(self, httpx_mock):
        httpx_mock.add_callback(rpc_node({"eth_blockNumber": "0x10"}), url=RPC_URL, method="POST")
        provider = HTTPWalletProvider(RPC_URL)

        assert await provider.request("eth_blockNumber") == "0x10"

        payload = sent_payloads(httpx_mock)[0]
        assert payload["jsonrpc"] == "2.0"
        assert payload["method"] == "eth_blockNumber"
        assert payload["params"] == []
        await provider.close()

    @pytest.mark.asyncio
    async def test_rpc_error_keeps_code(self, httpx_mock):
        httpx_mock.add_callback(
            rpc_node({
                "eth_call": {"error": {"code": 3, "message": "execution reverted", "data": "0x08c379a0"}},
            }),
            url=RPC_URL,
            method="POST",
        )
        provider = HTTPWalletProvider(RPC_URL)

        with pytest.raises(ProviderRPCError) as exc_info:
            await provider.request("eth_call", [{"to": OTHER_ACCOUNT}, "latest"])

        assert exc_info.value.code == 3
        assert exc_info.value.data == "0x08c379a0"
        await provider.close()

    @pytest.mark.asyncio
    async def test_http_failure_raises_httpx_error(self, httpx_mock):
        httpx_mock.add_response(url=RPC_URL, method="POST", status_code=502)
        provider = HTTPWalletProvider(RPC_URL)

        with pytest.raises(httpx.HTTPStatusError):
            await provider.request("eth_gasPrice")
        await provider.close()


class TestAccounts:
    """Tests for account and signing methods."""

    @pytest.mark.asyncio
    async def test_accounts(self, account):
        provider = HTTPWalletProvider.from_private_key(RPC_URL, PRIVATE_KEY)
        assert await provider.request("eth_requestAccounts") == [account.address]
        assert await provider.request("eth_accounts") == [account.address]

    @pytest.mark.asyncio
    async def test_no_account(self):
        provider = HTTPWalletProvider(RPC_URL)
        assert await provider.request("eth_accounts") == []
        with pytest.raises(ProviderRPCError) as exc_info:
            await provider.request("eth_requestAccounts")
        assert exc_info.value.code == 4100

    @pytest.mark.asyncio
    async def test_personal_sign(self, account):
        provider = HTTPWalletProvider.from_private_key(RPC_URL, PRIVATE_KEY)
        message = Web3.to_hex(text="hello dao")

        signature = await provider.request("personal_sign", [message, account.address])

        recovered = Account.recover_message(encode_defunct(text="hello dao"), signature=signature)
        assert recovered == account.address


class TestChainSwitching:
    """Tests for wallet_switchEthereumChain / wallet_addEthereumChain."""

    @pytest.mark.asyncio
    async def test_unknown_chain_then_add(self, httpx_mock):
        httpx_mock.add_callback(
            rpc_node({"eth_chainId": "0x1"}), url=RPC_URL, method="POST", is_reusable=True
        )
        httpx_mock.add_callback(
            rpc_node({"eth_chainId": "0x45b"}), url=OTHER_RPC_URL, method="POST", is_reusable=True
        )
        provider = HTTPWalletProvider(RPC_URL)
        changes = []
        provider.on("chainChanged", changes.append)

        with pytest.raises(ProviderRPCError) as exc_info:
            await provider.request("wallet_switchEthereumChain", [{"chainId": "0x45b"}])
        assert exc_info.value.code == 4902

        await provider.request("wallet_addEthereumChain", [{
            "chainId": "0x45b",
            "chainName": "Core Testnet 2",
            "rpcUrls": [OTHER_RPC_URL],
        }])
        await provider.request("wallet_switchEthereumChain", [{"chainId": "0x45b"}])

        assert provider.rpc_url == OTHER_RPC_URL
        assert await provider.request("eth_chainId") == "0x45b"
        assert changes == ["0x45b"]
        await provider.close()

    @pytest.mark.asyncio
    async def test_add_requires_rpc_url(self):
        provider = HTTPWalletProvider(RPC_URL)
        with pytest.raises(ProviderRPCError) as exc_info:
            await provider.request("wallet_addEthereumChain", [{"chainId": "0x45b", "rpcUrls": []}])
        assert exc_info.value.code == -32602

    @pytest.mark.asyncio
    async def test_switch_to_current_chain_is_noop(self, httpx_mock):
        httpx_mock.add_callback(rpc_node({"eth_chainId": "0x45b"}), url=RPC_URL, method="POST")
        provider = HTTPWalletProvider(RPC_URL)

        await provider.request("wallet_switchEthereumChain", [{"chainId": "0x45b"}])
        await provider.request("eth_chainId")

        assert len(httpx_mock.get_requests()) == 1
        await provider.close()


class TestSendTransaction:
    """Tests for local signing of eth_sendTransaction."""

    @pytest.mark.asyncio
    async def test_fills_and_signs(self, account, httpx_mock):
        httpx_mock.add_callback(
            rpc_node({
                "eth_chainId": "0x45b",
                "eth_getTransactionCount": "0x3",
                "eth_gasPrice": hex(10**9),
                "eth_estimateGas": hex(21_000),
                "eth_sendRawTransaction": TX_HASH,
            }),
            url=RPC_URL,
            method="POST",
            is_reusable=True,
        )
        provider = HTTPWalletProvider.from_private_key(RPC_URL, PRIVATE_KEY)

        tx_hash = await provider.request("eth_sendTransaction", [{
            "from": account.address,
            "to": OTHER_ACCOUNT.lower(),
            "value": hex(5),
        }])

        assert tx_hash == TX_HASH
        payloads = sent_payloads(httpx_mock)
        raw = next(p["params"][0] for p in payloads if p["method"] == "eth_sendRawTransaction")
        assert Account.recover_transaction(raw) == account.address
        nonce_query = next(p for p in payloads if p["method"] == "eth_getTransactionCount")
        assert nonce_query["params"] == [account.address, "pending"]
        await provider.close()

    @pytest.mark.asyncio
    async def test_foreign_sender_rejected(self):
        provider = HTTPWalletProvider.from_private_key(RPC_URL, PRIVATE_KEY)
        with pytest.raises(ProviderRPCError) as exc_info:
            await provider.request("eth_sendTransaction", [{"from": OTHER_ACCOUNT, "to": OTHER_ACCOUNT}])
        assert exc_info.value.code == 4100


class TestListeners:
    @pytest.mark.asyncio
    async def test_close_emits_disconnect(self):
        provider = HTTPWalletProvider(RPC_URL)
        seen = []
        provider.on("disconnect", seen.append)
        provider.on("disconnect", seen.append)

        await provider.close()

        assert seen == [{"code": 1000, "message": "Provider closed"}]
        provider.remove_listener("disconnect", seen.append)
        assert provider.listener_count("disconnect") == 0
