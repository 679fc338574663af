"""
Tests for qvdao_chain.gas.

Tests cover:
- Buffered gas estimates
- Exact integer tier scaling
- Simulation failures mapped to UnpredictableGas
- Cost estimation and speed fallback
"""
from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import ACCOUNT, CONTRACT, FakeWalletProvider
from qvdao_chain.exceptions import (
    InvalidAddress,
    ProviderUnavailable,
    UnpredictableGas,
    WalletUnavailable,
)
from qvdao_chain.gas import GasEstimator, scale_wei
from qvdao_chain.provider import ProviderRPCError, WalletProvider


class TestScaleWei:
    """Tests for integer-safe multiplier application."""

    def test_exact_ratio(self):
        assert scale_wei(1_000_000_007, "1.2") == 1_200_000_008
        assert scale_wei(10, Decimal("0.9")) == 9
        assert scale_wei(10**30 + 1, 1.5) == (10**30 + 1) * 3 // 2

    def test_float_multiplier_uses_decimal_text(self):
        """1.1 is applied as 11/10, not as its binary float value."""
        assert scale_wei(10**18, 1.1) == 11 * 10**17


class TestEstimateGas:
    """Tests for GasEstimator.estimate_gas."""

    @pytest.mark.asyncio
    async def test_buffer_applied(self):
        provider = FakeWalletProvider()
        provider.responses["eth_estimateGas"] = hex(100_000)
        estimator = GasEstimator(provider)

        result = await estimator.estimate_gas({"from": ACCOUNT, "to": CONTRACT, "data": "0x"})

        assert result.estimate == 100_000
        assert result.buffer == 20_000
        assert result.with_buffer == 120_000
        assert result.buffer_percent == 20

    @pytest.mark.asyncio
    async def test_custom_buffer_floors(self):
        provider = FakeWalletProvider()
        provider.responses["eth_estimateGas"] = hex(21_001)
        result = await GasEstimator(provider).estimate_gas({"to": CONTRACT}, buffer_percent=10)
        assert result.buffer == 2_100
        assert result.with_buffer == 23_101

    @pytest.mark.asyncio
    async def test_addresses_are_checksummed_before_call(self):
        provider = FakeWalletProvider()
        provider.responses["eth_estimateGas"] = "0x5208"
        await GasEstimator(provider).estimate_gas({"from": ACCOUNT.lower(), "to": CONTRACT.lower()})
        sent = provider.params_for("eth_estimateGas")[0][0]
        assert sent["from"] == ACCOUNT
        assert sent["to"] == CONTRACT

    @pytest.mark.asyncio
    async def test_invalid_address_never_reaches_provider(self):
        provider = FakeWalletProvider()
        with pytest.raises(InvalidAddress):
            await GasEstimator(provider).estimate_gas({"to": "0x1234"})
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_revert_raises_unpredictable_gas(self):
        provider = FakeWalletProvider()
        provider.errors["eth_estimateGas"] = ProviderRPCError(3, "execution reverted: Not a member")
        with pytest.raises(UnpredictableGas) as exc_info:
            await GasEstimator(provider).estimate_gas({"to": CONTRACT})
        assert "contract state" in exc_info.value.message
        assert exc_info.value.reason == "execution reverted: Not a member"

    @pytest.mark.asyncio
    async def test_insufficient_funds_is_not_unpredictable(self):
        provider = FakeWalletProvider()
        provider.errors["eth_estimateGas"] = ProviderRPCError(-32000, "insufficient funds for transfer")
        with pytest.raises(ProviderUnavailable):
            await GasEstimator(provider).estimate_gas({"to": CONTRACT})

    @pytest.mark.asyncio
    async def test_transport_failure_classified(self):
        provider = FakeWalletProvider()
        provider.errors["eth_estimateGas"] = httpx.ConnectError("connection refused")
        with pytest.raises(ProviderUnavailable):
            await GasEstimator(provider).estimate_gas({"to": CONTRACT})

    @pytest.mark.asyncio
    async def test_no_provider(self):
        with pytest.raises(WalletUnavailable):
            await GasEstimator(None).estimate_gas({"to": CONTRACT})


class TestGasPrices:
    """Tests for tiers and cost."""

    @pytest.mark.asyncio
    async def test_tiers(self):
        provider = FakeWalletProvider()
        provider.responses["eth_gasPrice"] = hex(30_000_000_001)
        tiers = await GasEstimator(provider).get_gas_price_tiers()

        assert tiers.base == 30_000_000_001
        assert tiers.slow == 27_000_000_000
        assert tiers.standard == 30_000_000_001
        assert tiers.fast == 36_000_000_001
        assert tiers.instant == 45_000_000_001
        assert tiers.to_gwei()["standard"] == Decimal("30.000000001")

    @pytest.mark.asyncio
    async def test_transaction_cost(self):
        provider = FakeWalletProvider()
        provider.responses["eth_estimateGas"] = hex(50_000)
        provider.responses["eth_gasPrice"] = hex(10**9)

        cost = await GasEstimator(provider).estimate_transaction_cost({"to": CONTRACT}, speed="fast")

        assert cost.gas_limit == 60_000
        assert cost.gas_price_wei == 1_200_000_000
        assert cost.total_cost_wei == 60_000 * 1_200_000_000
        assert cost.speed == "fast"

    @pytest.mark.asyncio
    async def test_unknown_speed_falls_back_to_standard(self):
        provider = FakeWalletProvider()
        provider.responses["eth_estimateGas"] = hex(21_000)
        provider.responses["eth_gasPrice"] = hex(10**9)

        cost = await GasEstimator(provider).estimate_transaction_cost({"to": CONTRACT}, speed="ludicrous")

        assert cost.speed == "standard"
        assert cost.gas_price_wei == 10**9

    @pytest.mark.asyncio
    async def test_gas_price_is_one_call(self):
        provider = AsyncMock(spec=WalletProvider)
        provider.request.return_value = hex(10**9)

        assert await GasEstimator(provider).get_gas_price() == 10**9
        provider.request.assert_awaited_once_with("eth_gasPrice")
