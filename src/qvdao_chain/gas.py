"""
Gas estimation for governance transactions.

Provides a buffered gas limit, tiered gas prices over the current network
price, and total cost estimates. All wei quantities stay integers: multipliers
are applied as exact decimal ratios, never through float conversion.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from web3 import Web3

from .address import AddressCodec
from .config import GasEstimationConfig
from .exceptions import UnpredictableGas, WalletUnavailable, classify_provider_error
from .provider import PROVIDER_FAILURES, ProviderRPCError, WalletProvider, to_int

logger = logging.getLogger(__name__)

# Node error codes returned when a call cannot be simulated
_SIMULATION_FAILURE_CODES = (3, -32000, -32015)
_SIMULATION_FAILURE_HINTS = ("revert", "cannot estimate", "gas required exceeds", "always failing")

TIERS = ("slow", "standard", "fast", "instant")


def scale_wei(amount: int, multiplier: Union[str, int, Decimal, float]) -> int:
    """Multiply a wei amount by a decimal multiplier, flooring to whole wei."""
    numerator, denominator = Decimal(str(multiplier)).as_integer_ratio()
    return (int(amount) * numerator) // denominator


def to_gwei(wei: int) -> Decimal:
    return Web3.from_wei(wei, "gwei")


@dataclass(frozen=True)
class GasEstimate:
    """Raw and buffered gas limit."""
    estimate: int
    buffer: int
    with_buffer: int
    buffer_percent: int


@dataclass(frozen=True)
class GasPriceTiers:
    """Gas prices in wei for each speed tier."""
    slow: int
    standard: int
    fast: int
    instant: int
    base: int

    def for_speed(self, speed: str) -> int:
        return getattr(self, speed)

    def to_gwei(self) -> Dict[str, Decimal]:
        return {tier: to_gwei(self.for_speed(tier)) for tier in TIERS}


@dataclass(frozen=True)
class TransactionCost:
    """Estimated total cost of a transaction."""
    gas_limit: int
    gas_price_wei: int
    total_cost_wei: int
    speed: str

    @property
    def gas_price_gwei(self) -> Decimal:
        return to_gwei(self.gas_price_wei)

    @property
    def total_cost_ether(self) -> Decimal:
        return Web3.from_wei(self.total_cost_wei, "ether")


class GasEstimator:
    """Computes gas limits and tiered prices from the current network."""

    def __init__(
        self,
        provider: Optional[WalletProvider],
        config: Optional[GasEstimationConfig] = None,
    ):
        self._provider = provider
        self._config = config or GasEstimationConfig()

    @property
    def config(self) -> GasEstimationConfig:
        return self._config

    def _require_provider(self) -> WalletProvider:
        if self._provider is None:
            raise WalletUnavailable("Provider not available")
        return self._provider

    @staticmethod
    def _validate_descriptor(tx: Dict[str, Any]) -> Dict[str, Any]:
        validated = dict(tx)
        for field_name in ("from", "to"):
            if validated.get(field_name) is not None:
                validated[field_name] = AddressCodec.to_checksum(validated[field_name], field=field_name)
        return validated

    async def estimate_gas(
        self,
        tx: Dict[str, Any],
        buffer_percent: Optional[int] = None,
    ) -> GasEstimate:
        """
        Estimate gas for a transaction and add a safety buffer.

        Args:
            tx: Transaction descriptor (from/to/data/value)
            buffer_percent: Percent of headroom to add (default 20)

        Returns:
            GasEstimate with raw and buffered values

        Raises:
            InvalidAddress: Malformed from/to address
            UnpredictableGas: The node could not simulate the call
        """
        if buffer_percent is None:
            buffer_percent = self._config.buffer_percent
        validated = self._validate_descriptor(tx)
        provider = self._require_provider()

        try:
            estimate = to_int(await provider.request("eth_estimateGas", [validated]))
        except ProviderRPCError as e:
            if _is_simulation_failure(e):
                logger.warning(f"Gas estimation failed, call would revert: {e.message}")
                raise UnpredictableGas(e.message) from e
            raise classify_provider_error(e, method="eth_estimateGas") from e
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_estimateGas") from e

        buffer = estimate * buffer_percent // 100
        result = GasEstimate(
            estimate=estimate,
            buffer=buffer,
            with_buffer=estimate + buffer,
            buffer_percent=buffer_percent,
        )
        logger.debug(f"Gas estimate {estimate} + {buffer_percent}% = {result.with_buffer}")
        return result

    async def get_gas_price(self) -> int:
        """Current network gas price in wei."""
        provider = self._require_provider()
        try:
            return to_int(await provider.request("eth_gasPrice"))
        except PROVIDER_FAILURES as e:
            raise classify_provider_error(e, method="eth_gasPrice") from e

    async def get_gas_price_tiers(self) -> GasPriceTiers:
        """Slow/standard/fast/instant prices derived from the current price."""
        base = await self.get_gas_price()
        multipliers = self._config.tier_multipliers
        tiers = GasPriceTiers(
            base=base,
            **{tier: scale_wei(base, multipliers[tier]) for tier in TIERS},
        )
        logger.debug(f"Gas price tiers (gwei): {tiers.to_gwei()}")
        return tiers

    async def estimate_transaction_cost(
        self,
        tx: Dict[str, Any],
        speed: Optional[str] = None,
    ) -> TransactionCost:
        """Total cost of a transaction at the chosen speed tier."""
        speed = speed or self._config.default_speed
        if speed not in TIERS:
            logger.warning(f"Unknown gas speed {speed!r}, using standard")
            speed = "standard"

        estimate = await self.estimate_gas(tx)
        tiers = await self.get_gas_price_tiers()
        price = tiers.for_speed(speed)

        return TransactionCost(
            gas_limit=estimate.with_buffer,
            gas_price_wei=price,
            total_cost_wei=estimate.with_buffer * price,
            speed=speed,
        )


def _is_simulation_failure(error: ProviderRPCError) -> bool:
    message = (error.message or "").lower()
    if any(hint in message for hint in _SIMULATION_FAILURE_HINTS):
        return True
    return error.code in _SIMULATION_FAILURE_CODES and "insufficient funds" not in message
