"""
Fee estimation from dry-run simulations.

    adjusted_gas = gas_used * gas_adjustment
    fee_amount   = ceil(adjusted_gas * gas_price) + 1
    gas_limit    = floor(adjusted_gas)

The ``+ 1`` absorbs truncation so the fee is never marginally insufficient.
Gas limits are truncated for every chain family.
"""

import logging
import re
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ...cache import TTLCache
from ...config import ChainConfig, ChainFamily, settings
from ..errors import ChainConnectionError, ParseError
from .models import Coin, Fee, FeeParams, SimulationResult

if TYPE_CHECKING:
    from ...chains.base import GasPriceSource


logger = logging.getLogger(__name__)

# Used when a node returns a simulation without gas info
DEFAULT_SIMULATED_GAS = 200_000

_DENOM_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9/:._-]{2,127}$")


def validate_denom(denom: str) -> str:
    if not denom or not _DENOM_RE.match(denom):
        raise ParseError(f"Failed to parse denom {denom!r}")
    return denom


def _to_decimal(value: Any, label: str) -> Decimal:
    try:
        # str() keeps 1.3 as 1.3 instead of its binary expansion
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ParseError(f"Invalid {label}: {value!r}") from e


class FeeEstimator:
    """Turns a simulation into a concrete ``Fee``."""

    def __init__(self, registry: Optional["GasPriceRegistry"] = None):
        self._registry = registry

    def estimate(self, simulation: SimulationResult, params: FeeParams) -> Fee:
        """
        Compute the fee for a simulated transaction.

        Raises:
            ParseError: malformed denomination or invalid price / adjustment
        """
        denom = validate_denom(params.denom)
        gas_price = _to_decimal(params.gas_price, "gas price")
        adjustment = _to_decimal(params.gas_adjustment, "gas adjustment")
        if gas_price < 0:
            raise ParseError(f"Gas price must not be negative: {params.gas_price}")
        if adjustment <= 0:
            raise ParseError(f"Gas adjustment must be positive: {params.gas_adjustment}")

        gas_used = simulation.gas_used
        if gas_used is None:
            gas_used = DEFAULT_SIMULATED_GAS

        adjusted_gas = Decimal(gas_used) * adjustment
        fee_amount = int((adjusted_gas * gas_price).to_integral_value(rounding=ROUND_CEILING)) + 1
        gas_limit = int(adjusted_gas.to_integral_value(rounding=ROUND_FLOOR))

        return Fee(
            amount=Coin(denom=denom, amount=fee_amount),
            gas_limit=gas_limit,
            gas_price=float(gas_price),
            payer=params.payer,
            granter=params.granter,
        )

    async def resolve_gas_price(self, config: ChainConfig, source: Optional["GasPriceSource"] = None) -> float:
        """
        Pick the gas price for a chain.

        Order: configured price, then the chain registry (Cosmos chains), then the
        node's own suggestion (``source.suggest_gas_price()``).
        """
        if config.gas_price is not None:
            return config.gas_price

        if config.family == ChainFamily.COSMOS and self._registry is not None:
            return float(await self._registry.query_reference_gas_price(config.name, config.denom))

        if source is not None:
            return float(await source.suggest_gas_price())

        raise ParseError(f"No gas price configured or discoverable for chain {config.name}")

    async def params_for(self, config: ChainConfig, source: Optional["GasPriceSource"] = None) -> FeeParams:
        return FeeParams(
            denom=config.denom,
            gas_price=await self.resolve_gas_price(config, source),
            gas_adjustment=config.gas_adjustment,
        )

    async def close(self) -> None:
        if self._registry is not None:
            await self._registry.close()


class GasPriceRegistry:
    """
    Reads suggested gas prices from the community-maintained chain registry.

    Lookups are best-effort and cached; a failed read is surfaced, not retried.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_seconds: Optional[int] = None,
    ):
        self._base_url = (base_url or settings.gas_price_registry_url).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._cache: TTLCache[Decimal] = TTLCache(default_ttl=cache_ttl_seconds or settings.gas_price_cache_ttl_seconds)

    async def _fetch_chain_json(self, chain_name: str) -> Dict[str, Any]:
        url = f"{self._base_url}/{chain_name}/chain.json"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ChainConnectionError(
                f"Chain registry returned {e.response.status_code} for {chain_name}",
                chain=chain_name,
            ) from e
        except httpx.HTTPError as e:
            raise ChainConnectionError(f"Chain registry unreachable: {e}", chain=chain_name) from e

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Chain registry returned invalid JSON for {chain_name}") from e

    async def query_reference_gas_price(self, chain_name: str, denom: str) -> Decimal:
        """Average gas price for ``denom`` on ``chain_name``, cached per TTL."""
        return await self._cache.get_or_load(
            (chain_name, denom),
            lambda: self._load_gas_price(chain_name, denom),
        )

    async def _load_gas_price(self, chain_name: str, denom: str) -> Decimal:
        config = await self._fetch_chain_json(chain_name)

        fee_tokens = (config.get("fees") or {}).get("fee_tokens")
        if not isinstance(fee_tokens, list):
            raise ParseError(f"Failed to get fee_tokens for {chain_name}", chain=chain_name)

        entry = next((t for t in fee_tokens if isinstance(t, dict) and t.get("denom") == denom), None)
        if entry is None:
            raise ParseError(f"Denom {denom} is not a fee token on {chain_name}", chain=chain_name)

        if entry.get("average_gas_price") is None:
            raise ParseError(
                f"Failed to get average gas price for {denom} on {chain_name}",
                chain=chain_name,
            )
        price = _to_decimal(entry["average_gas_price"], "average gas price")

        logger.info(f"Registry gas price for {chain_name}/{denom}: {price}")
        return price

    async def close(self) -> None:
        await self._client.aclose()
