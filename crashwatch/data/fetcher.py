"""
Async price acquisition with ordered source fallback.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from crashwatch.database.models import Market, SymbolType, WatchlistSymbol
from crashwatch.errors import FetchError

from .sources import PriceSource, create_source

logger = logging.getLogger(__name__)

# Primary first; only one fallback is ever tried
DEFAULT_CHAINS: dict[tuple[Market, SymbolType], tuple[str, ...]] = {
    (Market.INDIA, SymbolType.INDEX): ("nse", "yahoo"),
    (Market.INDIA, SymbolType.STOCK): ("nse", "yahoo"),
    (Market.INDIA, SymbolType.MUTUAL_FUND): ("mfapi",),
    (Market.USA, SymbolType.INDEX): ("yahoo",),
    (Market.USA, SymbolType.STOCK): ("yahoo",),
    (Market.USA, SymbolType.MUTUAL_FUND): ("yahoo",),
}


@dataclass
class FetchResult:
    """A price and the source that produced it."""

    price: float
    source: str


@dataclass
class BatchResult:
    """Outcome of fetching a whole watchlist slice."""

    prices: dict[str, FetchResult] = field(default_factory=dict)
    failures: dict[str, FetchError] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.prices)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


def parse_chain_overrides(
    overrides: dict[str, list[str]],
) -> dict[tuple[Market, SymbolType], tuple[str, ...]]:
    """Turn {"INDIA/STOCK": ["yahoo"]} config entries into chain keys."""
    chains = {}
    for key, names in (overrides or {}).items():
        market_name, _, type_name = key.partition("/")
        chains[(Market.parse(market_name), SymbolType.parse(type_name))] = tuple(
            name.lower() for name in names
        )
    return chains


class PriceFetcher:
    """Fetches current prices, falling back along a per-market source chain."""

    def __init__(
        self,
        sources: Optional[dict[str, PriceSource]] = None,
        chains: Optional[dict[tuple[Market, SymbolType], tuple[str, ...]]] = None,
        timeout: float = 10.0,
        max_concurrency: int = 8,
    ):
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.chains = dict(DEFAULT_CHAINS)
        if chains:
            self.chains.update(chains)
        self.sources = dict(sources or {})
        for chain in self.chains.values():
            for name in chain:
                if name not in self.sources:
                    self.sources[name] = create_source(name, timeout=timeout)

    def chain_for(self, market: Market, symbol_type: SymbolType) -> tuple[str, ...]:
        return self.chains.get((market, symbol_type), ())

    async def _fetch_from(
        self, source: PriceSource, symbol: str, symbol_type: SymbolType, market: Market
    ) -> float:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(source.fetch, symbol, symbol_type, market),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise FetchError(symbol, source.name, f"timed out after {self.timeout}s")

    async def fetch_price(
        self,
        symbol: str,
        market: Market,
        symbol_type: SymbolType = SymbolType.STOCK,
    ) -> FetchResult:
        """
        Fetch one price, trying the primary source and at most one fallback.

        Raises:
            FetchError: If every tried source failed
        """
        chain = self.chain_for(market, symbol_type)[:2]
        if not chain:
            raise FetchError(
                symbol, None, f"no sources for {market.value}/{symbol_type.value}"
            )

        last_error: Optional[FetchError] = None
        for name in chain:
            source = self.sources[name]
            try:
                price = await self._fetch_from(source, symbol, symbol_type, market)
                return FetchResult(price=price, source=source.name)
            except FetchError as e:
                last_error = e
                logger.debug(f"{source.name} failed for {symbol}: {e.reason}")

        raise last_error

    async def fetch_many(self, symbols: list[WatchlistSymbol]) -> BatchResult:
        """
        Fetch prices for many watchlist entries with bounded parallelism.

        Never raises for an individual symbol; failures are collected.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        result = BatchResult()

        async def fetch_one(item: WatchlistSymbol) -> None:
            async with semaphore:
                try:
                    result.prices[item.symbol] = await self.fetch_price(
                        item.symbol, item.market, item.type
                    )
                except FetchError as e:
                    result.failures[item.symbol] = e
                    logger.warning(f"Price fetch failed for {item.symbol}: {e}")
                except Exception as e:
                    result.failures[item.symbol] = FetchError(item.symbol, None, str(e))
                    logger.exception(f"Unexpected error fetching {item.symbol}")

        await asyncio.gather(*(fetch_one(item) for item in symbols))
        return result
