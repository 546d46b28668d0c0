"""
Upstream price sources.

Every source is synchronous and blocking; the fetcher runs them in worker
threads under a timeout.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Optional

import requests
import yfinance as yf

from crashwatch.database.models import Market, SymbolType
from crashwatch.errors import FetchError

from .symbols import normalize_symbol, to_nse_index_name, to_yahoo_ticker

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def _checked_price(value, symbol: str, source: str) -> float:
    """Coerce an upstream value to a positive finite price or raise."""
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise FetchError(symbol, source, f"unparseable price {value!r}")
    if math.isnan(price) or math.isinf(price) or price <= 0:
        raise FetchError(symbol, source, f"invalid price {value!r}")
    return price


class PriceSource(ABC):
    """Abstract base class for price sources."""

    name: str = "base"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    @abstractmethod
    def fetch(self, symbol: str, symbol_type: SymbolType, market: Market) -> float:
        """
        Fetch the current price of one symbol.

        Raises:
            FetchError: If the source has no usable price for the symbol
        """
        pass

    def supports(self, market: Market, symbol_type: SymbolType) -> bool:
        return True


class NSESource(PriceSource):
    """National Stock Exchange of India JSON endpoints."""

    name = "nse"

    BASE_URL = "https://www.nseindia.com"
    COOKIE_TTL_SECONDS = 5 * 60

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        super().__init__(timeout)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "User-Agent": BROWSER_USER_AGENT,
                "Accept": "application/json",
                "Accept-Language": "en-US,en;q=0.9",
            }
        )
        self._cookie_lock = threading.Lock()
        self._cookies_refreshed_at: Optional[float] = None

    def supports(self, market: Market, symbol_type: SymbolType) -> bool:
        return market == Market.INDIA and symbol_type in (
            SymbolType.INDEX,
            SymbolType.STOCK,
        )

    def _refresh_cookies(self) -> None:
        """Visit the homepage so the API accepts our requests."""
        with self._cookie_lock:
            now = time.monotonic()
            if (
                self._cookies_refreshed_at is not None
                and now - self._cookies_refreshed_at < self.COOKIE_TTL_SECONDS
            ):
                return
            try:
                response = self.session.get(self.BASE_URL, timeout=self.timeout)
                response.raise_for_status()
                self._cookies_refreshed_at = now
            except requests.RequestException as e:
                # The API call below will fail on its own if cookies matter
                logger.warning(f"Failed to refresh NSE cookies: {e}")

    def _get_json(self, path: str, symbol: str, params: Optional[dict] = None):
        self._refresh_cookies()
        try:
            response = self.session.get(
                f"{self.BASE_URL}{path}",
                params=params,
                headers={"Referer": f"{self.BASE_URL}/get-quotes/equity"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise FetchError(symbol, self.name, str(e))
        except ValueError as e:
            raise FetchError(symbol, self.name, f"invalid JSON: {e}")

    def fetch(self, symbol: str, symbol_type: SymbolType, market: Market) -> float:
        if not self.supports(market, symbol_type):
            raise FetchError(symbol, self.name, f"unsupported {market.value}/{symbol_type.value}")
        if symbol_type == SymbolType.INDEX:
            return self._fetch_index(symbol)
        return self._fetch_equity(symbol)

    def _fetch_index(self, symbol: str) -> float:
        index_name = to_nse_index_name(symbol)
        payload = self._get_json("/api/allIndices", symbol)
        for row in payload.get("data") or []:
            if row.get("index") == index_name:
                return _checked_price(row.get("last"), symbol, self.name)
        raise FetchError(symbol, self.name, f"index {index_name!r} not in feed")

    def _fetch_equity(self, symbol: str) -> float:
        symbol = normalize_symbol(symbol).removesuffix(".NS")
        payload = self._get_json("/api/quote-equity", symbol, params={"symbol": symbol})
        price_info = payload.get("priceInfo") or {}
        return _checked_price(price_info.get("lastPrice"), symbol, self.name)


class YahooSource(PriceSource):
    """Yahoo Finance quotes and daily history via yfinance."""

    name = "yahoo"

    def supports(self, market: Market, symbol_type: SymbolType) -> bool:
        return not (market == Market.INDIA and symbol_type == SymbolType.MUTUAL_FUND)

    def fetch(self, symbol: str, symbol_type: SymbolType, market: Market) -> float:
        ticker_symbol = to_yahoo_ticker(symbol, market, symbol_type)
        ticker = yf.Ticker(ticker_symbol)

        # fast_info is cheap; info is a full scrape and only a fallback
        price = None
        try:
            price = ticker.fast_info.get("lastPrice")
        except Exception as e:
            logger.debug(f"fast_info unavailable for {ticker_symbol}: {e}")

        if price is None or (isinstance(price, float) and math.isnan(price)):
            try:
                info = ticker.info or {}
            except Exception as e:
                raise FetchError(symbol, self.name, str(e))
            price = info.get("regularMarketPrice") or info.get("currentPrice")

        if price is None:
            raise FetchError(symbol, self.name, f"no price data for {ticker_symbol}")
        return _checked_price(price, symbol, self.name)

    def daily_closes(
        self,
        symbol: str,
        symbol_type: SymbolType,
        market: Market,
        days: int,
    ) -> list[tuple[date, float]]:
        """
        Fetch daily closing prices for roughly the last ``days`` calendar days.

        Returns:
            List of (trading date, close) tuples, oldest first
        """
        ticker_symbol = to_yahoo_ticker(symbol, market, symbol_type)
        end = date.today() + timedelta(days=1)
        start = end - timedelta(days=days + 1)
        try:
            hist = yf.Ticker(ticker_symbol).history(
                start=start.isoformat(), end=end.isoformat(), interval="1d"
            )
        except Exception as e:
            raise FetchError(symbol, self.name, f"history failed: {e}")

        if hist is None or hist.empty:
            raise FetchError(symbol, self.name, f"no historical data for {ticker_symbol}")

        closes = hist["Close"].dropna()
        return [
            (ts.date(), float(close))
            for ts, close in closes.items()
            if float(close) > 0
        ]


class MutualFundSource(PriceSource):
    """Indian mutual-fund NAVs from api.mfapi.in."""

    name = "mfapi"

    BASE_URL = "https://api.mfapi.in"

    def supports(self, market: Market, symbol_type: SymbolType) -> bool:
        return market == Market.INDIA and symbol_type == SymbolType.MUTUAL_FUND

    def fetch(self, symbol: str, symbol_type: SymbolType, market: Market) -> float:
        scheme_code = symbol.strip()
        try:
            response = requests.get(
                f"{self.BASE_URL}/mf/{scheme_code}/latest", timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise FetchError(symbol, self.name, str(e))
        except ValueError as e:
            raise FetchError(symbol, self.name, f"invalid JSON: {e}")

        if payload.get("status") != "SUCCESS" or not payload.get("data"):
            raise FetchError(symbol, self.name, f"no NAV for scheme {scheme_code}")
        return _checked_price(payload["data"][0].get("nav"), symbol, self.name)


SOURCE_CLASSES = {
    NSESource.name: NSESource,
    YahooSource.name: YahooSource,
    MutualFundSource.name: MutualFundSource,
}


def create_source(name: str, timeout: float = 10.0) -> PriceSource:
    """Instantiate a source by its configured name."""
    try:
        source_cls = SOURCE_CLASSES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown price source: {name}")
    return source_cls(timeout=timeout)
