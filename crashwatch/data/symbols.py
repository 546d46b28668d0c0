"""
Per-source symbol normalisation.
"""

from crashwatch.database.models import Market, SymbolType

# Yahoo tickers for Indian indices whose name differs from "^" + symbol
YAHOO_INDIA_INDEX_TICKERS = {
    "NIFTY50": "^NSEI",
    "NIFTYMIDCAP": "^NSEMDCP50",
    "NIFTYSMLCAP": "^NSESMCP50",
    "NIFTYIT": "^CNXIT",
}

# Display names used by the NSE allIndices feed
NSE_INDEX_NAMES = {
    "NIFTY50": "NIFTY 50",
    "NIFTYBANK": "NIFTY BANK",
    "NIFTYMIDCAP": "NIFTY MIDCAP 100",
    "NIFTYSMLCAP": "NIFTY SMALLCAP 100",
    "NIFTYSMALLCAP50": "NIFTY SMALLCAP 50",
    "NIFTYIT": "NIFTY IT",
    "NIFTYAUTO": "NIFTY AUTO",
    "NIFTYFMCG": "NIFTY FMCG",
    "NIFTYMETAL": "NIFTY METAL",
    "NIFTYPHARMA": "NIFTY PHARMA",
    "NIFTYPSU": "NIFTY PSU BANK",
    "NIFTYREALTY": "NIFTY REALTY",
    "NIFTYMICROCAP250": "NIFTY MICROCAP 250",
}

DEFAULT_EXCHANGES = {
    (Market.INDIA, SymbolType.INDEX): "NSE",
    (Market.INDIA, SymbolType.STOCK): "NSE",
    (Market.INDIA, SymbolType.MUTUAL_FUND): "AMFI",
    (Market.USA, SymbolType.INDEX): "INDEX",
    (Market.USA, SymbolType.STOCK): "NASDAQ",
    (Market.USA, SymbolType.MUTUAL_FUND): "NASDAQ",
}


def normalize_symbol(symbol: str) -> str:
    """Canonical watchlist form: stripped and upper-cased."""
    return symbol.strip().upper()


def to_yahoo_ticker(symbol: str, market: Market, symbol_type: SymbolType) -> str:
    """
    Map a watchlist symbol to the Yahoo Finance ticker.

    INDIA stocks get the ".NS" suffix and INDIA indices map to the "^" index
    tickers. USA symbols are used as-is.
    """
    symbol = normalize_symbol(symbol)
    if market != Market.INDIA:
        return symbol
    if symbol_type == SymbolType.INDEX:
        return YAHOO_INDIA_INDEX_TICKERS.get(symbol, f"^{symbol}")
    if symbol.endswith(".NS") or symbol.endswith(".BO"):
        return symbol
    return f"{symbol}.NS"


def to_nse_index_name(symbol: str) -> str:
    """Display name of an index in the NSE allIndices feed."""
    symbol = normalize_symbol(symbol)
    return NSE_INDEX_NAMES.get(symbol, symbol)


def default_exchange(market: Market, symbol_type: SymbolType) -> str:
    return DEFAULT_EXCHANGES[(market, symbol_type)]
