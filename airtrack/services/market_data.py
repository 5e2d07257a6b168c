"""Market data fetching.

Spot quotes and chart candles come from CryptoCompare by default. Hyperliquid
mid prices can be used instead for USD-quoted pairs.

Every failure (network, timeout, non-2xx, malformed body) surfaces as
``QuoteUnavailable``. No caching and no retries happen here; the lifecycle
worker simply tries again on its next tick.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone

import httpx
import pandas as pd

from airtrack.config import settings
from airtrack.utils.constants import TIMEFRAME_SECONDS, TIMEFRAME_SETTINGS, USD_QUOTES

logger = logging.getLogger(__name__)


class QuoteUnavailable(Exception):
    """No usable price could be obtained for a (ticker, quote) pair."""


def _to_price(value) -> float:
    """Coerce a provider price field to a finite positive float."""
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise QuoteUnavailable(f"non-numeric price {value!r}")
    if not math.isfinite(price) or price <= 0:
        raise QuoteUnavailable(f"unusable price {price!r}")
    return price


class QuoteSource:
    """Base class for spot price providers."""

    name = "base"

    async def get_price(self, ticker: str, quote: str) -> float:
        raise NotImplementedError

    async def fetch_candles(self, ticker: str, quote: str, timeframe: str) -> list[dict]:
        raise NotImplementedError

    async def close(self):
        pass


class CryptoCompareQuoteSource(QuoteSource):
    """CryptoCompare aggregate price and OHLCV history."""

    name = "cryptocompare"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://min-api.cryptocompare.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Apikey {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _get_json(self, path: str, params: dict):
        client = self._get_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise QuoteUnavailable(f"CryptoCompare request failed: {e}") from e
        except ValueError as e:
            raise QuoteUnavailable(f"CryptoCompare returned invalid JSON: {e}") from e

        if isinstance(data, dict) and data.get("Response") == "Error":
            raise QuoteUnavailable(f"CryptoCompare error: {data.get('Message', 'unknown')}")
        return data

    async def get_price(self, ticker: str, quote: str) -> float:
        data = await self._get_json("/data/price", {"fsym": ticker, "tsyms": quote})
        if not isinstance(data, dict) or quote not in data:
            raise QuoteUnavailable(f"no {quote} price for {ticker} in response")
        return _to_price(data[quote])

    async def fetch_candles(self, ticker: str, quote: str, timeframe: str) -> list[dict]:
        """Fetch recent candles for a chart timeframe (see TIMEFRAME_SETTINGS)."""
        tf = TIMEFRAME_SETTINGS[timeframe]
        data = await self._get_json(
            f"/data/v2/{tf['endpoint']}",
            {
                "fsym": ticker,
                "tsym": quote,
                "limit": tf["limit"],
                "aggregate": tf["aggregate"],
            },
        )
        rows = (data.get("Data") or {}).get("Data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            return []
        return _parse_candles(
            [
                {
                    "time": r.get("time", 0) * 1000 if isinstance(r.get("time"), (int, float)) else 0,
                    "open": r.get("open"),
                    "high": r.get("high"),
                    "low": r.get("low"),
                    "close": r.get("close"),
                    "volume": r.get("volumefrom", r.get("volumeto")),
                }
                for r in rows
                if isinstance(r, dict)
            ]
        )

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


def _to_hl_ticker(asset: str) -> str:
    """Convert asset name to Hyperliquid ticker format.

    Hyperliquid uses 'kX' instead of '1000X' (e.g. kBONK, kPEPE).
    """
    if asset.startswith("1000"):
        return "k" + asset[4:]
    return asset


class HyperliquidQuoteSource(QuoteSource):
    """Hyperliquid public mid prices. Only USD-pegged quotes are served."""

    name = "hyperliquid"

    def __init__(self, timeout: float = 10.0, info=None):
        self.timeout = timeout
        self._info = info

    def _get_info(self):
        # Info() fetches exchange metadata on construction, so build it lazily
        if self._info is None:
            from hyperliquid.info import Info

            self._info = Info(skip_ws=True)
        return self._info

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, fn, *args), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise QuoteUnavailable("Hyperliquid request timed out") from e
        except QuoteUnavailable:
            raise
        except Exception as e:
            raise QuoteUnavailable(f"Hyperliquid request failed: {e}") from e

    async def get_price(self, ticker: str, quote: str) -> float:
        if quote.upper() not in USD_QUOTES:
            raise QuoteUnavailable(f"Hyperliquid cannot quote {ticker} in {quote}")
        info = await self._run(self._get_info)
        mids = await self._run(info.all_mids)
        hl_ticker = _to_hl_ticker(ticker)
        if not isinstance(mids, dict) or hl_ticker not in mids:
            raise QuoteUnavailable(f"Hyperliquid has no mid for {hl_ticker}")
        return _to_price(mids[hl_ticker])

    async def fetch_candles(self, ticker: str, quote: str, timeframe: str) -> list[dict]:
        if quote.upper() not in USD_QUOTES:
            raise QuoteUnavailable(f"Hyperliquid cannot chart {ticker} in {quote}")
        limit = TIMEFRAME_SETTINGS[timeframe]["limit"]
        now = datetime.now(timezone.utc)
        start_time = now - timedelta(seconds=limit * TIMEFRAME_SECONDS[timeframe])
        info = await self._run(self._get_info)
        candles = await self._run(
            info.candles_snapshot,
            _to_hl_ticker(ticker),
            timeframe,
            int(start_time.timestamp() * 1000),
            int(now.timestamp() * 1000),
        )
        return _parse_candles(
            [
                {"time": c.get("t"), "open": c.get("o"), "high": c.get("h"),
                 "low": c.get("l"), "close": c.get("c"), "volume": c.get("v")}
                for c in candles or []
            ]
        )


def build_quote_source(config=settings) -> QuoteSource:
    """Create the quote source selected by ``quote_provider``."""
    if config.quote_provider == "hyperliquid":
        return HyperliquidQuoteSource(timeout=config.price_timeout_seconds)
    return CryptoCompareQuoteSource(
        api_key=config.cryptocompare_api_key,
        base_url=config.cryptocompare_base_url,
        timeout=config.price_timeout_seconds,
    )


_quote_source: QuoteSource | None = None


def get_quote_source() -> QuoteSource:
    """Get the process-wide quote source, creating it on first use."""
    global _quote_source
    if _quote_source is None:
        _quote_source = build_quote_source()
    return _quote_source


async def close_quote_source():
    global _quote_source
    if _quote_source is not None:
        await _quote_source.close()
        _quote_source = None


async def get_spot_price(source: QuoteSource, ticker: str, quote: str | None = None) -> float | None:
    """Current spot price for ``ticker`` in ``quote``, or None when unavailable."""
    quote = quote or settings.default_quote
    try:
        return await source.get_price(ticker, quote)
    except QuoteUnavailable as e:
        logger.warning(f"No price for {ticker}/{quote}: {e}")
        return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def resolve_timeframe(requested: str | None, default: str | None = None) -> str:
    """Map a requested chart timeframe onto a supported one.

    Unknown values fall back to ``default`` when that is supported, else "1h".
    """
    default = (default or settings.default_chart_timeframe).lower()
    fallback = default if default in TIMEFRAME_SETTINGS else "1h"
    if not requested:
        return fallback
    tf = requested.lower()
    return tf if tf in TIMEFRAME_SETTINGS else fallback


def _parse_candles(candles: list[dict]) -> list[dict]:
    """Normalize raw candles into [{time, open, high, low, close, volume}] sorted by time.

    ``time`` is in epoch milliseconds. Non-numeric fields become 0.
    """
    columns = ["time", "open", "high", "low", "close", "volume"]
    if not candles:
        return []

    df = pd.DataFrame(candles, columns=columns)
    for col in columns:
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0)
    df["time"] = df["time"].astype("int64")
    df = df.sort_values("time", kind="stable").drop_duplicates(subset="time", keep="last")
    return [
        {
            "time": int(row.time),
            "open": float(row.open),
            "high": float(row.high),
            "low": float(row.low),
            "close": float(row.close),
            "volume": float(row.volume),
        }
        for row in df.itertuples(index=False)
    ]
