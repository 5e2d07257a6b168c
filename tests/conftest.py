"""Shared fixtures: an in-memory store and a scriptable quote source."""

import asyncio

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import airtrack.models  # noqa: F401  (registers tables on the metadata)
from airtrack.engine.store import PositionStore
from airtrack.models.trade import Trade
from airtrack.services.market_data import QuoteSource, QuoteUnavailable


class FakeQuotes(QuoteSource):
    """Quote source fed from a dict keyed by ticker.

    A missing ticker raises QuoteUnavailable, an Exception value is raised as-is,
    and a callable value is called with (ticker, quote) and its result used.
    """

    name = "fake"

    def __init__(self, prices=None, delay: float = 0.0):
        self.prices = dict(prices or {})
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.candles: list[dict] | Exception = []

    async def get_price(self, ticker, quote):
        self.calls.append((ticker, quote))
        if self.delay:
            await asyncio.sleep(self.delay)
        if ticker not in self.prices:
            raise QuoteUnavailable(f"no price for {ticker}")
        value = self.prices[ticker]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(ticker, quote)
        return value

    async def fetch_candles(self, ticker, quote, timeframe):
        if isinstance(self.candles, Exception):
            raise self.candles
        return self.candles


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return PositionStore(engine)


@pytest.fixture
def quotes():
    return FakeQuotes()


@pytest.fixture
def make_trade(store):
    """Insert a trade with sensible defaults and return it."""

    def _make(**overrides) -> Trade:
        fields = {
            "symbol": "BTC",
            "quote": "USDT",
            "side": "LONG",
            "status": "OPEN",
            "entry_price": 100.0,
            "tp_price": 110.0,
            "sl_price": 95.0,
        }
        fields.update(overrides)
        return store.create(Trade(**fields))

    return _make
