from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Sequence

import pytest

from tradebalance.errors import PersistenceError
from tradebalance.schemas import Trade
from tradebalance.store import SqlTradeStore


def _make_trade(
    coin: str = "BTC",
    operation: str = "Buy",
    amount: str = "1",
    when: datetime = datetime(2024, 1, 1, 12, 0, 0),
    quote: str = "USDT",
    price: str = "30000",
) -> Trade:
    return Trade(
        utc_time=when,
        operation=operation,
        base_coin=coin,
        quote_coin=quote,
        buy_sell_amount=Decimal(amount),
        price=Decimal(price),
    )


class RecordingStore:
    """In-memory TradeStore that remembers every call it receives."""

    def __init__(self, fail_inserts: bool = False):
        self.trades: List[Trade] = []
        self.insert_calls: List[List[Trade]] = []
        self.find_calls: List[datetime] = []
        self.fail_inserts = fail_inserts

    def insert_many(self, trades: Sequence[Trade]) -> int:
        self.insert_calls.append(list(trades))
        if self.fail_inserts:
            raise PersistenceError("store is down")
        self.trades.extend(trades)
        return len(trades)

    def find_up_to_timestamp(self, cutoff: datetime) -> List[Trade]:
        self.find_calls.append(cutoff)
        return [t for t in self.trades if t.utc_time <= cutoff]

    def list_trades(self, page: int = 1, page_size: int = 50):
        ordered = sorted(self.trades, key=lambda t: t.utc_time)
        start = (page - 1) * page_size
        return len(ordered), ordered[start:start + page_size]


@pytest.fixture
def make_trade():
    """Factory for valid Trades; every field has a sensible default."""
    return _make_trade


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def failing_store() -> RecordingStore:
    return RecordingStore(fail_inserts=True)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'trades.db'}"


@pytest.fixture
def sql_store(db_url):
    store = SqlTradeStore.open(db_url)
    yield store
    store.close()
