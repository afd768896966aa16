from __future__ import annotations

"""
Trade store: the only place that talks to the database.

TradeStore is the interface the pipeline and the balance query depend on.
SqlTradeStore implements it with SQLAlchemy. It is created explicitly
(SqlTradeStore.open at startup) and handed to whoever needs it, then closed at
shutdown; there is no module-level engine.
"""

import datetime
import logging
from typing import List, Protocol, Sequence, Tuple

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import PersistenceError
from .models import Base, TradeRow
from .schemas import Trade

logger = logging.getLogger(__name__)


class TradeStore(Protocol):
    def insert_many(self, trades: Sequence[Trade]) -> int: ...
    def find_up_to_timestamp(self, cutoff: datetime.datetime) -> List[Trade]: ...
    def list_trades(self, page: int = 1, page_size: int = 50) -> Tuple[int, List[Trade]]: ...


def _to_row(t: Trade) -> TradeRow:
    return TradeRow(
        utc_time=t.utc_time,
        operation=t.operation,
        base_coin=t.base_coin,
        quote_coin=t.quote_coin,
        buy_sell_amount=t.buy_sell_amount,
        price=t.price,
    )


def _set_sqlite_pragmas(dbapi_conn, _record) -> None:
    # Write-Ahead Log: readers keep working while an upload is being written
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    # How long SQLite should wait if the DB is busy (ms)
    cur.execute("PRAGMA busy_timeout=5000;")
    cur.close()


class SqlTradeStore:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def open(cls, url: str) -> "SqlTradeStore":
        """Build the engine for `url` and make sure the tables exist."""
        connect_args = {}
        if url.startswith("sqlite"):
            # FastAPI runs sync endpoints in a threadpool
            connect_args["check_same_thread"] = False
        engine = create_engine(url, echo=False, connect_args=connect_args)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _set_sqlite_pragmas)
        try:
            Base.metadata.create_all(bind=engine)  # no-ops on existing
        except SQLAlchemyError as e:
            engine.dispose()
            raise PersistenceError("could not initialise trade store") from e
        logger.info("Trade store opened (%s)", engine.url.render_as_string(hide_password=True))
        return cls(engine)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Trade store closed")

    def insert_many(self, trades: Sequence[Trade]) -> int:
        """Insert all trades in one transaction: either every row lands or none does."""
        try:
            with self._sessions.begin() as session:
                session.add_all([_to_row(t) for t in trades])
        except SQLAlchemyError as e:
            logger.exception("Bulk insert of %d trades failed", len(trades))
            raise PersistenceError("bulk insert failed") from e
        return len(trades)

    def find_up_to_timestamp(self, cutoff: datetime.datetime) -> List[Trade]:
        """All trades with utc_time <= cutoff. Order is not part of the contract."""
        stmt = select(TradeRow).where(TradeRow.utc_time <= cutoff)
        try:
            with self._sessions() as session:
                rows = session.scalars(stmt).all()
                return [Trade.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("Trade query up to %s failed", cutoff.isoformat())
            raise PersistenceError("trade query failed") from e

    def list_trades(self, page: int = 1, page_size: int = 50) -> Tuple[int, List[Trade]]:
        """One page of trades, oldest first, plus the total count."""
        stmt = (
            select(TradeRow)
            .order_by(TradeRow.utc_time.asc(), TradeRow.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        try:
            with self._sessions() as session:
                total = session.scalar(select(func.count()).select_from(TradeRow)) or 0
                rows = session.scalars(stmt).all()
                return total, [Trade.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("Trade listing failed")
            raise PersistenceError("trade listing failed") from e
