from __future__ import annotations
import datetime
from decimal import Decimal
from sqlalchemy import DateTime, Integer, String, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# ---------- Base ----------
class Base(DeclarativeBase):
    pass

# ---------- Decimal helper (exact, stored as text) ----------
class DecimalString(TypeDecorator):
    # SQLite has no real DECIMAL; Numeric would round-trip through float
    impl = String(64)
    cache_ok = True
    def process_bind_param(self, value, dialect):
        if value is None: return None
        return format(Decimal(value), "f")
    def process_result_value(self, value, dialect):
        if value is None: return None
        return Decimal(value)

# ---------- ORM models ----------
class TradeRow(Base):
    __tablename__ = "trades"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Store as naive UTC datetimes
    utc_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    # Free text; only buy/sell are interpreted when computing balances
    operation: Mapped[str] = mapped_column(String(32), nullable=False)

    base_coin: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    quote_coin: Mapped[str] = mapped_column(String(20), nullable=False)
    buy_sell_amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    price: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)

Index("idx_trades_utc_time", TradeRow.utc_time)
