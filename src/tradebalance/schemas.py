from __future__ import annotations

"""
Pydantic schemas used by the normalizer, the pipeline and the API.

- Trade is the canonical, normalized record. Once built it is immutable.
- ValidationFailure pairs a raw CSV row with the reasons it was rejected.
- IngestResult is what one upload produces: either an accepted count or the
  full list of failures (never both).

Keep these separate from the ORM model in models.py so the core logic never
depends on storage.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Trade(BaseModel):
    """
    One normalized buy/sell event for a BASE/QUOTE market.

    Why Decimal? Balances are sums of many amounts; Decimal keeps them exact.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    utc_time: datetime = Field(..., description="Execution time, naive UTC")
    operation: str = Field(..., examples=["Buy", "Sell"])
    base_coin: str = Field(..., description="Asset bought or sold, e.g. BTC")
    quote_coin: str = Field(..., description="Pricing asset, e.g. USDT")
    buy_sell_amount: Decimal = Field(..., ge=0, description="Quantity of base_coin")
    price: Decimal = Field(..., description="Unit price in quote_coin")

    @field_serializer("buy_sell_amount", "price", when_used="json")
    def _dec_to_str(self, v: Decimal) -> str:
        s = format(v, "f")
        return s.rstrip("0").rstrip(".") if "." in s else s


class ValidationFailure(BaseModel):
    row_number: int
    row: Dict[str, Any]
    reasons: List[str] = Field(..., min_length=1)


class IngestResult(BaseModel):
    accepted: int = 0
    failures: List[ValidationFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class PreviewResult(BaseModel):
    total_valid: int
    total_errors: int
    preview: List[Trade]
    errors: List[ValidationFailure]


# ---------- API payloads ----------

class UploadResponse(BaseModel):
    message: str
    inserted: int


class UploadPreviewResponse(PreviewResult):
    filename: str


class ValidationErrorResponse(BaseModel):
    error: str
    details: List[ValidationFailure]


class BalanceQuery(BaseModel):
    """Body of POST /balance. `timestamp` is ISO-8601 text or epoch seconds."""

    timestamp: Any = None  # parse_cutoff decides what is acceptable


class TradePage(BaseModel):
    page: int
    page_size: int
    total: int
    items: List[Trade]
