# balances.py
"""
Point-in-time balances.

Replay every trade up to a cutoff and net them per asset:
- BUY adds buy_sell_amount to base_coin,
- SELL subtracts it,
- anything else (transfers, deposits, typos) is ignored and never creates an
  entry on its own.

The fold only uses addition, so the result does not depend on the order the
store returns trades in.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from functools import reduce
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from .csv_normalizer import parse_timestamp
from .errors import InvalidQueryError
from .schemas import Trade
from .store import TradeStore

logger = logging.getLogger(__name__)

_SIGN = {"buy": 1, "sell": -1}

# Bare numbers are epoch seconds, never compact ISO dates like 20240101
_EPOCH_RE = re.compile(r"[+-]?\d+(\.\d+)?")


def _signed_amount(t: Trade) -> Optional[Decimal]:
    sign = _SIGN.get(t.operation.strip().lower())
    if sign is None:
        return None
    return t.buy_sell_amount if sign > 0 else -t.buy_sell_amount


def _apply(acc: Dict[str, Decimal], t: Trade) -> Dict[str, Decimal]:
    delta = _signed_amount(t)
    if delta is not None:
        acc[t.base_coin] = acc.get(t.base_coin, Decimal("0")) + delta
    return acc


def compute_balances(trades: Iterable[Trade]) -> Mapping[str, Decimal]:
    """Net signed quantity per base coin. The returned mapping is read-only."""
    return MappingProxyType(reduce(_apply, trades, {}))


def parse_cutoff(value: Any) -> datetime:
    """
    Parse a balance cutoff into a naive UTC datetime.

    Accepts ISO-8601 text (see csv_normalizer.parse_timestamp) or epoch
    seconds, either as a number or as numeric text.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQueryError("timestamp is required")

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidQueryError("timestamp is required")
        if _EPOCH_RE.fullmatch(text):
            value = float(text)
        else:
            try:
                return parse_timestamp(text)
            except ValueError:
                raise InvalidQueryError(f"invalid timestamp: {value!r}") from None

    if isinstance(value, (int, float)):
        try:
            if not math.isfinite(value):
                raise ValueError("not finite")
            return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError, OSError):
            raise InvalidQueryError(f"invalid timestamp: {value!r}") from None

    raise InvalidQueryError(f"invalid timestamp: {value!r}")


def balances_at(store: TradeStore, cutoff: Any) -> Mapping[str, Decimal]:
    """
    Balances as of `cutoff` (inclusive). A bad cutoff is rejected before the
    store is touched.
    """
    try:
        when = parse_cutoff(cutoff)
    except InvalidQueryError:
        logger.info("Rejected balance query with cutoff %r", cutoff)
        raise
    trades = store.find_up_to_timestamp(when)
    return compute_balances(trades)
