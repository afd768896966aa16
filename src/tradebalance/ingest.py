# ingest.py
"""
Ingestion pipeline: raw rows -> normalized trades -> one bulk insert.

Policy is all-or-nothing. Every row is normalized first and every failure is
collected; if there is even one, nothing is written and the caller gets the
full list back. Only a clean file reaches the store, in a single insert_many
call, so a half-imported file is never visible.

MalformedInputError (from the row stream) and PersistenceError (from the
store) are not caught here: they abort the request as they are.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Tuple

from .csv_normalizer import normalize
from .schemas import IngestResult, PreviewResult, Trade, ValidationFailure
from .store import TradeStore

logger = logging.getLogger(__name__)

# Row 1 of an uploaded file is the header, so the first data row is line 2.
FIRST_DATA_ROW = 2


def _normalize_all(rows: Iterable[Mapping[str, Any]]) -> Tuple[List[Trade], List[ValidationFailure]]:
    trades: List[Trade] = []
    failures: List[ValidationFailure] = []
    for i, row in enumerate(rows, start=FIRST_DATA_ROW):
        result = normalize(row, row_number=i)
        if isinstance(result, ValidationFailure):
            logger.warning("Row %d rejected: %s", i, "; ".join(result.reasons))
            failures.append(result)
        else:
            trades.append(result)
    return trades, failures


def ingest(rows: Iterable[Mapping[str, Any]], store: TradeStore) -> IngestResult:
    """
    Normalize every row and, only if all of them are valid, insert them in
    one call. Returns the accepted count or the ordered list of failures.
    """
    trades, failures = _normalize_all(rows)

    if failures:
        logger.info("Upload rejected: %d of %d rows invalid", len(failures), len(trades) + len(failures))
        return IngestResult(accepted=0, failures=failures)

    if trades:
        store.insert_many(trades)
    logger.info("Upload accepted: %d trades inserted", len(trades))
    return IngestResult(accepted=len(trades))


def preview(rows: Iterable[Mapping[str, Any]], limit: int = 5) -> PreviewResult:
    """
    Parse & validate without writing anything.

    Why preview? Users can see what's parsed and fix errors before saving.
    """
    trades, failures = _normalize_all(rows)
    return PreviewResult(
        total_valid=len(trades),
        total_errors=len(failures),
        preview=trades[:limit],
        errors=failures[:limit],
    )
