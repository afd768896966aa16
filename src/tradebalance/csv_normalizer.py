# csv_normalizer.py
"""
CSV decoding and row normalization into our Trade schema.

Responsibilities:
- Decode uploaded CSV bytes into a lazy stream of rows (read_csv_rows).
- Normalize one raw row into a Trade, or explain why it can't (normalize).

Expected columns (header names matched case-insensitively):
  UTC_Time,Operation,Market,Buy/Sell Amount,Price

Design choices:
- This module is "pure" (no DB calls). It converts raw bytes -> typed objects.
- A row that fails any check is reported with *every* reason at once, so the
  user can fix the file in one pass.
- Decoder problems (bad bytes, broken quoting) are not row problems: they
  raise MalformedInputError and abort the whole upload.
"""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from io import BytesIO, TextIOWrapper
from typing import Any, Dict, Iterator, Mapping, Optional, Union

from .errors import MalformedInputError, RowValidationError
from .schemas import Trade, ValidationFailure

COL_UTC_TIME = "UTC_Time"
COL_OPERATION = "Operation"
COL_MARKET = "Market"
COL_AMOUNT = "Buy/Sell Amount"
COL_PRICE = "Price"

EXPECTED_COLUMNS = (COL_UTC_TIME, COL_OPERATION, COL_MARKET, COL_AMOUNT, COL_PRICE)

# Amounts must stay representable as JSON numbers and as short decimal text
MAX_INTEGER_DIGITS = 30
MAX_DECIMAL_PLACES = 18


def parse_timestamp(text: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.

    Accepts 'YYYY-MM-DD', 'YYYY-MM-DD HH:MM:SS', 'YYYY-MM-DDTHH:MM:SS',
    with an optional trailing 'Z' or UTC offset. Offsets are converted to UTC;
    times without one are taken to be UTC already.
    Raises ValueError when the text is not a timestamp.
    """
    t = text.strip()
    if t[-1:] in ("Z", "z"):
        t = t[:-1] + "+00:00"  # fromisoformat wants an explicit offset
    dt = datetime.fromisoformat(t)
    if dt.tzinfo is not None:
        try:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            # e.g. 9999-12-31T23:59:59-01:00 lands after datetime.max in UTC
            raise ValueError(f"timestamp out of range: {text!r}") from None
    return dt


def _lookup(row: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    """Lowercase and strip header names; strip string values; '' -> None."""
    out: Dict[str, Optional[str]] = {}
    for key, value in row.items():
        if key is None:
            continue
        if isinstance(value, str):
            value = value.strip() or None
        out[str(key).strip().lower()] = value
    return out


def _required(fields: Dict[str, Optional[str]], column: str) -> str:
    value = fields.get(column.lower())
    if value is None:
        raise RowValidationError(f"{column} is required")
    return str(value)


def _utc_time(fields: Dict[str, Optional[str]]) -> datetime:
    raw = _required(fields, COL_UTC_TIME)
    try:
        return parse_timestamp(raw)
    except ValueError:
        raise RowValidationError(f"{COL_UTC_TIME} is not a valid timestamp: {raw!r}") from None


def _market(fields: Dict[str, Optional[str]]) -> tuple[str, str]:
    raw = _required(fields, COL_MARKET)
    parts = [p.strip() for p in raw.split("/")]
    if len(parts) != 2 or not all(parts):
        raise RowValidationError(f"{COL_MARKET} must look like BASE/QUOTE: {raw!r}")
    return parts[0], parts[1]


def _in_range(d: Decimal) -> bool:
    digits, exponent = d.as_tuple()[1:]
    trailing_zeros = len(digits) - len("".join(map(str, digits)).rstrip("0"))
    places = -(exponent + trailing_zeros)
    return d.adjusted() < MAX_INTEGER_DIGITS and places <= MAX_DECIMAL_PLACES


def _decimal(fields: Dict[str, Optional[str]], column: str) -> Decimal:
    raw = _required(fields, column)
    try:
        d = Decimal(raw)
    except InvalidOperation:
        raise RowValidationError(f"{column} must be a number: {raw!r}") from None
    if not d.is_finite():
        raise RowValidationError(f"{column} must be a number: {raw!r}")
    if d.is_zero():
        return Decimal("0")  # drops exponents like 0E-999999999
    if not _in_range(d):
        raise RowValidationError(f"{column} is out of range: {raw!r}")
    return d


def _amount(fields: Dict[str, Optional[str]]) -> Decimal:
    d = _decimal(fields, COL_AMOUNT)
    if d < 0:
        raise RowValidationError(f"{COL_AMOUNT} must not be negative: {fields[COL_AMOUNT.lower()]!r}")
    return d


def normalize(raw_row: Mapping[str, Any], row_number: int = 0) -> Union[Trade, ValidationFailure]:
    """
    Turn one raw CSV row into a Trade, or a ValidationFailure listing every
    reason the row was rejected (in column order).
    """
    fields = _lookup(raw_row)
    reasons: list[str] = []
    parsed: Dict[str, Any] = {}

    checks = (
        ("utc_time", _utc_time),
        ("operation", lambda f: _required(f, COL_OPERATION)),
        ("market", _market),
        ("buy_sell_amount", _amount),
        ("price", lambda f: _decimal(f, COL_PRICE)),
    )
    for name, check in checks:
        try:
            parsed[name] = check(fields)
        except RowValidationError as e:
            reasons.append(e.reason)

    if reasons:
        return ValidationFailure(row_number=row_number, row=dict(raw_row), reasons=reasons)

    base_coin, quote_coin = parsed.pop("market")
    return Trade(base_coin=base_coin, quote_coin=quote_coin, **parsed)


def read_csv_rows(file_bytes: bytes, encoding: str = "utf-8-sig") -> Iterator[Dict[str, Optional[str]]]:
    """
    Yield the data rows of a CSV file as {header: value} dicts, in file order.

    Why utf-8-sig? Exchange exports often start with a BOM, which would
    otherwise end up glued to the first header name.

    Raises MalformedInputError (lazily, while iterating) if the bytes can't be
    decoded, the file has no header, the quoting is broken, or a row has more
    cells than the header.
    """
    text_stream = TextIOWrapper(BytesIO(file_bytes), encoding=encoding, newline="")
    reader = csv.DictReader(text_stream, strict=True)
    try:
        if not reader.fieldnames:
            raise MalformedInputError("CSV has no header")
        for row in reader:
            if None in row:  # DictReader files extra cells under the None key
                raise MalformedInputError(f"line {reader.line_num}: more cells than header columns")
            yield row
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"CSV is not valid {encoding}: {e.reason}") from e
    except csv.Error as e:
        raise MalformedInputError(f"line {reader.line_num}: {e}") from e
