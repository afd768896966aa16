from decimal import Decimal

import pytest

from tradebalance.csv_normalizer import read_csv_rows
from tradebalance.errors import MalformedInputError, PersistenceError
from tradebalance.ingest import ingest, preview

HEADER = "UTC_Time,Operation,Market,Buy/Sell Amount,Price\n"


def _csv(*lines: str) -> bytes:
    return (HEADER + "".join(line + "\n" for line in lines)).encode("utf-8")


def test_clean_file_is_inserted_in_one_call(recording_store):
    data = _csv(
        "2024-01-01 00:00:00,Buy,BTC/USDT,2,40000",
        "2024-01-02 00:00:00,Sell,BTC/USDT,0.5,41000",
        "2024-01-03 00:00:00,Buy,ETH/USDT,1,2200",
    )
    result = ingest(read_csv_rows(data), recording_store)

    assert result.ok
    assert result.accepted == 3
    assert len(recording_store.insert_calls) == 1
    inserted = recording_store.insert_calls[0]
    assert [(t.base_coin, t.quote_coin, t.buy_sell_amount) for t in inserted] == [
        ("BTC", "USDT", Decimal("2")),
        ("BTC", "USDT", Decimal("0.5")),
        ("ETH", "USDT", Decimal("1")),
    ]


def test_one_bad_row_rejects_the_whole_file(recording_store):
    data = _csv(
        "2024-01-01 00:00:00,Buy,BTC/USDT,2,40000",
        ",Sell,BTC/USDT,0.5,41000",
        "2024-01-03 00:00:00,Buy,ETH/USDT,1,2200",
    )
    result = ingest(read_csv_rows(data), recording_store)

    assert not result.ok
    assert result.accepted == 0
    assert recording_store.insert_calls == []
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.row_number == 3  # header is line 1
    assert failure.reasons == ["UTC_Time is required"]
    assert failure.row["Operation"] == "Sell"


def test_every_failure_is_reported_in_file_order(recording_store):
    data = _csv(
        "2024-01-01 00:00:00,Buy,BTCUSDT,2,40000",
        "2024-01-02 00:00:00,Buy,BTC/USDT,1,40000",
        "2024-01-03 00:00:00,Buy,ETH/USDT,lots,2200",
    )
    result = ingest(read_csv_rows(data), recording_store)

    assert [f.row_number for f in result.failures] == [2, 4]
    assert result.failures[0].reasons == ["Market must look like BASE/QUOTE: 'BTCUSDT'"]
    assert result.failures[1].reasons == ["Buy/Sell Amount must be a number: 'lots'"]
    assert recording_store.insert_calls == []


def test_header_only_file_inserts_nothing(recording_store):
    result = ingest(read_csv_rows(HEADER.encode()), recording_store)
    assert result.ok
    assert result.accepted == 0
    assert recording_store.insert_calls == []


def test_malformed_stream_aborts_without_writing(recording_store):
    data = _csv("2024-01-01 00:00:00,Buy,BTC/USDT,2,40000", "2024-01-02,Buy,BTC/USDT,1,1,extra")
    with pytest.raises(MalformedInputError):
        ingest(read_csv_rows(data), recording_store)
    assert recording_store.insert_calls == []


def test_persistence_error_is_not_retried(failing_store):
    with pytest.raises(PersistenceError):
        ingest(read_csv_rows(_csv("2024-01-01 00:00:00,Buy,BTC/USDT,2,40000")), failing_store)
    assert len(failing_store.insert_calls) == 1


def test_plain_mappings_are_accepted_too(recording_store):
    rows = [
        {"UTC_Time": "2024-01-01", "Operation": "Buy", "Market": "SOL/USDC", "Buy/Sell Amount": "10", "Price": "95"},
    ]
    result = ingest(rows, recording_store)
    assert result.accepted == 1
    assert recording_store.trades[0].base_coin == "SOL"


def test_preview_never_writes(recording_store):
    data = _csv(
        "2024-01-01 00:00:00,Buy,BTC/USDT,2,40000",
        "2024-01-02 00:00:00,Buy,BTC/USDT,-1,40000",
    )
    result = preview(read_csv_rows(data))
    assert result.total_valid == 1
    assert result.total_errors == 1
    assert result.preview[0].buy_sell_amount == Decimal("2")
    assert result.errors[0].row_number == 3
    assert recording_store.insert_calls == []
