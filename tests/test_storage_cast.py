from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pyarrow as pa
import pytest

from contracts.schema import DEBTS_SCHEMA, MONEY, PAYMENTS_SCHEMA, UNPAID_COLLECTIONS_SCHEMA
from contracts.storage_cast import StorageCastError, cast_for_storage, cast_value


def _result_wire_record() -> dict:
    # This is WIRE format: strings are ok, "" allowed for optional fields
    return {
        "run_id": "run-1",
        "run_ts": "2026-03-01T08:30:00Z",
        "debtor_id": "7",
        "debt_id": 70,
        "first_name": "Ana",
        "last_name": "",
        "effort_count": "3",
        "total_paid": "",
        "engine": "memory",
        "schema_version": 1,
        "unexpected": "ignored",
    }


def test_wire_to_storage_cast_builds_arrow_table() -> None:
    storage = cast_for_storage(_result_wire_record(), UNPAID_COLLECTIONS_SCHEMA)

    assert storage["run_ts"] == datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert storage["debtor_id"] == 7
    assert storage["effort_count"] == 3
    assert storage["total_paid"] is None  # "" -> None for Decimal fields
    assert storage["last_name"] == ""  # strings keep ""
    assert "unexpected" not in storage

    # Arrow reality check: should build a table without type errors
    table = pa.Table.from_pylist([storage], schema=UNPAID_COLLECTIONS_SCHEMA)
    assert table.num_rows == 1


def test_cast_requires_non_nullable_ids() -> None:
    with pytest.raises(StorageCastError) as exc_info:
        cast_for_storage({"debtor_id": 1}, DEBTS_SCHEMA)
    assert exc_info.value.field == "debt_id"
    assert "required field is missing" in str(exc_info.value)


@pytest.mark.parametrize("value", ["abc", 1.5, True, "2.5"])
def test_cast_rejects_non_integral_ids(value: object) -> None:
    with pytest.raises(StorageCastError):
        cast_value(value, pa.int64())


def test_cast_accepts_integral_decimal_strings_for_ids() -> None:
    assert cast_value("42.000", pa.int64()) == 42
    assert cast_value(Decimal("10"), pa.int64()) == 10


def test_money_is_quantized_to_storage_scale() -> None:
    assert cast_value("50", MONEY) == Decimal("50.000000")
    assert str(cast_value(Decimal("-12.5"), MONEY)) == "-12.500000"
    # floats go through their shortest repr, not the binary expansion
    assert cast_value(0.1, MONEY) == Decimal("0.1")


@pytest.mark.parametrize("value", ["not-a-number", "NaN", "Infinity", True, "0.0000001", "1" + "0" * 13])
def test_cast_rejects_invalid_or_inexact_money(value: object) -> None:
    with pytest.raises(StorageCastError):
        cast_value(value, MONEY)


def test_payment_record_with_bad_amount_names_the_field() -> None:
    with pytest.raises(StorageCastError) as exc_info:
        cast_for_storage({"payment_id": 1, "debt_id": 2, "amount_paid": "12,50"}, PAYMENTS_SCHEMA)
    assert exc_info.value.field == "amount_paid"


def test_timestamp_cast_normalizes_to_utc() -> None:
    ts = cast_value("2026-03-01T10:00:00+02:00", pa.timestamp("ms", tz="UTC"))
    assert ts == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert ts.tzinfo is not None

    with pytest.raises(StorageCastError):
        cast_value("yesterday", pa.timestamp("ms", tz="UTC"))
