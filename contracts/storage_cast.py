"""Wire -> storage casting for the collections relations.

Records arrive as JSON-friendly dicts (CSV exports, fixtures, query rows) and
leave as Python values that ``pa.Table.from_pylist(..., schema=...)`` accepts.
The boundary is strict on purpose: ids must be integral, money must fit
``decimal(18, 6)`` without rounding, and a missing required id is an error
rather than a silently dropped row.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import pyarrow as pa


class StorageCastError(ValueError):
    """Raised when a wire record cannot be cast to the Arrow storage schema."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(f"{field}: {message}" if field else message)
        self.field = field


# -----------------------------
# Per-type casters (value is never None or "" here)
# -----------------------------


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise StorageCastError(f"Cannot cast {value!r} to Decimal")
    if isinstance(value, float):
        # str() keeps the shortest repr: 0.1 -> Decimal("0.1"), not the binary expansion
        value = str(value)
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise StorageCastError(f"Cannot cast {value!r} to Decimal") from exc
    if not dec.is_finite():
        raise StorageCastError(f"Cannot cast {value!r} to Decimal")
    return dec


def _cast_int(value: Any, _field_type: pa.DataType) -> int:
    if isinstance(value, bool):
        raise StorageCastError(f"Cannot cast {value!r} to int")
    if isinstance(value, int):
        return value
    try:
        dec = _to_decimal(value)
    except StorageCastError as exc:
        raise StorageCastError(f"Cannot cast {value!r} to int") from exc
    if dec != dec.to_integral_value():
        raise StorageCastError(f"Cannot cast {value!r} to int (not integral)")
    return int(dec)


def _cast_money(value: Any, field_type: pa.DataType) -> Decimal:
    dec = _to_decimal(value)
    exponent = Decimal(1).scaleb(-field_type.scale)
    try:
        fitted = dec.quantize(exponent)
    except InvalidOperation as exc:
        raise StorageCastError(f"{dec!s} exceeds decimal({field_type.precision}, {field_type.scale})") from exc
    if fitted != dec:
        raise StorageCastError(f"{dec!s} has more than {field_type.scale} fractional digits")
    if len(fitted.as_tuple().digits) > field_type.precision:
        raise StorageCastError(f"{dec!s} exceeds decimal({field_type.precision}, {field_type.scale})")
    return fitted


def _cast_timestamp(value: Any, _field_type: pa.DataType) -> datetime:
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as exc:
            raise StorageCastError(f"Cannot cast {value!r} to datetime") from exc
    if not isinstance(value, datetime):
        raise StorageCastError(f"Cannot cast {value!r} to datetime")
    return (value if value.tzinfo else value.replace(tzinfo=UTC)).astimezone(UTC)


def _cast_string(value: Any, _field_type: pa.DataType) -> str:
    return str(value)


def _passthrough(value: Any, _field_type: pa.DataType) -> Any:
    return value


def _caster_for(field_type: pa.DataType) -> Callable[[Any, pa.DataType], Any]:
    if pa.types.is_string(field_type) or pa.types.is_large_string(field_type):
        return _cast_string
    if pa.types.is_integer(field_type):
        return _cast_int
    if pa.types.is_decimal(field_type):
        return _cast_money
    if pa.types.is_timestamp(field_type):
        return _cast_timestamp
    return _passthrough


def _is_string_type(field_type: pa.DataType) -> bool:
    return pa.types.is_string(field_type) or pa.types.is_large_string(field_type)


def cast_value(value: Any, field_type: pa.DataType) -> Any:
    """
    Cast a single value to match an Arrow field type.

    None stays None; "" becomes None except for string fields.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip() and not _is_string_type(field_type):
        return None
    return _caster_for(field_type)(value, field_type)


def cast_for_storage(wire_record: Mapping[str, Any], schema: pa.Schema) -> dict[str, Any]:
    """
    Cast one wire record into a storage record for *schema*.

    Unknown keys are ignored (the schema is the storage contract); missing
    keys become None, which is an error for non-nullable fields.
    """
    out: dict[str, Any] = {}
    for field in schema:
        try:
            value = cast_value(wire_record.get(field.name), field.type)
        except StorageCastError as exc:
            raise StorageCastError(str(exc), field=field.name) from exc
        if value is None and not field.nullable:
            raise StorageCastError("required field is missing", field=field.name)
        out[field.name] = value
    return out
