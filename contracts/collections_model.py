"""
collections_model.py

Typed records for the collections analysis.

The four input relations are externally owned: this module only describes the
shape of one read-only snapshot of them, plus the derived output row.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import pyarrow as pa

from .schema import (
    COLLECTION_EFFORTS,
    COLLECTION_EFFORTS_SCHEMA,
    DEBTORS,
    DEBTORS_SCHEMA,
    DEBTS,
    DEBTS_SCHEMA,
    PAYMENTS,
    PAYMENTS_SCHEMA,
)
from .storage_cast import cast_for_storage

# -----------------------------
# Input records
# -----------------------------


@dataclass(frozen=True)
class Debtor:
    debtor_id: int
    first_name: str | None = None
    last_name: str | None = None

    @classmethod
    def from_storage(cls, record: Mapping[str, Any]) -> Debtor:
        return cls(
            debtor_id=int(record["debtor_id"]),
            first_name=record.get("first_name"),
            last_name=record.get("last_name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"debtor_id": self.debtor_id, "first_name": self.first_name, "last_name": self.last_name}


@dataclass(frozen=True)
class Debt:
    debt_id: int
    debtor_id: int | None = None

    @classmethod
    def from_storage(cls, record: Mapping[str, Any]) -> Debt:
        return cls(debt_id=int(record["debt_id"]), debtor_id=record.get("debtor_id"))

    def to_dict(self) -> dict[str, Any]:
        return {"debt_id": self.debt_id, "debtor_id": self.debtor_id}


@dataclass(frozen=True)
class CollectionEffort:
    effort_id: int
    debt_id: int | None = None

    @classmethod
    def from_storage(cls, record: Mapping[str, Any]) -> CollectionEffort:
        return cls(effort_id=int(record["effort_id"]), debt_id=record.get("debt_id"))

    def to_dict(self) -> dict[str, Any]:
        return {"effort_id": self.effort_id, "debt_id": self.debt_id}


@dataclass(frozen=True)
class Payment:
    """One payment record. Negative amounts are refunds/reversals."""
    debt_id: int | None
    amount_paid: Decimal | None
    payment_id: int | None = None

    @classmethod
    def from_storage(cls, record: Mapping[str, Any]) -> Payment:
        return cls(
            debt_id=record.get("debt_id"),
            amount_paid=record.get("amount_paid"),
            payment_id=record.get("payment_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"payment_id": self.payment_id, "debt_id": self.debt_id, "amount_paid": self.amount_paid}


# -----------------------------
# Output record
# -----------------------------


@dataclass(frozen=True)
class UnpaidCollectionRow:
    """
    One debt that has collection efforts and no payment record.

    debtor_id/debt_id are carried for traceability; the reporting contract is
    the (first_name, last_name, effort_count, total_paid) tuple.
    """
    debt_id: int
    debtor_id: int | None
    first_name: str | None
    last_name: str | None
    effort_count: int
    total_paid: Decimal | None = None

    @classmethod
    def from_query_row(cls, row: Mapping[str, Any]) -> UnpaidCollectionRow:
        """Build from one row of the SQL rendition (DuckDB or PostgreSQL)."""
        debtor_id = row.get("debtor_id")
        return cls(
            debt_id=int(row["debt_id"]),
            debtor_id=None if debtor_id is None else int(debtor_id),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            effort_count=int(row["effort_count"]),
            total_paid=row.get("total_paid"),
        )

    def as_tuple(self) -> tuple[str | None, str | None, int, Decimal | None]:
        return (self.first_name, self.last_name, self.effort_count, self.total_paid)

    def sort_key(self) -> tuple[bool, int, int]:
        # nulls last, like ORDER BY ... in both SQL engines
        return (self.debtor_id is None, self.debtor_id or 0, self.debt_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "debtor_id": self.debtor_id,
            "debt_id": self.debt_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "effort_count": self.effort_count,
            "total_paid": self.total_paid,
        }


# -----------------------------
# Snapshot
# -----------------------------


def _storage_rows(records: Iterable[Any], schema: pa.Schema) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for rec in records:
        if hasattr(rec, "to_dict"):
            rec = rec.to_dict()
        out.append(cast_for_storage(rec, schema))
    return out


@dataclass(frozen=True)
class CollectionsSnapshot:
    """
    One consistent, point-in-time view of the four input relations.

    Every pipeline stage reads the same snapshot object, so no stage can see a
    different version of the data than another.
    """
    debtors: tuple[Debtor, ...] = field(default_factory=tuple)
    debts: tuple[Debt, ...] = field(default_factory=tuple)
    efforts: tuple[CollectionEffort, ...] = field(default_factory=tuple)
    payments: tuple[Payment, ...] = field(default_factory=tuple)

    @classmethod
    def from_records(
        cls,
        *,
        debtors: Iterable[Mapping[str, Any]] = (),
        debts: Iterable[Mapping[str, Any]] = (),
        efforts: Iterable[Mapping[str, Any]] = (),
        payments: Iterable[Mapping[str, Any]] = (),
    ) -> CollectionsSnapshot:
        """Build a snapshot from wire records (dicts), casting them at the storage boundary."""
        return cls(
            debtors=tuple(Debtor.from_storage(r) for r in _storage_rows(debtors, DEBTORS_SCHEMA)),
            debts=tuple(Debt.from_storage(r) for r in _storage_rows(debts, DEBTS_SCHEMA)),
            efforts=tuple(
                CollectionEffort.from_storage(r) for r in _storage_rows(efforts, COLLECTION_EFFORTS_SCHEMA)
            ),
            payments=tuple(Payment.from_storage(r) for r in _storage_rows(payments, PAYMENTS_SCHEMA)),
        )

    def counts(self) -> dict[str, int]:
        return {
            DEBTORS: len(self.debtors),
            DEBTS: len(self.debts),
            COLLECTION_EFFORTS: len(self.efforts),
            PAYMENTS: len(self.payments),
        }

    def to_arrow(self) -> dict[str, pa.Table]:
        """Return one typed Arrow table per relation (canonical names)."""
        return {
            DEBTORS: pa.Table.from_pylist(_storage_rows(self.debtors, DEBTORS_SCHEMA), schema=DEBTORS_SCHEMA),
            DEBTS: pa.Table.from_pylist(_storage_rows(self.debts, DEBTS_SCHEMA), schema=DEBTS_SCHEMA),
            COLLECTION_EFFORTS: pa.Table.from_pylist(
                _storage_rows(self.efforts, COLLECTION_EFFORTS_SCHEMA), schema=COLLECTION_EFFORTS_SCHEMA
            ),
            PAYMENTS: pa.Table.from_pylist(_storage_rows(self.payments, PAYMENTS_SCHEMA), schema=PAYMENTS_SCHEMA),
        }
