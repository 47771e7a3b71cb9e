"""In-memory aggregation-before-join pipeline.

Finds debts that received collection efforts but have no payment record.

Each child relation is collapsed to at most one entry per ``debt_id`` *before*
anything is joined, so the join fan-out stays at exactly one row per debt.
Joining efforts and payments first and aggregating afterwards would multiply
``effort_count`` by the number of payment rows (and the payment sum by the
number of efforts).

Stages (each one an immutable mapping built in a single pass):

  debtors   -> debtor_id -> DebtorNames           (duplicates collapsed)
  debts     -> Debt rows, untouched               (one-to-many kept)
  efforts   -> debt_id -> effort_count            (only debts with >= 1 effort)
  payments  -> debt_id -> PaymentTotal            (only debts with >= 1 payment row)

The filter keeps a debt when the effort entry is present and the payment entry
is *absent*. A payment entry whose total is 0 (or null) is still present.
"""

from __future__ import annotations

import decimal
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from contracts.collections_model import (
    CollectionEffort,
    CollectionsSnapshot,
    Debt,
    Debtor,
    Payment,
    UnpaidCollectionRow,
)

_LOGGER = logging.getLogger(__name__)

STAGES = ("debtors", "debts", "efforts", "payments")

# decimal(18, 6) summed over many rows needs far less than 38 digits; anything
# that would round is a data problem and must not pass silently.
_MONEY_CONTEXT = decimal.Context(
    prec=38,
    rounding=decimal.ROUND_HALF_EVEN,
    traps=[decimal.Inexact, decimal.Overflow, decimal.InvalidOperation],
)


class PaymentPrecisionError(ArithmeticError):
    """Raised when a payment total cannot be represented exactly."""


@dataclass(frozen=True)
class DebtorNames:
    first_name: str | None
    last_name: str | None


@dataclass(frozen=True)
class PaymentTotal:
    """Aggregate of every payment row recorded against one debt."""
    total_paid: Decimal | None
    payment_count: int


@dataclass(frozen=True)
class ComposedDebt:
    """One debt with its optional lookups (LEFT JOIN misses are None)."""
    debt: Debt
    debtor: DebtorNames | None
    effort_count: int | None
    payments: PaymentTotal | None


@dataclass(frozen=True)
class PipelineStages:
    debtors: Mapping[int, DebtorNames]
    debts: tuple[Debt, ...]
    efforts: Mapping[int, int]
    payments: Mapping[int, PaymentTotal]


# -----------------------------
# Stages
# -----------------------------


def _name_key(names: DebtorNames) -> tuple[bool, str, bool, str]:
    # ORDER BY first_name, last_name NULLS LAST
    return (
        names.first_name is None,
        names.first_name or "",
        names.last_name is None,
        names.last_name or "",
    )


def dedupe_debtors(debtors: Iterable[Debtor]) -> Mapping[int, DebtorNames]:
    """
    Collapse raw debtor rows to one entry per debtor_id.

    Identical duplicates are a known data-quality defect and collapse silently.
    When duplicates disagree on names, the smallest (first_name, last_name)
    pair wins so every engine resolves the conflict the same way.
    """
    chosen: dict[int, DebtorNames] = {}
    conflicting: set[int] = set()
    for row in debtors:
        names = DebtorNames(first_name=row.first_name, last_name=row.last_name)
        current = chosen.get(row.debtor_id)
        if current is None:
            chosen[row.debtor_id] = names
            continue
        if current == names:
            continue
        conflicting.add(row.debtor_id)
        if _name_key(names) < _name_key(current):
            chosen[row.debtor_id] = names

    if conflicting:
        _LOGGER.warning(
            "debtor_name_conflicts count=%d sample=%s",
            len(conflicting),
            sorted(conflicting)[:10],
        )
    return MappingProxyType(chosen)


def debt_owners(debts: Iterable[Debt]) -> tuple[Debt, ...]:
    """Debt -> debtor association. No aggregation: one entry per debt row."""
    return tuple(debts)


def count_efforts(efforts: Iterable[CollectionEffort]) -> Mapping[int, int]:
    """debt_id -> number of collection efforts, for debts with at least one."""
    counts: dict[int, int] = {}
    for effort in efforts:
        if effort.debt_id is None:
            continue
        counts[effort.debt_id] = counts.get(effort.debt_id, 0) + 1
    return MappingProxyType(counts)


def _add_money(total: Decimal | None, amount: Decimal | None, *, debt_id: int) -> Decimal | None:
    if amount is None:
        return total
    if total is None:
        return amount
    try:
        return _MONEY_CONTEXT.add(total, amount)
    except (decimal.Inexact, decimal.Overflow, decimal.InvalidOperation) as exc:
        raise PaymentPrecisionError(
            f"payment total for debt_id={debt_id} cannot be represented exactly"
        ) from exc


def sum_payments(payments: Iterable[Payment]) -> Mapping[int, PaymentTotal]:
    """
    debt_id -> PaymentTotal, for debts with at least one payment row.

    Negative amounts net into the total. Null amounts are skipped by the sum
    (like SQL SUM) but the debt still has a payment aggregate.
    """
    totals: dict[int, Decimal | None] = {}
    counts: dict[int, int] = {}
    for payment in payments:
        if payment.debt_id is None:
            continue
        debt_id = payment.debt_id
        totals[debt_id] = _add_money(totals.get(debt_id), payment.amount_paid, debt_id=debt_id)
        counts[debt_id] = counts.get(debt_id, 0) + 1
    return MappingProxyType(
        {debt_id: PaymentTotal(total_paid=totals[debt_id], payment_count=n) for debt_id, n in counts.items()}
    )


def build_stages(snapshot: CollectionsSnapshot) -> PipelineStages:
    """Build every staged map from one snapshot."""
    return PipelineStages(
        debtors=dedupe_debtors(snapshot.debtors),
        debts=debt_owners(snapshot.debts),
        efforts=count_efforts(snapshot.efforts),
        payments=sum_payments(snapshot.payments),
    )


# -----------------------------
# Join + filter
# -----------------------------


def compose(stages: PipelineStages) -> Iterator[ComposedDebt]:
    """Debt-driven LEFT JOIN chain: every debt row yields exactly one ComposedDebt."""
    for debt in stages.debts:
        debtor = stages.debtors.get(debt.debtor_id) if debt.debtor_id is not None else None
        yield ComposedDebt(
            debt=debt,
            debtor=debtor,
            effort_count=stages.efforts.get(debt.debt_id),
            payments=stages.payments.get(debt.debt_id),
        )


def keep_unpaid(composed: Iterable[ComposedDebt]) -> Iterator[UnpaidCollectionRow]:
    """Keep debts with an effort aggregate and no payment aggregate at all."""
    for item in composed:
        if item.effort_count is None or item.payments is not None:
            continue
        yield UnpaidCollectionRow(
            debt_id=item.debt.debt_id,
            debtor_id=item.debt.debtor_id,
            first_name=item.debtor.first_name if item.debtor else None,
            last_name=item.debtor.last_name if item.debtor else None,
            effort_count=item.effort_count,
            total_paid=None,
        )


def find_unpaid_collections(snapshot: CollectionsSnapshot) -> list[UnpaidCollectionRow]:
    """Debts with collection efforts but no recorded payments, one row per debt."""
    rows = list(keep_unpaid(compose(build_stages(snapshot))))
    rows.sort(key=UnpaidCollectionRow.sort_key)
    return rows


# -----------------------------
# Stage inspection
# -----------------------------


def preview_stage(snapshot: CollectionsSnapshot, stage: str, *, limit: int = 10) -> list[dict[str, Any]]:
    """
    Return the first *limit* entries of one stage, for debugging a stage in isolation.

    debtors and debts are ordered by id (debts with a null debtor_id last),
    efforts by effort_count DESC and payments by total_paid DESC,
    ties broken by debt_id.
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage {stage!r}; expected one of {', '.join(STAGES)}")
    limit = max(0, int(limit))

    if stage == "debtors":
        debtors = dedupe_debtors(snapshot.debtors)
        return [
            {"debtor_id": debtor_id, "first_name": names.first_name, "last_name": names.last_name}
            for debtor_id, names in sorted(debtors.items())[:limit]
        ]
    if stage == "debts":
        debts = sorted(debt_owners(snapshot.debts), key=lambda d: (d.debt_id, d.debtor_id is None, d.debtor_id or 0))
        return [d.to_dict() for d in debts[:limit]]
    if stage == "efforts":
        efforts = count_efforts(snapshot.efforts)
        ordered = sorted(efforts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [{"debt_id": debt_id, "effort_count": n} for debt_id, n in ordered[:limit]]

    payments = sum_payments(snapshot.payments)
    ordered_payments = sorted(
        payments.items(),
        key=lambda kv: (kv[1].total_paid is None, -(kv[1].total_paid or Decimal(0)), kv[0]),
    )
    return [
        {"debt_id": debt_id, "total_paid": agg.total_paid, "payment_count": agg.payment_count}
        for debt_id, agg in ordered_payments[:limit]
    ]
