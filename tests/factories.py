"""Shared lightweight factories for tests.

These helpers reduce repeated snapshot boilerplate without introducing
runtime dependencies on external factory libraries.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from contracts.collections_model import CollectionsSnapshot


def debtor(debtor_id: int, first_name: str | None = "Ana", last_name: str | None = "Lopez") -> dict[str, Any]:
    return {"debtor_id": debtor_id, "first_name": first_name, "last_name": last_name}


def debt(debt_id: int, debtor_id: int | None) -> dict[str, Any]:
    return {"debt_id": debt_id, "debtor_id": debtor_id}


def efforts(debt_id: int | None, n: int, *, start_id: int = 1) -> list[dict[str, Any]]:
    """*n* collection efforts against one debt, with consecutive effort ids."""
    return [{"effort_id": start_id + i, "debt_id": debt_id} for i in range(n)]


def payment(debt_id: int | None, amount: Any = "10", *, payment_id: int | None = None) -> dict[str, Any]:
    return {"payment_id": payment_id, "debt_id": debt_id, "amount_paid": amount}


def make_snapshot(
    *,
    debtors: Iterable[dict[str, Any]] = (),
    debts: Iterable[dict[str, Any]] = (),
    efforts: Iterable[dict[str, Any]] = (),
    payments: Iterable[dict[str, Any]] = (),
) -> CollectionsSnapshot:
    """Build a snapshot from wire dicts (cast through the storage contract)."""
    return CollectionsSnapshot.from_records(debtors=debtors, debts=debts, efforts=efforts, payments=payments)


def abc_snapshot() -> CollectionsSnapshot:
    """
    The reference scenario:
      A (1) debt 10: 3 efforts, no payments  -> reported with effort_count=3
      B (2) debt 20: 1 effort, payment of 50 -> excluded
      C (3) debt 30: no efforts              -> excluded
    """
    return make_snapshot(
        debtors=[debtor(1, "A", "Alpha"), debtor(2, "B", "Beta"), debtor(3, "C", "Gamma")],
        debts=[debt(10, 1), debt(20, 2), debt(30, 3)],
        efforts=[*efforts(10, 3, start_id=100), *efforts(20, 1, start_id=200)],
        payments=[payment(20, Decimal("50"), payment_id=1)],
    )
