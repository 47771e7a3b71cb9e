"""Contracts and canonical schema.

The contracts package defines:
- the canonical Arrow schemas used for the input relations and the report
- wire-to-storage casting (strict about ids and money)
- the typed records and the read-only snapshot shared by all engines

Main exports:
- Debtor, Debt, CollectionEffort, Payment, UnpaidCollectionRow, CollectionsSnapshot
- cast_for_storage, StorageCastError
"""

from contracts import collections_model
from contracts import storage_cast

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "CollectionEffort",
    "CollectionsSnapshot",
    "Debt",
    "Debtor",
    "Payment",
    "StorageCastError",
    "UnpaidCollectionRow",
    "cast_for_storage",
]

# Re-export for convenience
CollectionEffort = collections_model.CollectionEffort
CollectionsSnapshot = collections_model.CollectionsSnapshot
Debt = collections_model.Debt
Debtor = collections_model.Debtor
Payment = collections_model.Payment
UnpaidCollectionRow = collections_model.UnpaidCollectionRow

StorageCastError = storage_cast.StorageCastError
cast_for_storage = storage_cast.cast_for_storage
