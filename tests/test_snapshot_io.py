"""Tests for reading and seeding the Parquet input datasets."""

from __future__ import annotations

from decimal import Decimal

import pytest

from contracts.schema import COLLECTION_EFFORTS, DEBTORS, DEBTS, PAYMENTS
from infra.pipeline_paths import PipelinePaths
from pipeline.aggregation import find_unpaid_collections
from pipeline.snapshot_io import load_snapshot, write_relation, write_snapshot
from tests.factories import abc_snapshot


def test_write_then_load_keeps_the_snapshot(tmp_path) -> None:
    paths = PipelinePaths.with_overrides(data_dir=tmp_path)
    snap = abc_snapshot()

    written = write_snapshot(paths, snap)
    assert written == {DEBTORS: 3, DEBTS: 3, COLLECTION_EFFORTS: 4, PAYMENTS: 1}
    assert (tmp_path / "collection_efforts").is_dir()

    loaded = load_snapshot(paths)
    assert loaded.counts() == snap.counts()
    assert loaded.payments[0].amount_paid == Decimal("50")
    assert find_unpaid_collections(loaded) == find_unpaid_collections(snap)


def test_missing_datasets_load_as_empty_relations(tmp_path, caplog) -> None:
    paths = PipelinePaths.with_overrides(data_dir=tmp_path)
    write_relation(paths, DEBTS, [{"debt_id": 1, "debtor_id": None}])

    caplog.set_level("WARNING")
    loaded = load_snapshot(paths)

    assert loaded.counts() == {DEBTORS: 0, DEBTS: 1, COLLECTION_EFFORTS: 0, PAYMENTS: 0}
    assert any("no parquet files matched" in r.message for r in caplog.records)


def test_write_relation_rejects_unknown_relation(tmp_path) -> None:
    paths = PipelinePaths.with_overrides(data_dir=tmp_path)
    with pytest.raises(ValueError, match="Unknown input relation"):
        write_relation(paths, "unpaid_collections", [])


def test_write_relation_replaces_previous_files(tmp_path) -> None:
    paths = PipelinePaths.with_overrides(data_dir=tmp_path)
    write_relation(paths, DEBTS, [{"debt_id": 1, "debtor_id": 7}, {"debt_id": 2, "debtor_id": 7}])
    write_relation(paths, DEBTS, [{"debt_id": 3, "debtor_id": 8}])

    loaded = load_snapshot(paths)
    assert [(d.debt_id, d.debtor_id) for d in loaded.debts] == [(3, 8)]
    assert len(list((tmp_path / DEBTS).rglob("*.parquet"))) == 1


def test_write_snapshot_twice_does_not_duplicate_rows(tmp_path) -> None:
    paths = PipelinePaths.with_overrides(data_dir=tmp_path)
    write_snapshot(paths, abc_snapshot())
    write_snapshot(paths, abc_snapshot())

    loaded = load_snapshot(paths)
    assert loaded.counts() == abc_snapshot().counts()
    assert [(r.debt_id, r.effort_count) for r in find_unpaid_collections(loaded)] == [(10, 3)]
