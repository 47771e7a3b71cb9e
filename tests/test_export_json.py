"""Tests for the JSON report export."""

from __future__ import annotations

import json

from contracts.collections_model import UnpaidCollectionRow
from pipeline.export_json import ExportConfig, build_summary, run_export
from pipeline.run_manifest import RunManifest


def _rows() -> list[UnpaidCollectionRow]:
    return [
        UnpaidCollectionRow(debt_id=10, debtor_id=1, first_name="Ana", last_name="Lopez", effort_count=3),
        UnpaidCollectionRow(debt_id=11, debtor_id=1, first_name="Ana", last_name="Lopez", effort_count=1),
        UnpaidCollectionRow(debt_id=20, debtor_id=2, first_name="Luis", last_name="Perez", effort_count=5),
        UnpaidCollectionRow(debt_id=30, debtor_id=None, first_name=None, last_name=None, effort_count=2),
    ]


def test_build_summary_ranks_debtors_by_effort() -> None:
    summary = build_summary(_rows(), top_debtors=2)

    assert summary["rows"] == 4
    assert summary["debtors"] == 2
    assert summary["debts_without_debtor"] == 1
    assert summary["efforts_total"] == 11
    assert summary["efforts_max"] == 5
    assert [(d["debtor_id"], d["debts"], d["effort_count"]) for d in summary["top_debtors"]] == [
        (2, 1, 5),
        (1, 2, 4),
    ]


def test_build_summary_of_empty_report() -> None:
    summary = build_summary([])
    assert summary["rows"] == 0
    assert summary["efforts_max"] == 0
    assert summary["top_debtors"] == []


def test_run_export_writes_rows_summary_and_manifest(tmp_path, caplog) -> None:
    manifest = RunManifest(run_id="run-1", run_ts="2026-03-01T08:30:00Z", engine="duckdb", row_count=4)

    caplog.set_level("WARNING")
    written = run_export(ExportConfig(out_dir=str(tmp_path), limit_rows=3), _rows(), manifest)

    assert [p.name for p in written] == ["unpaid_collections.json", "summary.json", "run_manifest.json"]

    rows = json.loads((tmp_path / "unpaid_collections.json").read_text(encoding="utf-8"))
    assert len(rows) == 3
    assert rows[0] == {
        "debtor_id": 1,
        "debt_id": 10,
        "first_name": "Ana",
        "last_name": "Lopez",
        "effort_count": 3,
        "total_paid": None,
    }
    assert any("export truncated" in r.message for r in caplog.records)

    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["run_id"] == "run-1"
    assert summary["engine"] == "duckdb"
    assert summary["rows"] == 4


def test_run_export_without_manifest(tmp_path) -> None:
    written = run_export(ExportConfig(out_dir=str(tmp_path / "nested" / "out")), _rows()[:1])
    assert [p.name for p in written] == ["unpaid_collections.json", "summary.json"]
    assert not (tmp_path / "nested" / "out" / "run_manifest.json").exists()
