"""Tests for run manifest persistence."""

from __future__ import annotations

import json

import pytest

from pipeline.run_manifest import RunManifest, find_manifest, load_manifest, manifest_path, write_manifest


def _manifest(**overrides) -> RunManifest:
    data = {
        "run_id": "run-2026-03-01T08:30:00Z",
        "run_ts": "2026-03-01T08:30:00Z",
        "engine": "memory",
        "engine_name": "collectionsanalyzer",
        "engine_version": "0.1.0",
        "schema_version": 1,
        "source": "parquet:data",
        "input_counts": {"debtors": 3, "debts": 3, "collection_efforts": 4, "payments": 1},
        "row_count": 1,
        "out_results": "data/unpaid_collections",
    }
    data.update(overrides)
    return RunManifest(**data)


def test_write_and_load_round_trip(tmp_path) -> None:
    path = write_manifest(tmp_path, _manifest())

    assert path == manifest_path(tmp_path)
    assert not path.with_suffix(".json.tmp").exists()

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["created_at"].endswith("Z")

    loaded = load_manifest(path)
    assert loaded.run_id == "run-2026-03-01T08:30:00Z"
    assert loaded.input_counts == {"debtors": 3, "debts": 3, "collection_efforts": 4, "payments": 1}
    assert loaded.export_dir is None


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"run_id": ""}, "run_id"),
        ({"run_ts": ""}, "run_ts"),
        ({"engine": "spark"}, "unknown engine"),
        ({"row_count": -1}, "row_count"),
    ],
)
def test_validate_rejects_incomplete_manifests(tmp_path, overrides, message) -> None:
    with pytest.raises(ValueError, match=message):
        write_manifest(tmp_path, _manifest(**overrides))
    assert not manifest_path(tmp_path).exists()


def test_load_rejects_non_object_payload(tmp_path) -> None:
    path = tmp_path / "run_manifest.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError, match="expected object"):
        load_manifest(path)


def test_find_manifest_walks_up_to_default_layout(tmp_path) -> None:
    results = tmp_path / "data" / "unpaid_collections"
    written = write_manifest(results, _manifest())
    nested = tmp_path / "reports" / "2026"
    nested.mkdir(parents=True)

    assert find_manifest(nested) == written.resolve()
    assert find_manifest(results) == written.resolve()
    assert find_manifest(nested, max_levels=1) is None


def test_from_dict_ignores_unknown_keys_and_blanks() -> None:
    m = RunManifest.from_dict({
        "run_id": " run-1 ",
        "run_ts": "2026-03-01T08:30:00Z",
        "engine": "duckdb",
        "source": "",
        "row_count": None,
        "legacy_field": "x",
    })
    assert (m.run_id, m.source, m.row_count) == ("run-1", None, 0)
