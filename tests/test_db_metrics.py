"""Tests for query timing around the PostgreSQL source."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pytest

import apps.backend.db as db_mod
import apps.backend.db_metrics as db_metrics
from infra.config import clear_settings_cache
from infra.logging_config import clear_run_context, set_run_context


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Thresholds are read through the settings cache; rebuild it per test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
    clear_run_context()


@pytest.fixture()
def histogram() -> Iterator[list[tuple[str, float, list[str]]]]:
    observed: list[tuple[str, float, list[str]]] = []
    db_metrics.register_histogram_emitter(lambda name, value, tags: observed.append((name, value, list(tags))))
    yield observed
    db_metrics.register_histogram_emitter(None)


def _clock(monkeypatch: Any, *ticks: float) -> None:
    it = iter(ticks)
    monkeypatch.setattr(db_metrics.time, "perf_counter", lambda: next(it))


class _Cursor:
    description = [("debt_id", None, None, None, None, None, None), ("effort_count",) + (None,) * 6]

    def __init__(self, statements: list[str]) -> None:
        self._statements = statements

    def __enter__(self) -> _Cursor:
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, sql: str, params: Any) -> None:
        self._statements.append(sql)

    def fetchall(self) -> list[tuple[int, int]]:
        return [(10, 3)]


class _Conn:
    def __init__(self) -> None:
        self.statements: list[str] = []

    def cursor(self) -> _Cursor:
        return _Cursor(self.statements)


def test_duration_is_observed_in_milliseconds(monkeypatch: Any, histogram: list) -> None:
    monkeypatch.setenv("DB_SLOW_QUERY_THRESHOLD_MS", "9999")
    _clock(monkeypatch, 1.0, 1.25)

    with db_metrics.measure_query("unpaid_collections"):
        pass

    assert histogram == [("db_query_duration_ms", 250.0, ["query:unpaid_collections"])]


def test_histogram_tags_include_run_engine(histogram: list) -> None:
    set_run_context(engine="postgres")
    with db_metrics.measure_query("preview:efforts"):
        pass

    assert histogram[0][2] == ["query:preview:efforts", "engine:postgres"]


def test_slow_statement_is_logged(monkeypatch: Any, caplog: Any) -> None:
    monkeypatch.setenv("DB_SLOW_QUERY_THRESHOLD_MS", "10")
    _clock(monkeypatch, 2.0, 2.05)

    caplog.set_level("WARNING")
    with db_metrics.measure_query("slow_path"):
        pass

    assert [r.message for r in caplog.records] == ["slow_query query_name=slow_path duration_ms=50.00"]
    assert caplog.records[0].event == "slow_query"


def test_fast_statement_is_not_logged(monkeypatch: Any, caplog: Any) -> None:
    monkeypatch.setenv("DB_SLOW_QUERY_THRESHOLD_MS", "100")
    _clock(monkeypatch, 2.0, 2.05)

    caplog.set_level("WARNING")
    with db_metrics.measure_query("fast_path"):
        pass

    assert caplog.records == []


def test_disabled_metrics_skip_timing(monkeypatch: Any, histogram: list) -> None:
    monkeypatch.setenv("DB_QUERY_METRICS_ENABLED", "0")
    monkeypatch.setenv("DB_SLOW_QUERY_THRESHOLD_MS", "0")

    with db_metrics.measure_query("disabled_case"):
        pass

    assert histogram == []


def test_statement_error_still_records_duration(histogram: list) -> None:
    with pytest.raises(RuntimeError, match="statement failed"):
        with db_metrics.measure_query("failing"):
            raise RuntimeError("statement failed")

    assert [name for name, _, _ in histogram] == ["db_query_duration_ms"]


def test_broken_emitter_does_not_fail_the_query() -> None:
    def _broken(name: str, value: float, tags: Any) -> None:
        raise RuntimeError("statsd down")

    db_metrics.register_histogram_emitter(_broken)
    try:
        with db_metrics.measure_query("still_ok"):
            result = "done"
    finally:
        db_metrics.register_histogram_emitter(None)

    assert result == "done"


def test_db_primitives_time_each_named_statement(monkeypatch: Any) -> None:
    measured: list[str] = []

    @contextmanager
    def _capture(name: str) -> Iterator[None]:
        measured.append(name)
        yield

    monkeypatch.setattr(db_mod, "measure_query", _capture)
    conn = _Conn()

    db_mod.execute(conn, db_mod.SNAPSHOT_STATEMENT, query_name="snapshot")
    rows = db_mod.fetch_rows(conn, "SELECT debt_id, effort_count FROM x", query_name="unpaid_collections")

    assert rows == [{"debt_id": 10, "effort_count": 3}]
    assert conn.statements == [db_mod.SNAPSHOT_STATEMENT, "SELECT debt_id, effort_count FROM x"]
    assert measured == ["snapshot", "unpaid_collections"]
