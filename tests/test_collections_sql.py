"""Tests for the SQL rendition (text-level; execution is covered by the DuckDB tests)."""

from __future__ import annotations

import pytest

from infra.config import SourceConfig
from pipeline.collections_sql import (
    CANONICAL_MAPPING,
    LEGACY_ES_MAPPING,
    SourceMapping,
    mapping_for_preset,
    quote_ident,
    recommended_index_ddl,
    render_stage_preview_sql,
    render_unpaid_collections_sql,
    source_mapping,
)


def test_quote_ident_accepts_plain_identifiers() -> None:
    assert quote_ident("deudores") == '"deudores"'
    assert quote_ident(" debt_id ") == '"debt_id"'


@pytest.mark.parametrize("bad", ["", "1abc", "a-b", 'x"; DROP TABLE debts; --', "schema.table"])
def test_quote_ident_rejects_unsafe_names(bad: str) -> None:
    with pytest.raises(ValueError):
        quote_ident(bad)


def test_source_mapping_validates_on_construction() -> None:
    with pytest.raises(ValueError):
        SourceMapping(payments_table="pagos; --")


def test_unpaid_query_aggregates_before_joining_and_filters_on_keys() -> None:
    sql = render_unpaid_collections_sql(CANONICAL_MAPPING)

    for cte in ("debtors_dedup AS", "debt_links AS", "effort_counts AS", "payment_totals AS"):
        assert cte in sql
    assert "count(*) AS effort_count" in sql
    assert "WHERE ec.debt_id IS NOT NULL" in sql
    assert "AND pt.debt_id IS NULL" in sql
    assert "ORDER BY dl.debtor_id ASC NULLS LAST, dl.debt_id ASC" in sql
    # The joins only ever see aggregated child relations.
    assert sql.count("GROUP BY") == 2


def test_legacy_preset_renders_spanish_schema() -> None:
    sql = render_unpaid_collections_sql(LEGACY_ES_MAPPING)

    for name in ('"deudores"', '"deudas"', '"gestiones"', '"pagos"', '"monto_pagado"', '"nombre"', '"apellido"'):
        assert name in sql
    assert '"collection_efforts"' not in sql


def test_mapping_for_preset_and_table_overrides() -> None:
    assert mapping_for_preset("legacy_es") is LEGACY_ES_MAPPING
    with pytest.raises(ValueError, match="Unknown source preset"):
        mapping_for_preset("klingon")

    m = LEGACY_ES_MAPPING.with_tables(payments="pagos_2024")
    assert m.payments_table == "pagos_2024"
    assert m.amount_paid == "monto_pagado"
    assert m.debtors_table == "deudores"


def test_source_mapping_lets_an_explicit_preset_win_over_settings() -> None:
    cfg = SourceConfig(preset="canonical", payments_table="pagos_2024")

    m = source_mapping(cfg, preset="legacy_es")
    assert m.debtors_table == "deudores"
    assert m.payments_table == "pagos_2024"
    assert source_mapping(cfg).debtors_table == "debtors"


@pytest.mark.parametrize(
    ("stage", "fragment"),
    [
        ("debtors", "FROM debtors_dedup ORDER BY debtor_id"),
        ("debts", "FROM debt_links"),
        ("efforts", "ORDER BY effort_count DESC, debt_id"),
        ("payments", "ORDER BY total_paid DESC NULLS LAST, debt_id"),
    ],
)
def test_stage_preview_sql(stage: str, fragment: str) -> None:
    sql = render_stage_preview_sql(CANONICAL_MAPPING, stage, placeholder="%s")
    assert fragment in sql
    assert sql.rstrip().endswith("LIMIT %s")


def test_stage_preview_sql_rejects_unknown_stage_and_placeholder() -> None:
    with pytest.raises(ValueError, match="Unknown stage"):
        render_stage_preview_sql(CANONICAL_MAPPING, "everything")
    with pytest.raises(ValueError, match="placeholder"):
        render_stage_preview_sql(CANONICAL_MAPPING, "debts", placeholder=":limit")


def test_recommended_index_ddl_covers_every_child_key() -> None:
    ddl = recommended_index_ddl(LEGACY_ES_MAPPING)

    assert ddl == [
        'CREATE INDEX IF NOT EXISTS "idx_deudas_debtor" ON "deudas" ("deudor_id", "deuda_id");',
        'CREATE INDEX IF NOT EXISTS "idx_gestiones_debt" ON "gestiones" ("deuda_id");',
        'CREATE INDEX IF NOT EXISTS "idx_pagos_debt" ON "pagos" ("deuda_id");',
    ]
