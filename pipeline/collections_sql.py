"""SQL rendition of the unpaid-collections pipeline.

One query text is rendered for both DuckDB (Parquet/Arrow inputs) and
PostgreSQL (live tables). Table and column names come from a
:class:`SourceMapping` so the same query runs against the canonical English
datasets and against the legacy Spanish schema
(``deudores``/``deudas``/``gestiones``/``pagos``).

Join flow (every CTE yields at most one row per key it is joined on):

    debt_links        (1 per debt row)
        -> LEFT JOIN debtors_dedup   (1 per debtor)
        -> LEFT JOIN effort_counts   (1 per debt, aggregated)
        -> LEFT JOIN payment_totals  (1 per debt, aggregated)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields

from infra.config import SourceConfig
from pipeline.aggregation import STAGES

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_ident(name: str) -> str:
    """Validate and double-quote a SQL identifier (portable across DuckDB/Postgres)."""
    text = str(name or "").strip()
    if not _IDENTIFIER_RE.match(text):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{text}"'


@dataclass(frozen=True)
class SourceMapping:
    """Physical table/column names of the four input relations."""

    debtors_table: str = "debtors"
    debtor_id: str = "debtor_id"
    first_name: str = "first_name"
    last_name: str = "last_name"

    debts_table: str = "debts"
    debt_id: str = "debt_id"
    debt_debtor_id: str = "debtor_id"

    efforts_table: str = "collection_efforts"
    effort_debt_id: str = "debt_id"

    payments_table: str = "payments"
    payment_debt_id: str = "debt_id"
    amount_paid: str = "amount_paid"

    def __post_init__(self) -> None:
        # Validate the important invariants early so misuse fails fast.
        for f in fields(self):
            quote_ident(getattr(self, f.name))

    def q(self, attr: str) -> str:
        return quote_ident(getattr(self, attr))

    def with_tables(
        self,
        *,
        debtors: str | None = None,
        debts: str | None = None,
        efforts: str | None = None,
        payments: str | None = None,
    ) -> SourceMapping:
        """Return a copy with some table names overridden (columns unchanged)."""
        return SourceMapping(
            **{
                **{f.name: getattr(self, f.name) for f in fields(self)},
                "debtors_table": debtors or self.debtors_table,
                "debts_table": debts or self.debts_table,
                "efforts_table": efforts or self.efforts_table,
                "payments_table": payments or self.payments_table,
            }
        )


CANONICAL_MAPPING = SourceMapping()

LEGACY_ES_MAPPING = SourceMapping(
    debtors_table="deudores",
    debtor_id="deudor_id",
    first_name="nombre",
    last_name="apellido",
    debts_table="deudas",
    debt_id="deuda_id",
    debt_debtor_id="deudor_id",
    efforts_table="gestiones",
    effort_debt_id="deuda_id",
    payments_table="pagos",
    payment_debt_id="deuda_id",
    amount_paid="monto_pagado",
)

PRESETS: dict[str, SourceMapping] = {
    "canonical": CANONICAL_MAPPING,
    "legacy_es": LEGACY_ES_MAPPING,
}


def mapping_for_preset(preset: str) -> SourceMapping:
    try:
        return PRESETS[preset]
    except KeyError as exc:
        raise ValueError(f"Unknown source preset {preset!r}; expected one of {', '.join(PRESETS)}") from exc


def source_mapping(cfg: SourceConfig, *, preset: str | None = None) -> SourceMapping:
    """Preset column layout (*preset* or the configured one) plus table-name overrides from settings."""
    return mapping_for_preset(preset or cfg.preset).with_tables(
        debtors=cfg.debtors_table,
        debts=cfg.debts_table,
        efforts=cfg.efforts_table,
        payments=cfg.payments_table,
    )


# -----------------------------
# CTEs
# -----------------------------


def _debtors_dedup_cte(m: SourceMapping) -> str:
    # Duplicate debtor rows collapse to one; on conflicting names the smallest
    # (first_name, last_name) pair wins, same rule as the in-memory engine.
    return f"""
    debtors_dedup AS (
        SELECT debtor_id, first_name, last_name
        FROM (
            SELECT
                {m.q("debtor_id")} AS debtor_id,
                {m.q("first_name")} AS first_name,
                {m.q("last_name")} AS last_name,
                row_number() OVER (
                    PARTITION BY {m.q("debtor_id")}
                    ORDER BY {m.q("first_name")} ASC NULLS LAST, {m.q("last_name")} ASC NULLS LAST
                ) AS rn
            FROM {m.q("debtors_table")}
        ) ranked
        WHERE rn = 1
    )"""


def _debt_links_cte(m: SourceMapping) -> str:
    return f"""
    debt_links AS (
        SELECT
            {m.q("debt_id")} AS debt_id,
            {m.q("debt_debtor_id")} AS debtor_id
        FROM {m.q("debts_table")}
    )"""


def _effort_counts_cte(m: SourceMapping) -> str:
    return f"""
    effort_counts AS (
        SELECT
            {m.q("effort_debt_id")} AS debt_id,
            count(*) AS effort_count
        FROM {m.q("efforts_table")}
        WHERE {m.q("effort_debt_id")} IS NOT NULL
        GROUP BY {m.q("effort_debt_id")}
    )"""


def _payment_totals_cte(m: SourceMapping) -> str:
    return f"""
    payment_totals AS (
        SELECT
            {m.q("payment_debt_id")} AS debt_id,
            sum({m.q("amount_paid")}) AS total_paid,
            count(*) AS payment_count
        FROM {m.q("payments_table")}
        WHERE {m.q("payment_debt_id")} IS NOT NULL
        GROUP BY {m.q("payment_debt_id")}
    )"""


def _all_ctes(m: SourceMapping) -> str:
    return "WITH" + ",".join(
        [_debtors_dedup_cte(m), _debt_links_cte(m), _effort_counts_cte(m), _payment_totals_cte(m)]
    )


def render_unpaid_collections_sql(mapping: SourceMapping = CANONICAL_MAPPING) -> str:
    """
    Debts with at least one collection effort and no payment row.

    The filter tests the join keys, not the aggregated values: a payment group
    whose sum is 0 (or null) still matched, so the debt is excluded.
    """
    return (
        _all_ctes(mapping)
        + """
    SELECT
        dl.debtor_id,
        dl.debt_id,
        dd.first_name,
        dd.last_name,
        ec.effort_count,
        pt.total_paid
    FROM debt_links dl
    LEFT JOIN debtors_dedup dd
        ON dl.debtor_id = dd.debtor_id
    LEFT JOIN effort_counts ec
        ON dl.debt_id = ec.debt_id
    LEFT JOIN payment_totals pt
        ON dl.debt_id = pt.debt_id
    WHERE ec.debt_id IS NOT NULL
      AND pt.debt_id IS NULL
    ORDER BY dl.debtor_id ASC NULLS LAST, dl.debt_id ASC
    """
    )


def render_stage_preview_sql(
    mapping: SourceMapping = CANONICAL_MAPPING,
    stage: str = "debtors",
    *,
    placeholder: str = "?",
) -> str:
    """
    One stage of the pipeline on its own, with a LIMIT parameter.

    Use placeholder="?" for DuckDB and "%s" for psycopg2.
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage {stage!r}; expected one of {', '.join(STAGES)}")
    if placeholder not in ("?", "%s"):
        raise ValueError(f"Unsupported placeholder {placeholder!r}")

    select = {
        "debtors": "SELECT debtor_id, first_name, last_name FROM debtors_dedup ORDER BY debtor_id",
        "debts": "SELECT debt_id, debtor_id FROM debt_links ORDER BY debt_id, debtor_id NULLS LAST",
        "efforts": "SELECT debt_id, effort_count FROM effort_counts ORDER BY effort_count DESC, debt_id",
        "payments": (
            "SELECT debt_id, total_paid, payment_count FROM payment_totals "
            "ORDER BY total_paid DESC NULLS LAST, debt_id"
        ),
    }[stage]
    return f"{_all_ctes(mapping)}\n    {select}\n    LIMIT {placeholder}"


def recommended_index_ddl(mapping: SourceMapping = CANONICAL_MAPPING) -> list[str]:
    """Indexes that let each aggregation and join use an index scan on the child key."""
    m = mapping
    return [
        (
            f"CREATE INDEX IF NOT EXISTS {quote_ident('idx_' + m.debts_table + '_debtor')} "
            f"ON {m.q('debts_table')} ({m.q('debt_debtor_id')}, {m.q('debt_id')});"
        ),
        (
            f"CREATE INDEX IF NOT EXISTS {quote_ident('idx_' + m.efforts_table + '_debt')} "
            f"ON {m.q('efforts_table')} ({m.q('effort_debt_id')});"
        ),
        (
            f"CREATE INDEX IF NOT EXISTS {quote_ident('idx_' + m.payments_table + '_debt')} "
            f"ON {m.q('payments_table')} ({m.q('payment_debt_id')});"
        ),
    ]
