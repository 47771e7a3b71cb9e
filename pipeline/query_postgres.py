"""Run the unpaid-collections query against a live PostgreSQL database.

The source tables are owned by another system and keep changing while the
report runs; each call therefore evaluates inside one read-only
REPEATABLE READ transaction (see :func:`apps.backend.db.snapshot_conn`).
"""

from __future__ import annotations

import logging
from typing import Any

from apps.backend.db import fetch_rows, snapshot_conn
from contracts.collections_model import UnpaidCollectionRow
from pipeline.collections_sql import (
    CANONICAL_MAPPING,
    SourceMapping,
    render_stage_preview_sql,
    render_unpaid_collections_sql,
)

_LOGGER = logging.getLogger(__name__)


class PostgresCollectionsSource:
    """Collections relations living in PostgreSQL tables described by a SourceMapping."""

    def __init__(self, mapping: SourceMapping = CANONICAL_MAPPING) -> None:
        self._mapping = mapping

    @property
    def mapping(self) -> SourceMapping:
        return self._mapping

    def unpaid_collections(self) -> list[UnpaidCollectionRow]:
        sql = render_unpaid_collections_sql(self._mapping)
        with snapshot_conn() as conn:
            rows = fetch_rows(conn, sql, query_name="unpaid_collections")
        _LOGGER.debug("postgres unpaid_collections rows=%d tables=%s", len(rows), self._mapping.debts_table)
        return [UnpaidCollectionRow.from_query_row(r) for r in rows]

    def preview_stage(self, stage: str, *, limit: int = 10) -> list[dict[str, Any]]:
        sql = render_stage_preview_sql(self._mapping, stage, placeholder="%s")
        with snapshot_conn() as conn:
            return fetch_rows(conn, sql, [max(0, int(limit))], query_name=f"preview:{stage}")
