"""DuckDB engine for the unpaid-collections query.

The four relations are exposed to DuckDB under their canonical names, either
as registered Arrow tables (in-memory snapshot) or as views over Parquet
datasets, and the shared SQL from :mod:`pipeline.collections_sql` runs
against them.
"""

from __future__ import annotations

import glob as _glob
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from types import TracebackType
from typing import Any

import duckdb
import pyarrow as pa

from contracts.collections_model import CollectionsSnapshot, UnpaidCollectionRow
from contracts.schema import INPUT_RELATIONS, RELATION_SCHEMAS
from pipeline.collections_sql import (
    CANONICAL_MAPPING,
    render_stage_preview_sql,
    render_unpaid_collections_sql,
)

_LOGGER = logging.getLogger(__name__)


def jsonable(value: Any) -> Any:
    """Dates as ISO strings and decimals as exact strings; everything else unchanged."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _sql_literal(text: str) -> str:
    return "'" + str(text).replace("'", "''") + "'"


@dataclass(frozen=True)
class DuckDBConfig:
    database: str = ":memory:"
    threads: int = 4


class DuckDBClient:
    """
    Minimal DuckDB query layer over the four collections relations.

    Relations are exposed under their canonical names (debtors, debts,
    collection_efforts, payments), either as registered Arrow tables or as
    views over Parquet datasets.
    """

    def __init__(self, cfg: DuckDBConfig | None = None) -> None:
        self._cfg = cfg or DuckDBConfig()
        self._con = duckdb.connect(self._cfg.database, read_only=False)
        self._con.execute(f"PRAGMA threads={int(self._cfg.threads)};")
        self._con.execute("PRAGMA enable_progress_bar=false;")

    def close(self) -> None:
        self._con.close()

    def __enter__(self) -> DuckDBClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # -------------------------
    # Relation registration
    # -------------------------

    def register_table(self, name: str, table: pa.Table) -> None:
        self._con.register(name, table)

    def register_snapshot(self, snapshot: CollectionsSnapshot) -> None:
        """Expose an in-memory snapshot as the four canonical relations."""
        for name, table in snapshot.to_arrow().items():
            self.register_table(name, table)

    def register_parquet(self, globs_by_relation: Mapping[str, str]) -> dict[str, int]:
        """
        Create one view per input relation over its Parquet files.

        A relation with no files is registered as an empty typed table so the
        query still runs (a missing dataset is an empty relation, not an error).
        Returns the number of files matched per relation.
        """
        matched: dict[str, int] = {}
        for name in INPUT_RELATIONS:
            pattern = globs_by_relation.get(name, "")
            files = sorted(f for f in _glob.glob(pattern, recursive=True) if f.endswith(".parquet")) if pattern else []
            matched[name] = len(files)
            if not files:
                _LOGGER.warning("no parquet files for relation=%s glob=%s", name, pattern)
                self.register_table(name, RELATION_SCHEMAS[name].empty_table())
                continue
            file_list = "[" + ", ".join(_sql_literal(f) for f in files) + "]"
            # union_by_name allows schema evolution (new columns later)
            self._con.execute(
                f'CREATE OR REPLACE VIEW "{name}" AS '
                f"SELECT * FROM read_parquet({file_list}, union_by_name=true);"
            )
        return matched

    # -------------------------
    # Internal helpers
    # -------------------------

    def _exec(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        result = self._con.execute(sql, params)
        names = [col[0] for col in result.description]
        return [dict(zip(names, row, strict=True)) for row in result.fetchall()]

    # -------------------------
    # Public API queries
    # -------------------------

    def unpaid_collections(self) -> list[UnpaidCollectionRow]:
        """
        Debts with collection efforts and no payment record.

        Runs as a single statement, so all four aggregations read the same
        state of the registered relations.
        """
        rows = self._exec(render_unpaid_collections_sql(CANONICAL_MAPPING), [])
        return [UnpaidCollectionRow.from_query_row(r) for r in rows]

    def preview_stage(self, stage: str, *, limit: int = 10) -> list[dict[str, Any]]:
        """
        First *limit* rows of one stage (CTE) of the pipeline, JSON-friendly.
        """
        sql = render_stage_preview_sql(CANONICAL_MAPPING, stage, placeholder="?")
        rows = self._exec(sql, [max(0, int(limit))])
        return [{k: jsonable(v) for k, v in r.items()} for r in rows]

    def to_json(self, obj: Any) -> str:
        return json.dumps(obj, default=lambda v: str(jsonable(v)), ensure_ascii=False)
