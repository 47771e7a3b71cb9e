"""Load and seed the four input relations as Parquet datasets.

The in-memory engine needs the whole snapshot as typed Python records; this
module reads every Parquet file of each input dataset once, casts each row
through the storage contract and freezes the result.
"""

from __future__ import annotations

import glob as _glob
import logging
from typing import Any, Iterable, Mapping

import pyarrow as pa
import pyarrow.parquet as pq

from contracts.collections_model import (
    CollectionEffort,
    CollectionsSnapshot,
    Debt,
    Debtor,
    Payment,
)
from contracts.schema import (
    COLLECTION_EFFORTS,
    DEBTORS,
    DEBTS,
    INPUT_RELATIONS,
    PAYMENTS,
    RELATION_SCHEMAS,
)
from contracts.storage_cast import cast_for_storage
from infra.pipeline_paths import PipelinePaths
from pipeline.writer_parquet import ParquetWriterConfig, ParquetWriterStats, RelationParquetWriter

_LOGGER = logging.getLogger(__name__)


def _read_relation(pattern: str, schema: pa.Schema) -> list[dict[str, Any]]:
    files = sorted(f for f in _glob.glob(pattern, recursive=True) if f.endswith(".parquet"))
    if not files:
        _LOGGER.warning("no parquet files matched glob=%s", pattern)
        return []

    rows: list[dict[str, Any]] = []
    for path in files:
        table = pq.read_table(path)
        # Extra columns are ignored; missing ones come back as None and are
        # checked by the storage cast (required ids fail loudly).
        for rec in table.to_pylist():
            rows.append(cast_for_storage(rec, schema))
    return rows


def load_snapshot(paths: PipelinePaths) -> CollectionsSnapshot:
    """Read the four input datasets into one frozen snapshot."""
    globs = paths.input_globs()
    raw = {name: _read_relation(globs[name], RELATION_SCHEMAS[name]) for name in INPUT_RELATIONS}
    snapshot = CollectionsSnapshot(
        debtors=tuple(Debtor.from_storage(r) for r in raw[DEBTORS]),
        debts=tuple(Debt.from_storage(r) for r in raw[DEBTS]),
        efforts=tuple(CollectionEffort.from_storage(r) for r in raw[COLLECTION_EFFORTS]),
        payments=tuple(Payment.from_storage(r) for r in raw[PAYMENTS]),
    )
    _LOGGER.info("snapshot loaded counts=%s", snapshot.counts())
    return snapshot


def write_relation(
    paths: PipelinePaths,
    relation: str,
    records: Iterable[Mapping[str, Any]],
) -> ParquetWriterStats:
    """Replace one input dataset with *records* (no partitioning)."""
    if relation not in INPUT_RELATIONS:
        raise ValueError(f"Unknown input relation {relation!r}")
    target = paths.input_dir(relation)
    stale = sorted(target.rglob("*.parquet")) if target.is_dir() else []
    for old in stale:
        old.unlink()
    if stale:
        _LOGGER.info("Replaced %d parquet file(s) under %s", len(stale), target)
    writer = RelationParquetWriter(
        ParquetWriterConfig(
            base_dir=str(target),
            schema=RELATION_SCHEMAS[relation],
            partition_date_field=None,
        )
    )
    writer.extend(records)
    return writer.close()


def write_snapshot(paths: PipelinePaths, snapshot: CollectionsSnapshot) -> dict[str, int]:
    """Write every relation of *snapshot*; returns rows written per relation."""
    by_relation = {
        DEBTORS: snapshot.debtors,
        DEBTS: snapshot.debts,
        COLLECTION_EFFORTS: snapshot.efforts,
        PAYMENTS: snapshot.payments,
    }
    written: dict[str, int] = {}
    for relation, records in by_relation.items():
        stats = write_relation(paths, relation, (r.to_dict() for r in records))
        written[relation] = stats.written
    return written
