"""Typed Parquet writer for the collections datasets.

Records are cast against an Arrow schema on the way in, buffered per
partition, and written as ``part-<uuid>.parquet`` files. The same writer
stores the unpaid-collections result (partitioned by run date) and seeds the
four input relations (unpartitioned).
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from types import TracebackType
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from contracts.storage_cast import StorageCastError, cast_for_storage


class ParquetWriteError(RuntimeError):
    """Raised when a record cannot be stored or a Parquet file cannot be written."""


_EXACT_MONEY_TYPES = (int, Decimal, str)


def _reject_inexact_money(wire_record: Mapping[str, Any], schema: pa.Schema) -> None:
    """A float amount has already been through binary rounding; refuse it."""
    for f in schema:
        if not pa.types.is_decimal(f.type):
            continue
        v = wire_record.get(f.name)
        if v is None or (isinstance(v, _EXACT_MONEY_TYPES) and not isinstance(v, bool)):
            continue
        raise ParquetWriteError(
            f"Money field must be exact (int/Decimal/str) or None: {f.name}={v!r} ({type(v).__name__})"
        )


@dataclass
class ParquetWriterConfig:
    """Where and how one dataset is written."""
    base_dir: str
    schema: pa.Schema

    # Hive-style directory named after this field, valued from run_ts; None disables partitioning
    partition_date_field: Optional[str] = "run_date"

    compression: str = "zstd"
    use_dictionary: bool = True

    max_rows_per_file: int = 200_000
    max_buffered_rows: int = 200_000

    drop_invalid_on_cast: bool = False
    max_error_samples: int = 50


@dataclass
class ParquetWriterStats:
    received: int = 0
    written: int = 0
    files: int = 0
    dropped_cast_errors: int = 0
    cast_errors: List[str] = field(default_factory=list)


class RelationParquetWriter:
    """
    Writes wire records (JSON-friendly dicts) to Parquet under ``base_dir``.

    Layout:
      {base_dir}/run_date=<YYYY-MM-DD>/part-<uuid>.parquet   (partitioned)
      {base_dir}/part-<uuid>.parquet                         (partition_date_field=None)

    Invalid records raise ParquetWriteError, or are counted and skipped when
    ``drop_invalid_on_cast`` is set.
    """

    def __init__(self, config: ParquetWriterConfig) -> None:
        self._cfg = config
        self._base = Path(config.base_dir)
        self._pending: Dict[Path, List[Dict[str, Any]]] = defaultdict(list)
        self._buffered = 0
        self.stats = ParquetWriterStats()

        self._base.mkdir(parents=True, exist_ok=True)

    def __enter__(self) -> RelationParquetWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()

    def append(self, wire_record: Mapping[str, Any]) -> None:
        self.stats.received += 1
        try:
            _reject_inexact_money(wire_record, self._cfg.schema)
            storage = cast_for_storage(wire_record, self._cfg.schema)
        except (StorageCastError, ParquetWriteError) as exc:
            self._note_rejected(exc)
            if self._cfg.drop_invalid_on_cast:
                return
            if isinstance(exc, StorageCastError):
                raise ParquetWriteError(f"Storage cast failed: {exc}") from exc
            raise

        self._pending[self._target_dir(storage)].append(storage)
        self._buffered += 1
        if self._buffered >= self._cfg.max_buffered_rows:
            self.flush()

    def extend(self, wire_records: Iterable[Mapping[str, Any]]) -> None:
        for rec in wire_records:
            self.append(rec)

    def flush(self) -> None:
        """Write every buffered record; the buffer is empty afterwards."""
        pending, self._pending, self._buffered = self._pending, defaultdict(list), 0
        for out_dir, rows in pending.items():
            self._write_rows(out_dir, rows)

    def close(self) -> ParquetWriterStats:
        self.flush()
        return self.stats

    # -------------------------
    # Internal helpers
    # -------------------------

    def _note_rejected(self, exc: Exception) -> None:
        self.stats.dropped_cast_errors += 1
        if len(self.stats.cast_errors) < self._cfg.max_error_samples:
            self.stats.cast_errors.append(str(exc))

    def _target_dir(self, storage: Mapping[str, Any]) -> Path:
        name = self._cfg.partition_date_field
        if not name:
            return self._base
        run_ts = storage.get("run_ts")
        day = run_ts.date() if isinstance(run_ts, datetime) else datetime.now(timezone.utc).date()
        return self._base / f"{name}={day.isoformat()}"

    def _write_rows(self, out_dir: Path, rows: List[Dict[str, Any]]) -> None:
        try:
            table = pa.Table.from_pylist(rows, schema=self._cfg.schema)
        except (pa.ArrowInvalid, pa.ArrowTypeError) as exc:
            raise ParquetWriteError(f"Arrow conversion failed: {exc}") from exc

        out_dir.mkdir(parents=True, exist_ok=True)
        step = max(1, self._cfg.max_rows_per_file)
        for offset in range(0, table.num_rows, step):
            chunk = table.slice(offset, step)
            pq.write_table(
                chunk,
                str(out_dir / f"part-{uuid.uuid4().hex}.parquet"),
                compression=self._cfg.compression,
                use_dictionary=self._cfg.use_dictionary,
                write_statistics=True,
            )
            self.stats.written += chunk.num_rows
            self.stats.files += 1
