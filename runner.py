"""
runner.py

Unpaid-collections batch job:
  input relations -> aggregation-before-join pipeline -> result parquet -> JSON report

Engines
-------
memory    load the Parquet inputs into Python and evaluate with staged maps
duckdb    evaluate the SQL rendition over the Parquet inputs (default)
postgres  evaluate the SQL rendition against the live source database in one
          REPEATABLE READ, READ ONLY transaction (needs DB_URL)

Run with defaults (engine/paths from env or .env):
python runner.py

Evaluate in memory against a custom data directory:
python runner.py --engine memory --data-dir /srv/collections/data

Read the legacy Spanish schema straight from Postgres, skip the JSON export:
SOURCE_PRESET=legacy_es DB_URL=postgresql://... python runner.py --engine postgres --no-export
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from contracts.collections_model import UnpaidCollectionRow
from contracts.schema import UNPAID_COLLECTIONS_SCHEMA
from infra.config import Settings, get_settings
from infra.logging_config import StructuredLogger, clear_run_context, set_run_context, setup_logging
from infra.pipeline_paths import PipelinePaths
from pipeline.aggregation import find_unpaid_collections
from pipeline.collections_sql import source_mapping
from pipeline.export_json import ExportConfig, run_export
from pipeline.query_duckdb import DuckDBClient, DuckDBConfig
from pipeline.run_manifest import RunManifest, write_manifest
from pipeline.snapshot_io import load_snapshot
from pipeline.writer_parquet import ParquetWriterConfig, RelationParquetWriter
from version import ENGINE_NAME, ENGINE_VERSION, SCHEMA_VERSION

ENGINES = ("memory", "duckdb", "postgres")

logger = StructuredLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _make_run_id(run_ts: datetime) -> str:
    return f"run-{run_ts.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')}"


@dataclass(frozen=True)
class RunOptions:
    engine: str = "duckdb"
    paths: PipelinePaths = field(default_factory=PipelinePaths)
    export: bool = True
    export_limit: int = 1000
    run_id: Optional[str] = None
    drop_invalid_on_cast: bool = False


@dataclass(frozen=True)
class RunResult:
    manifest: RunManifest
    rows: List[UnpaidCollectionRow]
    written: int
    exported: List[Path]


def evaluate(
    engine: str,
    *,
    paths: PipelinePaths,
    settings: Settings,
) -> tuple[List[UnpaidCollectionRow], Dict[str, int] | None, str]:
    """
    Run the pipeline with one engine.

    Returns (rows, input counts when known, source description).
    """
    if engine == "memory":
        snapshot = load_snapshot(paths)
        return find_unpaid_collections(snapshot), snapshot.counts(), f"parquet:{paths.base_data_dir.as_posix()}"

    if engine == "duckdb":
        cfg = DuckDBConfig(database=settings.duckdb.database, threads=settings.duckdb.threads)
        with DuckDBClient(cfg) as client:
            files = client.register_parquet(paths.input_globs())
            logger.debug("parquet_inputs_registered", files=files)
            return client.unpaid_collections(), None, f"parquet:{paths.base_data_dir.as_posix()}"

    if engine == "postgres":
        from pipeline.query_postgres import PostgresCollectionsSource  # psycopg2 only needed here

        source = PostgresCollectionsSource(source_mapping(settings.source))
        return source.unpaid_collections(), None, f"postgres:{settings.source.preset}"

    raise ValueError(f"Unknown engine {engine!r}; expected one of {', '.join(ENGINES)}")


def _result_records(rows: Sequence[UnpaidCollectionRow], *, run_id: str, run_ts: datetime, engine: str):
    for r in rows:
        yield {
            **r.to_dict(),
            "run_id": run_id,
            "run_ts": run_ts,
            "engine": engine,
            "schema_version": SCHEMA_VERSION,
        }


def run(options: RunOptions, *, settings: Settings | None = None) -> RunResult:
    settings = settings or get_settings()
    paths = options.paths

    run_ts = _utc_now()
    run_id = options.run_id or _make_run_id(run_ts)
    set_run_context(run_id=run_id, engine=options.engine)
    try:
        logger.info("run_started", data_dir=paths.base_data_dir.as_posix())

        started = time.perf_counter()
        rows, input_counts, source = evaluate(options.engine, paths=paths, settings=settings)
        logger.info(
            "pipeline_evaluated",
            rows=len(rows),
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )

        out_dir = str(paths.results_dir())
        writer_cfg = ParquetWriterConfig(
            base_dir=out_dir,
            schema=UNPAID_COLLECTIONS_SCHEMA,
            drop_invalid_on_cast=options.drop_invalid_on_cast,
        )
        with RelationParquetWriter(writer_cfg) as writer:
            writer.extend(_result_records(rows, run_id=run_id, run_ts=run_ts, engine=options.engine))
        stats = writer.stats
        if stats.dropped_cast_errors:
            logger.warning("result_rows_dropped", count=stats.dropped_cast_errors, sample=stats.cast_errors[:3])

        manifest = RunManifest(
            run_id=run_id,
            run_ts=run_ts.isoformat().replace("+00:00", "Z"),
            engine=options.engine,
            engine_name=ENGINE_NAME,
            engine_version=ENGINE_VERSION,
            schema_version=SCHEMA_VERSION,
            source=source,
            input_counts=input_counts,
            row_count=len(rows),
            out_results=out_dir,
            export_dir=str(paths.export_dir()) if options.export else None,
        )
        write_manifest(out_dir, manifest)

        exported: List[Path] = []
        if options.export:
            exported = run_export(
                ExportConfig(out_dir=str(paths.export_dir()), limit_rows=options.export_limit),
                rows,
                manifest,
            )

        logger.info("run_finished", rows=len(rows), written=stats.written, exported=len(exported))
        return RunResult(manifest=manifest, rows=rows, written=stats.written, exported=exported)
    except Exception:
        logger.exception("run_failed")
        raise
    finally:
        clear_run_context()


def _parse_args(argv: Sequence[str], settings: Settings) -> argparse.Namespace:
    report = settings.report
    parser = argparse.ArgumentParser(description="Unpaid collections report (debts with efforts and no payments)")
    parser.add_argument(
        "--engine",
        default=report.engine,
        choices=list(ENGINES),
        help=f"Evaluation engine (default: {report.engine}, or REPORT_ENGINE env var)",
    )
    parser.add_argument("--data-dir", default=report.data_dir, help="Base directory of the input datasets")
    parser.add_argument(
        "--out",
        default=report.out_dir or "",
        help="Output directory for the result parquet dataset (default: <data-dir>/unpaid_collections)",
    )
    parser.add_argument("--export-dir", default=report.export_dir, help="Directory for the JSON report")
    parser.add_argument("--export-limit", type=int, default=report.export_limit, help="Max rows in the JSON export")
    parser.add_argument("--no-export", action="store_true", help="Skip the JSON export")
    parser.add_argument("--run-id", default=None, help="Explicit run id (default: derived from run timestamp)")
    parser.add_argument(
        "--drop-invalid-on-cast",
        action="store_true",
        help="If set, result rows failing storage casting are skipped instead of failing the run.",
    )
    parser.add_argument("--print-version", action="store_true", help="Print engine/schema versions and exit.")
    return parser.parse_args(list(argv))


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings(reload=True)
    args = _parse_args(sys.argv[1:] if argv is None else argv, settings)

    if args.print_version:
        print(f"ENGINE_NAME={ENGINE_NAME}")
        print(f"ENGINE_VERSION={ENGINE_VERSION}")
        print(f"SCHEMA_VERSION={SCHEMA_VERSION}")
        return 0

    setup_logging()

    paths = PipelinePaths.with_overrides(
        data_dir=args.data_dir,
        results_dir=args.out.strip() or None,
        export_dir=args.export_dir,
    )
    result = run(
        RunOptions(
            engine=args.engine,
            paths=paths,
            export=not args.no_export,
            export_limit=max(1, int(args.export_limit)),
            run_id=args.run_id,
            drop_invalid_on_cast=bool(args.drop_invalid_on_cast),
        ),
        settings=settings,
    )

    print(f"[OK] run_id={result.manifest.run_id} engine={args.engine} rows={len(result.rows)}")
    print(f"[OK] results: {result.manifest.out_results}")
    for path in result.exported:
        print(f"[OK] wrote {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
