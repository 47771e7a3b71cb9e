"""
collections-watch CLI (flat-layout friendly).

Usage
-----
collwatch run --engine duckdb --data-dir data
collwatch inspect --stage efforts --limit 20 --engine memory
collwatch sql --preset legacy_es
collwatch sql --preset legacy_es --indexes
collwatch seed-demo --data-dir data
collwatch manifest --path data
"""

from __future__ import annotations

import argparse
import json
from typing import List, Optional

from contracts.collections_model import CollectionsSnapshot
from infra.config import get_settings
from infra.logging_config import setup_logging
from infra.pipeline_paths import PipelinePaths
from pipeline.aggregation import STAGES, preview_stage
from pipeline.collections_sql import (
    PRESETS,
    recommended_index_ddl,
    render_unpaid_collections_sql,
    source_mapping,
)
from pipeline.export_json import json_default


def demo_snapshot() -> CollectionsSnapshot:
    """
    Three debtors, one debt each:
      1 Ana Lopez    debt 10: 3 efforts, no payments   -> reported
      2 Bruno Diaz   debt 20: 1 effort, one payment    -> excluded (paid)
      3 Carla Ruiz   debt 30: nothing                  -> excluded (no effort)
    """
    return CollectionsSnapshot.from_records(
        debtors=[
            {"debtor_id": 1, "first_name": "Ana", "last_name": "Lopez"},
            {"debtor_id": 2, "first_name": "Bruno", "last_name": "Diaz"},
            {"debtor_id": 3, "first_name": "Carla", "last_name": "Ruiz"},
        ],
        debts=[
            {"debt_id": 10, "debtor_id": 1},
            {"debt_id": 20, "debtor_id": 2},
            {"debt_id": 30, "debtor_id": 3},
        ],
        efforts=[
            {"effort_id": 100, "debt_id": 10},
            {"effort_id": 101, "debt_id": 10},
            {"effort_id": 102, "debt_id": 10},
            {"effort_id": 200, "debt_id": 20},
        ],
        payments=[
            {"payment_id": 500, "debt_id": 20, "amount_paid": "50"},
        ],
    )


def cmd_run(args: argparse.Namespace) -> None:
    # Imported here so `collwatch sql` works without the Parquet/DuckDB stack loaded.
    import runner

    rc = runner.main(args.runner_args)
    if rc:
        raise SystemExit(rc)


def cmd_inspect(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = args.engine or settings.report.engine
    paths = PipelinePaths.with_overrides(data_dir=args.data_dir or settings.report.data_dir)
    limit = max(0, int(args.limit))

    if engine == "memory":
        from pipeline.snapshot_io import load_snapshot

        rows = preview_stage(load_snapshot(paths), args.stage, limit=limit)
    elif engine == "duckdb":
        from pipeline.query_duckdb import DuckDBClient, DuckDBConfig

        cfg = DuckDBConfig(database=settings.duckdb.database, threads=settings.duckdb.threads)
        with DuckDBClient(cfg) as client:
            client.register_parquet(paths.input_globs())
            rows = client.preview_stage(args.stage, limit=limit)
    elif engine == "postgres":
        from pipeline.query_postgres import PostgresCollectionsSource

        rows = PostgresCollectionsSource(source_mapping(settings.source)).preview_stage(args.stage, limit=limit)
    else:
        raise SystemExit(f"Unknown engine {engine!r}.")

    for row in rows:
        print(json.dumps(row, default=json_default, ensure_ascii=False))


def cmd_sql(args: argparse.Namespace) -> None:
    try:
        mapping = source_mapping(get_settings().source, preset=args.preset)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    if args.indexes:
        for stmt in recommended_index_ddl(mapping):
            print(stmt)
        return
    print(render_unpaid_collections_sql(mapping).strip())


def cmd_seed_demo(args: argparse.Namespace) -> None:
    from pipeline.snapshot_io import write_snapshot

    data_dir = args.data_dir or get_settings().report.data_dir
    paths = PipelinePaths.with_overrides(data_dir=data_dir)
    written = write_snapshot(paths, demo_snapshot())
    for relation, count in written.items():
        print(f"[OK] {relation}: {count} rows -> {paths.input_dir(relation)}")


def cmd_manifest(args: argparse.Namespace) -> None:
    from pipeline.run_manifest import find_manifest, load_manifest

    path = find_manifest(args.path)
    if path is None:
        raise SystemExit(f"No run manifest found from {args.path!r}.")
    print(json.dumps(load_manifest(path).to_dict(), indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="collwatch", description="Unpaid collections report CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("run", help="Run the report (extra arguments are passed to runner.py, see runner.py --help).")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("inspect", help="Print one pipeline stage as JSON lines.")
    sp.add_argument("--stage", required=True, choices=list(STAGES), help="Stage to preview.")
    sp.add_argument("--limit", type=int, default=10, help="Max rows to print. Default: 10")
    sp.add_argument(
        "--engine",
        default=None,
        choices=["memory", "duckdb", "postgres"],
        help="Evaluation engine (or REPORT_ENGINE env var).",
    )
    sp.add_argument("--data-dir", default=None, help="Base directory of the input datasets (or DATA_DIR env var).")
    sp.set_defaults(func=cmd_inspect)

    sp = sub.add_parser("sql", help="Print the rendered query or the recommended index DDL.")
    sp.add_argument("--preset", default=None, choices=sorted(PRESETS), help="Source schema (or SOURCE_PRESET env var).")
    sp.add_argument("--indexes", action="store_true", help="Print CREATE INDEX statements instead of the query.")
    sp.set_defaults(func=cmd_sql)

    sp = sub.add_parser("seed-demo", help="Write a small demo dataset as Parquet inputs.")
    sp.add_argument("--data-dir", default=None, help="Target base directory (or DATA_DIR env var). Default: data")
    sp.set_defaults(func=cmd_seed_demo)

    sp = sub.add_parser("manifest", help="Print the manifest of the latest run found from a directory.")
    sp.add_argument("--path", default=".", help="Directory to search from (walks up). Default: current directory")
    sp.set_defaults(func=cmd_manifest)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args, extra = parser.parse_known_args(argv)
    if args.func is cmd_run:
        args.runner_args = extra
    else:
        if extra:
            parser.error(f"unrecognized arguments: {' '.join(extra)}")
        setup_logging()
    args.func(args)


if __name__ == "__main__":
    main()
