"""Run manifest: which run produced a result dataset, and from what.

:mod:`runner` writes ``run_manifest.json`` next to the unpaid-collections
Parquet files and copies it into the JSON export, so a reader of either can
tell the run id, the engine, the source and the input sizes behind it.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from contracts.schema import UNPAID_COLLECTIONS

MANIFEST_FILENAME = "run_manifest.json"
ENGINES = frozenset({"memory", "duckdb", "postgres"})


@dataclass(frozen=True)
class RunManifest:
    run_id: str
    run_ts: str
    engine: str

    engine_name: str | None = None
    engine_version: str | None = None
    schema_version: int | None = None

    source: str | None = None  # "parquet:<data_dir>" or "postgres:<preset>"
    input_counts: dict[str, int] | None = None
    row_count: int = 0

    out_results: str | None = None
    export_dir: str | None = None

    created_at: str = ""

    def problems(self) -> list[str]:
        """Reasons this manifest must not be persisted (empty when it is fine)."""
        found = [f"missing {name}" for name in ("run_id", "run_ts") if not getattr(self, name)]
        if self.engine not in ENGINES:
            found.append(f"unknown engine {self.engine!r}")
        if self.row_count < 0:
            found.append("row_count must be >= 0")
        return found

    def validate(self) -> None:
        problems = self.problems()
        if problems:
            raise ValueError("RunManifest " + "; ".join(problems))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["created_at"] = d["created_at"] or datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return d

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RunManifest:
        """Inverse of :meth:`to_dict`; unknown keys are ignored, blank strings become None."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = payload.get(f.name)
            if isinstance(raw, str):
                raw = raw.strip() or None
            values[f.name] = raw

        counts = values["input_counts"]
        return cls(
            run_id=values["run_id"] or "",
            run_ts=values["run_ts"] or "",
            engine=values["engine"] or "",
            engine_name=values["engine_name"],
            engine_version=values["engine_version"],
            schema_version=None if values["schema_version"] is None else int(values["schema_version"]),
            source=values["source"],
            input_counts={str(k): int(v) for k, v in counts.items()} if isinstance(counts, dict) else None,
            row_count=int(values["row_count"] or 0),
            out_results=values["out_results"],
            export_dir=values["export_dir"],
            created_at=values["created_at"] or "",
        )


def manifest_path(base_dir: str | Path) -> Path:
    return Path(base_dir) / MANIFEST_FILENAME


def find_manifest(start: str | Path, *, max_levels: int = 6) -> Path | None:
    """
    Locate the manifest of the latest run, starting at *start* and walking up.

    At each level both `<dir>/run_manifest.json` and the default result
    layout `<dir>/data/unpaid_collections/run_manifest.json` are tried.
    """
    cur = Path(start).resolve()
    if cur.is_file():
        cur = cur.parent
    for directory in [cur, *cur.parents][: max(1, max_levels)]:
        for candidate in (manifest_path(directory), manifest_path(directory / "data" / UNPAID_COLLECTIONS)):
            if candidate.is_file():
                return candidate
    return None


def write_manifest(base_dir: str | Path, manifest: RunManifest) -> Path:
    """Validate *manifest* and write it under *base_dir* via a temp file and rename."""
    manifest.validate()

    path = manifest_path(base_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
    return path


def load_manifest(path: str | Path) -> RunManifest:
    p = Path(path)
    payload = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid run manifest (expected object): {p}")
    manifest = RunManifest.from_dict(payload)
    manifest.validate()
    return manifest
