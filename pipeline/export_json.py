"""JSON report export.

Thin consumers (spreadsheets, dashboards, the collections team's tooling) read
pre-materialized JSON files rather than Parquet. This module writes:

  unpaid_collections.json  rows of the report (capped by limit_rows)
  summary.json             headline numbers + debtors with the most efforts
  run_manifest.json        copy of the run manifest, when one is given
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from contracts.collections_model import UnpaidCollectionRow
from pipeline.run_manifest import RunManifest

_LOGGER = logging.getLogger(__name__)


def json_default(obj: Any) -> str:
    """`default=` hook for json.dump: ISO dates, exact decimal strings."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


@dataclass(frozen=True)
class ExportConfig:
    out_dir: str = "report_data"
    limit_rows: int = 1000
    top_debtors: int = 20


def build_summary(rows: Sequence[UnpaidCollectionRow], *, top_debtors: int = 20) -> Dict[str, Any]:
    """Headline numbers for one report run."""
    efforts_by_debtor: Counter[Optional[int]] = Counter()
    debts_by_debtor: Counter[Optional[int]] = Counter()
    names: Dict[Optional[int], tuple[Optional[str], Optional[str]]] = {}
    for r in rows:
        efforts_by_debtor[r.debtor_id] += r.effort_count
        debts_by_debtor[r.debtor_id] += 1
        names.setdefault(r.debtor_id, (r.first_name, r.last_name))

    ranked = sorted(
        efforts_by_debtor.items(),
        key=lambda kv: (-kv[1], kv[0] is None, kv[0] or 0),
    )
    top: List[Dict[str, Any]] = [
        {
            "debtor_id": debtor_id,
            "first_name": names[debtor_id][0],
            "last_name": names[debtor_id][1],
            "debts": debts_by_debtor[debtor_id],
            "effort_count": total,
        }
        for debtor_id, total in ranked[: max(0, top_debtors)]
    ]

    return {
        "rows": len(rows),
        "debtors": len([d for d in efforts_by_debtor if d is not None]),
        "debts_without_debtor": debts_by_debtor.get(None, 0),
        "efforts_total": sum(r.effort_count for r in rows),
        "efforts_max": max((r.effort_count for r in rows), default=0),
        "top_debtors": top,
    }


class ReportJsonExporter:
    def __init__(self, cfg: ExportConfig) -> None:
        self.cfg = cfg
        self._out_dir = Path(cfg.out_dir)

    def export_rows(self, rows: Sequence[UnpaidCollectionRow]) -> Path:
        payload = [r.to_dict() for r in rows[: self.cfg.limit_rows]]
        if len(rows) > self.cfg.limit_rows:
            _LOGGER.warning("export truncated rows=%d limit=%d", len(rows), self.cfg.limit_rows)
        return self._write_json("unpaid_collections.json", payload)

    def export_summary(self, rows: Sequence[UnpaidCollectionRow], manifest: Optional[RunManifest]) -> Path:
        summary = build_summary(rows, top_debtors=self.cfg.top_debtors)
        if manifest is not None:
            summary = {"run_id": manifest.run_id, "run_ts": manifest.run_ts, "engine": manifest.engine, **summary}
        return self._write_json("summary.json", summary)

    def export_manifest(self, manifest: RunManifest) -> Path:
        return self._write_json("run_manifest.json", manifest.to_dict())

    def _write_json(self, filename: str, payload: Any) -> Path:
        self._out_dir.mkdir(parents=True, exist_ok=True)
        path = self._out_dir / filename
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False, default=json_default)
        _LOGGER.info("wrote %s", path)
        return path


def run_export(
    cfg: ExportConfig,
    rows: Sequence[UnpaidCollectionRow],
    manifest: Optional[RunManifest] = None,
) -> List[Path]:
    exporter = ReportJsonExporter(cfg)
    written = [exporter.export_rows(rows), exporter.export_summary(rows, manifest)]
    if manifest is not None:
        written.append(exporter.export_manifest(manifest))
    return written
