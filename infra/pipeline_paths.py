"""Where the collections datasets live on disk.

Runner, CLI and the snapshot loader resolve every dataset location through
:class:`PipelinePaths`; only the base directories are configurable, the
layout underneath them is fixed here.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from contracts.schema import INPUT_RELATIONS, UNPAID_COLLECTIONS


@dataclass(frozen=True)
class PipelinePaths:
    """
    Resolved dataset locations.

      {base_data_dir}/<relation>/**/*.parquet            inputs
      {base_data_dir}/unpaid_collections/run_date=...    result (unless results_override)
      {base_export_dir}/                                 JSON report (unless export_override)
    """

    base_data_dir: Path = Path("data")
    base_export_dir: Path = Path("report_data")

    results_override: Optional[Path] = None
    export_override: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in ("base_data_dir", "base_export_dir", "results_override", "export_override"):
            val = getattr(self, name)
            if val is not None and not isinstance(val, Path):
                raise TypeError(f"{name} must be a pathlib.Path (got {type(val)})")

    def input_dir(self, relation: str) -> Path:
        if relation not in INPUT_RELATIONS:
            raise ValueError(f"Unknown input relation {relation!r}")
        return self.base_data_dir / relation

    def results_dir(self) -> Path:
        return self.results_override or self.base_data_dir / UNPAID_COLLECTIONS

    def export_dir(self) -> Path:
        return self.export_override or self.base_export_dir

    @staticmethod
    def parquet_glob(directory: Path) -> str:
        # forward slashes for DuckDB and glob on every platform
        return (directory / "**" / "*.parquet").as_posix()

    def input_globs(self) -> Dict[str, str]:
        """relation name -> Parquet glob, for every input relation."""
        return {name: self.parquet_glob(self.input_dir(name)) for name in INPUT_RELATIONS}

    @classmethod
    def with_overrides(
        cls,
        *,
        data_dir: str | Path | None = None,
        results_dir: str | Path | None = None,
        export_dir: str | Path | None = None,
    ) -> PipelinePaths:
        """Build from optional CLI/runner locations; unset ones keep the defaults."""
        return cls(
            base_data_dir=Path(data_dir) if data_dir else Path("data"),
            results_override=Path(results_dir) if results_dir else None,
            export_override=Path(export_dir) if export_dir else None,
        )
