"""Pipeline components.

This package contains the in-memory aggregation pipeline, its SQL rendition,
the DuckDB and PostgreSQL query layers, Parquet IO, the JSON report export and
the run manifest.
"""
