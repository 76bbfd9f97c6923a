"""Reporting for Veritas: statistics and export."""

from .aggregator import aggregate, summarize
from .exporter import to_csv, export_filename, CSV_COLUMNS

__all__ = [
    "aggregate",
    "summarize",
    "to_csv",
    "export_filename",
    "CSV_COLUMNS",
]
