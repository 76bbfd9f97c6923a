"""CSV export of verification results."""

from datetime import datetime
from typing import Iterable, Optional

from ..models.schemas import VerificationItem

CSV_COLUMNS = ("location", "quote_text", "claimed_source", "status", "notes")


def _quote(value: str) -> str:
    # Only quotes are escaped; embedded newlines pass through.
    return '"' + (value or "").replace('"', '""') + '"'


def to_csv(items: Iterable[VerificationItem]) -> str:
    """Serialize items to CSV with every field double-quoted.

    Returns an empty string when there is nothing to export.
    """
    rows = [
        ",".join([
            _quote(item.location),
            _quote(item.quote_text),
            _quote(item.claimed_source),
            _quote(item.status.value),
            _quote(item.notes),
        ])
        for item in items
    ]
    
    if not rows:
        return ""
    
    return "\n".join([",".join(CSV_COLUMNS), *rows])


def export_filename(now: Optional[datetime] = None) -> str:
    """Default download name for a report, stamped with the date."""
    now = now or datetime.now()
    return f"veritas_report_{now.strftime('%Y-%m-%d')}.csv"
