"""Text processing steps for Veritas."""

from .segmenter import segment
from .context import annotate, find_last_marker, PAGE_MARKER_PATTERN
from .ingest import pages_to_text, document_to_text, load_text_file

__all__ = [
    "segment",
    "annotate",
    "find_last_marker",
    "PAGE_MARKER_PATTERN",
    "pages_to_text",
    "document_to_text",
    "load_text_file",
]
