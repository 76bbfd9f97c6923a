"""Continuity hints for chunks that start mid-document."""

import re
from typing import Optional

from ..models.schemas import Chunk

# Page tags emitted by the document extractor, e.g. "[P12]".
PAGE_MARKER_PATTERN = re.compile(r"\[P(\d+)\]")

CONTEXT_TEMPLATE = "(Context: Continued from {marker})\n"


def find_last_marker(text: str) -> Optional[str]:
    """Return the last page marker in text, or None if there is none."""
    last = None
    for match in PAGE_MARKER_PATTERN.finditer(text):
        last = match
    return last.group(0) if last else None


def annotate(full_text: str, chunk_index: int, chunk: Chunk) -> str:
    """Build the text actually sent to the oracle for a chunk.

    The oracle only sees one chunk at a time, so every chunk after the
    first is prefixed with the most recent page marker that precedes it.

    Args:
        full_text: The complete manuscript
        chunk_index: Position of the chunk in the run
        chunk: The chunk to annotate

    Returns:
        The chunk text, possibly prefixed with a continuation hint
    """
    if chunk_index == 0:
        return chunk.text
    
    marker = find_last_marker(full_text[:chunk.start_index])
    if marker is None:
        return chunk.text
    
    return CONTEXT_TEMPLATE.format(marker=marker) + chunk.text
