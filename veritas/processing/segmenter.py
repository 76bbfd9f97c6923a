"""Paragraph-aware segmentation of long manuscripts."""

import logging
from typing import List

from ..models.schemas import Chunk

logger = logging.getLogger(__name__)

# A line break is only honoured if it falls in the last 10% of the window.
BREAK_WINDOW_RATIO = 0.9


def segment(text: str, max_size: int) -> List[Chunk]:
    """Split text into ordered, size-bounded chunks.

    Each chunk ends at the hard ``max_size`` boundary unless a line break
    sits close enough to it, in which case the chunk is cut at the line
    break and the break itself opens the next chunk. Chunks are contiguous
    and their concatenation is exactly ``text``.

    Args:
        text: Full manuscript text
        max_size: Maximum chunk length in characters

    Returns:
        Chunks ordered by start_index (empty for empty text)
    """
    if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size <= 0:
        raise ValueError(f"max_size must be a positive integer, got {max_size!r}")
    
    chunks: List[Chunk] = []
    length = len(text)
    cursor = 0
    
    while cursor < length:
        end = min(cursor + max_size, length)
        
        if end < length:
            last_newline = text.rfind("\n", cursor, end + 1)
            if last_newline != -1 and last_newline >= cursor + max_size * BREAK_WINDOW_RATIO:
                end = last_newline
        
        chunks.append(Chunk(text=text[cursor:end], start_index=cursor))
        cursor = end
    
    logger.debug(f"Segmented {length} characters into {len(chunks)} chunks (max_size={max_size})")
    return chunks
