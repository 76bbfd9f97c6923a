"""Plain-text layout expected from the document extractors.

Binary PDF/DOCX parsing happens upstream; these helpers only assemble the
extracted text into the marker conventions the pipeline relies on.
"""

from pathlib import Path
from typing import Iterable, Union


def pages_to_text(pages: Iterable[str]) -> str:
    """Join per-page text, tagging each page with a 1-based ``[P<n>]`` marker."""
    return "".join(
        f"\n[P{number}]\n{page}\n\n"
        for number, page in enumerate(pages, start=1)
    )


def document_to_text(body: str, label: str = "Word Document Content") -> str:
    """Prefix unpaginated text with a single synthetic header line."""
    return f"[{label}]\n{body}"


def load_text_file(path: Union[str, Path]) -> str:
    """Read a UTF-8 text or markdown manuscript."""
    return Path(path).read_text(encoding="utf-8")
