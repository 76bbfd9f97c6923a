"""Agents for Veritas pipeline."""

from .verifier import (
    VerifierAgent,
    ItemDecodeResult,
    decode_item,
    parse_oracle_response,
    strip_decoration,
)

__all__ = [
    "VerifierAgent",
    "ItemDecodeResult",
    "decode_item",
    "parse_oracle_response",
    "strip_decoration",
]
