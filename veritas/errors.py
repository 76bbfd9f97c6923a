"""Error taxonomy for the Veritas pipeline."""

from typing import Optional, Sequence


class VeritasError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(VeritasError):
    """The run cannot start: missing credential or empty input."""


class OracleError(VeritasError):
    """The verification oracle call failed outright for a chunk."""


class MalformedOutputError(VeritasError):
    """The oracle answered, but not with the expected JSON shape.

    Raised while decoding a single chunk's response and handled inside the
    adapter; it never reaches the orchestrator.
    """


class PipelineError(VeritasError):
    """A run stopped partway through.

    Carries the partial result accumulated before the failing chunk so
    callers can still report it.
    """

    def __init__(
        self,
        message: str,
        chunk_index: int,
        partial_items: Sequence = (),
        progress=None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.partial_items = tuple(partial_items)
        self.progress = progress
        self.cause = cause
