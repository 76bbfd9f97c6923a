"""Data models for Veritas."""

from .schemas import (
    CheckStatus,
    VerificationItem,
    Chunk,
    AnalysisStats,
    PipelineProgress,
    ChunkUpdate,
    RunStatus,
    VerifyRequest,
    JobResponse,
    StreamEvent,
)

__all__ = [
    "CheckStatus",
    "VerificationItem",
    "Chunk",
    "AnalysisStats",
    "PipelineProgress",
    "ChunkUpdate",
    "RunStatus",
    "VerifyRequest",
    "JobResponse",
    "StreamEvent",
]
