"""Pydantic data models for the Veritas pipeline."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime


class CheckStatus(str, Enum):
    """Verdict the oracle assigns to a single quotation."""
    ACCURATE = "ACCURATE"
    PARAPHRASED = "PARAPHRASED"
    MISATTRIBUTED = "MISATTRIBUTED"
    UNVERIFIABLE = "UNVERIFIABLE"


UNSPECIFIED_SOURCE = "unspecified"


class VerificationItem(BaseModel):
    """One quotation or attribution check reported by the oracle."""

    location: str = Field(..., min_length=1, description="Positional descriptor, e.g. 'Page 5, Para 2'")
    quote_text: str = Field(..., min_length=1, description="The quoted or paraphrased span")
    claimed_source: str = Field(
        default=UNSPECIFIED_SOURCE,
        description="Author or work the manuscript attributes the quote to"
    )
    status: CheckStatus = Field(..., description="Verification verdict")
    notes: str = Field(default="", description="Rationale, original wording or correction")

    @field_validator("location", "quote_text", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("claimed_source", mode="before")
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        if value is None:
            return UNSPECIFIED_SOURCE
        if isinstance(value, str) and not value.strip():
            return UNSPECIFIED_SOURCE
        return value

    @field_validator("notes", mode="before")
    @classmethod
    def _default_notes(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        # Case and whitespace are the only coercions; unknown labels still fail.
        if isinstance(value, str):
            return value.strip().upper()
        return value

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "location": "Page 5, Para 2",
                "quote_text": "The only thing we have to fear is fear itself.",
                "claimed_source": "Winston Churchill",
                "status": "MISATTRIBUTED",
                "notes": "Franklin D. Roosevelt, first inaugural address (1933)."
            }
        }


class Chunk(BaseModel):
    """A contiguous slice of the manuscript and its offset in the full text."""

    text: str = Field(..., description="Chunk contents")
    start_index: int = Field(..., ge=0, description="Offset of the first character in the full text")

    class Config:
        frozen = True


class AnalysisStats(BaseModel):
    """Per-status counts derived from a result set."""

    accurate: int = 0
    paraphrased: int = 0
    misattributed: int = 0
    unverifiable: int = 0
    total: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "accurate": 12,
                "paraphrased": 4,
                "misattributed": 1,
                "unverifiable": 2,
                "total": 19
            }
        }


class PipelineProgress(BaseModel):
    """Completed chunk count out of the fixed total for one run."""

    current: int = Field(default=0, ge=0, description="Chunks completed so far")
    total: int = Field(..., ge=0, description="Chunks in this run")

    @model_validator(mode="after")
    def _check_bounds(self) -> "PipelineProgress":
        if self.current > self.total:
            raise ValueError(f"current ({self.current}) exceeds total ({self.total})")
        return self

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return round(self.current * 100 / self.total)

    class Config:
        frozen = True


class ChunkUpdate(BaseModel):
    """Notification emitted after each chunk is appended to the result set."""

    progress: PipelineProgress
    items: Tuple[VerificationItem, ...] = ()

    class Config:
        frozen = True


class RunStatus(str, Enum):
    """Lifecycle of a pipeline run."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# API Request/Response Models

class VerifyRequest(BaseModel):
    """Request model for verification endpoints."""

    text: str = Field(..., min_length=1, description="Extracted manuscript text")
    chunk_size: Optional[int] = Field(
        default=None,
        gt=0,
        description="Override the configured chunk size (characters)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "text": "[P1]\nAs Einstein said, \"Imagination is more important than knowledge.\"",
                "chunk_size": 30000
            }
        }


class JobResponse(BaseModel):
    """Snapshot of a verification run."""

    job_id: str = Field(..., description="Unique job identifier")
    status: RunStatus = Field(..., description="Current run status")
    progress: Optional[PipelineProgress] = Field(default=None, description="Chunk progress")
    stats: AnalysisStats = Field(default_factory=AnalysisStats)
    items: List[VerificationItem] = Field(default_factory=list)
    summary: Optional[str] = Field(default=None, description="Human-readable summary")
    message: Optional[str] = Field(default=None, description="Status or error message")
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class StreamEvent(BaseModel):
    """Event model for SSE streaming."""

    event_type: str = Field(..., description="Type of event")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event data")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
