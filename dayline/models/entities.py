"""
Pipeline entities
Batches, observations, activity cards, taxonomy descriptors and LLM call logs
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from dayline.core.models import BatchStatus

from .base import BaseModel


class Batch(BaseModel):
    """A fixed window of recorded screen video.

    @property status - Mutated only by the batch lifecycle manager.
    @property retryCount - Number of explicit reprocess requests.
    """

    id: int
    start_ts: int
    end_ts: int
    status: BatchStatus = BatchStatus.PENDING
    retry_count: int = 0
    reason: Optional[str] = None

    @property
    def duration(self) -> int:
        return max(0, self.end_ts - self.start_ts)


class Observation(BaseModel):
    """Timestamped narration of one sub-interval of a batch video"""

    id: Optional[int] = None
    batch_id: int = 0
    start_ts: int
    end_ts: int
    text: str
    metadata: Optional[Dict[str, Any]] = None
    model_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class Distraction(BaseModel):
    """Brief deviation nested inside an activity card"""

    start_time: str
    end_time: str
    title: str
    summary: str


class ActivityCard(BaseModel):
    """User-facing timeline entry.

    startTime/endTime are clock strings ("1:12 PM") on the card's logical day.
    """

    id: Optional[int] = None
    batch_id: Optional[int] = None
    start_time: str
    end_time: str
    category: str
    subcategory: str
    title: str
    summary: str
    detailed_summary: str
    day: str = ""
    distractions: Optional[List[Distraction]] = None
    video_ref: Optional[str] = None
    other_video_refs: Optional[List[str]] = None

    @field_validator("start_time", "end_time", "category", "title")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class TaxonomyDescriptor(BaseModel):
    """Read-only category descriptor used to steer prompts"""

    id: str
    name: str
    description: Optional[str] = None
    is_system: bool = False
    is_idle: bool = False


class LLMCallLog(BaseModel):
    """Append-only audit record of one provider call"""

    id: Optional[int] = None
    timestamp: datetime
    latency: float
    input: Optional[str] = None
    output: Optional[str] = None
    batch_id: Optional[int] = None
    call_group_id: Optional[str] = None
    attempt: int = 1
    provider: Optional[str] = None
    model: Optional[str] = None
    operation: Optional[str] = None
    status: str = "success"
    error: Optional[str] = None
    http_status: Optional[int] = None
    request_url: Optional[str] = None


class TranscriptSegment(BaseModel):
    """One element of the transcription response array (MM:SS offsets)"""

    start_timestamp: str
    end_timestamp: str
    description: str
