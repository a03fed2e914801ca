"""
Request models for API handlers
"""

from typing import List, Optional

from pydantic import Field

from .base import BaseModel


class GetTimelineRequest(BaseModel):
    """Request parameters for a day's timeline.

    @property day - Logical day (YYYY-MM-DD, 4 AM boundary).
    @property merged - Fold adjacent same-category cards when true.
    """

    day: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    merged: bool = True


class GetBatchesRequest(BaseModel):
    """Request parameters for listing a day's batches.

    @property day - Logical day (YYYY-MM-DD).
    """

    day: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")


class ReprocessBatchesRequest(BaseModel):
    """Request parameters for reprocessing.

    @property batchIds - Explicit batch ids; takes precedence over day.
    @property day - Reprocess every batch of this logical day.
    """

    batch_ids: List[int] = Field(default_factory=list)
    day: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class GetLLMCallsRequest(BaseModel):
    """Request parameters for the LLM audit trail of one batch.

    @property batchId - Batch id.
    """

    batch_id: int
