"""
Pydantic models shared by the pipeline, storage and API handlers
"""

from .base import BaseModel, LenientModel
from .entities import (
    ActivityCard,
    Batch,
    Distraction,
    LLMCallLog,
    Observation,
    TaxonomyDescriptor,
    TranscriptSegment,
)
from .requests import (
    GetBatchesRequest,
    GetLLMCallsRequest,
    GetTimelineRequest,
    ReprocessBatchesRequest,
)

__all__ = [
    "BaseModel",
    "LenientModel",
    "ActivityCard",
    "Batch",
    "Distraction",
    "LLMCallLog",
    "Observation",
    "TaxonomyDescriptor",
    "TranscriptSegment",
    "GetBatchesRequest",
    "GetLLMCallsRequest",
    "GetTimelineRequest",
    "ReprocessBatchesRequest",
]
