"""
Data model definitions
Internal records that never leave the process: batch status, chunks, frames, prepared video
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class BatchStatus(Enum):
    """Batch status enumeration"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    FAILED_EMPTY = "failed_empty"
    SKIPPED_SHORT = "skipped_short"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.FAILED_EMPTY,
        BatchStatus.SKIPPED_SHORT,
    }
)

# Forward edges of the batch state machine. Going back to PENDING is only
# possible through an explicit reprocess request.
ALLOWED_TRANSITIONS: Dict[BatchStatus, frozenset] = {
    BatchStatus.PENDING: frozenset({BatchStatus.PROCESSING}),
    BatchStatus.PROCESSING: TERMINAL_STATUSES,
}


def can_transition(
    current: BatchStatus, new: BatchStatus, reprocess: bool = False
) -> bool:
    """Check whether a status change is a legal edge of the state machine"""
    if new == BatchStatus.PENDING:
        # Reprocess may also supersede an in-flight analysis
        return reprocess and current != BatchStatus.PENDING
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass
class RecordingChunk:
    """One closed screen-recording segment on disk"""

    id: int
    start_ts: int
    end_ts: int
    file_url: str
    status: str = "completed"

    @property
    def duration(self) -> int:
        return max(0, self.end_ts - self.start_ts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "file_url": self.file_url,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordingChunk":
        """Create instance from dictionary"""
        return cls(
            id=data["id"],
            start_ts=data["start_ts"],
            end_ts=data["end_ts"],
            file_url=data["file_url"],
            status=data.get("status") or "completed",
        )


@dataclass
class PlannedBatch:
    """A group of chunks about to be saved as an analysis batch"""

    chunk_ids: List[int]
    start_ts: int
    end_ts: int
    duration: int


@dataclass
class Frame:
    """A sampled video frame, JPEG encoded"""

    timestamp: float  # seconds from the start of the video
    image: bytes


@dataclass
class PreparedVideo:
    """Batch video ready for upload"""

    data: bytes
    mime_type: str
    duration: float
    source_paths: List[str] = field(default_factory=list)
