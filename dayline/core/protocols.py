"""
Type protocols for storage and taxonomy

The pipeline consumes the persisted store and the category taxonomy through
these narrow interfaces; DatabaseManager and TaxonomyStore are the bundled
implementations, tests may pass their own.
"""

from typing import List, Optional, Protocol, Sequence

from dayline.core.models import BatchStatus, RecordingChunk
from dayline.models.entities import (
    ActivityCard,
    Batch,
    LLMCallLog,
    Observation,
    TaxonomyDescriptor,
)


class StorageProtocol(Protocol):
    """Protocol for the persisted store"""

    def fetch_batches(self, day: str) -> List[Batch]:
        """Batches whose start falls on a logical day"""
        ...

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        ...

    def fetch_pending_batches(self) -> List[Batch]:
        ...

    def save_batch(self, start_ts: int, end_ts: int, chunk_ids: Sequence[int]) -> int:
        ...

    def insert_chunk(self, start_ts: int, end_ts: int, file_url: str) -> int:
        ...

    def fetch_unprocessed_chunks(self, since_ts: int) -> List[RecordingChunk]:
        """Chunks newer than since_ts that are not yet part of a batch"""
        ...

    def chunks_for_batch(self, batch_id: int) -> List[RecordingChunk]:
        ...

    def insert_observations(self, observations: Sequence[Observation]) -> None:
        ...

    def fetch_observations_in_range(
        self, start_ts: int, end_ts: int
    ) -> List[Observation]:
        ...

    def upsert_activity_cards(self, cards: Sequence[ActivityCard]) -> List[int]:
        ...

    def fetch_cards_in_range(self, start_ts: int, end_ts: int) -> List[ActivityCard]:
        """Cards overlapping [start_ts, end_ts)"""
        ...

    def replace_cards_in_range(
        self,
        start_ts: int,
        end_ts: int,
        cards: Sequence[ActivityCard],
        batch_id: int,
    ) -> List[int]:
        """Atomically delete cards overlapping the range and insert new ones"""
        ...

    def replace_batch_cards(
        self,
        batch_id: int,
        start_ts: int,
        end_ts: int,
        cards: Sequence[ActivityCard],
    ) -> List[int]:
        """Atomically swap the cards owned by one batch"""
        ...

    def clear_batch_results(self, batch_id: int) -> None:
        """Delete observations and cards derived from a batch"""
        ...

    def update_batch_status(
        self, batch_id: int, status: BatchStatus, reason: Optional[str] = None
    ) -> None:
        ...

    def increment_retry_count(self, batch_id: int) -> None:
        ...

    def fetch_timeline_cards(self, day: str) -> List[ActivityCard]:
        ...

    def log_llm_call(self, log: LLMCallLog) -> None:
        ...

    def fetch_llm_calls(self, batch_id: int) -> List[LLMCallLog]:
        ...


class TaxonomyProtocol(Protocol):
    """Protocol for the read-only category snapshot"""

    def snapshot_for_prompt(self) -> List[TaxonomyDescriptor]:
        """Ordered descriptors with stable ids and exactly one idle entry"""
        ...
