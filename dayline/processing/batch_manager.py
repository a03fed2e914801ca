"""
Batch lifecycle manager
Owns the batch state machine and drives transcription, card synthesis and persistence
"""

import asyncio
import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set

from dayline.core.errors import (
    AnalysisError,
    EmptyResult,
    InvalidTransitionError,
    human_readable_error,
)
from dayline.core.logger import get_logger
from dayline.core.models import BatchStatus, can_transition
from dayline.core.protocols import StorageProtocol, TaxonomyProtocol
from dayline.core.taxonomy import ERROR_SUBCATEGORY, SYSTEM_CATEGORY
from dayline.core.timeparse import format_clock_ts, logical_day_for_ts
from dayline.llm.base import ActivityGenerationContext, LLMProvider, extract_taxonomy
from dayline.models.entities import ActivityCard, Batch, LLMCallLog
from dayline.processing.card_synthesis import CardSynthesisStage
from dayline.processing.transcription import TranscriptionStage
from dayline.processing.video import VideoAssembler, VideoPreparer

logger = get_logger(__name__)

ProgressFn = Callable[[str], None]

MIN_BATCH_SECONDS = 300
CONTEXT_WINDOW_SECONDS = 3600


def format_duration(seconds: float) -> str:
    """Human readable duration: "2m 5s", "42s" """
    total = int(round(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs}s" if minutes else f"{secs}s"


def build_error_card(batch: Batch, error: BaseException) -> ActivityCard:
    """System/Error card covering a failed batch"""
    reason = human_readable_error(error)
    return ActivityCard(
        start_time=format_clock_ts(batch.start_ts),
        end_time=format_clock_ts(batch.end_ts),
        category=SYSTEM_CATEGORY,
        subcategory=ERROR_SUBCATEGORY,
        title="Processing failed",
        summary=reason,
        detailed_summary=f"Batch {batch.id} could not be analyzed. {reason} Error: {error}",
        day=logical_day_for_ts(batch.start_ts),
        batch_id=batch.id,
    )


class BatchLifecycleManager:
    """
    Processes batches through pending -> processing -> terminal

    Work on one batch id is serialized by a per-batch lock. Provider calls
    across batches are bounded by a semaphore. Transcription runs
    concurrently, but reading the sliding window and replacing its cards is
    serialized by a manager-wide lock, and process_pending enters that
    section in batch start order. Every batch carries a generation number
    that reprocessing increments; a run whose generation is no longer
    current never writes results or status.
    """

    def __init__(
        self,
        storage: StorageProtocol,
        provider: LLMProvider,
        taxonomy: TaxonomyProtocol,
        video_preparer: Optional[VideoPreparer] = None,
        max_concurrent: int = 2,
        context_window: int = CONTEXT_WINDOW_SECONDS,
        min_batch_seconds: int = MIN_BATCH_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.provider = provider
        if provider.call_sink is None:
            provider.call_sink = storage.log_llm_call
        self.taxonomy = taxonomy
        self.video_preparer = video_preparer or VideoAssembler()
        self.context_window = context_window
        self.min_batch_seconds = min_batch_seconds
        self._clock = clock
        self.transcription = TranscriptionStage(provider)
        self.synthesis = CardSynthesisStage(provider)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._locks: Dict[int, asyncio.Lock] = {}
        self._generations: Dict[int, int] = defaultdict(int)
        self._window_lock = asyncio.Lock()
        # Batch ids a running reprocess request owns; the pending pass leaves them alone
        self._reprocessing: Set[int] = set()

    # ==================== State machine ====================

    def generation(self, batch_id: int) -> int:
        return self._generations[batch_id]

    def _is_stale(self, batch_id: int, generation: int) -> bool:
        return self._generations[batch_id] != generation

    def _lock(self, batch_id: int) -> asyncio.Lock:
        if batch_id not in self._locks:
            self._locks[batch_id] = asyncio.Lock()
        return self._locks[batch_id]

    def _transition(
        self,
        batch_id: int,
        current: BatchStatus,
        new: BatchStatus,
        reason: Optional[str] = None,
        reprocess: bool = False,
    ) -> BatchStatus:
        if not can_transition(current, new, reprocess=reprocess):
            raise InvalidTransitionError(
                f"Batch {batch_id}: illegal transition {current.value} -> {new.value}"
            )
        self.storage.update_batch_status(batch_id, new, reason)
        logger.debug(f"Batch {batch_id}: {current.value} -> {new.value}")
        return new

    def _log_calls(self, logs: Sequence[Optional[LLMCallLog]]) -> None:
        for log in logs:
            if log is not None:
                self.storage.log_llm_call(log)

    # ==================== Processing ====================

    async def process_batch(
        self,
        batch: Batch,
        progress: Optional[ProgressFn] = None,
        after: Optional[asyncio.Event] = None,
    ) -> List[ActivityCard]:
        """
        Analyze one pending batch

        When after is given, card generation waits for it so that an earlier
        batch writes its window first.

        Returns:
            Cards written for the batch window; empty for failed_empty,
            skipped_short and superseded runs

        Raises:
            AnalysisError: The batch ended in failed (status and error card are persisted)
            InvalidTransitionError: The batch is not pending
        """
        async with self._lock(batch.id):
            generation = self._generations[batch.id]
            current = self.storage.get_batch(batch.id) or batch
            self._transition(batch.id, current.status, BatchStatus.PROCESSING)

            try:
                return await self._analyze(current, generation, progress, after)
            except EmptyResult as exc:
                self._log_calls([exc.call_log])
                if self._is_stale(batch.id, generation):
                    return []
                logger.info(f"Batch {batch.id}: {exc}")
                self._transition(
                    batch.id, BatchStatus.PROCESSING, BatchStatus.FAILED_EMPTY, str(exc)
                )
                return []
            except AnalysisError as exc:
                self._log_calls([exc.call_log])
                if self._is_stale(batch.id, generation):
                    logger.info(f"Batch {batch.id}: superseded run failed, discarding: {exc}")
                    return []
                self._fail(current, exc)
                raise
            except Exception as exc:
                if self._is_stale(batch.id, generation):
                    logger.info(f"Batch {batch.id}: superseded run failed, discarding: {exc}")
                    return []
                error = AnalysisError(f"Unexpected error: {exc}")
                self._fail(current, error)
                raise error from exc

    def _fail(self, batch: Batch, error: AnalysisError) -> None:
        logger.error(f"Batch {batch.id} failed: {error}")
        self._transition(
            batch.id, BatchStatus.PROCESSING, BatchStatus.FAILED, human_readable_error(error)
        )
        self.storage.replace_batch_cards(
            batch.id, batch.start_ts, batch.end_ts, [build_error_card(batch, error)]
        )

    async def _analyze(
        self,
        batch: Batch,
        generation: int,
        progress: Optional[ProgressFn],
        after: Optional[asyncio.Event],
    ) -> List[ActivityCard]:
        def report(message: str) -> None:
            logger.info(f"Batch {batch.id}: {message}")
            if progress:
                progress(message)

        chunks = self.storage.chunks_for_batch(batch.id)
        if not chunks:
            self._transition(
                batch.id,
                BatchStatus.PROCESSING,
                BatchStatus.FAILED_EMPTY,
                "Batch has no recording chunks",
            )
            return []

        recorded = sum(chunk.duration for chunk in chunks)
        if recorded < self.min_batch_seconds:
            self._transition(
                batch.id,
                BatchStatus.PROCESSING,
                BatchStatus.SKIPPED_SHORT,
                f"Only {format_duration(recorded)} of recording",
            )
            return []

        report("Transcribing video...")
        async with self._semaphore:
            video = await self.video_preparer.prepare(chunks)
            observations, log = await self.transcription.run(batch, video)
        self._log_calls([log])
        if self._is_stale(batch.id, generation):
            logger.info(f"Batch {batch.id}: superseded after transcription, discarding")
            return []
        self.storage.insert_observations(observations)

        if after is not None:
            await after.wait()

        # The window overlaps neighbouring batches: read it and replace it as one step
        async with self._window_lock:
            if self._is_stale(batch.id, generation):
                logger.info(f"Batch {batch.id}: superseded before card generation, discarding")
                return []

            window_start = batch.end_ts - self.context_window
            window_observations = self.storage.fetch_observations_in_range(
                window_start, batch.end_ts
            )
            existing = self.storage.fetch_cards_in_range(window_start, batch.end_ts)
            context = ActivityGenerationContext(
                current_time=self._clock(),
                existing_cards=existing,
                user_taxonomy=self.taxonomy.snapshot_for_prompt(),
                extracted_taxonomy=extract_taxonomy(existing),
                batch_observations=window_observations,
            )

            report("Generating activity cards...")
            async with self._semaphore:
                cards, logs = await self.synthesis.run(
                    observations,
                    context,
                    day=logical_day_for_ts(batch.start_ts),
                    batch_id=batch.id,
                )
            self._log_calls(logs)
            if self._is_stale(batch.id, generation):
                logger.info(f"Batch {batch.id}: superseded after card generation, discarding")
                return []

            self.storage.replace_cards_in_range(window_start, batch.end_ts, cards, batch.id)
            self._transition(batch.id, BatchStatus.PROCESSING, BatchStatus.COMPLETED)
        report(f"Completed with {len(cards)} cards")
        return cards

    async def _process_in_turn(
        self, batch: Batch, previous: Optional[asyncio.Event], finished: asyncio.Event
    ) -> List[ActivityCard]:
        try:
            return await self.process_batch(batch, after=previous)
        finally:
            finished.set()

    async def process_pending(self) -> Dict[str, int]:
        """
        Process every pending batch concurrently; failures stay isolated

        Transcriptions overlap, card generation follows batch start order.
        Batches owned by a running reprocess request are left to it.
        """
        pending = [
            batch
            for batch in self.storage.fetch_pending_batches()
            if batch.id not in self._reprocessing
        ]
        if not pending:
            return {"processed": 0, "failed": 0}
        pending.sort(key=lambda b: b.start_ts)

        runs = []
        previous: Optional[asyncio.Event] = None
        for batch in pending:
            finished = asyncio.Event()
            runs.append(self._process_in_turn(batch, previous, finished))
            previous = finished

        results = await asyncio.gather(*runs, return_exceptions=True)
        failed = 0
        for batch, result in zip(pending, results):
            if isinstance(result, AnalysisError):
                failed += 1
            elif isinstance(result, BaseException):
                raise result
        logger.info(f"Processed {len(pending)} pending batches, {failed} failed")
        return {"processed": len(pending), "failed": failed}

    # ==================== Reprocessing ====================

    def _reset_for_reprocess(self, batch: Batch) -> None:
        """Supersede in-flight work and clear derived rows; no await inside"""
        current = self.storage.get_batch(batch.id) or batch
        self._generations[batch.id] += 1
        self.storage.clear_batch_results(batch.id)
        if current.status != BatchStatus.PENDING:
            self._transition(batch.id, current.status, BatchStatus.PENDING, reprocess=True)
        self.storage.increment_retry_count(batch.id)

    async def reprocess_batches(
        self, batch_ids: Sequence[int], progress: Optional[ProgressFn] = None
    ) -> None:
        """
        Reprocess batches sequentially in start order

        Raises:
            AnalysisError: At least one batch failed
        """

        def report(message: str) -> None:
            logger.info(message)
            if progress:
                progress(message)

        batches: List[Batch] = []
        for batch_id in batch_ids:
            batch = self.storage.get_batch(batch_id)
            if batch is None:
                logger.warning(f"Reprocess requested for unknown batch {batch_id}")
                continue
            batches.append(batch)
        batches.sort(key=lambda b: b.start_ts)

        total = len(batches)
        report(f"Preparing to reprocess {total} selected batches...")
        owned = {batch.id for batch in batches} - self._reprocessing
        self._reprocessing |= owned
        try:
            failed = await self._reprocess_in_order(batches, report)
        finally:
            self._reprocessing -= owned
        if failed:
            raise AnalysisError(f"Failed to reprocess some batches ({failed} of {total})")

    async def _reprocess_in_order(self, batches: List[Batch], report: ProgressFn) -> int:
        total = len(batches)
        started = time.monotonic()
        failed = 0
        for index, batch in enumerate(batches, start=1):
            report(f"Processing batch {index} of {total}...")
            batch_started = time.monotonic()
            # Reset right before the run so no other pass sees this batch pending
            self._reset_for_reprocess(batch)
            try:
                cards = await self.process_batch(batch)
            except AnalysisError as exc:
                failed += 1
                report(f"Batch {index} failed: {human_readable_error(exc)}")
                continue

            elapsed = format_duration(time.monotonic() - batch_started)
            refreshed = self.storage.get_batch(batch.id)
            status = refreshed.status if refreshed else BatchStatus.COMPLETED
            if status == BatchStatus.COMPLETED:
                report(f"Batch {index} completed in {elapsed} ({len(cards)} cards)")
            elif status == BatchStatus.FAILED_EMPTY:
                report(f"Batch {index} had no activity to analyze")
            elif status == BatchStatus.SKIPPED_SHORT:
                report(f"Batch {index} skipped, recording too short")
            else:
                report(f"Batch {index} finished with status {status.value}")

        total_elapsed = format_duration(time.monotonic() - started)
        report(
            f"Reprocessing finished: {total - failed} of {total} batches succeeded in {total_elapsed}"
        )
        return failed

    async def reprocess_day(self, day: str, progress: Optional[ProgressFn] = None) -> None:
        """Reprocess every batch that starts on a logical day"""
        batch_ids = [batch.id for batch in self.storage.fetch_batches(day)]
        if not batch_ids:
            message = f"No batches found for {day}"
            logger.info(message)
            if progress:
                progress(message)
            return
        await self.reprocess_batches(batch_ids, progress)
