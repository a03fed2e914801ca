"""
Analysis coordinator
Periodically turns closed recording chunks into batches and processes pending batches
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, Optional

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.db import get_db
from dayline.core.logger import get_logger
from dayline.core.protocols import StorageProtocol
from dayline.core.taxonomy import TaxonomyStore
from dayline.llm.base import LLMProvider
from dayline.llm.factory import create_provider
from dayline.processing.batch_manager import BatchLifecycleManager
from dayline.processing.batching import create_batches

logger = get_logger(__name__)

# Global coordinator instance
_coordinator: Optional["AnalysisCoordinator"] = None


class AnalysisCoordinator:
    """Analysis coordinator"""

    def __init__(
        self,
        config: ConfigLoader,
        storage: Optional[StorageProtocol] = None,
        provider: Optional[LLMProvider] = None,
        manager: Optional[BatchLifecycleManager] = None,
    ):
        """
        Initialize coordinator

        Args:
            config: Configuration loader
            storage: Storage backend, the SQLite database by default
            provider: LLM provider, chosen from llm.provider by default
            manager: Prebuilt lifecycle manager, built from the above when omitted
        """
        self.config = config
        self.check_interval = float(config.get("analysis.check_interval", 60))
        self.lookback_seconds = int(float(config.get("analysis.lookback_hours", 24)) * 3600)
        self.target_batch_seconds = int(config.get("analysis.target_batch_seconds", 900))
        self.max_chunk_gap = int(config.get("analysis.max_chunk_gap", 120))

        self.storage = storage
        self.provider = provider
        self.manager = manager

        # Running state
        self.is_running = False
        self.processing_task: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None

        # Statistics
        self.stats: Dict[str, Any] = {
            "start_time": None,
            "total_cycles": 0,
            "batches_created": 0,
            "batches_processed": 0,
            "batches_failed": 0,
            "last_cycle_time": None,
        }

    def ensure_manager(self) -> BatchLifecycleManager:
        """Lazy initialization of the lifecycle manager"""
        if self.manager is None:
            if self.storage is None:
                self.storage = get_db()
            if self.provider is None:
                self.provider = create_provider(self.config)
            self.manager = BatchLifecycleManager(
                storage=self.storage,
                provider=self.provider,
                taxonomy=TaxonomyStore(self.config),
                max_concurrent=int(self.config.get("analysis.max_concurrent_batches", 2)),
                context_window=int(self.config.get("analysis.context_window_seconds", 3600)),
                min_batch_seconds=int(self.config.get("analysis.min_batch_seconds", 300)),
            )
        if self.storage is None:
            self.storage = self.manager.storage
        return self.manager

    def create_pending_batches(self) -> int:
        """Group unbatched chunks from the lookback window into pending batches"""
        manager = self.ensure_manager()
        since = int(time.time()) - self.lookback_seconds
        chunks = manager.storage.fetch_unprocessed_chunks(since)
        if not chunks:
            return 0

        planned = create_batches(
            chunks,
            target_seconds=self.target_batch_seconds,
            max_gap_seconds=self.max_chunk_gap,
        )
        for batch in planned:
            batch_id = manager.storage.save_batch(batch.start_ts, batch.end_ts, batch.chunk_ids)
            logger.info(
                f"Created batch {batch_id} with {len(batch.chunk_ids)} chunks ({batch.duration}s)"
            )
        self.stats["batches_created"] += len(planned)
        return len(planned)

    async def run_once(self) -> Dict[str, int]:
        """One analysis cycle: create batches, then process everything pending"""
        created = self.create_pending_batches()
        result = await self.ensure_manager().process_pending()

        self.stats["total_cycles"] += 1
        self.stats["batches_processed"] += result["processed"]
        self.stats["batches_failed"] += result["failed"]
        self.stats["last_cycle_time"] = datetime.now()
        return {"created": created, **result}

    async def start(self) -> None:
        """Start the periodic analysis loop"""
        if self.is_running:
            logger.warning("Coordinator is already running")
            return

        self.ensure_manager()
        self.is_running = True
        self.last_error = None
        self.stats["start_time"] = datetime.now()
        self.processing_task = asyncio.create_task(self._processing_loop())
        logger.info(f"Analysis coordinator started, check interval: {self.check_interval} seconds")

    async def stop(self, *, quiet: bool = False) -> None:
        """Stop the periodic analysis loop

        Args:
            quiet: When True, only log debug messages
        """
        log = logger.debug if quiet else logger.info
        self.is_running = False
        if self.processing_task and not self.processing_task.done():
            self.processing_task.cancel()
            try:
                await self.processing_task
            except asyncio.CancelledError:
                pass
        self.processing_task = None
        log("Analysis coordinator stopped")

    async def _processing_loop(self) -> None:
        """Scheduled processing loop"""
        first_iteration = True
        try:
            while self.is_running:
                # First cycle starts almost immediately
                await asyncio.sleep(0.1 if first_iteration else self.check_interval)
                first_iteration = False
                if not self.is_running:
                    break

                try:
                    result = await self.run_once()
                    self.last_error = None
                    if result["created"] or result["processed"]:
                        logger.info(
                            f"Analysis cycle: {result['created']} batches created, "
                            f"{result['processed']} processed, {result['failed']} failed"
                        )
                    else:
                        logger.debug("No new batches to analyze")
                except Exception as e:
                    # A failed cycle is retried on the next tick
                    self.last_error = str(e)
                    logger.error(f"Analysis cycle failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug("Processing loop cancelled")
            raise

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics"""
        return {
            "is_running": self.is_running,
            "last_error": self.last_error,
            "check_interval": self.check_interval,
            "start_time": self.stats["start_time"].isoformat()
            if self.stats["start_time"]
            else None,
            "total_cycles": self.stats["total_cycles"],
            "batches_created": self.stats["batches_created"],
            "batches_processed": self.stats["batches_processed"],
            "batches_failed": self.stats["batches_failed"],
            "last_cycle_time": self.stats["last_cycle_time"].isoformat()
            if self.stats["last_cycle_time"]
            else None,
        }


def get_coordinator() -> AnalysisCoordinator:
    """Get global coordinator singleton"""
    global _coordinator
    if _coordinator is None:
        _coordinator = AnalysisCoordinator(get_config())
    return _coordinator
