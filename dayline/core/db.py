"""
SQLite database wrapper
Persists chunks, batches, observations, timeline cards and the LLM call audit trail
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dayline.core.logger import get_logger
from dayline.core.models import BatchStatus, RecordingChunk
from dayline.core.sqls import queries, schema
from dayline.core.timeparse import card_bounds, day_bounds
from dayline.models.entities import (
    ActivityCard,
    Batch,
    Distraction,
    LLMCallLog,
    Observation,
)

logger = get_logger(__name__)


class DatabaseManager:
    """Database manager"""

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            from dayline.core.paths import get_db_path

            db_path = str(get_db_path())

        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Initialize database"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()
        logger.info(f"Database initialization completed: {self.db_path}")

    def _create_tables(self):
        """Create database tables"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for table_sql in schema.ALL_TABLES:
                cursor.execute(table_sql)
            for index_sql in schema.ALL_INDEXES:
                cursor.execute(index_sql)
            conn.commit()

    @contextmanager
    def get_connection(self):
        """Get database connection context manager"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def execute_query(self, query: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def execute_insert(self, query: str, params: Tuple = ()) -> int:
        """Execute insert operation and return inserted ID"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.lastrowid or 0

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute update or delete operation and return affected row count"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            conn.commit()
            return cursor.rowcount

    # ==================== Recording chunks ====================

    def insert_chunk(
        self, start_ts: int, end_ts: int, file_url: str, status: str = "completed"
    ) -> int:
        return self.execute_insert(
            queries.INSERT_CHUNK, (start_ts, end_ts, file_url, status)
        )

    def fetch_unprocessed_chunks(self, since_ts: int) -> List[RecordingChunk]:
        rows = self.execute_query(queries.SELECT_UNPROCESSED_CHUNKS, (since_ts,))
        return [RecordingChunk.from_dict(row) for row in rows]

    def chunks_for_batch(self, batch_id: int) -> List[RecordingChunk]:
        rows = self.execute_query(queries.SELECT_CHUNKS_FOR_BATCH, (batch_id,))
        return [RecordingChunk.from_dict(row) for row in rows]

    # ==================== Analysis batches ====================

    def save_batch(self, start_ts: int, end_ts: int, chunk_ids: Sequence[int]) -> int:
        """Insert a pending batch and link its chunks in one transaction"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(queries.INSERT_BATCH, (start_ts, end_ts))
                batch_id = cursor.lastrowid or 0
                cursor.executemany(
                    queries.INSERT_BATCH_CHUNK,
                    [(batch_id, chunk_id) for chunk_id in chunk_ids],
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.debug(f"Saved batch {batch_id} with {len(chunk_ids)} chunks")
        return batch_id

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        rows = self.execute_query(queries.SELECT_BATCH_BY_ID, (batch_id,))
        return self._row_to_batch(rows[0]) if rows else None

    def fetch_batches(self, day: str) -> List[Batch]:
        start_ts, end_ts = day_bounds(day)
        rows = self.execute_query(queries.SELECT_BATCHES_IN_RANGE, (start_ts, end_ts))
        return [self._row_to_batch(row) for row in rows]

    def fetch_pending_batches(self) -> List[Batch]:
        rows = self.execute_query(queries.SELECT_PENDING_BATCHES)
        return [self._row_to_batch(row) for row in rows]

    def update_batch_status(
        self, batch_id: int, status: BatchStatus, reason: Optional[str] = None
    ) -> None:
        self.execute_update(queries.UPDATE_BATCH_STATUS, (status.value, reason, batch_id))

    def increment_retry_count(self, batch_id: int) -> None:
        self.execute_update(queries.INCREMENT_BATCH_RETRY, (batch_id,))

    def clear_batch_results(self, batch_id: int) -> None:
        """Delete observations and cards derived from a batch"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(queries.DELETE_OBSERVATIONS_FOR_BATCH, (batch_id,))
            cursor.execute(queries.DELETE_CARDS_FOR_BATCH, (batch_id,))
            conn.commit()

    @staticmethod
    def _row_to_batch(row: Dict[str, Any]) -> Batch:
        return Batch(
            id=row["id"],
            start_ts=row["batch_start_ts"],
            end_ts=row["batch_end_ts"],
            status=BatchStatus(row["status"]),
            retry_count=row.get("retry_count") or 0,
            reason=row.get("reason"),
        )

    # ==================== Observations ====================

    def insert_observations(self, observations: Sequence[Observation]) -> None:
        if not observations:
            return
        with self.get_connection() as conn:
            conn.executemany(
                queries.INSERT_OBSERVATION,
                [
                    (
                        obs.batch_id,
                        obs.start_ts,
                        obs.end_ts,
                        obs.text,
                        json.dumps(obs.metadata) if obs.metadata else None,
                        obs.model_id,
                    )
                    for obs in observations
                ],
            )
            conn.commit()

    def fetch_observations_in_range(
        self, start_ts: int, end_ts: int
    ) -> List[Observation]:
        rows = self.execute_query(
            queries.SELECT_OBSERVATIONS_IN_RANGE, (start_ts, end_ts)
        )
        return [
            Observation(
                id=row["id"],
                batch_id=row["batch_id"],
                start_ts=row["start_ts"],
                end_ts=row["end_ts"],
                text=row["observation"],
                metadata=json.loads(row["metadata"]) if row.get("metadata") else None,
                model_id=row.get("llm_model"),
            )
            for row in rows
        ]

    # ==================== Timeline cards ====================

    def _card_params(
        self, card: ActivityCard, fallback: Optional[Tuple[int, int]] = None
    ) -> Tuple:
        bounds = card_bounds(card.day, card.start_time, card.end_time) or fallback
        start_ts, end_ts = bounds if bounds else (None, None)
        metadata = {}
        if card.distractions:
            metadata["distractions"] = [d.model_dump() for d in card.distractions]
        if card.other_video_refs:
            metadata["otherVideoRefs"] = card.other_video_refs
        return (
            card.batch_id,
            card.start_time,
            card.end_time,
            start_ts,
            end_ts,
            card.day,
            card.title,
            card.summary,
            card.category,
            card.subcategory,
            card.detailed_summary,
            json.dumps(metadata) if metadata else None,
            card.video_ref,
        )

    def upsert_activity_cards(self, cards: Sequence[ActivityCard]) -> List[int]:
        """Insert new cards and update cards that already carry an id"""
        ids: List[int] = []
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for card in cards:
                params = self._card_params(card)
                if card.id is not None:
                    cursor.execute(queries.UPDATE_CARD, params + (card.id,))
                    ids.append(card.id)
                else:
                    cursor.execute(queries.INSERT_CARD, params)
                    ids.append(cursor.lastrowid or 0)
            conn.commit()
        return ids

    def replace_cards_in_range(
        self,
        start_ts: int,
        end_ts: int,
        cards: Sequence[ActivityCard],
        batch_id: int,
    ) -> List[int]:
        """Delete cards overlapping [start_ts, end_ts) and insert replacements atomically"""
        return self._replace_cards(
            queries.DELETE_CARDS_IN_RANGE, (end_ts, start_ts), cards, batch_id, (start_ts, end_ts)
        )

    def replace_batch_cards(
        self,
        batch_id: int,
        start_ts: int,
        end_ts: int,
        cards: Sequence[ActivityCard],
    ) -> List[int]:
        """Swap only the cards owned by batch_id; other batches' cards are untouched"""
        return self._replace_cards(
            queries.DELETE_CARDS_FOR_BATCH, (batch_id,), cards, batch_id, (start_ts, end_ts)
        )

    def _replace_cards(
        self,
        delete_query: str,
        delete_params: Tuple[int, ...],
        cards: Sequence[ActivityCard],
        batch_id: int,
        fallback: Tuple[int, int],
    ) -> List[int]:
        ids: List[int] = []
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(delete_query, delete_params)
                removed = cursor.rowcount
                for card in cards:
                    card = card.model_copy(update={"batch_id": batch_id, "id": None})
                    cursor.execute(queries.INSERT_CARD, self._card_params(card, fallback=fallback))
                    ids.append(cursor.lastrowid or 0)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.debug(f"Batch {batch_id}: replaced {removed} cards with {len(ids)}")
        return ids

    def fetch_cards_in_range(self, start_ts: int, end_ts: int) -> List[ActivityCard]:
        rows = self.execute_query(queries.SELECT_CARDS_IN_RANGE, (end_ts, start_ts))
        return [self._row_to_card(row) for row in rows]

    def fetch_timeline_cards(self, day: str) -> List[ActivityCard]:
        rows = self.execute_query(queries.SELECT_CARDS_FOR_DAY, (day,))
        return [self._row_to_card(row) for row in rows]

    @staticmethod
    def _row_to_card(row: Dict[str, Any]) -> ActivityCard:
        metadata = json.loads(row["metadata"]) if row.get("metadata") else {}
        distractions = metadata.get("distractions")
        return ActivityCard(
            id=row["id"],
            batch_id=row.get("batch_id"),
            start_time=row["start_time"],
            end_time=row["end_time"],
            category=row["category"],
            subcategory=row.get("subcategory") or "",
            title=row["title"],
            summary=row.get("summary") or "",
            detailed_summary=row.get("detailed_summary") or "",
            day=row["day"],
            distractions=[Distraction.model_validate(d) for d in distractions]
            if distractions
            else None,
            video_ref=row.get("video_summary_url"),
            other_video_refs=metadata.get("otherVideoRefs"),
        )

    # ==================== LLM call log ====================

    def log_llm_call(self, log: LLMCallLog) -> None:
        self.execute_insert(
            queries.INSERT_LLM_CALL,
            (
                log.timestamp.isoformat(),
                log.batch_id,
                log.call_group_id,
                log.attempt,
                log.provider,
                log.model,
                log.operation,
                log.status,
                int(log.latency * 1000),
                log.http_status,
                log.request_url,
                log.input,
                log.output,
                log.error,
            ),
        )

    def fetch_llm_calls(self, batch_id: int) -> List[LLMCallLog]:
        rows = self.execute_query(queries.SELECT_LLM_CALLS_FOR_BATCH, (batch_id,))
        return [
            LLMCallLog(
                id=row["id"],
                timestamp=datetime.fromisoformat(row["created_at"]),
                latency=(row.get("latency_ms") or 0) / 1000.0,
                input=row.get("request_body"),
                output=row.get("response_body"),
                batch_id=row.get("batch_id"),
                call_group_id=row.get("call_group_id"),
                attempt=row.get("attempt") or 1,
                provider=row.get("provider"),
                model=row.get("model"),
                operation=row.get("operation"),
                status=row["status"],
                error=row.get("error_message"),
                http_status=row.get("http_status"),
                request_url=row.get("request_url"),
            )
            for row in rows
        ]


# Global database instance
db_manager: Optional[DatabaseManager] = None


def get_db() -> DatabaseManager:
    """Get database manager instance

    Reads the path from database.path, falling back to dayline.db next to
    the configuration file
    """
    global db_manager
    if db_manager is None:
        from dayline.config.loader import get_config
        from dayline.core.paths import get_db_path

        configured_path = get_config().get("database.path", "")
        if configured_path and str(configured_path).strip():
            db_path = str(Path(configured_path).expanduser())
        else:
            db_path = str(get_db_path())
        db_manager = DatabaseManager(db_path)
    return db_manager
