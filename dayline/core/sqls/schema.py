"""
Database schema definitions
Contains all CREATE TABLE and CREATE INDEX statements
"""

CREATE_RECORDING_CHUNKS_TABLE = """
    CREATE TABLE IF NOT EXISTS recording_chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_ts INTEGER NOT NULL,
        end_ts INTEGER NOT NULL,
        file_url TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'completed',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_ANALYSIS_BATCHES_TABLE = """
    CREATE TABLE IF NOT EXISTS analysis_batches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_start_ts INTEGER NOT NULL,
        batch_end_ts INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        reason TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_BATCH_CHUNKS_TABLE = """
    CREATE TABLE IF NOT EXISTS batch_chunks (
        batch_id INTEGER NOT NULL REFERENCES analysis_batches(id) ON DELETE CASCADE,
        chunk_id INTEGER NOT NULL REFERENCES recording_chunks(id) ON DELETE RESTRICT,
        PRIMARY KEY (batch_id, chunk_id)
    )
"""

CREATE_OBSERVATIONS_TABLE = """
    CREATE TABLE IF NOT EXISTS observations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id INTEGER NOT NULL REFERENCES analysis_batches(id) ON DELETE CASCADE,
        start_ts INTEGER NOT NULL,
        end_ts INTEGER NOT NULL,
        observation TEXT NOT NULL,
        metadata TEXT,
        llm_model TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_TIMELINE_CARDS_TABLE = """
    CREATE TABLE IF NOT EXISTS timeline_cards (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id INTEGER REFERENCES analysis_batches(id) ON DELETE SET NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        start_ts INTEGER,
        end_ts INTEGER,
        day DATE NOT NULL,
        title TEXT NOT NULL,
        summary TEXT,
        category TEXT NOT NULL,
        subcategory TEXT,
        detailed_summary TEXT,
        metadata TEXT,
        video_summary_url TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_LLM_CALLS_TABLE = """
    CREATE TABLE IF NOT EXISTS llm_calls (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        batch_id INTEGER,
        call_group_id TEXT,
        attempt INTEGER NOT NULL DEFAULT 1,
        provider TEXT,
        model TEXT,
        operation TEXT,
        status TEXT NOT NULL,
        latency_ms INTEGER,
        http_status INTEGER,
        request_url TEXT,
        request_body TEXT,
        response_body TEXT,
        error_message TEXT
    )
"""

CREATE_CHUNKS_START_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_chunks_start_ts
    ON recording_chunks(start_ts)
"""

CREATE_BATCHES_STATUS_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_batches_status
    ON analysis_batches(status)
"""

CREATE_BATCH_CHUNKS_CHUNK_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_batch_chunks_chunk
    ON batch_chunks(chunk_id)
"""

CREATE_OBSERVATIONS_BATCH_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_observations_batch
    ON observations(batch_id)
"""

CREATE_OBSERVATIONS_RANGE_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_observations_range
    ON observations(start_ts, end_ts)
"""

CREATE_CARDS_DAY_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_timeline_cards_day
    ON timeline_cards(day)
"""

CREATE_CARDS_RANGE_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_timeline_cards_range
    ON timeline_cards(start_ts, end_ts)
"""

CREATE_LLM_CALLS_BATCH_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_llm_calls_batch
    ON llm_calls(batch_id, created_at)
"""

ALL_TABLES = [
    CREATE_RECORDING_CHUNKS_TABLE,
    CREATE_ANALYSIS_BATCHES_TABLE,
    CREATE_BATCH_CHUNKS_TABLE,
    CREATE_OBSERVATIONS_TABLE,
    CREATE_TIMELINE_CARDS_TABLE,
    CREATE_LLM_CALLS_TABLE,
]

ALL_INDEXES = [
    CREATE_CHUNKS_START_INDEX,
    CREATE_BATCHES_STATUS_INDEX,
    CREATE_BATCH_CHUNKS_CHUNK_INDEX,
    CREATE_OBSERVATIONS_BATCH_INDEX,
    CREATE_OBSERVATIONS_RANGE_INDEX,
    CREATE_CARDS_DAY_INDEX,
    CREATE_CARDS_RANGE_INDEX,
    CREATE_LLM_CALLS_BATCH_INDEX,
]
