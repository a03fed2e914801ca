"""
Database query SQL statements
Contains all SELECT, INSERT, UPDATE, DELETE statements
"""

# Recording chunk queries
INSERT_CHUNK = """
    INSERT INTO recording_chunks (start_ts, end_ts, file_url, status)
    VALUES (?, ?, ?, ?)
"""

SELECT_UNPROCESSED_CHUNKS = """
    SELECT rc.* FROM recording_chunks rc
    LEFT JOIN batch_chunks bc ON bc.chunk_id = rc.id
    WHERE rc.start_ts >= ?
      AND rc.status = 'completed'
      AND bc.chunk_id IS NULL
    ORDER BY rc.start_ts ASC
"""

SELECT_CHUNKS_FOR_BATCH = """
    SELECT rc.* FROM recording_chunks rc
    JOIN batch_chunks bc ON bc.chunk_id = rc.id
    WHERE bc.batch_id = ?
    ORDER BY rc.start_ts ASC
"""

# Analysis batch queries
INSERT_BATCH = """
    INSERT INTO analysis_batches (batch_start_ts, batch_end_ts, status)
    VALUES (?, ?, 'pending')
"""

INSERT_BATCH_CHUNK = """
    INSERT INTO batch_chunks (batch_id, chunk_id)
    VALUES (?, ?)
"""

SELECT_BATCH_BY_ID = """
    SELECT * FROM analysis_batches
    WHERE id = ?
"""

SELECT_BATCHES_IN_RANGE = """
    SELECT * FROM analysis_batches
    WHERE batch_start_ts >= ? AND batch_start_ts < ?
    ORDER BY batch_start_ts ASC
"""

SELECT_PENDING_BATCHES = """
    SELECT * FROM analysis_batches
    WHERE status = 'pending'
    ORDER BY batch_start_ts ASC
"""

UPDATE_BATCH_STATUS = """
    UPDATE analysis_batches
    SET status = ?, reason = ?, updated_at = CURRENT_TIMESTAMP
    WHERE id = ?
"""

INCREMENT_BATCH_RETRY = """
    UPDATE analysis_batches
    SET retry_count = retry_count + 1, updated_at = CURRENT_TIMESTAMP
    WHERE id = ?
"""

# Observation queries
INSERT_OBSERVATION = """
    INSERT INTO observations (batch_id, start_ts, end_ts, observation, metadata, llm_model)
    VALUES (?, ?, ?, ?, ?, ?)
"""

SELECT_OBSERVATIONS_IN_RANGE = """
    SELECT * FROM observations
    WHERE end_ts > ? AND start_ts < ?
    ORDER BY start_ts ASC
"""

DELETE_OBSERVATIONS_FOR_BATCH = """
    DELETE FROM observations
    WHERE batch_id = ?
"""

# Timeline card queries
INSERT_CARD = """
    INSERT INTO timeline_cards (
        batch_id, start_time, end_time, start_ts, end_ts, day, title, summary,
        category, subcategory, detailed_summary, metadata, video_summary_url
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

UPDATE_CARD = """
    UPDATE timeline_cards
    SET batch_id = ?, start_time = ?, end_time = ?, start_ts = ?, end_ts = ?, day = ?,
        title = ?, summary = ?, category = ?, subcategory = ?,
        detailed_summary = ?, metadata = ?, video_summary_url = ?
    WHERE id = ?
"""

SELECT_CARDS_IN_RANGE = """
    SELECT * FROM timeline_cards
    WHERE start_ts < ? AND end_ts > ?
    ORDER BY start_ts ASC
"""

SELECT_CARDS_FOR_DAY = """
    SELECT * FROM timeline_cards
    WHERE day = ?
    ORDER BY start_ts ASC, id ASC
"""

DELETE_CARDS_IN_RANGE = """
    DELETE FROM timeline_cards
    WHERE start_ts < ? AND end_ts > ?
"""

DELETE_CARDS_FOR_BATCH = """
    DELETE FROM timeline_cards
    WHERE batch_id = ?
"""

# LLM call log queries
INSERT_LLM_CALL = """
    INSERT INTO llm_calls (
        created_at, batch_id, call_group_id, attempt, provider, model, operation,
        status, latency_ms, http_status, request_url, request_body, response_body,
        error_message
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

SELECT_LLM_CALLS_FOR_BATCH = """
    SELECT * FROM llm_calls
    WHERE batch_id = ?
    ORDER BY created_at ASC, id ASC
"""
