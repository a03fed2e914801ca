"""
Batch planning
Groups closed recording chunks into ~15 minute analysis batches
"""

from typing import List, Sequence

from dayline.core.models import PlannedBatch, RecordingChunk

TARGET_BATCH_SECONDS = 900
MAX_CHUNK_GAP_SECONDS = 120


def _planned(bucket: List[RecordingChunk]) -> PlannedBatch:
    return PlannedBatch(
        chunk_ids=[chunk.id for chunk in bucket],
        start_ts=bucket[0].start_ts,
        end_ts=bucket[-1].end_ts,
        duration=sum(chunk.duration for chunk in bucket),
    )


def create_batches(
    chunks: Sequence[RecordingChunk],
    target_seconds: int = TARGET_BATCH_SECONDS,
    max_gap_seconds: int = MAX_CHUNK_GAP_SECONDS,
) -> List[PlannedBatch]:
    """
    Group chunks by start time

    A batch closes when the next chunk starts more than max_gap_seconds after
    the previous one ends, or when adding it would exceed target_seconds of
    recorded time. The most recent batch is dropped while it is still shorter
    than the target, since recording is probably still filling it.
    """
    batches: List[PlannedBatch] = []
    bucket: List[RecordingChunk] = []
    bucket_duration = 0

    for chunk in sorted(chunks, key=lambda c: c.start_ts):
        if bucket:
            gap = chunk.start_ts - bucket[-1].end_ts
            if gap > max_gap_seconds or bucket_duration + chunk.duration > target_seconds:
                batches.append(_planned(bucket))
                bucket, bucket_duration = [], 0
        bucket.append(chunk)
        bucket_duration += chunk.duration

    if bucket:
        batches.append(_planned(bucket))

    if batches and batches[-1].duration < target_seconds:
        batches.pop()
    return batches
