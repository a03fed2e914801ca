from dayline.core.models import RecordingChunk
from dayline.processing.batching import create_batches


def chunk(chunk_id, start, length=60):
    return RecordingChunk(id=chunk_id, start_ts=start, end_ts=start + length, file_url=f"/rec/{chunk_id}.mp4")


def test_groups_contiguous_chunks_into_fifteen_minute_batches():
    chunks = [chunk(i, 1000 + i * 60) for i in range(31)]

    batches = create_batches(chunks)

    # 31 minutes: two full batches, the trailing minute is still recording
    assert len(batches) == 2
    assert batches[0].chunk_ids == list(range(15))
    assert batches[0].duration == 900
    assert batches[1].start_ts == 1000 + 15 * 60


def test_gap_closes_a_batch():
    first = [chunk(i, 1000 + i * 60) for i in range(15)]
    later = [chunk(100 + i, 1000 + 15 * 60 + 600 + i * 60) for i in range(15)]

    batches = create_batches(later + first)

    assert [b.chunk_ids[0] for b in batches] == [0, 100]


def test_short_closed_batch_is_kept_when_not_last():
    early = [chunk(i, 1000 + i * 60) for i in range(5)]
    later = [chunk(100 + i, 10_000 + i * 60) for i in range(15)]

    batches = create_batches(early + later)

    assert len(batches) == 2
    assert batches[0].duration == 300


def test_incomplete_final_batch_is_dropped():
    assert create_batches([chunk(i, 1000 + i * 60) for i in range(10)]) == []
    assert create_batches([]) == []
