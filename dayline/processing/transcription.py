"""
Transcription stage
Batch video -> ordered observations with absolute timestamps
"""

from typing import List, Optional, Sequence, Tuple

from dayline.core.errors import EmptyResult, TranscriptionValidationError
from dayline.core.logger import get_logger
from dayline.core.models import PreparedVideo
from dayline.core.timeparse import format_video_timestamp, parse_video_timestamp
from dayline.llm.base import LLMProvider
from dayline.llm.prompt_manager import get_transcription_prompt
from dayline.models.entities import (
    Batch,
    LLMCallLog,
    Observation,
    TranscriptSegment,
)

logger = get_logger(__name__)

# Models occasionally overshoot the last timestamp by a little
TIMESTAMP_TOLERANCE_SECONDS = 120


def segments_to_observations(
    segments: Sequence[TranscriptSegment],
    batch_start: int,
    duration: float,
    model_id: Optional[str] = None,
    batch_id: int = 0,
) -> List[Observation]:
    """
    Convert relative MM:SS segments into observations

    Args:
        segments: Parsed transcription segments
        batch_start: Unix time of the first video frame
        duration: Video length in seconds
        model_id: Model that produced the segments

    Raises:
        TranscriptionValidationError: A timestamp is unparseable or lies
            outside the video (beyond the tolerance)
    """
    limit = duration + TIMESTAMP_TOLERANCE_SECONDS
    observations = []
    for segment in segments:
        start = parse_video_timestamp(segment.start_timestamp)
        end = parse_video_timestamp(segment.end_timestamp)
        if start is None or end is None:
            raise TranscriptionValidationError(
                f"Unparseable segment timestamps: {segment.start_timestamp} - {segment.end_timestamp}"
            )
        if start > limit or end > limit:
            raise TranscriptionValidationError(
                f"Segment {segment.start_timestamp} - {segment.end_timestamp} exceeds "
                f"video duration {format_video_timestamp(duration)}"
            )
        if end < start:
            raise TranscriptionValidationError(
                f"Segment ends before it starts: {segment.start_timestamp} - {segment.end_timestamp}"
            )
        observations.append(
            Observation(
                batch_id=batch_id,
                start_ts=batch_start + start,
                end_ts=batch_start + end,
                text=segment.description.strip(),
                model_id=model_id,
            )
        )
    return observations


class TranscriptionStage:
    """Runs the provider transcription call and normalizes its output"""

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    async def run(
        self, batch: Batch, video: PreparedVideo
    ) -> Tuple[List[Observation], LLMCallLog]:
        prompt = get_transcription_prompt(format_video_timestamp(video.duration))
        observations, log = await self.provider.transcribe_video(
            video.data,
            video.mime_type,
            prompt,
            batch.start_ts,
            video.duration,
            batch_id=batch.id,
        )

        normalized = self._clamp_to_batch(observations, batch)
        if not normalized:
            error = EmptyResult(f"Transcription of batch {batch.id} returned no observations")
            error.call_log = log
            raise error

        logger.info(f"Batch {batch.id}: {len(normalized)} observations")
        return normalized, log

    @staticmethod
    def _clamp_to_batch(
        observations: List[Observation], batch: Batch
    ) -> List[Observation]:
        """Keep every observation inside the batch range, ordered by start"""
        result = []
        for obs in observations:
            start = min(max(obs.start_ts, batch.start_ts), batch.end_ts)
            end = min(max(obs.end_ts, batch.start_ts), batch.end_ts)
            if end <= start or not obs.text:
                logger.debug(f"Batch {batch.id}: dropped empty observation {obs.text[:60]!r}")
                continue
            result.append(
                obs.model_copy(
                    update={"start_ts": start, "end_ts": end, "batch_id": batch.id}
                )
            )
        return sorted(result, key=lambda o: (o.start_ts, o.end_ts))
