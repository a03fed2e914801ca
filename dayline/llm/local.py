"""
Local vision provider (LM Studio / Ollama)
Small local models cannot watch a whole video, so transcription works frame by
frame and card synthesis is split into several short calls
"""

import base64
from typing import Any, Dict, List, Optional, Tuple

import httpx

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.errors import (
    AnalysisError,
    NetworkError,
    SchemaParseError,
    VideoPreparationError,
)
from dayline.core.json_parser import parse_model
from dayline.core.logger import get_logger
from dayline.core.models import Frame
from dayline.core.taxonomy import normalize_category
from dayline.core.timeparse import (
    card_duration_minutes,
    day_minutes,
    format_clock_ts,
    format_video_timestamp,
    parse_video_timestamp,
)
from dayline.llm.base import (
    ActivityGenerationContext,
    LLMProvider,
    format_observations,
    format_taxonomy,
)
from dayline.llm.prompt_manager import get_prompt_manager
from dayline.llm.transport import ProviderTransport, RetryPolicy, SleepFn
from dayline.models.base import LenientModel
from dayline.models.entities import (
    ActivityCard,
    LLMCallLog,
    Observation,
    TranscriptSegment,
)
from dayline.processing.transcription import segments_to_observations
from dayline.processing.video import FfmpegFrameSampler, FrameSampler

logger = get_logger(__name__)

DEFAULT_ENDPOINTS = {
    "lmstudio": "http://localhost:1234",
    "ollama": "http://localhost:11434",
}
DEFAULT_MODEL = "qwen2.5-vl-3b-instruct"

SEGMENTATION_ATTEMPTS = 2
MIN_SEGMENTS = 2
MAX_SEGMENTS = 5
MIN_COVERAGE = 0.8
SEGMENT_TOLERANCE_SECONDS = 30

# Merge gates for folding the new card into the previous one
MERGE_MAX_PREVIOUS_MINUTES = 40
MERGE_MAX_GAP_MINUTES = 5
MERGE_MAX_COMBINED_MINUTES = 60
MERGE_MIN_CONFIDENCE = 0.8


class SegmentationReply(LenientModel):
    reasoning: str = ""
    segments: List[TranscriptSegment]


class SummaryReply(LenientModel):
    reasoning: str = ""
    summary: str
    category: str


class TitleReply(LenientModel):
    reasoning: str = ""
    title: str


class MergeDecision(LenientModel):
    reason: str = ""
    combine: bool
    confidence: float = 0.0


class MergedCardReply(LenientModel):
    title: str
    summary: str


def segment_coverage(segments: List[TranscriptSegment], duration: float) -> float:
    """Fraction of [0, duration] covered by the union of segments"""
    if duration <= 0:
        return 0.0
    ranges = []
    for segment in segments:
        start = parse_or_none(segment.start_timestamp)
        end = parse_or_none(segment.end_timestamp)
        if start is None or end is None or end <= start:
            continue
        ranges.append((max(0.0, start), min(duration, end)))
    covered = 0.0
    current_start, current_end = None, None
    for start, end in sorted(ranges):
        if current_end is None or start > current_end:
            if current_end is not None:
                covered += current_end - current_start
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_end is not None:
        covered += current_end - current_start
    return covered / duration


def parse_or_none(timestamp: str) -> Optional[float]:
    value = parse_video_timestamp(timestamp)
    return float(value) if value is not None else None


class LocalVisionProvider(LLMProvider):
    """OpenAI-compatible local server provider"""

    name = "local"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        engine: str = "lmstudio",
        frame_interval: float = 60.0,
        sampler: Optional[FrameSampler] = None,
        policy: Optional[RetryPolicy] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.engine = engine
        endpoint = endpoint or DEFAULT_ENDPOINTS.get(engine, DEFAULT_ENDPOINTS["lmstudio"])
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.frame_interval = frame_interval
        self.sampler = sampler or FfmpegFrameSampler()
        policy = policy or RetryPolicy()
        self.transport = ProviderTransport(
            self.name,
            model,
            policy=policy,
            timeout=180.0,
            http_transport=http_transport,
            sleep=sleep,
        )
        # A frame that fails twice is skipped instead of failing the batch
        self.frame_transport = ProviderTransport(
            self.name,
            model,
            policy=RetryPolicy(
                max_attempts=2,
                base_delay=policy.base_delay,
                rate_limit_default=policy.rate_limit_default,
                max_rate_limit_waits=policy.max_rate_limit_waits,
            ),
            timeout=120.0,
            http_transport=http_transport,
            sleep=sleep,
        )
        self.prompts = get_prompt_manager()

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> "LocalVisionProvider":
        config = config or get_config()
        return cls(
            endpoint=config.get("llm.local.endpoint"),
            model=config.get("llm.local.model", DEFAULT_MODEL),
            engine=config.get("llm.local.engine", "lmstudio"),
            frame_interval=float(config.get("llm.local.frame_interval", 60)),
            policy=RetryPolicy.from_config(config),
        )

    @property
    def chat_url(self) -> str:
        return f"{self.endpoint}/v1/chat/completions"

    async def _chat(
        self,
        content: Any,
        *,
        operation: str,
        batch_id: Optional[int] = None,
        transport: Optional[ProviderTransport] = None,
    ) -> Tuple[str, LLMCallLog]:
        transport = transport or self.transport
        params = self.prompts.get_config_params("local", operation)
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": params.get("temperature", 0.2),
            "max_tokens": params.get("max_tokens", 2048),
        }

        async def attempt(_: int) -> Tuple[str, str]:
            response = await transport.request("POST", self.chat_url, json=body)
            try:
                text = response.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                raise NetworkError("Local model response has no choices") from exc
            if not isinstance(text, str) or not text.strip():
                raise NetworkError("Local model returned an empty message")
            return text, text

        request_body = content if isinstance(content, str) else operation
        return await transport.call_with_retry(
            attempt,
            operation=operation,
            batch_id=batch_id,
            request_url=self.chat_url,
            request_body=request_body,
        )

    async def _ask(self, model, prompt: str, *, operation: str, batch_id: Optional[int]):
        """Single JSON call; a reply that does not match the model is terminal"""
        text, log = await self._chat(prompt, operation=operation, batch_id=batch_id)
        try:
            return parse_model(text, model), log
        except SchemaParseError as exc:
            exc.call_log = log.model_copy(update={"status": "failure", "error": str(exc)})
            raise

    # ==================== Transcription ====================

    async def describe_frame(self, frame: Frame, batch_id: Optional[int] = None) -> Optional[str]:
        """Describe one frame; None when the frame keeps failing"""
        prompt = self.prompts.get_user_prompt("local.describe_frame")
        image = base64.b64encode(frame.image).decode("ascii")
        content = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image}"}},
        ]
        try:
            text, log = await self._chat(
                content,
                operation="describe_frame",
                batch_id=batch_id,
                transport=self.frame_transport,
            )
        except AnalysisError as exc:
            self.record_call(exc.call_log)
            logger.warning(
                f"Skipping frame at {format_video_timestamp(frame.timestamp)}: {exc}"
            )
            return None
        self.record_call(log)
        return text.strip()

    async def transcribe_video(
        self,
        data: bytes,
        mime_type: str,
        prompt: str,
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[Observation], LLMCallLog]:
        # The cloud transcription prompt does not apply to frame-by-frame analysis
        frames = await self.sampler.sample(data, mime_type, self.frame_interval)
        if not frames:
            raise VideoPreparationError("No frames could be sampled from the batch video")

        described: List[Tuple[Frame, str]] = []
        for frame in frames:
            description = await self.describe_frame(frame, batch_id)
            if description:
                described.append((frame, description))
        if not described:
            raise NetworkError("Local model could not describe any frame")

        descriptions = "\n".join(
            f"{format_video_timestamp(frame.timestamp)} -> {text}" for frame, text in described
        )
        duration = format_video_timestamp(video_duration)
        base_prompt = self.prompts.get_user_prompt(
            "local.segmentation",
            count=len(described),
            duration=duration,
            descriptions=descriptions,
        )

        log: Optional[LLMCallLog] = None
        error: Optional[str] = None
        for attempt in range(SEGMENTATION_ATTEMPTS):
            seg_prompt = base_prompt
            if error:
                seg_prompt += self.prompts.get_prompt(
                    "local.segmentation", "retry_addendum", error=error
                )
            text, log = await self._chat(seg_prompt, operation="segment", batch_id=batch_id)
            try:
                observations = self._segments_from_reply(
                    text, batch_start_time, video_duration, batch_id
                )
            except SchemaParseError as exc:
                error = exc.message
                logger.warning(f"Segmentation attempt {attempt + 1} rejected: {error}")
                log = log.model_copy(update={"status": "failure", "error": error})
                if attempt + 1 < SEGMENTATION_ATTEMPTS:
                    self.record_call(log)
                continue
            return observations, log

        logger.warning("Falling back to one observation per frame")
        return self._frame_observations(described, batch_start_time, video_duration, batch_id), log

    def _segments_from_reply(
        self,
        text: str,
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int],
    ) -> List[Observation]:
        reply = parse_model(text, SegmentationReply)
        segments = reply.segments
        if not MIN_SEGMENTS <= len(segments) <= MAX_SEGMENTS:
            raise SchemaParseError(
                f"Expected {MIN_SEGMENTS}-{MAX_SEGMENTS} segments, got {len(segments)}"
            )
        for segment in segments:
            end = parse_or_none(segment.end_timestamp)
            if end is not None and end > video_duration + SEGMENT_TOLERANCE_SECONDS:
                raise SchemaParseError(
                    f"Segment ends at {segment.end_timestamp}, after the video ends"
                )
        coverage = segment_coverage(segments, video_duration)
        if coverage < MIN_COVERAGE:
            raise SchemaParseError(f"Segments cover only {coverage:.0%} of the video")
        return segments_to_observations(
            segments, batch_start_time, video_duration, self.model, batch_id or 0
        )

    def _frame_observations(
        self,
        described: List[Tuple[Frame, str]],
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int],
    ) -> List[Observation]:
        observations = []
        for index, (frame, text) in enumerate(described):
            next_ts = (
                described[index + 1][0].timestamp
                if index + 1 < len(described)
                else video_duration
            )
            end = min(frame.timestamp + self.frame_interval, next_ts, video_duration)
            if end <= frame.timestamp:
                continue
            observations.append(
                Observation(
                    batch_id=batch_id or 0,
                    start_ts=batch_start_time + int(frame.timestamp),
                    end_ts=batch_start_time + int(end),
                    text=text,
                    model_id=self.model,
                    metadata={"source": "frame"},
                )
            )
        return observations

    # ==================== Card synthesis ====================

    async def generate_activity_cards(
        self,
        observations: List[Observation],
        context: ActivityGenerationContext,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[ActivityCard], LLMCallLog]:
        if not observations:
            raise SchemaParseError("No observations to summarize")

        taxonomy = context.user_taxonomy
        summary, log = await self._ask(
            SummaryReply,
            self.prompts.get_user_prompt(
                "local.summary",
                observations=format_observations(observations),
                categories=format_taxonomy(taxonomy),
                allowed=" | ".join(d.name for d in taxonomy),
            ),
            operation="summarize",
            batch_id=batch_id,
        )
        self.record_call(log)
        title, log = await self._ask(
            TitleReply,
            self.prompts.get_user_prompt("local.title", summary=summary.summary),
            operation="title",
            batch_id=batch_id,
        )

        new_card = ActivityCard(
            start_time=format_clock_ts(min(o.start_ts for o in observations)),
            end_time=format_clock_ts(max(o.end_ts for o in observations)),
            category=normalize_category(summary.category, taxonomy),
            subcategory="",
            title=title.title,
            summary=summary.summary,
            detailed_summary=summary.summary,
        )

        existing = list(context.existing_cards)
        previous = existing[-1] if existing else None
        if previous is not None and self._merge_candidate(previous, new_card):
            self.record_call(log)
            decision, log = await self._ask(
                MergeDecision,
                self.prompts.get_user_prompt(
                    "local.merge_decision", **self._pair_kwargs(previous, new_card)
                ),
                operation="merge_decision",
                batch_id=batch_id,
            )
            if decision.combine and decision.confidence >= MERGE_MIN_CONFIDENCE:
                self.record_call(log)
                merged, log = await self._ask(
                    MergedCardReply,
                    self.prompts.get_user_prompt(
                        "local.merge_cards", **self._pair_kwargs(previous, new_card)
                    ),
                    operation="merge_cards",
                    batch_id=batch_id,
                )
                combined = previous.model_copy(
                    update={
                        "id": None,
                        "end_time": new_card.end_time,
                        "title": merged.title,
                        "summary": merged.summary,
                        "detailed_summary": merged.summary,
                    }
                )
                logger.info(f"Merged new card into '{previous.title}'")
                return existing[:-1] + [combined], log

        return existing + [new_card], log

    @staticmethod
    def _merge_candidate(previous: ActivityCard, new_card: ActivityCard) -> bool:
        previous_minutes = card_duration_minutes(previous.start_time, previous.end_time)
        combined_minutes = card_duration_minutes(previous.start_time, new_card.end_time)
        previous_end = day_minutes(previous.end_time)
        new_start = day_minutes(new_card.start_time)
        if None in (previous_minutes, combined_minutes, previous_end, new_start):
            return False
        gap = new_start - previous_end
        return (
            previous_minutes < MERGE_MAX_PREVIOUS_MINUTES
            and gap <= MERGE_MAX_GAP_MINUTES
            and combined_minutes <= MERGE_MAX_COMBINED_MINUTES
        )

    @staticmethod
    def _pair_kwargs(previous: ActivityCard, new_card: ActivityCard) -> Dict[str, str]:
        return {
            "previous_start": previous.start_time,
            "previous_end": previous.end_time,
            "previous_title": previous.title,
            "previous_summary": previous.summary,
            "new_start": new_card.start_time,
            "new_end": new_card.end_time,
            "new_title": new_card.title,
            "new_summary": new_card.summary,
        }
