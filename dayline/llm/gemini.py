"""
Cloud vision provider (Gemini)
Uploads the batch video through the resumable protocol, then asks for
schema-constrained JSON via generateContent
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.errors import ConfigurationError, NetworkError, SchemaParseError
from dayline.core.json_parser import parse_model_list
from dayline.core.logger import get_logger
from dayline.core.timeparse import format_clock
from dayline.llm.base import (
    ActivityGenerationContext,
    LLMProvider,
    format_observations,
    format_taxonomy,
)
from dayline.llm.prompt_manager import (
    get_card_generation_prompt,
    get_correction_addendum,
    get_prompt_manager,
)
from dayline.llm.transport import (
    ProviderTransport,
    RetryPolicy,
    SleepFn,
    UploadTransport,
)
from dayline.models.entities import (
    ActivityCard,
    LLMCallLog,
    Observation,
    TranscriptSegment,
)
from dayline.processing.transcription import segments_to_observations

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.5-pro"

TRANSCRIPT_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "startTimestamp": {"type": "STRING"},
            "endTimestamp": {"type": "STRING"},
            "description": {"type": "STRING"},
        },
        "required": ["startTimestamp", "endTimestamp", "description"],
        "propertyOrdering": ["startTimestamp", "endTimestamp", "description"],
    },
}

DISTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "startTime": {"type": "STRING"},
        "endTime": {"type": "STRING"},
        "title": {"type": "STRING"},
        "summary": {"type": "STRING"},
    },
    "required": ["startTime", "endTime", "title", "summary"],
    "propertyOrdering": ["startTime", "endTime", "title", "summary"],
}

CARDS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "startTime": {"type": "STRING"},
            "endTime": {"type": "STRING"},
            "category": {"type": "STRING"},
            "subcategory": {"type": "STRING"},
            "title": {"type": "STRING"},
            "summary": {"type": "STRING"},
            "detailedSummary": {"type": "STRING"},
            "distractions": {"type": "ARRAY", "items": DISTRACTION_SCHEMA},
        },
        "required": [
            "startTime",
            "endTime",
            "category",
            "subcategory",
            "title",
            "summary",
            "detailedSummary",
        ],
        "propertyOrdering": [
            "startTime",
            "endTime",
            "category",
            "subcategory",
            "title",
            "summary",
            "detailedSummary",
            "distractions",
        ],
    },
}

# Fields of a prior card shown back to the model
CARD_PROMPT_FIELDS = {
    "start_time",
    "end_time",
    "category",
    "subcategory",
    "title",
    "summary",
    "detailed_summary",
    "distractions",
}


def cards_for_prompt(cards: List[ActivityCard]) -> str:
    return json.dumps(
        [card.model_dump(include=CARD_PROMPT_FIELDS, exclude_none=True) for card in cards],
        ensure_ascii=False,
        indent=2,
    )


def extract_response_text(payload: Dict[str, Any]) -> str:
    """Text of the first candidate; a missing candidate is a transient failure"""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError) as exc:
        reason = None
        if isinstance(payload.get("promptFeedback"), dict):
            reason = payload["promptFeedback"].get("blockReason")
        raise NetworkError(
            f"Gemini response has no candidates{f' (blocked: {reason})' if reason else ''}"
        ) from exc
    if not text.strip():
        raise NetworkError("Gemini response candidate is empty")
    return text


class CloudVisionProvider(LLMProvider):
    """Gemini direct provider"""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        policy: Optional[RetryPolicy] = None,
        poll_interval: float = 2.0,
        max_wait: float = 360.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_key:
            raise ConfigurationError("Gemini API key is not configured")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.transport = ProviderTransport(
            self.name,
            model,
            policy=policy,
            timeout=300.0,
            http_transport=http_transport,
            sleep=sleep,
        )
        self.uploader = UploadTransport(
            self.transport,
            f"{self.base_url}/upload/v1beta/files",
            api_key,
            poll_interval=poll_interval,
            max_wait=max_wait,
            clock=clock,
            sleep=sleep,
        )
        params = get_prompt_manager().get_config_params("gemini")
        self.temperature = float(params.get("temperature", 0.3))
        self.max_output_tokens = int(params.get("max_tokens", 65536))

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> "CloudVisionProvider":
        config = config or get_config()
        return cls(
            api_key=config.get("llm.gemini.api_key", ""),
            model=config.get("llm.gemini.model", DEFAULT_MODEL),
            base_url=config.get("llm.gemini.base_url", DEFAULT_BASE_URL),
            policy=RetryPolicy.from_config(config),
            poll_interval=float(config.get("upload.poll_interval", 2.0)),
            max_wait=float(config.get("upload.max_wait", 360.0)),
        )

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def _generation_config(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "responseMimeType": "application/json",
            "responseSchema": schema,
        }

    async def _generate(self, body: Dict[str, Any]) -> Tuple[str, str]:
        response = await self.transport.request(
            "POST", self.generate_url, params={"key": self.api_key}, json=body
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError("Gemini response is not JSON") from exc
        text = extract_response_text(payload)
        return text, text

    async def transcribe_video(
        self,
        data: bytes,
        mime_type: str,
        prompt: str,
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[Observation], LLMCallLog]:
        async def upload(attempt: int) -> Tuple[str, Optional[str]]:
            file_uri = await self.uploader.upload_and_wait(data, mime_type)
            return file_uri, file_uri

        file_uri, _ = await self.transport.call_with_retry(
            upload,
            operation="upload",
            batch_id=batch_id,
            request_url=self.uploader.upload_url,
        )

        body = {
            "contents": [
                {
                    "parts": [
                        {"file_data": {"mime_type": mime_type, "file_uri": file_uri}},
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": self._generation_config(TRANSCRIPT_SCHEMA),
        }

        async def generate(attempt: int) -> Tuple[str, str]:
            return await self._generate(body)

        text, log = await self.transport.call_with_retry(
            generate,
            operation="transcribe",
            batch_id=batch_id,
            request_url=self.generate_url,
            request_body=prompt,
        )

        try:
            segments = parse_model_list(text, TranscriptSegment)
            observations = segments_to_observations(
                segments,
                batch_start_time,
                video_duration,
                model_id=self.model,
                batch_id=batch_id or 0,
            )
        except SchemaParseError as exc:
            exc.call_log = log.model_copy(update={"status": "failure", "error": str(exc)})
            raise
        return observations, log

    async def generate_activity_cards(
        self,
        observations: List[Observation],
        context: ActivityGenerationContext,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[ActivityCard], LLMCallLog]:
        prompt = get_card_generation_prompt(
            taxonomy=format_taxonomy(context.user_taxonomy),
            extracted_taxonomy="\n".join(context.extracted_taxonomy) or "(none yet)",
            current_time=format_clock(context.current_time),
            existing_cards=cards_for_prompt(context.existing_cards),
            observations=format_observations(context.batch_observations or observations),
        )
        if context.feedback:
            prompt += get_correction_addendum(context.feedback)

        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": self._generation_config(CARDS_SCHEMA),
        }

        async def generate(attempt: int) -> Tuple[str, str]:
            return await self._generate(body)

        text, log = await self.transport.call_with_retry(
            generate,
            operation="generate_cards",
            batch_id=batch_id,
            request_url=self.generate_url,
            request_body=prompt,
        )

        try:
            cards = parse_model_list(text, ActivityCard)
        except SchemaParseError as exc:
            exc.call_log = log.model_copy(update={"status": "failure", "error": str(exc)})
            raise
        return cards, log
