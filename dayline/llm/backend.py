"""
Managed backend provider
Thin bearer-token client of a hosted analysis service that runs the model calls server side
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.errors import ConfigurationError, NetworkError, SchemaParseError
from dayline.core.json_parser import parse_model_list
from dayline.core.logger import get_logger
from dayline.llm.base import ActivityGenerationContext, LLMProvider
from dayline.llm.gemini import CARD_PROMPT_FIELDS
from dayline.llm.transport import ProviderTransport, RetryPolicy, SleepFn
from dayline.models.entities import (
    ActivityCard,
    LLMCallLog,
    Observation,
    TranscriptSegment,
)
from dayline.processing.transcription import segments_to_observations

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "https://api.dayline.app"


class ManagedBackendProvider(LLMProvider):
    """Hosted analysis service provider"""

    name = "backend"

    def __init__(
        self,
        token: str,
        endpoint: str = DEFAULT_ENDPOINT,
        policy: Optional[RetryPolicy] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
    ):
        if not token:
            raise ConfigurationError("Managed backend token is not configured")
        self.token = token
        self.endpoint = endpoint.rstrip("/")
        self.transport = ProviderTransport(
            self.name,
            None,
            policy=policy,
            timeout=600.0,
            http_transport=http_transport,
            sleep=sleep,
        )

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> "ManagedBackendProvider":
        config = config or get_config()
        return cls(
            token=config.get("llm.backend.token", ""),
            endpoint=config.get("llm.backend.endpoint", DEFAULT_ENDPOINT),
            policy=RetryPolicy.from_config(config),
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def _post(self, path: str, **kwargs: Any) -> Tuple[Any, str]:
        response = await self.transport.request(
            "POST", f"{self.endpoint}{path}", headers=self.headers, **kwargs
        )
        try:
            return response.json(), response.text
        except ValueError as exc:
            raise NetworkError(f"Backend response from {path} is not JSON") from exc

    async def transcribe_video(
        self,
        data: bytes,
        mime_type: str,
        prompt: str,
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[Observation], LLMCallLog]:
        form = {
            "prompt": prompt,
            "batch_start": str(batch_start_time),
            "duration": f"{video_duration:.3f}",
        }

        async def attempt(_: int) -> Tuple[Any, str]:
            return await self._post(
                "/v1/transcriptions",
                data=form,
                files={"video": ("batch_video", data, mime_type)},
            )

        payload, log = await self.transport.call_with_retry(
            attempt,
            operation="transcribe",
            batch_id=batch_id,
            request_url=f"{self.endpoint}/v1/transcriptions",
            request_body=prompt,
        )
        try:
            segments = parse_model_list(json.dumps(payload), TranscriptSegment, key="observations")
            observations = segments_to_observations(
                segments,
                batch_start_time,
                video_duration,
                model_id=payload.get("model") if isinstance(payload, dict) else None,
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
        body = {
            "currentTime": context.current_time.isoformat(),
            "observations": [
                {"startTs": o.start_ts, "endTs": o.end_ts, "text": o.text}
                for o in (context.batch_observations or observations)
            ],
            "existingCards": [
                card.model_dump(include=CARD_PROMPT_FIELDS, exclude_none=True)
                for card in context.existing_cards
            ],
            "taxonomy": [d.model_dump() for d in context.user_taxonomy],
            "extractedTaxonomy": context.extracted_taxonomy,
        }
        if context.feedback:
            body["feedback"] = context.feedback

        async def attempt(_: int) -> Tuple[Any, str]:
            return await self._post("/v1/activity-cards", json=body)

        request_body = json.dumps(body, ensure_ascii=False)
        payload, log = await self.transport.call_with_retry(
            attempt,
            operation="generate_cards",
            batch_id=batch_id,
            request_url=f"{self.endpoint}/v1/activity-cards",
            request_body=request_body,
        )
        try:
            cards = parse_model_list(json.dumps(payload), ActivityCard, key="cards")
        except SchemaParseError as exc:
            exc.call_log = log.model_copy(update={"status": "failure", "error": str(exc)})
            raise
        return cards, log
