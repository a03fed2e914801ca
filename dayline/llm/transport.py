"""
Provider transport
HTTP requests, the bounded retry loop and the resumable upload sub-protocol
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Tuple,
    TypeVar,
)

import httpx

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.errors import (
    AnalysisError,
    AuthError,
    NetworkError,
    ProviderError,
    RateLimited,
    UploadTimeout,
)
from dayline.core.logger import get_logger, redact_secrets
from dayline.models.entities import LLMCallLog

logger = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
# fn(attempt) -> (value, raw response text for the audit log)
AttemptFn = Callable[[int], Awaitable[Tuple[T, Optional[str]]]]

MAX_LOGGED_BODY = 500


@dataclass
class RetryPolicy:
    """Bounded retry settings for provider calls"""

    max_attempts: int = 3
    base_delay: float = 5.0
    rate_limit_default: float = 60.0
    max_rate_limit_waits: int = 5

    def backoff(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt: 5s, 10s, 20s"""
        return (2**attempt) * self.base_delay

    @classmethod
    def from_config(cls, config: Optional[ConfigLoader] = None) -> "RetryPolicy":
        config = config or get_config()
        return cls(
            max_attempts=int(config.get("retry.max_attempts", 3)),
            base_delay=float(config.get("retry.base_delay", 5.0)),
            rate_limit_default=float(config.get("retry.rate_limit_default", 60.0)),
            max_rate_limit_waits=int(config.get("retry.max_rate_limit_waits", 5)),
        )


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def error_for_response(response: httpx.Response) -> Optional[AnalysisError]:
    """Map a non-2xx response onto the error taxonomy, None for success"""
    status = response.status_code
    if status < 400:
        return None

    body = response.text[:MAX_LOGGED_BODY]
    if status == 429:
        return RateLimited(
            f"Rate limited: {body}", retry_after=_parse_retry_after(response)
        )
    if status in (401, 403):
        return AuthError(f"Authentication failed: {body}", status)
    if status == 400 and "api key" in body.lower():
        return AuthError(f"Invalid API key: {body}", status)
    if status == 408 or status >= 500:
        return NetworkError(f"Server error: {body}", status)
    return ProviderError(f"Request rejected: {body}", status)


class ProviderTransport:
    """HTTP access and retry execution shared by every remote provider"""

    def __init__(
        self,
        provider: str,
        model: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 120.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.provider = provider
        self.model = model
        self.policy = policy or RetryPolicy()
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self.http_transport = http_transport
        self._sleep: SleepFn = sleep or asyncio.sleep

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.http_transport)

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; transport failures and error statuses raise AnalysisError"""
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout, connect=10.0)
        try:
            async with self.client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request timed out: {exc.__class__.__name__}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Network request failed: {exc}") from exc

        error = error_for_response(response)
        if error is not None:
            raise error
        return response

    async def call_with_retry(
        self,
        fn: AttemptFn,
        *,
        operation: str,
        batch_id: Optional[int] = None,
        request_url: Optional[str] = None,
        request_body: Optional[str] = None,
    ) -> Tuple[T, LLMCallLog]:
        """
        Run fn under the retry policy

        NetworkError consumes an attempt and backs off exponentially.
        RateLimited waits the server supplied delay without consuming an
        attempt. Any other AnalysisError is raised immediately.

        Returns:
            (value, LLMCallLog of the successful call)

        Raises:
            AnalysisError: with call_log set to the last failed call
        """
        group_id = uuid.uuid4().hex
        attempt = 0
        rate_limit_waits = 0
        call_no = 0

        while True:
            call_no += 1
            started_at = datetime.now()
            started = time.monotonic()
            try:
                value, output = await fn(attempt)
            except AnalysisError as exc:
                exc.call_log = self._make_log(
                    started_at,
                    time.monotonic() - started,
                    operation=operation,
                    batch_id=batch_id,
                    group_id=group_id,
                    call_no=call_no,
                    request_url=request_url,
                    request_body=request_body,
                    error=exc,
                )

                if isinstance(exc, RateLimited):
                    if rate_limit_waits >= self.policy.max_rate_limit_waits:
                        self._log_attempt_failure(exc, call_no, operation, request_url, True)
                        raise
                    rate_limit_waits += 1
                    delay = (
                        exc.retry_after
                        if exc.retry_after is not None
                        else self.policy.rate_limit_default
                    )
                elif exc.retryable and attempt + 1 < self.policy.max_attempts:
                    delay = self.policy.backoff(attempt)
                    attempt += 1
                else:
                    self._log_attempt_failure(exc, call_no, operation, request_url, True)
                    raise

                self._log_attempt_failure(exc, call_no, operation, request_url, False)
                logger.info(f"{self.provider} {operation}: retrying in {delay:.1f}s")
                await self._sleep(delay)
                continue

            log = self._make_log(
                started_at,
                time.monotonic() - started,
                operation=operation,
                batch_id=batch_id,
                group_id=group_id,
                call_no=call_no,
                request_url=request_url,
                request_body=request_body,
                output=output,
            )
            return value, log

    def _make_log(
        self,
        started_at: datetime,
        latency: float,
        *,
        operation: str,
        batch_id: Optional[int],
        group_id: str,
        call_no: int,
        request_url: Optional[str],
        request_body: Optional[str],
        output: Optional[str] = None,
        error: Optional[AnalysisError] = None,
    ) -> LLMCallLog:
        return LLMCallLog(
            timestamp=started_at,
            latency=latency,
            input=request_body,
            output=output,
            batch_id=batch_id,
            call_group_id=group_id,
            attempt=call_no,
            provider=self.provider,
            model=self.model,
            operation=operation,
            status="failure" if error is not None else "success",
            error=str(error) if error is not None else None,
            http_status=error.status_code if error is not None else 200,
            request_url=redact_secrets(request_url) if request_url else None,
        )

    def _log_attempt_failure(
        self,
        exc: AnalysisError,
        call_no: int,
        operation: str,
        url: Optional[str],
        final_attempt: bool,
    ) -> None:
        """Log request error details as a one-line JSON summary"""
        level = logger.error if final_attempt else logger.warning
        summary: Dict[str, Any] = {
            "provider": self.provider,
            "model": self.model,
            "operation": operation,
            "attempt": call_no,
            "max_attempts": self.policy.max_attempts,
            "url": redact_secrets(url) if url else None,
            "error_type": exc.__class__.__name__,
            "error_message": exc.message[:MAX_LOGGED_BODY],
        }
        if exc.status_code is not None:
            summary["status_code"] = exc.status_code
        level(f"LLM API request failed: {json.dumps(summary, ensure_ascii=False)}")


class UploadTransport:
    """
    Resumable upload of a video payload followed by readiness polling

    1. start_session declares size and type and receives a session URL
    2. finalize streams the bytes and receives the file URI
    3. wait_until_active polls the file until its state is ACTIVE
    """

    def __init__(
        self,
        transport: ProviderTransport,
        upload_url: str,
        api_key: str,
        poll_interval: float = 2.0,
        max_wait: float = 360.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[SleepFn] = None,
    ):
        self.transport = transport
        self.upload_url = upload_url
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._clock = clock
        self._sleep: SleepFn = sleep or asyncio.sleep

    async def start_session(
        self, size: int, mime_type: str, display_name: str = "dayline_video"
    ) -> str:
        response = await self.transport.request(
            "POST",
            self.upload_url,
            params={"key": self.api_key},
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Raw-Size": str(size),
                "X-Goog-Upload-Header-Content-Type": mime_type,
                "Content-Type": "application/json",
            },
            json={"file": {"display_name": display_name}},
            timeout=30.0,
        )
        session_url = response.headers.get("X-Goog-Upload-URL")
        if not session_url:
            raise NetworkError("Upload session response is missing X-Goog-Upload-URL")
        return session_url

    async def finalize(self, session_url: str, data: bytes) -> str:
        response = await self.transport.request(
            "PUT",
            session_url,
            headers={
                "X-Goog-Upload-Command": "upload, finalize",
                "X-Goog-Upload-Offset": "0",
                "Content-Type": "application/octet-stream",
            },
            content=data,
            timeout=300.0,
        )
        try:
            file_uri = response.json()["file"]["uri"]
        except (ValueError, KeyError, TypeError) as exc:
            raise NetworkError(
                f"Upload finalize returned no file uri: {response.text[:200]}"
            ) from exc
        return file_uri

    async def fetch_state(self, file_uri: str) -> str:
        response = await self.transport.request(
            "GET", file_uri, params={"key": self.api_key}, timeout=30.0
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError("File status response is not JSON") from exc
        if isinstance(payload.get("file"), dict):
            payload = payload["file"]
        return str(payload.get("state", "STATE_UNSPECIFIED"))

    async def wait_until_active(self, file_uri: str) -> None:
        """Poll at a fixed interval; FAILED or an expired deadline end the attempt"""
        deadline = self._clock() + self.max_wait
        while True:
            state = await self.fetch_state(file_uri)
            if state == "ACTIVE":
                return
            if state == "FAILED":
                raise ProviderError(f"Uploaded file processing failed: {file_uri}")
            if self._clock() >= deadline:
                raise UploadTimeout(
                    f"File did not become active within {self.max_wait:.0f}s (last state {state})"
                )
            await self._sleep(self.poll_interval)

    async def upload_and_wait(self, data: bytes, mime_type: str) -> str:
        """Upload the payload and return its file URI once it is ACTIVE"""
        session_url = await self.start_session(len(data), mime_type)
        file_uri = await self.finalize(session_url, data)
        logger.debug(f"Uploaded {len(data)} bytes, waiting for {file_uri}")
        await self.wait_until_active(file_uri)
        return file_uri
