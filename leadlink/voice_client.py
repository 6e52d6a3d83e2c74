"""HTTP client for the conversational-voice API (ElevenLabs ConvAI compatible).

Every call returns an ``ApiResult`` instead of raising, so callers branch on
``result.success``:

    result = client.list_conversations(page_size=100)
    if not result.success:
        ...  # result.error.message
    for conversation in result.data.conversations:
        ...

Retry policy:
- 4xx responses (except 429) fail immediately
- 429, 5xx and transport errors are retried with exponential backoff
- timeouts are not retried
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from leadlink.models import ConversationDetail, ConversationPage
from leadlink.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

DEFAULT_BASE_URL = "https://api.elevenlabs.io/v1"


@dataclass
class ApiError:
    message: str
    code: Optional[str] = None
    details: Any = None


@dataclass
class ApiResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def ok(cls, data: T) -> "ApiResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ApiError) -> "ApiResult[T]":
        return cls(success=False, error=error)


class RetryableApiError(Exception):
    """A failed attempt worth repeating (429, 5xx, transport error)."""

    def __init__(self, error: ApiError):
        super().__init__(error.message)
        self.error = error


@dataclass
class RateLimitInfo:
    limit: int
    remaining: int
    reset: int


class VoiceClient:
    """Thin retrying wrapper over the voice API's conversation endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        *,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        backoff_base: float = 1.0,
        backoff_max: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.rate_limit_info: Optional[RateLimitInfo] = None
        self._sleep = sleep
        self._http = http_client or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._http.headers.update({"xi-api-key": api_key, "Content-Type": "application/json"})

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Conversations API
    # ------------------------------------------------------------------

    def list_conversations(
        self,
        page_size: int = 30,
        cursor: Optional[str] = None,
        agent_id: Optional[str] = None,
        call_start_after_unix: Optional[int] = None,
        call_start_before_unix: Optional[int] = None,
    ) -> ApiResult[ConversationPage]:
        params = {
            "page_size": page_size,
            "cursor": cursor,
            "agent_id": agent_id,
            "call_start_after_unix": call_start_after_unix,
            "call_start_before_unix": call_start_before_unix,
        }
        params = {k: v for k, v in params.items() if v is not None}
        result = self._request("GET", "/convai/conversations", params=params)
        return self._parse(result, ConversationPage)

    def get_conversation(self, conversation_id: str) -> ApiResult[ConversationDetail]:
        result = self._request("GET", f"/convai/conversations/{conversation_id}")
        return self._parse(result, ConversationDetail)

    def health_check(self) -> ApiResult[dict]:
        result = self.list_conversations(page_size=1)
        if result.success:
            return ApiResult.ok({"status": "healthy"})
        return ApiResult.fail(ApiError(message="API health check failed", details=result.error))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse(self, result: ApiResult[Any], model: type[M]) -> ApiResult[M]:
        if not result.success:
            return ApiResult.fail(result.error)
        try:
            return ApiResult.ok(model.model_validate(result.data))
        except ValidationError as e:
            logger.warning("voice_api_invalid_response", model=model.__name__, error=str(e))
            return ApiResult.fail(ApiError(code="invalid_response", message="Unexpected response shape", details=e.errors()))

    def _request(self, method: str, path: str, params: Optional[dict] = None) -> ApiResult[Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(RetryableApiError),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            return retrying(self._attempt, method, path, params)
        except RetryError as e:
            error = e.last_attempt.exception().error
            logger.warning("voice_api_retries_exhausted", path=path, code=error.code, error=error.message)
            return ApiResult.fail(error)

    def _attempt(self, method: str, path: str, params: Optional[dict]) -> ApiResult[Any]:
        """One HTTP round trip. Raises RetryableApiError for 429, 5xx and transport errors."""
        try:
            response = self._http.request(method, path, params=params)
        except httpx.TimeoutException as e:
            logger.warning("voice_api_timeout", path=path)
            return ApiResult.fail(ApiError(code="timeout", message=f"Request timed out: {e}"))
        except httpx.HTTPError as e:
            raise RetryableApiError(ApiError(code="transport_error", message=str(e) or e.__class__.__name__)) from e

        self._update_rate_limit_info(response)

        if response.is_success:
            try:
                return ApiResult.ok(response.json())
            except ValueError:
                return ApiResult.fail(ApiError(code="invalid_json", message="Response body is not JSON"))

        error = self._parse_error(response)
        # Don't retry on 4xx errors (except 429 - rate limit)
        if 400 <= response.status_code < 500 and response.status_code != 429:
            logger.info("voice_api_client_error", path=path, status=response.status_code, error=error.message)
            return ApiResult.fail(error)
        raise RetryableApiError(error)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception().error
        logger.warning(
            "voice_api_retrying",
            attempt=retry_state.attempt_number,
            code=error.code,
            error=error.message,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    @staticmethod
    def _parse_error(response: httpx.Response) -> ApiError:
        code = str(response.status_code)
        try:
            data = response.json()
        except ValueError:
            return ApiError(code=code, message=response.reason_phrase or "Unknown error")

        message = None
        if isinstance(data, dict):
            detail = data.get("detail")
            if isinstance(detail, dict):
                message = detail.get("message")
            elif isinstance(detail, str):
                message = detail
            message = message or data.get("message") or data.get("error")
        return ApiError(code=code, message=message or response.reason_phrase or "Unknown error", details=data)

    def _update_rate_limit_info(self, response: httpx.Response) -> None:
        limit = response.headers.get("x-ratelimit-limit")
        remaining = response.headers.get("x-ratelimit-remaining")
        reset = response.headers.get("x-ratelimit-reset")
        if limit and remaining and reset:
            try:
                self.rate_limit_info = RateLimitInfo(int(limit), int(remaining), int(reset))
            except ValueError:
                logger.debug("voice_api_bad_rate_limit_headers", limit=limit, remaining=remaining, reset=reset)
