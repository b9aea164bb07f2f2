"""
JSON model clients for the interactive scriptwriter.
One request per story beat: a system instruction plus user content in,
a JSON document (as text) out.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from ..config import LLMProvider, RetryPolicy, ScriptwriterConfiguration
from .errors import EmptyModelResponseError, ModelApiError, ModelClientError, ModelRateLimitError
from .retry import RetryEvent, execute_with_retry

logger = logging.getLogger("scriptwriter.model_client")

DEFAULT_TIMEOUT_MS = 240000


class JsonModelClient(ABC):
    """Abstract base class for JSON-generating model clients."""

    @abstractmethod
    async def generate_json(
        self,
        system_instruction: str,
        user_content: str,
        timeout_ms: Optional[int] = None,
    ) -> str:
        """
        Generate a JSON document.

        Raises:
            EmptyModelResponseError: blank model output
            ModelRateLimitError: rate limited (retryable)
            ModelApiError: any other provider failure
        """
        pass


# ============================================================================
# Gemini
# ============================================================================

class GeminiJsonClient(JsonModelClient):
    """Google Gemini client in JSON response mode."""

    def __init__(self, api_key: str, model: str, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.api_key = api_key
        self.model = model
        self.default_timeout_ms = default_timeout_ms
        self._configured = False

    def _configure(self) -> None:
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True

    async def generate_json(
        self,
        system_instruction: str,
        user_content: str,
        timeout_ms: Optional[int] = None,
    ) -> str:
        self._configure()
        timeout_ms = timeout_ms or self.default_timeout_ms

        model = genai.GenerativeModel(
            self.model,
            system_instruction=system_instruction,
            generation_config={"response_mime_type": "application/json"},
        )
        try:
            response = await asyncio.wait_for(
                model.generate_content_async(
                    user_content,
                    request_options={"timeout": timeout_ms / 1000},
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            raise ModelApiError(
                f"Gemini request timed out after {timeout_ms}ms", is_retryable=True
            ) from None
        except Exception as e:
            raise normalize_gemini_error(e) from e

        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate has no text parts (e.g. blocked).
            raise EmptyModelResponseError(f"Gemini returned no text: {e}") from e

        if not text or not text.strip():
            raise EmptyModelResponseError("Gemini returned an empty response.")
        return text


def normalize_gemini_error(error: Exception) -> ModelClientError:
    """Map google.api_core exceptions onto model client errors."""
    if isinstance(error, ModelClientError):
        return error

    if isinstance(error, google_exceptions.GoogleAPICallError):
        status_code = error.code if isinstance(error.code, int) else None
        message = getattr(error, "message", None) or str(error)

        if isinstance(error, (google_exceptions.TooManyRequests, google_exceptions.ResourceExhausted,
                              google_exceptions.ServiceUnavailable)) or status_code in (429, 503):
            return ModelRateLimitError(
                f"Gemini rate limit exceeded: {message}",
                retry_after_ms=extract_retry_after_ms(getattr(error, "details", None)),
            )

        retryable = (status_code is not None and status_code >= 500) or isinstance(
            error, google_exceptions.DeadlineExceeded
        )
        return ModelApiError(
            f"Gemini invocation failed: {status_code}: {message}",
            status_code=status_code,
            is_retryable=retryable,
        )

    return ModelApiError(f"Unexpected error while calling Gemini: {error}", is_retryable=False)


_DURATION_PATTERN = re.compile(r"^(-?\d+(?:\.\d+)?)s$", re.IGNORECASE)


def extract_retry_after_ms(details: Any) -> Optional[int]:
    """Find a retry delay hint in error details (RetryInfo objects or dicts)."""
    if not details:
        return None

    for detail in details if isinstance(details, (list, tuple)) else [details]:
        if isinstance(detail, dict):
            retry_delay = detail.get("retryDelay", detail.get("retry-after", detail.get("retryAfter")))
        else:
            retry_delay = getattr(detail, "retry_delay", None)

        if retry_delay is None:
            continue
        if isinstance(retry_delay, str):
            match = _DURATION_PATTERN.match(retry_delay.strip())
            if match:
                return round(float(match.group(1)) * 1000)
        elif isinstance(retry_delay, (int, float)):
            return round(retry_delay * 1000)
        else:
            seconds = getattr(retry_delay, "seconds", None)
            nanos = getattr(retry_delay, "nanos", None)
            if isinstance(retry_delay, dict):
                seconds = retry_delay.get("seconds")
                nanos = retry_delay.get("nanos")
            if seconds is not None or nanos is not None:
                return int(float(seconds or 0) * 1000 + round(float(nanos or 0) / 1_000_000))

    return None


# ============================================================================
# OpenAI
# ============================================================================

class OpenAIJsonClient(JsonModelClient):
    """OpenAI (or OpenAI-compatible) client in JSON object mode."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.default_timeout_ms = default_timeout_ms
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            # Retries are handled by RetryingJsonClient.
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def generate_json(
        self,
        system_instruction: str,
        user_content: str,
        timeout_ms: Optional[int] = None,
    ) -> str:
        client = self._get_client()
        timeout_ms = timeout_ms or self.default_timeout_ms
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                timeout=timeout_ms / 1000,
            )
        except RateLimitError as e:
            raise ModelRateLimitError(
                f"OpenAI rate limit exceeded: {e}",
                retry_after_ms=_retry_after_header_ms(e),
            ) from e
        except APIStatusError as e:
            raise ModelApiError(
                f"OpenAI invocation failed: {e.status_code}: {e}",
                status_code=e.status_code,
                is_retryable=e.status_code >= 500,
            ) from e
        except APIConnectionError as e:
            # Includes APITimeoutError.
            raise ModelApiError(f"OpenAI connection failed: {e}", is_retryable=True) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise EmptyModelResponseError("OpenAI returned an empty response.")
        return content


def _retry_after_header_ms(error: APIStatusError) -> Optional[int]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return round(float(value) * 1000)
    except ValueError:
        return None


# ============================================================================
# Retry wrapper
# ============================================================================

class RetryingJsonClient(JsonModelClient):
    """Wraps a client with exponential backoff for retryable failures."""

    def __init__(
        self,
        inner: JsonModelClient,
        policy: Optional[RetryPolicy] = None,
        on_event: Optional[Callable[[RetryEvent], None]] = None,
        sleep: Optional[Callable[[int], Awaitable[None]]] = None,
        random_fn: Optional[Callable[[], float]] = None,
    ):
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self.on_event = on_event
        self.sleep = sleep
        self.random_fn = random_fn

    async def generate_json(
        self,
        system_instruction: str,
        user_content: str,
        timeout_ms: Optional[int] = None,
    ) -> str:
        return await execute_with_retry(
            lambda: self.inner.generate_json(system_instruction, user_content, timeout_ms),
            policy=self.policy,
            on_event=self.on_event,
            sleep=self.sleep,
            random_fn=self.random_fn,
        )


def create_json_client(
    config: ScriptwriterConfiguration,
    provider: Optional[LLMProvider] = None,
    on_retry: Optional[Callable[[RetryEvent], None]] = None,
) -> JsonModelClient:
    """Factory function to create the configured client, wrapped with retries."""
    provider = provider or config.provider
    model = config.model or None
    timeout_ms = config.generation.timeout_ms or DEFAULT_TIMEOUT_MS

    if provider == LLMProvider.GEMINI:
        if not config.gemini:
            raise ValueError("Gemini configuration not provided")
        inner: JsonModelClient = GeminiJsonClient(
            api_key=config.gemini.api_key.get_secret_value(),
            model=model or config.gemini.default_model,
            default_timeout_ms=timeout_ms,
        )

    elif provider == LLMProvider.OPENAI:
        if not config.openai:
            raise ValueError("OpenAI configuration not provided")
        inner = OpenAIJsonClient(
            api_key=config.openai.api_key.get_secret_value(),
            model=model or config.openai.default_model,
            base_url=config.openai.base_url,
            default_timeout_ms=timeout_ms,
        )

    else:
        raise ValueError(f"Unsupported provider: {provider}")

    logger.info(f"[create_json_client] Provider: {provider.value}, Model: '{getattr(inner, 'model', '')}'")
    return RetryingJsonClient(inner, policy=config.retry, on_event=on_retry)
