"""Gemini generateContent client with bounded timeout and retry."""

import asyncio
import logging
import os
import time
from typing import Any, Dict, Optional, Union

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from .base import BaseLLMClient, GenerationRequest, TransportFailure

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportFailure) and exc.retryable


class GeminiLLMClient(BaseLLMClient):
    """
    Client for the Gemini ``generateContent`` endpoint.

    Each attempt runs under a hard deadline of ``timeout`` seconds. Connection
    and timeout failures are retried ``retry_count`` more times with a fixed
    ``retry_backoff_seconds`` pause; non-2xx statuses and envelope problems are
    raised immediately. A 2xx body whose model text is malformed is returned
    as-is: parsing it is the normalizer's job.

    Retries do not guarantee exactly-once delivery. If an attempt reached the
    model but its response was lost, the retry is a second generation.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 60.0,
        temperature: float = 0.7,
        max_output_tokens: int = 4096,
        response_mime_type: str = "application/json",
        retry_count: int = 2,
        retry_backoff_seconds: float = 1.0,
        verify: Union[bool, str] = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Gemini client.

        Args:
            base_url: API root, e.g. https://generativelanguage.googleapis.com/v1beta
            model: Model identifier
            api_key: API key; empty means read GEMINI_API_KEY
            timeout: Per-attempt deadline in seconds
            temperature: Sampling temperature
            max_output_tokens: Output token ceiling
            response_mime_type: Requested response MIME type
            retry_count: Additional attempts after the first on transport failure
            retry_backoff_seconds: Fixed pause between attempts
            verify: TLS verification flag or CA bundle path
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self.timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.response_mime_type = response_mime_type
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self.client = httpx.AsyncClient(timeout=timeout, verify=verify, transport=transport)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generation_settings(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "timeout": self.timeout,
            "retry_count": self.retry_count,
        }

    async def health_check(self) -> bool:
        """Check the model metadata endpoint answers."""
        if not self.api_key:
            return False
        try:
            response = await self.client.get(
                f"{self.base_url}/models/{self.model}",
                headers={"x-goog-api-key": self.api_key},
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"[GEMINI] Health check failed: {e}")
            return False

    def build_body(self, request: GenerationRequest) -> Dict[str, Any]:
        """Translate a GenerationRequest into the generateContent JSON body."""
        body: Dict[str, Any] = {
            "contents": [
                {"role": turn.role, "parts": [{"text": turn.text}]}
                for turn in request.contents
            ],
            "generationConfig": {
                "temperature": self.temperature,
                "response_mime_type": self.response_mime_type,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        if request.system_instruction:
            body["system_instruction"] = {"parts": [{"text": request.system_instruction}]}
        return body

    async def invoke(self, request: GenerationRequest, timeout: Optional[float] = None) -> str:
        """
        Call the model and return its raw text.

        Args:
            request: Payload from the prompt builder
            timeout: Per-attempt deadline override (longer for report generation)

        Raises:
            TransportFailure: after the last attempt fails, or immediately
                for non-retryable kinds
        """
        if not self.api_key:
            raise TransportFailure("connection", "GEMINI_API_KEY not set")

        body = self.build_body(request)
        deadline = timeout if timeout is not None else self.timeout
        logger.info(
            f"[GEMINI] Calling {self.model}: payload_chars={request.char_count()}, "
            f"turns={len(request.contents)}, timeout={deadline}s"
        )

        text = ""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_fixed(self.retry_backoff_seconds),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                text = await self._attempt(body, deadline)
        return text

    async def _attempt(self, body: Dict[str, Any], deadline: float) -> str:
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.endpoint,
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                    timeout=deadline,
                ),
                timeout=deadline,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise TransportFailure("timeout", f"Gemini API timeout after {deadline}s") from e
        except httpx.TransportError as e:
            raise TransportFailure("connection", f"Gemini API connection failed: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000

        if not response.is_success:
            detail = response.text[:500]
            logger.error(f"[GEMINI] HTTP {response.status_code} after {duration_ms:.0f}ms: {detail}")
            raise TransportFailure(
                "service-error",
                f"Gemini API returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportFailure("envelope", "Gemini API body is not JSON", detail=response.text[:500]) from e

        text = self._extract_text(data)
        if text is None:
            logger.error(f"[GEMINI] Unexpected envelope: keys={list(data) if isinstance(data, dict) else type(data).__name__}")
            raise TransportFailure(
                "envelope",
                "Gemini API response has no candidates[0].content.parts[0].text",
                detail=response.text[:500],
            )

        usage = data.get("usageMetadata", {})
        logger.info(
            f"[GEMINI] Response in {duration_ms:.0f}ms: "
            f"prompt_tokens={usage.get('promptTokenCount', 0)}, "
            f"output_tokens={usage.get('candidatesTokenCount', 0)}"
        )
        return text

    @staticmethod
    def _extract_text(data: Any) -> Optional[str]:
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        return text if isinstance(text, str) else None

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"[GEMINI] Attempt {retry_state.attempt_number}/{self.retry_count + 1} failed "
            f"({exc!r}); retrying in {self.retry_backoff_seconds}s"
        )

    async def close(self) -> None:
        await self.client.aclose()
