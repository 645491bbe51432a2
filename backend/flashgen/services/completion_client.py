"""
Structured-output completion client for OpenRouter-compatible chat APIs.

One POST per attempt to {base_url}/chat/completions with a strict
json_schema response_format. Failures are classified by HTTP status:

  401       -> AuthError          (not retried)
  402       -> PaymentError       (not retried)
  429       -> retried with 2**attempt * backoff_base_seconds, then RateLimitExceeded
  >= 500    -> ProviderError      (not retried)
  other     -> ApiError

Usage:
    client = CompletionClient()
    payload = await client.complete(system_prompt, user_prompt, schema, MyModel)
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, TypeVar

import httpx
import pydantic

from flashgen.config import settings
from flashgen.errors import (
    ApiError,
    AuthError,
    CompletionValidationError,
    PaymentError,
    ProviderError,
    RateLimitExceeded,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=pydantic.BaseModel)


class _RateLimited(Exception):
    """Internal signal: the attempt hit a 429 and may be retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CompletionClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.model = model or settings.llm_model
        self.base_url = (base_url or settings.openrouter_base_url).rstrip("/")
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self.timeout = timeout or settings.request_timeout
        self._transport = transport

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any],
        response_model: type[T] | None = None,
    ) -> T | Any:
        """
        Run one structured completion, retrying only on rate limiting.

        Returns the parsed JSON payload, validated into ``response_model``
        when one is given.
        """
        if not self.api_key:
            raise AuthError("No OpenRouter API key configured")

        payload = self._build_payload(system_prompt, user_prompt, response_schema)
        attempt = 0
        while True:
            try:
                content = await self._execute(payload)
                break
            except _RateLimited as e:
                if attempt >= self.max_retries:
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {self.max_retries} retries: {e.message}"
                    ) from e
                attempt += 1
                delay = (2**attempt) * self.backoff_base_seconds
                logger.warning(
                    "Rate limited by provider, retrying in %.1fs (attempt %d/%d)",
                    delay,
                    attempt,
                    self.max_retries,
                )
                await asyncio.sleep(delay)

        return self._parse_content(content, response_model)

    def _build_payload(
        self, system_prompt: str, user_prompt: str, response_schema: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "flashcard_generation",
                    "strict": True,
                    "schema": response_schema,
                },
            },
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
            "top_p": 1,
        }

    async def _execute(self, payload: dict[str, Any]) -> str:
        """Send one request. Returns the message content string."""
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                res = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "HTTP-Referer": settings.site_url,
                        "X-Title": settings.site_name,
                    },
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.TransportError as e:
            raise ProviderError(f"Provider unreachable: {e}") from e

        if res.is_success:
            try:
                data = res.json()
                return data["choices"][0]["message"]["content"] or ""
            except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
                raise CompletionValidationError(
                    "Provider response is missing choices[0].message.content"
                ) from e

        status = res.status_code
        message = _error_message(res)
        if status == 401:
            raise AuthError(f"Invalid API key: {message}")
        if status == 402:
            raise PaymentError(f"Insufficient provider credits: {message}")
        if status == 429:
            raise _RateLimited(message)
        if status >= 500:
            raise ProviderError(f"Provider error ({status}): {message}")
        raise ApiError(status, message)

    def _parse_content(self, content: str, response_model: type[T] | None) -> Any:
        if not content:
            raise CompletionValidationError("Empty response from provider")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("Model returned invalid JSON: %.200s", content)
            raise CompletionValidationError("Model returned invalid JSON format") from e

        if response_model is None:
            return parsed
        try:
            return response_model.model_validate(parsed)
        except pydantic.ValidationError as e:
            raise CompletionValidationError(
                f"Model output does not match the response schema: {e.error_count()} error(s)"
            ) from e


def _error_message(res: httpx.Response) -> str:
    try:
        body = res.json()
    except json.JSONDecodeError:
        return res.reason_phrase or res.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return res.reason_phrase or ""
