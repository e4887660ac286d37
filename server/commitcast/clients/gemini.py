# ─────────────────────────────────────────────────────────────────────────────
# Gemini generateContent adapter (REST, no SDK)
# ─────────────────────────────────────────────────────────────────────────────
# Transient failures (timeouts, transport errors, 5xx) are raised as
# UpstreamUnavailable so the caller may retry. Everything else (bad request,
# bad key, quota exhausted, blocked or empty output) is permanent.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
from typing import Any, NoReturn, Protocol, runtime_checkable

import httpx
import structlog

from commitcast.exceptions import (
    UpstreamError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)

logger = structlog.get_logger(__name__)

API_NAME = "generation-provider"
ENDPOINT = "generateContent"
_SUMMARY = "Failed to generate content"


class GenerationRejected(UpstreamError):
    """The provider refused the request or returned nothing usable."""


@runtime_checkable
class GenerationProvider(Protocol):
    async def generate_text(self, prompt: str) -> str:
        """Send one prompt and return the model's raw text output."""
        ...


class GeminiClient:
    """Calls ``models/{model}:generateContent`` with an API key header."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_key: str,
        model: str = "gemini-1.5-pro",
        timeout_seconds: float = 60.0,
        temperature: float = 0.7,
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def generate_text(self, prompt: str) -> str:
        path = f"/models/{self._model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "responseMimeType": "application/json",
            },
        }
        try:
            response = await asyncio.wait_for(
                self._http.post(path, json=payload, headers={"x-goog-api-key": self._api_key}),
                timeout=self._timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamUnavailable(
                _SUMMARY, API_NAME, ENDPOINT, cause=f"timed out after {self._timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(
                _SUMMARY, API_NAME, ENDPOINT, cause=str(exc) or type(exc).__name__
            ) from exc

        status = response.status_code
        if status >= 500:
            raise UpstreamUnavailable(
                _SUMMARY, API_NAME, ENDPOINT, cause=_error_message(response), status=status
            )
        if status == 429:
            raise UpstreamRateLimited(
                _SUMMARY, API_NAME, ENDPOINT, cause=_error_message(response), status=status
            )
        if status >= 400:
            raise GenerationRejected(
                _SUMMARY, API_NAME, ENDPOINT, cause=_error_message(response), status=status
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationRejected(
                _SUMMARY, API_NAME, ENDPOINT, cause="response was not valid JSON", status=status
            ) from exc
        return extract_text(body)


def extract_text(body: Any) -> str:
    """Concatenate the text parts of the first candidate.

    Raises:
        GenerationRejected: the prompt was blocked, no candidate carried text,
            or the body does not have the generateContent shape.
    """
    if not isinstance(body, dict):
        _reject_shape()

    feedback = body.get("promptFeedback") or {}
    if not isinstance(feedback, dict):
        _reject_shape()
    if feedback.get("blockReason"):
        raise GenerationRejected(
            _SUMMARY, API_NAME, ENDPOINT, cause=f"prompt blocked: {feedback['blockReason']}"
        )

    candidates = body.get("candidates") or []
    if not isinstance(candidates, list):
        _reject_shape()
    if not candidates:
        raise GenerationRejected(_SUMMARY, API_NAME, ENDPOINT, cause="no candidates returned")

    first = candidates[0] or {}
    if not isinstance(first, dict):
        _reject_shape()
    content = first.get("content") or {}
    if not isinstance(content, dict):
        _reject_shape()
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        _reject_shape()

    text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
    if not text.strip():
        reason = first.get("finishReason", "unknown")
        raise GenerationRejected(
            _SUMMARY, API_NAME, ENDPOINT, cause=f"empty candidate (finishReason={reason})"
        )
    return text


def _reject_shape() -> NoReturn:
    raise GenerationRejected(_SUMMARY, API_NAME, ENDPOINT, cause="unexpected payload shape")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])[:300]
    return response.reason_phrase
