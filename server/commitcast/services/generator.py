# Content generation: prompt → provider (with bounded retry) → three drafts.
# Any provider, parse, or shape failure leaves this module as ExternalAPIError.


import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from commitcast.clients.gemini import API_NAME, ENDPOINT, GenerationProvider
from commitcast.exceptions import CommitCastError, UpstreamError, UpstreamUnavailable
from commitcast.schemas import CommitDiff, ContentDraft, DraftType
from commitcast.services.prompt_templates import DEFAULT_TONES, build_prompt

logger = structlog.get_logger(__name__)

_OPENING_FENCE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\n?```$")


class DraftFormatError(ValueError):
    """The model's output is not the expected three-draft JSON array."""


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` fence wrapped around the whole payload.

    Fences inside draft content (code samples in a blog outline) are kept.
    """
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = _OPENING_FENCE.sub("", text, count=1)
    return _CLOSING_FENCE.sub("", text.rstrip(), count=1).strip()


def parse_drafts(text: str) -> list[ContentDraft]:
    """Parse model output into exactly one draft per DraftType.

    Accepts a bare JSON array or an object wrapping it under ``drafts``.
    Missing or duplicate ids are replaced so ids are unique in the batch;
    a missing tone falls back to the variant's default tone.

    Raises:
        DraftFormatError: on invalid JSON, wrong length, unknown or repeated
            types, or empty content.
    """
    try:
        data: Any = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise DraftFormatError(f"response is not valid JSON ({exc.msg})") from None

    if isinstance(data, dict) and isinstance(data.get("drafts"), list):
        data = data["drafts"]
    if not isinstance(data, list):
        raise DraftFormatError("expected a JSON array of drafts")
    if len(data) != len(DraftType):
        raise DraftFormatError(f"expected {len(DraftType)} drafts, got {len(data)}")

    by_type: dict[DraftType, dict[str, Any]] = {}
    for item in data:
        if not isinstance(item, dict):
            raise DraftFormatError("each draft must be a JSON object")
        raw_type = str(item.get("type", "")).strip().lower()
        try:
            draft_type = DraftType(raw_type)
        except ValueError:
            raise DraftFormatError(f"unknown draft type {raw_type!r}") from None
        if draft_type in by_type:
            raise DraftFormatError(f"duplicate draft type {raw_type!r}")

        content = item.get("content")
        if isinstance(content, list):  # threads sometimes come back as a list of posts
            content = "\n\n".join(str(part) for part in content)
        if not isinstance(content, str) or not content.strip():
            raise DraftFormatError(f"draft {raw_type!r} has empty content")

        by_type[draft_type] = {**item, "content": content.strip()}

    drafts: list[ContentDraft] = []
    seen_ids: set[str] = set()
    for draft_type in DraftType:
        item = by_type[draft_type]
        draft_id = str(item.get("id") or "").strip()
        if not draft_id or draft_id in seen_ids:
            draft_id = draft_type.value
            suffix = 2
            while draft_id in seen_ids:
                draft_id = f"{draft_type.value}-{suffix}"
                suffix += 1
        seen_ids.add(draft_id)
        drafts.append(
            ContentDraft(
                id=draft_id,
                type=draft_type,
                tone=str(item.get("tone") or DEFAULT_TONES[draft_type]),
                content=item["content"],
            )
        )
    return drafts


class ContentGenerator:
    """Turns a commit diff into three drafts via a GenerationProvider.

    Transient provider failures are retried ``max_retries`` times with
    exponential backoff (``backoff_seconds * 2**attempt``). Permanent
    failures and malformed output fail immediately. Output is not
    deterministic; callers must not treat generate() as idempotent.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        *,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        max_diff_chars: int = 30_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._max_retries = max(max_retries, 0)
        self._backoff = backoff_seconds
        self._max_diff_chars = max_diff_chars
        self._sleep = sleep

    async def generate(self, diff: CommitDiff, context: str) -> list[ContentDraft]:
        prompt = build_prompt(diff, context, max_diff_chars=self._max_diff_chars)
        try:
            text = await self._call_with_retry(prompt)
            drafts = parse_drafts(text)
        except UpstreamError as exc:
            raise CommitCastError.external_api(
                "Failed to generate content",
                api=API_NAME,
                endpoint=ENDPOINT,
                cause=exc.cause,
            ) from exc
        except DraftFormatError as exc:
            raise CommitCastError.external_api(
                "Failed to generate content",
                api=API_NAME,
                endpoint=ENDPOINT,
                cause=f"malformed model output: {exc}",
            ) from exc

        logger.info(
            "drafts_generated",
            commit_sha=diff.commit_sha,
            prompt_chars=len(prompt),
            drafts=[d.type.value for d in drafts],
        )
        return drafts

    async def _call_with_retry(self, prompt: str) -> str:
        attempt = 0
        while True:
            try:
                return await self._provider.generate_text(prompt)
            except UpstreamUnavailable as exc:
                if attempt >= self._max_retries:
                    raise
                delay = self._backoff * (2**attempt)
                attempt += 1
                logger.warning(
                    "generation_retry",
                    attempt=attempt,
                    max_retries=self._max_retries,
                    delay_s=delay,
                    cause=exc.cause,
                    status=exc.status,
                )
                await self._sleep(delay)
