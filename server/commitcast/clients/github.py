# ─────────────────────────────────────────────────────────────────────────────
# GitHub REST adapter — commit diffs and repository listing
# ─────────────────────────────────────────────────────────────────────────────
# Every call is bounded by a timeout and every failure is raised as an
# UpstreamError subclass; nothing GitHub-specific escapes this module.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import re
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from commitcast.exceptions import (
    UpstreamError,
    UpstreamNotFound,
    UpstreamRateLimited,
    UpstreamUnauthorized,
    UpstreamUnavailable,
)
from commitcast.schemas import CommitDiff, DiffDocument, DiffLine, DiffLineType, Repository

logger = structlog.get_logger(__name__)

API_NAME = "github"
_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")
_MAX_CAUSE_CHARS = 300


@runtime_checkable
class DiffFetcher(Protocol):
    async def fetch_diff(
        self, credential: str, owner: str, repo: str, commit_sha: str
    ) -> CommitDiff:
        """Return the diff for one commit or raise an UpstreamError."""
        ...


@runtime_checkable
class RepositorySource(Protocol):
    async def list_repositories(self, credential: str) -> list[Repository]: ...


def parse_patch(filename: str, patch: str) -> DiffDocument:
    """Split a unified patch into tagged lines.

    Added and context lines carry the new-file line number; deleted lines
    carry the old-file line number. Hunk headers reset both counters.
    """
    lines: list[DiffLine] = []
    old_no = new_no = 0
    for raw in patch.splitlines():
        header = _HUNK_HEADER.match(raw)
        if header:
            old_no, new_no = int(header[1]), int(header[2])
            continue
        if raw.startswith("\\"):  # "\ No newline at end of file"
            continue
        if raw.startswith("+"):
            lines.append(DiffLine(type=DiffLineType.add, content=raw[1:], line_number=new_no))
            new_no += 1
        elif raw.startswith("-"):
            lines.append(DiffLine(type=DiffLineType.delete, content=raw[1:], line_number=old_no))
            old_no += 1
        else:
            content = raw[1:] if raw.startswith(" ") else raw
            lines.append(DiffLine(type=DiffLineType.equal, content=content, line_number=new_no))
            old_no += 1
            new_no += 1
    return DiffDocument(filename=filename, lines=lines, patch=patch)


class GitHubClient:
    """Thin async client over the GitHub REST API (v3)."""

    def __init__(self, http: httpx.AsyncClient, *, timeout_seconds: float = 15.0) -> None:
        self._http = http
        self._timeout = timeout_seconds

    async def fetch_diff(
        self, credential: str, owner: str, repo: str, commit_sha: str
    ) -> CommitDiff:
        endpoint = f"/repos/{owner}/{repo}/commits/{commit_sha}"
        data = await self._get_json(credential, endpoint, summary="Failed to fetch commit diff")
        files = data.get("files") if isinstance(data, dict) else None
        if files is None:
            files = []
        documents = [
            parse_patch(str(f.get("filename", "")), f.get("patch") or "")
            for f in files
            if isinstance(f, dict)
        ]
        logger.info(
            "diff_fetched",
            owner=owner,
            repo=repo,
            commit_sha=commit_sha,
            files=len(documents),
        )
        return CommitDiff(commit_sha=commit_sha, files=documents)

    async def list_repositories(self, credential: str) -> list[Repository]:
        """Twenty most recently updated repositories owned by the caller."""
        summary = "Failed to fetch repositories"
        data = await self._get_json(
            credential,
            "/user/repos",
            summary=summary,
            params={"sort": "updated", "per_page": 20, "type": "owner"},
        )
        if not isinstance(data, list):
            raise UpstreamUnavailable(
                summary, API_NAME, "/user/repos", cause="unexpected payload shape"
            )
        return [
            Repository(
                id=str(item.get("id", "")),
                name=item.get("name", ""),
                description=item.get("description"),
                stars=item.get("stargazers_count") or 0,
                last_updated=str(item.get("updated_at") or "")[:10],
                language=item.get("language") or "Unknown",
            )
            for item in data
            if isinstance(item, dict)
        ]

    async def _get_json(
        self,
        credential: str,
        endpoint: str,
        *,
        summary: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {credential}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        try:
            response = await asyncio.wait_for(
                self._http.get(endpoint, headers=headers, params=params),
                timeout=self._timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamUnavailable(
                summary, API_NAME, endpoint, cause=f"timed out after {self._timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(
                summary, API_NAME, endpoint, cause=str(exc) or type(exc).__name__
            ) from exc

        _raise_for_status(response, endpoint, summary)

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(
                summary, API_NAME, endpoint, cause="response was not valid JSON", status=200
            ) from exc


def _upstream_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:_MAX_CAUSE_CHARS] or response.reason_phrase
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])[:_MAX_CAUSE_CHARS]
    return response.reason_phrase


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and (
        response.headers.get("x-ratelimit-remaining") == "0"
        or "retry-after" in response.headers
    )


def _raise_for_status(response: httpx.Response, endpoint: str, summary: str) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return

    cause = _upstream_message(response)
    logger.warning(
        "upstream_request_failed", api=API_NAME, endpoint=endpoint, status=status, cause=cause
    )
    error: UpstreamError
    if status == 401:
        error = UpstreamUnauthorized(summary, API_NAME, endpoint, cause, status=status)
    elif status in (404, 422):
        # 422 is GitHub's answer to a well-formed SHA that names no commit.
        error = UpstreamNotFound(summary, API_NAME, endpoint, cause, status=status)
    elif _is_rate_limited(response):
        error = UpstreamRateLimited(
            summary,
            API_NAME,
            endpoint,
            cause,
            status=status,
            extra={
                "reset": response.headers.get("x-ratelimit-reset"),
                "retry_after": response.headers.get("retry-after"),
            },
        )
    else:
        error = UpstreamUnavailable(summary, API_NAME, endpoint, cause, status=status)
    raise error
