# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────
# Wire names are camelCase (repoName, commitSha, lineNumber) to match the
# web client; Python attributes stay snake_case via aliases.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

COMMIT_SHA_PATTERN = r"^[0-9a-f]{40}$"
# GitHub logins: alphanumerics and single hyphens, no leading/trailing hyphen.
OWNER_PATTERN = r"^[A-Za-z0-9](?:-?[A-Za-z0-9])*$"
REPO_NAME_PATTERN = r"^[A-Za-z0-9._-]{1,100}$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GenerateRequest(_CamelModel):
    """Incoming request: which commit to turn into drafts."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    repo_name: str = Field(..., alias="repoName", pattern=REPO_NAME_PATTERN)
    owner: str = Field(..., max_length=39, pattern=OWNER_PATTERN)
    commit_sha: str = Field(..., alias="commitSha", pattern=COMMIT_SHA_PATTERN)

    @field_validator("repo_name", "owner", mode="before")
    @classmethod
    def strip_whitespace(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("repo_name")
    @classmethod
    def not_dot_path(cls, v: str) -> str:
        if v in {".", ".."}:
            raise ValueError("Repository name cannot be '.' or '..'")
        return v


# ── Diff model ───────────────────────────────────────────────────────────────


class DiffLineType(StrEnum):
    add = "add"
    delete = "del"
    equal = "eq"


class DiffLine(_CamelModel):
    type: DiffLineType
    content: str
    line_number: int = Field(..., alias="lineNumber", ge=0)


class DiffDocument(_CamelModel):
    """One file's diff as an ordered sequence of tagged lines."""

    filename: str
    lines: list[DiffLine] = Field(default_factory=list)
    patch: str = ""  # raw unified patch text, kept for prompt rendering


class CommitDiff(_CamelModel):
    """All file diffs for one commit."""

    commit_sha: str = Field(..., alias="commitSha")
    files: list[DiffDocument] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any(f.patch for f in self.files)

    def render(self) -> str:
        """Unified text used in the generation prompt."""
        return "\n\n".join(f"File: {f.filename}\n{f.patch}" for f in self.files)


# ── Drafts ───────────────────────────────────────────────────────────────────


class DraftType(StrEnum):
    """The three content variants produced per generation."""

    twitter = "twitter"  # casual short-form thread
    linkedin = "linkedin"  # professional long-form post
    blog = "blog"  # educational outline


class ContentDraft(_CamelModel):
    id: str = Field(..., min_length=1)
    type: DraftType
    tone: str = ""
    content: str = Field(..., min_length=1)


class GenerateResponse(BaseModel):
    drafts: list[ContentDraft] = Field(..., min_length=3, max_length=3)


# ── Repositories ─────────────────────────────────────────────────────────────


class Repository(_CamelModel):
    id: str
    name: str
    description: str | None = None
    stars: int = Field(0, ge=0)
    last_updated: str = Field(..., alias="lastUpdated")
    language: str = "Unknown"


# ── Errors / health ──────────────────────────────────────────────────────────


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str
    code: str
    details: dict[str, object] | None = None
    retry_after: int | None = Field(None, alias="retryAfter")


class LivenessResponse(BaseModel):
    """Liveness probe: minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe: can the instance serve /generate?"""

    status: str  # "ready" or "not_ready"
    generation_configured: bool
    environment: str
