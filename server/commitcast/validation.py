# ─────────────────────────────────────────────────────────────────────────────
# Input validation — pydantic models → one aggregated ValidationError
# ─────────────────────────────────────────────────────────────────────────────
# Pure functions: no I/O, no logging. Every failing field is reported in a
# single error so the caller can fix the whole payload in one round trip.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import json
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel

from commitcast.exceptions import CommitCastError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Human-readable messages for pattern failures, keyed by wire field name.
_PATTERN_MESSAGES: dict[str, str] = {
    "commitSha": "Commit SHA must be a 40-character lowercase hexadecimal string",
    "owner": "Owner must be a valid GitHub user or organization name",
    "repoName": "Repository name may only contain letters, digits, '.', '-' and '_' (max 100)",
}


def _field_name(loc: tuple[int | str, ...]) -> str:
    return ".".join(str(part) for part in loc) or "body"


def field_errors(exc: pydantic.ValidationError) -> list[dict[str, Any]]:
    """Flatten a pydantic error into ``[{field, rule, message}, ...]``."""
    fields: list[dict[str, Any]] = []
    for err in exc.errors(include_url=False, include_input=False):
        name = _field_name(err["loc"])
        rule = err["type"]
        message = err["msg"]
        if rule == "string_pattern_mismatch" and name in _PATTERN_MESSAGES:
            message = _PATTERN_MESSAGES[name]
        elif rule == "missing":
            message = f"{name} is required"
        fields.append({"field": name, "rule": rule, "message": message})
    return fields


def validate(schema: type[ModelT], payload: Any) -> ModelT:
    """Validate ``payload`` against ``schema``.

    Raises:
        CommitCastError: kind ValidationError, details ``{"fields": [...]}``
            listing every failing field.
    """
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise CommitCastError.validation(field_errors(exc)) from None


def parse_json_body(raw: bytes) -> Any:
    """Decode a request body, reporting bad JSON as a body-level validation failure."""
    if not raw.strip():
        raise CommitCastError.validation(
            [{"field": "body", "rule": "missing", "message": "Request body is required"}]
        )
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise CommitCastError.validation(
            [{"field": "body", "rule": "json_invalid", "message": "Request body must be valid JSON"}]
        ) from None


def validate_json(schema: type[ModelT], raw: bytes) -> ModelT:
    return validate(schema, parse_json_body(raw))
