# ─────────────────────────────────────────────────────────────────────────────
# Prompt Templates — commit diff → three marketing drafts
# ─────────────────────────────────────────────────────────────────────────────

from commitcast.schemas import CommitDiff, DraftType

# ── Per-variant instructions ─────────────────────────────────────────────────
# Order here is the order the drafts are listed in the prompt and returned.

VARIANT_INSTRUCTIONS: dict[DraftType, str] = {
    DraftType.twitter: "a Twitter thread (casual, hook-driven, short-form)",
    DraftType.linkedin: "a LinkedIn post (professional, achievement-oriented, long-form)",
    DraftType.blog: "a blog outline (educational, deep dive)",
}

DEFAULT_TONES: dict[DraftType, str] = {
    DraftType.twitter: "casual",
    DraftType.linkedin: "professional",
    DraftType.blog: "educational",
}

PREAMBLE = (
    "You are an expert developer advocate. "
    "Transform the following code diff into engaging content."
)

EMPTY_DIFF_PLACEHOLDER = "(this commit has no textual changes)"


def truncate_diff(diff_text: str, max_chars: int) -> str:
    """Cap the diff at ``max_chars``, marking how much was dropped."""
    if len(diff_text) <= max_chars:
        return diff_text
    dropped = len(diff_text) - max_chars
    return f"{diff_text[:max_chars]}\n... [diff truncated: {dropped} more characters]"


def build_prompt(diff: CommitDiff, context: str, max_diff_chars: int = 30_000) -> str:
    """Build the generation prompt for one commit.

    The prompt has four parts: the developer-advocate preamble, the human
    readable context (e.g. "Commit in demo"), the unified diff, and output
    instructions asking for exactly one draft per DraftType as a bare JSON
    array.

    Args:
        diff: The commit's file diffs.
        context: One-line description of the commit and repository.
        max_diff_chars: Upper bound on diff text included in the prompt.

    Returns:
        The complete prompt string.
    """
    diff_text = EMPTY_DIFF_PLACEHOLDER if diff.is_empty else truncate_diff(
        diff.render(), max_diff_chars
    )

    variants = "\n".join(
        f'{i}. type "{draft_type.value}": {description}'
        for i, (draft_type, description) in enumerate(VARIANT_INSTRUCTIONS.items(), start=1)
    )

    return (
        f"{PREAMBLE}\n\n"
        f"CONTEXT:\n{context}\n\n"
        f"CODE DIFF:\n{diff_text}\n\n"
        "OUTPUT INSTRUCTIONS:\n"
        f"Generate exactly {len(VARIANT_INSTRUCTIONS)} distinct pieces of content:\n"
        f"{variants}\n\n"
        "Return strictly a JSON array of objects with keys: id, type, content, tone.\n"
        "Use each type exactly once. Do not include markdown formatting like ```json."
    )
