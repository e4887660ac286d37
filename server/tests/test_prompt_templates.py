# ─────────────────────────────────────────────────────────────────────────────
# Tests — Prompt Templates
# ─────────────────────────────────────────────────────────────────────────────

from commitcast.schemas import CommitDiff, DiffDocument, DraftType
from commitcast.services.prompt_templates import (
    EMPTY_DIFF_PLACEHOLDER,
    VARIANT_INSTRUCTIONS,
    build_prompt,
    truncate_diff,
)
from conftest import sample_diff


class TestBuildPrompt:
    """Tests for build_prompt()."""

    def test_contains_context_and_diff(self):
        result = build_prompt(sample_diff(), "Commit in demo")
        assert "CONTEXT:\nCommit in demo" in result
        assert "CODE DIFF:\nFile: upload.py" in result
        assert "+retries = 3" in result

    def test_sections_in_order(self):
        result = build_prompt(sample_diff(), "Commit in demo")
        assert result.index("CONTEXT:") < result.index("CODE DIFF:") < result.index(
            "OUTPUT INSTRUCTIONS:"
        )

    def test_asks_for_every_variant(self):
        result = build_prompt(sample_diff(), "Commit in demo")
        for draft_type in DraftType:
            assert f'type "{draft_type.value}"' in result
        assert "exactly 3" in result
        assert "id, type, content, tone" in result

    def test_forbids_markdown_fences(self):
        assert "Do not include markdown formatting" in build_prompt(sample_diff(), "x")

    def test_empty_diff_placeholder(self):
        diff = CommitDiff(commit_sha="a" * 40, files=[DiffDocument(filename="logo.png")])
        assert EMPTY_DIFF_PLACEHOLDER in build_prompt(diff, "Commit in demo")

    def test_large_diff_is_truncated(self):
        patch = "@@ -1 +1 @@\n" + "+x\n" * 5_000
        diff = CommitDiff(commit_sha="a" * 40, files=[DiffDocument(filename="big.txt", patch=patch)])
        result = build_prompt(diff, "Commit in demo", max_diff_chars=1_000)
        assert "[diff truncated:" in result
        assert len(result) < 3_000

    def test_every_draft_type_has_instructions(self):
        assert set(VARIANT_INSTRUCTIONS) == set(DraftType)


class TestTruncateDiff:
    def test_short_text_unchanged(self):
        assert truncate_diff("abc", 10) == "abc"

    def test_exact_length_unchanged(self):
        assert truncate_diff("abcde", 5) == "abcde"

    def test_reports_dropped_characters(self):
        assert truncate_diff("abcdefghij", 4) == "abcd\n... [diff truncated: 6 more characters]"
