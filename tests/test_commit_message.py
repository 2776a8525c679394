"""
Unit Tests for Commit Message Synthesis

Test coverage for:
- Diff path categories (manifest, docs, test, style, config)
- Instruction keyword fallback
- Description normalization
"""

import pytest

from commeta.commit_message import changed_paths, describe_instruction, synthesize_commit_message


def diff_for(*paths):
    return "\n".join(
        f"diff --git a/{p} b/{p}\nindex 000..111 100644\n--- a/{p}\n+++ b/{p}\n@@ -1 +1 @@\n-old\n+new"
        for p in paths
    )


class TestChangedPaths:
    """Tests for diff parsing."""

    def test_paths_from_headers(self):
        assert changed_paths(diff_for("src/app.js", "README.md")) == ["src/app.js", "README.md"]

    def test_paths_from_file_markers(self):
        diff = "--- a/src/app.js\n+++ b/src/app.js\n@@ -1 +1 @@"
        assert changed_paths(diff) == ["src/app.js"]

    def test_empty_diff(self):
        assert changed_paths("") == []


class TestDiffCategories:
    """Tests for categories inferred from changed paths."""

    def test_manifest_only(self):
        assert synthesize_commit_message(diff_for("package.json"), "add lodash") == "chore: update dependencies"

    def test_manifest_with_code(self):
        """Any manifest in the diff wins."""
        message = synthesize_commit_message(diff_for("src/app.js", "requirements.txt"), "add caching")
        assert message == "chore: update dependencies"

    def test_docs(self):
        assert synthesize_commit_message(diff_for("README.md", "docs/setup.rst"), "explain setup").startswith("docs:")

    def test_tests(self):
        assert synthesize_commit_message(diff_for("tests/test_app.py"), "cover login").startswith("test:")

    def test_styles(self):
        assert synthesize_commit_message(diff_for("src/main.scss"), "make buttons blue").startswith("style:")

    def test_config(self):
        assert synthesize_commit_message(diff_for(".env.example"), "add api url").startswith("chore:")

    def test_mixed_paths_fall_back_to_instruction(self):
        message = synthesize_commit_message(diff_for("README.md", "src/app.js"), "fix the login bug")
        assert message.startswith("fix:")


class TestInstructionFallback:
    """Tests for keyword classification of the instruction."""

    def test_fix_with_no_diff(self):
        assert synthesize_commit_message("", "fix the login bug") == "fix: fix the login bug"

    @pytest.mark.parametrize("instruction,prefix", [
        ("solve a bug in checkout", "fix:"),
        ("improve the ui of the header", "style:"),
        ("refactor the api client", "refactor:"),
        ("cleanup unused helpers", "refactor:"),
        ("write a test for signup", "test:"),
        ("update the docs", "docs:"),
        ("change config defaults", "chore:"),
        ("add a dark mode toggle", "feat:"),
    ])
    def test_keywords(self, instruction, prefix):
        assert synthesize_commit_message(None, instruction).startswith(prefix)

    def test_deterministic(self):
        results = {synthesize_commit_message("", "add a dark mode toggle") for _ in range(5)}
        assert results == {"feat: add a dark mode toggle"}


class TestDescription:
    """Tests for description normalization."""

    def test_filler_is_stripped_and_verb_added(self):
        assert describe_instruction("Please the navbar links", "feat") == "add navbar links"

    def test_existing_verb_is_kept(self):
        assert describe_instruction("Can you update the footer", "feat") == "update the footer"

    def test_truncated_without_trailing_period(self):
        description = describe_instruction("add " + "very long words " * 10 + ".", "feat")
        assert len(description) <= 50
        assert not description.endswith(".")

    def test_empty_instruction(self):
        assert synthesize_commit_message("", "") == "feat: update code"
