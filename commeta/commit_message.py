"""
Commit message synthesis.

Pure and deterministic: the same diff and instruction always give the same
conventional-commit style message, "<type>: <description>".
"""

import re
from typing import Callable, List, Optional, Sequence

MAX_DESCRIPTION_LENGTH = 50
DEFAULT_DESCRIPTION = "update code"

MANIFEST_NAMES = {
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "pyproject.toml",
    "poetry.lock",
    "go.mod",
    "go.sum",
    "cargo.toml",
    "cargo.lock",
}
MANIFEST_PREFIXES = ("requirements", "pipfile", "gemfile", "composer.")

STYLE_SUFFIXES = (".css", ".scss", ".sass", ".less", ".styl")
CONFIG_SUFFIXES = (".ini", ".cfg", ".toml", ".yaml", ".yml")

# Type inferred from the instruction, first match wins
INSTRUCTION_KEYWORDS = (
    (("fix", "bug"), "fix"),
    (("style", "ui"), "style"),
    (("refactor", "cleanup", "clean up"), "refactor"),
    (("test",), "test"),
    (("doc",), "docs"),
    (("config",), "chore"),
)

TYPE_VERBS = {
    "feat": "add",
    "fix": "fix",
    "style": "update",
    "refactor": "refactor",
    "test": "update",
    "docs": "update",
    "chore": "update",
}

IMPERATIVE_VERBS = {
    "add", "fix", "update", "remove", "delete", "refactor", "implement",
    "create", "change", "improve", "rename", "move", "make", "clean",
    "replace", "rewrite", "simplify", "bump", "upgrade", "document",
    "support", "handle", "use", "set", "enable", "disable", "allow", "show",
    "hide", "extract", "introduce", "optimize", "correct", "adjust", "test",
}

FILLER_PREFIXES = ("please ", "can you ", "could you ", "the ", "a ", "an ")

_DIFF_HEADER = re.compile(r"^diff --git a/(\S+) b/(\S+)", re.MULTILINE)
_FILE_MARKER = re.compile(r"^(?:\+\+\+|---) (?:[ab]/)?(\S+)", re.MULTILINE)


# -----------------------------------------------------------------------------
# Path Categories
# -----------------------------------------------------------------------------
def changed_paths(diff: str) -> List[str]:
    """Paths named by the diff headers, in order, without duplicates."""
    found = [b for _, b in _DIFF_HEADER.findall(diff or "")]
    if not found:
        found = [p for p in _FILE_MARKER.findall(diff or "") if p != "/dev/null"]
    seen = []
    for path in found:
        if path not in seen:
            seen.append(path)
    return seen


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1].lower()


def is_manifest(path: str) -> bool:
    name = _basename(path)
    return name in MANIFEST_NAMES or name.startswith(MANIFEST_PREFIXES)


def is_docs(path: str) -> bool:
    lowered = path.lower()
    name = _basename(path)
    return (
        lowered.endswith((".md", ".rst"))
        or name.startswith("readme")
        or lowered.startswith("docs/")
        or "/docs/" in lowered
    )


def is_test(path: str) -> bool:
    lowered = path.lower()
    return "test" in lowered or "spec" in lowered


def is_style(path: str) -> bool:
    return path.lower().endswith(STYLE_SUFFIXES)


def is_config(path: str) -> bool:
    lowered = path.lower()
    name = _basename(path)
    return (
        name.startswith(".env")
        or "config" in lowered
        or "settings" in lowered
        or lowered.endswith(CONFIG_SUFFIXES)
    )


PATH_CATEGORIES = (
    (is_docs, "docs"),
    (is_test, "test"),
    (is_style, "style"),
    (is_config, "chore"),
)


def _all_match(paths: Sequence[str], predicate: Callable[[str], bool]) -> bool:
    return bool(paths) and all(predicate(p) for p in paths)


# -----------------------------------------------------------------------------
# Synthesis
# -----------------------------------------------------------------------------
def infer_type_from_instruction(instruction: str) -> str:
    lowered = (instruction or "").lower()
    for keywords, commit_type in INSTRUCTION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return commit_type
    return "feat"


def describe_instruction(instruction: str, commit_type: str) -> str:
    text = " ".join((instruction or "").lower().split())
    stripped = True
    while stripped:
        stripped = False
        for prefix in FILLER_PREFIXES:
            if text.startswith(prefix):
                text = text[len(prefix):].lstrip()
                stripped = True
    text = text.rstrip(" .!?")
    if not text:
        return DEFAULT_DESCRIPTION

    first_word = text.split(" ", 1)[0]
    if first_word not in IMPERATIVE_VERBS:
        text = f"{TYPE_VERBS.get(commit_type, 'update')} {text}"

    text = text[:MAX_DESCRIPTION_LENGTH].rstrip()
    return text.rstrip(".").rstrip() or DEFAULT_DESCRIPTION


def synthesize_commit_message(diff: Optional[str], instruction: Optional[str]) -> str:
    """Build "<type>: <description>" from a staged diff and the user's instruction."""
    paths = changed_paths(diff or "")
    if any(is_manifest(p) for p in paths):
        return "chore: update dependencies"

    commit_type = None
    for predicate, category in PATH_CATEGORIES:
        if _all_match(paths, predicate):
            commit_type = category
            break
    if commit_type is None:
        commit_type = infer_type_from_instruction(instruction or "")

    return f"{commit_type}: {describe_instruction(instruction or '', commit_type)}"
