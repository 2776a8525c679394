"""
Git operations on working copies.

Credentials never go into a remote URL or the repository config: they are
passed per invocation as an `http.extraHeader` argument, which the
orchestrator redacts from every rendered command and message.
"""

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from . import process_runner
from .process_runner import KeepaliveCallback, ProcessResult, ToolOutcome

logger = logging.getLogger("git_tools")

STATUS_PREVIEW_LIMIT = 10


@dataclass(frozen=True)
class StatusEntry:
    """One line of `git status --porcelain`."""
    code: str
    path: str

    @property
    def icon(self) -> str:
        if "M" in self.code:
            return "📝"
        if "A" in self.code:
            return "➕"
        if "D" in self.code:
            return "➖"
        return "❓"


def parse_porcelain(output: str) -> List[StatusEntry]:
    entries = []
    for line in output.splitlines():
        if not line.strip():
            continue
        entries.append(StatusEntry(code=line[:2], path=line[3:].strip()))
    return entries


def auth_header(token: str) -> str:
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode("ascii")
    return f"http.extraHeader=Authorization: Basic {basic}"


class GitTool:
    """Thin async wrapper over the git executable."""

    def __init__(self, executable: str = "git", timeout: float = 600, keepalive_interval: float = 30):
        self.executable = executable
        self.timeout = timeout
        self.keepalive_interval = keepalive_interval

    def _auth_args(self, token: Optional[str]) -> Tuple[List[str], List[str]]:
        if not token:
            return [], []
        header = auth_header(token)
        return ["-c", header], [token, header, header.split("Basic ", 1)[1]]

    async def _git(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        secrets: Sequence[str] = (),
        on_keepalive: Optional[KeepaliveCallback] = None,
    ) -> ProcessResult:
        return await process_runner.run(
            self.executable,
            list(args),
            cwd=cwd,
            timeout=self.timeout,
            secrets=secrets,
            on_keepalive=on_keepalive,
            keepalive_interval=self.keepalive_interval,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def clone(
        self,
        remote_url: str,
        target: Path,
        token: Optional[str] = None,
        on_keepalive: Optional[KeepaliveCallback] = None,
    ) -> ToolOutcome:
        auth_args, secrets = self._auth_args(token)
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        result = await self._git(
            [*auth_args, "clone", remote_url, str(target)],
            secrets=secrets,
            on_keepalive=on_keepalive,
        )
        return process_runner.to_outcome(
            result, "git clone", success_message=f"Cloned into {target}", secrets=secrets
        )

    async def status(self, repo_path: str) -> Tuple[bool, List[StatusEntry]]:
        """(ok, entries). ok is False when git itself failed."""
        result = await self._git(["status", "--porcelain"], cwd=repo_path)
        if not result.ok:
            logger.warning(f"git status failed in {repo_path}: {result.stderr.strip()}")
            return False, []
        return True, parse_porcelain(result.stdout)

    async def has_changes(self, repo_path: str) -> bool:
        """True when the tree is dirty. A failing status check counts as dirty."""
        ok, entries = await self.status(repo_path)
        if not ok:
            return True
        return bool(entries)

    async def add_all(self, repo_path: str) -> ToolOutcome:
        result = await self._git(["add", "-A"], cwd=repo_path)
        return process_runner.to_outcome(result, "git add")

    async def staged_diff(self, repo_path: str) -> str:
        result = await self._git(["diff", "--staged"], cwd=repo_path)
        if not result.ok:
            logger.warning(f"git diff --staged failed in {repo_path}")
            return ""
        return result.stdout

    async def commit(self, repo_path: str, message: str) -> ToolOutcome:
        result = await self._git(["commit", "-m", message], cwd=repo_path)
        return process_runner.to_outcome(result, "git commit", success_message=message)

    async def push(
        self,
        repo_path: str,
        token: Optional[str] = None,
        on_keepalive: Optional[KeepaliveCallback] = None,
    ) -> ToolOutcome:
        auth_args, secrets = self._auth_args(token)
        result = await self._git(
            [*auth_args, "push", "origin", "HEAD"],
            cwd=repo_path,
            secrets=secrets,
            on_keepalive=on_keepalive,
        )
        return process_runner.to_outcome(result, "git push", success_message="Pushed", secrets=secrets)
