"""
Code-editing agent invocations (janito).

`edit` applies a natural-language instruction to a working copy and `describe`
summarizes what a repository contains.
"""

import logging
from typing import Optional

from . import process_runner
from .process_runner import KeepaliveCallback, ToolOutcome

logger = logging.getLogger("code_agent")

DESCRIBE_FALLBACK_LENGTH = 1000


class CodeAgent:
    def __init__(self, executable: str = "janito", timeout: float = 600, keepalive_interval: float = 30):
        self.executable = executable
        self.timeout = timeout
        self.keepalive_interval = keepalive_interval

    async def edit(
        self,
        repo_path: str,
        instruction: str,
        on_keepalive: Optional[KeepaliveCallback] = None,
    ) -> ToolOutcome:
        """Run the agent with the instruction as a single argv entry."""
        logger.info(f"Running code agent on {repo_path}")
        result = await process_runner.run(
            self.executable,
            [instruction],
            cwd=repo_path,
            timeout=self.timeout,
            on_keepalive=on_keepalive,
            keepalive_interval=self.keepalive_interval,
        )
        return process_runner.to_outcome(
            result,
            self.executable,
            success_message=result.stdout.strip() or "Done",
            timeout_hint="The change may be partially applied, check /status before retrying.",
        )

    async def describe(self, repo_path: str) -> ToolOutcome:
        result = await process_runner.run(
            self.executable,
            ["describe"],
            cwd=repo_path,
            timeout=self.timeout,
        )
        outcome = process_runner.to_outcome(result, f"{self.executable} describe")
        if outcome.success and not outcome.message:
            outcome.success = False
            outcome.message = "No description produced"
        return outcome
