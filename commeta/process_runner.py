"""
External Process Orchestrator

Runs git, the code-editing agent and the deployment CLI as supervised child
processes and turns their raw results into classified outcomes.

HARD CONSTRAINTS:
- Argument vector only, never a shell
- A process that exceeds its timeout is killed and reaped
- Every message that leaves this module is redacted and truncated
- A missing executable is a result (exit 127), not an exception
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from .config import MAX_MESSAGE_LENGTH

logger = logging.getLogger("process_runner")

DEFAULT_TIMEOUT = 600
REDACTED = "***"

KeepaliveCallback = Callable[[int], Awaitable[None]]

# GitHub tokens are recognized even when the caller forgot to list them
_GITHUB_TOKEN_PATTERN = re.compile(r"gh[pous]_[A-Za-z0-9]{36}|github_pat_\w{82}")
_BASIC_AUTH_PATTERN = re.compile(r"(https?://)[^/\s:@]+(?::[^/\s@]*)?@")


class FailureKind(str, Enum):
    """Classification of a failed tool invocation, most specific first."""
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    BUILD = "build"
    MISSING_DEPENDENCY = "missing_dependency"
    GENERIC = "generic"


@dataclass
class ProcessResult:
    """Raw result of one child process."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    command: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass
class ToolOutcome:
    """User-facing result of a tool call."""
    success: bool
    message: str
    raw_output: str = ""
    failure_kind: Optional[FailureKind] = None
    url: Optional[str] = None
    tool: str = ""
    extras: dict = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Redaction & Truncation
# -----------------------------------------------------------------------------
def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace every known secret, GitHub token and URL credential with ***."""
    if not text:
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    text = _GITHUB_TOKEN_PATTERN.sub(REDACTED, text)
    text = _BASIC_AUTH_PATTERN.sub(rf"\g<1>{REDACTED}@", text)
    return text


def truncate(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    marker = "\n...(truncated)"
    return text[: limit - len(marker)] + marker


def render_command(executable: str, args: Sequence[str], secrets: Iterable[str] = ()) -> str:
    return redact(" ".join([executable, *args]), secrets)


# -----------------------------------------------------------------------------
# Process Execution
# -----------------------------------------------------------------------------
async def _keepalive_loop(interval: float, callback: KeepaliveCallback, started: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await callback(int(time.monotonic() - started))
        except Exception as e:
            logger.warning(f"Keepalive notification failed: {e}")


async def run(
    executable: str,
    args: Sequence[str],
    cwd: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    secrets: Sequence[str] = (),
    on_keepalive: Optional[KeepaliveCallback] = None,
    keepalive_interval: float = 30,
    env: Optional[dict] = None,
) -> ProcessResult:
    """
    Spawn `executable args...` and wait for it, up to `timeout` seconds.

    When `on_keepalive` is given it is awaited every `keepalive_interval`
    seconds with the elapsed time until the process ends.
    """
    command = render_command(executable, args, secrets)
    logger.info(f"Running: {command} (cwd={cwd}, timeout={timeout}s)")

    process_env = dict(os.environ)
    process_env["GIT_TERMINAL_PROMPT"] = "0"
    if env:
        process_env.update(env)

    started = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=process_env,
        )
    except FileNotFoundError:
        logger.warning(f"Executable not found: {executable}")
        return ProcessResult(
            exit_code=127,
            stderr=f"{executable}: command not found",
            command=command,
        )
    except (PermissionError, NotADirectoryError) as e:
        logger.warning(f"Failed to start {executable}: {e}")
        return ProcessResult(exit_code=126, stderr=redact(str(e), secrets), command=command)

    keepalive_task = None
    if on_keepalive is not None and keepalive_interval > 0:
        keepalive_task = asyncio.create_task(
            _keepalive_loop(keepalive_interval, on_keepalive, started)
        )

    timed_out = False
    try:
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            process.kill()
            await process.wait()
            stdout, stderr = b"", f"Timed out after {timeout}s".encode()
    finally:
        if keepalive_task is not None:
            keepalive_task.cancel()
            try:
                await keepalive_task
            except asyncio.CancelledError:
                pass

    duration = time.monotonic() - started
    exit_code = process.returncode if process.returncode is not None else -1
    result = ProcessResult(
        exit_code=exit_code,
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
        timed_out=timed_out,
        command=command,
        duration_seconds=duration,
    )
    logger.info(
        f"Finished: {command} exit_code={result.exit_code} "
        f"timed_out={timed_out} duration={duration:.1f}s"
    )
    return result


# -----------------------------------------------------------------------------
# Failure Classification
# -----------------------------------------------------------------------------
AUTH_SIGNATURES = (
    "401",
    "403",
    "not authenticated",
    "invalid token",
    "unauthorized",
    "authentication failed",
    "bad credentials",
)
MISSING_SIGNATURES = (
    "enoent",
    "not found",
    "no such file or directory",
    "command not found",
)
BOILERPLATE_PREFIXES = ("Command failed", "Vercel CLI")


def _is_build_failure(text: str) -> bool:
    lowered = text.lower()
    if "build failed" in lowered:
        return True
    return "build" in lowered and "exited with 1" in lowered


def _first_error_line(text: str) -> Optional[str]:
    for line in text.splitlines():
        if "Error:" in line and "Command failed" not in line:
            return line.strip()
    return None


def _first_meaningful_line(*texts: str) -> Optional[str]:
    for text in texts:
        for line in (text or "").splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith(BOILERPLATE_PREFIXES):
                return stripped
    return None


def classify_failure(result: ProcessResult) -> FailureKind:
    """Decide the failure kind of a non-successful result."""
    if result.timed_out:
        return FailureKind.TIMEOUT
    text = f"{result.stderr}\n{result.stdout}"
    lowered = text.lower()
    if any(signature in lowered for signature in AUTH_SIGNATURES):
        return FailureKind.AUTHENTICATION
    if _is_build_failure(text):
        return FailureKind.BUILD
    if result.exit_code == 127 or any(signature in lowered for signature in MISSING_SIGNATURES):
        return FailureKind.MISSING_DEPENDENCY
    return FailureKind.GENERIC


def failure_message(
    result: ProcessResult,
    tool: str,
    kind: FailureKind,
    timeout_hint: str = "Try again later.",
) -> str:
    """Remediation text for a classified failure. Not yet redacted."""
    if kind == FailureKind.TIMEOUT:
        return f"{tool} timed out. {timeout_hint}"
    if kind == FailureKind.AUTHENTICATION:
        return f"{tool} authentication failed. Please refresh your credential and try again."
    if kind == FailureKind.BUILD:
        detail = _first_error_line(f"{result.stderr}\n{result.stdout}")
        if detail:
            return f"Build failed: {detail}"
        return "Build failed. Check your build script and dependencies."
    if kind == FailureKind.MISSING_DEPENDENCY:
        return f"{tool} could not find a required file or dependency. Try reinstalling dependencies."
    line = _first_meaningful_line(result.stderr, result.stdout)
    return line or f"{tool} failed with exit code {result.exit_code}"


def to_outcome(
    result: ProcessResult,
    tool: str,
    success_message: str = "",
    secrets: Sequence[str] = (),
    timeout_hint: str = "Try again later.",
) -> ToolOutcome:
    """Build a redacted, truncated ToolOutcome from a ProcessResult."""
    raw_output = truncate(redact(result.combined_output, secrets))
    if result.ok:
        return ToolOutcome(
            success=True,
            message=truncate(redact(success_message or result.stdout.strip(), secrets)),
            raw_output=raw_output,
            tool=tool,
        )
    kind = classify_failure(result)
    message = failure_message(result, tool, kind, timeout_hint)
    logger.warning(f"{tool} failed ({kind.value}): {redact(message, secrets)}")
    return ToolOutcome(
        success=False,
        message=truncate(redact(message, secrets)),
        raw_output=raw_output,
        failure_kind=kind,
        tool=tool,
    )
