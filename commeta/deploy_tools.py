"""
Deployment CLI (vercel) wrapper.

Covers production and preview deploys, deployment listing and logs, token
checks, and writing a minimal vercel.json for projects that lack one.
"""

import json
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from . import process_runner
from .credential_store import validate_token
from .process_runner import KeepaliveCallback, ToolOutcome, truncate

logger = logging.getLogger("deploy_tools")

VERCEL_URL_PATTERN = re.compile(r"https://[^\s]+\.vercel\.app")
BUILD_TIME_PATTERN = re.compile(r"\[(\d+)ms\]")
VERCEL_TOKEN_MIN_LENGTH = 20
LOG_LIMIT = 50

STATE_LABELS = {
    "BUILDING": ("🟡", "🔨", "Building"),
    "QUEUED": ("🟠", "⏳", "Queued"),
    "FAILED": ("🔴", "❌", "Failed"),
    "ERROR": ("🔴", "❌", "Failed"),
    "READY": ("🟢", "✅", "Live"),
    "COMPLETED": ("🟢", "✅", "Live"),
}


@dataclass(frozen=True)
class DeploymentEntry:
    url: str
    age: str
    state: Optional[str] = None


def parse_deployments(output: str) -> List[DeploymentEntry]:
    """Parse `vercel ls` output: header skipped, url is column 2, age the last column."""
    lines = [line for line in output.splitlines() if line.strip()]
    entries = []
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 2:
            continue
        entries.append(DeploymentEntry(
            url=f"https://{parts[1]}",
            age=parts[-1],
            state=parts[2] if len(parts) > 3 else None,
        ))
    return entries


def extract_deployment_url(output: str) -> Optional[str]:
    """The last vercel.app URL printed is the canonical one."""
    matches = VERCEL_URL_PATTERN.findall(output or "")
    return matches[-1] if matches else None


def validate_vercel_token(token: Optional[str]) -> bool:
    return validate_token(token, min_length=VERCEL_TOKEN_MIN_LENGTH)


# -----------------------------------------------------------------------------
# Project Detection
# -----------------------------------------------------------------------------
def detect_project_type(project_path: str) -> Optional[str]:
    package_json = Path(project_path) / "package.json"
    if not package_json.exists():
        return None
    try:
        package = json.loads(package_json.read_text())
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to parse package.json in {project_path}: {e}")
        return None
    if not isinstance(package, dict):
        return None

    deps: Dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        if isinstance(package.get(key), dict):
            deps.update(package[key])

    if "next" in deps:
        return "Next.js"
    if "react" in deps:
        return "React"
    if "vue" in deps or "@vue/cli-service" in deps:
        return "Vue.js"
    if "angular" in deps or "@angular/core" in deps:
        return "Angular"
    if "svelte" in deps:
        return "Svelte"
    if "gatsby" in deps:
        return "Gatsby"
    if "nuxt" in deps:
        return "Nuxt.js"
    if "express" in deps:
        return "Express.js"
    return "Node.js"


def build_vercel_config(project_type: str) -> Dict[str, Any]:
    config: Dict[str, Any] = {"version": 2}
    if project_type == "Next.js":
        return config
    if project_type == "React":
        config["builds"] = [{"src": "package.json", "use": "@vercel/static-build", "config": {"distDir": "build"}}]
    elif project_type == "Vue.js":
        config["builds"] = [{"src": "package.json", "use": "@vercel/static-build", "config": {"distDir": "dist"}}]
    elif project_type == "Express.js":
        config["functions"] = {"api/*.js": {"runtime": "nodejs18.x"}}
    else:
        config["builds"] = [{"src": "package.json", "use": "@vercel/static-build"}]
    return config


def ensure_vercel_json(project_path: str) -> Optional[str]:
    """Write vercel.json when missing. Returns the detected type if a file was written."""
    target = Path(project_path) / "vercel.json"
    if target.exists():
        return None
    project_type = detect_project_type(project_path)
    if project_type is None or project_type == "Next.js":
        return None
    try:
        target.write_text(json.dumps(build_vercel_config(project_type), indent=2))
    except OSError as e:
        logger.error(f"Failed to write vercel.json in {project_path}: {e}")
        return None
    logger.info(f"Generated vercel.json for {project_type} project at {project_path}")
    return project_type


# -----------------------------------------------------------------------------
# Vercel CLI
# -----------------------------------------------------------------------------
class DeployTool:
    def __init__(self, executable: str = "vercel", timeout: float = 300, keepalive_interval: float = 30):
        self.executable = executable
        self.timeout = timeout
        self.keepalive_interval = keepalive_interval

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    @staticmethod
    def is_deployed(project_path: str) -> bool:
        """A `.vercel/` link directory means the project was deployed before."""
        try:
            return (Path(project_path) / ".vercel").is_dir()
        except OSError as e:
            logger.warning(f"Deployed check failed for {project_path}: {e}")
            return False

    @staticmethod
    def _token_args(token: Optional[str]) -> List[str]:
        return ["--token", token] if token else []

    async def deploy(
        self,
        project_path: str,
        production: bool = True,
        token: Optional[str] = None,
        on_keepalive: Optional[KeepaliveCallback] = None,
    ) -> ToolOutcome:
        generated = ensure_vercel_json(project_path)
        args = (["--prod"] if production else []) + ["--yes"] + self._token_args(token)
        secrets = [token] if token else []
        result = await process_runner.run(
            self.executable,
            args,
            cwd=project_path,
            timeout=self.timeout,
            secrets=secrets,
            on_keepalive=on_keepalive,
            keepalive_interval=self.keepalive_interval,
        )

        if not result.ok:
            outcome = process_runner.to_outcome(
                result,
                "Deployment",
                secrets=secrets,
                timeout_hint="It may still finish, use /vercel-status to check instead of deploying again.",
            )
            inspect_url = extract_deployment_url(result.stderr)
            if inspect_url:
                outcome.url = inspect_url
                outcome.message = truncate(f"{outcome.message}\n\nInspect: {inspect_url}")
            return outcome

        url = extract_deployment_url(result.stdout)
        kind = "Production" if production else "Preview"
        lines = [f"✅ {kind} deployment successful!"]
        if url:
            lines.append(f"🌐 {url}")
        build_time = BUILD_TIME_PATTERN.search(result.stdout)
        if build_time:
            lines.append(f"⏱️ Built in {round(int(build_time.group(1)) / 1000)}s")
        if generated:
            lines.append(f"Generated vercel.json for a {generated} project.")
        outcome = process_runner.to_outcome(result, "Deployment", "\n".join(lines), secrets=secrets)
        outcome.url = url
        logger.info(f"Deployment of {project_path} succeeded: {url}")
        return outcome

    async def list_deployments(self, project_path: str, token: Optional[str] = None) -> Tuple[ToolOutcome, List[DeploymentEntry]]:
        secrets = [token] if token else []
        result = await process_runner.run(
            self.executable,
            ["ls", *self._token_args(token)],
            cwd=project_path,
            timeout=self.timeout,
            secrets=secrets,
        )
        outcome = process_runner.to_outcome(result, "vercel ls", secrets=secrets)
        if not outcome.success:
            return outcome, []

        entries = parse_deployments(result.stdout)
        outcome.message = render_status(entries)
        return outcome, entries

    async def logs(self, project_path: str, token: Optional[str] = None, limit: int = LOG_LIMIT) -> ToolOutcome:
        secrets = [token] if token else []
        result = await process_runner.run(
            self.executable,
            ["logs", f"--limit={limit}", *self._token_args(token)],
            cwd=project_path,
            timeout=self.timeout,
            secrets=secrets,
        )
        outcome = process_runner.to_outcome(result, "vercel logs", secrets=secrets)
        if outcome.success:
            outcome.message = truncate(f"📜 Recent Deployment Logs:\n\n{outcome.message or '(empty)'}")
        return outcome

    async def verify_token(self, token: str) -> Tuple[bool, str]:
        """Format check first, then a live `vercel whoami`."""
        if not validate_vercel_token(token):
            return False, "Token format appears invalid. Tokens should be 20+ characters with no spaces."
        result = await process_runner.run(
            self.executable,
            ["whoami", *self._token_args(token)],
            timeout=60,
            secrets=[token],
        )
        if result.ok:
            return True, f"Token is valid! Authenticated as: {result.stdout.strip() or 'unknown'}"
        outcome = process_runner.to_outcome(result, "vercel whoami", secrets=[token])
        if outcome.failure_kind == process_runner.FailureKind.AUTHENTICATION:
            return False, "Token is invalid or expired. Please create a new token."
        return False, f"Token test failed: {outcome.message}"


def render_status(entries: List[DeploymentEntry]) -> str:
    if not entries:
        return "📝 No deployments found for this project.\n\nUse /deploy to create your first deployment!"
    latest = entries[0]
    state = (latest.state or "READY").upper()
    color, icon, label = STATE_LABELS.get(state, ("⚪", "❓", latest.state or state))
    lines = [
        "📊 Deployment Status",
        "",
        f"{color} Status: {icon} {label}",
        f"🌐 URL: {latest.url}",
        f"⏰ Updated: {latest.age}",
        f"📈 Total: {len(entries)} deployments",
    ]
    if state == "BUILDING":
        lines.append("\n💡 Still building... check back in a few minutes")
    elif state in ("FAILED", "ERROR"):
        lines.append("\n💡 Use /vercel-logs to see error details")
    elif state == "QUEUED":
        lines.append("\n💡 Deployment is waiting in queue")
    return "\n".join(lines)
