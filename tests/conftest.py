"""
Pytest configuration for Commeta tests.

This module provides:
1. A Settings instance rooted in tmp_path
2. Fake subprocess objects for patching asyncio.create_subprocess_exec
3. A fully wired Router whose external tools are mocks
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from commeta.channel import CollectingChannel
from commeta.config import Settings
from commeta.credential_store import CredentialStore
from commeta.process_runner import ToolOutcome
from commeta.repo_cache import GitHubClient, RemoteRepo, RepoCache
from commeta.repo_registry import RepoRegistry
from commeta.router import Router
from commeta.session import SessionStore


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
TEST_IDENTITY = "5511999990000"
GITHUB_TOKEN = "ghp_" + "a1B2c3D4e5" * 3 + "F6g7H8"
VERCEL_TOKEN = "vercel_token_abcdefghijklmnop"


# -----------------------------------------------------------------------------
# Fake Processes
# -----------------------------------------------------------------------------
class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", delay=0.0):
        self.returncode = None
        self._final_code = returncode
        self._stdout = stdout
        self._stderr = stderr
        self._delay = delay
        self.killed = False

    async def communicate(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        self.returncode = self._final_code
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


def fake_exec(*processes, calls=None):
    """Return an async replacement for create_subprocess_exec yielding `processes` in order."""
    queue = list(processes)

    async def _exec(*args, **kwargs):
        if calls is not None:
            calls.append((args, kwargs))
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return _exec


def ok(message="", **kwargs) -> ToolOutcome:
    return ToolOutcome(success=True, message=message, **kwargs)


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        repos_dir=tmp_path / "repos",
        encryption_secret="test-secret",
        log_file=None,
        keepalive_interval=30,
    )


@pytest.fixture
def channel() -> CollectingChannel:
    return CollectingChannel()


@pytest.fixture
def credentials(settings) -> CredentialStore:
    return CredentialStore(settings.credentials_file, settings.encryption_secret)


@pytest.fixture
def registry(settings) -> RepoRegistry:
    return RepoRegistry(settings.registry_file, settings.repos_dir)


@pytest.fixture
def git_tool():
    git = MagicMock()
    git.clone = AsyncMock(return_value=ok("Cloned"))
    git.status = AsyncMock(return_value=(True, []))
    git.has_changes = AsyncMock(return_value=True)
    git.add_all = AsyncMock(return_value=ok())
    git.staged_diff = AsyncMock(return_value="")
    git.commit = AsyncMock(return_value=ok())
    git.push = AsyncMock(return_value=ok("Pushed"))
    return git


@pytest.fixture
def agent():
    code_agent = MagicMock()
    code_agent.edit = AsyncMock(return_value=ok("Updated index.html"))
    code_agent.describe = AsyncMock(return_value=ok("A static landing page."))
    return code_agent


@pytest.fixture
def deployer():
    deploy = MagicMock()
    deploy.is_available = MagicMock(return_value=True)
    deploy.is_deployed = MagicMock(return_value=False)
    deploy.deploy = AsyncMock(return_value=ok("✅ Production deployment successful!", url="https://demo.vercel.app"))
    deploy.list_deployments = AsyncMock(return_value=(ok("📊 Deployment Status"), []))
    deploy.logs = AsyncMock(return_value=ok("📜 Recent Deployment Logs:\n\nok"))
    deploy.verify_token = AsyncMock(return_value=(True, "Token is valid! Authenticated as: dev"))
    return deploy


@pytest.fixture
def ai():
    client = MagicMock()
    client.enabled = False
    client.configured = False
    client.chat = AsyncMock(return_value="AI answer")
    client.transcribe = AsyncMock(return_value="show me my repositories")
    client.analyze_intent = AsyncMock()
    client.summarize_description = AsyncMock(return_value="A landing page.")
    return client


@pytest.fixture
def github():
    client = MagicMock(spec=GitHubClient)
    client.fetch_user_repos = AsyncMock(return_value=[
        RemoteRepo(name="alpha", clone_url="https://github.com/dev/alpha.git"),
        RemoteRepo(name="alphabet", clone_url="https://github.com/dev/alphabet.git"),
        RemoteRepo(name="beta", clone_url="https://github.com/dev/beta.git", description="Backend service"),
    ])
    client.verify_token = AsyncMock(return_value=(True, "Token is valid! Authenticated as: dev"))
    return client


@pytest.fixture
def router(settings, credentials, registry, git_tool, agent, deployer, ai, github) -> Router:
    return Router(
        settings=settings,
        sessions=SessionStore(RepoCache(github)),
        credentials=credentials,
        registry=registry,
        git=git_tool,
        agent=agent,
        deployer=deployer,
        ai=ai,
        github=github,
    )
