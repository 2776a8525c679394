"""
Command Router

Turns one inbound message for an identity into exactly one action, chosen by
an ordered rule table:

1. token       - a GitHub token anywhere in the text is stored
2. phase       - a pending commit/deploy question is answered
3. grammar     - a known command verb
4. nl_clone    - "clone <name>" in free text
5. ai_fallback - everything else

HARD CONSTRAINTS:
- Handling of one message holds the identity's lock from start to finish
- A pending phase is cleared by exactly one reply
- Every handled message produces at least one reply, even on internal errors
- Secrets never appear in replies or logs
"""

import logging
import re
import shutil
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .ai_client import AIClient
from .channel import Channel
from .code_agent import DESCRIBE_FALLBACK_LENGTH, CodeAgent
from .commit_message import synthesize_commit_message
from .config import Settings
from .credential_store import CredentialKind, CredentialStore, validate_token
from .deploy_tools import DeployTool, validate_vercel_token
from .errors import (
    AuthorizationError,
    CollaboratorError,
    CommetaError,
    CredentialInvalidError,
    ExternalToolError,
    RepoNotFoundError,
    ToolTimeoutError,
    UserInputError,
)
from .git_tools import STATUS_PREVIEW_LIMIT, GitTool
from .process_runner import FailureKind, ToolOutcome, redact, truncate
from .repo_cache import GitHubAPIError, GitHubClient, RepoCache, resolve
from .repo_registry import RepoRecord, RepoRegistry
from .session import ConversationState, HistoryBuffer, Phase, SessionStore

logger = logging.getLogger("router")

GITHUB_TOKEN_PATTERN = re.compile(r"gh[pous]_[A-Za-z0-9]{36}|github_pat_\w{82}")
NL_CLONE_PATTERNS = (
    re.compile(r"(?:clone|clona|clonar)\s+\"([^\"]+)\"", re.IGNORECASE),
    re.compile(r"(?:clone|clona|clonar)\s+'([^']+)'", re.IGNORECASE),
    re.compile(r"(?:clone|clona|clonar)\s+([a-zA-Z0-9\-_.]+)", re.IGNORECASE),
)
REPO_QUESTION_PATTERN = re.compile(r"\brepo(?:s|sitor\w*)?\b", re.IGNORECASE)
YES_WORD_PATTERN = re.compile(r"\by\b", re.IGNORECASE)
# "commit" only counts as the first word; "deploy" counts anywhere
PHASE_VERB_PATTERNS = {
    "commit": re.compile(r"\s*commit\b", re.IGNORECASE),
    "deploy": re.compile(r".*deploy", re.IGNORECASE | re.DOTALL),
}

REPO_LIST_LIMIT = 20
GENERIC_ERROR = "❌ Something went wrong while handling your message. Please try again."
COLLABORATOR_APOLOGY = "Sorry, I couldn't process that right now. Please try again in a moment."


# -----------------------------------------------------------------------------
# Rule Table
# -----------------------------------------------------------------------------
@dataclass
class MessageContext:
    """Everything a handler needs for one inbound message."""
    identity: str
    text: str
    channel: Channel
    state: ConversationState
    history: HistoryBuffer
    inbound_recorded: bool = False
    replies: int = 0


Matcher = Callable[[MessageContext], Any]
Handler = Callable[[MessageContext, Any], Awaitable[None]]


@dataclass(frozen=True)
class Rule:
    name: str
    matcher: Matcher
    handler: Handler


@dataclass(frozen=True)
class Command:
    verb: str
    handler_name: str
    usage: str
    requires_github: bool = False


COMMANDS: Tuple[Command, ...] = (
    Command("help", "cmd_help", "/help"),
    Command("auth", "cmd_auth", "/auth <github_token>"),
    Command("repos", "cmd_repos", "/repos", requires_github=True),
    Command("local", "cmd_local", "/local"),
    Command("use", "cmd_use", "/use <repo-name>", requires_github=True),
    Command("clone", "cmd_clone", "/clone <url or repo-name>", requires_github=True),
    Command("vibe", "cmd_vibe", "/vibe <what to change>"),
    Command("status", "cmd_status", "/status"),
    Command("current", "cmd_current", "/current"),
    Command("deploy", "cmd_deploy", "/deploy"),
    Command("deploy-preview", "cmd_deploy_preview", "/deploy-preview"),
    Command("vercel-status", "cmd_vercel_status", "/vercel-status"),
    Command("vercel-logs", "cmd_vercel_logs", "/vercel-logs"),
    Command("vercel-token", "cmd_vercel_token", "/vercel-token <token>"),
    Command("vercel-test", "cmd_vercel_test", "/vercel-test"),
)
_COMMANDS_BY_VERB = {c.verb: c for c in COMMANDS}

VERB_ALIASES: Dict[str, str] = {
    "/help": "help",
    "/start": "help",
    "hi": "help",
    "hello": "help",
    "hola": "help",
    "/auth": "auth",
    "/repos": "repos",
    "/local": "local",
    "/use": "use",
    "/clone": "clone",
    "/vibe": "vibe",
    "/status": "status",
    "/current": "current",
    "/active": "current",
    "/deploy": "deploy",
    "/deploy-preview": "deploy-preview",
    "/deploy_preview": "deploy-preview",
    "/vercel-status": "vercel-status",
    "/vercel_status": "vercel-status",
    "/vercel-logs": "vercel-logs",
    "/vercel_logs": "vercel-logs",
    "/vercel-token": "vercel-token",
    "/vercel_token": "vercel-token",
    "/vercel-test": "vercel-test",
    "/vercel_test": "vercel-test",
}


def parse_command(text: str) -> Optional[Tuple[Command, str]]:
    """(command, argument) when the first token is a known verb."""
    stripped = text.strip()
    if not stripped:
        return None
    parts = stripped.split(None, 1)
    verb = parts[0]
    if verb.startswith("/") and "@" in verb:
        verb = verb.split("@", 1)[0]
    name = VERB_ALIASES.get(verb)
    if name is None:
        return None
    argument = parts[1].strip() if len(parts) > 1 else ""
    return _COMMANDS_BY_VERB[name], argument


def find_github_token(text: str) -> Optional[str]:
    match = GITHUB_TOKEN_PATTERN.search(text)
    return match.group(0) if match else None


def find_clone_target(text: str) -> Optional[str]:
    for pattern in NL_CLONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def is_affirmative(text: str, verb: str) -> bool:
    lowered = text.lower()
    if "yes" in lowered or YES_WORD_PATTERN.search(lowered):
        return True
    pattern = PHASE_VERB_PATTERNS.get(verb)
    return pattern is not None and pattern.match(text) is not None


def looks_like_url(value: str) -> bool:
    return "://" in value or value.startswith("git@")


# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------
class Router:
    """Per-identity conversation engine."""

    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        credentials: CredentialStore,
        registry: RepoRegistry,
        git: GitTool,
        agent: CodeAgent,
        deployer: DeployTool,
        ai: AIClient,
        github: GitHubClient,
    ):
        self.settings = settings
        self.sessions = sessions
        self.credentials = credentials
        self.registry = registry
        self.git = git
        self.agent = agent
        self.deployer = deployer
        self.ai = ai
        self.github = github
        self.rules: Tuple[Rule, ...] = (
            Rule("token", self._match_token, self._handle_token),
            Rule("phase", self._match_phase, self._handle_phase),
            Rule("grammar", self._match_grammar, self._handle_grammar),
            Rule("nl_clone", self._match_nl_clone, self._handle_nl_clone),
            Rule("ai_fallback", self._match_any, self._handle_ai_fallback),
        )

    @property
    def cache(self) -> RepoCache:
        return self.sessions.repo_cache

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def handle_text(self, identity: str, text: str, channel: Channel) -> None:
        """Handle one inbound text message. Replies go through `channel`."""
        if not self.settings.is_identity_allowed(identity):
            logger.warning(f"Ignoring message from non-allowed identity {identity}")
            return
        async with self.sessions.lock(identity):
            ctx = self._context(identity, text, channel)
            await self._guarded(ctx, self._dispatch)

    async def handle_audio(self, identity: str, audio: bytes, filename: str, channel: Channel) -> None:
        """Transcribe, echo, classify the intent, then route like text."""
        if not self.settings.is_identity_allowed(identity):
            logger.warning(f"Ignoring audio from non-allowed identity {identity}")
            return
        async with self.sessions.lock(identity):
            ctx = self._context(identity, "", channel)
            await self._guarded(ctx, lambda c: self._dispatch_audio(c, audio, filename))

    def _context(self, identity: str, text: str, channel: Channel) -> MessageContext:
        return MessageContext(
            identity=identity,
            text=text,
            channel=channel,
            state=self.sessions.state(identity),
            history=self.sessions.history(identity),
        )

    async def _guarded(self, ctx: MessageContext, action: Callable[[MessageContext], Awaitable[None]]) -> None:
        try:
            await action(ctx)
        except CommetaError as e:
            logger.info(f"Handled {type(e).__name__} for {ctx.identity}: {e.code}")
            await self._reply(ctx, render_error(e))
        except Exception:
            logger.exception(f"Unhandled error while processing message from {ctx.identity}")
            await self._reply(ctx, GENERIC_ERROR)

    async def _dispatch(self, ctx: MessageContext) -> None:
        for rule in self.rules:
            match = rule.matcher(ctx)
            if match is None or match is False:
                continue
            logger.debug(f"Rule {rule.name} matched for {ctx.identity}")
            await rule.handler(ctx, match)
            return

    async def _dispatch_audio(self, ctx: MessageContext, audio: bytes, filename: str) -> None:
        transcription = await self.ai.transcribe(audio, filename)
        ctx.text = transcription
        await self._reply(ctx, f'🎤 Got it: "{transcription}"')

        # A pending question is answered by voice exactly like by text
        if ctx.state.is_pending or find_github_token(transcription):
            await self._dispatch(ctx)
            return

        repo_names = [r.name for r in self.cache.get(ctx.identity)]
        intent = await self.ai.analyze_intent(transcription, repo_names)
        self._audit(ctx, "audio_intent", intent.intent)
        if intent.intent == "vibe":
            ctx.text = f"/vibe {intent.vibe_prompt or transcription}"
        elif intent.intent == "command" and intent.command:
            ctx.text = intent.command
        await self._dispatch(ctx)

    # -------------------------------------------------------------------------
    # Replies & audit
    # -------------------------------------------------------------------------

    async def _reply(self, ctx: MessageContext, text: str) -> None:
        secrets = self._known_secrets(ctx.identity)
        text = truncate(redact(text, secrets))
        if not ctx.inbound_recorded and ctx.text:
            ctx.history.append("user", redact(ctx.text, secrets))
            ctx.inbound_recorded = True
        ctx.history.append("assistant", text)
        ctx.replies += 1
        await ctx.channel.send_text(ctx.identity, text)

    def _known_secrets(self, identity: str) -> List[str]:
        secrets = []
        for kind in CredentialKind:
            value = self.credentials.get(identity, kind)
            if value:
                secrets.append(value)
        return secrets

    def _keepalive(self, ctx: MessageContext, label: str):
        async def notify(elapsed: int) -> None:
            await ctx.channel.send_text(ctx.identity, f"⏳ Still {label}... ({elapsed}s)")
        return notify

    def _audit(self, ctx: MessageContext, action: str, details: str = "") -> None:
        logger.info(f"ACTION: identity={ctx.identity} action={action} details={details}")

    # -------------------------------------------------------------------------
    # Rule 1: token detection
    # -------------------------------------------------------------------------

    def _match_token(self, ctx: MessageContext) -> Optional[str]:
        return find_github_token(ctx.text)

    async def _handle_token(self, ctx: MessageContext, token: str) -> None:
        self.credentials.save(ctx.identity, token, CredentialKind.GITHUB)
        self._audit(ctx, "save_github_token", f"length={len(token)}")
        await self._reply(ctx, "✅ GitHub token saved! You can now list, clone and push repositories.")

    # -------------------------------------------------------------------------
    # Rule 2: phase confirmation
    # -------------------------------------------------------------------------

    def _match_phase(self, ctx: MessageContext) -> Optional[Phase]:
        return ctx.state.phase if ctx.state.is_pending else None

    async def _handle_phase(self, ctx: MessageContext, phase: Phase) -> None:
        repo_path = ctx.state.repo_path
        instruction = ctx.state.last_instruction
        ctx.state.clear()

        if phase == Phase.AWAITING_COMMIT_CONFIRMATION:
            if not is_affirmative(ctx.text, "commit"):
                self._audit(ctx, "commit_declined")
                await self._reply(ctx, "No worries! Your changes are still there if you change your mind.")
                return
            await self._commit_and_push(ctx, repo_path, instruction or "")
            return

        if not is_affirmative(ctx.text, "deploy"):
            self._audit(ctx, "deploy_declined")
            await self._reply(ctx, "Okay, skipping deployment. Use /deploy whenever you're ready.")
            return
        self._audit(ctx, "deploy_confirmed", repo_path or "")
        await self._deploy(ctx, repo_path, production=True)

    async def _commit_and_push(self, ctx: MessageContext, repo_path: Optional[str], instruction: str) -> None:
        if not repo_path:
            raise UserInputError("No repository to commit. Use /vibe to make a change first.")

        self._raise_for(await self.git.add_all(repo_path))
        diff = await self.git.staged_diff(repo_path)
        message = synthesize_commit_message(diff, instruction)
        self._audit(ctx, "commit", message)
        self._raise_for(await self.git.commit(repo_path, message))

        token = self.credentials.get(ctx.identity, CredentialKind.GITHUB)
        if not token:
            await self._reply(
                ctx, f'Committed locally: "{message}"\n\nSet up a GitHub token with /auth to push!'
            )
            return

        pushed = await self.git.push(repo_path, token, on_keepalive=self._keepalive(ctx, "pushing"))
        if not pushed.success:
            await self._reply(ctx, f'Committed: "{message}"\n\nBut couldn\'t push - {pushed.message}')
            return

        await self._reply(ctx, f'Sweet! Committed and pushed: "{message}"')
        if self.deployer.is_available() and not self.deployer.is_deployed(repo_path):
            ctx.state.await_deploy(repo_path)
            await self._reply(ctx, "🚀 This project isn't on Vercel yet. Deploy it now? (yes/no)")

    # -------------------------------------------------------------------------
    # Rule 3: command grammar
    # -------------------------------------------------------------------------

    def _match_grammar(self, ctx: MessageContext) -> Optional[Tuple[Command, str]]:
        return parse_command(ctx.text)

    async def _handle_grammar(self, ctx: MessageContext, parsed: Tuple[Command, str]) -> None:
        command, argument = parsed
        self._audit(ctx, command.verb, "with argument" if argument else "")
        if command.requires_github:
            self._require_github(ctx)
        handler = getattr(self, command.handler_name)
        await handler(ctx, argument)

    def _require_github(self, ctx: MessageContext) -> str:
        token = self.credentials.get(ctx.identity, CredentialKind.GITHUB)
        if not token:
            raise AuthorizationError(
                "🔐 You need a GitHub token first.\n\n"
                "Create one at https://github.com/settings/tokens (repo scope) "
                "and send it with /auth <token>, or just paste it here."
            )
        return token

    def _require_active(self, ctx: MessageContext) -> RepoRecord:
        record = self.registry.get_active(ctx.identity)
        if record is None:
            raise UserInputError("❌ No active repository. Use /local to list or /clone to add one.")
        return record

    async def cmd_help(self, ctx: MessageContext, argument: str) -> None:
        await self._reply(ctx, render_help(self.settings.bot_name))

    async def cmd_auth(self, ctx: MessageContext, argument: str) -> None:
        if not argument:
            raise UserInputError("Usage: /auth <github_token>")
        token = argument.split()[0]
        if not validate_token(token):
            raise CredentialInvalidError("Token format appears invalid.", CredentialKind.GITHUB.value)
        valid, message = await self.github.verify_token(token)
        if not valid:
            raise CredentialInvalidError(f"❌ {message}", CredentialKind.GITHUB.value)
        self.credentials.save(ctx.identity, token, CredentialKind.GITHUB)
        await self._reply(ctx, f"✅ GitHub token saved! {message}")

    async def cmd_repos(self, ctx: MessageContext, argument: str) -> None:
        token = self._require_github(ctx)
        try:
            repos = await self.cache.refresh(ctx.identity, token)
        except GitHubAPIError as e:
            await self._reply(ctx, f"❌ {e.message}")
            return
        if not repos:
            await self._reply(ctx, "No repositories found for this token.")
            return

        active = self.registry.get_active(ctx.identity)
        lines = [f"📚 Your GitHub repositories ({len(repos)}):", ""]
        for index, repo in enumerate(repos[:REPO_LIST_LIMIT], start=1):
            local = self.registry.find_by_url(ctx.identity, repo.clone_url) if repo.clone_url else None
            markers = ""
            if repo.private:
                markers += " 🔒"
            if local is not None:
                markers += " 📁"
                if active is not None and active.id == local.id:
                    markers += " ⭐"
            line = f"{index}. {repo.name}{markers}"
            if repo.description:
                line += f" - {repo.description[:60]}"
            lines.append(line)
        if len(repos) > REPO_LIST_LIMIT:
            lines.append(f"... and {len(repos) - REPO_LIST_LIMIT} more")
        lines.append("")
        lines.append('📁 = cloned, ⭐ = active. Say "clone <name>" to clone one.')
        await self._reply(ctx, "\n".join(lines))

    async def cmd_local(self, ctx: MessageContext, argument: str) -> None:
        records = self.registry.list(ctx.identity)
        if not records:
            await self._reply(ctx, '📭 No repositories cloned yet.\n\nUse "/clone <url>" or "clone repo-name" to get started.')
            return
        active = self.registry.get_active(ctx.identity)
        lines = ["📁 Local repositories:", ""]
        for record in records:
            marker = "⭐" if active is not None and active.id == record.id else "•"
            lines.append(f"{marker} {record.name} (#{record.id})")
        lines.append("")
        lines.append('Use "/use <name>" to switch.')
        await self._reply(ctx, "\n".join(lines))

    async def cmd_use(self, ctx: MessageContext, argument: str) -> None:
        records = self.registry.list(ctx.identity)
        names = [r.name for r in records]
        if not argument:
            if not names:
                raise UserInputError("Usage: /use <repo-name>\n\nNo repositories cloned yet.")
            raise UserInputError("Usage: /use <repo-name>\n\nAvailable: " + ", ".join(names))
        record = resolve(records, argument, lambda r: r.name)
        if record is None:
            raise RepoNotFoundError(argument, names)
        self.registry.set_active(ctx.identity, record.id)
        await self._reply(ctx, f"⭐ Switched to {record.name}")

    async def cmd_clone(self, ctx: MessageContext, argument: str) -> None:
        if not argument:
            raise UserInputError("Usage: /clone <url or repo-name>")
        target = argument.split()[0]
        if looks_like_url(target):
            await self._clone(ctx, target, None)
            return
        await self._clone_by_name(ctx, target)

    async def cmd_vibe(self, ctx: MessageContext, argument: str) -> None:
        if not argument:
            raise UserInputError("Usage: /vibe <what to change>\n\nExample: /vibe add a dark mode toggle")
        if argument.startswith("-"):
            raise UserInputError(
                "❌ Instructions can't start with \"-\". Describe the change in words, "
                "e.g. /vibe add a dark mode toggle"
            )
        record = self._require_active(ctx)
        await self._reply(ctx, f"🎨 Working on {record.name}: {argument}")

        outcome = await self.agent.edit(
            record.local_path, argument, on_keepalive=self._keepalive(ctx, "working on your change")
        )
        self._raise_for(outcome)

        if not await self.git.has_changes(record.local_path):
            await self._reply(ctx, "✅ Done, but no files changed. Nothing to commit.")
            return

        ctx.state.await_commit(record.local_path, argument)
        summary = outcome.message if outcome.message and outcome.message != "Done" else "Changes applied."
        await self._reply(ctx, f"{summary}\n\nDone! Want me to commit these changes? (yes/no)")

    async def cmd_status(self, ctx: MessageContext, argument: str) -> None:
        record = self._require_active(ctx)
        ok, entries = await self.git.status(record.local_path)
        lines = [f"📁 Active repository: {record.name}", ""]
        if not ok:
            lines.append("❌ Error getting git status")
        elif not entries:
            lines.append("✅ Working directory clean")
        else:
            lines.append(f"📝 Changes ({len(entries)}):")
            for entry in entries[:STATUS_PREVIEW_LIMIT]:
                lines.append(f"{entry.icon} {entry.path}")
            if len(entries) > STATUS_PREVIEW_LIMIT:
                lines.append(f"... and {len(entries) - STATUS_PREVIEW_LIMIT} more files")
        await self._reply(ctx, "\n".join(lines))

    async def cmd_current(self, ctx: MessageContext, argument: str) -> None:
        record = self.registry.get_active(ctx.identity)
        if record is not None:
            await self._reply(
                ctx,
                f"⭐ Current active repository:\n\n{record.name}\n{record.remote_url}\n\n"
                'Use "/status" for more details or "/use <name>" to switch.',
            )
        elif self.registry.list(ctx.identity):
            await self._reply(ctx, '❌ No active repository set.\n\nUse "/use <repo-name>" to select one.')
        else:
            await self._reply(ctx, '❌ No repositories cloned.\n\nUse "/clone <url>" or "clone repo-name" to get started.')

    async def cmd_deploy(self, ctx: MessageContext, argument: str) -> None:
        record = self._require_active(ctx)
        await self._deploy(ctx, record.local_path, production=True)

    async def cmd_deploy_preview(self, ctx: MessageContext, argument: str) -> None:
        record = self._require_active(ctx)
        await self._deploy(ctx, record.local_path, production=False)

    async def cmd_vercel_status(self, ctx: MessageContext, argument: str) -> None:
        record = self._require_active(ctx)
        token = self.credentials.get(ctx.identity, CredentialKind.VERCEL)
        outcome, _ = await self.deployer.list_deployments(record.local_path, token)
        self._raise_for(outcome)
        await self._reply(ctx, outcome.message)

    async def cmd_vercel_logs(self, ctx: MessageContext, argument: str) -> None:
        record = self._require_active(ctx)
        token = self.credentials.get(ctx.identity, CredentialKind.VERCEL)
        outcome = await self.deployer.logs(record.local_path, token)
        self._raise_for(outcome)
        await self._reply(ctx, outcome.message)

    async def cmd_vercel_token(self, ctx: MessageContext, argument: str) -> None:
        if not argument:
            raise UserInputError(
                "Usage: /vercel-token <token>\n\nCreate one at https://vercel.com/account/tokens"
            )
        token = argument.split()[0]
        if not validate_vercel_token(token):
            raise CredentialInvalidError(
                "❌ Token format appears invalid. Tokens should be 20+ characters with no spaces.",
                CredentialKind.VERCEL.value,
            )
        valid, message = await self.deployer.verify_token(token)
        if not valid:
            raise CredentialInvalidError(
                f"❌ {message}\n\nGet a fresh token at https://vercel.com/account/tokens",
                CredentialKind.VERCEL.value,
            )
        self.credentials.save(ctx.identity, token, CredentialKind.VERCEL)
        await self._reply(ctx, f"✅ Vercel token saved! {message}")

    async def cmd_vercel_test(self, ctx: MessageContext, argument: str) -> None:
        token = self.credentials.get(ctx.identity, CredentialKind.VERCEL)
        if not token:
            raise AuthorizationError(
                "🔐 No Vercel token saved. Use /vercel-token <token> first.",
                credential_kind=CredentialKind.VERCEL.value,
            )
        valid, message = await self.deployer.verify_token(token)
        await self._reply(ctx, f"{'✅' if valid else '❌'} {message}")

    # -------------------------------------------------------------------------
    # Rule 4: natural-language clone
    # -------------------------------------------------------------------------

    def _match_nl_clone(self, ctx: MessageContext) -> Optional[str]:
        return find_clone_target(ctx.text)

    async def _handle_nl_clone(self, ctx: MessageContext, name: str) -> None:
        self._audit(ctx, "nl_clone", name)
        self._require_github(ctx)
        await self._clone_by_name(ctx, name)

    # -------------------------------------------------------------------------
    # Rule 5: AI fallback
    # -------------------------------------------------------------------------

    def _match_any(self, ctx: MessageContext) -> bool:
        return True

    async def _handle_ai_fallback(self, ctx: MessageContext, _: Any) -> None:
        if not self.ai.enabled:
            await self._reply(ctx, f"You said: {ctx.text}")
            return

        has_token = self.credentials.has(ctx.identity, CredentialKind.GITHUB)
        if REPO_QUESTION_PATTERN.search(ctx.text) and has_token and self.cache.is_empty(ctx.identity):
            await self._reply(ctx, "📚 I don't have your repository list yet. Run /repos first and ask me again.")
            return

        self._audit(ctx, "ai_chat")
        history = [entry.to_message() for entry in ctx.history.entries()]
        answer = await self.ai.chat(
            ctx.text,
            history=history,
            local_repos=lambda: [
                {"id": r.id, "name": r.name, "remote_url": r.remote_url}
                for r in self.registry.list(ctx.identity)
            ],
            github_repos=lambda: [r.to_context() for r in self.cache.get(ctx.identity)],
        )
        await self._reply(ctx, answer)

    # -------------------------------------------------------------------------
    # Shared flows
    # -------------------------------------------------------------------------

    async def _clone_by_name(self, ctx: MessageContext, name: str) -> None:
        if self.cache.is_empty(ctx.identity):
            await self._reply(ctx, "📚 I don't know your repositories yet. Run /repos first, then ask me to clone.")
            return
        repo = self.cache.find(ctx.identity, name)
        if repo is None:
            await self._reply(
                ctx, f"❌ Repository \"{name}\" not found in your GitHub list. Use /repos to see what's available."
            )
            return
        await self._clone(ctx, repo.clone_url or repo.html_url, repo.name)

    async def _clone(self, ctx: MessageContext, remote_url: str, display_name: Optional[str]) -> None:
        existing = self.registry.find_by_url(ctx.identity, remote_url)
        if existing is not None:
            self.registry.set_active(ctx.identity, existing.id)
            await self._reply(ctx, f"📁 {existing.name} is already cloned. It is now your active repository.")
            return

        token = self.credentials.get(ctx.identity, CredentialKind.GITHUB)
        repo_id, target = self.registry.reserve_id()
        await self._reply(ctx, f"📥 Cloning {display_name or remote_url}...")
        outcome = await self.git.clone(
            remote_url, target, token, on_keepalive=self._keepalive(ctx, "cloning")
        )
        if not outcome.success:
            # A killed clone leaves a partial working copy behind
            logger.warning(f"Clone into {target} failed, removing partial directory")
            shutil.rmtree(target, ignore_errors=True)
            self._raise_for(outcome)

        record = self.registry.add(ctx.identity, remote_url, repo_id)
        self._audit(ctx, "cloned", f"repo_id={record.id}")

        description = await self._describe(record.local_path)
        if description is None:
            await self._reply(
                ctx,
                f"✅ {record.name} cloned and set as active, but I couldn't analyze it.\n\n"
                'Use "/vibe <task>" to edit!',
            )
            return
        await self._reply(ctx, f"✅ {record.name} cloned and ready!\n\n{description}\n\nUse \"/vibe <task>\" to edit!")

    async def _describe(self, repo_path: str) -> Optional[str]:
        outcome = await self.agent.describe(repo_path)
        if not outcome.success:
            logger.warning(f"Describe step failed for {repo_path}: {outcome.message}")
            return None
        raw = outcome.message
        if self.ai.configured:
            try:
                summary = await self.ai.summarize_description(raw)
                if summary:
                    return summary
            except CollaboratorError as e:
                logger.warning(f"Description summary failed: {e.message}")
        return raw[:DESCRIBE_FALLBACK_LENGTH]

    async def _deploy(self, ctx: MessageContext, repo_path: Optional[str], production: bool) -> None:
        if not repo_path:
            raise UserInputError("❌ No active repository to deploy.")
        if not self.deployer.is_available():
            await self._reply(ctx, "❌ Vercel CLI is not installed on the server. Install it with: npm i -g vercel")
            return
        token = self.credentials.get(ctx.identity, CredentialKind.VERCEL)
        kind = "production" if production else "preview"
        self._audit(ctx, "deploy", kind)
        await self._reply(ctx, f"🚀 Starting {kind} deployment... this can take a few minutes.")
        outcome = await self.deployer.deploy(
            repo_path, production=production, token=token, on_keepalive=self._keepalive(ctx, "deploying")
        )
        self._raise_for(outcome)
        await self._reply(ctx, outcome.message)

    @staticmethod
    def _raise_for(outcome: ToolOutcome) -> None:
        if outcome.success:
            return
        if outcome.failure_kind == FailureKind.TIMEOUT:
            raise ToolTimeoutError(outcome)
        raise ExternalToolError(outcome)


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------
def render_error(error: CommetaError) -> str:
    if isinstance(error, ToolTimeoutError):
        return f"⏱️ {error.message}"
    if isinstance(error, ExternalToolError):
        return f"❌ {error.message}"
    if isinstance(error, CollaboratorError):
        return COLLABORATOR_APOLOGY
    if isinstance(error, RepoNotFoundError):
        available = error.details.get("available") or []
        if available:
            return f"❌ {error.message}\n\nAvailable: {', '.join(available)}"
        return f"❌ {error.message}"
    return error.message


def render_help(bot_name: str) -> str:
    return (
        f"👋 Hi! I'm {bot_name}, your coding assistant.\n\n"
        "GitHub:\n"
        "/auth <token> - Save your GitHub token (or just paste it)\n"
        "/repos - List your GitHub repositories\n"
        "/clone <url or name> - Clone a repository\n"
        "/local - List cloned repositories\n"
        "/use <name> - Switch active repository\n"
        "/current - Show the active repository\n"
        "/status - Show changed files\n\n"
        "Editing:\n"
        "/vibe <task> - Ask the AI agent to change the code\n\n"
        "Vercel:\n"
        "/vercel-token <token> - Save your Vercel token\n"
        "/vercel-test - Check the saved Vercel token\n"
        "/deploy - Production deployment\n"
        "/deploy-preview - Preview deployment\n"
        "/vercel-status - Latest deployments\n"
        "/vercel-logs - Recent deployment logs\n\n"
        'You can also say things like "clone my-project" or send a voice note.'
    )


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------
def create_router(settings: Settings) -> Router:
    """Wire a Router with real stores and tools from settings."""
    github = GitHubClient(settings.github_api_url, settings.github_timeout)
    return Router(
        settings=settings,
        sessions=SessionStore(RepoCache(github)),
        credentials=CredentialStore(settings.credentials_file, settings.encryption_secret),
        registry=RepoRegistry(settings.registry_file, settings.repos_dir),
        git=GitTool(settings.git_command, settings.tool_timeout, settings.keepalive_interval),
        agent=CodeAgent(settings.agent_command, settings.tool_timeout, settings.keepalive_interval),
        deployer=DeployTool(settings.deploy_command, settings.deploy_timeout, settings.keepalive_interval),
        ai=AIClient(settings),
        github=github,
    )
