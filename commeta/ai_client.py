"""
AI collaborator (OpenAI).

Chat fallback with repository lookup tools, voice-intent classification,
one-sentence repository summaries and audio transcription. Every failure of
the remote service is raised as a CollaboratorError subclass.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from .config import Settings
from .errors import AICollaboratorError, TranscriptionError

logger = logging.getLogger("ai_client")

CHAT_HISTORY_WINDOW = 10
REQUEST_TIMEOUT = 60.0

REPO_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "get_active_repos",
            "description": "Return list of locally cloned repositories for the user",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_github_repos",
            "description": "Return list of all GitHub repositories for the user",
            "parameters": {"type": "object", "properties": {}},
        },
    },
]

INTENT_PROMPT = """You analyze voice transcriptions sent to a chat coding assistant.

Determine the user's intent and extract the relevant information.

POSSIBLE INTENTS:
1. "command" - run a specific command (/repos, /clone, /status, /help, ...)
2. "vibe" - edit code or make changes to a repository
3. "general" - general conversation or questions

RULES:
- Repository operations (clone, list repos, switch repo, status) are "command"
- Editing, modifying, changing, adding, fixing or improving code is "vibe"
- General programming questions are "general"
- For clone requests, match the requested name against the available repositories: {repos}

EXAMPLES:
- "show me my repositories" -> command: "/repos"
- "clone my backend project" -> command: "clone backend"
- "change the title to Hello World" -> vibe: "change the title to Hello World"
- "what is React?" -> general

Return ONLY a JSON object with the keys intent, extractedCommand (command only)
and vibePrompt (vibe only)."""

DESCRIBE_PROMPT = "Explain what this codebase does in one sentence.\n\nReturn ONLY the explanation."


@dataclass
class AudioIntent:
    intent: str
    transcription: str
    command: Optional[str] = None
    vibe_prompt: Optional[str] = None


def build_system_prompt(bot_name: str, extra: str = "") -> str:
    prompt = (
        f"You are {bot_name}, an AI coding assistant that helps developers manage and edit "
        "Git repositories through chat.\n\n"
        "You can help with managing GitHub repositories (clone, list, switch), code editing, "
        "git operations and general programming questions.\n\n"
        "Be concise: chat messages should be short. If a message contains a token or key, "
        "remind the user about security. When the user asks about repositories, call "
        "get_github_repos; for locally cloned ones call get_active_repos.\n\n"
        "COMMANDS AVAILABLE:\n"
        "/auth <token> - Save GitHub token\n"
        "/clone <url> - Clone repository\n"
        "/repos - List repositories\n"
        "/use <name> - Switch active repository\n"
        "/vibe <task> - Edit the active repository\n"
        "/help - Show help and commands\n\n"
        'Natural language like "clone my-project" is understood too.'
    )
    if extra:
        prompt += f"\n\n{extra}"
    return prompt


class AIClient:
    """Lazily created AsyncOpenAI client plus the prompts this bot uses."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: Optional[AsyncOpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self._settings.openai_api_key)

    @property
    def enabled(self) -> bool:
        """Chat fallback is on only when switched on and a key exists."""
        return self._settings.ai_enabled and self.configured

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.configured:
                raise AICollaboratorError("OpenAI API key is missing")
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                timeout=REQUEST_TIMEOUT,
            )
        return self._client

    async def _complete(self, messages: List[Dict[str, Any]], **kwargs) -> Any:
        try:
            return await self.client.chat.completions.create(
                model=self._settings.openai_model,
                messages=messages,
                **kwargs,
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            logger.warning(f"AI request failed: {type(e).__name__}: {e}")
            raise AICollaboratorError()

    # -------------------------------------------------------------------------
    # Chat fallback
    # -------------------------------------------------------------------------

    async def chat(
        self,
        prompt: str,
        history: Sequence[Dict[str, str]] = (),
        local_repos: Optional[Callable[[], List[Dict[str, Any]]]] = None,
        github_repos: Optional[Callable[[], List[Dict[str, Any]]]] = None,
    ) -> str:
        """Answer free text. The model may call the repo lookup tools once."""
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(self._settings.bot_name, self._settings.ai_system_prompt)},
        ]
        messages.extend(list(history)[-CHAT_HISTORY_WINDOW:])
        messages.append({"role": "user", "content": prompt})

        response = await self._complete(messages, tools=REPO_TOOLS)
        message = response.choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        if not tool_calls:
            return (message.content or "").strip() or "I'm not sure how to help with that."

        providers = {
            "get_active_repos": local_repos or (lambda: []),
            "get_github_repos": github_repos or (lambda: []),
        }
        messages.append({
            "role": "assistant",
            "content": message.content,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.function.name, "arguments": call.function.arguments or "{}"},
                }
                for call in tool_calls
            ],
        })
        for call in tool_calls:
            provider = providers.get(call.function.name)
            result = provider() if provider else {"error": f"unknown function {call.function.name}"}
            logger.info(f"AI requested {call.function.name}")
            messages.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(result, default=str),
            })

        followup = await self._complete(messages)
        return (followup.choices[0].message.content or "").strip() or "I'm not sure how to help with that."

    # -------------------------------------------------------------------------
    # Voice intent
    # -------------------------------------------------------------------------

    async def analyze_intent(self, transcription: str, repo_names: Sequence[str] = ()) -> AudioIntent:
        repos = ", ".join(repo_names) if repo_names else "No repos available"
        response = await self._complete(
            [
                {"role": "system", "content": INTENT_PROMPT.format(repos=repos)},
                {"role": "user", "content": transcription},
            ],
            temperature=0.1,
        )
        raw = (response.choices[0].message.content or "").strip()
        try:
            data = json.loads(_strip_code_fence(raw))
        except json.JSONDecodeError:
            logger.warning("AI intent response was not JSON, treating as general")
            return AudioIntent(intent="general", transcription=transcription)
        if not isinstance(data, dict):
            return AudioIntent(intent="general", transcription=transcription)

        intent = data.get("intent") if data.get("intent") in ("command", "vibe", "general") else "general"
        return AudioIntent(
            intent=intent,
            transcription=transcription,
            command=data.get("extractedCommand") or None,
            vibe_prompt=data.get("vibePrompt") or None,
        )

    # -------------------------------------------------------------------------
    # Repository description
    # -------------------------------------------------------------------------

    async def summarize_description(self, raw_description: str) -> str:
        response = await self._complete(
            [
                {"role": "system", "content": DESCRIBE_PROMPT},
                {"role": "user", "content": raw_description},
            ],
            temperature=0.2,
            max_tokens=60,
        )
        text = (response.choices[0].message.content or "").strip()
        first_line = text.split("\n", 1)[0].strip().strip("\"'")
        return first_line[:120].strip()

    # -------------------------------------------------------------------------
    # Transcription
    # -------------------------------------------------------------------------

    async def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        if not self.configured:
            raise TranscriptionError("Transcription is not configured")
        try:
            result = await self.client.audio.transcriptions.create(
                model=self._settings.transcription_model,
                file=(filename, audio),
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"Transcription failed: {type(e).__name__}: {e}")
            raise TranscriptionError()
        text = (getattr(result, "text", None) or "").strip()
        if not text:
            raise TranscriptionError("Transcription was empty")
        logger.info(f"Transcribed {len(audio)} bytes into {len(text)} characters")
        return text


def _strip_code_fence(text: str) -> str:
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return text.strip()
