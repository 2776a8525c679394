"""
Per-identity conversation state.

SessionStore owns everything the engine keeps in memory for an identity: the
conversation phase, the bounded history, the repository cache and the lock
that serializes message handling for that identity.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional

from .config import HISTORY_LIMIT
from .repo_cache import GitHubClient, RepoCache

logger = logging.getLogger("session")


class Phase(str, Enum):
    """What the engine expects from the next reply."""
    IDLE = "idle"
    AWAITING_COMMIT_CONFIRMATION = "awaiting_commit_confirmation"
    AWAITING_DEPLOY_CONFIRMATION = "awaiting_deploy_confirmation"


@dataclass
class ConversationState:
    phase: Phase = Phase.IDLE
    repo_path: Optional[str] = None
    last_instruction: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.phase != Phase.IDLE

    def await_commit(self, repo_path: str, instruction: str) -> None:
        self.phase = Phase.AWAITING_COMMIT_CONFIRMATION
        self.repo_path = repo_path
        self.last_instruction = instruction

    def await_deploy(self, repo_path: str) -> None:
        self.phase = Phase.AWAITING_DEPLOY_CONFIRMATION
        self.repo_path = repo_path

    def clear(self) -> None:
        self.phase = Phase.IDLE
        self.repo_path = None
        self.last_instruction = None


@dataclass
class HistoryEntry:
    role: str
    content: str
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class HistoryBuffer:
    """Last `limit` entries of a conversation, oldest evicted first."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self._entries: Deque[HistoryEntry] = deque(maxlen=limit)

    def append(self, role: str, content: str) -> None:
        self._entries.append(HistoryEntry(role=role, content=content))

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def recent(self, count: int) -> List[HistoryEntry]:
        return list(self._entries)[-count:] if count > 0 else []

    def __len__(self) -> int:
        return len(self._entries)


class SessionStore:
    """Identity-keyed sessions, created lazily."""

    def __init__(self, repo_cache: Optional[RepoCache] = None, history_limit: int = HISTORY_LIMIT):
        self.repo_cache = repo_cache or RepoCache(GitHubClient())
        self._history_limit = history_limit
        self._states: Dict[str, ConversationState] = {}
        self._histories: Dict[str, HistoryBuffer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def state(self, identity: str) -> ConversationState:
        if identity not in self._states:
            self._states[identity] = ConversationState()
        return self._states[identity]

    def history(self, identity: str) -> HistoryBuffer:
        if identity not in self._histories:
            self._histories[identity] = HistoryBuffer(self._history_limit)
        return self._histories[identity]

    def lock(self, identity: str) -> asyncio.Lock:
        """One lock per identity. Handling of one message holds it throughout."""
        if identity not in self._locks:
            self._locks[identity] = asyncio.Lock()
        return self._locks[identity]
