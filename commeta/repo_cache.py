"""
Repository Cache & Fuzzy Resolver

Holds each identity's list of GitHub repositories in memory so that natural
language references ("clone the backend") can be resolved without another API
call. The list is replaced wholesale on every refresh and never persisted.

Resolution order (first hit wins):
1. Case-insensitive exact name match
2. Case-insensitive substring of the name
3. Case-insensitive substring of the description
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import httpx

from .errors import CollaboratorError

logger = logging.getLogger("repo_cache")

GITHUB_ACCEPT = "application/vnd.github.v3+json"
USER_AGENT = "Commeta-Bot"

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteRepo:
    """One entry of the cached GitHub repository list."""
    name: str
    full_name: str = ""
    clone_url: str = ""
    html_url: str = ""
    private: bool = False
    description: Optional[str] = None
    language: Optional[str] = None
    stargazers_count: int = 0
    updated_at: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteRepo":
        return cls(
            name=data.get("name", ""),
            full_name=data.get("full_name", ""),
            clone_url=data.get("clone_url", ""),
            html_url=data.get("html_url", ""),
            private=bool(data.get("private", False)),
            description=data.get("description"),
            language=data.get("language"),
            stargazers_count=int(data.get("stargazers_count") or 0),
            updated_at=data.get("updated_at") or "",
        )

    def to_context(self) -> Dict[str, Any]:
        """Compact form handed to the AI collaborator."""
        return {
            "name": self.name,
            "full_name": self.full_name,
            "description": self.description,
            "language": self.language,
            "private": self.private,
            "stars": self.stargazers_count,
            "clone_url": self.clone_url,
            "updated_at": self.updated_at,
        }


# -----------------------------------------------------------------------------
# Fuzzy Resolver
# -----------------------------------------------------------------------------
def resolve(
    items: Sequence[T],
    query: str,
    name_of: Callable[[T], str],
    description_of: Optional[Callable[[T], Optional[str]]] = None,
) -> Optional[T]:
    """
    Return the first item matching `query`, or None.

    Iterates `items` in their given order, so the result is deterministic for a
    fixed sequence and query. Never guesses beyond the three match rules.
    """
    needle = query.strip().lower()
    if not needle:
        return None

    for item in items:
        if name_of(item).lower() == needle:
            return item

    for item in items:
        if needle in name_of(item).lower():
            return item

    if description_of is not None:
        for item in items:
            description = description_of(item)
            if description and needle in description.lower():
                return item

    return None


def find_repo_by_name(repos: Sequence[RemoteRepo], query: str) -> Optional[RemoteRepo]:
    return resolve(repos, query, lambda r: r.name, lambda r: r.description)


# -----------------------------------------------------------------------------
# GitHub API
# -----------------------------------------------------------------------------
class GitHubAPIError(CollaboratorError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            code="GITHUB_API_ERROR",
            message=message,
            details={"status_code": status_code},
        )
        self.status_code = status_code


class GitHubClient:
    """Minimal async GitHub REST client."""

    def __init__(self, base_url: str = "https://api.github.com", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "User-Agent": USER_AGENT,
        }

    async def _get(self, token: str, endpoint: str, params: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers=self._headers(token))
        except httpx.TimeoutException:
            raise GitHubAPIError("Network error: GitHub API timed out")
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"Network error: Could not reach GitHub API ({type(e).__name__})")

        status = response.status_code
        if status == 401:
            raise GitHubAPIError("Invalid GitHub token (401). Please check your token permissions.", status)
        if status == 403:
            raise GitHubAPIError("GitHub API rate limit exceeded or insufficient permissions (403).", status)
        if status == 404:
            raise GitHubAPIError("GitHub API endpoint not found.", status)
        if status >= 400:
            try:
                message = response.json().get("message", "Unknown error")
            except ValueError:
                message = "Unknown error"
            raise GitHubAPIError(f"GitHub API error ({status}): {message}", status)
        return response.json()

    async def fetch_user_repos(self, token: str) -> List[RemoteRepo]:
        """Repositories the token can see, most recently updated first."""
        data = await self._get(token, "/user/repos", params={"per_page": 100, "sort": "updated"})
        repos = [RemoteRepo.from_api(item) for item in data if isinstance(item, dict)]
        logger.info(f"Fetched {len(repos)} repositories from GitHub")
        return repos

    async def verify_token(self, token: str) -> Tuple[bool, str]:
        """Live identity lookup. Authority on whether a token works."""
        try:
            user = await self._get(token, "/user")
        except GitHubAPIError as e:
            return False, e.message
        return True, f"Token is valid! Authenticated as: {user.get('login', 'unknown')}"


# -----------------------------------------------------------------------------
# Per-identity Cache
# -----------------------------------------------------------------------------
class RepoCache:
    """Identity -> list of RemoteRepo, replaced wholesale on refresh."""

    def __init__(self, client: GitHubClient):
        self._client = client
        self._entries: Dict[str, Tuple[RemoteRepo, ...]] = {}

    async def refresh(self, identity: str, token: str) -> List[RemoteRepo]:
        repos = await self._client.fetch_user_repos(token)
        self.replace(identity, repos)
        return list(repos)

    def replace(self, identity: str, repos: Iterable[RemoteRepo]) -> None:
        self._entries[identity] = tuple(repos)

    def get(self, identity: str) -> List[RemoteRepo]:
        return list(self._entries.get(identity, ()))

    def is_empty(self, identity: str) -> bool:
        return not self._entries.get(identity)

    def find(self, identity: str, query: str) -> Optional[RemoteRepo]:
        return find_repo_by_name(self._entries.get(identity, ()), query)
