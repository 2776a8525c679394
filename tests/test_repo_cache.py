"""
Unit Tests for the Repository Cache & Fuzzy Resolver

Test coverage for:
- Resolution order (exact > name substring > description substring)
- Determinism and "not found" without guessing
- GitHub API fetch and error mapping
- Wholesale cache replacement
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from commeta.repo_cache import (
    GitHubAPIError,
    GitHubClient,
    RemoteRepo,
    RepoCache,
    find_repo_by_name,
)


REPOS = [
    RemoteRepo(name="alpha"),
    RemoteRepo(name="alphabet"),
    RemoteRepo(name="beta", description="Payments backend"),
]


def _response(status_code, payload):
    return httpx.Response(status_code, json=payload, request=httpx.Request("GET", "https://api.github.com/x"))


class TestResolver:
    """Tests for find_repo_by_name."""

    def test_exact_match_beats_substring(self):
        """'alpha' resolves to alpha, not alphabet."""
        assert find_repo_by_name(REPOS, "alpha").name == "alpha"

    def test_substring_match(self):
        """'bet' has no exact match and resolves to the first name containing it."""
        assert find_repo_by_name(REPOS, "bet").name == "alphabet"

    def test_case_insensitive(self):
        assert find_repo_by_name(REPOS, "ALPHA").name == "alpha"

    def test_description_match(self):
        assert find_repo_by_name(REPOS, "payments").name == "beta"

    def test_not_found_returns_none(self):
        assert find_repo_by_name(REPOS, "gamma") is None
        assert find_repo_by_name(REPOS, "  ") is None

    def test_deterministic(self):
        """Repeated lookups give the same entry."""
        results = {find_repo_by_name(REPOS, "alph").name for _ in range(10)}
        assert results == {"alpha"}


class TestGitHubClient:
    """Tests for the GitHub REST client."""

    @pytest.mark.asyncio
    async def test_fetch_user_repos(self):
        payload = [
            {"name": "alpha", "full_name": "dev/alpha", "clone_url": "https://github.com/dev/alpha.git",
             "private": True, "description": None, "stargazers_count": 3},
        ]
        mock_get = AsyncMock(return_value=_response(200, payload))
        with patch.object(httpx.AsyncClient, "get", mock_get):
            repos = await GitHubClient().fetch_user_repos("token-value")

        assert repos[0].name == "alpha"
        assert repos[0].private is True
        kwargs = mock_get.call_args.kwargs
        assert kwargs["params"] == {"per_page": 100, "sort": "updated"}
        assert kwargs["headers"]["Authorization"] == "Bearer token-value"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,fragment", [
        (401, "Invalid GitHub token"),
        (403, "rate limit"),
        (404, "not found"),
    ])
    async def test_error_statuses_are_readable(self, status, fragment):
        with patch.object(httpx.AsyncClient, "get", AsyncMock(return_value=_response(status, {"message": "x"}))):
            with pytest.raises(GitHubAPIError) as exc_info:
                await GitHubClient().fetch_user_repos("token-value")
        assert fragment in exc_info.value.message
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_network_error(self):
        with patch.object(httpx.AsyncClient, "get", AsyncMock(side_effect=httpx.ConnectError("down"))):
            with pytest.raises(GitHubAPIError) as exc_info:
                await GitHubClient().fetch_user_repos("token-value")
        assert "Network error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_verify_token(self):
        with patch.object(httpx.AsyncClient, "get", AsyncMock(return_value=_response(200, {"login": "dev"}))):
            valid, message = await GitHubClient().verify_token("token-value")
        assert valid is True
        assert "dev" in message

    @pytest.mark.asyncio
    async def test_verify_token_rejected(self):
        with patch.object(httpx.AsyncClient, "get", AsyncMock(return_value=_response(401, {}))):
            valid, message = await GitHubClient().verify_token("token-value")
        assert valid is False
        assert "401" in message


class TestRepoCache:
    """Tests for the per-identity cache."""

    @pytest.mark.asyncio
    async def test_refresh_replaces_wholesale(self):
        client = GitHubClient()
        client.fetch_user_repos = AsyncMock(side_effect=[REPOS, [RemoteRepo(name="gamma")]])
        cache = RepoCache(client)

        await cache.refresh("alice", "token")
        assert [r.name for r in cache.get("alice")] == ["alpha", "alphabet", "beta"]

        await cache.refresh("alice", "token")
        assert [r.name for r in cache.get("alice")] == ["gamma"]
        assert cache.find("alice", "alpha") is None

    def test_cache_is_per_identity(self):
        cache = RepoCache(GitHubClient())
        cache.replace("alice", REPOS)
        assert cache.is_empty("bob") is True
        assert cache.find("alice", "beta").name == "beta"
