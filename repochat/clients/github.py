"""GitHub REST API client used by the repository tools."""

import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from repochat.utils.logging import get_logger

logger = get_logger(__name__)


class GitHubAPIError(Exception):
    """A GitHub request failed or returned a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GitHubConfig:
    """Configuration for the GitHub API client."""

    token: str | None = os.getenv("GITHUB_TOKEN")
    base_url: str = os.getenv("GITHUB_API_URL", "https://api.github.com")
    timeout: float = 30.0
    user_agent: str = "repochat"
    api_version: str = "2022-11-28"


class GitHubClient:
    """Async client for the read-only GitHub endpoints the tools need."""

    def __init__(self, config: GitHubConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize GitHub client.

        Args:
            config: Client configuration
            transport: Optional transport override, used by tests
        """
        self.config = config or GitHubConfig()

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.config.api_version,
            "User-Agent": self.config.user_agent,
        }
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"

        self.http = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=headers,
            timeout=self.config.timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self.http.aclose()

    async def _get(self, path: str, params: dict[str, Any] | None = None, accept: str | None = None) -> Any:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        headers = {"Accept": accept} if accept else None

        logger.debug(f"GET {path} params={query}")
        try:
            response = await self.http.get(path, params=query, headers=headers)
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"Request to {path} failed: {e}") from e

        if response.is_error:
            raise GitHubAPIError(
                f"GitHub API returned {response.status_code} for {path}: {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Malformed response from {path}", status_code=response.status_code) from e

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}")

    async def list_languages(self, owner: str, repo: str) -> dict[str, int]:
        return await self._get(f"/repos/{owner}/{repo}/languages")

    async def get_content(self, owner: str, repo: str, path: str = "", ref: str | None = None) -> Any:
        """Get a file or directory listing; directories come back as a list."""
        endpoint = f"/repos/{owner}/{repo}/contents"
        if path.strip("/"):
            endpoint += f"/{path.strip('/')}"
        return await self._get(endpoint, {"ref": ref})

    async def get_readme(self, owner: str, repo: str, ref: str | None = None) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}/readme", {"ref": ref})

    async def get_branch(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}/branches/{quote(branch, safe='')}")

    async def list_branches(self, owner: str, repo: str, protected: bool | None = None) -> list[dict[str, Any]]:
        params = {"protected": str(protected).lower() if protected is not None else None}
        return await self._get(f"/repos/{owner}/{repo}/branches", params)

    async def get_tree(self, owner: str, repo: str, tree_sha: str, recursive: bool = False) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}/git/trees/{tree_sha}", {"recursive": "1" if recursive else None})

    async def list_commits(
        self, owner: str, repo: str, sha: str | None = None, path: str | None = None, per_page: int = 10
    ) -> list[dict[str, Any]]:
        return await self._get(f"/repos/{owner}/{repo}/commits", {"sha": sha, "path": path, "per_page": per_page})

    async def search_code(self, query: str, per_page: int = 30) -> dict[str, Any]:
        return await self._get(
            "/search/code",
            {"q": query, "per_page": per_page},
            accept="application/vnd.github.text-match+json",
        )

    async def search_issues(self, query: str, per_page: int = 20) -> dict[str, Any]:
        return await self._get("/search/issues", {"q": query, "per_page": per_page})


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    return data.get("message", response.text) if isinstance(data, dict) else response.text


_github_client: GitHubClient | None = None


def get_github_client() -> GitHubClient:
    """Get or create GitHub client instance."""
    global _github_client
    if _github_client is None:
        _github_client = GitHubClient()
    return _github_client
