"""Commit and branch tools."""

from typing import Any

from pydantic import BaseModel, Field

from repochat.clients.github import GitHubAPIError, GitHubClient
from repochat.tools.base import RepositoryScope, ToolDefinition, failure

MAX_COMMITS_PER_PAGE = 100


class CommitsInput(BaseModel):
    sha: str | None = Field(default=None, description="Branch or commit SHA to start from")
    path: str | None = Field(default=None, description="Only commits that modified this file path")
    per_page: int = Field(default=10, ge=1, description="Number of commits to return (max 100)")


class BranchesInput(BaseModel):
    protected_only: bool | None = Field(default=None, description="Filter to only protected branches")


def _signature(person: dict[str, Any] | None) -> dict[str, Any]:
    person = person or {}
    return {
        "name": person.get("name"),
        "email": person.get("email"),
        "date": person.get("date"),
    }


async def get_recent_commits(
    params: CommitsInput, scope: RepositoryScope, github: GitHubClient
) -> list[dict[str, Any]]:
    try:
        commits = await github.list_commits(
            scope.owner,
            scope.repo,
            sha=params.sha or None,
            path=params.path or None,
            per_page=min(params.per_page, MAX_COMMITS_PER_PAGE),
        )
    except GitHubAPIError as e:
        raise failure("get recent commits", e) from e

    return [
        {
            "sha": commit.get("sha"),
            "message": commit.get("commit", {}).get("message"),
            "author": _signature(commit.get("commit", {}).get("author")),
            "committer": _signature(commit.get("commit", {}).get("committer")),
            "url": commit.get("html_url"),
            "stats": commit.get("stats"),
        }
        for commit in commits
    ]


async def list_branches(params: BranchesInput, scope: RepositoryScope, github: GitHubClient) -> list[dict[str, Any]]:
    try:
        branches = await github.list_branches(scope.owner, scope.repo, protected=params.protected_only)
    except GitHubAPIError as e:
        raise failure("list branches", e) from e

    return [
        {
            "name": branch.get("name"),
            "commit": {
                "sha": branch.get("commit", {}).get("sha"),
                "url": branch.get("commit", {}).get("url"),
            },
            "protected": branch.get("protected", False),
        }
        for branch in branches
    ]


def create_recent_commits_tool() -> ToolDefinition:
    return ToolDefinition(
        name="getRecentCommits",
        description="Get recent commits from the repository to understand recent changes",
        input_schema_class=CommitsInput,
        handler=get_recent_commits,
    )


def create_list_branches_tool() -> ToolDefinition:
    return ToolDefinition(
        name="listBranches",
        description="List all branches in the repository",
        input_schema_class=BranchesInput,
        handler=list_branches,
    )
