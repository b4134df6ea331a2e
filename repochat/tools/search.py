"""Code, issue and pull request search tools."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from repochat.clients.github import GitHubAPIError, GitHubClient
from repochat.tools.base import RepositoryScope, ToolDefinition, failure

CODE_RESULTS_PER_PAGE = 30
ISSUE_RESULTS_PER_PAGE = 20
MAX_BODY_CHARS = 500


class SearchCodeInput(BaseModel):
    query: str = Field(
        ..., min_length=1, description="Search query (can include code patterns, function names, etc.)"
    )
    language: str | None = Field(default=None, description="Filter by programming language")
    filename: str | None = Field(default=None, description="Filter by filename or extension")
    path: str | None = Field(default=None, description="Filter by file path")


class SearchIssuesInput(BaseModel):
    query: str = Field(..., min_length=1, description="Search query for issues/PRs")
    state: Literal["open", "closed", "all"] = Field(default="all", description="Filter by state")
    type: Literal["issue", "pr", "all"] = Field(default="all", description="Filter by type")


def build_code_query(params: SearchCodeInput, scope: RepositoryScope) -> str:
    query = f"{params.query} repo:{scope.full_name}"
    if params.language:
        query += f" language:{params.language}"
    if params.filename:
        query += f" filename:{params.filename}"
    if params.path:
        query += f" path:{params.path}"
    return query


def build_issue_query(params: SearchIssuesInput, scope: RepositoryScope) -> str:
    query = f"{params.query} repo:{scope.full_name}"
    if params.state != "all":
        query += f" state:{params.state}"
    if params.type != "all":
        query += f" type:{params.type}"
    return query


def _truncate(body: str | None) -> str | None:
    if not body:
        return None
    return body[:MAX_BODY_CHARS] + "..." if len(body) > MAX_BODY_CHARS else body


async def search_code(params: SearchCodeInput, scope: RepositoryScope, github: GitHubClient) -> dict[str, Any]:
    try:
        data = await github.search_code(build_code_query(params, scope), per_page=CODE_RESULTS_PER_PAGE)
    except GitHubAPIError as e:
        raise failure("search code", e) from e

    return {
        "total_count": data.get("total_count", 0),
        "items": [
            {
                "name": item.get("name"),
                "path": item.get("path"),
                "sha": item.get("sha"),
                "url": item.get("html_url"),
                "repository": item.get("repository", {}).get("full_name"),
                "text_matches": [
                    {
                        "object_url": match.get("object_url"),
                        "property": match.get("property"),
                        "fragment": match.get("fragment"),
                    }
                    for match in item.get("text_matches", [])
                ],
            }
            for item in data.get("items", [])
        ],
    }


async def search_issues_and_prs(
    params: SearchIssuesInput, scope: RepositoryScope, github: GitHubClient
) -> dict[str, Any]:
    try:
        data = await github.search_issues(build_issue_query(params, scope), per_page=ISSUE_RESULTS_PER_PAGE)
    except GitHubAPIError as e:
        raise failure("search issues and PRs", e) from e

    return {
        "total_count": data.get("total_count", 0),
        "items": [
            {
                "number": item.get("number"),
                "title": item.get("title"),
                "body": _truncate(item.get("body")),
                "state": item.get("state"),
                "created_at": item.get("created_at"),
                "updated_at": item.get("updated_at"),
                "labels": [label if isinstance(label, str) else label.get("name") for label in item.get("labels", [])],
                "url": item.get("html_url"),
                "type": "pull_request" if item.get("pull_request") else "issue",
            }
            for item in data.get("items", [])
        ],
    }


def create_search_code_tool() -> ToolDefinition:
    return ToolDefinition(
        name="searchCode",
        description="Search for code patterns, functions, or text within the repository",
        input_schema_class=SearchCodeInput,
        handler=search_code,
    )


def create_search_issues_tool() -> ToolDefinition:
    return ToolDefinition(
        name="searchIssuesAndPRs",
        description="Search for issues and pull requests in the repository for context about features and bugs",
        input_schema_class=SearchIssuesInput,
        handler=search_issues_and_prs,
    )
