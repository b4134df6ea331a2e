"""Repository metadata, structure and file content tools."""

import asyncio
import base64
from typing import Any

from pydantic import BaseModel, Field

from repochat.clients.github import GitHubAPIError, GitHubClient
from repochat.tools.base import EmptyInput, RepositoryScope, ToolDefinition, ToolExecutionError, failure


class DirectoryInput(BaseModel):
    path: str = Field(default="", description="Directory path (empty string for root directory)")
    ref: str | None = Field(default=None, description="Branch/commit reference (defaults to default branch)")


class FileInput(BaseModel):
    path: str = Field(..., min_length=1, description="File path within the repository")
    ref: str | None = Field(default=None, description="Branch/commit reference (defaults to default branch)")


class TreeInput(BaseModel):
    tree_sha: str | None = Field(default=None, description="Tree SHA (defaults to HEAD of default branch)")
    recursive: bool = Field(default=False, description="Whether to fetch the tree recursively")


class ReadmeInput(BaseModel):
    ref: str | None = Field(default=None, description="Branch/commit reference (defaults to default branch)")


def _decode(content: str) -> str:
    return base64.b64decode("".join(content.split())).decode("utf-8", errors="replace")


def _entry(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": item.get("name"),
        "path": item.get("path"),
        "type": item.get("type"),
        "size": item.get("size"),
        "sha": item.get("sha"),
        "download_url": item.get("download_url"),
    }


async def get_repository_info(params: EmptyInput, scope: RepositoryScope, github: GitHubClient) -> dict[str, Any]:
    try:
        repo_data, languages = await asyncio.gather(
            github.get_repository(scope.owner, scope.repo),
            github.list_languages(scope.owner, scope.repo),
        )
    except GitHubAPIError as e:
        raise failure("get repository info", e) from e

    license_info = repo_data.get("license") or {}
    return {
        "name": repo_data.get("name"),
        "full_name": repo_data.get("full_name"),
        "description": repo_data.get("description"),
        "language": repo_data.get("language"),
        "languages": languages,
        "stars": repo_data.get("stargazers_count"),
        "forks": repo_data.get("forks_count"),
        "size": repo_data.get("size"),
        "default_branch": repo_data.get("default_branch"),
        "created_at": repo_data.get("created_at"),
        "updated_at": repo_data.get("updated_at"),
        "topics": repo_data.get("topics", []),
        "license": license_info.get("name"),
        "open_issues_count": repo_data.get("open_issues_count"),
        "watchers_count": repo_data.get("watchers_count"),
        "archived": repo_data.get("archived"),
        "disabled": repo_data.get("disabled"),
        "private": repo_data.get("private"),
    }


async def list_directory_contents(
    params: DirectoryInput, scope: RepositoryScope, github: GitHubClient
) -> list[dict[str, Any]]:
    try:
        data = await github.get_content(scope.owner, scope.repo, params.path, params.ref)
    except GitHubAPIError as e:
        raise failure("list directory contents", e) from e

    # A file path returns the file itself rather than a listing
    if isinstance(data, list):
        return [_entry(item) for item in data]
    return [_entry(data)]


async def get_file_content(params: FileInput, scope: RepositoryScope, github: GitHubClient) -> dict[str, Any]:
    try:
        data = await github.get_content(scope.owner, scope.repo, params.path, params.ref)
    except GitHubAPIError as e:
        raise failure("get file content", e) from e

    if not isinstance(data, dict) or not data.get("content"):
        raise failure("get file content", ToolExecutionError("File content not available or file is too large"))

    return {
        "name": data.get("name"),
        "path": data.get("path"),
        "size": data.get("size"),
        "content": _decode(data["content"]),
        "sha": data.get("sha"),
        "encoding": data.get("encoding"),
    }


async def get_repository_tree(params: TreeInput, scope: RepositoryScope, github: GitHubClient) -> dict[str, Any]:
    try:
        tree_sha = params.tree_sha
        if not tree_sha:
            repo_data = await github.get_repository(scope.owner, scope.repo)
            branch = await github.get_branch(scope.owner, scope.repo, repo_data["default_branch"])
            tree_sha = branch["commit"]["sha"]

        data = await github.get_tree(scope.owner, scope.repo, tree_sha, params.recursive)
    except (GitHubAPIError, KeyError) as e:
        raise failure("get repository tree", e) from e

    return {
        "sha": data.get("sha"),
        "truncated": data.get("truncated", False),
        "tree": [
            {
                "path": item.get("path"),
                "mode": item.get("mode"),
                "type": item.get("type"),
                "sha": item.get("sha"),
                "size": item.get("size"),
                "url": item.get("url"),
            }
            for item in data.get("tree", [])
        ],
    }


async def get_readme(params: ReadmeInput, scope: RepositoryScope, github: GitHubClient) -> dict[str, Any]:
    try:
        data = await github.get_readme(scope.owner, scope.repo, params.ref)
    except GitHubAPIError as e:
        raise failure("get README", e) from e

    return {
        "name": data.get("name"),
        "path": data.get("path"),
        "sha": data.get("sha"),
        "size": data.get("size"),
        "content": _decode(data.get("content", "")),
        "download_url": data.get("download_url"),
        "html_url": data.get("html_url"),
    }


def create_repository_info_tool() -> ToolDefinition:
    return ToolDefinition(
        name="getRepositoryInfo",
        description=(
            "Get basic information about the GitHub repository including description, languages, "
            "stats, and metadata"
        ),
        input_schema_class=EmptyInput,
        handler=get_repository_info,
    )


def create_list_directory_tool() -> ToolDefinition:
    return ToolDefinition(
        name="listDirectoryContents",
        description="List files and subdirectories in a specific path within the repository",
        input_schema_class=DirectoryInput,
        handler=list_directory_contents,
    )


def create_file_content_tool() -> ToolDefinition:
    return ToolDefinition(
        name="getFileContent",
        description="Retrieve the content of a specific file from the repository",
        input_schema_class=FileInput,
        handler=get_file_content,
    )


def create_repository_tree_tool() -> ToolDefinition:
    return ToolDefinition(
        name="getRepositoryTree",
        description="Get the complete tree structure of the repository or a specific directory",
        input_schema_class=TreeInput,
        handler=get_repository_tree,
    )


def create_readme_tool() -> ToolDefinition:
    return ToolDefinition(
        name="getReadme",
        description="Get the README file content from the repository",
        input_schema_class=ReadmeInput,
        handler=get_readme,
    )
