"""Pydantic models validating an "analyze this project" request payload."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .context import AnalysisContext, RepoContext, RepoFile


class RepoFileInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(..., min_length=1, description="Repo-relative file path")
    sha: str = Field("", description="Blob SHA used for fingerprinting")
    language: Optional[str] = Field(None, description="Language hint from the host")


class RepoInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    owner: str
    name: str
    provider: str = "github"
    default_branch: str = Field("main", alias="defaultBranch")
    files: List[RepoFileInput] = Field(default_factory=list)
    contents: Dict[str, str] = Field(
        default_factory=dict,
        description="Content scoped to this repo, keyed by path",
    )


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId", min_length=1)
    repos: List[RepoInput] = Field(default_factory=list)
    contents: Dict[str, str] = Field(
        default_factory=dict,
        description="File path -> fully resolved text content",
    )

    def to_context(self) -> AnalysisContext:
        repos = [
            RepoContext(
                id=r.id,
                owner=r.owner,
                name=r.name,
                provider=r.provider,
                default_branch=r.default_branch,
                files=[RepoFile(path=f.path, sha=f.sha, language=f.language) for f in r.files],
                project_id=self.project_id,
            )
            for r in self.repos
        ]
        return AnalysisContext(
            project_id=self.project_id,
            repos=repos,
            contents=dict(self.contents),
            repo_contents={r.id: dict(r.contents) for r in self.repos if r.contents},
        )
