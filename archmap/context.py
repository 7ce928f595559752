"""Analysis input: repositories, their file lists and pre-fetched content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RepoFile:
    path: str
    sha: str = ""
    language: Optional[str] = None


@dataclass
class RepoContext:
    id: str
    owner: str
    name: str
    provider: str = "github"
    default_branch: str = "main"
    files: List[RepoFile] = field(default_factory=list)
    project_id: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def has_file(self, path: str) -> bool:
        return any(f.path == path for f in self.files)

    def find_file(self, path: str) -> Optional[RepoFile]:
        for f in self.files:
            if f.path == path:
                return f
        return None


@dataclass
class AnalysisContext:
    """Everything one analysis run reads.

    ``contents`` maps file path to text and is shared by all repos.
    ``repo_contents`` optionally scopes content per repo ID, which wins over
    the shared map when two repos carry files with the same path.
    """
    project_id: str
    repos: List[RepoContext] = field(default_factory=list)
    contents: Dict[str, str] = field(default_factory=dict)
    repo_contents: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def read(self, repo: RepoContext, path: str) -> Optional[str]:
        scoped = self.repo_contents.get(repo.id)
        if scoped is not None and path in scoped:
            return scoped[path]
        return self.contents.get(path)
