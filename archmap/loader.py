"""Build an AnalysisContext from checked-out repositories on disk."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import BINARY_EXTENSIONS, MAX_FILE_BYTES, SKIP_DIRS
from .context import AnalysisContext, RepoContext, RepoFile
from .passes.inventory import language_for_path

logger = logging.getLogger(__name__)


def blob_sha(data: bytes) -> str:
    """Git blob SHA-1, so local fingerprints line up with the host's file SHAs."""
    header = f"blob {len(data)}\0".encode("utf-8")
    return hashlib.sha1(header + data).hexdigest()


def _repo_id(root: Path, taken: Dict[str, int]) -> str:
    base = root.name.replace(" ", "_") or "repo"
    count = taken.get(base, 0)
    taken[base] = count + 1
    return base if count == 0 else f"{base}-{count + 1}"


def load_repo(root: Path, repo_id: str, project_id: str, contents: Dict[str, str]) -> RepoContext:
    files: List[RepoFile] = []
    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(root)
        if any(part in SKIP_DIRS for part in rel.parts[:-1]):
            continue
        if file_path.suffix.lower() in BINARY_EXTENSIONS:
            continue
        try:
            if file_path.stat().st_size > MAX_FILE_BYTES:
                logger.debug("Skipping %s: larger than %d bytes", rel, MAX_FILE_BYTES)
                continue
            data = file_path.read_bytes()
        except OSError as exc:
            logger.warning("Failed to read %s: %s", file_path, exc)
            continue

        path = rel.as_posix()
        files.append(RepoFile(path=path, sha=blob_sha(data), language=language_for_path(path)))
        contents[path] = data.decode("utf-8", errors="ignore")

    logger.info("Loaded %d files from %s", len(files), root)
    return RepoContext(
        id=repo_id,
        owner="local",
        name=root.name,
        provider="local",
        files=files,
        project_id=project_id,
    )


def load_local_context(paths: Sequence[Path], project_id: Optional[str] = None) -> AnalysisContext:
    """One repo per directory; content is scoped per repo so shared paths don't clash."""
    roots = [p.resolve() for p in paths]
    project = project_id or (roots[0].name if len(roots) == 1 else "local")
    taken: Dict[str, int] = {}
    repos: List[RepoContext] = []
    repo_contents: Dict[str, Dict[str, str]] = {}

    for root in roots:
        repo_id = _repo_id(root, taken)
        contents: Dict[str, str] = {}
        repos.append(load_repo(root, repo_id, project, contents))
        repo_contents[repo_id] = contents

    return AnalysisContext(project_id=project, repos=repos, repo_contents=repo_contents)
