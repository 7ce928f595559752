"""Source fingerprint used to decide whether a cached analysis is still valid."""

from __future__ import annotations

import re
from hashlib import sha256

from .context import AnalysisContext

_KEY_FILE_PATTERNS = [
    re.compile(r"(^|/)package\.json$"),
    re.compile(r"(^|/)next\.config\.(js|mjs|ts)$"),
    re.compile(r"(^|/)vercel\.json$"),
    re.compile(r"(^|/)(pyproject\.toml|requirements\.txt)$"),
    re.compile(r"(^|/)migrations/.*\.sql$"),
    re.compile(r"(^|/)app/(.*/)?page\.(tsx?|jsx?)$"),
    re.compile(r"(^|/)app/api/(.*/)?route\.(ts|js)$"),
]


def _is_key_file(path: str) -> bool:
    return any(p.search(path) for p in _KEY_FILE_PATTERNS)


def compute_fingerprint(context: AnalysisContext) -> str:
    """Hash repo IDs and the SHAs of files that shape the architecture graph.

    Independent of repo order and of the order files are listed in.
    """
    parts = []
    for repo in sorted(context.repos, key=lambda r: r.id):
        parts.append(f"repo:{repo.id}")
        for f in sorted((f for f in repo.files if _is_key_file(f.path)), key=lambda f: f.path):
            parts.append(f"file:{f.path}:{f.sha}")
    return sha256("\n".join(parts).encode("utf-8")).hexdigest()[:32]
