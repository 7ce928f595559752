"""Configuration paths and analyzer limits for archmap."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("ARCHMAP_HOME", str(Path.home() / ".archmap"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

ANALYZER_VERSION = "1.0.0"

# Evidence excerpt caps (characters)
LINE_EXCERPT_MAX = 300
BLOCK_EXCERPT_MAX = 500

# Evidence IDs attached per feature flow step
SCREEN_STEP_EVIDENCE_MAX = 3
ACTION_STEP_EVIDENCE_MAX = 2

# Line windows used by the text heuristics
TABLE_OP_LOOKAHEAD = 8
ROUTE_TABLE_OP_LOOKAHEAD = 5
METHOD_CONTEXT_RADIUS = 3

# Below this many files a pass runs sequentially
PARALLEL_THRESHOLD = 10
MAX_WORKERS = int(os.environ.get("ARCHMAP_MAX_WORKERS", "0")) or (os.cpu_count() or 1)

# Local loader limits
MAX_FILE_BYTES = 512_000
SKIP_DIRS = {
    ".git", "node_modules", ".next", ".venv", "venv", "__pycache__",
    "dist", "build", ".turbo", ".vercel", "coverage", ".pytest_cache",
    ".mypy_cache", ".ruff_cache", "site-packages", ".tox", ".eggs",
}
BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".webp", ".svg", ".pdf",
    ".woff", ".woff2", ".ttf", ".eot", ".zip", ".gz", ".tar", ".mp4",
    ".mp3", ".wasm", ".lock", ".pyc", ".so", ".dylib", ".dll",
}
