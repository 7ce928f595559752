"""Shared machinery for analysis passes.

Each pass reads the analysis context plus a read-only snapshot of the store
and returns a :class:`~archmap.store.PassResult`. Per-file extraction is a
pure function, so it may run on a bounded worker pool; results come back in
input order and are merged single-threaded by the pipeline.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from ..config import LINE_EXCERPT_MAX, PARALLEL_THRESHOLD
from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext
from ..ids import generate_edge_id, generate_node_id
from ..models import Edge
from ..store import GraphSnapshot, PassResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class AnalysisPass(ABC):
    """Base class for the pipeline's passes."""

    name: str = "pass"

    @abstractmethod
    def run(
        self,
        context: AnalysisContext,
        snapshot: GraphSnapshot,
        options: AnalyzerOptions,
    ) -> PassResult:
        """Analyze *context* and return new facts to merge."""
        ...


# ------------------------------------------------------------------
# Worker pool
# ------------------------------------------------------------------

def map_files(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: int,
    describe: Callable[[T], str] = str,
) -> List[R]:
    """Apply *func* to every item, concurrently when worthwhile.

    Results keep input order. An item whose extraction raises is logged and
    left out; it never aborts the pass.
    """
    if not items:
        return []

    results: List[Optional[R]] = [None] * len(items)
    failed = [False] * len(items)

    if len(items) < PARALLEL_THRESHOLD or max_workers <= 1:
        for i, item in enumerate(items):
            try:
                results[i] = func(item)
            except Exception as exc:
                failed[i] = True
                logger.warning("Extraction failed for %s: %s", describe(item), exc)
    else:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
            future_to_index = {executor.submit(func, item): i for i, item in enumerate(items)}
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except Exception as exc:
                    failed[index] = True
                    logger.warning("Extraction failed for %s: %s", describe(items[index]), exc)

    return [r for r, bad in zip(results, failed) if not bad]  # type: ignore[misc]


def collect(results: Sequence[PassResult]) -> PassResult:
    merged = PassResult()
    for r in results:
        merged.extend(r)
    return merged


# ------------------------------------------------------------------
# Text helpers
# ------------------------------------------------------------------

def line_excerpt(line: str, limit: int = LINE_EXCERPT_MAX) -> str:
    return line.strip()[:limit]


def multiline_excerpt(lines: Sequence[str], start: int, count: int, limit: int = LINE_EXCERPT_MAX) -> str:
    return "\n".join(lines[start:start + count]).strip()[:limit]


def parse_json(text: Optional[str], source: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON manifest, returning ``None`` for missing or malformed text."""
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping malformed JSON in %s: %s", source, exc)
        return None
    return data if isinstance(data, dict) else None


def make_edge(
    source: str,
    target: str,
    edge_type: str,
    confidence: str = "high",
    metadata: Optional[Dict[str, Any]] = None,
    label: Optional[str] = None,
    evidence_ids: Optional[List[str]] = None,
    qualifier: Optional[str] = None,
) -> Edge:
    return Edge(
        id=generate_edge_id(source, target, edge_type, *([qualifier] if qualifier else [])),
        source=source,
        target=target,
        type=edge_type,
        confidence=confidence,
        evidence_ids=list(evidence_ids or []),
        metadata=metadata or {},
        label=label,
    )


def app_paths(snapshot: GraphSnapshot, repo_id: str) -> List[str]:
    """App directories the inventory pass found for *repo_id*, deepest first."""
    paths = [
        n.metadata.app_path
        for n in snapshot.nodes.values()
        if n.type == "app" and n.metadata.repo_id == repo_id
    ]
    return sorted(paths, key=len, reverse=True)


def owning_app_id(repo_id: str, paths: Sequence[str], file_path: str) -> str:
    """ID of the app whose directory holds *file_path* (the root app otherwise)."""
    for app_path in paths:
        if app_path and file_path.startswith(app_path + "/"):
            return generate_node_id("app", repo_id, app_path)
    return generate_node_id("app", repo_id, "")


# ------------------------------------------------------------------
# Route patterns
# ------------------------------------------------------------------

_SEGMENT_RE = re.compile(
    r"\[\[\.\.\.[^\]/]+\]\]"   # optional catch-all [[...slug]]
    r"|\[\.\.\.[^\]/]+\]"      # catch-all [...slug]
    r"|\[[^\]/]+\]"            # dynamic [id]
    r"|\{[^}/]+\}"             # {id}
    r"|<[^>/]+>"               # <id> or <int:id>
)


def _segment_regex(token: str) -> str:
    if token.startswith("[[..."):
        return ".*"
    if token.startswith("[..."):
        return ".+"
    return "[^/]+"


def compile_route_pattern(pattern: str, prefix: bool = False) -> "re.Pattern[str]":
    """Compile a route pattern into a matcher.

    Dynamic segments match exactly one path segment, catch-all segments match
    any depth. With ``prefix=True`` the pattern also matches deeper routes
    that start with it at a segment boundary.
    """
    out: List[str] = []
    pos = 0
    for m in _SEGMENT_RE.finditer(pattern):
        out.append(re.escape(pattern[pos:m.start()]))
        out.append(_segment_regex(m.group(0)))
        pos = m.end()
    out.append(re.escape(pattern[pos:]))
    body = "".join(out)
    if prefix:
        body = body.rstrip("/") if body != "/" else ""
        return re.compile(f"^{body}(?:/.*)?$")
    return re.compile(f"^{body}/?$")


def dynamic_segment_count(pattern: str) -> int:
    return len(_SEGMENT_RE.findall(pattern))


def strip_query(path: str) -> str:
    path = path.split("?", 1)[0].split("#", 1)[0]
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path
