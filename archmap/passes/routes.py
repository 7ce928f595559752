"""Route pass: UI screens from App Router page files.

Each page file becomes a screen node. Its text is scanned line by line for
calls into the internal API (emitted as ``calls`` edges to ``api:`` placeholder
targets), navigation to other screens, and direct backend-client usage, which
is recorded as evidence only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config import METHOD_CONTEXT_RADIUS, ROUTE_TABLE_OP_LOOKAHEAD
from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext, RepoContext
from ..ids import api_placeholder, generate_edge_id, generate_evidence_id, generate_node_id
from ..models import Evidence, Node, ScreenMeta
from ..store import GraphSnapshot, PassResult
from .base import (
    AnalysisPass,
    app_paths,
    collect,
    compile_route_pattern,
    dynamic_segment_count,
    line_excerpt,
    make_edge,
    map_files,
    owning_app_id,
    strip_query,
)

logger = logging.getLogger(__name__)

_PAGE_RE = re.compile(r"(?:^|/)(?:src/)?app/((?:[^/]+/)*?)page\.(?:tsx?|jsx?)$")
_ROUTE_GROUP_RE = re.compile(r"\([^)]+\)/")
_LAYOUT_EXTS = ("tsx", "ts", "jsx", "js")

FEATURE_PREFIXES = [
    ("/projects", "projects"),
    ("/tasks", "tasks"),
    ("/chat", "chat"),
    ("/docs", "documentation"),
    ("/repos", "repositories"),
    ("/search", "search"),
    ("/settings", "settings"),
    ("/dashboard", "dashboard"),
    ("/map", "architecture-map"),
    ("/login", "auth"),
    ("/auth", "auth"),
    ("/invite", "invitations"),
]

# Outbound calls
_FETCH_RE = re.compile(r"""fetch\s*\(\s*[`'"](/api/[^`'"]+)[`'"]""")
_TEMPLATE_API_RE = re.compile(r"`(/api/[^`]+)`")
_INTERPOLATION_RE = re.compile(r"\$\{[^}]+\}")
_METHOD_HINT_RE = re.compile(r"""method:\s*["'`](POST|PUT|PATCH|DELETE|GET)["'`]""", re.IGNORECASE)

# Navigation
_NAV_PATTERNS = [
    re.compile(r"""<Link[^>]*href=\{?\s*["'`]([^"'`]+)["'`]"""),
    re.compile(r"""router\.(?:push|replace)\s*\(\s*["'`]([^"'`]+)["'`]"""),
    re.compile(r"""redirect\s*\(\s*["'`]([^"'`]+)["'`]"""),
]

# Backend client
_FROM_RE = re.compile(r"""\.from\s*\(\s*["'`]([^"'`]+)["'`]\s*\)""")
_AUTH_RE = re.compile(r"\.auth\.(\w+)")
_RPC_RE = re.compile(r"""\.rpc\s*\(\s*["'`]([^"'`]+)["'`]""")
_TABLE_OPS = ("insert", "update", "delete", "upsert")


@dataclass
class RouteInfo:
    route: str
    file_path: str
    dynamic: bool
    catch_all: bool
    parallel: bool
    intercepted: bool
    layout: Optional[str] = None


@dataclass
class ApiCall:
    method: str
    path: str
    line: int
    excerpt: str
    confidence: str


# ===================================================================
# Route extraction
# ===================================================================

def route_from_page(path: str) -> Optional[RouteInfo]:
    """Route info for an App Router page file, or ``None`` if *path* is not one."""
    m = _PAGE_RE.search(path)
    if not m:
        return None
    segments = m.group(1)
    route = "/" + _ROUTE_GROUP_RE.sub("", segments).rstrip("/")
    return RouteInfo(
        route=route,
        file_path=path,
        dynamic="[" in route,
        catch_all="[..." in route,
        parallel="@" in segments,
        intercepted="(.)" in segments or "(..)" in segments,
    )


def find_layout(page_path: str, files: Set[str]) -> Optional[str]:
    """Nearest ``layout.*`` walking up from the page's directory to the router root."""
    m = _PAGE_RE.search(page_path)
    if not m:
        return None
    root = page_path[:m.start(1)]
    directory = page_path[:m.end(1)]
    while True:
        for ext in _LAYOUT_EXTS:
            candidate = f"{directory}layout.{ext}"
            if candidate in files:
                return candidate
        if len(directory) <= len(root):
            return None
        directory = directory[:directory.rstrip("/").rfind("/") + 1]


def infer_feature(route: str) -> Optional[str]:
    for prefix, feature in FEATURE_PREFIXES:
        if route == prefix or route.startswith(prefix + "/"):
            return feature
    return None


def normalize_api_path(raw: str) -> str:
    """``/api/x/${id}?q=1`` -> ``/api/x/[param]``."""
    return strip_query(_INTERPOLATION_RE.sub("[param]", raw))


def infer_method(lines: Sequence[str], index: int) -> Tuple[str, bool]:
    """HTTP method near line *index*, and whether it was found on that line.

    Falls back to ``GET`` when no ``method:`` option is nearby.
    """
    m = _METHOD_HINT_RE.search(lines[index])
    if m:
        return m.group(1).upper(), True
    window = lines[max(0, index - METHOD_CONTEXT_RADIUS):index + METHOD_CONTEXT_RADIUS + 1]
    m = _METHOD_HINT_RE.search("\n".join(window))
    if m:
        return m.group(1).upper(), False
    return "GET", True


def extract_api_calls(content: str) -> List[ApiCall]:
    calls: List[ApiCall] = []
    lines = content.split("\n")
    for i, line in enumerate(lines):
        fetch = _FETCH_RE.search(line)
        template = None if fetch else _TEMPLATE_API_RE.search(line)
        match = fetch or template
        if not match:
            continue
        raw = match.group(1)
        method, explicit = infer_method(lines, i)
        confidence = "high" if fetch and explicit and "${" not in raw else "medium"
        calls.append(ApiCall(
            method=method,
            path=normalize_api_path(raw),
            line=i + 1,
            excerpt=line_excerpt(line),
            confidence=confidence,
        ))
    return calls


def extract_navigations(content: str) -> List[Tuple[str, int, str]]:
    """``(target, line, excerpt)`` for every internal navigation."""
    found = []
    for i, line in enumerate(content.split("\n")):
        for pattern in _NAV_PATTERNS:
            for m in pattern.finditer(line):
                target = m.group(1)
                if target.startswith("/") and not target.startswith("//"):
                    found.append((target, i + 1, line_excerpt(line)))
    return found


def table_operation(lines: Sequence[str], index: int, lookahead: int) -> str:
    """Operation following a ``.from('table')`` call; ``select`` if none is seen."""
    window = "\n".join(lines[index:index + lookahead])
    for op in _TABLE_OPS:
        if f".{op}(" in window:
            return op
    return "select"


def extract_client_calls(content: str) -> List[Dict[str, object]]:
    calls: List[Dict[str, object]] = []
    lines = content.split("\n")
    for i, line in enumerate(lines):
        for m in _FROM_RE.finditer(line):
            if line[:m.start()].endswith("storage"):
                continue
            calls.append({
                "operation": table_operation(lines, i, ROUTE_TABLE_OP_LOOKAHEAD),
                "table": m.group(1), "line": i + 1, "confidence": "high",
            })
        m = _AUTH_RE.search(line)
        if m:
            calls.append({"operation": f"auth.{m.group(1)}", "line": i + 1, "confidence": "high"})
        if ".storage." in line:
            calls.append({"operation": "storage", "line": i + 1, "confidence": "medium"})
        m = _RPC_RE.search(line)
        if m:
            calls.append({"operation": "rpc", "function": m.group(1), "line": i + 1, "confidence": "high"})
    for call in calls:
        call["excerpt"] = line_excerpt(lines[int(call["line"]) - 1])  # type: ignore[arg-type]
    return calls


# ===================================================================
# Pass
# ===================================================================

class RoutePass(AnalysisPass):
    name = "routes"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        work: List[Tuple[RepoContext, RouteInfo, List[str], List[str]]] = []
        for repo in context.repos:
            files = {f.path for f in repo.files}
            routes = []
            for path in sorted(files):
                info = route_from_page(path)
                if info is not None:
                    info.layout = find_layout(path, files)
                    routes.append(info)
            known = [r.route for r in routes]
            paths = app_paths(snapshot, repo.id)
            work.extend((repo, info, known, paths) for info in routes)

        logger.debug("Route pass: %d page files", len(work))
        results = map_files(
            lambda item: self._analyze_page(context, *item),
            work,
            options.max_workers,
            describe=lambda item: item[1].file_path,
        )
        return collect(results)

    def _analyze_page(
        self,
        context: AnalysisContext,
        repo: RepoContext,
        info: RouteInfo,
        known_routes: List[str],
        paths: List[str],
    ) -> PassResult:
        result = PassResult()
        node_id = generate_node_id("screen", repo.id, info.route)
        result.nodes.append(Node(
            id=node_id,
            type="screen",
            label=info.route,
            repo_id=repo.id,
            metadata=ScreenMeta(
                route=info.route,
                file_path=info.file_path,
                dynamic=info.dynamic,
                catch_all=info.catch_all,
                parallel=info.parallel,
                intercepted=info.intercepted,
                layout=info.layout,
                feature=infer_feature(info.route),
            ),
        ))
        result.evidence.append(Evidence(
            id=generate_evidence_id("PAGE_COMPONENT", node_id, info.file_path),
            kind="PAGE_COMPONENT",
            node_id=node_id,
            repo_id=repo.id,
            file_path=info.file_path,
            symbol="page",
            metadata={"route": info.route, "dynamic": info.dynamic},
        ))
        result.edges.append(make_edge(owning_app_id(repo.id, paths, info.file_path), node_id, "contains"))

        content = context.read(repo, info.file_path)
        if not content:
            return result

        for call in extract_api_calls(content):
            target = api_placeholder(call.path)
            edge_id = generate_edge_id(node_id, target, "calls", call.method)
            evidence_id = generate_evidence_id("FETCH_CALL", node_id, info.file_path, call.line)
            result.edges.append(make_edge(
                node_id, target, "calls",
                confidence=call.confidence,
                metadata={"method": call.method, "path": call.path, "repo_id": repo.id},
                label=call.method,
                evidence_ids=[evidence_id],
                qualifier=call.method,
            ))
            result.evidence.append(Evidence(
                id=evidence_id,
                kind="FETCH_CALL",
                node_id=node_id,
                edge_id=edge_id,
                repo_id=repo.id,
                file_path=info.file_path,
                line_start=call.line,
                excerpt=call.excerpt,
                confidence=call.confidence,
                metadata={"method": call.method, "path": call.path},
            ))

        for target, line, excerpt in extract_navigations(content):
            target_route = resolve_screen_route(target, known_routes)
            target_id = generate_node_id("screen", repo.id, target_route)
            if target_id == node_id:
                continue
            edge_id = generate_edge_id(node_id, target_id, "navigates_to")
            evidence_id = generate_evidence_id("COMPONENT_USAGE", node_id, info.file_path, line, target)
            result.edges.append(make_edge(
                node_id, target_id, "navigates_to",
                metadata={"target": target},
                evidence_ids=[evidence_id],
            ))
            result.evidence.append(Evidence(
                id=evidence_id,
                kind="COMPONENT_USAGE",
                node_id=node_id,
                edge_id=edge_id,
                repo_id=repo.id,
                file_path=info.file_path,
                line_start=line,
                excerpt=excerpt,
                metadata={"target": target},
            ))

        for call in extract_client_calls(content):
            symbol = str(call.get("table") or call.get("function") or call["operation"])
            result.evidence.append(Evidence(
                id=generate_evidence_id("SUPABASE_CLIENT", node_id, info.file_path, call["line"], symbol),  # type: ignore[arg-type]
                kind="SUPABASE_CLIENT",
                node_id=node_id,
                repo_id=repo.id,
                file_path=info.file_path,
                symbol=symbol,
                line_start=call["line"],  # type: ignore[arg-type]
                excerpt=call["excerpt"],  # type: ignore[arg-type]
                confidence=call["confidence"],  # type: ignore[arg-type]
                metadata={k: v for k, v in call.items() if k in ("operation", "table", "function")},
            ))
        return result


def resolve_screen_route(target: str, known_routes: Sequence[str]) -> str:
    """Map a navigation target onto a known route pattern when one matches.

    An exact route wins; otherwise the matching pattern with the fewest dynamic
    segments. Unmatched targets keep their normalized literal path.
    """
    path = strip_query(_INTERPOLATION_RE.sub("[param]", target))
    if path in known_routes:
        return path
    matches = [r for r in known_routes if compile_route_pattern(r).match(path)]
    if not matches:
        return path
    return min(matches, key=dynamic_segment_count)
