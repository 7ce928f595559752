"""Endpoint pass: server route handlers and what their bodies touch.

Every exported HTTP method of an App Router ``route.ts`` file becomes an
endpoint node. The handler body is scanned for table operations, RPC calls,
outbound HTTP calls, auth calls and environment variables. Once all endpoints
are known, ``calls`` edges still pointing at ``api:`` placeholders are
rewritten to the matching endpoint.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from ..config import TABLE_OP_LOOKAHEAD
from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext, RepoContext
from ..ids import generate_edge_id, generate_evidence_id, generate_node_id, is_placeholder, placeholder_path
from ..models import HTTP_METHODS, Edge, EndpointMeta, Evidence, ExternalServiceMeta, Node
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
    multiline_excerpt,
    owning_app_id,
)
from .routes import table_operation

logger = logging.getLogger(__name__)

_ROUTE_FILE_RE = re.compile(r"(?:^|/)(?:src/)?app/((?:\([^/]+\)/)*api/(?:[^/]+/)*?)route\.(?:ts|js)$")
_ROUTE_GROUP_RE = re.compile(r"\([^)]+\)/")

_METHOD_NAMES = "GET|POST|PUT|PATCH|DELETE"
_EXPORT_PATTERNS = [
    re.compile(rf"export\s+(?:async\s+)?function\s+({_METHOD_NAMES})\b"),
    re.compile(rf"export\s+const\s+({_METHOD_NAMES})\s*="),
    re.compile(rf"export\s*\{{[^}}]*\bas\s+({_METHOD_NAMES})\b"),
]

_FROM_RE = re.compile(r"""\.from\s*\(\s*["'`]([^"'`]+)["'`]\s*\)""")
_RPC_RE = re.compile(r"""\.rpc\s*\(\s*["'`]([^"'`]+)["'`]""")
_STORAGE_RE = re.compile(r"""\.storage\s*\.from\s*\(\s*["'`]([^"'`]+)["'`]""")
_AUTH_RE = re.compile(r"(?:supabase\.)?auth\.(getUser|getSession|signIn\w*|signOut|signUp)")
_ENV_RE = re.compile(r"process\.env\.(\w+)")
_EXTERNAL_PATTERNS = [
    re.compile(r"""fetch\s*\(\s*["'`](https?://[^"'`]+)["'`]"""),
    re.compile(r"""axios\.(?:get|post|put|patch|delete)\s*\(\s*["'`](https?://[^"'`]+)["'`]"""),
]
_ENV_URL_RE = re.compile(r"process\.env\.(\w+_URL)\b")
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")

FEATURE_PREFIXES = [
    ("/api/projects", "projects"),
    ("/api/tasks", "tasks"),
    ("/api/chat", "chat"),
    ("/api/docs", "documentation"),
    ("/api/repos", "repositories"),
    ("/api/search", "search"),
    ("/api/auth", "auth"),
    ("/api/github", "github-integration"),
    ("/api/invitations", "invitations"),
]


def route_from_handler(path: str) -> Optional[str]:
    m = _ROUTE_FILE_RE.search(path)
    if not m:
        return None
    return "/" + _ROUTE_GROUP_RE.sub("", m.group(1)).rstrip("/")


def infer_feature(route: str) -> Optional[str]:
    for prefix, feature in FEATURE_PREFIXES:
        if route == prefix or route.startswith(prefix + "/"):
            return feature
    return None


def detect_methods(content: Optional[str]) -> List[Tuple[str, int]]:
    """Exported handler methods with the 0-based line of their first export.

    A file with no recognizable export is a single ``ALL`` handler spanning
    the whole file.
    """
    if not content:
        return [("ALL", 0)]
    found: Dict[str, int] = {}
    for pattern in _EXPORT_PATTERNS:
        for m in pattern.finditer(content):
            line = content.count("\n", 0, m.start())
            method = m.group(1)
            if method not in found or line < found[method]:
                found[method] = line
    if not found:
        return [("ALL", 0)]
    return sorted(found.items(), key=lambda item: HTTP_METHODS.index(item[0]))


def handler_spans(methods: Sequence[Tuple[str, int]], line_count: int) -> Dict[str, Tuple[int, int]]:
    """Line span ``[start, end)`` of each handler: up to the next export."""
    starts = sorted(line for _, line in methods)
    spans = {}
    for method, start in methods:
        later = [s for s in starts if s > start]
        spans[method] = (start, later[0] if later else line_count)
    return spans


def host_of(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


# ===================================================================
# Placeholder resolution
# ===================================================================

def resolve_placeholders(edges: Iterable[Edge], endpoints: Sequence[Node]) -> Dict[str, str]:
    """Map each placeholder edge ID to the endpoint that serves its path.

    An endpoint qualifies when its route pattern matches the called path and
    its method equals the call's method (or is ``ALL``). Among qualifying
    endpoints, same-repo wins, then an exact method, then the pattern with
    the fewest dynamic segments, then first discovered.
    """
    compiled = [(ep, compile_route_pattern(ep.metadata.route)) for ep in endpoints]
    retargets: Dict[str, str] = {}
    for edge in edges:
        if not is_placeholder(edge.target):
            continue
        path = placeholder_path(edge.target)
        method = str(edge.metadata.get("method", "GET")).upper()
        repo_id = edge.metadata.get("repo_id")
        best: Optional[Tuple[Any, ...]] = None
        for index, (ep, pattern) in enumerate(compiled):
            ep_method = ep.metadata.method
            if ep_method != method and ep_method != "ALL":
                continue
            if not pattern.match(path):
                continue
            key = (ep.repo_id != repo_id, ep_method == "ALL", dynamic_segment_count(ep.metadata.route), index)
            if best is None or key < best[0]:
                best = (key, ep.id)
        if best is not None:
            retargets[edge.id] = best[1]
    return retargets


# ===================================================================
# Pass
# ===================================================================

class _EdgeAccumulator:
    """Collapses repeated facts about one (source, target, type) into one edge."""

    def __init__(self) -> None:
        self._edges: Dict[str, Dict[str, Any]] = {}

    def add(
        self,
        source: str,
        target: str,
        edge_type: str,
        evidence_id: str,
        confidence: str = "high",
        label: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        edge_id = generate_edge_id(source, target, edge_type)
        entry = self._edges.get(edge_id)
        if entry is None:
            self._edges[edge_id] = {
                "source": source, "target": target, "type": edge_type,
                "confidence": confidence, "label": label,
                "metadata": dict(metadata or {}), "evidence": [evidence_id],
            }
        else:
            entry["evidence"].append(evidence_id)
            if confidence == "high":
                entry["confidence"] = "high"
            op = (metadata or {}).get("operation")
            if op:
                ops = entry["metadata"].setdefault("operations", [entry["metadata"].get("operation")])
                if op not in ops:
                    ops.append(op)
        return edge_id

    def edges(self) -> List[Edge]:
        return [
            make_edge(
                e["source"], e["target"], e["type"],
                confidence=e["confidence"], metadata=e["metadata"],
                label=e["label"], evidence_ids=e["evidence"],
            )
            for e in self._edges.values()
        ]


class EndpointPass(AnalysisPass):
    name = "endpoints"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        work: List[Tuple[RepoContext, str, str, List[str]]] = []
        for repo in context.repos:
            paths = app_paths(snapshot, repo.id)
            for f in sorted(repo.files, key=lambda f: f.path):
                route = route_from_handler(f.path)
                if route is not None:
                    work.append((repo, f.path, route, paths))

        result = collect(map_files(
            lambda item: self._analyze_handler(context, *item),
            work,
            options.max_workers,
            describe=lambda item: item[1],
        ))

        endpoints = snapshot.nodes_of_type("endpoint") + [n for n in result.nodes if n.type == "endpoint"]
        pending = snapshot.placeholder_edges() + [e for e in result.edges if is_placeholder(e.target)]
        result.retargets.update(resolve_placeholders(pending, endpoints))
        logger.debug(
            "Endpoint pass: %d handler files, %d of %d placeholder edges resolved",
            len(work), len(result.retargets), len(pending),
        )
        return result

    def _analyze_handler(
        self,
        context: AnalysisContext,
        repo: RepoContext,
        file_path: str,
        route: str,
        paths: List[str],
    ) -> PassResult:
        result = PassResult()
        content = context.read(repo, file_path)
        lines = content.split("\n") if content else []
        methods = detect_methods(content)
        spans = handler_spans(methods, len(lines))
        app_id = owning_app_id(repo.id, paths, file_path)

        for method, _ in methods:
            node_id = generate_node_id("endpoint", repo.id, method, route)
            result.nodes.append(Node(
                id=node_id,
                type="endpoint",
                label=f"{method} {route}",
                repo_id=repo.id,
                metadata=EndpointMeta(
                    method=method,
                    route=route,
                    file_path=file_path,
                    feature=infer_feature(route),
                    handler=None if method == "ALL" else method,
                ),
            ))
            start, end = spans[method]
            result.evidence.append(Evidence(
                id=generate_evidence_id("API_HANDLER", node_id, file_path),
                kind="API_HANDLER",
                node_id=node_id,
                repo_id=repo.id,
                file_path=file_path,
                symbol=method,
                line_start=start + 1 if lines else None,
                line_end=end if lines else None,
                metadata={"route": route, "method": method},
            ))
            result.edges.append(make_edge(app_id, node_id, "contains"))
            if lines:
                result.extend(self._scan_body(repo, file_path, node_id, lines, start, end))
        return result

    def _scan_body(
        self,
        repo: RepoContext,
        file_path: str,
        node_id: str,
        lines: List[str],
        start: int,
        end: int,
    ) -> PassResult:
        result = PassResult()
        acc = _EdgeAccumulator()

        def cite(kind: str, index: int, symbol: Optional[str], target: Optional[str], edge_type: Optional[str],
                 excerpt: Optional[str] = None, confidence: str = "high",
                 metadata: Optional[Dict[str, Any]] = None) -> str:
            evidence_id = generate_evidence_id(kind, node_id, file_path, index + 1, symbol)
            result.evidence.append(Evidence(
                id=evidence_id,
                kind=kind,
                node_id=node_id,
                edge_id=generate_edge_id(node_id, target, edge_type) if target and edge_type else None,
                repo_id=repo.id,
                file_path=file_path,
                symbol=symbol,
                line_start=index + 1,
                excerpt=excerpt if excerpt is not None else line_excerpt(lines[index]),
                confidence=confidence,
                metadata=metadata or {},
            ))
            return evidence_id

        for i in range(start, end):
            line = lines[i]

            for m in _FROM_RE.finditer(line):
                if line[:m.start()].endswith("storage"):
                    continue
                table = m.group(1)
                # the lookahead stays inside this handler
                op = table_operation(lines[:end], i, TABLE_OP_LOOKAHEAD)
                edge_type = "reads" if op == "select" else "writes"
                target = generate_node_id("table", "supabase", table)
                ev = cite("SUPABASE_CLIENT", i, table, target, edge_type,
                          excerpt=multiline_excerpt(lines, i, 3),
                          metadata={"operation": op, "table": table})
                acc.add(node_id, target, edge_type, ev, label=op, metadata={"operation": op})

            for m in _RPC_RE.finditer(line):
                fn = m.group(1)
                target = generate_node_id("function", "supabase", fn)
                ev = cite("SUPABASE_CLIENT", i, fn, target, "uses_function", metadata={"function": fn})
                acc.add(node_id, target, "uses_function", ev, label=fn)

            for m in _STORAGE_RE.finditer(line):
                bucket = m.group(1)
                target = generate_node_id("storage", "supabase")
                ev = cite("SUPABASE_CLIENT", i, f"storage:{bucket}", target, "stores", metadata={"bucket": bucket})
                acc.add(node_id, target, "stores", ev, label=bucket, metadata={"bucket": bucket})

            m = _AUTH_RE.search(line)
            if m:
                target = generate_node_id("auth", "supabase")
                ev = cite("SUPABASE_CLIENT", i, f"auth.{m.group(1)}", target, "authenticates",
                          metadata={"operation": m.group(1)})
                acc.add(node_id, target, "authenticates", ev, metadata={"operation": m.group(1)})

            for pattern in _EXTERNAL_PATTERNS:
                for em in pattern.finditer(line):
                    url = em.group(1)
                    host = host_of(url)
                    if not host or host in _LOCAL_HOSTS:
                        continue
                    target = self._external_node(result, host, url)
                    ev = cite("EXTERNAL_API", i, host, target, "calls_external",
                              metadata={"domain": host, "url": url})
                    acc.add(node_id, target, "calls_external", ev, label=host, metadata={"url": url})

            env_url = _ENV_URL_RE.search(line)
            if env_url and ("fetch" in line or "axios" in line):
                name = env_url.group(1)
                target = self._external_node(result, f"env:{name}", None, env_var=name)
                ev = cite("EXTERNAL_API", i, name, target, "calls_external", confidence="medium",
                          metadata={"domain": f"env:{name}"})
                acc.add(node_id, target, "calls_external", ev, confidence="medium", label=name)

            for em in _ENV_RE.finditer(line):
                cite("ENV_VAR", i, em.group(1), None, None, metadata={"env_var": em.group(1)})

        result.edges.extend(acc.edges())
        return result

    @staticmethod
    def _external_node(result: PassResult, domain: str, url: Optional[str], env_var: Optional[str] = None) -> str:
        node_id = generate_node_id("external_service", domain)
        if not any(n.id == node_id for n in result.nodes):
            result.nodes.append(Node(
                id=node_id,
                type="external_service",
                label=env_var or domain,
                metadata=ExternalServiceMeta(
                    domain=domain,
                    api_type="graphql" if url and "graphql" in url else ("rest" if url else "unknown"),
                    env_var=env_var,
                ),
            ))
        return node_id
