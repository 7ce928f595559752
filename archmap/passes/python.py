"""Python service pass: FastAPI/Flask backends, their packages and dependencies.

Runs after the JavaScript-oriented passes so that a Next.js front end calling
a Python API still gets its ``api:`` placeholders resolved here.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import toml

from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext, RepoContext
from ..ids import generate_edge_id, generate_evidence_id, generate_node_id
from ..models import AppMeta, EndpointMeta, Evidence, ExternalServiceMeta, Node, PackageMeta
from ..store import GraphSnapshot, PassResult
from .base import AnalysisPass, collect, line_excerpt, make_edge, map_files
from .endpoints import host_of, infer_feature, resolve_placeholders

logger = logging.getLogger(__name__)

FRAMEWORKS = ("fastapi", "django", "flask", "starlette")
SKIP_PACKAGE_NAMES = {"tests", "test", "__pycache__", ".pytest_cache", "migrations"}

KEY_PYTHON_PACKAGES = {
    "fastapi", "django", "flask", "starlette",
    "sqlalchemy", "pydantic", "pydantic-settings",
    "neo4j", "pinecone-client", "pinecone",
    "supabase", "httpx", "aiohttp", "requests",
    "openai", "anthropic", "replicate",
    "pytest", "black", "ruff", "mypy",
    "pyjwt", "python-jose", "passlib",
    "celery", "redis", "boto3",
}

_DECORATOR_RE = re.compile(r"""^\s*@(\w+)\.(get|post|put|patch|delete)\s*\(\s*["']([^"']*)["']""")
_FLASK_ROUTE_RE = re.compile(r"""^\s*@(\w+)\.route\s*\(\s*["']([^"']*)["'](.*)$""")
_FLASK_METHODS_RE = re.compile(r"methods\s*=\s*[\[(]([^\])]*)[\])]")
_ROUTER_RE = re.compile(r"^\s*(\w+)\s*=\s*(?:fastapi\.)?(?:APIRouter|Blueprint|Flask|FastAPI)\s*\((.*)$")
_PREFIX_RE = re.compile(r"""(?:url_)?prefix\s*=\s*["']([^"']+)["']""")
_DEF_RE = re.compile(r"^\s*(?:async\s+)?def\s+(\w+)\s*\(")
_TOP_LEVEL_RE = re.compile(r"^(?:@|def |async def |class )")
_HTTP_CALL_RE = re.compile(
    r"""\b(?:requests|httpx|aiohttp|session|client)\.(?:get|post|put|patch|delete|request)\s*\(\s*(?:["'](?:GET|POST|PUT|PATCH|DELETE)["']\s*,\s*)?f?["'](https?://[^"']+)["']"""
)
_SDK_IMPORT_RE = re.compile(r"^\s*(?:from|import)\s+(openai|anthropic)\b")
_REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(.*)$")
_VERSION_RE = re.compile(r"\d[\w.]*")

SDK_SERVICES = {
    "openai": ("OpenAI API", "api.openai.com"),
    "anthropic": ("Anthropic API", "api.anthropic.com"),
}


def categorize_python_package(name: str) -> str:
    lowered = name.lower()
    if any(f in lowered for f in FRAMEWORKS):
        return "framework"
    if any(d in lowered for d in ("sqlalchemy", "neo4j", "pinecone", "supabase", "redis", "postgres", "mysql")):
        return "database"
    if any(t in lowered for t in ("pytest", "black", "ruff", "mypy", "flake8")):
        return "testing"
    if any(u in lowered for u in ("pydantic", "httpx", "aiohttp", "requests", "pyjwt", "jose", "passlib")):
        return "utility"
    return "other"


# ===================================================================
# Manifests
# ===================================================================

def _split_requirement(spec: str) -> Optional[Tuple[str, str]]:
    spec = spec.split(";", 1)[0].split("#", 1)[0].strip()
    if not spec or spec.startswith("-"):
        return None
    m = _REQUIREMENT_RE.match(spec)
    if not m:
        return None
    version = _VERSION_RE.search(m.group(2) or "")
    return m.group(1).lower().replace("_", "-"), version.group(0) if version else "*"


def _poetry_version(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("version", "*")
    found = _VERSION_RE.search(str(value))
    return found.group(0) if found else "*"


def parse_pyproject(text: str, source: str = "pyproject.toml") -> List[Tuple[str, str, bool]]:
    """``(name, version, is_dev)`` from PEP 621 and Poetry tables."""
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as exc:
        logger.warning("Skipping malformed TOML in %s: %s", source, exc)
        return []

    deps: List[Tuple[str, str, bool]] = []
    project = data.get("project", {})
    for spec in project.get("dependencies", []) or []:
        parsed = _split_requirement(str(spec))
        if parsed:
            deps.append((parsed[0], parsed[1], False))
    for group in (project.get("optional-dependencies") or {}).values():
        for spec in group or []:
            parsed = _split_requirement(str(spec))
            if parsed:
                deps.append((parsed[0], parsed[1], True))

    poetry = data.get("tool", {}).get("poetry", {})
    for name, value in (poetry.get("dependencies") or {}).items():
        if name.lower() != "python":
            deps.append((name.lower(), _poetry_version(value), False))
    dev_tables = [poetry.get("dev-dependencies") or {}]
    dev_tables += [g.get("dependencies") or {} for g in (poetry.get("group") or {}).values() if isinstance(g, dict)]
    for table in dev_tables:
        for name, value in table.items():
            deps.append((name.lower(), _poetry_version(value), True))
    return deps


def parse_requirements(text: str) -> List[Tuple[str, str, bool]]:
    deps = []
    for line in text.split("\n"):
        parsed = _split_requirement(line)
        if parsed:
            deps.append((parsed[0], parsed[1], False))
    return deps


def detect_python_framework(
    context: AnalysisContext,
    repo: RepoContext,
    dependencies: Sequence[Tuple[str, str, bool]],
) -> Optional[str]:
    names = {name for name, _, _ in dependencies}
    for framework in FRAMEWORKS:
        if framework in names:
            return framework
    for f in repo.files:
        if not f.path.endswith(".py"):
            continue
        content = context.read(repo, f.path) or ""
        for framework in FRAMEWORKS:
            if f"from {framework}" in content or f"import {framework}" in content:
                return framework
    return None


def detect_packages(repo: RepoContext) -> List[str]:
    """Directories holding an ``__init__.py``, minus test and migration dirs."""
    found = []
    for f in repo.files:
        if f.path == "__init__.py" or not f.path.endswith("/__init__.py"):
            continue
        directory = f.path[:-len("/__init__.py")]
        if directory.rsplit("/", 1)[-1] not in SKIP_PACKAGE_NAMES:
            found.append(directory)
    return sorted(found)


def infer_module_type(path: str) -> str:
    name = path.rsplit("/", 1)[-1].lower()
    lowered = path.lower()
    if "store" in lowered:
        return "store"
    if "service" in lowered:
        return "service"
    if "api" in name or "routes" in name or "routers" in name:
        return "api"
    if "config" in name or "settings" in name:
        return "config"
    if name in ("shared", "common", "utils"):
        return "shared"
    return "module"


# ===================================================================
# Route extraction
# ===================================================================

def _join_route(prefix: str, path: str) -> str:
    route = "/" + "/".join(p for p in (prefix.strip("/"), path.strip("/")) if p)
    return route


def parse_routes(content: str) -> List[Dict[str, Any]]:
    """FastAPI and Flask route decorators with their handler spans."""
    lines = content.split("\n")
    prefixes: Dict[str, str] = {}
    for line in lines:
        m = _ROUTER_RE.match(line)
        if m:
            prefix = _PREFIX_RE.search(m.group(2))
            prefixes[m.group(1)] = prefix.group(1) if prefix else ""

    routes = []
    for i, line in enumerate(lines):
        methods: List[str] = []
        m = _DECORATOR_RE.match(line)
        if m:
            router, methods, path = m.group(1), [m.group(2).upper()], m.group(3)
        else:
            m = _FLASK_ROUTE_RE.match(line)
            if not m:
                continue
            router, path = m.group(1), m.group(2)
            listed = _FLASK_METHODS_RE.search(m.group(3))
            if listed:
                methods = [x.strip().strip("'\"").upper() for x in listed.group(1).split(",") if x.strip()]
            methods = [x for x in methods if x in ("GET", "POST", "PUT", "PATCH", "DELETE")] or ["GET"]

        handler, end = "unknown", len(lines)
        for j in range(i + 1, min(i + 6, len(lines))):
            d = _DEF_RE.match(lines[j])
            if d:
                handler = d.group(1)
                end = next((k for k in range(j + 1, len(lines)) if _TOP_LEVEL_RE.match(lines[k])), len(lines))
                break
        for method in methods:
            routes.append({
                "method": method,
                "route": _join_route(prefixes.get(router, ""), path),
                "handler": handler,
                "line": i + 1,
                "end": end,
                "excerpt": line_excerpt(line),
            })
    return routes


# ===================================================================
# Pass
# ===================================================================

class PythonServicePass(AnalysisPass):
    name = "python"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        repos = [
            r for r in context.repos
            if any(f.path.endswith(".py") or f.path.rsplit("/", 1)[-1] in ("pyproject.toml", "requirements.txt")
                   for f in r.files)
        ]
        result = collect(map_files(
            lambda repo: self._analyze_repo(context, repo, options),
            repos,
            options.max_workers,
            describe=lambda repo: repo.full_name,
        ))
        endpoints = snapshot.nodes_of_type("endpoint") + [n for n in result.nodes if n.type == "endpoint"]
        pending = snapshot.placeholder_edges()
        result.retargets.update(resolve_placeholders(pending, endpoints))
        logger.debug("Python pass: %d repos, %d placeholders resolved", len(repos), len(result.retargets))
        return result

    def _dependencies(self, context: AnalysisContext, repo: RepoContext) -> List[Tuple[str, str, bool, str]]:
        deps: List[Tuple[str, str, bool, str]] = []
        for f in sorted(repo.files, key=lambda f: f.path):
            name = f.path.rsplit("/", 1)[-1]
            if name not in ("pyproject.toml", "requirements.txt"):
                continue
            text = context.read(repo, f.path)
            if not text:
                continue
            parsed = parse_pyproject(text, f.path) if name == "pyproject.toml" else parse_requirements(text)
            deps.extend((n, v, dev, f.path) for n, v, dev in parsed)
        return deps

    def _analyze_repo(self, context: AnalysisContext, repo: RepoContext, options: AnalyzerOptions) -> PassResult:
        result = PassResult()
        repo_node_id = generate_node_id("repo", repo.id)
        deps = self._dependencies(context, repo)
        framework = detect_python_framework(context, repo, [(n, v, d) for n, v, d, _ in deps])

        packages = detect_packages(repo)
        for path in packages:
            app_id = generate_node_id("app", repo.id, path)
            module_type = infer_module_type(path)
            result.nodes.append(Node(
                id=app_id,
                type="app",
                label=path.rsplit("/", 1)[-1],
                repo_id=repo.id,
                metadata=AppMeta(
                    repo_id=repo.id,
                    app_path=path,
                    framework=framework,
                    has_api_routes=module_type == "api",
                    module_type=module_type,
                ),
            ))
            result.edges.append(make_edge(repo_node_id, app_id, "contains"))
            init_path = f"{path}/__init__.py"
            result.evidence.append(Evidence(
                id=generate_evidence_id("IMPORT_STMT", app_id, init_path),
                kind="IMPORT_STMT",
                node_id=app_id,
                repo_id=repo.id,
                file_path=init_path,
                symbol=path.rsplit("/", 1)[-1],
                metadata={"module_type": module_type},
            ))

        for f in sorted(repo.files, key=lambda f: f.path):
            if not f.path.endswith(".py"):
                continue
            content = context.read(repo, f.path)
            if content:
                result.extend(self._analyze_module(repo, f.path, content, packages, framework))

        if options.include_packages:
            seen = set()
            for name, version, is_dev, source in deps:
                if name not in KEY_PYTHON_PACKAGES or name in seen:
                    continue
                seen.add(name)
                node_id = generate_node_id("package", repo.id, name)
                edge_id = generate_edge_id(repo_node_id, node_id, "depends_on")
                evidence_id = generate_evidence_id("PACKAGE_DEP", node_id, source, symbol=name)
                result.nodes.append(Node(
                    id=node_id,
                    type="package",
                    label=name,
                    repo_id=repo.id,
                    metadata=PackageMeta(
                        name=name, version=version, is_dev_dep=is_dev,
                        category=categorize_python_package(name),
                    ),
                ))
                result.edges.append(make_edge(repo_node_id, node_id, "depends_on", evidence_ids=[evidence_id]))
                result.evidence.append(Evidence(
                    id=evidence_id,
                    kind="PACKAGE_DEP",
                    node_id=node_id,
                    edge_id=edge_id,
                    repo_id=repo.id,
                    file_path=source,
                    symbol=name,
                    excerpt=f'{name} = "{version}"',
                ))
        return result

    def _analyze_module(
        self,
        repo: RepoContext,
        file_path: str,
        content: str,
        packages: List[str],
        framework: Optional[str],
    ) -> PassResult:
        result = PassResult()
        owner = next((p for p in sorted(packages, key=len, reverse=True) if file_path.startswith(p + "/")), None)
        owner_id = generate_node_id("app", repo.id, owner) if owner else generate_node_id("repo", repo.id)

        spans: List[Tuple[int, int, str]] = []
        for route in parse_routes(content):
            node_id = generate_node_id("endpoint", repo.id, route["method"], route["route"])
            spans.append((route["line"], route["end"], node_id))
            result.nodes.append(Node(
                id=node_id,
                type="endpoint",
                label=f"{route['method']} {route['route']}",
                repo_id=repo.id,
                metadata=EndpointMeta(
                    method=route["method"],
                    route=route["route"],
                    file_path=file_path,
                    feature=infer_feature(route["route"]) or infer_feature("/api" + route["route"]),
                    handler=route["handler"],
                ),
            ))
            result.evidence.append(Evidence(
                id=generate_evidence_id("API_HANDLER", node_id, file_path, route["line"]),
                kind="API_HANDLER",
                node_id=node_id,
                repo_id=repo.id,
                file_path=file_path,
                symbol=route["handler"],
                line_start=route["line"],
                line_end=route["end"],
                excerpt=route["excerpt"],
                metadata={"method": route["method"], "framework": framework},
            ))
            if owner:
                result.edges.append(make_edge(owner_id, node_id, "contains"))

        def source_for(line_no: int) -> str:
            for start, end, node_id in spans:
                if start <= line_no <= end:
                    return node_id
            return owner_id

        for i, line in enumerate(content.split("\n")):
            # (service key, label, domain, confidence, url)
            targets: List[Tuple[str, str, str, str, Optional[str]]] = []
            for m in _HTTP_CALL_RE.finditer(line):
                host = host_of(m.group(1))
                if host and host not in ("localhost", "127.0.0.1", "0.0.0.0"):
                    targets.append((host, host, host, "high", m.group(1)))
            sdk = _SDK_IMPORT_RE.match(line)
            if sdk:
                label, domain = SDK_SERVICES[sdk.group(1)]
                targets.append((sdk.group(1), label, domain, "medium", None))

            for key, label, domain, confidence, url in targets:
                service_id = generate_node_id("external_service", key)
                source = source_for(i + 1)
                edge_id = generate_edge_id(source, service_id, "calls_external")
                evidence_id = generate_evidence_id("EXTERNAL_API", source, file_path, i + 1, key)
                if not any(n.id == service_id for n in result.nodes):
                    result.nodes.append(Node(
                        id=service_id,
                        type="external_service",
                        label=label,
                        metadata=ExternalServiceMeta(domain=domain, api_type="rest"),
                    ))
                if not any(e.id == edge_id for e in result.edges):
                    result.edges.append(make_edge(
                        source, service_id, "calls_external",
                        confidence=confidence,
                        metadata={"url": url} if url else {},
                        label=domain,
                        evidence_ids=[evidence_id],
                    ))
                result.evidence.append(Evidence(
                    id=evidence_id,
                    kind="EXTERNAL_API",
                    node_id=source,
                    edge_id=edge_id,
                    repo_id=repo.id,
                    file_path=file_path,
                    symbol=key,
                    line_start=i + 1,
                    excerpt=line_excerpt(line),
                    confidence=confidence,
                    metadata={"domain": domain},
                ))
        return result
