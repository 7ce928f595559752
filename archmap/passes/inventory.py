"""Inventory pass: repositories, deployable apps and notable packages."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, List, Optional

from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext, RepoContext
from ..ids import generate_edge_id, generate_evidence_id, generate_node_id
from ..models import AppMeta, Evidence, Node, PackageMeta, RepoMeta
from ..store import GraphSnapshot, PassResult
from .base import AnalysisPass, collect, make_edge, map_files, parse_json

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection tables
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "rb": "ruby",
    "php": "php",
    "cs": "csharp",
    "cpp": "cpp",
    "c": "c",
    "sql": "sql",
    "md": "markdown",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
}

NEXT_CONFIGS = ("next.config.js", "next.config.mjs", "next.config.ts")

# Checked in order; the first declared dependency wins
MANIFEST_FRAMEWORKS = [
    ("next", "next"),
    ("express", "express"),
    ("fastify", "fastify"),
    ("@nestjs/core", "nestjs"),
    ("react", "react"),
    ("vue", "vue"),
    ("svelte", "svelte"),
]

MARKER_FRAMEWORKS = [
    ("manage.py", "django"),
    ("requirements.txt", "python"),
    ("pyproject.toml", "python"),
    ("go.mod", "go"),
    ("Cargo.toml", "rust"),
]

KEY_PACKAGES = [
    "@supabase/supabase-js",
    "@supabase/ssr",
    "next",
    "react",
    "express",
    "fastify",
    "@radix-ui/react-dialog",
    "tailwindcss",
    "openai",
    "zod",
]

_APP_DIR_RE = re.compile(r"^(apps|packages)/([^/]+)/")
_VERSION_PREFIX_RE = re.compile(r"^[\^~]")


def language_for_path(path: str) -> Optional[str]:
    if "." not in path.rsplit("/", 1)[-1]:
        return None
    return LANGUAGE_MAP.get(path.rsplit(".", 1)[-1].lower())


def categorize_package(name: str) -> str:
    if "supabase" in name:
        return "database"
    if name in ("next", "express", "fastify", "react"):
        return "framework"
    if "radix" in name or "tailwind" in name:
        return "ui"
    if "vitest" in name or "jest" in name or name == "pytest":
        return "testing"
    if name in ("zod", "date-fns", "clsx"):
        return "utility"
    return "other"


def _manifest_deps(manifest: Optional[dict]) -> Dict[str, str]:
    if not manifest:
        return {}
    deps: Dict[str, str] = {}
    for key in ("devDependencies", "dependencies"):
        section = manifest.get(key)
        if isinstance(section, dict):
            deps.update({str(k): str(v) for k, v in section.items()})
    return deps


def framework_from_manifest(manifest: Optional[dict]) -> Optional[str]:
    deps = _manifest_deps(manifest)
    for dep, framework in MANIFEST_FRAMEWORKS:
        if dep in deps:
            return framework
    return None


def detect_framework(context: AnalysisContext, repo: RepoContext, root: str = "") -> Optional[str]:
    """Best guess at the web framework under *root* (``None`` if unknown).

    Marker files are checked first, then the ``package.json`` dependencies,
    then language-level markers.
    """
    prefix = f"{root}/" if root else ""
    if any(repo.has_file(prefix + name) for name in NEXT_CONFIGS):
        return "next"

    manifest_path = prefix + "package.json"
    if repo.has_file(manifest_path):
        found = framework_from_manifest(parse_json(context.read(repo, manifest_path), manifest_path))
        if found:
            return found

    for marker, framework in MARKER_FRAMEWORKS:
        if repo.has_file(prefix + marker):
            return framework
    return None


def detect_language(repo: RepoContext) -> Optional[str]:
    """Dominant language by file count; ties go to the first language seen."""
    counts: Counter = Counter()
    for f in repo.files:
        lang = f.language or language_for_path(f.path)
        if lang:
            counts[lang] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def detect_app_paths(repo: RepoContext) -> List[str]:
    """``apps/*`` and ``packages/*`` directories, or ``[""]`` for a single app."""
    found: List[str] = []
    for f in repo.files:
        m = _APP_DIR_RE.match(f.path)
        if m:
            path = f"{m.group(1)}/{m.group(2)}"
            if path not in found:
                found.append(path)
    return sorted(found) or [""]


def _is_page(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    return name.startswith("page.") and name.split(".")[-1] in ("tsx", "ts", "jsx", "js")


# ===================================================================
# Pass
# ===================================================================

class InventoryPass(AnalysisPass):
    name = "inventory"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        results = map_files(
            lambda repo: self._analyze_repo(context, repo, options),
            context.repos,
            options.max_workers,
            describe=lambda repo: repo.full_name,
        )
        return collect(results)

    def _analyze_repo(self, context: AnalysisContext, repo: RepoContext, options: AnalyzerOptions) -> PassResult:
        result = PassResult()
        repo_node_id = generate_node_id("repo", repo.id)
        result.nodes.append(Node(
            id=repo_node_id,
            type="repo",
            label=repo.full_name,
            repo_id=repo.id,
            metadata=RepoMeta(
                owner=repo.owner,
                name=repo.name,
                provider=repo.provider,
                default_branch=repo.default_branch,
                framework=detect_framework(context, repo),
                language=detect_language(repo),
            ),
        ))

        manifests: List[str] = []
        for app_path in detect_app_paths(repo):
            app_id = generate_node_id("app", repo.id, app_path)
            prefix = f"{app_path}/" if app_path else ""
            app_files = [f.path for f in repo.files if f.path.startswith(prefix)]
            result.nodes.append(Node(
                id=app_id,
                type="app",
                label=app_path or repo.name,
                repo_id=repo.id,
                metadata=AppMeta(
                    repo_id=repo.id,
                    app_path=app_path,
                    framework=detect_framework(context, repo, app_path),
                    has_api_routes=any("/api/" in p for p in app_files),
                    has_pages=any(_is_page(p) for p in app_files),
                ),
            ))
            # Structural fact, so no citation
            result.edges.append(make_edge(repo_node_id, app_id, "contains"))

            manifest_path = prefix + "package.json"
            if repo.has_file(manifest_path):
                manifests.append(manifest_path)
                result.evidence.append(Evidence(
                    id=generate_evidence_id("PACKAGE_DEP", app_id, manifest_path),
                    kind="PACKAGE_DEP",
                    node_id=app_id,
                    repo_id=repo.id,
                    file_path=manifest_path,
                    symbol="package.json",
                ))

        if options.include_packages:
            if repo.has_file("package.json") and "package.json" not in manifests:
                manifests.insert(0, "package.json")
            for manifest_path in manifests:
                result.extend(self._packages(context, repo, repo_node_id, manifest_path))

        logger.debug(
            "Inventory for %s: %d nodes, %d edges",
            repo.full_name, len(result.nodes), len(result.edges),
        )
        return result

    def _packages(self, context: AnalysisContext, repo: RepoContext, repo_node_id: str, manifest_path: str) -> PassResult:
        result = PassResult()
        manifest = parse_json(context.read(repo, manifest_path), manifest_path)
        if manifest is None:
            return result
        deps = manifest.get("dependencies") or {}
        dev_deps = manifest.get("devDependencies") or {}
        if not isinstance(deps, dict) or not isinstance(dev_deps, dict):
            logger.warning("Skipping malformed dependency tables in %s", manifest_path)
            return result

        for name in KEY_PACKAGES:
            version = deps.get(name) or dev_deps.get(name)
            if not version:
                continue
            node_id = generate_node_id("package", repo.id, name)
            edge_id = generate_edge_id(repo_node_id, node_id, "depends_on")
            evidence_id = generate_evidence_id("PACKAGE_DEP", node_id, manifest_path, symbol=name)
            result.nodes.append(Node(
                id=node_id,
                type="package",
                label=name,
                repo_id=repo.id,
                metadata=PackageMeta(
                    name=name,
                    version=_VERSION_PREFIX_RE.sub("", str(version)),
                    is_dev_dep=name not in deps,
                    category=categorize_package(name),
                ),
            ))
            result.edges.append(make_edge(repo_node_id, node_id, "depends_on", evidence_ids=[evidence_id]))
            result.evidence.append(Evidence(
                id=evidence_id,
                kind="PACKAGE_DEP",
                node_id=node_id,
                edge_id=edge_id,
                repo_id=repo.id,
                file_path=manifest_path,
                symbol=name,
                excerpt=f'"{name}": "{version}"',
            ))
        return result
