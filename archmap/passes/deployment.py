"""Deployment pass: hosting platform, environment variables, external services."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Set, Tuple

from ..config import LINE_EXCERPT_MAX
from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext, RepoContext
from ..ids import api_placeholder, generate_edge_id, generate_evidence_id, generate_node_id
from ..models import DeploymentMeta, Evidence, ExternalServiceMeta, Node, WorkerMeta
from ..store import GraphSnapshot, PassResult
from .base import AnalysisPass, app_paths, collect, make_edge, map_files, parse_json, strip_query
from .endpoints import resolve_placeholders
from .inventory import NEXT_CONFIGS

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"process\.env\.(\w+)")
_PUBLIC_ENV_RE = re.compile(r"\bNEXT_PUBLIC_(\w+)")
_ENV_LINE_RE = re.compile(r"^(?:export\s+)?([A-Z_][A-Z0-9_]*)\s*=")
_CONFIG_HINTS = (".env", "next.config", "lib/", "utils/")
ENV_EXAMPLE_NAMES = (".env.example", ".env.local.example")

# (pattern, service, domain, api type); the first matching pattern wins per variable
SERVICE_PATTERNS: List[Tuple["re.Pattern[str]", str, str, str]] = [
    (re.compile(r"SUPABASE.*URL", re.I), "supabase", "supabase.co", "rest"),
    (re.compile(r"OPENAI.*KEY", re.I), "openai", "api.openai.com", "rest"),
    (re.compile(r"ANTHROPIC.*KEY", re.I), "anthropic", "api.anthropic.com", "rest"),
    (re.compile(r"STRIPE.*KEY", re.I), "stripe", "api.stripe.com", "rest"),
    (re.compile(r"GITHUB.*TOKEN|GITHUB.*CLIENT", re.I), "github", "api.github.com", "rest"),
    (re.compile(r"SENDGRID.*KEY", re.I), "sendgrid", "api.sendgrid.com", "rest"),
    (re.compile(r"RESEND.*KEY", re.I), "resend", "api.resend.com", "rest"),
    (re.compile(r"SLACK.*TOKEN", re.I), "slack", "api.slack.com", "rest"),
    (re.compile(r"AWS.*KEY|S3.*KEY", re.I), "aws", "amazonaws.com", "rest"),
    (re.compile(r"REDIS.*URL", re.I), "redis", "redis", "unknown"),
    (re.compile(r"SENTRY.*DSN", re.I), "sentry", "sentry.io", "rest"),
    (re.compile(r"POSTHOG.*KEY", re.I), "posthog", "posthog.com", "rest"),
]

# Platform singletons keyed by the client package that implies them
PLATFORM_SERVICES = [
    ("@supabase/supabase-js", "supabase-platform", "Supabase Platform", "supabase.co", "NEXT_PUBLIC_SUPABASE_URL"),
    ("openai", "openai", "OpenAI API", "api.openai.com", "OPENAI_API_KEY"),
]


def parse_env_file(content: str) -> List[str]:
    names = []
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        m = _ENV_LINE_RE.match(stripped)
        if m:
            names.append(m.group(1))
    return names


def collect_env_vars(context: AnalysisContext, repo: RepoContext) -> List[str]:
    """Sorted, de-duplicated env var names referenced by likely config files."""
    found: Set[str] = set()
    for f in repo.files:
        if not any(hint in f.path for hint in _CONFIG_HINTS):
            continue
        content = context.read(repo, f.path)
        if not content:
            continue
        found.update(_ENV_REF_RE.findall(content))
        found.update(f"NEXT_PUBLIC_{m}" for m in _PUBLIC_ENV_RE.findall(content))
        if f.path.rsplit("/", 1)[-1].startswith(".env"):
            found.update(parse_env_file(content))
    return sorted(found)


def match_service(env_var: str) -> Optional[Tuple[str, str, str]]:
    for pattern, service, domain, api_type in SERVICE_PATTERNS:
        if pattern.search(env_var):
            return service, domain, api_type
    return None


def _dependency_names(manifest: Optional[dict]) -> Set[str]:
    names: Set[str] = set()
    for key in ("dependencies", "devDependencies"):
        section = (manifest or {}).get(key)
        if isinstance(section, dict):
            names.update(section)
    return names


class DeploymentPass(AnalysisPass):
    name = "deployment"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        result = collect(map_files(
            lambda repo: self._analyze_repo(context, snapshot, repo),
            context.repos,
            options.max_workers,
            describe=lambda repo: repo.full_name,
        ))
        result.extend(self._platform_services(context))

        workers = [e for e in result.edges if e.type == "calls"]
        result.retargets.update(resolve_placeholders(workers, snapshot.nodes_of_type("endpoint")))
        return result

    def _analyze_repo(self, context: AnalysisContext, snapshot: GraphSnapshot, repo: RepoContext) -> PassResult:
        result = PassResult()
        apps = app_paths(snapshot, repo.id) or [""]
        paths = {f.path for f in repo.files}

        def has_platform_marker(app_path: str) -> bool:
            prefix = f"{app_path}/" if app_path else ""
            return f"{prefix}vercel.json" in paths or any(prefix + name in paths for name in NEXT_CONFIGS)

        vercel_files = sorted(p for p in paths if p.rsplit("/", 1)[-1] == "vercel.json")
        deployed = [a for a in apps if has_platform_marker(a)]
        if not deployed and not vercel_files:
            self._env_example(context, repo, result, generate_node_id("repo", repo.id))
            return result
        if not deployed:
            deployed = apps

        deploy_id = generate_node_id("deployment", repo.id, "vercel")
        configs = []
        for path in vercel_files:
            data = parse_json(context.read(repo, path), path)
            if data is not None:
                configs.append((path, data))

        env_vars = set(collect_env_vars(context, repo))
        env_vars.update(self._env_example(context, repo, result, deploy_id))
        env_list = sorted(env_vars)
        region = None
        for _, data in configs:
            regions = data.get("regions")
            if isinstance(regions, list) and regions:
                region = str(regions[0])
                break

        result.nodes.append(Node(
            id=deploy_id,
            type="deployment",
            label="Vercel",
            repo_id=repo.id,
            metadata=DeploymentMeta(platform="vercel", env_vars=env_list, region=region),
        ))
        for app_path in deployed:
            result.edges.append(make_edge(generate_node_id("app", repo.id, app_path), deploy_id, "deploys_to"))

        for path, data in configs:
            content = context.read(repo, path) or ""
            result.evidence.append(Evidence(
                id=generate_evidence_id("VERCEL_CONFIG", deploy_id, path),
                kind="VERCEL_CONFIG",
                node_id=deploy_id,
                repo_id=repo.id,
                file_path=path,
                symbol="vercel.json",
                excerpt=content[:LINE_EXCERPT_MAX],
                metadata={k: data[k] for k in ("framework", "regions", "buildCommand") if k in data},
            ))
            self._crons(repo, path, data, content, result)

        seen: Set[str] = set()
        for env_var in env_list:
            match = match_service(env_var)
            if match is None:
                continue
            service, domain, api_type = match
            service_id = generate_node_id("external_service", service)
            edge_id = generate_edge_id(deploy_id, service_id, "calls_external")
            evidence_id = generate_evidence_id("ENV_VAR", service_id, symbol=env_var)
            if service not in seen:
                seen.add(service)
                result.nodes.append(Node(
                    id=service_id,
                    type="external_service",
                    label=service.capitalize(),
                    metadata=ExternalServiceMeta(domain=domain, api_type=api_type, env_var=env_var),
                ))
                result.edges.append(make_edge(
                    deploy_id, service_id, "calls_external",
                    metadata={"env_var": env_var},
                    evidence_ids=[evidence_id],
                ))
            result.evidence.append(Evidence(
                id=evidence_id,
                kind="ENV_VAR",
                node_id=service_id,
                edge_id=edge_id,
                repo_id=repo.id,
                symbol=env_var,
                metadata={"service": service},
            ))

        logger.debug("Deployment for %s: %d env vars, %d services", repo.full_name, len(env_list), len(seen))
        return result

    def _env_example(self, context: AnalysisContext, repo: RepoContext, result: PassResult, node_id: str) -> List[str]:
        names: List[str] = []
        for f in repo.files:
            if f.path.rsplit("/", 1)[-1] not in ENV_EXAMPLE_NAMES:
                continue
            content = context.read(repo, f.path)
            if not content:
                continue
            found = parse_env_file(content)
            names.extend(found)
            result.evidence.append(Evidence(
                id=generate_evidence_id("ENV_VAR", node_id, f.path),
                kind="ENV_VAR",
                node_id=node_id,
                repo_id=repo.id,
                file_path=f.path,
                symbol=f.path.rsplit("/", 1)[-1],
                excerpt=content.strip()[:LINE_EXCERPT_MAX],
                metadata={"env_vars": found},
            ))
        return names

    def _crons(self, repo: RepoContext, path: str, data: dict, content: str, result: PassResult) -> None:
        crons = data.get("crons")
        if not isinstance(crons, list):
            return
        app_dir = path.rsplit("/", 1)[0] if "/" in path else ""
        app_id = generate_node_id("app", repo.id, app_dir)
        for entry in crons:
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
                logger.warning("Skipping malformed cron entry in %s: %r", path, entry)
                continue
            cron_path = strip_query(entry["path"])
            schedule = entry.get("schedule")
            worker_id = generate_node_id("worker", repo.id, "cron", cron_path)
            target = api_placeholder(cron_path)
            edge_id = generate_edge_id(worker_id, target, "calls", "GET")
            evidence_id = generate_evidence_id("VERCEL_CONFIG", worker_id, path, symbol=cron_path)
            line = next((i + 1 for i, text in enumerate(content.split("\n")) if entry["path"] in text), None)

            result.nodes.append(Node(
                id=worker_id,
                type="worker",
                label=f"cron {cron_path}",
                repo_id=repo.id,
                metadata=WorkerMeta(trigger="cron", file_path=path, schedule=str(schedule) if schedule else None),
            ))
            result.edges.append(make_edge(app_id, worker_id, "contains"))
            result.edges.append(make_edge(
                worker_id, target, "calls",
                metadata={"method": "GET", "path": cron_path, "repo_id": repo.id},
                label="GET",
                evidence_ids=[evidence_id],
                qualifier="GET",
            ))
            result.evidence.append(Evidence(
                id=evidence_id,
                kind="VERCEL_CONFIG",
                node_id=worker_id,
                edge_id=edge_id,
                repo_id=repo.id,
                file_path=path,
                symbol=cron_path,
                line_start=line,
                excerpt=content.split("\n")[line - 1].strip() if line else None,
                metadata={"schedule": schedule},
            ))

    def _platform_services(self, context: AnalysisContext) -> PassResult:
        result = PassResult()
        for package, slug, label, domain, env_var in PLATFORM_SERVICES:
            for repo in context.repos:
                manifest_path = next(
                    (f.path for f in sorted(repo.files, key=lambda f: f.path)
                     if f.path.rsplit("/", 1)[-1] == "package.json"
                     and package in _dependency_names(parse_json(context.read(repo, f.path), f.path))),
                    None,
                )
                if manifest_path is None:
                    continue
                node_id = generate_node_id("external_service", slug)
                result.nodes.append(Node(
                    id=node_id,
                    type="external_service",
                    label=label,
                    metadata=ExternalServiceMeta(domain=domain, api_type="rest", env_var=env_var),
                ))
                result.evidence.append(Evidence(
                    id=generate_evidence_id("PACKAGE_DEP", node_id, manifest_path, symbol=package),
                    kind="PACKAGE_DEP",
                    node_id=node_id,
                    repo_id=repo.id,
                    file_path=manifest_path,
                    symbol=package,
                ))
                break
        return result
