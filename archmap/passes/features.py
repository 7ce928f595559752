"""Feature extraction: cluster the finished graph into named user flows.

Stage one walks a curated catalogue of feature definitions; a definition is
only emitted when at least one screen matches it. Stage two groups the
screens nobody claimed by their first two route segments and names every
group of two or more.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from ..config import ACTION_STEP_EVIDENCE_MAX, SCREEN_STEP_EVIDENCE_MAX
from ..config_manager import AnalyzerOptions, FeatureDefinition
from ..context import AnalysisContext
from ..models import Edge, Evidence, Feature, FlowStep, Node
from ..store import GraphSnapshot, PassResult
from .base import AnalysisPass, compile_route_pattern

logger = logging.getLogger(__name__)

FEATURE_DEFINITIONS: List[FeatureDefinition] = [
    FeatureDefinition(
        slug="auth",
        name="Authentication",
        route_patterns=["/login", "/signup", "/auth"],
        endpoint_patterns=["/api/auth"],
        tables=["profiles", "github_connections"],
        description="User authentication and session management",
    ),
    FeatureDefinition(
        slug="projects",
        name="Project Management",
        route_patterns=["/projects"],
        endpoint_patterns=["/api/projects"],
        tables=["projects", "project_members"],
        description="Create and manage projects",
    ),
    FeatureDefinition(
        slug="repositories",
        name="Repository Management",
        route_patterns=["/repos", "/projects/[id]/repos"],
        endpoint_patterns=["/api/repos", "/api/projects/[id]/repos"],
        tables=["repos", "repo_files", "chunks"],
        description="Connect and sync GitHub repositories",
    ),
    FeatureDefinition(
        slug="tasks",
        name="Task Management",
        route_patterns=["/tasks", "/projects/[id]/tasks"],
        endpoint_patterns=["/api/projects/[id]/tasks"],
        tables=["tasks", "task_updates", "sprints"],
        description="Kanban board for task tracking",
    ),
    FeatureDefinition(
        slug="chat",
        name="LanePilot Chat",
        route_patterns=["/chat", "/projects/[id]/chat"],
        endpoint_patterns=["/api/projects/[id]/chat"],
        tables=["chat_threads", "chat_messages", "prompt_artifacts"],
        description="AI-powered chat for generating context packs",
    ),
    FeatureDefinition(
        slug="documentation",
        name="Documentation",
        route_patterns=["/docs", "/projects/[id]/docs"],
        endpoint_patterns=["/api/projects/[id]/docs"],
        tables=["doc_pages", "decision_logs"],
        description="Project documentation and decision logs",
    ),
    FeatureDefinition(
        slug="search",
        name="Code Search",
        route_patterns=["/search", "/projects/[id]/search"],
        endpoint_patterns=["/api/projects/[id]/search"],
        tables=["chunks"],
        description="Semantic and keyword search across repos",
    ),
    FeatureDefinition(
        slug="invitations",
        name="Team Invitations",
        route_patterns=["/invite", "/settings"],
        endpoint_patterns=["/api/invitations", "/api/projects/[id]/invitations"],
        tables=["project_invitations", "project_members"],
        description="Invite team members to projects",
    ),
    FeatureDefinition(
        slug="architecture-map",
        name="Architecture Map",
        route_patterns=["/map", "/projects/[id]/map"],
        endpoint_patterns=["/api/projects/[id]/map"],
        tables=["architecture_snapshots", "architecture_evidence"],
        description="Visual architecture discovery and mapping",
    ),
]

SERVICE_EDGE_TYPES = ("calls_external", "authenticates", "stores")
SERVICE_NODE_TYPES = ("external_service", "auth", "storage")
_DYNAMIC_SEGMENT_RE = re.compile(r"\[[^\]]*\]")


def catalogue(extra: Sequence[FeatureDefinition] = ()) -> List[FeatureDefinition]:
    """Built-in definitions, with configured ones replacing same-slug entries."""
    overrides = {d.slug: d for d in extra}
    merged = [overrides.pop(d.slug, d) for d in FEATURE_DEFINITIONS]
    return merged + [d for d in extra if d.slug in overrides]


def route_depth(route: str) -> int:
    return len([s for s in route.split("/") if s])


def title_case(slug: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in slug.split("-") if part)


class _GraphIndex:
    """Lookup tables over a snapshot, built once per extraction."""

    def __init__(self, snapshot: GraphSnapshot) -> None:
        self.nodes = snapshot.nodes
        self.outgoing: Dict[str, List[Edge]] = {}
        for edge in snapshot.edges.values():
            self.outgoing.setdefault(edge.source, []).append(edge)
        self.by_node: Dict[str, List[Evidence]] = {}
        self.by_edge: Dict[str, List[Evidence]] = {}
        for ev in snapshot.evidence:
            self.by_node.setdefault(ev.node_id, []).append(ev)
            if ev.edge_id:
                self.by_edge.setdefault(ev.edge_id, []).append(ev)

    def matching(self, node_type: str, patterns: Sequence[str]) -> List[Node]:
        compiled = [compile_route_pattern(p, prefix=True) for p in patterns]
        return [
            n for n in self.nodes.values()
            if n.type == node_type and n.route and any(c.match(n.route) for c in compiled)
        ]

    def node_evidence(self, node_id: str, limit: int) -> List[str]:
        return [e.id for e in self.by_node.get(node_id, [])[:limit]]

    def edge_evidence(self, edge: Edge, limit: int) -> List[str]:
        ids = [e.id for e in self.by_edge.get(edge.id, [])]
        for ev_id in edge.evidence_ids:
            if ev_id not in ids:
                ids.append(ev_id)
        return ids[:limit]

    def services(self, sources: Sequence[Node]) -> List[str]:
        found: List[str] = []
        for node in sources:
            for edge in self.outgoing.get(node.id, []):
                target = self.nodes.get(edge.target)
                if (edge.type in SERVICE_EDGE_TYPES and target is not None
                        and target.type in SERVICE_NODE_TYPES and target.id not in found):
                    found.append(target.id)
        return found

    def tables_touched(self, endpoints: Sequence[Node]) -> List[Node]:
        found: List[Node] = []
        for ep in endpoints:
            for edge in self.outgoing.get(ep.id, []):
                target = self.nodes.get(edge.target)
                if edge.type in ("reads", "writes") and target is not None and target.type == "table" \
                        and target not in found:
                    found.append(target)
        return found


def build_flow(
    index: _GraphIndex,
    screens: Sequence[Node],
    endpoints: Sequence[Node],
    tables: Sequence[Node],
) -> List[FlowStep]:
    """Screens by depth, each followed by its calls, then the data operations."""
    endpoint_ids = {n.id for n in endpoints}
    table_ids = {n.id for n in tables}
    flow: List[FlowStep] = []

    def add(step_type: str, node: Node, label: str, description: str, evidence_ids: List[str]) -> None:
        flow.append(FlowStep(
            order=len(flow) + 1,
            type=step_type,
            node_id=node.id,
            label=label,
            description=description,
            evidence_ids=evidence_ids,
        ))

    for screen in sorted(screens, key=lambda n: (route_depth(n.route or ""), n.route)):
        add("screen", screen, f"View {screen.label}", f"Navigate to {screen.route}",
            index.node_evidence(screen.id, SCREEN_STEP_EVIDENCE_MAX))
        for edge in index.outgoing.get(screen.id, []):
            if edge.type != "calls" or edge.target not in endpoint_ids:
                continue
            endpoint = index.nodes[edge.target]
            add("api_call", endpoint, f"Call {endpoint.label}",
                f"{endpoint.metadata.method} {endpoint.route}",
                index.edge_evidence(edge, ACTION_STEP_EVIDENCE_MAX))

    for endpoint in endpoints:
        for edge in index.outgoing.get(endpoint.id, []):
            if edge.type not in ("reads", "writes") or edge.target not in table_ids:
                continue
            table = index.nodes[edge.target]
            verb = "Read from" if edge.type == "reads" else "Write to"
            add("db_operation", table, f"{verb} {table.label}",
                f"{edge.label or edge.type} operation",
                index.edge_evidence(edge, ACTION_STEP_EVIDENCE_MAX))
    return flow


class FeatureExtractionPass(AnalysisPass):
    name = "features"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        return PassResult(features=self.extract(snapshot, options.extra_features))

    def extract(self, snapshot: GraphSnapshot, extra: Sequence[FeatureDefinition] = ()) -> List[Feature]:
        index = _GraphIndex(snapshot)
        features: List[Feature] = []

        for definition in catalogue(extra):
            screens = index.matching("screen", definition.route_patterns)
            if not screens:
                continue
            endpoints = index.matching("endpoint", definition.endpoint_patterns)
            tables = [n for n in snapshot.nodes.values() if n.type == "table" and n.label in definition.tables]
            features.append(Feature(
                slug=definition.slug,
                name=definition.name,
                description=definition.description,
                flow=build_flow(index, screens, endpoints, tables),
                screens=[n.id for n in screens],
                endpoints=[n.id for n in endpoints],
                tables=[n.id for n in tables],
                services=index.services(screens + endpoints),
            ))

        features.extend(self._auto_detect(index, snapshot, features))
        logger.debug("Feature extraction: %d features", len(features))
        return features

    def _auto_detect(self, index: _GraphIndex, snapshot: GraphSnapshot, existing: List[Feature]) -> List[Feature]:
        covered = {sid for f in existing for sid in f.screens}
        taken = {f.slug for f in existing}
        groups: Dict[str, List[Node]] = {}
        for screen in snapshot.nodes_of_type("screen"):
            if screen.id in covered or not screen.route:
                continue
            segments = [s for s in screen.route.split("/") if s]
            groups.setdefault("/" + "/".join(segments[:2]), []).append(screen)

        found: List[Feature] = []
        for prefix, screens in groups.items():
            if len(screens) < 2:
                continue
            slug = _DYNAMIC_SEGMENT_RE.sub("param", prefix.replace("/", "-").lstrip("-")) or "home"
            if slug in taken:
                logger.debug("Auto-detected feature %s collides with an existing slug", slug)
                continue
            taken.add(slug)
            endpoints = index.matching("endpoint", [f"/api{prefix}", prefix]) if prefix != "/" else []
            tables = index.tables_touched(endpoints)
            found.append(Feature(
                slug=slug,
                name=title_case(slug) or "Home",
                description=f"Auto-detected feature from route pattern {prefix}",
                flow=build_flow(index, screens, endpoints, tables),
                screens=[n.id for n in screens],
                endpoints=[n.id for n in endpoints],
                tables=[n.id for n in tables],
                services=index.services(screens + endpoints),
            ))
        return found


def feature_for(slug: str, features: Sequence[Feature]) -> Optional[Feature]:
    return next((f for f in features if f.slug == slug), None)
