"""Derived counts and coverage ratios for a finished graph."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .ids import is_placeholder
from .models import ArchitectureGraph, Evidence


@dataclass
class Coverage:
    screens_with_endpoints: int = 0
    screens_total: int = 0
    endpoints_with_data: int = 0
    endpoints_total: int = 0
    tables_with_rls: int = 0
    tables_total: int = 0
    unresolved_placeholders: int = 0
    missing_targets: int = 0
    screen_endpoint_pct: float = 0.0


@dataclass
class ArchitectureSummary:
    total_nodes: int = 0
    total_edges: int = 0
    total_evidence: int = 0
    feature_count: int = 0
    nodes_by_type: Dict[str, int] = field(default_factory=dict)
    edges_by_type: Dict[str, int] = field(default_factory=dict)
    edges_by_confidence: Dict[str, int] = field(default_factory=dict)
    nodes_by_repo: Dict[str, int] = field(default_factory=dict)
    coverage: Coverage = field(default_factory=Coverage)


def _count(keys: List[str]) -> Dict[str, int]:
    return dict(sorted(Counter(keys).items()))


def _pct(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 1) if whole else 0.0


def summarize(graph: ArchitectureGraph, evidence: Sequence[Evidence] = ()) -> ArchitectureSummary:
    node_ids = {n.id for n in graph.nodes}
    by_type = {t: [n for n in graph.nodes if n.type == t] for t in ("screen", "endpoint", "table")}
    endpoint_ids = {n.id for n in by_type["endpoint"]}

    screens_linked = {
        e.source for e in graph.edges
        if e.type == "calls" and e.target in endpoint_ids
    }
    endpoints_with_data = {
        e.source for e in graph.edges
        if e.type in ("reads", "writes") and e.source in endpoint_ids
    }
    screen_ids = {n.id for n in by_type["screen"]}
    linked = len(screens_linked & screen_ids)

    coverage = Coverage(
        screens_with_endpoints=linked,
        screens_total=len(screen_ids),
        endpoints_with_data=len(endpoints_with_data),
        endpoints_total=len(endpoint_ids),
        tables_with_rls=sum(1 for t in by_type["table"] if t.metadata.has_rls),
        tables_total=len(by_type["table"]),
        unresolved_placeholders=sum(1 for e in graph.edges if is_placeholder(e.target)),
        missing_targets=sum(1 for e in graph.edges if not is_placeholder(e.target) and e.target not in node_ids),
        screen_endpoint_pct=_pct(linked, len(screen_ids)),
    )
    return ArchitectureSummary(
        total_nodes=len(graph.nodes),
        total_edges=len(graph.edges),
        total_evidence=len(evidence),
        feature_count=len(graph.features),
        nodes_by_type=_count([n.type for n in graph.nodes]),
        edges_by_type=_count([e.type for e in graph.edges]),
        edges_by_confidence=_count([e.confidence for e in graph.edges]),
        nodes_by_repo=_count([n.repo_id for n in graph.nodes if n.repo_id]),
        coverage=coverage,
    )
