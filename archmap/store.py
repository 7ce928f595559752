"""In-memory graph store and evidence ledger owned by the pipeline.

Passes never mutate the store. They read an immutable :class:`GraphSnapshot`
and return a :class:`PassResult`; the pipeline merges results one pass at a
time so merge order and deduplication stay explicit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .ids import is_placeholder
from .models import Edge, Evidence, Feature, Node

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """New facts produced by one pass.

    ``retargets`` maps an existing edge ID to a resolved target node ID; the
    store applies it during merge (used for placeholder resolution).
    """
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    retargets: Dict[str, str] = field(default_factory=dict)
    features: List[Feature] = field(default_factory=list)

    def extend(self, other: "PassResult") -> None:
        self.nodes.extend(other.nodes)
        self.edges.extend(other.edges)
        self.evidence.extend(other.evidence)
        self.retargets.update(other.retargets)
        self.features.extend(other.features)


@dataclass
class MergeStats:
    nodes_added: int = 0
    nodes_skipped: int = 0
    edges_added: int = 0
    edges_skipped: int = 0
    evidence_added: int = 0
    retargeted: int = 0


class EvidenceLedger:
    """Append-only collection of citations, addressable by ID."""

    def __init__(self) -> None:
        self._entries: Dict[str, Evidence] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, evidence_id: str) -> bool:
        return evidence_id in self._entries

    def append(self, evidence: Evidence) -> bool:
        if evidence.id in self._entries:
            return False
        self._entries[evidence.id] = evidence
        return True

    def get(self, evidence_id: str) -> Optional[Evidence]:
        return self._entries.get(evidence_id)

    def all(self) -> List[Evidence]:
        return list(self._entries.values())

    def for_node(self, node_id: str) -> List[Evidence]:
        return [e for e in self._entries.values() if e.node_id == node_id]

    def for_edge(self, edge_id: str) -> List[Evidence]:
        return [e for e in self._entries.values() if e.edge_id == edge_id]


@dataclass(frozen=True)
class GraphSnapshot:
    """Read-only view of the store handed to each pass."""
    nodes: Mapping[str, Node]
    edges: Mapping[str, Edge]
    evidence: Tuple[Evidence, ...]

    def nodes_of_type(self, node_type: str) -> List[Node]:
        return [n for n in self.nodes.values() if n.type == node_type]

    def placeholder_edges(self) -> List[Edge]:
        return [e for e in self.edges.values() if is_placeholder(e.target)]


class GraphStore:
    """Nodes and edges keyed by deterministic ID, plus the evidence ledger.

    Deduplication is first-write-wins: a later node or edge whose ID already
    exists is dropped.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._features: Dict[str, Feature] = {}
        self.ledger = EvidenceLedger()

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    @property
    def evidence(self) -> List[Evidence]:
        return self.ledger.all()

    @property
    def features(self) -> List[Feature]:
        return list(self._features.values())

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=MappingProxyType(dict(self._nodes)),
            edges=MappingProxyType(dict(self._edges)),
            evidence=tuple(self.ledger.all()),
        )

    def add_nodes(self, nodes: Iterable[Node], stats: MergeStats) -> None:
        for node in nodes:
            if node.id in self._nodes:
                stats.nodes_skipped += 1
                continue
            self._nodes[node.id] = node
            stats.nodes_added += 1

    def add_edges(self, edges: Iterable[Edge], stats: MergeStats) -> None:
        for edge in edges:
            if edge.id in self._edges:
                stats.edges_skipped += 1
                continue
            self._edges[edge.id] = edge
            stats.edges_added += 1

    def apply_retargets(self, retargets: Mapping[str, str], stats: MergeStats) -> None:
        for edge_id, target in retargets.items():
            edge = self._edges.get(edge_id)
            if edge is None:
                logger.debug("Retarget for unknown edge %s ignored", edge_id)
                continue
            if edge.target != target:
                self._edges[edge_id] = replace(edge, target=target)
                stats.retargeted += 1

    def merge(self, result: PassResult) -> MergeStats:
        stats = MergeStats()
        self.add_nodes(result.nodes, stats)
        self.add_edges(result.edges, stats)
        # Retargets may address edges from earlier passes or this one
        self.apply_retargets(result.retargets, stats)
        for ev in result.evidence:
            if self.ledger.append(ev):
                stats.evidence_added += 1
        for feature in result.features:
            self._features.setdefault(feature.slug, feature)
        return stats
