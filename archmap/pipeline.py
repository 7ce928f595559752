"""Graph assembler: runs the passes in order and merges what they return."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .config import ANALYZER_VERSION
from .config_manager import AnalyzerOptions
from .context import AnalysisContext
from .fingerprint import compute_fingerprint
from .models import ArchitectureGraph, Evidence, meets_confidence, to_wire
from .passes import AnalysisPass, default_passes
from .store import GraphStore, MergeStats
from .summary import ArchitectureSummary, summarize

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    graph: ArchitectureGraph
    evidence: List[Evidence]
    summary: ArchitectureSummary
    fingerprint: str
    pass_stats: Dict[str, MergeStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """The persisted shape: graph, flat evidence list, summary, fingerprint."""
        payload = self.graph.to_dict()
        payload["evidence"] = to_wire(self.evidence)
        payload["summary"] = to_wire(self.summary)
        payload["fingerprint"] = self.fingerprint
        return payload


class ArchitecturePipeline:
    """Runs the passes over a fresh store on every call.

    Each pass sees an immutable snapshot of everything merged before it and
    returns new facts; merging happens here, single-threaded, between passes.
    """

    def __init__(self, options: Optional[AnalyzerOptions] = None, passes: Optional[Sequence[AnalysisPass]] = None):
        self.options = options or AnalyzerOptions()
        self.passes = list(passes) if passes is not None else default_passes()

    def run(self, context: AnalysisContext, generated_at: Optional[str] = None) -> AnalysisResult:
        logger.info(
            "Analyzing project %s: %d repos, %d files",
            context.project_id, len(context.repos), sum(len(r.files) for r in context.repos),
        )
        store = GraphStore()
        stats: Dict[str, MergeStats] = {}
        for analysis_pass in self.passes:
            result = analysis_pass.run(context, store.snapshot(), self.options)
            stats[analysis_pass.name] = store.merge(result)
            logger.debug("Pass %s merged: %s", analysis_pass.name, stats[analysis_pass.name])

        edges = store.edges
        if self.options.min_confidence:
            edges = [e for e in edges if meets_confidence(e.confidence, self.options.min_confidence)]

        graph = ArchitectureGraph(
            version=ANALYZER_VERSION,
            generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
            nodes=store.nodes,
            edges=edges,
            features=store.features,
        )
        evidence = store.evidence
        summary = summarize(graph, evidence)
        logger.info(
            "Analysis finished: %d nodes, %d edges, %d features, %d evidence",
            len(graph.nodes), len(graph.edges), len(graph.features), len(evidence),
        )
        return AnalysisResult(
            graph=graph,
            evidence=evidence,
            summary=summary,
            fingerprint=compute_fingerprint(context),
            pass_stats=stats,
        )


def analyze_architecture(
    context: AnalysisContext,
    options: Optional[AnalyzerOptions] = None,
    generated_at: Optional[str] = None,
) -> AnalysisResult:
    """Run the full pipeline over *context* with a fresh store."""
    return ArchitecturePipeline(options).run(context, generated_at=generated_at)
