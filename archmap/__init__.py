"""archmap: evidence-backed architecture discovery for Next.js + Supabase projects."""

__version__ = "1.0.0"

from .config_manager import AnalyzerOptions, FeatureDefinition
from .context import AnalysisContext, RepoContext, RepoFile
from .models import ArchitectureGraph, Edge, Evidence, Feature, FlowStep, Node
from .pipeline import AnalysisResult, ArchitecturePipeline, analyze_architecture

__all__ = [
    "__version__",
    "AnalysisContext",
    "AnalysisResult",
    "AnalyzerOptions",
    "ArchitectureGraph",
    "ArchitecturePipeline",
    "Edge",
    "Evidence",
    "Feature",
    "FeatureDefinition",
    "FlowStep",
    "Node",
    "RepoContext",
    "RepoFile",
    "analyze_architecture",
]
