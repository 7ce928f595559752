"""Core data models for the architecture graph: nodes, edges, evidence, features."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union, get_args

from .config import BLOCK_EXCERPT_MAX, LINE_EXCERPT_MAX

NodeType = Literal[
    "repo",
    "app",
    "screen",
    "endpoint",
    "worker",
    "table",
    "function",
    "storage",
    "auth",
    "external_service",
    "deployment",
    "package",
]

EdgeType = Literal[
    "contains",        # repo contains app, app contains screen
    "navigates_to",    # screen navigates to screen
    "calls",           # screen/worker calls endpoint
    "reads",           # endpoint reads table, table references table
    "writes",          # endpoint writes table
    "uses_function",   # endpoint uses DB function
    "authenticates",   # endpoint uses auth
    "stores",          # endpoint stores to storage
    "deploys_to",      # app deploys to deployment
    "depends_on",      # repo depends on package
    "calls_external",  # calls external service
]

Confidence = Literal["high", "medium", "low"]

EvidenceKind = Literal[
    "ROUTE_DEF",
    "API_HANDLER",
    "PAGE_COMPONENT",
    "DB_TABLE",
    "DB_FUNCTION",
    "SQL_MIGRATION",
    "ENV_VAR",
    "FETCH_CALL",
    "SUPABASE_CLIENT",
    "VERCEL_CONFIG",
    "PACKAGE_DEP",
    "IMPORT_STMT",
    "EXTERNAL_API",
    "COMPONENT_USAGE",
    "RLS_POLICY",
]

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "ALL"]
FlowStepType = Literal["screen", "action", "api_call", "db_operation", "external_call"]

NODE_TYPES = get_args(NodeType)
EDGE_TYPES = get_args(EdgeType)
CONFIDENCE_LEVELS = get_args(Confidence)
EVIDENCE_KINDS = get_args(EvidenceKind)
HTTP_METHODS = get_args(HttpMethod)

# Kinds whose excerpt is a whole statement block rather than one line
BLOCK_EVIDENCE_KINDS = ("DB_TABLE", "DB_FUNCTION")

CONFIDENCE_RANK: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}


def meets_confidence(actual: str, minimum: str) -> bool:
    return CONFIDENCE_RANK[actual] >= CONFIDENCE_RANK[minimum]


# ===================================================================
# Node metadata, one shape per node type
# ===================================================================

@dataclass
class RepoMeta:
    owner: str
    name: str
    provider: str
    default_branch: str
    framework: Optional[str] = None
    language: Optional[str] = None


@dataclass
class AppMeta:
    repo_id: str
    app_path: str
    framework: Optional[str] = None
    has_api_routes: bool = False
    has_pages: bool = False
    module_type: Optional[str] = None


@dataclass
class ScreenMeta:
    route: str
    file_path: str
    dynamic: bool = False
    catch_all: bool = False
    parallel: bool = False
    intercepted: bool = False
    layout: Optional[str] = None
    feature: Optional[str] = None


@dataclass
class EndpointMeta:
    method: str
    route: str
    file_path: str
    feature: Optional[str] = None
    handler: Optional[str] = None

    def __post_init__(self) -> None:
        if self.method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {self.method!r}")


@dataclass
class WorkerMeta:
    trigger: Literal["cron", "webhook", "queue", "manual"]
    file_path: str
    schedule: Optional[str] = None


@dataclass
class ColumnRef:
    table: str
    column: str


@dataclass
class Column:
    name: str
    type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    references: Optional[ColumnRef] = None


@dataclass
class TableMeta:
    schema: str
    columns: List[Column] = field(default_factory=list)
    has_rls: bool = False
    policies: List[str] = field(default_factory=list)
    migration_file: Optional[str] = None


@dataclass
class FunctionMeta:
    schema: str
    language: str
    security_definer: bool = False
    returns: Optional[str] = None
    migration_file: Optional[str] = None


@dataclass
class StorageMeta:
    provider: str
    is_public: bool = False
    bucket: Optional[str] = None


@dataclass
class AuthMeta:
    provider: str
    providers: List[str] = field(default_factory=list)
    has_role_system: bool = False


@dataclass
class ExternalServiceMeta:
    domain: str
    api_type: Literal["rest", "graphql", "grpc", "unknown"] = "unknown"
    env_var: Optional[str] = None


@dataclass
class DeploymentMeta:
    platform: str
    env_vars: List[str] = field(default_factory=list)
    region: Optional[str] = None


@dataclass
class PackageMeta:
    name: str
    version: str
    is_dev_dep: bool = False
    category: Literal["framework", "database", "ui", "utility", "testing", "other"] = "other"


NodeMetadata = Union[
    RepoMeta,
    AppMeta,
    ScreenMeta,
    EndpointMeta,
    WorkerMeta,
    TableMeta,
    FunctionMeta,
    StorageMeta,
    AuthMeta,
    ExternalServiceMeta,
    DeploymentMeta,
    PackageMeta,
]

NODE_METADATA: Dict[str, type] = {
    "repo": RepoMeta,
    "app": AppMeta,
    "screen": ScreenMeta,
    "endpoint": EndpointMeta,
    "worker": WorkerMeta,
    "table": TableMeta,
    "function": FunctionMeta,
    "storage": StorageMeta,
    "auth": AuthMeta,
    "external_service": ExternalServiceMeta,
    "deployment": DeploymentMeta,
    "package": PackageMeta,
}


# ===================================================================
# Graph primitives
# ===================================================================

@dataclass(frozen=True)
class Node:
    id: str
    type: str
    label: str
    metadata: NodeMetadata
    repo_id: Optional[str] = None

    def __post_init__(self) -> None:
        expected = NODE_METADATA.get(self.type)
        if expected is None:
            raise ValueError(f"Unknown node type: {self.type!r}")
        if not isinstance(self.metadata, expected):
            raise ValueError(
                f"{self.type} node needs {expected.__name__} metadata, "
                f"got {type(self.metadata).__name__}"
            )

    @property
    def route(self) -> Optional[str]:
        """Route pattern for screens and endpoints, ``None`` otherwise."""
        return getattr(self.metadata, "route", None)


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    type: str
    confidence: str = "high"
    evidence_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    label: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in EDGE_TYPES:
            raise ValueError(f"Unknown edge type: {self.type!r}")
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"Unknown confidence: {self.confidence!r}")


@dataclass
class Evidence:
    """A citation tying a node or edge to a location in the source."""
    id: str
    kind: str
    node_id: str
    confidence: str = "high"
    edge_id: Optional[str] = None
    repo_id: Optional[str] = None
    file_path: Optional[str] = None
    symbol: Optional[str] = None
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    excerpt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in EVIDENCE_KINDS:
            raise ValueError(f"Unknown evidence kind: {self.kind!r}")
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"Unknown confidence: {self.confidence!r}")
        limit = BLOCK_EXCERPT_MAX if self.kind in BLOCK_EVIDENCE_KINDS else LINE_EXCERPT_MAX
        if self.excerpt is not None and len(self.excerpt) > limit:
            self.excerpt = self.excerpt[:limit]


@dataclass
class FlowStep:
    order: int
    type: str
    node_id: str
    label: str
    description: Optional[str] = None
    evidence_ids: List[str] = field(default_factory=list)


@dataclass
class Feature:
    slug: str
    name: str
    description: Optional[str] = None
    flow: List[FlowStep] = field(default_factory=list)
    screens: List[str] = field(default_factory=list)
    endpoints: List[str] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)


@dataclass
class ArchitectureGraph:
    version: str
    generated_at: str
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    features: List[Feature] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_wire(self)


# ===================================================================
# Wire format (camelCase keys, as persisted by the host application)
# ===================================================================

_SNAKE_RE = re.compile(r"_([a-z0-9])")


def _camel(key: str) -> str:
    return _SNAKE_RE.sub(lambda m: m.group(1).upper(), key)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(k) if isinstance(k, str) else k: _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    return value


def to_wire(obj: Any) -> Any:
    """Convert a model dataclass (or list of them) to its JSON wire shape."""
    if isinstance(obj, list):
        return [to_wire(o) for o in obj]
    return _camelize(asdict(obj))
