"""Data-model pass: tables, policies and functions from SQL migrations.

Migration files are parsed one at a time with sequential regex scans (there
is no SQL grammar here). The per-file facts are then folded together, so a
policy or ``ENABLE ROW LEVEL SECURITY`` statement in a later migration still
lands on the table created in an earlier one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..config import BLOCK_EXCERPT_MAX, LINE_EXCERPT_MAX
from ..config_manager import AnalyzerOptions
from ..context import AnalysisContext
from ..ids import generate_edge_id, generate_evidence_id, generate_node_id
from ..models import AuthMeta, Column, ColumnRef, Evidence, FunctionMeta, Node, StorageMeta, TableMeta
from ..store import GraphSnapshot, PassResult
from .base import AnalysisPass, make_edge, map_files

logger = logging.getLogger(__name__)

MIGRATION_RE = re.compile(r"(?:^|/)migrations/(?:.*/)?[^/]+\.sql$")
INTERNAL_SCHEMAS = {
    "auth", "storage", "extensions", "realtime", "pg_catalog",
    "information_schema", "supabase_functions", "graphql", "vault",
}
FUNCTION_EXCERPT_MAX = 400

_COMMENT_RE = re.compile(r"--[^\n]*")
_TABLE_RE = re.compile(
    r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(?:(\w+)\.)?(\w+)\s*\(([\s\S]*?)\)\s*;",
    re.IGNORECASE,
)
_ADD_COLUMN_RE = re.compile(
    r"ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?(?:(\w+)\.)?(\w+)\s+ADD\s+COLUMN\s+(?:IF\s+NOT\s+EXISTS\s+)?([^;]+);",
    re.IGNORECASE,
)
_RLS_RE = re.compile(
    r"ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?(?:(\w+)\.)?(\w+)\s+ENABLE\s+ROW\s+LEVEL\s+SECURITY",
    re.IGNORECASE,
)
_POLICY_RE = re.compile(
    r'CREATE\s+POLICY\s+"([^"]+)"\s+ON\s+(?:(\w+)\.)?(\w+)\s+(?:AS\s+\w+\s+)?(?:FOR\s+(\w+)\s+)?',
    re.IGNORECASE,
)
_FUNCTION_RE = re.compile(
    r"CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+(?:(\w+)\.)?(\w+)\s*\([^;]*?\)\s*"
    r"RETURNS\s+(SETOF\s+[\w.]+|TABLE|[\w.]+(?:\[\])?)",
    re.IGNORECASE,
)
_DOLLAR_RE = re.compile(r"\$(\w*)\$")
_LANGUAGE_RE = re.compile(r"LANGUAGE\s+'?(\w+)'?", re.IGNORECASE)
_COLUMN_RE = re.compile(r"^(\w+)\s+([A-Za-z]+(?:\s+precision|\s+varying)?(?:\([^)]+\))?(?:\[\])?)", re.IGNORECASE)
_REFERENCES_RE = re.compile(r"REFERENCES\s+(?:(\w+)\.)?(\w+)\s*\(\s*(\w+)\s*\)", re.IGNORECASE)
_BUCKET_RE = re.compile(r"INSERT\s+INTO\s+storage\.buckets\s*\([^)]*\)\s*VALUES\s*\(\s*'([^']+)'", re.IGNORECASE)
_PUBLIC_BUCKET_RE = re.compile(r"public\s*=\s*true|INSERT\s+INTO\s+storage\.buckets[^;]*\btrue\b", re.IGNORECASE)

_NON_COLUMN_PREFIXES = ("CONSTRAINT", "PRIMARY KEY", "UNIQUE", "FOREIGN KEY", "CHECK", "EXCLUDE", "LIKE")
_AUTH_PROVIDERS = [("github", ("github",)), ("google", ("google",)), ("email", ("email", "password"))]


@dataclass
class ParsedTable:
    name: str
    schema: str
    columns: List[Column]
    file_path: str
    line: int
    excerpt: str
    auth_refs: Set[str] = field(default_factory=set)


@dataclass
class ParsedPolicy:
    name: str
    table: str
    operation: str
    file_path: str
    line: int
    excerpt: str


@dataclass
class ParsedFunction:
    name: str
    schema: str
    language: str
    security_definer: bool
    returns: str
    file_path: str
    line: int
    excerpt: str


@dataclass
class MigrationFacts:
    """Everything one migration file declares."""
    file_path: str
    repo_id: str
    text: str
    tables: List[ParsedTable] = field(default_factory=list)
    added_columns: List[Tuple[str, Column, Optional[str]]] = field(default_factory=list)
    rls: List[Tuple[str, int, str]] = field(default_factory=list)
    policies: List[ParsedPolicy] = field(default_factory=list)
    functions: List[ParsedFunction] = field(default_factory=list)


# ===================================================================
# Parsing
# ===================================================================

def _line_of(text: str, pos: int) -> int:
    return text.count("\n", 0, pos) + 1


def _statement(text: str, start: int, limit: int) -> str:
    end = text.find(";", start)
    return text[start:end + 1 if end >= 0 else len(text)][:limit]


def split_definitions(body: str) -> List[str]:
    """Split a column list on commas that are not inside parentheses."""
    parts, depth, current = [], 0, []
    for ch in body:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def parse_column(definition: str) -> Tuple[Optional[Column], Optional[str]]:
    """Parse one column definition; also return the referenced schema, if any."""
    text = " ".join(definition.split())
    upper = text.upper()
    if upper.startswith(_NON_COLUMN_PREFIXES):
        return None, None
    m = _COLUMN_RE.match(text)
    if not m:
        return None, None
    name = m.group(1).strip('"')
    ref = _REFERENCES_RE.search(text)
    column = Column(
        name=name,
        type=m.group(2),
        nullable="NOT NULL" not in upper and "PRIMARY KEY" not in upper,
        is_primary_key="PRIMARY KEY" in upper,
        is_foreign_key=ref is not None,
        references=ColumnRef(table=ref.group(2), column=ref.group(3)) if ref else None,
    )
    return column, (ref.group(1) if ref else None)


def parse_migration(file_path: str, repo_id: str, raw: str) -> MigrationFacts:
    # Comments are blanked rather than removed so offsets still map to lines
    text = _COMMENT_RE.sub(lambda m: " " * len(m.group(0)), raw)
    facts = MigrationFacts(file_path=file_path, repo_id=repo_id, text=raw)

    for m in _TABLE_RE.finditer(text):
        schema = (m.group(1) or "public").lower()
        name = m.group(2)
        if name.startswith("_") or schema in INTERNAL_SCHEMAS:
            continue
        columns: List[Column] = []
        auth_refs: Set[str] = set()
        for definition in split_definitions(m.group(3)):
            column, ref_schema = parse_column(definition)
            if column is None:
                continue
            columns.append(column)
            if ref_schema and ref_schema.lower() == "auth" and column.references:
                auth_refs.add(column.name)
        facts.tables.append(ParsedTable(
            name=name,
            schema=schema,
            columns=columns,
            file_path=file_path,
            line=_line_of(text, m.start()),
            excerpt=raw[m.start():m.end()][:BLOCK_EXCERPT_MAX],
            auth_refs=auth_refs,
        ))

    for m in _ADD_COLUMN_RE.finditer(text):
        column, ref_schema = parse_column(m.group(3))
        if column is not None:
            facts.added_columns.append((m.group(2), column, ref_schema))

    for m in _RLS_RE.finditer(text):
        facts.rls.append((m.group(2), _line_of(text, m.start()), _statement(raw, m.start(), LINE_EXCERPT_MAX)))

    for m in _POLICY_RE.finditer(text):
        facts.policies.append(ParsedPolicy(
            name=m.group(1),
            table=m.group(3),
            operation=(m.group(4) or "ALL").upper(),
            file_path=file_path,
            line=_line_of(text, m.start()),
            excerpt=_statement(raw, m.start(), LINE_EXCERPT_MAX),
        ))

    for m in _FUNCTION_RE.finditer(text):
        schema = (m.group(1) or "public").lower()
        if schema in INTERNAL_SCHEMAS:
            continue
        definition = text[m.start():_function_end(text, m.end())]
        lang = _LANGUAGE_RE.search(definition)
        excerpt = raw[m.start():m.start() + FUNCTION_EXCERPT_MAX]
        if len(excerpt) >= FUNCTION_EXCERPT_MAX:
            excerpt += "..."
        facts.functions.append(ParsedFunction(
            name=m.group(2),
            schema=schema,
            language=lang.group(1).lower() if lang else "sql",
            security_definer="SECURITY DEFINER" in " ".join(definition.upper().split()),
            returns=m.group(3),
            file_path=file_path,
            line=_line_of(text, m.start()),
            excerpt=excerpt,
        ))
    return facts


def _function_end(text: str, pos: int) -> int:
    """Offset just past a function definition: its dollar-quoted body, then ``;``."""
    opening = _DOLLAR_RE.search(text, pos)
    semicolon = text.find(";", pos)
    if opening and (semicolon < 0 or opening.start() < semicolon):
        closing = text.find(opening.group(0), opening.end())
        if closing >= 0:
            end = text.find(";", closing)
            return len(text) if end < 0 else end + 1
    return len(text) if semicolon < 0 else semicolon + 1


def detect_auth_providers(sql: str) -> List[str]:
    lowered = sql.lower()
    return [name for name, needles in _AUTH_PROVIDERS if any(n in lowered for n in needles)]


# ===================================================================
# Pass
# ===================================================================

class DataModelPass(AnalysisPass):
    name = "data_model"

    def run(self, context: AnalysisContext, snapshot: GraphSnapshot, options: AnalyzerOptions) -> PassResult:
        work = []
        for repo in context.repos:
            for f in sorted(repo.files, key=lambda f: f.path):
                if MIGRATION_RE.search(f.path):
                    text = context.read(repo, f.path)
                    if text:
                        work.append((f.path, repo.id, text))
        if not work:
            return PassResult()

        migrations: List[MigrationFacts] = map_files(
            lambda item: parse_migration(*item),
            work,
            options.max_workers,
            describe=lambda item: item[0],
        )
        result = self._build(migrations)
        logger.debug(
            "Data-model pass: %d migration files, %d nodes",
            len(migrations), len(result.nodes),
        )
        return result

    def _build(self, migrations: List[MigrationFacts]) -> PassResult:
        result = PassResult()
        all_sql = "\n".join(m.text for m in migrations)

        tables: Dict[str, ParsedTable] = {}
        for facts in migrations:
            for table in facts.tables:
                tables.setdefault(table.name.lower(), table)
        for facts in migrations:
            for table_name, column, ref_schema in facts.added_columns:
                table = tables.get(table_name.lower())
                if table is None or any(c.name == column.name for c in table.columns):
                    continue
                table.columns.append(column)
                if ref_schema and ref_schema.lower() == "auth":
                    table.auth_refs.add(column.name)

        rls: Dict[str, List[Tuple[MigrationFacts, int, str]]] = {}
        policies: Dict[str, List[ParsedPolicy]] = {}
        for facts in migrations:
            for table_name, line, excerpt in facts.rls:
                rls.setdefault(table_name.lower(), []).append((facts, line, excerpt))
            for policy in facts.policies:
                policies.setdefault(policy.table.lower(), []).append(policy)

        repo_of = {m.file_path: m.repo_id for m in migrations}
        has_auth = "auth.users" in all_sql or "supabase.auth" in all_sql or "profiles" in tables
        auth_id = generate_node_id("auth", "supabase")

        for key, table in tables.items():
            node_id = generate_node_id("table", "supabase", table.name)
            table_policies = policies.get(key, [])
            result.nodes.append(Node(
                id=node_id,
                type="table",
                label=table.name,
                repo_id=repo_of.get(table.file_path),
                metadata=TableMeta(
                    schema=table.schema,
                    columns=table.columns,
                    has_rls=key in rls,
                    policies=[p.name for p in table_policies],
                    migration_file=table.file_path,
                ),
            ))
            result.evidence.append(Evidence(
                id=generate_evidence_id("DB_TABLE", node_id, table.file_path, table.line),
                kind="DB_TABLE",
                node_id=node_id,
                repo_id=repo_of.get(table.file_path),
                file_path=table.file_path,
                symbol=table.name,
                line_start=table.line,
                excerpt=table.excerpt,
                metadata={"columns": len(table.columns), "has_rls": key in rls},
            ))
            for facts, line, excerpt in rls.get(key, []):
                result.evidence.append(Evidence(
                    id=generate_evidence_id("RLS_POLICY", node_id, facts.file_path, line, "enable"),
                    kind="RLS_POLICY",
                    node_id=node_id,
                    repo_id=facts.repo_id,
                    file_path=facts.file_path,
                    symbol="ENABLE ROW LEVEL SECURITY",
                    line_start=line,
                    excerpt=excerpt,
                ))
            for policy in table_policies:
                result.evidence.append(Evidence(
                    id=generate_evidence_id("RLS_POLICY", node_id, policy.file_path, policy.line, policy.name),
                    kind="RLS_POLICY",
                    node_id=node_id,
                    repo_id=repo_of.get(policy.file_path),
                    file_path=policy.file_path,
                    symbol=policy.name,
                    line_start=policy.line,
                    excerpt=policy.excerpt,
                    metadata={"operation": policy.operation},
                ))
            for column in table.columns:
                if not column.references:
                    continue
                if column.name in table.auth_refs:
                    target = auth_id
                    has_auth = True
                else:
                    target = generate_node_id("table", "supabase", column.references.table)
                result.edges.append(make_edge(
                    node_id, target, "reads",
                    metadata={"column": column.name, "referenced_column": column.references.column},
                    label=f"FK: {column.name}",
                    qualifier=column.name,
                ))

        for facts in migrations:
            for fn in facts.functions:
                node_id = generate_node_id("function", "supabase", fn.name)
                if any(n.id == node_id for n in result.nodes):
                    continue
                result.nodes.append(Node(
                    id=node_id,
                    type="function",
                    label=fn.name,
                    repo_id=facts.repo_id,
                    metadata=FunctionMeta(
                        schema=fn.schema,
                        language=fn.language,
                        security_definer=fn.security_definer,
                        returns=fn.returns,
                        migration_file=fn.file_path,
                    ),
                ))
                result.evidence.append(Evidence(
                    id=generate_evidence_id("DB_FUNCTION", node_id, fn.file_path, fn.line),
                    kind="DB_FUNCTION",
                    node_id=node_id,
                    repo_id=facts.repo_id,
                    file_path=fn.file_path,
                    symbol=fn.name,
                    line_start=fn.line,
                    excerpt=fn.excerpt,
                    metadata={"language": fn.language, "security_definer": fn.security_definer},
                ))

        if has_auth:
            self._auth(result, migrations, tables, auth_id, all_sql)
        if "storage.buckets" in all_sql or "storage.objects" in all_sql:
            self._storage(result, migrations, all_sql)
        return result

    @staticmethod
    def _first_mention(migrations: List[MigrationFacts], needle: str) -> Optional[Tuple[MigrationFacts, int, str]]:
        for facts in migrations:
            pos = facts.text.find(needle)
            if pos >= 0:
                line_no = _line_of(facts.text, pos)
                return facts, line_no, facts.text.split("\n")[line_no - 1].strip()[:LINE_EXCERPT_MAX]
        return None

    def _auth(self, result: PassResult, migrations: List[MigrationFacts], tables: Dict[str, ParsedTable],
              auth_id: str, all_sql: str) -> None:
        has_roles = any(
            c.name == "role" or "role" in c.type.lower()
            for t in tables.values() for c in t.columns
        )
        result.nodes.append(Node(
            id=auth_id,
            type="auth",
            label="Supabase Auth",
            metadata=AuthMeta(
                provider="supabase",
                providers=detect_auth_providers(all_sql),
                has_role_system=has_roles,
            ),
        ))
        mention = self._first_mention(migrations, "auth.users")
        if mention:
            facts, line, excerpt = mention
            result.evidence.append(Evidence(
                id=generate_evidence_id("SQL_MIGRATION", auth_id, facts.file_path, line),
                kind="SQL_MIGRATION",
                node_id=auth_id,
                repo_id=facts.repo_id,
                file_path=facts.file_path,
                symbol="auth.users",
                line_start=line,
                excerpt=excerpt,
            ))
        if "profiles" in tables:
            profiles_id = generate_node_id("table", "supabase", "profiles")
            result.edges.append(make_edge(auth_id, profiles_id, "writes", label="user profile"))

    def _storage(self, result: PassResult, migrations: List[MigrationFacts], all_sql: str) -> None:
        storage_id = generate_node_id("storage", "supabase")
        bucket = _BUCKET_RE.search(all_sql)
        result.nodes.append(Node(
            id=storage_id,
            type="storage",
            label="Supabase Storage",
            metadata=StorageMeta(
                provider="supabase",
                is_public=bool(_PUBLIC_BUCKET_RE.search(all_sql)),
                bucket=bucket.group(1) if bucket else None,
            ),
        ))
        mention = self._first_mention(migrations, "storage.buckets") or self._first_mention(migrations, "storage.objects")
        if mention:
            facts, line, excerpt = mention
            result.evidence.append(Evidence(
                id=generate_evidence_id("SQL_MIGRATION", storage_id, facts.file_path, line),
                kind="SQL_MIGRATION",
                node_id=storage_id,
                repo_id=facts.repo_id,
                file_path=facts.file_path,
                symbol="storage",
                line_start=line,
                excerpt=excerpt,
            ))
