"""Tests for SQL migration parsing and the data-model pass."""

from archmap.ids import generate_node_id
from archmap.passes.data_model import (
    DataModelPass,
    detect_auth_providers,
    parse_column,
    parse_migration,
    split_definitions,
)

MIGRATION = "supabase/migrations/20240101_init.sql"


class TestParsing:
    """Tests for the statement-level parsers."""

    def test_split_definitions_respects_parentheses(self):
        body = "id uuid default gen_random_uuid(), price numeric(10, 2), name text"
        assert split_definitions(body) == ["id uuid default gen_random_uuid()", "price numeric(10, 2)", "name text"]

    def test_parse_column_foreign_key(self):
        column, schema = parse_column("owner_id uuid not null references public.profiles(id)")
        assert column.name == "owner_id"
        assert column.type == "uuid"
        assert column.nullable is False
        assert column.is_foreign_key
        assert (column.references.table, column.references.column) == ("profiles", "id")
        assert schema == "public"

    def test_parse_column_skips_constraints(self):
        assert parse_column("CONSTRAINT pk PRIMARY KEY (id)") == (None, None)
        assert parse_column("UNIQUE (a, b)") == (None, None)

    def test_parse_migration(self, migration_sql):
        facts = parse_migration(MIGRATION, "web", migration_sql)
        assert [t.name for t in facts.tables] == ["profiles", "tasks"]
        profiles = facts.tables[0]
        assert profiles.auth_refs == {"id"}
        assert profiles.line == 2
        assert [c.name for c in facts.tables[1].columns] == ["id", "title", "assignee_id", "project_id", "created_at"]
        assert [(p.name, p.table, p.operation) for p in facts.policies] == [("own_tasks", "tasks", "SELECT")]
        assert [r[0] for r in facts.rls] == ["tasks"]

        fn = facts.functions[0]
        assert fn.name == "handle_new_user"
        assert fn.language == "plpgsql"
        assert fn.security_definer is True
        assert fn.returns.lower() == "trigger"

    def test_commented_statements_are_ignored(self):
        facts = parse_migration(MIGRATION, "web", "-- create table public.ghost (id int);\n")
        assert facts.tables == []

    def test_auth_providers(self):
        assert detect_auth_providers("-- github oauth") == ["github"]
        assert detect_auth_providers("create table x (id int);") == []


class TestDataModelPass:
    """Tests for DataModelPass."""

    def test_rls_and_policies(self, make_context, run_passes, migration_sql):
        result = run_passes(make_context({MIGRATION: migration_sql}), [DataModelPass()])
        tables = {n.label: n for n in result.graph.nodes if n.type == "table"}
        assert set(tables) == {"profiles", "tasks"}
        assert tables["tasks"].metadata.has_rls is True
        assert tables["tasks"].metadata.policies == ["own_tasks"]
        assert tables["profiles"].metadata.has_rls is False
        assert tables["tasks"].metadata.migration_file == MIGRATION

    def test_rls_in_later_migration(self, make_context, run_passes):
        context = make_context({
            "supabase/migrations/001.sql": "create table public.notes (id uuid primary key);",
            "supabase/migrations/002.sql": (
                "alter table public.notes enable row level security;\n"
                'create policy "read own" on public.notes for select using (true);\n'
                "alter table public.notes add column body text not null;\n"
            ),
        })
        result = run_passes(context, [DataModelPass()])
        notes = next(n for n in result.graph.nodes if n.type == "table")
        assert notes.metadata.has_rls is True
        assert notes.metadata.policies == ["read own"]
        assert [c.name for c in notes.metadata.columns] == ["id", "body"]
        rls_ev = [ev for ev in result.evidence if ev.kind == "RLS_POLICY"]
        assert {ev.file_path for ev in rls_ev} == {"supabase/migrations/002.sql"}

    def test_unquoted_names_ignore_case(self, make_context, run_passes):
        context = make_context({MIGRATION: (
            "CREATE TABLE public.Tasks (id uuid primary key);\n"
            "ALTER TABLE public.tasks ENABLE ROW LEVEL SECURITY;\n"
            'CREATE POLICY "own_tasks" ON public.TASKS FOR SELECT USING (true);\n'
            "ALTER TABLE public.tasks ADD COLUMN title text;\n"
        )})
        result = run_passes(context, [DataModelPass()])
        tables = [n for n in result.graph.nodes if n.type == "table"]
        assert len(tables) == 1
        assert tables[0].id == generate_node_id("table", "supabase", "tasks")
        assert tables[0].metadata.has_rls is True
        assert tables[0].metadata.policies == ["own_tasks"]
        assert [c.name for c in tables[0].metadata.columns] == ["id", "title"]

    def test_foreign_keys_and_auth(self, make_context, run_passes, migration_sql):
        result = run_passes(make_context({MIGRATION: migration_sql}), [DataModelPass()])
        profiles = generate_node_id("table", "supabase", "profiles")
        tasks = generate_node_id("table", "supabase", "tasks")
        auth = generate_node_id("auth", "supabase")

        fks = {(e.source, e.target, e.metadata["column"]) for e in result.graph.edges if e.label and e.label.startswith("FK")}
        assert (tasks, profiles, "assignee_id") in fks
        assert (profiles, auth, "id") in fks
        assert all(e.confidence == "high" for e in result.graph.edges)

        auth_node = next(n for n in result.graph.nodes if n.type == "auth")
        assert auth_node.metadata.has_role_system is True
        assert auth_node.metadata.providers == []
        assert any(e.source == auth and e.target == profiles and e.type == "writes" for e in result.graph.edges)

        # projects is referenced but never created
        assert result.summary.coverage.missing_targets == 1

    def test_functions_and_excerpt_caps(self, make_context, run_passes, migration_sql):
        result = run_passes(make_context({MIGRATION: migration_sql}), [DataModelPass()])
        fn = next(n for n in result.graph.nodes if n.type == "function")
        assert fn.label == "handle_new_user"
        assert fn.metadata.security_definer
        for ev in result.evidence:
            limit = 500 if ev.kind in ("DB_TABLE", "DB_FUNCTION") else 300
            assert len(ev.excerpt or "") <= limit

    def test_storage_bucket(self, make_context, run_passes):
        sql = "insert into storage.buckets (id, name, public) values ('avatars', 'avatars', true);"
        result = run_passes(make_context({"db/migrations/003.sql": sql}), [DataModelPass()])
        storage = next(n for n in result.graph.nodes if n.type == "storage")
        assert storage.metadata.bucket == "avatars"
        assert storage.metadata.is_public is True

    def test_no_migrations(self, make_context, run_passes):
        result = run_passes(make_context({"schema.sql": "create table t (id int);"}), [DataModelPass()])
        assert result.graph.nodes == []

    def test_first_migration_wins_for_duplicate_table(self, make_context, run_passes):
        context = make_context({
            "supabase/migrations/001.sql": "create table public.items (id uuid);",
            "supabase/migrations/002.sql": "create table if not exists public.items (id uuid, extra text);",
        })
        result = run_passes(context, [DataModelPass()])
        items = [n for n in result.graph.nodes if n.type == "table"]
        assert len(items) == 1
        assert items[0].metadata.migration_file == "supabase/migrations/001.sql"
