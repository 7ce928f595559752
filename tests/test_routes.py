"""Tests for the route pass and its extraction helpers."""

from archmap.ids import api_placeholder, generate_node_id
from archmap.passes.inventory import InventoryPass
from archmap.passes.routes import (
    RoutePass,
    extract_api_calls,
    extract_client_calls,
    extract_navigations,
    find_layout,
    infer_feature,
    normalize_api_path,
    resolve_screen_route,
    route_from_page,
)
from archmap.store import GraphStore


class TestRouteFromPage:
    """Tests for page-file route detection."""

    def test_root_and_nested(self):
        assert route_from_page("app/page.tsx").route == "/"
        assert route_from_page("src/app/projects/page.tsx").route == "/projects"
        assert route_from_page("apps/web/app/settings/page.jsx").route == "/settings"

    def test_route_groups_are_dropped(self):
        info = route_from_page("app/(dashboard)/projects/[id]/page.tsx")
        assert info.route == "/projects/[id]"
        assert info.dynamic and not info.catch_all

    def test_catch_all_parallel_intercepted(self):
        assert route_from_page("app/docs/[...slug]/page.tsx").catch_all
        assert route_from_page("app/@modal/login/page.tsx").parallel
        assert route_from_page("app/feed/(..)photo/[id]/page.tsx").intercepted

    def test_non_pages(self):
        assert route_from_page("app/layout.tsx") is None
        assert route_from_page("components/page.tsx") is None
        assert route_from_page("app/api/x/route.ts") is None

    def test_find_layout_walks_up(self):
        files = {"app/layout.tsx", "app/projects/layout.tsx", "app/projects/[id]/page.tsx", "app/about/page.tsx"}
        assert find_layout("app/projects/[id]/page.tsx", files) == "app/projects/layout.tsx"
        assert find_layout("app/about/page.tsx", files) == "app/layout.tsx"
        assert find_layout("app/about/page.tsx", {"app/about/page.tsx"}) is None

    def test_infer_feature_at_segment_boundary(self):
        assert infer_feature("/projects/[id]") == "projects"
        assert infer_feature("/projectsarchive") is None
        assert infer_feature("/login") == "auth"


class TestExtraction:
    """Tests for the line-scan extractors."""

    def test_fetch_with_explicit_method_is_high(self):
        calls = extract_api_calls("await fetch('/api/tasks', { method: 'POST' })")
        assert [(c.method, c.path, c.confidence) for c in calls] == [("POST", "/api/tasks", "high")]

    def test_plain_fetch_defaults_to_get(self):
        calls = extract_api_calls("const r = await fetch('/api/tasks?page=2')")
        assert [(c.method, c.path, c.confidence) for c in calls] == [("GET", "/api/tasks", "high")]

    def test_method_from_neighbouring_line_is_medium(self):
        content = "await fetch('/api/tasks', {\n  method: 'DELETE',\n})"
        calls = extract_api_calls(content)
        assert [(c.method, c.confidence, c.line) for c in calls] == [("DELETE", "medium", 1)]

    def test_template_path_is_medium(self):
        calls = extract_api_calls("fetch(`/api/projects/${id}/tasks`)")
        assert calls[0].path == "/api/projects/[param]/tasks"
        assert calls[0].confidence == "medium"

    def test_bare_template_literal(self):
        calls = extract_api_calls("const url = `/api/search?q=${q}`")
        assert [(c.path, c.confidence) for c in calls] == [("/api/search", "medium")]

    def test_excerpt_capped(self):
        calls = extract_api_calls("fetch('/api/x') " + "x" * 1000)
        assert len(calls[0].excerpt) == 300

    def test_normalize_api_path(self):
        assert normalize_api_path("/api/x/${id}/?a=1") == "/api/x/[param]"

    def test_navigations(self):
        content = (
            '<Link href="/projects">Projects</Link>\n'
            "router.push(`/projects/${id}`)\n"
            "redirect('/login')\n"
            '<a href="https://example.com">x</a>\n'
            "<Link href={'/settings'}>s</Link>\n"
        )
        targets = [t for t, _, _ in extract_navigations(content)]
        assert targets == ["/projects", "/projects/${id}", "/login", "/settings"]

    def test_client_calls(self):
        content = (
            "const { data } = await supabase\n"
            "  .from('tasks')\n"
            "  .update({ done: true })\n"
            "await supabase.auth.signOut()\n"
            "await supabase.storage.from('avatars').upload(p, f)\n"
            "await supabase.rpc('search_chunks', { q })\n"
        )
        calls = extract_client_calls(content)
        ops = [(c["operation"], c.get("table") or c.get("function")) for c in calls]
        assert ("update", "tasks") in ops
        assert ("auth.signOut", None) in ops
        assert ("storage", None) in ops
        assert ("rpc", "search_chunks") in ops

    def test_resolve_screen_route(self):
        known = ["/projects", "/projects/[id]", "/projects/new"]
        assert resolve_screen_route("/projects/new", known) == "/projects/new"
        assert resolve_screen_route("/projects/${p.id}", known) == "/projects/[id]"
        assert resolve_screen_route("/projects/42?tab=1", known) == "/projects/[id]"
        assert resolve_screen_route("/unknown", known) == "/unknown"


class TestRoutePass:
    """Tests for RoutePass.run."""

    def _run(self, context, options):
        store = GraphStore()
        store.merge(InventoryPass().run(context, store.snapshot(), options))
        return RoutePass().run(context, store.snapshot(), options)

    def test_screens_calls_and_navigation(self, make_context, options):
        context = make_context({
            "app/layout.tsx": "",
            "app/projects/page.tsx": (
                "const load = () => fetch('/api/projects')\n"
                "<Link href={`/projects/${p.id}`}>open</Link>\n"
                "const { data } = await supabase.from('projects').select('*')\n"
            ),
            "app/projects/[id]/page.tsx": "export default function P() { return null }",
        })
        result = self._run(context, options)

        screens = {n.route: n for n in result.nodes if n.type == "screen"}
        assert set(screens) == {"/projects", "/projects/[id]"}
        assert screens["/projects"].metadata.layout == "app/layout.tsx"
        assert screens["/projects"].metadata.feature == "projects"

        calls = [e for e in result.edges if e.type == "calls"]
        assert len(calls) == 1
        assert calls[0].target == api_placeholder("/api/projects")
        assert calls[0].metadata == {"method": "GET", "path": "/api/projects", "repo_id": "web"}

        nav = [e for e in result.edges if e.type == "navigates_to"]
        assert [(e.source, e.target) for e in nav] == [(screens["/projects"].id, screens["/projects/[id]"].id)]

        contains = [e for e in result.edges if e.type == "contains"]
        app_id = generate_node_id("app", "web", "")
        assert {e.source for e in contains} == {app_id}

        kinds = {ev.kind for ev in result.evidence}
        assert {"PAGE_COMPONENT", "FETCH_CALL", "COMPONENT_USAGE", "SUPABASE_CLIENT"} <= kinds
        # backend-client calls stay evidence only
        assert not [e for e in result.edges if e.type in ("reads", "writes")]

    def test_parallel_calls_are_separate_edges(self, make_context, options):
        context = make_context({
            "app/tasks/page.tsx": (
                "fetch('/api/tasks')\n"
                "\n\n\n\n"
                "fetch('/api/tasks', { method: 'POST' })\n"
            ),
        })
        result = self._run(context, options)
        calls = sorted(e.metadata["method"] for e in result.edges if e.type == "calls")
        assert calls == ["GET", "POST"]

    def test_self_navigation_is_ignored(self, make_context, options):
        context = make_context({"app/login/page.tsx": "redirect('/login')"})
        result = self._run(context, options)
        assert not [e for e in result.edges if e.type == "navigates_to"]

    def test_missing_content_still_emits_screen(self, make_context, options):
        context = make_context({"app/about/page.tsx": ""})
        result = self._run(context, options)
        assert [n.route for n in result.nodes] == ["/about"]
