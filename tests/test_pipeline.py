"""End-to-end tests for the pass pipeline."""

import pytest

from archmap.config_manager import AnalyzerOptions
from archmap.ids import generate_node_id
from archmap.passes import default_passes
from archmap.passes.base import map_files
from archmap.pipeline import ArchitecturePipeline, analyze_architecture
from archmap.store import PassResult


def _ids(result):
    return (
        sorted(n.id for n in result.graph.nodes),
        sorted(e.id for e in result.graph.edges),
        sorted(ev.id for ev in result.evidence),
    )


class TestEndToEnd:
    """The projects scenario through every pass."""

    def test_projects_scenario(self, make_context, run_passes, projects_app):
        result = run_passes(make_context(projects_app), default_passes())
        nodes = result.graph.nodes

        screens = [n for n in nodes if n.type == "screen"]
        assert [n.route for n in screens] == ["/projects"]

        endpoints = sorted((n.metadata.method, n.route) for n in nodes if n.type == "endpoint")
        assert endpoints == [("GET", "/api/projects"), ("POST", "/api/projects")]

        calls = [e for e in result.graph.edges if e.type == "calls"]
        assert len(calls) == 1
        get_id = generate_node_id("endpoint", "web", "GET", "/api/projects")
        post_id = generate_node_id("endpoint", "web", "POST", "/api/projects")
        assert calls[0].source == screens[0].id
        assert calls[0].target == get_id
        assert calls[0].confidence == "high"
        assert not [e for e in result.graph.edges if e.target == post_id and e.type == "calls"]

        assert result.summary.coverage.screens_with_endpoints == 1
        assert result.summary.coverage.unresolved_placeholders == 0

    def test_determinism(self, make_context, run_passes, projects_app):
        first = run_passes(make_context(projects_app), default_passes())
        second = run_passes(make_context(projects_app), default_passes())
        assert _ids(first) == _ids(second)
        assert first.fingerprint == second.fingerprint

    def test_parallel_matches_sequential(self, make_context, run_passes, projects_app):
        files = dict(projects_app)
        for i in range(15):
            files[f"app/extra{i}/page.tsx"] = f"fetch('/api/extra{i}')"
        sequential = run_passes(make_context(files), default_passes(), AnalyzerOptions(max_workers=1))
        parallel = run_passes(make_context(files), default_passes(), AnalyzerOptions(max_workers=4))
        assert _ids(sequential) == _ids(parallel)
        assert [n.id for n in sequential.graph.nodes] == [n.id for n in parallel.graph.nodes]

    def test_min_confidence_filters_edges(self, make_context, run_passes):
        context = make_context({"app/x/page.tsx": "fetch(`/api/x/${id}`)\nfetch('/api/y')"})
        everything = run_passes(context, default_passes())
        high_only = run_passes(context, default_passes(), AnalyzerOptions(max_workers=1, min_confidence="high"))
        assert {e.confidence for e in everything.graph.edges} >= {"high", "medium"}
        assert {e.confidence for e in high_only.graph.edges} == {"high"}

    def test_empty_context(self, make_context, run_passes):
        result = run_passes(make_context({}), default_passes())
        assert [n.type for n in result.graph.nodes] == ["repo", "app"]
        assert result.graph.features == []

    def test_wire_shape(self, make_context, run_passes, projects_app):
        payload = run_passes(make_context(projects_app), default_passes()).to_dict()
        assert payload["version"] == "1.0.0"
        assert payload["generatedAt"] == "2024-01-01T00:00:00"
        assert {"nodes", "edges", "features", "evidence", "summary", "fingerprint"} <= set(payload)
        screen = next(n for n in payload["nodes"] if n["type"] == "screen")
        assert "repoId" in screen and "filePath" in screen["metadata"]
        assert "evidenceIds" in payload["edges"][0]
        assert "nodesByType" in payload["summary"]

    def test_each_run_starts_empty(self, make_context, projects_app):
        pipeline = ArchitecturePipeline(AnalyzerOptions(max_workers=1))
        pipeline.run(make_context(projects_app))
        tasks_context = make_context({"app/tasks/page.tsx": "export default function T() {}"})
        reused = pipeline.run(tasks_context)
        fresh = ArchitecturePipeline(AnalyzerOptions(max_workers=1)).run(tasks_context)

        assert [n.route for n in reused.graph.nodes if n.type == "screen"] == ["/tasks"]
        assert [f.slug for f in reused.graph.features] == ["tasks"]
        assert sorted(n.id for n in reused.graph.nodes) == sorted(n.id for n in fresh.graph.nodes)

    def test_analyze_architecture_sets_timestamp(self, make_context, projects_app):
        result = analyze_architecture(make_context(projects_app), AnalyzerOptions(max_workers=1))
        assert result.graph.generated_at
        assert set(result.pass_stats) == {p.name for p in default_passes()}


class TestFailureIsolation:
    """A failing file or pass input never aborts the run."""

    def test_map_files_drops_failures(self):
        def work(n):
            if n == 3:
                raise RuntimeError("boom")
            return n * 2

        assert map_files(work, list(range(5)), max_workers=1) == [0, 2, 4, 8]
        assert map_files(work, list(range(20)), max_workers=4) == [n * 2 for n in range(20) if n != 3]

    def test_bad_repo_content_keeps_other_repos(self, make_multi_context, run_passes):
        context = make_multi_context({
            "broken": {"package.json": "{", "app/api/x/route.ts": "", "supabase/migrations/1.sql": "create table ("},
            "web": {"app/page.tsx": "fetch('/api/x')"},
        })
        result = run_passes(context, default_passes())
        repos = sorted(n.label for n in result.graph.nodes if n.type == "repo")
        assert repos == ["acme/broken", "acme/web"]
        calls = [e for e in result.graph.edges if e.type == "calls"]
        assert calls[0].target == generate_node_id("endpoint", "broken", "ALL", "/api/x")

    def test_custom_pass_list(self, make_context):
        class Nothing:
            name = "nothing"

            def run(self, context, snapshot, options):
                return PassResult()

        result = ArchitecturePipeline(AnalyzerOptions(max_workers=1), passes=[Nothing()]).run(make_context({}))
        assert result.graph.nodes == []
        assert result.summary.total_nodes == 0


@pytest.mark.parametrize("confidence", ["high", "medium", "low"])
def test_options_accept_known_confidence(confidence):
    assert AnalyzerOptions(min_confidence=confidence).min_confidence == confidence


def test_options_reject_unknown_confidence():
    with pytest.raises(ValueError):
        AnalyzerOptions(min_confidence="certain")
