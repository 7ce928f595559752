"""Tests for the graph store, evidence ledger and snapshots."""

import pytest

from archmap.ids import api_placeholder, generate_node_id
from archmap.models import Edge, Evidence, Feature, Node, RepoMeta, ScreenMeta
from archmap.passes.base import make_edge
from archmap.store import EvidenceLedger, GraphStore, PassResult


def _repo_node(repo_id: str = "web", label: str = "acme/web") -> Node:
    return Node(
        id=generate_node_id("repo", repo_id),
        type="repo",
        label=label,
        repo_id=repo_id,
        metadata=RepoMeta(owner="acme", name=repo_id, provider="github", default_branch="main"),
    )


class TestModels:
    """Validation on the core model types."""

    def test_node_rejects_wrong_metadata(self):
        with pytest.raises(ValueError):
            Node(id="n", type="screen", label="x", metadata=RepoMeta("a", "b", "github", "main"))

    def test_edge_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            Edge(id="e", source="a", target="b", type="teleports")

    def test_evidence_excerpt_is_capped(self):
        ev = Evidence(id="ev", kind="DB_TABLE", node_id="n", excerpt="x" * 2000)
        assert len(ev.excerpt) == 500
        line_ev = Evidence(id="ev2", kind="ENV_VAR", node_id="n", excerpt="x" * 2000)
        assert len(line_ev.excerpt) == 300

    def test_screen_route_property(self):
        node = Node(id="s", type="screen", label="/a", metadata=ScreenMeta(route="/a", file_path="app/a/page.tsx"))
        assert node.route == "/a"
        assert _repo_node().route is None


class TestEvidenceLedger:
    """Tests for EvidenceLedger."""

    def test_append_is_idempotent(self):
        ledger = EvidenceLedger()
        ev = Evidence(id="ev1", kind="ENV_VAR", node_id="n", edge_id="e")
        assert ledger.append(ev) is True
        assert ledger.append(ev) is False
        assert len(ledger) == 1
        assert "ev1" in ledger
        assert ledger.for_node("n") == [ev]
        assert ledger.for_edge("e") == [ev]


class TestGraphStore:
    """Tests for merging pass results."""

    def test_first_write_wins(self):
        store = GraphStore()
        first = _repo_node(label="first")
        second = _repo_node(label="second")
        stats = store.merge(PassResult(nodes=[first]))
        assert stats.nodes_added == 1
        stats = store.merge(PassResult(nodes=[second]))
        assert stats.nodes_skipped == 1
        assert store.get_node(first.id).label == "first"

    def test_retarget_rewrites_earlier_edge(self):
        store = GraphStore()
        edge = make_edge("screen", api_placeholder("/api/x"), "calls", qualifier="GET")
        store.merge(PassResult(edges=[edge]))
        stats = store.merge(PassResult(retargets={edge.id: "endpoint"}))
        assert stats.retargeted == 1
        assert store.get_edge(edge.id).target == "endpoint"

    def test_retarget_unknown_edge_is_ignored(self):
        store = GraphStore()
        stats = store.merge(PassResult(retargets={"edge_missing": "endpoint"}))
        assert stats.retargeted == 0

    def test_snapshot_is_read_only_and_frozen(self):
        store = GraphStore()
        store.merge(PassResult(nodes=[_repo_node()]))
        snap = store.snapshot()
        with pytest.raises(TypeError):
            snap.nodes["x"] = _repo_node("other")  # type: ignore[index]
        store.merge(PassResult(nodes=[_repo_node("other")]))
        assert len(snap.nodes) == 1

    def test_placeholder_edges(self):
        store = GraphStore()
        pending = make_edge("a", api_placeholder("/api/x"), "calls")
        resolved = make_edge("a", "b", "navigates_to")
        store.merge(PassResult(edges=[pending, resolved]))
        assert store.snapshot().placeholder_edges() == [pending]

    def test_features_dedup_by_slug(self):
        store = GraphStore()
        store.merge(PassResult(features=[Feature(slug="auth", name="First")]))
        store.merge(PassResult(features=[Feature(slug="auth", name="Second")]))
        assert [f.name for f in store.features] == ["First"]
