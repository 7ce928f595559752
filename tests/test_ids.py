"""Tests for deterministic ID generation and placeholder helpers."""

from archmap.ids import (
    api_placeholder,
    generate_edge_id,
    generate_evidence_id,
    generate_node_id,
    is_placeholder,
    placeholder_path,
)


class TestNodeIds:
    """Tests for generate_node_id."""

    def test_stable_across_calls(self):
        assert generate_node_id("endpoint", "web", "GET", "/api/x") == generate_node_id("endpoint", "web", "GET", "/api/x")

    def test_normalizes_case_and_whitespace(self):
        assert generate_node_id("table", "supabase", " Projects ") == generate_node_id("table", "supabase", "projects")

    def test_type_is_part_of_identity(self):
        assert generate_node_id("screen", "web", "/a") != generate_node_id("endpoint", "web", "/a")

    def test_discriminator_boundaries_do_not_collide(self):
        assert generate_node_id("app", "a:b", "c") != generate_node_id("app", "a", "b:c")

    def test_prefix(self):
        assert generate_node_id("repo", "web").startswith("node_")


class TestEdgeAndEvidenceIds:
    """Tests for edge and evidence IDs."""

    def test_qualifier_separates_parallel_edges(self):
        get_id = generate_edge_id("a", "b", "calls", "GET")
        post_id = generate_edge_id("a", "b", "calls", "POST")
        assert get_id != post_id
        assert get_id != generate_edge_id("a", "b", "calls")

    def test_edge_direction_matters(self):
        assert generate_edge_id("a", "b", "reads") != generate_edge_id("b", "a", "reads")

    def test_evidence_line_and_symbol(self):
        base = generate_evidence_id("FETCH_CALL", "n", "app/page.tsx", 3)
        assert base == generate_evidence_id("FETCH_CALL", "n", "app/page.tsx", 3)
        assert base != generate_evidence_id("FETCH_CALL", "n", "app/page.tsx", 4)
        assert base != generate_evidence_id("FETCH_CALL", "n", "app/page.tsx", 3, "x")
        assert base.startswith("evid_")


class TestPlaceholders:
    """Tests for api: placeholder targets."""

    def test_round_trip_path(self):
        target = api_placeholder("/api/users/[id]")
        assert target == "api:/api/users/[id]"
        assert is_placeholder(target)
        assert placeholder_path(target) == "/api/users/[id]"

    def test_real_ids_are_not_placeholders(self):
        assert not is_placeholder(generate_node_id("endpoint", "web", "GET", "/api/x"))
