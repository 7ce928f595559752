"""Tests for JSON, DOT and HTML export."""

import json
from pathlib import Path

import pytest

from archmap.graph_export import export_dot, export_html, export_json
from archmap.passes import default_passes


@pytest.fixture
def analysis(make_context, run_passes, projects_app):
    files = dict(projects_app)
    files["app/orphans/page.tsx"] = "fetch(`/api/orphans/${id}`)"
    return run_passes(make_context(files), default_passes())


class TestExports:
    """Tests for graph_export writers."""

    def test_json(self, analysis, temp_dir: Path):
        out = temp_dir / "graph.json"
        export_json(analysis, out)
        data = json.loads(out.read_text())
        assert data["fingerprint"] == analysis.fingerprint
        assert len(data["nodes"]) == len(analysis.graph.nodes)
        assert len(data["evidence"]) == len(analysis.evidence)

    def test_dot(self, analysis, temp_dir: Path):
        out = temp_dir / "graph.dot"
        export_dot(analysis, out)
        text = out.read_text()
        assert text.startswith("digraph Architecture {")
        assert "shape=note" in text
        assert "shape=cds" in text
        assert '[label="calls"]' in text
        # unresolved placeholder edges are left out
        assert "api:" not in text

    def test_dot_focus(self, analysis, temp_dir: Path):
        out = temp_dir / "focus.dot"
        export_dot(analysis, out, focus="POST /api/projects")
        text = out.read_text()
        assert "POST /api/projects" in text
        assert "screen\\n/projects" not in text

    def test_html(self, analysis, temp_dir: Path):
        out = temp_dir / "graph.html"
        export_html(analysis, out)
        text = out.read_text()
        assert "<title>Architecture Map</title>" in text
        assert "GET /api/projects" in text
        assert "Project Management" in text
        assert "View /projects" in text
