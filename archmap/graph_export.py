"""Graph export helpers for JSON, DOT and simple standalone HTML outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .ids import is_placeholder
from .models import Edge, Node
from .pipeline import AnalysisResult

# DOT shapes per node type; anything unlisted is drawn as a box.
_DOT_SHAPES = {
    "repo": "folder",
    "app": "component",
    "screen": "note",
    "endpoint": "cds",
    "table": "cylinder",
    "function": "hexagon",
    "storage": "cylinder",
    "auth": "doubleoctagon",
    "external_service": "ellipse",
    "deployment": "box3d",
    "worker": "septagon",
    "package": "tab",
}


def export_json(result: AnalysisResult, output_file: Path) -> None:
    output_file.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")


def export_dot(result: AnalysisResult, output_file: Path, focus: str = "") -> None:
    nodes = {n.id: n for n in result.graph.nodes}
    selected = _focused_subgraph(nodes, result.graph.edges, focus)

    lines = ["digraph Architecture {"]
    lines.append("  rankdir=LR;")

    for node_id in selected["nodes"]:
        node = nodes[node_id]
        label = f"{node.type}\\n{node.label}"
        shape = _DOT_SHAPES.get(node.type, "box")
        lines.append(f'  "{_esc(node_id)}" [label="{_esc(label)}", shape={shape}];')

    for edge in selected["edges"]:
        style = "" if edge.confidence == "high" else ", style=dashed"
        lines.append(
            f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}" [label="{_esc(edge.type)}"{style}];'
        )

    lines.append("}")
    output_file.write_text("\n".join(lines), encoding="utf-8")


def export_html(result: AnalysisResult, output_file: Path, focus: str = "") -> None:
    nodes = {n.id: n for n in result.graph.nodes}
    selected = _focused_subgraph(nodes, result.graph.edges, focus)
    graph_payload = {
        "nodes": [
            {
                "id": node_id,
                "label": f"{nodes[node_id].type}: {nodes[node_id].label}",
                "title": nodes[node_id].route or nodes[node_id].repo_id or "",
            }
            for node_id in selected["nodes"]
        ],
        "edges": [
            {"src": e.source, "dst": e.target, "edge_type": e.type, "confidence": e.confidence}
            for e in selected["edges"]
        ],
        "features": [
            {"slug": f.slug, "name": f.name, "steps": [s.label for s in f.flow]}
            for f in result.graph.features
        ],
    }
    output_file.write_text(_basic_html_export(graph_payload), encoding="utf-8")


def _basic_html_export(graph_payload: dict) -> str:
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Architecture Map</title>
  <style>
    body {{ font-family: ui-monospace, SFMono-Regular, Menlo, monospace; margin: 20px; }}
    #container {{ display: grid; grid-template-columns: 1fr 1fr 1fr; gap: 18px; }}
    .panel {{ border: 1px solid #ddd; border-radius: 8px; padding: 10px; }}
    ul {{ list-style: none; padding: 0; margin: 0; }}
    li {{ margin: 4px 0; }}
    .medium, .low {{ color: #888; }}
  </style>
</head>
<body>
  <h1>Architecture Map</h1>
  <div id="container">
    <div class="panel">
      <h2>Nodes</h2>
      <ul id="nodes"></ul>
    </div>
    <div class="panel">
      <h2>Edges</h2>
      <ul id="edges"></ul>
    </div>
    <div class="panel">
      <h2>Features</h2>
      <ul id="features"></ul>
    </div>
  </div>
  <script>
    const graph = {json.dumps(graph_payload)};
    const nodesEl = document.getElementById('nodes');
    const edgesEl = document.getElementById('edges');
    const featuresEl = document.getElementById('features');
    graph.nodes.forEach(n => {{
      const li = document.createElement('li');
      li.textContent = `${{n.label}} (${{n.title}})`;
      nodesEl.appendChild(li);
    }});
    graph.edges.forEach(e => {{
      const li = document.createElement('li');
      li.className = e.confidence;
      li.textContent = `${{e.src}} --${{e.edge_type}}--> ${{e.dst}}`;
      edgesEl.appendChild(li);
    }});
    graph.features.forEach(f => {{
      const li = document.createElement('li');
      li.textContent = `${{f.name}}: ${{f.steps.join(' > ')}}`;
      featuresEl.appendChild(li);
    }});
  </script>
</body>
</html>
"""


def _focused_subgraph(nodes: Dict[str, Node], edges: List[Edge], focus: str) -> Dict[str, List]:
    """Drop unresolved placeholder edges; optionally keep only a focus neighbourhood."""
    edges = [e for e in edges if not is_placeholder(e.target) and e.source in nodes and e.target in nodes]
    if not focus:
        return {"nodes": list(nodes.keys()), "edges": edges}

    focus_ids = {
        node_id
        for node_id, node in nodes.items()
        if focus in node_id or focus in node.label
    }

    if not focus_ids:
        return {"nodes": list(nodes.keys()), "edges": edges}

    edge_subset = [e for e in edges if e.source in focus_ids or e.target in focus_ids]
    node_subset = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e.source)
        node_subset.add(e.target)
    return {"nodes": sorted(node_subset), "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
