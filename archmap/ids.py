"""Deterministic identifiers for nodes, edges and evidence.

IDs are pure functions of their discriminating keys, so independent passes
(and repeated runs over unchanged input) agree on them without any shared
counter. Edges may point at a *placeholder target* (``"api:/path"``) until
the pass that owns the real node rewrites them.
"""

from __future__ import annotations

from hashlib import sha256
from typing import Optional

PLACEHOLDER_PREFIX = "api:"


def _normalize(part: object) -> str:
    return str(part).strip().lower()


def _digest(parts) -> str:
    # Length-prefix every part so ("a:b", "c") and ("a", "b:c") never collide
    payload = "|".join(f"{len(p)}:{p}" for p in parts)
    return sha256(payload.encode("utf-8")).hexdigest()[:16]


def generate_node_id(node_type: str, *parts: object) -> str:
    """Stable node ID for ``(type, discriminators...)``.

    Discriminators are trimmed and lower-cased so cosmetic differences in the
    source do not fork one logical entity into two nodes.
    """
    return f"node_{_digest([_normalize(node_type)] + [_normalize(p) for p in parts])}"


def generate_edge_id(source: str, target: str, edge_type: str, *qualifiers: str) -> str:
    """Stable edge ID. *qualifiers* separate parallel edges (e.g. GET vs POST calls)."""
    return f"edge_{_digest([source, target, edge_type, *qualifiers])}"


def generate_evidence_id(
    kind: str,
    node_id: str,
    file_path: Optional[str] = None,
    line_start: Optional[int] = None,
    symbol: Optional[str] = None,
) -> str:
    parts = [kind, node_id, file_path or "", "" if line_start is None else str(line_start)]
    if symbol:
        parts.append(symbol)
    return f"evid_{_digest(parts)}"


# ------------------------------------------------------------------
# Placeholder targets
# ------------------------------------------------------------------

def api_placeholder(path: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{path}"


def is_placeholder(target: str) -> bool:
    return target.startswith(PLACEHOLDER_PREFIX)


def placeholder_path(target: str) -> str:
    return target[len(PLACEHOLDER_PREFIX):]
