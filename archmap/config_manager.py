"""Analyzer options and their TOML configuration file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from .config import CONFIG_FILE, MAX_WORKERS
from .models import CONFIDENCE_LEVELS

logger = logging.getLogger(__name__)


@dataclass
class FeatureDefinition:
    """A curated feature: the routes, endpoints and tables that make it up."""
    slug: str
    name: str
    route_patterns: List[str]
    endpoint_patterns: List[str] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class AnalyzerOptions:
    min_confidence: Optional[str] = None
    include_packages: bool = True
    max_workers: int = MAX_WORKERS
    extra_features: List[FeatureDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.min_confidence is not None and self.min_confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"min_confidence must be one of {CONFIDENCE_LEVELS}, got {self.min_confidence!r}")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


DEFAULT_CONFIG: Dict[str, Any] = {
    "analyzer": {
        "include_packages": True,
        "max_workers": MAX_WORKERS,
    },
}


def _feature_from_table(raw: Dict[str, Any]) -> Optional[FeatureDefinition]:
    slug = raw.get("slug")
    routes = raw.get("routes") or []
    if not slug or not routes:
        logger.warning("Ignoring feature definition without slug or routes: %r", raw)
        return None
    return FeatureDefinition(
        slug=str(slug),
        name=str(raw.get("name") or slug),
        route_patterns=[str(r) for r in routes],
        endpoint_patterns=[str(e) for e in raw.get("endpoints", [])],
        tables=[str(t) for t in raw.get("tables", [])],
        description=str(raw.get("description", "")),
    )


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the whole TOML file; missing or malformed files yield ``{}``."""
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (toml.TomlDecodeError, OSError) as exc:
        logger.warning("Could not read config %s: %s", config_path, exc)
        return {}


def load_options(path: Optional[Path] = None) -> AnalyzerOptions:
    """Build :class:`AnalyzerOptions` from the ``[analyzer]`` and ``[[features]]`` tables."""
    full = load_full_config(path)
    section = full.get("analyzer", {})

    features = []
    for raw in full.get("features", []):
        if isinstance(raw, dict):
            fd = _feature_from_table(raw)
            if fd is not None:
                features.append(fd)

    min_conf = section.get("min_confidence")
    if min_conf is not None and min_conf not in CONFIDENCE_LEVELS:
        logger.warning("Ignoring invalid min_confidence %r", min_conf)
        min_conf = None

    try:
        workers = max(int(section.get("max_workers", MAX_WORKERS)), 1)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid max_workers %r", section.get("max_workers"))
        workers = MAX_WORKERS

    return AnalyzerOptions(
        min_confidence=min_conf,
        include_packages=bool(section.get("include_packages", True)),
        max_workers=workers,
        extra_features=features,
    )


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Write *config* as TOML and return the path written."""
    config_path = path or CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        toml.dump(config, f)
    return config_path
