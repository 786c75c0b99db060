"""Topology file: which peers to aggregate and which local probes to run.

    remote_endpoints:
      - {url: https://svc-a.internal/health, name: svcA, timeout: 3}
    probes:
      - {name: upstream, type: http, url: https://x/health, tags: [Dependency]}

Peer order in the file is the merge order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from healthrelay.aggregator.options import RemoteEndpoint
from healthrelay.health.probes import HttpProbe, Probe, ProbeRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProbeDef:
    """Definition of a single local probe from the topology file."""

    name: str
    type: str = "http"
    url: str = ""
    method: str = "GET"
    expected_status: list[int] = field(default_factory=list)
    slow_threshold_ms: float | None = None
    timeout_seconds: float = 10.0
    tags: list[str] = field(default_factory=list)


@dataclass
class Topology:
    remote_endpoints: list[RemoteEndpoint] = field(default_factory=list)
    probes: list[ProbeDef] = field(default_factory=list)

    def build_registry(self) -> ProbeRegistry:
        registry = ProbeRegistry()
        for definition in self.probes:
            try:
                registry.register(build_probe(definition))
            except ValueError as e:
                logger.warning("Skipping probe %s: %s", definition.name, e)
        return registry


def build_probe(definition: ProbeDef) -> Probe:
    if definition.type != "http":
        raise ValueError(f"Unknown probe type: {definition.type}")
    return HttpProbe(
        definition.name,
        definition.url,
        method=definition.method,
        expected_status=definition.expected_status or None,
        slow_threshold_ms=definition.slow_threshold_ms,
        timeout_seconds=definition.timeout_seconds,
        tags=definition.tags or ("Url",),
    )


def load_topology(path: Path | str) -> Topology:
    """Parse the topology file. Missing/unreadable file → empty topology."""
    path = Path(path)
    topology = Topology()
    if not path.exists():
        logger.warning("Topology file not found: %s", path)
        return topology

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to parse %s: %s", path, e)
        return topology

    for entry in raw.get("remote_endpoints") or []:
        try:
            topology.remote_endpoints.append(_parse_endpoint(entry))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed remote endpoint: %s", e)

    for entry in raw.get("probes") or []:
        try:
            topology.probes.append(_parse_probe(entry))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed probe entry: %s", e)

    logger.info(
        "Loaded topology: %d remote endpoints, %d probes",
        len(topology.remote_endpoints), len(topology.probes),
    )
    return topology


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_endpoint(raw: dict[str, Any]) -> RemoteEndpoint:
    url = raw.get("url", "")
    return RemoteEndpoint(url=url, name=raw.get("name") or url, timeout=raw.get("timeout"))


def _parse_probe(raw: dict[str, Any]) -> ProbeDef:
    name = (raw.get("name") or "").strip()
    if not name:
        raise ValueError("Probe 'name' is required")
    expected = raw.get("expected_status") or []
    if isinstance(expected, int):
        expected = [expected]
    return ProbeDef(
        name=name,
        type=raw.get("type", "http"),
        url=raw.get("url", ""),
        method=raw.get("method", "GET"),
        expected_status=[int(code) for code in expected],
        slow_threshold_ms=raw.get("slow_threshold_ms"),
        timeout_seconds=float(raw.get("timeout_seconds", 10.0)),
        tags=[str(t) for t in raw.get("tags") or []],
    )
