"""
Topology Discovery Module

Enumerates the web-server topology (IIS sites, applications and pools)
consumed by the correlator.
"""

from .base import (
    ProfilerMarker,
    TopologyApplication,
    TopologyApplicationPool,
    TopologyBinding,
    TopologySite,
    TopologySnapshot,
    TopologySource,
    decode_topology,
)
from .iis import IISTopologySource
from .static import StaticTopologySource

__all__ = [
    "ProfilerMarker",
    "TopologyApplication",
    "TopologyApplicationPool",
    "TopologyBinding",
    "TopologySite",
    "TopologySnapshot",
    "TopologySource",
    "decode_topology",
    "IISTopologySource",
    "StaticTopologySource",
]
