"""
Registry Assembler

Turns identifier groups into per-EAI-code deployment instructions for the
replacement agent.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Set

from .discovery.base import ProfilerMarker
from .models import ConflictRecord, IdentifierGroup, Severity


class RegistryStatus(str, Enum):
    READY = "ready"
    REVIEW = "review"
    BLOCKED = "blocked"


@dataclass
class RegistryEntry:
    eai_code: str
    service_name: str
    status: RegistryStatus
    application_pools: List[str] = field(default_factory=list)
    sites: List[str] = field(default_factory=list)
    tiers: List[str] = field(default_factory=list)
    runtime_versions: List[str] = field(default_factory=list)
    existing_profilers: List[str] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eai_code": self.eai_code,
            "service_name": self.service_name,
            "status": self.status.value,
            "application_pools": list(self.application_pools),
            "sites": list(self.sites),
            "tiers": list(self.tiers),
            "runtime_versions": list(self.runtime_versions),
            "existing_profilers": list(self.existing_profilers),
            "instructions": list(self.instructions),
        }


def _append_unique(values: List[str], value: str):
    if value and value not in values:
        values.append(value)


def _instruction(pool_name: str, group: IdentifierGroup, service_name: str) -> str:
    entries = [e for e in group.entries if e.pool_name == pool_name]
    pool = entries[0].pool if entries else None
    runtime = f" ({pool.runtime_version})" if pool is not None and pool.runtime_version else ""
    step = f"Instrument application pool '{pool_name}'{runtime} as service '{service_name}' under EAI {group.code}"
    if pool is not None and pool.profiler_marker == ProfilerMarker.OTHER_AGENT:
        step += "; another profiler is attached and must be removed first"
    elif pool is not None and pool.profiler_marker == ProfilerMarker.THIS_AGENT:
        step += "; remove the AppDynamics profiler after cut-over"
    return step


def assemble_registry(groups: Iterable[IdentifierGroup], conflicts: Iterable[ConflictRecord]) -> List[RegistryEntry]:
    """Build one registry entry per EAI group, skipping UNKNOWN."""
    conflicts = list(conflicts)
    blocked_codes: Set[str] = set()
    review_names: Set[str] = set()
    for conflict in conflicts:
        if conflict.severity == Severity.CRITICAL:
            blocked_codes.update(conflict.identifier_codes)
        elif conflict.severity in (Severity.HIGH, Severity.MEDIUM):
            review_names.update(conflict.entities)

    registry = []
    for group in groups:
        if group.is_unknown:
            continue

        first = group.entries[0]
        service_name = first.identifier.remainder or first.name
        if group.code in blocked_codes:
            status = RegistryStatus.BLOCKED
        elif any(entry.name in review_names for entry in group.entries):
            status = RegistryStatus.REVIEW
        else:
            status = RegistryStatus.READY

        entry = RegistryEntry(eai_code=group.code, service_name=service_name, status=status)
        for member in group.entries:
            _append_unique(entry.sites, member.application.site_name)
            _append_unique(entry.tiers, member.application.tier_name)
            if member.pool is not None:
                _append_unique(entry.runtime_versions, member.pool.runtime_version)
                if member.pool.profiler_marker != ProfilerMarker.NONE:
                    _append_unique(entry.existing_profilers, f"{member.pool.name}: {member.pool.profiler_marker.value}")
        entry.application_pools = list(group.pools)
        entry.instructions = [_instruction(pool, group, service_name) for pool in group.pools]
        if not group.pools:
            entry.instructions.append(f"No application pool resolved for EAI {group.code}; confirm the target before deployment")
        registry.append(entry)

    return registry
