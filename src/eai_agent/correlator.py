"""
Correlator

Joins the declared AppDynamics applications with the IIS topology, groups
the result by EAI code and detects conflicts between the two views.

The correlator never raises: missing topology, unmatched names and
disagreements between the two sources all end up as warnings or conflicts
on the returned ``CorrelationResult``.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .discovery.base import ROOT_PATH, TopologySnapshot
from .errors import Issue, IssueKind
from .identifier import extract
from .models import (
    UNKNOWN_GROUP,
    ConflictKind,
    ConflictRecord,
    CorrelatedEntry,
    DeclaredApplication,
    EntrySource,
    IdentifierGroup,
    IdentifierMatch,
    InstrumentationMode,
    StandaloneApplication,
    declare_application,
    make_conflict,
)

logger = logging.getLogger(__name__)

NOT_CONFIGURED_WARNING = "no instrumentation configuration found"
TOPOLOGY_UNAVAILABLE_WARNING = "IIS topology unavailable; correlation limited to declared applications"


@dataclass
class CorrelationResult:
    mode: InstrumentationMode
    topology_available: bool
    entries: List[CorrelatedEntry] = field(default_factory=list)
    groups: List[IdentifierGroup] = field(default_factory=list)
    conflicts: List[ConflictRecord] = field(default_factory=list)
    warnings: List[Issue] = field(default_factory=list)

    def group(self, code: str) -> Optional[IdentifierGroup]:
        for group in self.groups:
            if group.code == code:
                return group
        return None

    @property
    def codes(self) -> List[str]:
        return [group.code for group in self.groups]

    def groups_to_dict(self) -> Dict[str, Dict]:
        return {group.code: group.to_dict() for group in self.groups}


def synthesize_from_topology(topology: Optional[TopologySnapshot]) -> List[DeclaredApplication]:
    """One declaration per site, in enumeration order, as automatic mode implies."""
    if topology is None:
        return []
    return [
        declare_application(
            controller_application_name=site.name,
            site_name=site.name,
            application_path=ROOT_PATH,
            tier_name=site.name,
            source=EntrySource.AUTOMATIC,
        )
        for site in topology.sites
    ]


def declare_standalone(application: StandaloneApplication) -> DeclaredApplication:
    name = application.executable_name
    if name.lower().endswith(".exe"):
        name = name[:-4]
    return declare_application(
        controller_application_name=name,
        site_name="",
        application_path=ROOT_PATH,
        tier_name=application.tier_name,
        source=EntrySource.STANDALONE,
    )


def identify(application: DeclaredApplication) -> Tuple[IdentifierMatch, Optional[str]]:
    """Extract from the controller application name, falling back to the tier."""
    match = extract(application.controller_application_name)
    if match.matched:
        return match, "controller_application"
    if application.tier_name:
        tier_match = extract(application.tier_name)
        if tier_match.matched:
            return tier_match, "tier"
    return match, None


def _resolve(application: DeclaredApplication, topology: Optional[TopologySnapshot]) -> CorrelatedEntry:
    identifier, identifier_source = identify(application)

    if topology is None or application.source == EntrySource.STANDALONE:
        return CorrelatedEntry(
            application=application,
            identifier=identifier,
            identifier_source=identifier_source,
            site_exists_in_topology=False,
            application_exists_in_topology=False,
        )

    site = topology.find_site(application.site_name)
    application_exists = False
    if site is not None:
        application_exists = (
            application.application_path == ROOT_PATH
            or site.find_application(application.application_path) is not None
        )

    pool_name = topology.resolve_pool(application.site_name, application.application_path)
    pool = topology.find_pool(pool_name)
    if pool is not None:
        pool_name = pool.name

    return CorrelatedEntry(
        application=application,
        identifier=identifier,
        identifier_source=identifier_source,
        site_exists_in_topology=site is not None,
        application_exists_in_topology=application_exists,
        pool_name=pool_name,
        pool=pool,
    )


def _group_sort_key(code: str) -> Tuple[int, int, str]:
    if code == UNKNOWN_GROUP:
        return (1, 0, code)
    return (0, int(code), code)


def group_entries(entries: Iterable[CorrelatedEntry]) -> List[IdentifierGroup]:
    """Bucket entries by EAI code: ascending code, UNKNOWN last, entry order kept."""
    groups: Dict[str, IdentifierGroup] = {}
    for entry in entries:
        code = entry.group_code
        if code not in groups:
            groups[code] = IdentifierGroup(code=code)
        groups[code].add(entry)
    return [groups[code] for code in sorted(groups, key=_group_sort_key)]


def _pool_conflicts(groups: List[IdentifierGroup]) -> List[ConflictRecord]:
    owners: Dict[str, List[IdentifierGroup]] = {}
    names: Dict[str, str] = {}
    for group in groups:
        if group.is_unknown:
            continue
        for pool in group.pools:
            key = pool.casefold()
            names.setdefault(key, pool)
            owners.setdefault(key, [])
            if group not in owners[key]:
                owners[key].append(group)

    conflicts = []
    for key in sorted(owners):
        holders = owners[key]
        if len(holders) < 2:
            continue
        pool = names[key]
        members = [
            entry for group in holders for entry in group.entries
            if entry.pool_name and entry.pool_name.casefold() == key
        ]
        codes = [group.code for group in holders]
        conflicts.append(make_conflict(
            ConflictKind.POOL_IN_MULTIPLE_GROUPS,
            [pool] + [entry.name for entry in members],
            f"Application pool '{pool}' is used by EAI codes {', '.join(codes)}",
            identifier_codes=codes,
            inferred_from_automatic_mode=any(e.application.inferred_from_automatic_mode for e in members),
        ))
    return conflicts


def _entry_conflicts(entries: List[CorrelatedEntry], topology: Optional[TopologySnapshot]) -> List[ConflictRecord]:
    absent, not_found, unidentified = [], [], []

    for entry in entries:
        app = entry.application
        codes = [entry.identifier.code] if entry.identifier.matched else []
        inferred = app.inferred_from_automatic_mode

        verifiable = (
            topology is not None
            and app.source != EntrySource.STANDALONE
            and not topology.is_unreadable_site(app.site_name)
        )
        if verifiable:
            if not entry.site_exists_in_topology:
                absent.append(make_conflict(
                    ConflictKind.DECLARED_BUT_ABSENT,
                    [entry.name, app.site_name],
                    f"'{entry.name}' references site '{app.site_name}' which does not exist in IIS",
                    identifier_codes=codes,
                    inferred_from_automatic_mode=inferred,
                ))
            elif not entry.application_exists_in_topology:
                not_found.append(make_conflict(
                    ConflictKind.APPLICATION_NOT_FOUND,
                    [entry.name, app.site_name, app.application_path],
                    f"'{entry.name}' references path '{app.application_path}' which does not exist on site '{app.site_name}'",
                    identifier_codes=codes,
                    inferred_from_automatic_mode=inferred,
                ))

        if not entry.identifier.matched:
            if inferred:
                message = f"Site '{app.site_name}' has no EAI code in its name"
            else:
                message = f"No EAI code found in '{entry.name}' or its tier '{app.tier_name}'"
            unidentified.append(make_conflict(
                ConflictKind.NO_IDENTIFIER,
                [entry.name],
                message,
                inferred_from_automatic_mode=inferred,
            ))

    return absent + not_found + unidentified


def _delimiter_conflicts(groups: List[IdentifierGroup]) -> List[ConflictRecord]:
    conflicts = []
    for group in groups:
        if group.is_unknown or len(group.delimiters) < 2:
            continue
        conflicts.append(make_conflict(
            ConflictKind.DELIMITER_INCONSISTENCY,
            [entry.name for entry in group.entries],
            f"EAI code {group.code} is written with delimiters {' '.join(repr(d) for d in group.delimiters)}",
            identifier_codes=[group.code],
            inferred_from_automatic_mode=any(e.application.inferred_from_automatic_mode for e in group.entries),
        ))
    return conflicts


def _undeclared_conflicts(entries: List[CorrelatedEntry], topology: TopologySnapshot) -> List[ConflictRecord]:
    referenced = {entry.pool_name.casefold() for entry in entries if entry.pool_name}
    return [
        make_conflict(
            ConflictKind.PRESENT_BUT_UNDECLARED,
            [pool.name],
            f"Application pool '{pool.name}' is not referenced by any declared application",
        )
        for pool in topology.pools
        if pool.name.casefold() not in referenced
    ]


def _unverified_sites(entries: List[CorrelatedEntry], topology: Optional[TopologySnapshot]) -> List[str]:
    if topology is None:
        return []
    sites: Dict[str, str] = {}
    for entry in entries:
        site = entry.application.site_name
        if entry.application.source != EntrySource.STANDALONE and topology.is_unreadable_site(site):
            sites.setdefault(site.casefold(), site)
    return [sites[key] for key in sorted(sites)]


def correlate(
    applications: Iterable[DeclaredApplication],
    standalone_applications: Iterable[StandaloneApplication],
    mode: InstrumentationMode,
    topology: Optional[TopologySnapshot],
    include_standalone: bool = False,
) -> CorrelationResult:
    """
    Correlate declared applications with the topology.

    Args:
        applications: Parsed declarations, used as-is in manual mode
        standalone_applications: Parsed standalone (non-IIS) applications
        mode: Instrumentation mode read from the descriptor
        topology: Enumerated topology, or None when IIS could not be read
        include_standalone: Correlate standalone applications as well

    Returns:
        Entries, groups ordered by EAI code, conflicts and warnings
    """
    result = CorrelationResult(mode=mode, topology_available=topology is not None)

    if topology is None:
        result.warnings.append(Issue(IssueKind.ENUMERATION_UNAVAILABLE, TOPOLOGY_UNAVAILABLE_WARNING))

    if mode == InstrumentationMode.AUTOMATIC:
        declared = synthesize_from_topology(topology)
    elif mode == InstrumentationMode.MANUAL:
        declared = list(applications)
    else:
        declared = []
        result.warnings.append(Issue(IssueKind.NOT_CONFIGURED, NOT_CONFIGURED_WARNING))

    if include_standalone and mode != InstrumentationMode.NOT_CONFIGURED:
        declared.extend(declare_standalone(app) for app in standalone_applications)

    result.entries = [_resolve(app, topology) for app in declared]
    result.groups = group_entries(result.entries)

    result.conflicts.extend(_pool_conflicts(result.groups))
    result.conflicts.extend(_entry_conflicts(result.entries, topology))
    result.conflicts.extend(_delimiter_conflicts(result.groups))

    unverified = _unverified_sites(result.entries, topology)
    for site in unverified:
        result.warnings.append(Issue(
            IssueKind.PARTIAL_ENUMERATION,
            f"Site '{site}' could not be enumerated; its declarations were not verified",
            site,
        ))
    # a pool may belong to an unreadable site, so undeclared pools are unknown
    if topology is not None and mode != InstrumentationMode.AUTOMATIC and not unverified:
        result.conflicts.extend(_undeclared_conflicts(result.entries, topology))

    logger.info(
        f"Correlated {len(result.entries)} applications into {len(result.groups)} groups "
        f"with {len(result.conflicts)} conflicts"
    )
    return result
