"""
Inventory Model

Parsed declarations, correlated entries, identifier groups and conflicts.
Everything here is built once per run and never mutated afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .discovery.base import TopologyApplicationPool, normalize_path

UNKNOWN_GROUP = "UNKNOWN"


class InstrumentationMode(str, Enum):
    """How the AppDynamics agent selects IIS applications."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    NOT_CONFIGURED = "not_configured"


class EntrySource(str, Enum):
    """Where a declared application came from."""
    MANUAL = "manual"
    AUTOMATIC = "automatic"  # synthesized from a topology site
    STANDALONE = "standalone"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class ConflictKind(str, Enum):
    """Conflict kinds detected by the correlator."""
    POOL_IN_MULTIPLE_GROUPS = "pool_in_multiple_groups"
    DECLARED_BUT_ABSENT = "declared_but_absent"
    APPLICATION_NOT_FOUND = "application_not_found"
    NO_IDENTIFIER = "no_identifier"
    DELIMITER_INCONSISTENCY = "delimiter_inconsistency"
    PRESENT_BUT_UNDECLARED = "present_but_undeclared"

    @property
    def severity(self) -> Severity:
        return CONFLICT_RULES[self][0]

    @property
    def recommendation(self) -> str:
        return CONFLICT_RULES[self][1]

    @property
    def note(self) -> str:
        return CONFLICT_RULES[self][2]


CONFLICT_RULES: Dict[ConflictKind, Tuple[Severity, str, str]] = {
    ConflictKind.POOL_IN_MULTIPLE_GROUPS: (
        Severity.CRITICAL,
        "Manual resolution required: an application pool must belong to a single EAI code.",
        "Application pools shared by applications of different EAI codes.",
    ),
    ConflictKind.DECLARED_BUT_ABSENT: (
        Severity.MEDIUM,
        "Remove the stale declaration or confirm the site was decommissioned.",
        "Declared applications reference sites missing from IIS.",
    ),
    ConflictKind.APPLICATION_NOT_FOUND: (
        Severity.MEDIUM,
        "Correct the declared application path or remove the declaration.",
        "Declared application paths do not exist on their IIS site.",
    ),
    ConflictKind.NO_IDENTIFIER: (
        Severity.MEDIUM,
        "Manual identifier assignment required.",
        "Applications without an EAI code were placed in the UNKNOWN group.",
    ),
    ConflictKind.DELIMITER_INCONSISTENCY: (
        Severity.LOW,
        "Informational: align naming on a single delimiter for this EAI code.",
        "Applications sharing an EAI code use different delimiters.",
    ),
    ConflictKind.PRESENT_BUT_UNDECLARED: (
        Severity.LOW,
        "Confirm whether this application pool requires instrumentation.",
        "Application pools exist in IIS that no declared application references.",
    ),
}


@dataclass(frozen=True)
class ControllerConfig:
    host: str
    port: int
    tls_enabled: bool = False
    account_name: str = ""
    application_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "tls_enabled": self.tls_enabled,
            "account_name": self.account_name,
            "application_name": self.application_name,
        }


@dataclass(frozen=True)
class DeclaredApplication:
    controller_application_name: str
    site_name: str
    application_path: str = "/"
    tier_name: str = ""
    source: EntrySource = EntrySource.MANUAL

    @property
    def inferred_from_automatic_mode(self) -> bool:
        return self.source == EntrySource.AUTOMATIC

    def to_dict(self) -> Dict[str, Any]:
        return {
            "controller_application": self.controller_application_name,
            "site": self.site_name,
            "path": self.application_path,
            "tier": self.tier_name,
            "source": self.source.value,
            "inferred_from_automatic_mode": self.inferred_from_automatic_mode,
        }


def declare_application(
    controller_application_name: str,
    site_name: str,
    application_path: Optional[str] = None,
    tier_name: Optional[str] = None,
    source: EntrySource = EntrySource.MANUAL,
) -> DeclaredApplication:
    """Single construction path for parsed, synthesized and standalone declarations."""
    return DeclaredApplication(
        controller_application_name=controller_application_name.strip(),
        site_name=(site_name or "").strip(),
        application_path=normalize_path(application_path),
        tier_name=(tier_name or "").strip(),
        source=source,
    )


@dataclass(frozen=True)
class StandaloneApplication:
    executable_name: str
    tier_name: str = ""
    node_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executable": self.executable_name,
            "tier": self.tier_name,
            "node": self.node_name,
        }


@dataclass(frozen=True)
class IdentifierMatch:
    matched: bool
    remainder: str
    code: Optional[str] = None
    delimiter: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "code": self.code,
            "delimiter": self.delimiter,
            "remainder": self.remainder,
        }


@dataclass(frozen=True)
class CorrelatedEntry:
    """One declared application joined against the topology."""
    application: DeclaredApplication
    identifier: IdentifierMatch
    identifier_source: Optional[str]  # "controller_application", "tier", "executable"
    site_exists_in_topology: bool
    application_exists_in_topology: bool
    pool_name: Optional[str] = None
    pool: Optional[TopologyApplicationPool] = None

    @property
    def group_code(self) -> str:
        return self.identifier.code if self.identifier.matched else UNKNOWN_GROUP

    @property
    def name(self) -> str:
        return self.application.controller_application_name

    def to_dict(self) -> Dict[str, Any]:
        data = self.application.to_dict()
        data.update({
            "identifier": self.identifier.to_dict(),
            "identifier_source": self.identifier_source,
            "site_exists_in_topology": self.site_exists_in_topology,
            "application_exists_in_topology": self.application_exists_in_topology,
            "application_pool": self.pool_name,
            "pool": self.pool.to_dict() if self.pool else None,
        })
        return data


@dataclass
class IdentifierGroup:
    """Correlated entries sharing one EAI code."""
    code: str
    entries: List[CorrelatedEntry] = field(default_factory=list)
    pools: List[str] = field(default_factory=list)
    delimiters: List[str] = field(default_factory=list)

    def add(self, entry: CorrelatedEntry):
        self.entries.append(entry)
        if entry.pool_name and entry.pool_name not in self.pools:
            self.pools.append(entry.pool_name)
        delimiter = entry.identifier.delimiter
        if delimiter and delimiter not in self.delimiters:
            self.delimiters.append(delimiter)

    @property
    def is_unknown(self) -> bool:
        return self.code == UNKNOWN_GROUP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pools": list(self.pools),
            "delimiters": list(self.delimiters),
            "entries": [entry.to_dict() for entry in self.entries],
        }


@dataclass(frozen=True)
class ConflictRecord:
    kind: ConflictKind
    severity: Severity
    entities: Tuple[str, ...]
    recommendation: str
    message: str = ""
    identifier_codes: Tuple[str, ...] = ()
    inferred_from_automatic_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "entities": list(self.entities),
            "identifier_codes": list(self.identifier_codes),
            "message": self.message,
            "recommendation": self.recommendation,
            "inferred_from_automatic_mode": self.inferred_from_automatic_mode,
        }


def make_conflict(
    kind: ConflictKind,
    entities: List[str],
    message: str,
    identifier_codes: Optional[List[str]] = None,
    inferred_from_automatic_mode: bool = False,
) -> ConflictRecord:
    return ConflictRecord(
        kind=kind,
        severity=kind.severity,
        entities=tuple(entities),
        recommendation=kind.recommendation,
        message=message,
        identifier_codes=tuple(identifier_codes or ()),
        inferred_from_automatic_mode=inferred_from_automatic_mode,
    )
