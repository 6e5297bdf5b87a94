"""Reduce conflicts and errors into a single per-host verdict."""

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

from .errors import Issue, IssueKind
from .models import ConflictKind, ConflictRecord, Severity

logger = logging.getLogger(__name__)

FATAL_PARSE_ERRORS = (IssueKind.MALFORMED_DOCUMENT,)
FATAL_ENUMERATION_ERRORS = (IssueKind.ENUMERATION_UNAVAILABLE, IssueKind.TIMEOUT)

ERROR_NOTES = {
    IssueKind.MALFORMED_DOCUMENT: "The AppDynamics configuration could not be parsed.",
    IssueKind.DOCUMENT_MISSING: "No AppDynamics configuration was found.",
    IssueKind.MISSING_REQUIRED_FIELD: "Declared entries with missing required attributes were skipped.",
    IssueKind.NOT_CONFIGURED: "The AppDynamics configuration declares no IIS instrumentation.",
    IssueKind.ENUMERATION_UNAVAILABLE: "The IIS topology could not be enumerated.",
    IssueKind.PARTIAL_ENUMERATION: "Part of the IIS topology failed to enumerate.",
    IssueKind.TIMEOUT: "Discovery exceeded its time limit.",
}


class OverallStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class MigrationReadiness(str, Enum):
    READY = "ready"
    READY_WITH_WARNINGS = "ready_with_warnings"
    REQUIRES_MANUAL_INTERVENTION = "requires_manual_intervention"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class Verdict:
    overall_status: OverallStatus
    migration_readiness: MigrationReadiness
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_status": self.overall_status.value,
            "migration_readiness": self.migration_readiness.value,
            "notes": list(self.notes),
        }


def _notes(conflicts: List[ConflictRecord], errors: List[Issue]) -> Tuple[str, ...]:
    notes = []

    kinds = Counter(error.kind for error in errors)
    for kind in IssueKind:
        if kind in kinds and kind in ERROR_NOTES:
            notes.append(f"{ERROR_NOTES[kind]} ({kinds[kind]})")

    counts = Counter(conflict.kind for conflict in conflicts)
    ordered = sorted(counts, key=lambda k: (k.severity.rank, list(ConflictKind).index(k)))
    for kind in ordered:
        notes.append(f"[{kind.severity.value}] {kind.note} ({counts[kind]})")

    return tuple(notes)


def classify(
    conflicts: Iterable[ConflictRecord],
    parse_errors: Iterable[Issue],
    enumeration_errors: Iterable[Issue],
    topology_available: bool = True,
    any_success: bool = True,
) -> Verdict:
    """
    Classify a host run. The first matching rule wins:

    1. fatal parse error or no topology at all -> failed / not_ready
    2. any critical conflict -> requires_manual_intervention
       (partial_success if anything succeeded, else failed)
    3. any medium-or-worse conflict or any error -> partial_success / ready_with_warnings
    4. otherwise -> success / ready

    Notes hold one line per distinct conflict or error kind.
    """
    conflicts = list(conflicts)
    parse_errors = list(parse_errors)
    enumeration_errors = list(enumeration_errors)
    notes = _notes(conflicts, parse_errors + enumeration_errors)

    fatal_parse = any(e.kind in FATAL_PARSE_ERRORS for e in parse_errors)
    fatal_enumeration = not topology_available or any(e.kind in FATAL_ENUMERATION_ERRORS for e in enumeration_errors)

    if fatal_parse or fatal_enumeration:
        verdict = Verdict(OverallStatus.FAILED, MigrationReadiness.NOT_READY, notes)
    elif any(c.severity == Severity.CRITICAL for c in conflicts):
        status = OverallStatus.PARTIAL_SUCCESS if any_success else OverallStatus.FAILED
        verdict = Verdict(status, MigrationReadiness.REQUIRES_MANUAL_INTERVENTION, notes)
    elif any(c.severity.rank <= Severity.MEDIUM.rank for c in conflicts) or parse_errors or enumeration_errors:
        verdict = Verdict(OverallStatus.PARTIAL_SUCCESS, MigrationReadiness.READY_WITH_WARNINGS, notes)
    else:
        verdict = Verdict(OverallStatus.SUCCESS, MigrationReadiness.READY, notes)

    logger.info(f"Verdict: {verdict.overall_status.value} / {verdict.migration_readiness.value}")
    return verdict
