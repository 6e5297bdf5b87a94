"""
Per-Host Engine

``reconcile`` is the pure core (document bytes + topology -> grouped,
classified result). ``HostDiscovery`` wraps it with the I/O of one host run:
reading the AppDynamics configuration, enumerating IIS under a hard timeout
and stamping run metadata.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles

from .config import AgentConfig
from .correlator import NOT_CONFIGURED_WARNING, CorrelationResult, correlate
from .descriptor import ParsedDescriptor, parse_descriptor
from .discovery import IISTopologySource, StaticTopologySource, TopologySnapshot, TopologySource
from .errors import EnumerationUnavailable, Issue, IssueKind, MalformedDocument
from .models import InstrumentationMode
from .platform import detect_platform
from .readiness import Verdict, classify
from .registry import RegistryEntry, assemble_registry
from .version import __version__

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    descriptor: ParsedDescriptor
    correlation: CorrelationResult
    verdict: Verdict
    registry: List[RegistryEntry] = field(default_factory=list)
    parse_errors: List[Issue] = field(default_factory=list)
    enumeration_errors: List[Issue] = field(default_factory=list)

    @property
    def errors(self) -> List[Issue]:
        return self.parse_errors + self.enumeration_errors


@dataclass
class RunMetadata:
    run_id: str
    started_at: datetime
    duration_seconds: float
    hostname: str
    platform: str
    agent_version: str = __version__
    document_path: Optional[str] = None
    topology_source: Optional[str] = None


@dataclass
class HostReport:
    metadata: RunMetadata
    result: ReconciliationResult


def reconcile(
    document: Optional[bytes],
    topology: Optional[TopologySnapshot],
    enumeration_issue: Optional[Issue] = None,
    document_issue: Optional[Issue] = None,
    include_standalone: bool = False,
) -> ReconciliationResult:
    """
    Reconcile one host.

    Args:
        document: AppDynamics configuration bytes, or None when absent
        topology: Enumerated topology, or None when IIS was unavailable
        enumeration_issue: Why ``topology`` is None, if known
        document_issue: Why ``document`` is None, if known
        include_standalone: Correlate standalone applications too

    Returns:
        Reconciliation result; never raises for bad input
    """
    parse_errors: List[Issue] = []
    descriptor = ParsedDescriptor()

    if document is None:
        issue = document_issue or Issue(IssueKind.DOCUMENT_MISSING, "AppDynamics configuration not found")
        logger.warning(issue.message)
        parse_errors.append(issue)
    else:
        try:
            descriptor = parse_descriptor(document)
            if descriptor.mode == InstrumentationMode.NOT_CONFIGURED:
                parse_errors.append(Issue(IssueKind.NOT_CONFIGURED, NOT_CONFIGURED_WARNING))
        except MalformedDocument as e:
            logger.error(f"Continuing without declared applications: {e}")
            parse_errors.append(Issue(IssueKind.MALFORMED_DOCUMENT, str(e)))
    parse_errors.extend(descriptor.warnings)

    enumeration_errors: List[Issue] = []
    if topology is None:
        enumeration_errors.append(
            enumeration_issue or Issue(IssueKind.ENUMERATION_UNAVAILABLE, "No IIS topology was supplied")
        )
    else:
        enumeration_errors.extend(topology.errors)

    correlation = correlate(
        descriptor.applications,
        descriptor.standalone_applications,
        descriptor.mode,
        topology,
        include_standalone=include_standalone,
    )

    any_success = any(
        entry.identifier.matched and entry.site_exists_in_topology
        for entry in correlation.entries
    )
    verdict = classify(
        correlation.conflicts,
        parse_errors,
        enumeration_errors,
        topology_available=topology is not None,
        any_success=any_success,
    )

    return ReconciliationResult(
        descriptor=descriptor,
        correlation=correlation,
        verdict=verdict,
        registry=assemble_registry(correlation.groups, correlation.conflicts),
        parse_errors=parse_errors,
        enumeration_errors=enumeration_errors,
    )


def build_topology_source(config: AgentConfig) -> TopologySource:
    if config.topology_file:
        return StaticTopologySource(config.topology_file)
    return IISTopologySource(
        powershell=config.powershell,
        timeout=config.timeout / config.retry_attempts,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
    )


class HostDiscovery:
    """One discovery run on the local host."""

    def __init__(self, config: AgentConfig, topology_source: Optional[TopologySource] = None):
        self.config = config
        self.topology_source = topology_source or build_topology_source(config)

    async def run(self) -> HostReport:
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        platform_info = detect_platform()
        logger.info(f"Starting discovery on {platform_info.hostname}")

        document, document_issue = await self._read_document()
        topology, enumeration_issue = await self._enumerate()

        result = reconcile(
            document,
            topology,
            enumeration_issue=enumeration_issue,
            document_issue=document_issue,
            include_standalone=self.config.include_standalone,
        )

        metadata = RunMetadata(
            run_id=str(uuid.uuid4()),
            started_at=started_at,
            duration_seconds=round(time.monotonic() - start, 3),
            hostname=platform_info.hostname,
            platform=platform_info.platform,
            document_path=self.config.appdynamics_config_path,
            topology_source=self.topology_source.name,
        )
        logger.info(
            f"Discovery finished in {metadata.duration_seconds}s: "
            f"{result.verdict.overall_status.value} / {result.verdict.migration_readiness.value}"
        )
        return HostReport(metadata=metadata, result=result)

    async def _read_document(self) -> Tuple[Optional[bytes], Optional[Issue]]:
        path = Path(self.config.appdynamics_config_path)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read(), None
        except FileNotFoundError:
            return None, Issue(IssueKind.DOCUMENT_MISSING, f"AppDynamics configuration not found: {path}", str(path))
        except OSError as e:
            return None, Issue(IssueKind.DOCUMENT_MISSING, f"Cannot read AppDynamics configuration {path}: {e}", str(path))

    async def _enumerate(self) -> Tuple[Optional[TopologySnapshot], Optional[Issue]]:
        try:
            topology = await asyncio.wait_for(self.topology_source.enumerate(), timeout=self.config.timeout)
            return topology, None
        except asyncio.TimeoutError:
            logger.error(f"Topology enumeration exceeded {self.config.timeout}s, abandoning")
            return None, Issue(IssueKind.TIMEOUT, f"Topology enumeration exceeded {self.config.timeout}s")
        except EnumerationUnavailable as e:
            logger.warning(f"Topology unavailable: {e}")
            return None, Issue(IssueKind.ENUMERATION_UNAVAILABLE, str(e))
        except OSError as e:
            logger.error(f"Topology enumeration failed: {e}")
            return None, Issue(IssueKind.ENUMERATION_UNAVAILABLE, f"Topology enumeration failed: {e}")
