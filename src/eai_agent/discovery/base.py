"""Topology model and the enumerator interface consumed by the correlator."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import Issue, IssueKind

logger = logging.getLogger(__name__)

ROOT_PATH = "/"

# AppDynamics .NET agent profiler
APPDYNAMICS_PROFILER_CLSID = "{39AEABC1-56A5-405F-B8E7-C3668490DB4A}"

PROFILER_VARIABLES = ("COR_PROFILER", "CORECLR_PROFILER")


class ProfilerMarker(str, Enum):
    """Instrumentation already attached to an application pool."""
    NONE = "none"
    THIS_AGENT = "this_agent"
    OTHER_AGENT = "other_agent"
    UNKNOWN = "unknown"


def normalize_path(path: Optional[str]) -> str:
    """Normalize an IIS virtual path: '/App/' -> '/App', '' -> '/'."""
    if not path:
        return ROOT_PATH
    path = path.strip().replace("\\", "/")
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or ROOT_PATH
    return path


def _key(value: str) -> str:
    return value.casefold()


@dataclass(frozen=True)
class TopologyBinding:
    protocol: str
    binding_information: str


@dataclass(frozen=True)
class TopologyApplication:
    """A sub-application of a site, bound to its own pool."""
    path: str
    application_pool: Optional[str] = None
    physical_path: Optional[str] = None


@dataclass(frozen=True)
class TopologySite:
    name: str
    id: int
    state: str = "Unknown"
    application_pool: Optional[str] = None  # default pool for "/"
    physical_path: Optional[str] = None
    bindings: Tuple[TopologyBinding, ...] = ()
    applications: Tuple[TopologyApplication, ...] = ()

    def find_application(self, path: str) -> Optional[TopologyApplication]:
        wanted = _key(normalize_path(path))
        for app in self.applications:
            if _key(normalize_path(app.path)) == wanted:
                return app
        return None


@dataclass(frozen=True)
class TopologyApplicationPool:
    name: str
    state: str = "Unknown"
    runtime_version: str = ""
    pipeline_mode: str = "Integrated"
    identity: str = "ApplicationPoolIdentity"
    auto_start: bool = True
    profiler_marker: ProfilerMarker = ProfilerMarker.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "runtime_version": self.runtime_version,
            "pipeline_mode": self.pipeline_mode,
            "identity": self.identity,
            "auto_start": self.auto_start,
            "profiler_marker": self.profiler_marker.value,
        }


@dataclass
class TopologySnapshot:
    """Result of one enumeration; may be partial (see ``errors``)."""
    sites: List[TopologySite] = field(default_factory=list)
    pools: List[TopologyApplicationPool] = field(default_factory=list)
    errors: List[Issue] = field(default_factory=list)
    # Sites that exist but could not be read
    unreadable_sites: List[str] = field(default_factory=list)

    def find_site(self, name: Optional[str]) -> Optional[TopologySite]:
        if not name:
            return None
        wanted = _key(name)
        for site in self.sites:
            if _key(site.name) == wanted:
                return site
        return None

    def find_pool(self, name: Optional[str]) -> Optional[TopologyApplicationPool]:
        if not name:
            return None
        wanted = _key(name)
        for pool in self.pools:
            if _key(pool.name) == wanted:
                return pool
        return None

    def is_unreadable_site(self, name: Optional[str]) -> bool:
        if not name:
            return False
        wanted = _key(name)
        return any(_key(site) == wanted for site in self.unreadable_sites)

    def resolve_pool(self, site_name: Optional[str], application_path: Optional[str]) -> Optional[str]:
        """
        Resolve the pool serving ``application_path`` on ``site_name``.

        "/" resolves to the site's default pool; any other path resolves to
        the matching sub-application's pool, or None when there is none.
        """
        site = self.find_site(site_name)
        if site is None:
            return None
        path = normalize_path(application_path)
        if path == ROOT_PATH:
            root_app = site.find_application(ROOT_PATH)
            if root_app is not None and root_app.application_pool:
                return root_app.application_pool
            return site.application_pool
        app = site.find_application(path)
        return app.application_pool if app is not None else None


class TopologySource(ABC):
    """Something that can enumerate the live web-server topology."""

    name = "topology"

    @abstractmethod
    async def enumerate(self) -> TopologySnapshot:
        """
        Enumerate sites and application pools.

        Raises:
            EnumerationUnavailable: when nothing at all could be enumerated
        """


def profiler_marker_from_environment(variables: Any) -> ProfilerMarker:
    """Classify a pool's profiler environment variables."""
    if variables is None:
        return ProfilerMarker.NONE
    if isinstance(variables, list):
        try:
            variables = {item["name"]: item.get("value") for item in variables}
        except (KeyError, TypeError, AttributeError):
            return ProfilerMarker.UNKNOWN
    if not isinstance(variables, dict):
        return ProfilerMarker.UNKNOWN

    clsids = []
    for name, value in variables.items():
        if str(name).upper() in PROFILER_VARIABLES and value:
            clsids.append(str(value).strip().upper())
    if not clsids:
        return ProfilerMarker.NONE
    if APPDYNAMICS_PROFILER_CLSID in clsids:
        return ProfilerMarker.THIS_AGENT
    return ProfilerMarker.OTHER_AGENT


def _as_list(value: Any) -> List[Any]:
    # ConvertTo-Json collapses single-element arrays into objects
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _decode_site(record: Dict[str, Any]) -> TopologySite:
    name = record.get("name")
    if not name:
        raise ValueError("site record has no name")
    if record.get("error"):
        raise ValueError(str(record["error"]))

    bindings = tuple(
        TopologyBinding(
            protocol=str(b.get("protocol", "")),
            binding_information=str(b.get("bindingInformation", b.get("binding_information", ""))),
        )
        for b in _as_list(record.get("bindings"))
    )
    applications = tuple(
        TopologyApplication(
            path=normalize_path(a.get("path")),
            application_pool=a.get("applicationPool") or a.get("application_pool"),
            physical_path=a.get("physicalPath") or a.get("physical_path"),
        )
        for a in _as_list(record.get("applications"))
    )
    return TopologySite(
        name=str(name),
        id=int(record.get("id", 0)),
        state=str(record.get("state", "Unknown")),
        application_pool=record.get("applicationPool") or record.get("application_pool"),
        physical_path=record.get("physicalPath") or record.get("physical_path"),
        bindings=bindings,
        applications=applications,
    )


def _decode_pool(record: Dict[str, Any]) -> TopologyApplicationPool:
    name = record.get("name")
    if not name:
        raise ValueError("application pool record has no name")
    if "profilerMarker" in record or "profiler_marker" in record:
        marker = ProfilerMarker(record.get("profilerMarker", record.get("profiler_marker")))
    elif record.get("environmentError"):
        marker = ProfilerMarker.UNKNOWN
    else:
        marker = profiler_marker_from_environment(
            record.get("environmentVariables", record.get("environment_variables"))
        )
    return TopologyApplicationPool(
        name=str(name),
        state=str(record.get("state", "Unknown")),
        runtime_version=str(record.get("runtimeVersion", record.get("runtime_version", "")) or ""),
        pipeline_mode=str(record.get("pipelineMode", record.get("pipeline_mode", "Integrated"))),
        identity=str(record.get("identity", "ApplicationPoolIdentity")),
        auto_start=_as_bool(record.get("autoStart", record.get("auto_start"))),
        profiler_marker=marker,
    )


def decode_topology(payload: Dict[str, Any]) -> TopologySnapshot:
    """
    Decode an enumeration payload into a snapshot.

    Malformed site or pool records are skipped and reported as
    partial-enumeration errors; the rest of the payload is kept.
    """
    snapshot = TopologySnapshot()

    for record in _as_list(payload.get("sites")):
        try:
            snapshot.sites.append(_decode_site(record))
        except (ValueError, TypeError, AttributeError) as e:
            entity = record.get("name") if isinstance(record, dict) else None
            logger.warning(f"Skipping site {entity or '<unnamed>'}: {e}")
            if entity:
                snapshot.unreadable_sites.append(str(entity))
            snapshot.errors.append(Issue(IssueKind.PARTIAL_ENUMERATION, f"Site enumeration failed: {e}", entity))

    for record in _as_list(payload.get("pools", payload.get("applicationPools"))):
        try:
            snapshot.pools.append(_decode_pool(record))
        except (ValueError, TypeError, AttributeError) as e:
            entity = record.get("name") if isinstance(record, dict) else None
            logger.warning(f"Skipping application pool {entity or '<unnamed>'}: {e}")
            snapshot.errors.append(Issue(IssueKind.PARTIAL_ENUMERATION, f"Pool enumeration failed: {e}", entity))

    for message in _as_list(payload.get("errors")):
        snapshot.errors.append(Issue(IssueKind.PARTIAL_ENUMERATION, str(message)))

    return snapshot
