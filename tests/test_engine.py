"""Tests for the per-host engine."""

import asyncio

import yaml

from eai_agent.config import AgentConfig
from eai_agent.discovery import StaticTopologySource, TopologySource
from eai_agent.engine import HostDiscovery, build_topology_source, reconcile
from eai_agent.discovery.iis import IISTopologySource
from eai_agent.errors import EnumerationUnavailable, Issue, IssueKind
from eai_agent.models import InstrumentationMode
from eai_agent.readiness import MigrationReadiness, OverallStatus


class SlowSource(TopologySource):
    name = "slow"

    async def enumerate(self):
        await asyncio.sleep(10)


class UnavailableSource(TopologySource):
    name = "unavailable"

    async def enumerate(self):
        raise EnumerationUnavailable("IIS management service stopped")


class BrokenSource(TopologySource):
    name = "broken"

    async def enumerate(self):
        raise PermissionError(13, "Permission denied")


class FixedSource(TopologySource):
    name = "fixed"

    def __init__(self, snapshot):
        self.snapshot = snapshot

    async def enumerate(self):
        return self.snapshot


class TestReconcile:

    def test_happy_path(self, topology_factory, config_factory):
        topology = topology_factory([("Default Web Site", "DefaultAppPool")])
        result = reconcile(config_factory([("1234-Portal", "Default Web Site", "/", "Web")]), topology)

        assert result.verdict.migration_readiness == MigrationReadiness.READY
        assert result.errors == []
        assert [entry.eai_code for entry in result.registry] == ["1234"]
        assert result.descriptor.controller.host == "controller.example.com"

    def test_malformed_document_continues_with_topology(self, topology_factory):
        topology = topology_factory([("1234-Site", "Pool")])
        result = reconcile(b"<appdynamics-agent><oops>", topology)

        assert [e.kind for e in result.parse_errors] == [IssueKind.MALFORMED_DOCUMENT]
        assert result.descriptor.mode == InstrumentationMode.NOT_CONFIGURED
        assert result.verdict.overall_status == OverallStatus.FAILED
        assert result.verdict.migration_readiness == MigrationReadiness.NOT_READY
        # still produced an inventory from what was available
        assert len(result.correlation.conflicts) == 1

    def test_missing_document_is_not_fatal(self, topology_factory):
        topology = topology_factory([("S", "P")])
        result = reconcile(None, topology)

        assert [e.kind for e in result.parse_errors] == [IssueKind.DOCUMENT_MISSING]
        assert result.verdict.overall_status == OverallStatus.PARTIAL_SUCCESS
        assert result.verdict.migration_readiness == MigrationReadiness.READY_WITH_WARNINGS

    def test_no_document_and_no_topology_fails_with_verdict(self):
        result = reconcile(None, None)

        assert result.verdict.overall_status == OverallStatus.FAILED
        assert result.verdict.migration_readiness == MigrationReadiness.NOT_READY
        assert {e.kind for e in result.errors} == {IssueKind.DOCUMENT_MISSING, IssueKind.ENUMERATION_UNAVAILABLE}

    def test_not_configured_document_degrades(self, topology_factory, config_factory):
        topology = topology_factory([("S", "P")])
        result = reconcile(config_factory(), topology)

        assert [e.kind for e in result.parse_errors] == [IssueKind.NOT_CONFIGURED]
        assert result.verdict.migration_readiness == MigrationReadiness.READY_WITH_WARNINGS
        assert "declares no IIS instrumentation" in result.verdict.notes[0]

    def test_partial_enumeration_errors_are_carried(self, topology_factory, config_factory):
        topology = topology_factory([("Default Web Site", "DefaultAppPool")])
        topology.errors.append(Issue(IssueKind.PARTIAL_ENUMERATION, "Site enumeration failed", "Broken"))

        result = reconcile(config_factory([("1234-Portal", "Default Web Site", "/", "Web")]), topology)

        assert result.enumeration_errors == topology.errors
        assert result.verdict.migration_readiness == MigrationReadiness.READY_WITH_WARNINGS


class TestHostDiscovery:

    def test_run_with_static_topology(self, tmp_path, config_factory):
        document = tmp_path / "config.xml"
        document.write_bytes(config_factory([("1234-Portal", "Default Web Site", "/", "Web")]))
        topology_file = tmp_path / "topology.yaml"
        topology_file.write_text(yaml.safe_dump({
            "sites": [{"name": "Default Web Site", "id": 1, "applicationPool": "DefaultAppPool"}],
            "pools": [{"name": "DefaultAppPool", "runtimeVersion": "v4.0"}],
        }))
        config = AgentConfig(appdynamics_config_path=str(document), topology_file=str(topology_file))

        report = asyncio.run(HostDiscovery(config).run())

        assert report.metadata.topology_source == "static"
        assert report.metadata.document_path == str(document)
        assert report.metadata.duration_seconds >= 0
        assert report.result.verdict.migration_readiness == MigrationReadiness.READY

    def test_missing_document_file(self, tmp_path, topology_factory):
        config = AgentConfig(appdynamics_config_path=str(tmp_path / "missing.xml"))
        source = FixedSource(topology_factory([("S", "P")]))

        report = asyncio.run(HostDiscovery(config, topology_source=source).run())

        errors = report.result.parse_errors
        assert errors[0].kind == IssueKind.DOCUMENT_MISSING
        assert "missing.xml" in errors[0].message

    def test_timeout_records_failure(self, tmp_path, config_factory):
        document = tmp_path / "config.xml"
        document.write_bytes(config_factory([("1234-Portal", "Default Web Site", "/", "Web")]))
        config = AgentConfig(appdynamics_config_path=str(document), timeout=0.05)

        report = asyncio.run(HostDiscovery(config, topology_source=SlowSource()).run())

        assert [e.kind for e in report.result.enumeration_errors] == [IssueKind.TIMEOUT]
        assert report.result.verdict.overall_status == OverallStatus.FAILED
        # declared-only correlation still ran
        assert report.result.correlation.codes == ["1234"]

    def test_unavailable_topology(self, tmp_path, config_factory):
        document = tmp_path / "config.xml"
        document.write_bytes(config_factory(automatic=True))
        config = AgentConfig(appdynamics_config_path=str(document))

        report = asyncio.run(HostDiscovery(config, topology_source=UnavailableSource()).run())

        errors = report.result.enumeration_errors
        assert errors[0].kind == IssueKind.ENUMERATION_UNAVAILABLE
        assert "stopped" in errors[0].message
        assert report.result.verdict.migration_readiness == MigrationReadiness.NOT_READY


def test_build_topology_source():
    assert isinstance(build_topology_source(AgentConfig(topology_file="t.yaml")), StaticTopologySource)
    source = build_topology_source(AgentConfig(timeout=60, retry_attempts=3))
    assert isinstance(source, IISTopologySource)
    assert source.timeout == 20
    assert source.retry_attempts == 3


def test_enumeration_os_error_still_produces_a_verdict(tmp_path, config_factory):
    document = tmp_path / "config.xml"
    document.write_bytes(config_factory([("1234-Portal", "Default Web Site", "/", "Web")]))
    config = AgentConfig(appdynamics_config_path=str(document))

    report = asyncio.run(HostDiscovery(config, topology_source=BrokenSource()).run())

    errors = report.result.enumeration_errors
    assert [e.kind for e in errors] == [IssueKind.ENUMERATION_UNAVAILABLE]
    assert "Permission denied" in errors[0].message
    assert report.result.verdict.migration_readiness == MigrationReadiness.NOT_READY
