"""Tests for the topology model, payload decoding and enumerators."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from eai_agent.discovery import IISTopologySource, StaticTopologySource, decode_topology
from eai_agent.discovery.base import (
    APPDYNAMICS_PROFILER_CLSID,
    ProfilerMarker,
    normalize_path,
    profiler_marker_from_environment,
)
from eai_agent.errors import EnumerationUnavailable, IssueKind


PAYLOAD = {
    "sites": [
        {
            "name": "Default Web Site",
            "id": 1,
            "state": "Started",
            "applicationPool": "DefaultAppPool",
            "physicalPath": "C:\\inetpub\\wwwroot",
            "bindings": {"protocol": "http", "bindingInformation": "*:80:"},
            "applications": [
                {"path": "/", "applicationPool": "DefaultAppPool"},
                {"path": "/orders", "applicationPool": "OrdersPool"},
            ],
        },
        {"name": "Broken", "error": "Access denied"},
        {"id": 7},
    ],
    "pools": [
        {"name": "DefaultAppPool", "runtimeVersion": "v4.0", "autoStart": True,
         "environmentVariables": [{"name": "COR_PROFILER", "value": APPDYNAMICS_PROFILER_CLSID}]},
        {"name": "OrdersPool", "runtimeVersion": "", "pipelineMode": "Classic", "autoStart": "false",
         "environmentVariables": [{"name": "CORECLR_PROFILER", "value": "{11111111-2222-3333-4444-555555555555}"}]},
        {"name": "LockedPool", "environmentError": "Access denied"},
    ],
    "errors": ["Application pool Ghost: not readable"],
}


class TestNormalizePath:

    @pytest.mark.parametrize("raw,expected", [
        (None, "/"), ("", "/"), ("/", "/"), ("//", "/"), ("app", "/app"),
        ("/app/", "/app"), ("\\app\\sub", "/app/sub"), (" /App ", "/App"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected


class TestDecode:

    def test_partial_payload(self):
        snapshot = decode_topology(PAYLOAD)

        assert [site.name for site in snapshot.sites] == ["Default Web Site"]
        assert [pool.name for pool in snapshot.pools] == ["DefaultAppPool", "OrdersPool", "LockedPool"]
        assert len(snapshot.errors) == 3
        assert all(error.kind == IssueKind.PARTIAL_ENUMERATION for error in snapshot.errors)
        assert snapshot.errors[0].entity == "Broken"
        assert snapshot.unreadable_sites == ["Broken"]
        assert snapshot.is_unreadable_site("broken")
        assert not snapshot.is_unreadable_site("Default Web Site")

    def test_single_binding_object_is_a_list(self):
        site = decode_topology(PAYLOAD).sites[0]
        assert len(site.bindings) == 1
        assert site.bindings[0].binding_information == "*:80:"

    def test_pool_attributes(self):
        pools = {pool.name: pool for pool in decode_topology(PAYLOAD).pools}
        assert pools["DefaultAppPool"].profiler_marker == ProfilerMarker.THIS_AGENT
        assert pools["OrdersPool"].profiler_marker == ProfilerMarker.OTHER_AGENT
        assert pools["OrdersPool"].auto_start is False
        assert pools["OrdersPool"].pipeline_mode == "Classic"
        assert pools["LockedPool"].profiler_marker == ProfilerMarker.UNKNOWN

    def test_empty_payload(self):
        snapshot = decode_topology({})
        assert snapshot.sites == [] and snapshot.pools == [] and snapshot.errors == []


class TestProfilerMarker:

    def test_none(self):
        assert profiler_marker_from_environment(None) == ProfilerMarker.NONE
        assert profiler_marker_from_environment([]) == ProfilerMarker.NONE
        assert profiler_marker_from_environment({"PATH": "x"}) == ProfilerMarker.NONE

    def test_case_insensitive_clsid(self):
        marker = profiler_marker_from_environment({"COR_PROFILER": APPDYNAMICS_PROFILER_CLSID.lower()})
        assert marker == ProfilerMarker.THIS_AGENT

    def test_unreadable(self):
        assert profiler_marker_from_environment("garbage") == ProfilerMarker.UNKNOWN
        assert profiler_marker_from_environment([{"value": "x"}]) == ProfilerMarker.UNKNOWN


class TestResolvePool:

    def test_root_resolves_to_default_pool(self, topology_factory):
        topology = topology_factory([("Default Web Site", "DefaultAppPool")])
        assert topology.resolve_pool("Default Web Site", "/") == "DefaultAppPool"
        assert topology.resolve_pool("default web site", "") == "DefaultAppPool"

    def test_sub_application_pool(self, topology_factory):
        topology = topology_factory(
            [("Default Web Site", "DefaultAppPool")],
            applications=[("Default Web Site", "/Orders", "OrdersPool")],
        )
        assert topology.resolve_pool("Default Web Site", "/orders/") == "OrdersPool"

    def test_missing_sub_application(self, topology_factory):
        topology = topology_factory([("Default Web Site", "DefaultAppPool")])
        assert topology.resolve_pool("Default Web Site", "/missing") is None

    def test_missing_site(self, topology_factory):
        topology = topology_factory([("Default Web Site", "DefaultAppPool")])
        assert topology.resolve_pool("GhostSite", "/") is None

    def test_explicit_root_application_overrides_site_pool(self):
        snapshot = decode_topology(PAYLOAD)
        assert snapshot.resolve_pool("Default Web Site", "/") == "DefaultAppPool"


class TestStaticTopologySource:

    def test_yaml(self, tmp_path):
        path = tmp_path / "topology.yaml"
        path.write_text(yaml.safe_dump(PAYLOAD))
        snapshot = asyncio.run(StaticTopologySource(path).enumerate())
        assert len(snapshot.sites) == 1

    def test_json(self, tmp_path):
        path = tmp_path / "topology.json"
        path.write_text(json.dumps(PAYLOAD))
        snapshot = asyncio.run(StaticTopologySource(path).enumerate())
        assert len(snapshot.pools) == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(EnumerationUnavailable):
            asyncio.run(StaticTopologySource(tmp_path / "nope.yaml").enumerate())

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "topology.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(EnumerationUnavailable):
            asyncio.run(StaticTopologySource(path).enumerate())


class TestIISTopologySource:

    def test_requires_windows(self):
        with patch("eai_agent.discovery.iis.is_windows", return_value=False):
            with pytest.raises(EnumerationUnavailable):
                asyncio.run(IISTopologySource().enumerate())

    def test_decodes_script_output(self):
        source = IISTopologySource(retry_attempts=1)
        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch.object(source, "_run_script", AsyncMock(return_value=PAYLOAD)):
            snapshot = asyncio.run(source.enumerate())
        assert snapshot.sites[0].name == "Default Web Site"

    def test_retries_then_succeeds(self):
        source = IISTopologySource(retry_attempts=3, retry_delay=0)
        run_script = AsyncMock(side_effect=[RuntimeError("busy"), ValueError("bad json"), PAYLOAD])
        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch.object(source, "_run_script", run_script):
            snapshot = asyncio.run(source.enumerate())
        assert run_script.await_count == 3
        assert len(snapshot.pools) == 3

    def test_gives_up_after_retries(self):
        source = IISTopologySource(retry_attempts=2, retry_delay=0)
        run_script = AsyncMock(side_effect=RuntimeError("WebAdministration missing"))
        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch.object(source, "_run_script", run_script):
            with pytest.raises(EnumerationUnavailable, match="2 attempts"):
                asyncio.run(source.enumerate())
        assert run_script.await_count == 2

    def test_missing_powershell_is_not_retried(self):
        source = IISTopologySource(powershell="no-such-shell", retry_attempts=3, retry_delay=0)
        run_script = AsyncMock(side_effect=FileNotFoundError("no-such-shell"))
        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch.object(source, "_run_script", run_script):
            with pytest.raises(EnumerationUnavailable, match="PowerShell not found"):
                asyncio.run(source.enumerate())
        assert run_script.await_count == 1

    def test_unstartable_powershell_is_unavailable(self):
        source = IISTopologySource(powershell="C:\\not-executable.txt", retry_attempts=3, retry_delay=0)
        run_script = AsyncMock(side_effect=PermissionError(13, "Permission denied"))
        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch.object(source, "_run_script", run_script):
            with pytest.raises(EnumerationUnavailable, match="Cannot start PowerShell"):
                asyncio.run(source.enumerate())
        assert run_script.await_count == 1

    def test_abandoned_run_kills_powershell(self):
        source = IISTopologySource(timeout=60, retry_attempts=1)
        process = HangingProcess()

        async def abandon():
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(source.enumerate(), timeout=0.05)

        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            asyncio.run(abandon())

        assert process.killed
        assert process.returncode is not None

    def test_attempt_timeout_kills_powershell(self):
        source = IISTopologySource(timeout=0.05, retry_attempts=1)
        process = HangingProcess()

        with patch("eai_agent.discovery.iis.is_windows", return_value=True), \
                patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(EnumerationUnavailable, match="after 1 attempts"):
                asyncio.run(source.enumerate())

        assert process.killed


class HangingProcess:
    """Stands in for a PowerShell child that never finishes."""

    def __init__(self):
        self.returncode = None
        self.killed = False

    async def communicate(self):
        await asyncio.sleep(3600)

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode
