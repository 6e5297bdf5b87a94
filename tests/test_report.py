"""Tests for report rendering and writing."""

import asyncio
import json
from datetime import datetime, timezone

import pytest
import yaml

from eai_agent.engine import HostReport, RunMetadata, reconcile
from eai_agent.report import inventory_to_dict, render_report, report_filename, write_report


@pytest.fixture
def report(topology_factory, config_factory):
    topology = topology_factory([("SiteA", "SharedPool"), ("SiteB", "SharedPool"), ("Misc", "MiscPool")])
    document = config_factory([
        ("1234-A", "SiteA", "/", "A"),
        ("5678-B", "SiteB", "/", "B"),
        ("Misc", "Misc", "/", "Misc"),
    ])
    metadata = RunMetadata(
        run_id="run-1",
        started_at=datetime(2026, 3, 1, 12, 30, 0, tzinfo=timezone.utc),
        duration_seconds=1.5,
        hostname="WEB01",
        platform="windows",
        document_path="config.xml",
        topology_source="static",
    )
    return HostReport(metadata=metadata, result=reconcile(document, topology))


def test_json_document_shape(report):
    data = json.loads(render_report(report, "json"))

    assert list(data) == [
        "metadata", "controller", "instrumentation_mode", "topology_available",
        "standalone_applications", "groups", "conflicts", "warnings", "errors",
        "verdict", "registry",
    ]
    assert data["metadata"]["hostname"] == "WEB01"
    assert data["metadata"]["started_at"] == "2026-03-01T12:30:00+00:00"
    assert list(data["groups"]) == ["1234", "5678", "UNKNOWN"]
    entry = data["groups"]["1234"]["entries"][0]
    assert entry["identifier"] == {"matched": True, "code": "1234", "delimiter": "-", "remainder": "A"}
    assert entry["application_pool"] == "SharedPool"
    assert entry["site_exists_in_topology"] is True
    assert data["conflicts"][0]["kind"] == "pool_in_multiple_groups"
    assert data["conflicts"][0]["severity"] == "critical"
    assert data["verdict"]["migration_readiness"] == "requires_manual_intervention"
    assert [r["status"] for r in data["registry"]] == ["blocked", "blocked"]


def test_yaml_matches_json(report):
    assert yaml.safe_load(render_report(report, "yaml")) == json.loads(render_report(report, "json"))


def test_unknown_format(report):
    with pytest.raises(ValueError):
        render_report(report, "xml")


def test_inventory_is_deterministic(topology_factory, config_factory):
    topology = topology_factory([("S", "P")], extra_pools=["Orphan"])
    document = config_factory([("1234-A", "S", "/", "A"), ("Ghost", "G", "/", "G")])

    first = json.dumps(inventory_to_dict(reconcile(document, topology)))
    second = json.dumps(inventory_to_dict(reconcile(document, topology)))
    assert first == second


def test_write_report(report, tmp_path):
    path = asyncio.run(write_report(report, tmp_path / "out", "yaml"))

    assert path.name == "WEB01-20260301T123000Z.yaml"
    assert path.name == report_filename(report, "yaml")
    assert yaml.safe_load(path.read_text())["metadata"]["run_id"] == "run-1"


def test_concurrent_writes_across_event_loops(report, tmp_path):
    async def write_both():
        return await asyncio.gather(
            write_report(report, tmp_path, "json"),
            write_report(report, tmp_path, "yaml"),
        )

    first = asyncio.run(write_both())
    second = asyncio.run(write_both())

    assert first == second
    assert sorted(path.suffix for path in second) == [".json", ".yaml"]
