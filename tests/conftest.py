"""Shared pytest fixtures: fabricated IIS topologies and AppDynamics configs."""

import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import pytest

# Ensure src/ is importable without an install
SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from eai_agent.discovery.base import (  # noqa: E402
    TopologyApplication,
    TopologyApplicationPool,
    TopologyBinding,
    TopologySite,
    TopologySnapshot,
)


def make_topology(
    sites: Sequence[Tuple[str, str]],
    applications: Iterable[Tuple[str, str, str]] = (),
    extra_pools: Iterable[str] = (),
) -> TopologySnapshot:
    """
    sites: (site name, default pool)
    applications: (site name, path, pool) sub-applications
    extra_pools: pools bound to nothing
    """
    apps_by_site = {}
    for site_name, path, pool_name in applications:
        apps_by_site.setdefault(site_name, []).append(TopologyApplication(path=path, application_pool=pool_name))

    snapshot = TopologySnapshot()
    pool_names = []
    for index, (site_name, pool_name) in enumerate(sites, start=1):
        snapshot.sites.append(TopologySite(
            name=site_name,
            id=index,
            state="Started",
            application_pool=pool_name,
            physical_path=f"C:\\inetpub\\{site_name}",
            bindings=(TopologyBinding("http", f"*:{8000 + index}:"),),
            applications=tuple(apps_by_site.get(site_name, ())),
        ))
        pool_names.append(pool_name)
    for _, _, pool_name in applications:
        pool_names.append(pool_name)
    pool_names.extend(extra_pools)

    seen = set()
    for pool_name in pool_names:
        if pool_name in seen:
            continue
        seen.add(pool_name)
        snapshot.pools.append(TopologyApplicationPool(name=pool_name, state="Started", runtime_version="v4.0"))
    return snapshot


def appd_config(
    applications: Iterable[Tuple[str, str, str, Optional[str]]] = (),
    automatic: bool = False,
    standalone: Iterable[Tuple[str, str]] = (),
) -> bytes:
    """applications: (controller application, site, path, tier)"""
    app_xml = ""
    for controller_app, site, path, tier in applications:
        tier_xml = f'<tier name="{tier}" />' if tier is not None else ""
        app_xml += (
            f'<application controller-application="{controller_app}" path="{path}" site="{site}">'
            f"{tier_xml}</application>"
        )
    iis_xml = ""
    if automatic:
        iis_xml += '<automatic enabled="true" />'
    if app_xml:
        iis_xml += f"<applications>{app_xml}</applications>"
    standalone_xml = "".join(
        f'<standalone-application executable="{exe}"><tier name="{tier}" /></standalone-application>'
        for exe, tier in standalone
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        "<appdynamics-agent>"
        '<controller host="controller.example.com" port="443" ssl="true">'
        '<account name="customer1" password="secret" />'
        '<application name="Default" />'
        "</controller>"
        f"<app-agents><IIS>{iis_xml}</IIS>"
        f"<standalone-applications>{standalone_xml}</standalone-applications>"
        "</app-agents>"
        "</appdynamics-agent>"
    ).encode("utf-8")


@pytest.fixture
def topology_factory():
    return make_topology


@pytest.fixture
def config_factory():
    return appd_config
