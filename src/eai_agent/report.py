"""
Report Output

Serializes a host report to JSON or YAML and writes it to disk.
"""

import asyncio
import json
import logging
import weakref
from pathlib import Path
from typing import Any, Dict, Union

import aiofiles
import yaml

from .engine import HostReport, ReconciliationResult

logger = logging.getLogger(__name__)

# One lock per event loop; serializes writes into a shared output directory
_write_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _write_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _write_locks.get(loop)
    if lock is None:
        lock = _write_locks[loop] = asyncio.Lock()
    return lock


def inventory_to_dict(result: ReconciliationResult) -> Dict[str, Any]:
    """The deterministic part of a report: no timestamps or run ids."""
    descriptor = result.descriptor
    correlation = result.correlation
    return {
        "controller": descriptor.controller.to_dict() if descriptor.controller else None,
        "instrumentation_mode": descriptor.mode.value,
        "topology_available": correlation.topology_available,
        "standalone_applications": [app.to_dict() for app in descriptor.standalone_applications],
        "groups": correlation.groups_to_dict(),
        "conflicts": [conflict.to_dict() for conflict in correlation.conflicts],
        "warnings": [issue.to_dict() for issue in correlation.warnings],
        "errors": [issue.to_dict() for issue in result.errors],
        "verdict": result.verdict.to_dict(),
        "registry": [entry.to_dict() for entry in result.registry],
    }


def report_to_dict(report: HostReport) -> Dict[str, Any]:
    metadata = report.metadata
    data = {
        "metadata": {
            "run_id": metadata.run_id,
            "started_at": metadata.started_at.isoformat(),
            "duration_seconds": metadata.duration_seconds,
            "hostname": metadata.hostname,
            "platform": metadata.platform,
            "agent_version": metadata.agent_version,
            "document_path": metadata.document_path,
            "topology_source": metadata.topology_source,
        },
    }
    data.update(inventory_to_dict(report.result))
    return data


def render_report(report: HostReport, fmt: str = "json") -> str:
    data = report_to_dict(report)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    raise ValueError(f"Unsupported report format: {fmt}")


def report_filename(report: HostReport, fmt: str = "json") -> str:
    stamp = report.metadata.started_at.strftime("%Y%m%dT%H%M%SZ")
    return f"{report.metadata.hostname}-{stamp}.{fmt}"


async def write_report(report: HostReport, directory: Union[str, Path], fmt: str = "json") -> Path:
    """Write ``report`` into ``directory`` and return the file path."""
    output_dir = Path(directory)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / report_filename(report, fmt)
    content = render_report(report, fmt)

    async with _write_lock():
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)

    logger.info(f"Report written to {path}")
    return path
