"""IIS topology enumeration through PowerShell and the WebAdministration module."""

import asyncio
import json
import logging
from typing import Any, Dict

from ..errors import EnumerationUnavailable
from ..platform import is_windows
from .base import TopologySnapshot, TopologySource, decode_topology

logger = logging.getLogger(__name__)

# Every site and pool is read in its own try/catch so one broken entry
# surfaces as a per-entity error instead of failing the whole enumeration.
ENUMERATION_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
Import-Module WebAdministration
$result = @{ sites = @(); pools = @(); errors = @() }
foreach ($site in Get-ChildItem IIS:\Sites) {
    try {
        $apps = @(Get-WebApplication -Site $site.Name | ForEach-Object {
            @{ path = $_.path; applicationPool = $_.applicationPool; physicalPath = $_.PhysicalPath }
        })
        $bindings = @($site.bindings.Collection | ForEach-Object {
            @{ protocol = $_.protocol; bindingInformation = $_.bindingInformation }
        })
        $result.sites += @{
            name = $site.Name; id = $site.id; state = [string]$site.State
            applicationPool = $site.applicationPool; physicalPath = $site.physicalPath
            bindings = $bindings; applications = $apps
        }
    } catch {
        $result.sites += @{ name = $site.Name; error = $_.Exception.Message }
    }
}
foreach ($pool in Get-ChildItem IIS:\AppPools) {
    try {
        $entry = @{
            name = $pool.Name; state = [string]$pool.State
            runtimeVersion = $pool.managedRuntimeVersion
            pipelineMode = [string]$pool.managedPipelineMode
            identity = [string]$pool.processModel.identityType
            autoStart = [bool]$pool.autoStart
        }
        try {
            $escaped = $pool.Name -replace "'", "''"
            $vars = Get-WebConfigurationProperty -PSPath 'MACHINE/WEBROOT/APPHOST' `
                -Filter "system.applicationHost/applicationPools/add[@name='$escaped']/environmentVariables" `
                -Name '.'
            $entry.environmentVariables = @($vars.Collection | ForEach-Object { @{ name = $_.name; value = $_.value } })
        } catch {
            $entry.environmentError = $_.Exception.Message
        }
        $result.pools += $entry
    } catch {
        $result.errors += "Application pool $($pool.Name): $($_.Exception.Message)"
    }
}
$result | ConvertTo-Json -Depth 6 -Compress
"""


class IISTopologySource(TopologySource):
    """Enumerate the local IIS configuration."""

    name = "iis"

    def __init__(
        self,
        powershell: str = "powershell.exe",
        timeout: float = 60.0,
        retry_attempts: int = 2,
        retry_delay: float = 2.0,
    ):
        """
        Args:
            powershell: PowerShell executable
            timeout: Seconds allowed for one enumeration attempt
            retry_attempts: Total attempts before giving up
            retry_delay: Seconds between attempts
        """
        self.powershell = powershell
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay

    async def enumerate(self) -> TopologySnapshot:
        if not is_windows():
            raise EnumerationUnavailable("IIS enumeration requires Windows")

        last_error = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                payload = await self._run_script()
                snapshot = decode_topology(payload)
                logger.info(
                    f"Enumerated IIS: {len(snapshot.sites)} sites, {len(snapshot.pools)} application pools, "
                    f"{len(snapshot.errors)} errors"
                )
                return snapshot
            except FileNotFoundError as e:
                raise EnumerationUnavailable(f"PowerShell not found: {self.powershell}") from e
            except (asyncio.TimeoutError, RuntimeError, ValueError) as e:
                last_error = e
                logger.warning(f"IIS enumeration attempt {attempt}/{self.retry_attempts} failed: {e}")
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay)
            except OSError as e:
                raise EnumerationUnavailable(f"Cannot start PowerShell {self.powershell}: {e}") from e

        raise EnumerationUnavailable(f"IIS enumeration failed after {self.retry_attempts} attempts: {last_error}")

    async def _run_script(self) -> Dict[str, Any]:
        process = await asyncio.create_subprocess_exec(
            self.powershell, "-NoProfile", "-NonInteractive",
            "-ExecutionPolicy", "Bypass", "-Command", ENUMERATION_SCRIPT,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except BaseException:
            # also reached when the caller cancels the run
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            raise

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()[:500]
            raise RuntimeError(f"PowerShell exited with {process.returncode}: {message}")

        output = stdout.decode("utf-8-sig", errors="replace").strip()
        if not output:
            raise ValueError("PowerShell returned no output")
        payload = json.loads(output)  # JSONDecodeError is a ValueError
        if not isinstance(payload, dict):
            raise ValueError("Unexpected enumeration output")
        return payload
