"""
Platform Detection

Detect the host identity recorded in reports and what the host can enumerate.
"""

import platform
import shutil
import socket
from dataclasses import dataclass
from typing import Dict


@dataclass
class PlatformInfo:
    """Platform information"""
    platform: str  # 'windows', 'linux', 'darwin'
    hostname: str
    fqdn: str
    version: str
    architecture: str


def detect_platform() -> PlatformInfo:
    """Detect current platform"""
    return PlatformInfo(
        platform=platform.system().lower(),
        hostname=socket.gethostname(),
        fqdn=socket.getfqdn(),
        version=platform.version(),
        architecture=platform.machine(),
    )


def is_windows() -> bool:
    return platform.system().lower() == "windows"


def get_platform_capabilities(powershell: str = "powershell.exe") -> Dict[str, bool]:
    """Get discovery capabilities of this host"""
    windows = is_windows()
    return {
        "appdynamics_config": True,
        "iis_enumeration": windows and shutil.which(powershell) is not None,
        "static_topology": True,
    }
