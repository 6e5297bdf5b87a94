"""
Agent Configuration

YAML configuration file shared by the ``configure`` and ``discover`` commands.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "agent_config.yaml"
DEFAULT_APPDYNAMICS_CONFIG = r"C:\ProgramData\AppDynamics\DotNetAgent\Config\config.xml"
OUTPUT_FORMATS = ("json", "yaml")
LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class AgentConfig:
    appdynamics_config_path: str = DEFAULT_APPDYNAMICS_CONFIG
    topology_file: Optional[str] = None
    include_standalone: bool = False
    timeout: float = 120.0
    powershell: str = "powershell.exe"
    retry_attempts: int = 2
    retry_delay: float = 2.0
    output_directory: str = "reports"
    output_format: str = "json"
    server_url: Optional[str] = None
    api_key: Optional[str] = None
    log_level: str = "info"
    log_file: Optional[str] = None

    def __post_init__(self):
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(f"Unsupported output format '{self.output_format}' (expected one of {', '.join(OUTPUT_FORMATS)})")
        if self.timeout <= 0:
            raise ConfigurationError(f"Discovery timeout must be positive, got {self.timeout}")
        if self.retry_attempts < 1:
            raise ConfigurationError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationError(f"Unsupported log level '{self.log_level}'")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AgentConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping")

        appdynamics = data.get("appdynamics") or {}
        discovery = data.get("discovery") or {}
        output = data.get("output") or {}
        server = data.get("server") or {}
        logging_config = data.get("logging") or {}

        try:
            return cls(
                appdynamics_config_path=appdynamics.get("config_path", DEFAULT_APPDYNAMICS_CONFIG),
                topology_file=discovery.get("topology_file"),
                include_standalone=bool(discovery.get("include_standalone", False)),
                timeout=float(discovery.get("timeout", 120)),
                powershell=discovery.get("powershell", "powershell.exe"),
                retry_attempts=int(discovery.get("retry_attempts", 2)),
                retry_delay=float(discovery.get("retry_delay", 2.0)),
                output_directory=output.get("directory", "reports"),
                output_format=str(output.get("format", "json")).lower(),
                server_url=server.get("url"),
                api_key=server.get("api_key"),
                log_level=str(logging_config.get("level", "info")),
                log_file=logging_config.get("file"),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appdynamics": {
                "config_path": self.appdynamics_config_path,
            },
            "discovery": {
                "topology_file": self.topology_file,
                "include_standalone": self.include_standalone,
                "timeout": self.timeout,
                "powershell": self.powershell,
                "retry_attempts": self.retry_attempts,
                "retry_delay": self.retry_delay,
            },
            "output": {
                "directory": self.output_directory,
                "format": self.output_format,
            },
            "server": {
                "url": self.server_url,
                "api_key": self.api_key,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }

    @classmethod
    def load(cls, path: Union[str, Path]) -> "AgentConfig":
        config_path = Path(path)
        try:
            with config_path.open() as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        logger.debug(f"Loaded configuration from {config_path}")
        return cls.from_dict(data)

    def save(self, path: Union[str, Path]) -> Path:
        config_path = Path(path)
        with config_path.open("w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        return config_path


def setup_logging(level: str = "info", log_file: Optional[str] = None):
    """Configure root logging for CLI runs."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
