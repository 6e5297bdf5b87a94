"""Topology loaded from an exported YAML or JSON file."""

import json
import logging
from pathlib import Path
from typing import Union

import aiofiles
import yaml

from ..errors import EnumerationUnavailable
from .base import TopologySnapshot, TopologySource, decode_topology

logger = logging.getLogger(__name__)


class StaticTopologySource(TopologySource):
    """
    Replay a topology export instead of querying IIS.

    The file holds the same ``sites``/``pools``/``errors`` payload the IIS
    enumerator produces, so a topology captured on one host can be
    reconciled anywhere.
    """

    name = "static"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def enumerate(self) -> TopologySnapshot:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                text = await f.read()
        except OSError as e:
            raise EnumerationUnavailable(f"Cannot read topology file {self.path}: {e}") from e

        try:
            if self.path.suffix.lower() == ".json":
                payload = json.loads(text)
            else:
                payload = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as e:
            raise EnumerationUnavailable(f"Cannot parse topology file {self.path}: {e}") from e

        if not isinstance(payload, dict):
            raise EnumerationUnavailable(f"Topology file {self.path} does not contain a mapping")

        snapshot = decode_topology(payload)
        logger.info(f"Loaded topology from {self.path}: {len(snapshot.sites)} sites, {len(snapshot.pools)} pools")
        return snapshot
