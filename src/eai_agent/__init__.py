"""
EAI Inventory Agent

Reconciles the AppDynamics .NET agent configuration with the live IIS
topology and groups the result by EAI code, with conflicts and a
migration-readiness verdict.
"""

from .correlator import CorrelationResult, correlate
from .descriptor import ParsedDescriptor, parse_descriptor
from .engine import HostDiscovery, HostReport, ReconciliationResult, reconcile
from .identifier import extract
from .readiness import MigrationReadiness, OverallStatus, Verdict, classify
from .version import __version__

__all__ = [
    "CorrelationResult",
    "correlate",
    "ParsedDescriptor",
    "parse_descriptor",
    "HostDiscovery",
    "HostReport",
    "ReconciliationResult",
    "reconcile",
    "extract",
    "MigrationReadiness",
    "OverallStatus",
    "Verdict",
    "classify",
    "__version__",
]
