"""
Error Taxonomy

Exceptions raised by the parser, enumerators and config loader, and the
recorded issues the engine turns them into.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class EaiAgentError(Exception):
    """Base class for agent errors."""


class MalformedDocument(EaiAgentError):
    """The AppDynamics configuration is not well-formed markup."""


class MissingRequiredField(EaiAgentError):
    """A single declared entry lacks a required attribute."""

    def __init__(self, element: str, field_name: str):
        super().__init__(f"<{element}> is missing required attribute '{field_name}'")
        self.element = element
        self.field_name = field_name


class EnumerationUnavailable(EaiAgentError):
    """The web-server topology could not be read at all."""


class ConfigurationError(EaiAgentError):
    """Invalid agent configuration."""


class IssueKind(str, Enum):
    """Kinds of recorded (non-raised) problems."""
    MALFORMED_DOCUMENT = "malformed_document"
    DOCUMENT_MISSING = "document_missing"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    ENUMERATION_UNAVAILABLE = "enumeration_unavailable"
    PARTIAL_ENUMERATION = "partial_enumeration"
    NO_IDENTIFIER_FOUND = "no_identifier_found"
    TIMEOUT = "timeout"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class Issue:
    """A problem absorbed into the run result instead of being raised."""
    kind: IssueKind
    message: str
    entity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "entity": self.entity,
        }
