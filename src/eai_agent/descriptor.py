"""
AppDynamics Descriptor Parser

Parses the .NET agent ``config.xml`` into the controller connection, the
IIS instrumentation mode, declared applications and standalone applications.

Parsing is best-effort per entry: an entry missing a required attribute is
skipped and reported, only a document that is not well-formed XML fails.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Union

from .errors import Issue, IssueKind, MalformedDocument, MissingRequiredField
from .models import (
    ControllerConfig,
    DeclaredApplication,
    EntrySource,
    InstrumentationMode,
    StandaloneApplication,
    declare_application,
)

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "appdynamics-agent"


@dataclass
class ParsedDescriptor:
    """Everything read from one AppDynamics configuration document."""
    mode: InstrumentationMode = InstrumentationMode.NOT_CONFIGURED
    controller: Optional[ControllerConfig] = None
    applications: List[DeclaredApplication] = field(default_factory=list)
    standalone_applications: List[StandaloneApplication] = field(default_factory=list)
    warnings: List[Issue] = field(default_factory=list)


def _local_name(tag: str) -> str:
    """'{ns}IIS' -> 'iis', 'StandaloneApplications' -> 'standaloneapplications'."""
    if tag.startswith("{"):
        tag = tag.split("}", 1)[1]
    return tag.replace("-", "").replace("_", "").lower()


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    wanted = _local_name(name)
    return [child for child in element if isinstance(child.tag, str) and _local_name(child.tag) == wanted]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    found = _children(element, name)
    return found[0] if found else None


def _attr(element: ET.Element, *names: str) -> Optional[str]:
    """First non-empty attribute among ``names``, matched by local name."""
    wanted = [_local_name(n) for n in names]
    attributes = {_local_name(k): v for k, v in element.attrib.items()}
    for name in wanted:
        value = attributes.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _tier_name(element: ET.Element) -> Optional[str]:
    tier = _child(element, "tier")
    if tier is not None:
        return _attr(tier, "name")
    return _attr(element, "tier")


def _parse_controller(root: ET.Element, warnings: List[Issue]) -> Optional[ControllerConfig]:
    element = _child(root, "controller")
    if element is None:
        logger.warning("No <controller> element in AppDynamics configuration")
        return None

    tls_enabled = _flag(_attr(element, "ssl", "tls"))
    default_port = 443 if tls_enabled else 8090
    port_text = _attr(element, "port")
    port = default_port
    if port_text is not None:
        try:
            port = int(port_text)
        except ValueError:
            logger.warning(f"Invalid controller port '{port_text}', using {default_port}")
            warnings.append(Issue(IssueKind.MISSING_REQUIRED_FIELD, f"Invalid controller port '{port_text}'", "controller"))

    account_name = _attr(element, "account")
    account = _child(element, "account")
    if account_name is None and account is not None:
        account_name = _attr(account, "name")

    application = _child(element, "application")
    application_name = _attr(application, "name") if application is not None else None

    return ControllerConfig(
        host=_attr(element, "host") or "",
        port=port,
        tls_enabled=tls_enabled,
        account_name=account_name or "",
        application_name=application_name,
    )


def _parse_application(element: ET.Element) -> DeclaredApplication:
    controller_application = _attr(element, "controller-application")
    if controller_application is None:
        raise MissingRequiredField("application", "controller-application")
    site = _attr(element, "site")
    if site is None:
        raise MissingRequiredField("application", "site")
    return declare_application(
        controller_application_name=controller_application,
        site_name=site,
        application_path=_attr(element, "path"),
        tier_name=_tier_name(element),
        source=EntrySource.MANUAL,
    )


def _parse_standalone(element: ET.Element) -> StandaloneApplication:
    executable = _attr(element, "executable", "executable-name", "name")
    if executable is None:
        raise MissingRequiredField("standalone-application", "executable")
    node = _child(element, "node")
    node_name = _attr(element, "node") or (_attr(node, "name") if node is not None else None)
    return StandaloneApplication(
        executable_name=executable,
        tier_name=_tier_name(element) or "",
        node_name=node_name or "",
    )


def _find_standalone_lists(root: ET.Element) -> List[ET.Element]:
    return [
        node for node in root.iter()
        if isinstance(node.tag, str) and _local_name(node.tag) == "standaloneapplications"
    ]


def parse_descriptor(document: Union[bytes, str]) -> ParsedDescriptor:
    """
    Parse an AppDynamics agent configuration document.

    Mode detection: a non-empty ``<applications>`` list under ``app-agents/IIS``
    means manual mode; otherwise an enabled ``<automatic>`` marker means
    automatic mode; otherwise the document is not configured for IIS.

    Raises:
        MalformedDocument: if the document is not well-formed or is not an
            AppDynamics agent configuration
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise MalformedDocument(f"AppDynamics configuration is not well-formed XML: {e}") from e

    if _local_name(root.tag) != _local_name(ROOT_ELEMENT):
        raise MalformedDocument(f"Unexpected root element <{root.tag}>, expected <{ROOT_ELEMENT}>")

    result = ParsedDescriptor()
    result.controller = _parse_controller(root, result.warnings)

    app_agents = _child(root, "app-agents")
    iis = _child(app_agents, "IIS") if app_agents is not None else None

    application_elements: List[ET.Element] = []
    automatic = None
    if iis is not None:
        for applications in _children(iis, "applications"):
            application_elements.extend(_children(applications, "application"))
        automatic = _child(iis, "automatic")

    if application_elements:
        result.mode = InstrumentationMode.MANUAL
        for element in application_elements:
            try:
                result.applications.append(_parse_application(element))
            except MissingRequiredField as e:
                logger.warning(f"Skipping IIS application entry: {e}")
                result.warnings.append(Issue(IssueKind.MISSING_REQUIRED_FIELD, str(e), _attr(element, "controller-application", "site")))
    elif automatic is not None and _flag(_attr(automatic, "enabled"), default=True):
        result.mode = InstrumentationMode.AUTOMATIC
    else:
        result.mode = InstrumentationMode.NOT_CONFIGURED

    for standalone_list in _find_standalone_lists(root):
        for element in list(standalone_list):
            if not isinstance(element.tag, str):
                continue
            try:
                result.standalone_applications.append(_parse_standalone(element))
            except MissingRequiredField as e:
                logger.warning(f"Skipping standalone application entry: {e}")
                result.warnings.append(Issue(IssueKind.MISSING_REQUIRED_FIELD, str(e)))

    logger.info(
        f"Parsed AppDynamics configuration: mode={result.mode.value}, "
        f"applications={len(result.applications)}, standalone={len(result.standalone_applications)}"
    )
    return result
