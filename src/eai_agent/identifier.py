"""EAI code extraction from free-text application and site names."""

import re
from typing import Optional

from .models import IdentifierMatch

DELIMITERS = ("-", "_")

# Exactly 4 or 5 ASCII digits adjacent to the delimiter
_LEADING = re.compile(r"([0-9]{4,5})([-_])(.+)")
_TRAILING = re.compile(r"(.+)([-_])([0-9]{4,5})")


def extract(name: Optional[str]) -> IdentifierMatch:
    """
    Extract a leading or trailing EAI code from ``name``.

    The leading form wins when both apply. "1234-Portal" and "Portal_12345"
    match; "123-App", "123456-App" and "App.1234" do not. Never raises.
    """
    if not isinstance(name, str):
        return IdentifierMatch(matched=False, remainder="" if name is None else str(name))

    match = _LEADING.fullmatch(name)
    if match:
        return IdentifierMatch(
            matched=True,
            code=match.group(1),
            delimiter=match.group(2),
            remainder=match.group(3),
        )

    match = _TRAILING.fullmatch(name)
    if match:
        return IdentifierMatch(
            matched=True,
            code=match.group(3),
            delimiter=match.group(2),
            remainder=match.group(1),
        )

    return IdentifierMatch(matched=False, remainder=name)
