"""
Display ordering of findings.

Findings are ordered by severity (high, medium, low). Within equal
severity, findings whose location resolves to a section number come
first, ascending; findings without one keep their insertion order.
"""

import re
from typing import Iterable, List, Optional

from analyzer.app.schemas.findings import Finding

_SECTION_PATTERNS = (
    re.compile(r"(?:section|article|clause|§)\s*(\d+(?:\.\d+)*)", re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)*)\s*\.?\s*(?:section|article|clause)", re.IGNORECASE),
    re.compile(r"^(\d+(?:\.\d+)*)"),
)


def extract_section_number(location: Optional[str]) -> Optional[float]:
    """
    Resolve a sortable section number from a free-text location.

    "Section 5" -> 5.0, "Clause 3.1" -> 3.01, "Preamble" -> None.
    """
    if not location:
        return None

    for pattern in _SECTION_PATTERNS:
        match = pattern.search(location.strip())
        if match:
            parts = match.group(1).split(".")
            main = int(parts[0])
            sub = int(parts[1]) / 100 if len(parts) > 1 else 0
            return main + sub

    return None


def _sort_key(finding: Finding):
    section = extract_section_number(finding.location)
    if section is None:
        return (finding.severity.rank, 1, 0.0)
    return (finding.severity.rank, 0, section)


def sort_findings(findings: Iterable[Finding]) -> List[Finding]:
    # sorted() is stable: unresolvable locations keep insertion order
    return sorted(findings, key=_sort_key)
