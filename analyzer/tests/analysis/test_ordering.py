import pytest

from analyzer.app.analysis.ordering import extract_section_number, sort_findings
from analyzer.app.schemas.findings import Finding, Severity


def _finding(fid: str, severity: Severity, location=None) -> Finding:
    return Finding(
        id=fid,
        title=fid,
        severity=severity,
        source_span=f"text of {fid}",
        category="LIABILITY AND INDEMNIFICATION",
        location=location,
    )


@pytest.mark.parametrize(
    "location, expected",
    [
        ("Section 5", 5.0),
        ("section 12", 12.0),
        ("Clause 3.1", 3.01),
        ("Article 10.15", 10.15),
        ("§ 7", 7.0),
        ("4.2 Section", 4.02),
        ("7. Term", 7.0),
        ("Preamble", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_section_number(location, expected):
    if expected is None:
        assert extract_section_number(location) is None
    else:
        assert extract_section_number(location) == pytest.approx(expected)


def test_sort_by_severity_then_section():
    findings = [
        _finding("s5", Severity.HIGH, "Section 5"),
        _finding("s2", Severity.HIGH, "Section 2"),
        _finding("med", Severity.MEDIUM, None),
        _finding("high-none", Severity.HIGH, None),
    ]

    ordered = [f.id for f in sort_findings(findings)]

    assert ordered == ["s2", "s5", "high-none", "med"]


def test_unresolvable_locations_keep_insertion_order():
    findings = [
        _finding("b", Severity.LOW, "Schedule B"),
        _finding("a", Severity.LOW, "Preamble"),
        _finding("c", Severity.LOW, "Recitals"),
    ]

    assert [f.id for f in sort_findings(findings)] == ["b", "a", "c"]


def test_subsections_sort_after_their_section():
    findings = [
        _finding("3.2", Severity.MEDIUM, "Section 3.2"),
        _finding("3", Severity.MEDIUM, "Section 3"),
        _finding("3.1", Severity.MEDIUM, "Clause 3.1"),
    ]

    assert [f.id for f in sort_findings(findings)] == ["3", "3.1", "3.2"]
