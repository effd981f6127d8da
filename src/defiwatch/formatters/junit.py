"""JUnit XML formatter for CI/CD integration.

One testsuite per finding category, one testcase per finding.
"""

from __future__ import annotations

from pathlib import Path
from xml.dom import minidom
from xml.etree import ElementTree as ET

from ..models.finding import Category
from ..models.report import ConsolidatedReport


def build_junit_tree(
    report: ConsolidatedReport,
    fail_on: list[str] | None = None,
) -> tuple[ET.Element, int, int]:
    """Return (testsuites element, total tests, failures)."""
    if fail_on is None:
        fail_on = ["CRITICAL", "HIGH"]
    fail_set = {s.upper() for s in fail_on}
    meta = report.metadata

    testsuites = ET.Element("testsuites")
    testsuites.set("name", f"DeFi Watch: {meta.contract_name}")
    testsuites.set("timestamp", meta.finished_at.strftime("%Y-%m-%dT%H:%M:%S"))

    total_tests = 0
    total_failures = 0

    for category in Category:
        findings = report.findings.get(category, [])
        if not findings:
            continue

        testsuite = ET.SubElement(testsuites, "testsuite")
        testsuite.set("name", category.value)
        testsuite.set("tests", str(len(findings)))
        suite_failures = 0

        for finding in findings:
            total_tests += 1
            testcase = ET.SubElement(testsuite, "testcase")
            testcase.set("name", f"{finding.id}: {finding.title}")
            testcase.set("classname", f"{meta.contract_name}.{category.value}")
            if finding.code_reference:
                testcase.set("file", finding.code_reference)

            severity = finding.severity.value
            if severity not in fail_set:
                continue
            total_failures += 1
            suite_failures += 1

            failure = ET.SubElement(testcase, "failure")
            failure.set("message", f"[{severity}] {finding.title}")
            failure.set("type", severity.lower())

            text_parts = [f"Severity: {severity}", f"Verified: {finding.verified}"]
            if finding.contributors:
                text_parts.append(f"Reported by: {', '.join(finding.contributors)}")
            if finding.code_reference:
                text_parts.append(f"Location: {finding.code_reference}")
            if finding.description:
                text_parts.append(f"\nDescription:\n{finding.description}")
            if finding.recommendation:
                text_parts.append(f"\nRemediation:\n{finding.recommendation}")
            failure.text = "\n".join(text_parts)

        testsuite.set("failures", str(suite_failures))
        testsuite.set("errors", "0")
        testsuite.set("skipped", "0")

    testsuites.set("tests", str(total_tests))
    testsuites.set("failures", str(total_failures))
    testsuites.set("errors", "0")
    duration = (meta.finished_at - meta.started_at).total_seconds()
    if duration > 0:
        testsuites.set("time", str(round(duration, 2)))
    return testsuites, total_tests, total_failures


def export_junit_report(
    report: ConsolidatedReport,
    output_path: Path,
    fail_on: list[str] | None = None,
) -> dict:
    """Write findings as JUnit XML.

    Returns:
        Dict with: path, total_tests, failures, passed.
    """
    testsuites, total_tests, total_failures = build_junit_tree(report, fail_on)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rough = ET.tostring(testsuites, encoding="unicode")
    dom = minidom.parseString(rough)
    output_path.write_bytes(dom.toprettyxml(indent="  ", encoding="UTF-8"))

    return {
        "path": str(output_path),
        "total_tests": total_tests,
        "failures": total_failures,
        "passed": total_tests - total_failures,
    }
