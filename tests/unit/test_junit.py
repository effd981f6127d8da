"""Tests for formatters/junit.py and formatters/markdown.py."""

from __future__ import annotations

from pathlib import Path
from xml.etree import ElementTree as ET

from defiwatch.formatters.junit import build_junit_tree, export_junit_report
from defiwatch.formatters.markdown import export_markdown_report, render_markdown_report


class TestJunitExport:
    def test_basic_export(self, tmp_path: Path, sample_report):
        out = tmp_path / "results.xml"
        result = export_junit_report(sample_report, out)

        assert out.exists()
        assert result["total_tests"] == 2
        assert result["failures"] == 1
        assert result["passed"] == 1

    def test_valid_xml(self, tmp_path: Path, sample_report):
        out = tmp_path / "results.xml"
        export_junit_report(sample_report, out)
        root = ET.parse(out).getroot()
        assert root.tag == "testsuites"
        assert root.get("name") == "DeFi Watch: Vault"
        assert [s.get("name") for s in root.findall("testsuite")] == ["security", "gas"]

    def test_custom_fail_on(self, sample_report):
        _, total, failures = build_junit_tree(sample_report, fail_on=["LOW"])
        assert total == 2
        assert failures == 1

    def test_failure_text(self, sample_report):
        root, _, _ = build_junit_tree(sample_report)
        failure = root.find("testsuite/testcase/failure")
        assert failure.get("type") == "critical"
        assert "Reported by: alpha, beta" in failure.text

    def test_creates_parent_dirs(self, tmp_path: Path, sample_report):
        out = tmp_path / "nested" / "dir" / "results.xml"
        export_junit_report(sample_report, out)
        assert out.exists()


class TestMarkdown:
    def test_sections(self, sample_report):
        text = render_markdown_report(sample_report)
        assert text.startswith("# Security Audit: Vault")
        assert "**Risk:** FAIL (Critical Risk)" in text
        assert "**Supervisor:** local-consensus (fallback)" in text
        assert "## Security Findings" in text
        assert "## Gas Optimization Findings" in text
        assert "## Code Quality Findings" not in text
        assert "| Gamma" not in text
        assert "| gamma |  | FAILED | - |" in text

    def test_dry_run_banner(self, sample_report):
        assert "DRY RUN" in render_markdown_report(sample_report, dry_run=True)
        assert "DRY RUN" not in render_markdown_report(sample_report)

    def test_export(self, tmp_path: Path, sample_report):
        path = export_markdown_report(sample_report, tmp_path / "r" / "report.md")
        assert path.read_text(encoding="utf-8").startswith("# Security Audit")
