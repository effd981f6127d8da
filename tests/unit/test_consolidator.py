"""Tests for core/consolidator.py."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from defiwatch.core.consensus import local_consensus
from defiwatch.core.consolidator import bucket_findings, consolidate
from defiwatch.models.finding import Category, Severity
from defiwatch.models.report import ReportMetadata

from conftest import make_finding, make_result


@pytest.fixture
def metadata() -> ReportMetadata:
    return ReportMetadata(
        contract_name="Vault",
        tier="free",
        started_at=datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc),
        finished_at=datetime(2026, 1, 5, 12, 0, 42, tzinfo=timezone.utc),
    )


@pytest.fixture
def results():
    return [
        make_result("alpha", [
            make_finding("Reentrancy", Severity.CRITICAL, "alpha"),
            make_finding("Loop cost", Severity.LOW, "alpha", Category.GAS),
        ]),
        make_result("beta", [make_finding("Reentrancy", Severity.CRITICAL, "beta")]),
        make_result("gamma", [], succeeded=False),
    ]


class TestConsolidate:
    def test_pure(self, results, metadata, registry):
        verdict = local_consensus(results)
        agents = list(registry.tier("free").agents)
        assert consolidate(results, verdict, metadata, agents) == consolidate(
            results, verdict, metadata, agents
        )

    def test_statistics(self, results, metadata):
        report = consolidate(results, local_consensus(results), metadata)
        stats = report.statistics
        assert stats.totals.total == 2
        assert stats.totals.critical == 1
        assert stats.confirmed == 1
        assert stats.single_source == 1
        assert stats.agents_succeeded == 2
        assert stats.agents_failed == 1
        assert stats.by_category[Category.GAS].low == 1

    def test_metadata_filled(self, results, metadata, registry):
        agents = list(registry.tier("free").agents)
        report = consolidate(results, local_consensus(results), metadata, agents)
        assert [a.display_name for a in report.metadata.agents] == ["Alpha", "Beta", "Gamma"]
        assert report.metadata.agents_used == ["alpha", "beta"]
        assert report.metadata.supervisor_name == "local-consensus"
        assert not report.metadata.low_confidence

    def test_zero_successes_is_low_confidence(self, metadata):
        failed = [make_result("alpha", [], succeeded=False)]
        report = consolidate(failed, local_consensus(failed), metadata)
        assert report.metadata.low_confidence
        assert "Low confidence" in report.executive_summary

    def test_summary_mentions_fallback(self, results, metadata):
        report = consolidate(results, local_consensus(results), metadata)
        assert "local consensus" in report.executive_summary
        assert "Vault was analyzed by 2 of 3 agent(s)" in report.executive_summary

    def test_to_json_uses_camel_case(self, results, metadata):
        data = consolidate(results, local_consensus(results), metadata).to_json_dict()
        assert "executiveSummary" in data
        assert "contractName" in data["metadata"]
        assert data["findings"]["security"][0]["reportedBy"] == "alpha"


class TestBucketFindings:
    def test_every_category_present(self):
        buckets = bucket_findings([])
        assert set(buckets) == set(Category)

    def test_sorted_by_severity(self):
        buckets = bucket_findings([
            make_finding("b", Severity.LOW),
            make_finding("a", Severity.CRITICAL),
            make_finding("c", Severity.HIGH),
        ])
        assert [f.title for f in buckets[Category.SECURITY]] == ["a", "c", "b"]
