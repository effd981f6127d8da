"""Tests for core/supervisor.py."""

from __future__ import annotations

import json

import pytest

from defiwatch.core.consensus import HEURISTIC_SUPERVISOR, LOCAL_SUPERVISOR
from defiwatch.core.supervisor import verify
from defiwatch.models.agent import AnalysisRequest, RiskLevel
from defiwatch.models.finding import Confidence, Severity
from defiwatch.providers.dryrun import MOCK_SUPERVISOR_REPLY

from conftest import FakeProvider, make_finding, make_result


@pytest.fixture
def first_stage():
    return [
        make_result("alpha", [
            make_finding("Reentrancy in withdraw()", Severity.CRITICAL, "alpha"),
            make_finding("Missing access control on setFeeRecipient", Severity.HIGH, "alpha"),
        ]),
        make_result("beta", [make_finding("reentrancy in withdraw", Severity.HIGH, "beta")]),
        make_result("gamma", [], succeeded=False),
    ]


def request_for(source: str) -> AnalysisRequest:
    return AnalysisRequest(contract_name="Vault", source_text=source)


class TestVerify:
    @pytest.mark.asyncio
    async def test_supervisor_verdict(self, free_tier, first_stage, vault_source):
        provider = FakeProvider({"judge": MOCK_SUPERVISOR_REPLY})
        verdict = await verify(
            vault_source, first_stage,
            request=request_for(vault_source), tier=free_tier, provider=provider, quiet=True,
        )
        assert verdict.supervisor_verified
        assert verdict.supervisor_name == "Judge"
        assert verdict.risk_level == RiskLevel.CRITICAL
        assert verdict.scores.overall == 40
        assert len(verdict.false_positives) == 1

        by_title = {f.title: f for f in verdict.verified_findings}
        reentrancy = by_title["Reentrancy in withdraw()"]
        assert reentrancy.verified
        assert reentrancy.confidence == Confidence.HIGH
        assert reentrancy.contributors == ["alpha", "beta"]
        access = by_title["Missing access control on setFeeRecipient"]
        assert access.confidence == Confidence.MEDIUM
        # found only by the supervisor
        assert by_title["Cache array length in loops"].contributors == ["judge"]

    @pytest.mark.asyncio
    async def test_prompt_lists_first_stage_findings(self, free_tier, first_stage, vault_source):
        provider = FakeProvider({"judge": MOCK_SUPERVISOR_REPLY})
        await verify(
            vault_source, first_stage,
            request=request_for(vault_source), tier=free_tier, provider=provider, quiet=True,
        )
        prompt = provider.prompts["judge"]
        assert "lead auditor" in prompt
        assert "Missing access control on setFeeRecipient" in prompt
        assert "contract Vault" in prompt

    @pytest.mark.asyncio
    async def test_scores_computed_when_unreported(self, free_tier, first_stage, vault_source):
        reply = json.dumps({"verifiedFindings": [
            {"severity": "HIGH", "title": "Reentrancy in withdraw()"},
        ]})
        verdict = await verify(
            vault_source, first_stage,
            tier=free_tier, provider=FakeProvider({"judge": reply}), quiet=True,
        )
        assert verdict.scores.overall == 80
        assert verdict.risk_level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_failed_supervisor_falls_back_to_local(self, free_tier, first_stage, vault_source):
        verdict = await verify(
            vault_source, first_stage,
            tier=free_tier, provider=FakeProvider({"judge": None}), quiet=True,
        )
        assert not verdict.supervisor_verified
        assert verdict.supervisor_name == LOCAL_SUPERVISOR
        assert verdict.notes[0].startswith("Supervisor unavailable")
        # the reentrancy group is confirmed by alpha and beta
        assert verdict.scores.overall == 70

    @pytest.mark.asyncio
    async def test_unusable_reply_falls_back(self, free_tier, first_stage, vault_source):
        provider = FakeProvider({"judge": "Sorry, I cannot help with that."})
        verdict = await verify(vault_source, first_stage, tier=free_tier, provider=provider, quiet=True)
        assert verdict.supervisor_name == LOCAL_SUPERVISOR

    @pytest.mark.asyncio
    async def test_slow_supervisor_falls_back(self, free_tier, first_stage, vault_source):
        tier = free_tier.model_copy(update={"supervisor_deadline_seconds": 0.05})
        provider = FakeProvider({"judge": MOCK_SUPERVISOR_REPLY}, delays={"judge": 1})
        verdict = await verify(vault_source, first_stage, tier=tier, provider=provider, quiet=True)
        assert not verdict.supervisor_verified
        assert "timeout" in verdict.notes[0]

    @pytest.mark.asyncio
    async def test_oversized_finding_set_falls_back(self, free_tier, vault_source):
        tier = free_tier.model_copy(update={"token_budget": 2000})
        findings = [make_finding(f"Issue {i}", Severity.LOW, "alpha") for i in range(200)]
        provider = FakeProvider({"judge": MOCK_SUPERVISOR_REPLY})
        verdict = await verify(
            vault_source, [make_result("alpha", findings)], tier=tier, provider=provider, quiet=True
        )
        assert verdict.supervisor_name == LOCAL_SUPERVISOR
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_no_provider_uses_local_consensus(self, first_stage, vault_source):
        verdict = await verify(vault_source, first_stage, quiet=True)
        assert verdict.supervisor_name == LOCAL_SUPERVISOR

    @pytest.mark.asyncio
    async def test_total_failure_uses_source_keywords(self, free_tier, selfdestruct_source):
        failed = [make_result(a, [], succeeded=False) for a in ("alpha", "beta", "gamma")]
        verdict = await verify(
            selfdestruct_source, failed,
            tier=free_tier, provider=FakeProvider(), quiet=True,
        )
        assert verdict.supervisor_name == HEURISTIC_SUPERVISOR
        assert verdict.low_confidence
        assert verdict.scores.overall == 75

    @pytest.mark.asyncio
    async def test_supervisor_alone_after_total_failure(self, free_tier, vault_source):
        failed = [make_result(a, [], succeeded=False) for a in ("alpha", "beta", "gamma")]
        provider = FakeProvider({"judge": MOCK_SUPERVISOR_REPLY})
        verdict = await verify(vault_source, failed, tier=free_tier, provider=provider, quiet=True)
        assert verdict.supervisor_verified
        assert "No first-stage auditor" in provider.prompts["judge"]
        assert all(f.contributors == ["judge"] for f in verdict.verified_findings)
